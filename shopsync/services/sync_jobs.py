"""Background sync jobs: long sync runs behind a pollable handle.

A sync-all over a large catalog can take minutes. start() validates the
trigger synchronously, then runs the executor as an asyncio task with its
own DB session and returns a job id right away.

Business Rules:
- Trigger validation errors surface immediately; nothing is scheduled
- Job status: running -> completed | cancelled | failed
- cancel() flips the run's CancellationToken; the executor stops between
  units and the job keeps its partial summary
- Jobs live in process memory only; start() keeps the newest `keep_finished`
  finished jobs and drops older ones

Called by: routers/sync.py, main.py (shutdown)
Depends on: services/sync_service.py, database.SessionLocal
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..database import SessionLocal, utcnow
from ..exceptions import SyncValidationError
from ..models import Product
from .store_service import connected_stores
from .sync_service import CancellationToken, SyncExecutor, clean_skus

log = logging.getLogger("shopsync.jobs")

JOB_KINDS = ("full", "multi")


@dataclass
class SyncJob:
    id: str
    kind: str
    skus: list[str] = field(default_factory=list)
    status: str = "running"
    created_at: object = None
    finished_at: object = None
    summary: dict | None = None
    error: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "cancel_requested": self.token.cancelled,
            "summary": self.summary,
            "error": self.error,
        }


class SyncJobRegistry:
    def __init__(self, session_factory=SessionLocal, executor_factory=SyncExecutor, keep_finished: int = 50):
        self.session_factory = session_factory
        self.executor_factory = executor_factory
        self.keep_finished = keep_finished
        self._jobs: dict[str, SyncJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def validate(self, db: Session, kind: str, skus=None) -> list[str]:
        if kind not in JOB_KINDS:
            raise SyncValidationError(f"Unknown sync job kind: {kind}")
        wanted = clean_skus(skus)
        if kind == "multi" and not wanted:
            raise SyncValidationError("At least one SKU is required")
        if not connected_stores(db):
            raise SyncValidationError("No connected stores found")
        if db.query(Product.id).first() is None:
            raise SyncValidationError("No products to sync")
        return wanted

    def start(self, db: Session, kind: str = "full", skus=None, *, user_name: str | None = None) -> SyncJob:
        """Validate, schedule and return the job. Must be called inside a running loop."""
        wanted = self.validate(db, kind, skus)
        self._prune()
        job = SyncJob(id=uuid.uuid4().hex, kind=kind, skus=wanted, created_at=utcnow())
        self._jobs[job.id] = job
        task = asyncio.get_running_loop().create_task(self._run(job, user_name))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        log.info("Sync job %s started (%s)", job.id, kind)
        return job

    async def _run(self, job: SyncJob, user_name: str | None) -> None:
        db = self.session_factory()
        try:
            executor = self.executor_factory(db, user_name=user_name)
            if job.kind == "multi":
                summary = await executor.sync_multi(job.skus, cancel=job.token)
            else:
                summary = await executor.sync_all(cancel=job.token)
            job.summary = summary.to_dict()
            job.status = "cancelled" if summary.cancelled else "completed"
        except SyncValidationError as e:
            job.status = "failed"
            job.error = str(e)
        except asyncio.CancelledError:
            job.status = "cancelled"
            raise
        except Exception as e:
            log.exception("Sync job %s crashed", job.id)
            job.status = "failed"
            job.error = str(e) or e.__class__.__name__
        finally:
            job.finished_at = utcnow()
            db.close()
            log.info("Sync job %s %s", job.id, job.status)

    def _prune(self) -> None:
        # _jobs keeps creation order, so the oldest finished jobs come first
        finished = [j for j in self._jobs.values() if j.status != "running"]
        excess = len(finished) - self.keep_finished
        for job in finished[: max(0, excess)]:
            del self._jobs[job.id]

    def get(self, job_id: str) -> SyncJob | None:
        return self._jobs.get(job_id)

    def list(self) -> list[SyncJob]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    def cancel(self, job_id: str) -> SyncJob | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.status == "running":
            job.token.cancel()
            log.info("Sync job %s cancel requested", job_id)
        return job

    async def wait(self, job_id: str) -> SyncJob | None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._jobs.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for them to wind down."""
        for job in self._jobs.values():
            if job.status == "running":
                job.token.cancel()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


sync_jobs = SyncJobRegistry()
