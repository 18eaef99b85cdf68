"""
routers/sync.py: Sync triggers, background sync jobs and sync status

Pushes local quantities to connected Shopify stores. Single and multi syncs
answer with the run summary. A full sync can run inline or as a background
job polled through /api/sync/jobs/{id}.

Business Rules:
- Trigger validation (unknown SKU, no connected stores, empty SKU list)
  fails synchronously before any Shopify call
- Partial failures still return 200 with counts; details are in the audit log
- Trigger endpoints are rate limited per client IP
- Manual needs_sync flags (one SKU, all, all up to date) never push anything

Called by: main.py (router mount)
Depends on: services/sync_service.py, services/sync_jobs.py, rate_limit
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..rate_limit import limiter
from ..schemas.sync import (
    MultiSyncRequest,
    RunSummaryOut,
    SyncJobOut,
    SyncJobRequest,
    SyncRunRequest,
)
from ..services.sync_jobs import sync_jobs
from ..services.sync_service import (
    SyncExecutor,
    mark_all_up_to_date,
    mark_needs_sync,
    sync_status,
)

router = APIRouter(tags=["sync"])


@router.post("/api/sync/product/{sku}", response_model=RunSummaryOut)
@limiter.limit(settings.rate_limit_sync)
async def sync_product(
    sku: str, request: Request, body: SyncRunRequest | None = None, db: Session = Depends(get_db)
):
    """Push one product's quantity to every connected store."""
    executor = SyncExecutor(db, user_name=body.user_name if body else None)
    summary = await executor.sync_single(sku)
    return summary.to_dict()


@router.post("/api/sync/multi", response_model=RunSummaryOut)
@limiter.limit(settings.rate_limit_sync)
async def sync_multiple(request: Request, body: MultiSyncRequest, db: Session = Depends(get_db)):
    """Push a chosen list of SKUs to every connected store."""
    executor = SyncExecutor(db, user_name=body.user_name)
    summary = await executor.sync_multi(body.skus)
    return summary.to_dict()


@router.post("/api/sync", response_model=RunSummaryOut)
@limiter.limit(settings.rate_limit_sync)
async def sync_everything(
    request: Request, body: SyncRunRequest | None = None, db: Session = Depends(get_db)
):
    """Full catalog sync, held open until it finishes. Prefer /api/sync/jobs for large catalogs."""
    executor = SyncExecutor(db, user_name=body.user_name if body else None)
    summary = await executor.sync_all()
    logger.info(
        "Full sync via API: {} updated, {} failed",
        summary.products_updated,
        summary.products_failed,
    )
    return summary.to_dict()


# ── Background jobs ───────────────────────────────────────────────────


@router.post("/api/sync/jobs", response_model=SyncJobOut, status_code=202)
@limiter.limit(settings.rate_limit_sync)
async def start_sync_job(request: Request, body: SyncJobRequest, db: Session = Depends(get_db)):
    job = sync_jobs.start(db, body.kind, body.skus, user_name=body.user_name)
    return job.to_dict()


@router.get("/api/sync/jobs", response_model=list[SyncJobOut])
async def list_sync_jobs():
    return [job.to_dict() for job in sync_jobs.list()]


@router.get("/api/sync/jobs/{job_id}", response_model=SyncJobOut)
async def get_sync_job(job_id: str):
    job = sync_jobs.get(job_id)
    if not job:
        raise HTTPException(404, "Sync job not found")
    return job.to_dict()


@router.post("/api/sync/jobs/{job_id}/cancel", response_model=SyncJobOut)
async def cancel_sync_job(job_id: str):
    job = sync_jobs.cancel(job_id)
    if not job:
        raise HTTPException(404, "Sync job not found")
    return job.to_dict()


@router.get("/api/sync/status")
async def get_sync_status(db: Session = Depends(get_db)):
    """Stores, products waiting for sync, and recent sync outcome counts."""
    return sync_status(db)


# ── Manual sync flags ─────────────────────────────────────────────────


@router.post("/api/products/needs-sync")
async def mark_all_needs_sync(db: Session = Depends(get_db)):
    result = mark_needs_sync(db)
    return {"ok": True, "message": f"Marked {result['updated']} products as needing sync", **result}


@router.post("/api/products/{sku}/needs-sync")
async def mark_sku_needs_sync(sku: str, db: Session = Depends(get_db)):
    return {"ok": True, "message": f"Marked SKU {sku} as needing sync", **mark_needs_sync(db, sku)}


@router.post("/api/products/up-to-date")
async def mark_products_up_to_date(db: Session = Depends(get_db)):
    """Clear every needs_sync flag, e.g. after a manual reconciliation in Shopify."""
    result = mark_all_up_to_date(db)
    logger.warning("All products marked up to date via API ({} rows)", result["updated"])
    return {"ok": True, **result}
