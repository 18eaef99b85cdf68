"""
routers/data_management.py: Reset, backup and restore of audit history

Business Rules:
- Reset deletes every audit row but keeps products and stores
- Backups never contain store access tokens
- Import is additive; existing SKUs and domains are left untouched

Called by: main.py (router mount)
Depends on: services/audit_service.py
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db
from ..rate_limit import limiter
from ..services import audit_service

router = APIRouter(tags=["data-management"])


@router.post("/api/data-management/reset-histories")
@limiter.limit("2/minute")
async def reset_histories(request: Request, db: Session = Depends(get_db)):
    counts = audit_service.reset_audit_history(db)
    logger.warning("Audit histories reset via API: {}", counts)
    return {"ok": True, "message": "Audit histories reset", "counts": counts}


@router.get("/api/data-management/backup")
async def backup(db: Session = Depends(get_db)):
    return audit_service.export_all(db)


@router.post("/api/data-management/import")
async def import_backup(snapshot: dict, db: Session = Depends(get_db)):
    if not isinstance(snapshot.get("data"), dict):
        raise HTTPException(400, "Invalid backup file: missing data section")
    counts = audit_service.import_snapshot(db, snapshot)
    return {"ok": True, "imported": counts}
