"""
routers/audit.py: Read-only audit history (stock + sync)

Called by: main.py (router mount)
Depends on: services/audit_service.py
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..services import audit_service

router = APIRouter(tags=["audit"])


def _page(rows, total, limit, offset, to_dict):
    return {
        "items": [to_dict(r) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/api/audit/sync")
async def sync_audit_log(
    sku: str | None = None,
    store_domain: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = audit_service.list_sync_audits(
        db, sku=sku, store_domain=store_domain, action=action,
        start=start, end=end, limit=limit, offset=offset,
    )
    return _page(rows, total, limit, offset, audit_service.sync_audit_to_dict)


@router.get("/api/audit/stock")
async def stock_audit_log(
    sku: str | None = None,
    action: str | None = None,
    batch_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = audit_service.list_stock_audits(
        db, sku=sku, action=action, batch_id=batch_id,
        start=start, end=end, limit=limit, offset=offset,
    )
    return _page(rows, total, limit, offset, audit_service.stock_audit_to_dict)


@router.get("/api/audit/product/{sku}")
async def product_audit_trail(sku: str, limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    return {"sku": sku, "items": audit_service.get_product_audit_trail(db, sku, limit=limit)}


@router.get("/api/audit/stats")
async def audit_stats(since: datetime | None = None, db: Session = Depends(get_db)):
    return audit_service.sync_stats(db, since=since)
