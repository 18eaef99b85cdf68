"""
routers/inventory.py: Local vs Shopify inventory comparison

Business Rules:
- Every request reads Shopify fresh; nothing is cached
- status/smart/difference sorts evaluate the whole filtered set before paging
- A store that fails a lookup shows up as an error on that store's entry only

Called by: main.py (router mount)
Depends on: services/reconciliation_service.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.reconciliation_service import ReconciliationEngine

router = APIRouter(tags=["inventory"])


@router.get("/api/inventory/comparison")
async def inventory_comparison(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=200),
    search: str | None = None,
    status: str | None = None,
    category: str | None = None,
    sort_by: str = "smart",
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    engine = ReconciliationEngine(db)
    return await engine.compare(
        page=page,
        limit=limit,
        search=search,
        status=status or None,
        category=category or None,
        sort_by=sort_by,
        sort_order=sort_order,
    )
