"""
routers/stock.py: Local stock movements and product uploads

Business Rules:
- Stock-out beyond on-hand quantity answers 400 (InsufficientStockError)
- Lost optimistic-lock races answer 409 after the service's retries
- Uploads report per-row errors without failing the batch
- Handlers are plain functions: the optimistic-lock backoff sleeps in the
  threadpool, never on the event loop

Called by: main.py (router mount)
Depends on: services/stock_service.py
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.stock import MovementOut, QuantityUpdate, StockMovement, UploadOut, UploadRequest
from ..services import stock_service

router = APIRouter(tags=["stock"])


@router.post("/api/stock/in", response_model=MovementOut)
def stock_in(body: StockMovement, db: Session = Depends(get_db)):
    return stock_service.stock_in(
        db,
        body.sku,
        body.quantity,
        reason=body.reason or "Stock in",
        notes=body.notes,
        user_name=body.user_name,
    )


@router.post("/api/stock/out", response_model=MovementOut)
def stock_out(body: StockMovement, db: Session = Depends(get_db)):
    return stock_service.stock_out(
        db,
        body.sku,
        body.quantity,
        reason=body.reason or "Stock out",
        notes=body.notes,
        user_name=body.user_name,
    )


@router.post("/api/stock/update", response_model=MovementOut)
def update_quantity(body: QuantityUpdate, db: Session = Depends(get_db)):
    return stock_service.update_quantity(
        db,
        body.sku,
        body.quantity,
        reason=body.reason,
        notes=body.notes,
        user_name=body.user_name,
    )


@router.post("/api/products/upload", response_model=UploadOut)
def upload_products(body: UploadRequest, db: Session = Depends(get_db)):
    rows = [row.model_dump() for row in body.products]
    return stock_service.upload_products(db, rows, user_name=body.user_name)
