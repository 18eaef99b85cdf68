"""Stock service: local quantity movements on the canonical product table.

Business Rules:
- Local inventory is the source of truth; every movement writes exactly one
  StockAudit row in the same transaction as the quantity change
- stock_in / stock_out take a positive integer; stock_out never drives the
  quantity below zero (InsufficientStockError instead)
- Every movement marks the product needs_sync=True and bumps last_modified
- Read-modify-write is guarded by Product.version; a lost race reloads the
  row and retries up to STOCK_UPDATE_RETRIES times, then ConcurrentUpdateError
- Uploads share one batch_id; new SKUs are logged as product_upload (old=0),
  changed quantities on existing SKUs as stock_update

Called by: routers/stock.py
Depends on: models (Product, StockAudit, StockLog), services/audit_service.py
"""

import logging
import time
import uuid

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..database import utcnow
from ..exceptions import (
    ConcurrentUpdateError,
    InsufficientStockError,
    ProductNotFoundError,
    SyncValidationError,
)
from ..models import Product
from ..utils import safe_int
from . import audit_service

log = logging.getLogger("shopsync.stock")


def _non_negative_qty(value) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise SyncValidationError("Quantity must be an integer")
    qty = safe_int(value)
    if qty is None:
        raise SyncValidationError("Quantity must be an integer")
    if qty < 0:
        raise SyncValidationError("Quantity cannot be negative")
    return qty


def _positive_qty(value) -> int:
    qty = _non_negative_qty(value)
    if qty == 0:
        raise SyncValidationError("Quantity must be a positive integer")
    return qty


def get_product(db: Session, sku: str, *, fresh: bool = False) -> Product:
    sku = (sku or "").strip()
    if not sku:
        raise SyncValidationError("SKU is required")
    query = db.query(Product).filter(Product.sku == sku)
    if fresh:
        query = query.populate_existing()
    product = query.first()
    if not product:
        raise ProductNotFoundError(sku)
    return product


def _run_with_retry(db: Session, op, *, attempts: int | None = None, backoff_base: float = 0.05):
    """Run op() and commit, retrying on optimistic-lock conflicts."""
    attempts = attempts or settings.stock_update_retries
    for attempt in range(attempts):
        try:
            result = op()
            db.commit()
            return result
        except (StaleDataError, OperationalError) as e:
            db.rollback()
            log.warning("Stock update conflict (attempt %d/%d): %s", attempt + 1, attempts, e)
            if attempt >= attempts - 1:
                raise ConcurrentUpdateError(
                    "Product was modified concurrently; please retry"
                ) from e
            time.sleep(backoff_base * (2**attempt))
        except Exception:
            db.rollback()
            raise


def _apply(product: Product, new_quantity: int) -> int:
    old = product.quantity
    product.quantity = new_quantity
    product.needs_sync = True
    product.last_modified = utcnow()
    return old


# ── Movements ─────────────────────────────────────────────────────────


def stock_in(
    db: Session,
    sku: str,
    quantity,
    *,
    reason: str = "Stock in",
    notes: str | None = None,
    user_name: str | None = None,
) -> dict:
    qty = _positive_qty(quantity)

    def op():
        product = get_product(db, sku, fresh=True)
        old = _apply(product, product.quantity + qty)
        audit_service.record_stock_change(
            db,
            sku=product.sku,
            product_name=product.product_name,
            action="stock_in",
            old_quantity=old,
            new_quantity=product.quantity,
            reason=reason,
            source="manual_entry",
            notes=notes,
            user_name=user_name,
            commit=False,
        )
        audit_service.record_stock_log(db, sku=product.sku, change=qty, action="Stock-In")
        return {"sku": product.sku, "old_quantity": old, "new_quantity": product.quantity}

    result = _run_with_retry(db, op)
    log.info("Stock in %s: %d -> %d", result["sku"], result["old_quantity"], result["new_quantity"])
    return result


def stock_out(
    db: Session,
    sku: str,
    quantity,
    *,
    reason: str = "Stock out",
    notes: str | None = None,
    user_name: str | None = None,
) -> dict:
    qty = _positive_qty(quantity)

    def op():
        product = get_product(db, sku, fresh=True)
        if product.quantity < qty:
            raise InsufficientStockError(product.sku, product.quantity, qty)
        old = _apply(product, product.quantity - qty)
        audit_service.record_stock_change(
            db,
            sku=product.sku,
            product_name=product.product_name,
            action="stock_out",
            old_quantity=old,
            new_quantity=product.quantity,
            reason=reason,
            source="manual_entry",
            notes=notes,
            user_name=user_name,
            commit=False,
        )
        audit_service.record_stock_log(db, sku=product.sku, change=-qty, action="Stock-Out")
        return {"sku": product.sku, "old_quantity": old, "new_quantity": product.quantity}

    result = _run_with_retry(db, op)
    log.info("Stock out %s: %d -> %d", result["sku"], result["old_quantity"], result["new_quantity"])
    return result


def update_quantity(
    db: Session,
    sku: str,
    new_quantity,
    *,
    reason: str = "Manual update",
    source: str = "manual_entry",
    notes: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Set an absolute quantity. A no-op edit writes no audit row."""
    target = _non_negative_qty(new_quantity)

    def op():
        product = get_product(db, sku, fresh=True)
        if product.quantity == target:
            return {"sku": product.sku, "old_quantity": target, "new_quantity": target, "changed": False}
        old = _apply(product, target)
        audit_service.record_stock_change(
            db,
            sku=product.sku,
            product_name=product.product_name,
            action="stock_update",
            old_quantity=old,
            new_quantity=target,
            reason=reason,
            source=source,
            notes=notes,
            user_name=user_name,
            commit=False,
        )
        return {"sku": product.sku, "old_quantity": old, "new_quantity": target, "changed": True}

    return _run_with_retry(db, op)


# ── Bulk upload ───────────────────────────────────────────────────────


def upload_products(db: Session, rows: list[dict], *, user_name: str | None = None) -> dict:
    """Create-or-update products from parsed upload rows.

    Each row needs sku, product_name and quantity; category and image_url are
    optional. Bad rows are reported and skipped, the rest of the batch goes in.
    """
    batch_id = f"batch_{uuid.uuid4().hex[:16]}"
    summary = {"batch_id": batch_id, "created": 0, "updated": 0, "unchanged": 0, "errors": []}

    for index, row in enumerate(rows or [], start=1):
        sku = (row.get("sku") or "").strip()
        try:
            if not sku:
                raise SyncValidationError("SKU is required")
            qty = _non_negative_qty(row.get("quantity", 0))
            outcome = _upsert_row(db, row, sku, qty, batch_id, user_name)
        except (SyncValidationError, ConcurrentUpdateError, IntegrityError, ValueError) as e:
            db.rollback()
            summary["errors"].append({"row": index, "sku": sku or None, "error": str(e)})
            continue
        summary[outcome] += 1

    log.info(
        "Upload %s: %d created, %d updated, %d unchanged, %d errors",
        batch_id,
        summary["created"],
        summary["updated"],
        summary["unchanged"],
        len(summary["errors"]),
    )
    return summary


def _upsert_row(db: Session, row: dict, sku: str, qty: int, batch_id: str, user_name) -> str:
    name = (row.get("product_name") or "").strip() or sku

    def op():
        product = db.query(Product).filter(Product.sku == sku).populate_existing().first()
        if product is None:
            product = Product(
                sku=sku,
                product_name=name,
                category=row.get("category"),
                quantity=qty,
                image_url=row.get("image_url"),
                needs_sync=True,
                last_modified=utcnow(),
            )
            db.add(product)
            audit_service.record_stock_change(
                db,
                sku=sku,
                product_name=name,
                action="product_upload",
                old_quantity=0,
                new_quantity=qty,
                reason="New product upload",
                source="csv_upload",
                batch_id=batch_id,
                user_name=user_name,
                commit=False,
            )
            return "created"

        product.product_name = name
        if row.get("category") is not None:
            product.category = row.get("category")
        if row.get("image_url") is not None:
            product.image_url = row.get("image_url")
        if product.quantity == qty:
            return "unchanged"

        old = _apply(product, qty)
        audit_service.record_stock_change(
            db,
            sku=sku,
            product_name=name,
            action="stock_update",
            old_quantity=old,
            new_quantity=qty,
            reason="Bulk upload quantity change",
            source="csv_upload",
            batch_id=batch_id,
            user_name=user_name,
            commit=False,
        )
        return "updated"

    return _run_with_retry(db, op)
