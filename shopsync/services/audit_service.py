"""Audit service: writes and reads the append-only stock / sync history.

Every local quantity mutation and every remote push attempt lands here.
Reporting, the backup export and the destructive reset all go through this
module so the audit tables have exactly one owner.

Business Rules:
- quantity_change is always derived from old/new, never accepted from callers
- A sync attempt whose old quantity is unknown is stored with old=None, change=0
- user_name defaults to "system" for runs without an operator
- reset_audit_history clears all three audit tables and the sync markers on
  products/stores, but never deletes a product or a store
- import_snapshot is additive only: ids are dropped, existing SKUs/domains are
  skipped, nothing is overwritten
- Exported snapshots never contain access tokens

Called by: services/sync_service.py, services/stock_service.py,
           routers/audit.py, routers/data_management.py
Depends on: models (StockAudit, SyncAudit, StockLog, Product, Store)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..database import utcnow
from ..exceptions import SyncValidationError
from ..models import (
    STOCK_ACTIONS,
    SYNC_ACTIONS,
    SYNC_TYPES,
    Product,
    StockAudit,
    StockLog,
    Store,
    SyncAudit,
)
from ..utils import safe_int

log = logging.getLogger("shopsync.audit")

SNAPSHOT_VERSION = "1.0"


# ── Writers ───────────────────────────────────────────────────────────


def record_stock_change(
    db: Session,
    *,
    sku: str,
    product_name: str,
    action: str,
    old_quantity: int,
    new_quantity: int,
    reason: str = "Manual update",
    source: str = "manual_entry",
    batch_id: str | None = None,
    notes: str | None = None,
    user_name: str | None = None,
    commit: bool = True,
) -> StockAudit:
    """Append one StockAudit row. The delta is computed on insert."""
    if action not in STOCK_ACTIONS:
        raise ValueError(f"Unknown stock action: {action}")
    entry = StockAudit(
        sku=sku,
        product_name=product_name or sku,
        action=action,
        old_quantity=int(old_quantity),
        new_quantity=int(new_quantity),
        quantity_change=int(new_quantity) - int(old_quantity),
        reason=reason,
        source=source,
        batch_id=batch_id,
        notes=notes,
        user_name=user_name or "system",
    )
    db.add(entry)
    if commit:
        db.commit()
    else:
        db.flush()
    return entry


def record_stock_log(db: Session, *, sku: str, change: int, action: str) -> StockLog:
    """Plain movement line for stock-in/out. Caller owns the commit."""
    entry = StockLog(sku=sku, change=int(change), action=action)
    db.add(entry)
    return entry


def record_sync_attempt(
    db: Session,
    *,
    sku: str,
    product_name: str,
    store_name: str,
    store_domain: str,
    action: str,
    new_quantity: int,
    old_quantity: int | None = None,
    error_message: str | None = None,
    sync_type: str = "full",
    shopify_product_id=None,
    shopify_variant_id=None,
    sync_duration_ms: int = 0,
    user_name: str | None = None,
    commit: bool = True,
) -> SyncAudit:
    """Append one SyncAudit row for a (product, store) push attempt."""
    if action not in SYNC_ACTIONS:
        raise ValueError(f"Unknown sync action: {action}")
    if sync_type not in SYNC_TYPES:
        raise ValueError(f"Unknown sync type: {sync_type}")
    change = 0 if old_quantity is None else int(new_quantity) - int(old_quantity)
    entry = SyncAudit(
        sku=sku,
        product_name=product_name or sku,
        store_name=store_name,
        store_domain=store_domain,
        action=action,
        old_quantity=old_quantity,
        new_quantity=int(new_quantity),
        quantity_change=change,
        error_message=error_message,
        sync_type=sync_type,
        shopify_product_id=str(shopify_product_id) if shopify_product_id is not None else None,
        shopify_variant_id=str(shopify_variant_id) if shopify_variant_id is not None else None,
        sync_duration_ms=max(0, int(sync_duration_ms or 0)),
        user_name=user_name or "system",
    )
    db.add(entry)
    if commit:
        db.commit()
    else:
        db.flush()
    return entry


# ── Reads ─────────────────────────────────────────────────────────────


def _apply_filters(query, model, *, sku=None, action=None, start=None, end=None):
    if sku:
        query = query.filter(func.lower(model.sku) == sku.strip().lower())
    if action:
        query = query.filter(model.action == action)
    if start:
        query = query.filter(model.created_at >= start)
    if end:
        query = query.filter(model.created_at <= end)
    return query


def list_sync_audits(
    db: Session,
    *,
    sku: str | None = None,
    store_domain: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SyncAudit], int]:
    """Sync attempts, newest first. Returns (rows, total matching)."""
    query = _apply_filters(
        db.query(SyncAudit), SyncAudit, sku=sku, action=action, start=start, end=end
    )
    if store_domain:
        query = query.filter(SyncAudit.store_domain == store_domain)
    total = query.count()
    rows = (
        query.order_by(SyncAudit.created_at.desc(), SyncAudit.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )
    return rows, total


def list_stock_audits(
    db: Session,
    *,
    sku: str | None = None,
    action: str | None = None,
    batch_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockAudit], int]:
    query = _apply_filters(
        db.query(StockAudit), StockAudit, sku=sku, action=action, start=start, end=end
    )
    if batch_id:
        query = query.filter(StockAudit.batch_id == batch_id)
    total = query.count()
    rows = (
        query.order_by(StockAudit.created_at.desc(), StockAudit.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )
    return rows, total


def get_product_audit_trail(db: Session, sku: str, limit: int = 100) -> list[dict]:
    """Stock and sync history for one SKU merged into a single timeline, newest first."""
    stock_rows, _ = list_stock_audits(db, sku=sku, limit=limit)
    sync_rows, _ = list_sync_audits(db, sku=sku, limit=limit)
    trail = [{"kind": "stock", **stock_audit_to_dict(r)} for r in stock_rows]
    trail += [{"kind": "sync", **sync_audit_to_dict(r)} for r in sync_rows]
    trail.sort(key=lambda e: e["created_at"] or "", reverse=True)
    return trail[:limit]


def sync_stats(db: Session, since: datetime | None = None) -> dict:
    """Counts of sync attempts per action, plus the newest attempt time."""
    query = db.query(SyncAudit.action, func.count(SyncAudit.id))
    if since:
        query = query.filter(SyncAudit.created_at >= since)
    counts = {action: 0 for action in SYNC_ACTIONS}
    for action, n in query.group_by(SyncAudit.action).all():
        counts[action] = n
    last = db.query(func.max(SyncAudit.created_at)).scalar()
    return {
        "total": sum(counts.values()),
        "by_action": counts,
        "last_attempt_at": _iso(last),
    }


# ── Serialization ─────────────────────────────────────────────────────


def _iso(value) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def stock_audit_to_dict(row: StockAudit) -> dict:
    return {
        "id": row.id,
        "sku": row.sku,
        "product_name": row.product_name,
        "action": row.action,
        "old_quantity": row.old_quantity,
        "new_quantity": row.new_quantity,
        "quantity_change": row.quantity_change,
        "reason": row.reason,
        "source": row.source,
        "batch_id": row.batch_id,
        "notes": row.notes,
        "user_name": row.user_name,
        "created_at": _iso(row.created_at),
    }


def sync_audit_to_dict(row: SyncAudit) -> dict:
    return {
        "id": row.id,
        "sku": row.sku,
        "product_name": row.product_name,
        "store_name": row.store_name,
        "store_domain": row.store_domain,
        "action": row.action,
        "old_quantity": row.old_quantity,
        "new_quantity": row.new_quantity,
        "quantity_change": row.quantity_change,
        "error_message": row.error_message,
        "sync_type": row.sync_type,
        "shopify_product_id": row.shopify_product_id,
        "shopify_variant_id": row.shopify_variant_id,
        "sync_duration_ms": row.sync_duration_ms,
        "user_name": row.user_name,
        "created_at": _iso(row.created_at),
    }


def stock_log_to_dict(row: StockLog) -> dict:
    return {
        "id": row.id,
        "sku": row.sku,
        "change": row.change,
        "action": row.action,
        "created_at": _iso(row.created_at),
    }


def _product_to_dict(p: Product) -> dict:
    return {
        "id": p.id,
        "sku": p.sku,
        "product_name": p.product_name,
        "category": p.category,
        "quantity": p.quantity,
        "image_url": p.image_url,
        "needs_sync": p.needs_sync,
        "last_synced": _iso(p.last_synced),
        "last_modified": _iso(p.last_modified),
        "created_at": _iso(p.created_at),
    }


def _store_to_dict(s: Store) -> dict:
    return {
        "id": s.id,
        "store_name": s.store_name,
        "store_domain": s.store_domain,
        "connected": s.connected,
        "last_sync": _iso(s.last_sync),
        "created_at": _iso(s.created_at),
    }


# ── Data management ───────────────────────────────────────────────────


def reset_audit_history(db: Session) -> dict:
    """Delete every audit row and clear sync markers. Products and stores survive."""
    stock_deleted = db.query(StockAudit).delete(synchronize_session=False)
    sync_deleted = db.query(SyncAudit).delete(synchronize_session=False)
    logs_deleted = db.query(StockLog).delete(synchronize_session=False)

    # Core UPDATE so the product version counter is not involved
    products_reset = db.execute(
        update(Product.__table__).values(needs_sync=False, last_synced=None)
    ).rowcount
    stores_reset = db.execute(update(Store.__table__).values(last_sync=None)).rowcount
    db.commit()
    db.expire_all()

    result = {
        "stock_audits_deleted": stock_deleted,
        "sync_audits_deleted": sync_deleted,
        "stock_logs_deleted": logs_deleted,
        "products_reset": products_reset,
        "stores_reset": stores_reset,
        "products_preserved": db.query(func.count(Product.id)).scalar() or 0,
        "stores_preserved": db.query(func.count(Store.id)).scalar() or 0,
    }
    log.warning(
        "Audit history reset: %d stock audits, %d sync audits, %d stock logs deleted",
        stock_deleted,
        sync_deleted,
        logs_deleted,
    )
    return result


def export_all(db: Session) -> dict:
    """Full backup snapshot. Store access tokens are never included."""
    products = [_product_to_dict(p) for p in db.query(Product).order_by(Product.id).all()]
    stores = [_store_to_dict(s) for s in db.query(Store).order_by(Store.id).all()]
    stock_audits = [
        stock_audit_to_dict(r) for r in db.query(StockAudit).order_by(StockAudit.id).all()
    ]
    sync_audits = [
        sync_audit_to_dict(r) for r in db.query(SyncAudit).order_by(SyncAudit.id).all()
    ]
    stock_logs = [stock_log_to_dict(r) for r in db.query(StockLog).order_by(StockLog.id).all()]

    data = {
        "products": products,
        "stores": stores,
        "stock_audits": stock_audits,
        "sync_audits": sync_audits,
        "stock_logs": stock_logs,
    }
    return {
        "metadata": {
            "export_date": utcnow().isoformat(),
            "version": SNAPSHOT_VERSION,
            "total_records": sum(len(v) for v in data.values()),
        },
        "data": data,
    }


def _parse_dt(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


_STOCK_FIELDS = (
    "sku", "product_name", "action", "old_quantity", "new_quantity",
    "reason", "source", "batch_id", "notes", "user_name",
)
_SYNC_FIELDS = (
    "sku", "product_name", "store_name", "store_domain", "action", "old_quantity",
    "new_quantity", "error_message", "sync_type", "shopify_product_id",
    "shopify_variant_id", "sync_duration_ms", "user_name",
)
_STOCK_INT_FIELDS = {"old_quantity", "new_quantity"}
_SYNC_INT_FIELDS = {"old_quantity", "new_quantity", "sync_duration_ms"}

# Marks a value that is present but not an integer
_BAD = object()


def _int_or_bad(value, default=None):
    if value is None or value == "":
        return default
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        return _BAD
    number = safe_int(value)
    return _BAD if number is None else number


def _records(data: dict, key: str) -> list[dict]:
    """Rows of one snapshot collection; non-dict entries become empty rows and get skipped."""
    rows = data.get(key) or []
    if not isinstance(rows, list):
        return []
    return [row if isinstance(row, dict) else {} for row in rows]


def _clean_fields(raw: dict, names, int_names) -> dict | None:
    """Known columns of one audit row, coerced to their column types. None if a number is junk."""
    fields = {}
    for name in names:
        value = raw.get(name)
        if value is None:
            continue
        if name in int_names:
            value = _int_or_bad(value)
            if value is _BAD:
                return None
            if value is None:
                continue
        elif not isinstance(value, str):
            value = str(value)
        fields[name] = value
    return fields


def import_snapshot(db: Session, snapshot: dict) -> dict:
    """Additive restore of an export_all() snapshot.

    Identity fields are dropped so imported rows get fresh ids. Products and
    stores whose SKU / domain already exist are skipped. Imported stores come
    back disconnected and without a token; they must be re-credentialed.
    Rows with a non-integer quantity, unknown action or no SKU are skipped
    and counted under "skipped".
    Returns the number of rows inserted per collection.
    """
    data = (snapshot or {}).get("data") or {}
    if not isinstance(data, dict):
        raise SyncValidationError("Invalid backup file: data must be an object")
    counts = {
        "products": 0,
        "stores": 0,
        "stock_audits": 0,
        "sync_audits": 0,
        "stock_logs": 0,
        "skipped": 0,
    }

    existing_skus = {s for (s,) in db.query(Product.sku).all()}
    for raw in _records(data, "products"):
        sku = str(raw.get("sku") or "").strip()
        quantity = _int_or_bad(raw.get("quantity"), default=0)
        if not sku or sku in existing_skus or quantity is _BAD:
            counts["skipped"] += 1
            continue
        db.add(
            Product(
                sku=sku,
                product_name=raw.get("product_name") or sku,
                category=raw.get("category"),
                quantity=max(0, quantity),
                image_url=raw.get("image_url"),
                needs_sync=True,
                last_modified=utcnow(),
            )
        )
        existing_skus.add(sku)
        counts["products"] += 1

    existing_domains = {d for (d,) in db.query(Store.store_domain).all()}
    for raw in _records(data, "stores"):
        domain = str(raw.get("store_domain") or "").strip()
        if not domain or domain in existing_domains:
            counts["skipped"] += 1
            continue
        db.add(
            Store(
                store_name=raw.get("store_name") or domain,
                store_domain=domain,
                access_token="",
                connected=False,
            )
        )
        existing_domains.add(domain)
        counts["stores"] += 1

    for raw in _records(data, "stock_audits"):
        fields = _clean_fields(raw, _STOCK_FIELDS, _STOCK_INT_FIELDS)
        if fields is None or "sku" not in fields or fields.get("action") not in STOCK_ACTIONS:
            counts["skipped"] += 1
            continue
        fields.setdefault("product_name", fields["sku"])
        fields.setdefault("old_quantity", 0)
        fields.setdefault("new_quantity", 0)
        db.add(StockAudit(**fields, created_at=_parse_dt(raw.get("created_at")) or utcnow()))
        counts["stock_audits"] += 1

    for raw in _records(data, "sync_audits"):
        fields = _clean_fields(raw, _SYNC_FIELDS, _SYNC_INT_FIELDS)
        if fields is None or "sku" not in fields or fields.get("action") not in SYNC_ACTIONS:
            counts["skipped"] += 1
            continue
        if fields.get("sync_type", "full") not in SYNC_TYPES:
            counts["skipped"] += 1
            continue
        fields.setdefault("product_name", fields["sku"])
        fields.setdefault("store_name", fields.get("store_domain", ""))
        fields.setdefault("store_domain", "")
        fields.setdefault("new_quantity", 0)
        db.add(SyncAudit(**fields, created_at=_parse_dt(raw.get("created_at")) or utcnow()))
        counts["sync_audits"] += 1

    for raw in _records(data, "stock_logs"):
        change = _int_or_bad(raw.get("change"))
        if not raw.get("sku") or change is None or change is _BAD:
            counts["skipped"] += 1
            continue
        db.add(
            StockLog(
                sku=str(raw["sku"]),
                change=change,
                action=raw.get("action") or "Stock-In",
                created_at=_parse_dt(raw.get("created_at")) or utcnow(),
            )
        )
        counts["stock_logs"] += 1

    db.commit()
    log.info("Snapshot imported: %s", counts)
    return counts
