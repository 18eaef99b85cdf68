"""Audit models: append-only stock movement, stock log and sync attempt rows.

Rows are never updated. quantity_change is derived from old/new on insert
so a caller can never record a delta that disagrees with the quantities.
"""

from sqlalchemy import Column, Index, Integer, String, Text, event

from ..database import UTCDateTime, utcnow
from .base import Base

STOCK_ACTIONS = ("stock_in", "stock_out", "stock_update", "product_upload")
STOCK_SOURCES = ("csv_upload", "manual_entry", "api_update", "bulk_update")
SYNC_ACTIONS = ("sync_success", "sync_failed", "sync_skipped")
SYNC_TYPES = ("full", "single", "multi")
STOCK_LOG_ACTIONS = ("Stock-In", "Stock-Out")


class StockAudit(Base):
    """One local quantity mutation (stock-in/out, manual edit, upload)."""

    __tablename__ = "stock_audits"
    id = Column(Integer, primary_key=True)
    sku = Column(String(100), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    action = Column(String(20), nullable=False)
    old_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False)
    reason = Column(String(255), default="Manual update")
    source = Column(String(20), default="manual_entry")
    batch_id = Column(String(64))
    notes = Column(Text)
    user_name = Column(String(255), default="system")
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_stock_audit_sku_time", "sku", "created_at"),
        Index("ix_stock_audit_action_time", "action", "created_at"),
        Index("ix_stock_audit_batch", "batch_id"),
    )


class SyncAudit(Base):
    """One push attempt of a product's quantity to one Shopify store."""

    __tablename__ = "sync_audits"
    id = Column(Integer, primary_key=True)
    sku = Column(String(100), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    store_name = Column(String(255), nullable=False)
    store_domain = Column(String(255), nullable=False)
    action = Column(String(20), nullable=False)
    old_quantity = Column(Integer)  # unknown when the lookup failed
    new_quantity = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    sync_type = Column(String(10), nullable=False, default="full")
    shopify_product_id = Column(String(50))
    shopify_variant_id = Column(String(50))
    sync_duration_ms = Column(Integer, default=0)
    user_name = Column(String(255), default="system")
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sync_audit_sku_time", "sku", "created_at"),
        Index("ix_sync_audit_store_time", "store_domain", "created_at"),
        Index("ix_sync_audit_action_time", "action", "created_at"),
    )


class StockLog(Base):
    """Bare movement ledger written by stock-in/stock-out alongside StockAudit."""

    __tablename__ = "stock_logs"
    id = Column(Integer, primary_key=True)
    sku = Column(String(100), nullable=False)
    change = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)  # "Stock-In" | "Stock-Out"
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_stock_log_sku_action", "sku", "action"),
        Index("ix_stock_log_time", "created_at"),
    )


@event.listens_for(StockAudit, "before_insert")
def _stock_delta(mapper, connection, target):
    target.quantity_change = target.new_quantity - target.old_quantity


@event.listens_for(SyncAudit, "before_insert")
def _sync_delta(mapper, connection, target):
    if target.old_quantity is None:
        target.quantity_change = 0
    else:
        target.quantity_change = target.new_quantity - target.old_quantity


@event.listens_for(StockAudit, "before_update")
@event.listens_for(SyncAudit, "before_update")
@event.listens_for(StockLog, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"{target.__class__.__name__} rows are append-only")
