"""Database models: re-exports all models.

Import from here:  from shopsync.models import Product, Store, ...
Or from submodules: from shopsync.models.catalog import Product
"""

from .base import Base  # noqa: F401

# Catalog: local products & connected Shopify stores
from .catalog import Product, Store  # noqa: F401

# Audit trail: stock movements & sync attempts
from .audit import (  # noqa: F401
    STOCK_ACTIONS,
    STOCK_SOURCES,
    SYNC_ACTIONS,
    STOCK_LOG_ACTIONS,
    SYNC_TYPES,
    StockAudit,
    StockLog,
    SyncAudit,
)
