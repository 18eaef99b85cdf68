"""Typed errors raised by the catalog client and the sync/stock services.

Routers translate these to HTTP responses in main.py; the sync executor
never lets them escape a single (product, store) unit of work.
"""


class ShopSyncError(Exception):
    """Base class for every ShopSync error."""

    status_code = 500


class RemoteApiError(ShopSyncError):
    """Shopify answered non-2xx, the transport failed, or the payload was junk.

    status_code is the remote HTTP status, or None when no response arrived.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.remote_status = status_code
        self.body = body

    def __str__(self) -> str:
        base = self.args[0] if self.args else "Shopify API error"
        if self.remote_status is None:
            return base
        detail = f" - {self.body[:300]}" if self.body else ""
        return f"{base}: {self.remote_status}{detail}"


class ConnectivityError(ShopSyncError):
    """Store unreachable or its credentials were rejected by the connectivity check."""

    def __init__(self, store_domain: str, reason: str):
        super().__init__(f"Connection failed for {store_domain}: {reason}")
        self.store_domain = store_domain
        self.reason = reason


class SyncValidationError(ShopSyncError):
    """Bad input to a sync trigger or stock movement, rejected before any remote call."""

    status_code = 400


class ProductNotFoundError(ShopSyncError):
    status_code = 404

    def __init__(self, sku: str):
        super().__init__(f"Product with SKU {sku!r} not found")
        self.sku = sku


class StoreNotFoundError(ShopSyncError):
    status_code = 404

    def __init__(self, store_id):
        super().__init__(f"Store {store_id} not found")
        self.store_id = store_id


class DuplicateStoreError(ShopSyncError):
    status_code = 400


class InsufficientStockError(ShopSyncError):
    status_code = 400

    def __init__(self, sku: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for SKU {sku}. Available: {available}, Requested: {requested}"
        )
        self.sku = sku
        self.available = available
        self.requested = requested


class ConcurrentUpdateError(ShopSyncError):
    """Optimistic lock on Product.version lost on every retry."""

    status_code = 409
