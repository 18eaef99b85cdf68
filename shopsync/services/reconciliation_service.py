"""Reconciliation engine: local vs Shopify quantity comparison view.

For each local product, asks every connected store for the variants carrying
its SKU, sums their quantities across variants, locations and stores, and
classifies the drift. The result is a read-time projection; nothing here is
persisted or cached.

Business Rules:
- SKU matching against Shopify is trimmed and case-insensitive
- difference = local quantity - total Shopify quantity, for every row
- Status: not_found (no variant anywhere), in_sync (diff 0),
  local_higher (diff > 0), shopify_higher (diff < 0)
- not_found rows report difference = local quantity (remote total is 0)
- One store failing a lookup marks only that store's entry with `error`;
  the other stores for the same product are still evaluated
- "smart" ordering puts products found in at least one store first, then
  sorts by name; status filters and smart ordering need the remote reads, so
  they evaluate the whole filtered set before paging
- Totals always describe the filtered set, not the whole catalog

Called by: routers/inventory.py
Depends on: connectors/shopify.py, models (Product, Store)
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.shopify import RemoteVariant, client_for_store
from ..exceptions import RemoteApiError, SyncValidationError
from ..models import Product, Store

log = logging.getLogger("shopsync.reconciliation")

STATUSES = ("in_sync", "local_higher", "shopify_higher", "not_found")
SORTS = ("smart", "name", "sku", "quantity", "difference", "status")
# Sorts that need remote quantities before the page can be cut
_EVALUATED_SORTS = {"smart", "difference", "status"}


def classify(total_variants: int, difference: int) -> str:
    """Comparison status from (found, difference). Pure."""
    if total_variants == 0:
        return "not_found"
    if difference > 0:
        return "local_higher"
    if difference < 0:
        return "shopify_higher"
    return "in_sync"


@dataclass
class StoreFinding:
    """One store's answer for one SKU."""

    store_id: int
    store_name: str
    store_domain: str
    found: bool = False
    quantity: int = 0
    variants: list[RemoteVariant] = field(default_factory=list)
    error: str | None = None

    @property
    def variant_count(self) -> int:
        return len(self.variants)

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "store_name": self.store_name,
            "store_domain": self.store_domain,
            "found": self.found,
            "quantity": self.quantity,
            "variant_count": self.variant_count,
            "variants": [
                {
                    "product_id": v.product_id,
                    "variant_id": v.variant_id,
                    "inventory_item_id": v.inventory_item_id,
                    "sku": v.sku,
                    "title": v.title,
                    "product_title": v.product_title,
                    "quantity": v.quantity,
                    "locations": [
                        {"location_id": lvl.location_id, "quantity": lvl.quantity}
                        for lvl in v.locations
                    ],
                }
                for v in self.variants
            ],
            "error": self.error,
        }


@dataclass
class InventoryComparison:
    product_id: int
    sku: str
    product_name: str
    category: str | None
    image_url: str | None
    local_quantity: int
    needs_sync: bool
    last_synced: object = None
    stores: list[StoreFinding] = field(default_factory=list)

    @property
    def total_shopify_quantity(self) -> int:
        return sum(s.quantity for s in self.stores)

    @property
    def total_variants_found(self) -> int:
        return sum(s.variant_count for s in self.stores)

    @property
    def difference(self) -> int:
        return self.local_quantity - self.total_shopify_quantity

    @property
    def status(self) -> str:
        return classify(self.total_variants_found, self.difference)

    @property
    def found_anywhere(self) -> bool:
        return self.total_variants_found > 0

    def to_dict(self) -> dict:
        return {
            "id": self.product_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "category": self.category,
            "image_url": self.image_url,
            "local_quantity": self.local_quantity,
            "needs_sync": self.needs_sync,
            "last_synced": self.last_synced.isoformat() if self.last_synced else None,
            "shopify_quantities": {str(s.store_id): s.to_dict() for s in self.stores},
            "total_shopify_quantity": self.total_shopify_quantity,
            "total_variants_found": self.total_variants_found,
            "difference": self.difference,
            "status": self.status,
        }


class ReconciliationEngine:
    """Builds InventoryComparison rows for a filtered, sorted, paged product set."""

    def __init__(self, db: Session, *, client_factory=client_for_store):
        self.db = db
        self.client_factory = client_factory

    # ── Per product ───────────────────────────────────────────────────

    async def _lookup(self, client, store: Store, sku: str) -> StoreFinding:
        finding = StoreFinding(store.id, store.store_name, store.store_domain)
        try:
            inventory = await client.get_store_inventory(sku)
        except RemoteApiError as e:
            log.warning("Comparison lookup for %s in %s failed: %s", sku, store.store_domain, e)
            finding.error = str(e)
            return finding
        except Exception as e:
            log.exception("Comparison lookup for %s in %s crashed", sku, store.store_domain)
            finding.error = str(e) or e.__class__.__name__
            return finding

        finding.found = inventory.found
        finding.quantity = inventory.quantity
        finding.variants = inventory.variants
        return finding

    async def compare_product(self, product: Product, stores: list[Store], clients: dict) -> InventoryComparison:
        """Fan one SKU out to every store; stores answer concurrently."""
        findings = await asyncio.gather(
            *(self._lookup(clients[s.id], s, product.sku) for s in stores)
        )
        return InventoryComparison(
            product_id=product.id,
            sku=product.sku,
            product_name=product.product_name,
            category=product.category,
            image_url=product.image_url,
            local_quantity=product.quantity,
            needs_sync=bool(product.needs_sync),
            last_synced=product.last_synced,
            stores=list(findings),
        )

    # ── Views ─────────────────────────────────────────────────────────

    def _filtered_query(self, search: str | None, category: str | None):
        query = self.db.query(Product)
        if search:
            term = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(func.lower(Product.sku).like(term), func.lower(Product.product_name).like(term))
            )
        if category:
            query = query.filter(Product.category == category)
        return query

    @staticmethod
    def _local_order(query, sort_by: str, descending: bool):
        column = {
            "name": Product.product_name,
            "sku": Product.sku,
            "quantity": Product.quantity,
        }.get(sort_by, Product.product_name)
        column = column.desc() if descending else column.asc()
        return query.order_by(column, Product.id.asc())

    @staticmethod
    def _sort_evaluated(items: list[InventoryComparison], sort_by: str, descending: bool):
        if sort_by == "difference":
            items.sort(key=lambda c: (c.difference, c.product_name.lower()), reverse=descending)
        elif sort_by == "status":
            order = {s: i for i, s in enumerate(STATUSES)}
            items.sort(key=lambda c: (order[c.status], c.product_name.lower()), reverse=descending)
        else:
            # smart: matched first, then name
            items.sort(key=lambda c: (not c.found_anywhere, c.product_name.lower()))
        return items

    async def compare(
        self,
        *,
        page: int = 1,
        limit: int | None = None,
        search: str | None = None,
        status: str | None = None,
        category: str | None = None,
        sort_by: str = "smart",
        sort_order: str = "asc",
    ) -> dict:
        """Comparison page: {items, pagination, stats}."""
        if status and status not in STATUSES:
            raise SyncValidationError(f"Unknown status filter: {status}")
        if sort_by not in SORTS:
            raise SyncValidationError(f"Unknown sort: {sort_by}")
        page = max(1, int(page or 1))
        limit = max(1, min(int(limit or settings.comparison_page_size), 200))
        descending = sort_order == "desc"

        stores = (
            self.db.query(Store).filter(Store.connected.is_(True)).order_by(Store.id).all()
        )
        clients = {s.id: self.client_factory(s) for s in stores}
        query = self._filtered_query(search, category)
        filtered_total = query.count()
        needs_sync_total = query.filter(Product.needs_sync.is_(True)).count()

        if status or sort_by in _EVALUATED_SORTS:
            products = self._local_order(query, "name", False).all()
            evaluated = [await self.compare_product(p, stores, clients) for p in products]
            if status:
                evaluated = [c for c in evaluated if c.status == status]
            self._sort_evaluated(evaluated, sort_by, descending)
            total = len(evaluated)
            start = (page - 1) * limit
            items = evaluated[start : start + limit]
            stats_basis = evaluated
        else:
            products = (
                self._local_order(query, sort_by, descending)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            items = [await self.compare_product(p, stores, clients) for p in products]
            total = filtered_total
            stats_basis = items

        log.info(
            "Comparison page %d: %d items of %d (%d stores, sort=%s, status=%s)",
            page,
            len(items),
            total,
            len(stores),
            sort_by,
            status,
        )
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "items": [c.to_dict() for c in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
            "stats": aggregate_stats(stats_basis, filtered_total, needs_sync_total),
            "stores": [
                {"id": s.id, "store_name": s.store_name, "store_domain": s.store_domain}
                for s in stores
            ],
        }


def aggregate_stats(items: list[InventoryComparison], total_products: int, needs_sync: int) -> dict:
    counts = {s: 0 for s in STATUSES}
    for c in items:
        counts[c.status] += 1
    return {
        "total_products": total_products,
        "modified_products": needs_sync,
        "evaluated": len(items),
        "by_status": counts,
    }
