"""Sync executor: push local quantities to every connected Shopify store.

Three entry shapes share one inner routine: single (one SKU), multi (a list
of SKUs) and all (the whole catalog). Each (product, store) pair is one unit
of work whose outcome is a SyncSuccess or SyncFailure value; no unit can
abort the run.

Business Rules:
- Local inventory is the source of truth; sync is one-directional
- Per store: check connectivity first. A failed check skips every product for
  that store, sets connected=False and writes ONE sync_failed summary record
- SKU missing from a store is a sync_failed record with an explanation
- A product already at the target quantity is still pushed and logged as
  sync_success with delta 0
- Every remote call for a store goes through that store's TokenBucket; a
  separate, longer pause separates consecutive stores in serial mode
- Store.last_sync is stamped after the store's product list is finished
- needs_sync is cleared only for products that succeeded on every store,
  and only while the local quantity still equals the pushed value
- Operators can flip needs_sync by hand (one SKU, all products, or all
  up to date); those writes never touch the product version counter
- A CancellationToken is checked between units; a cancelled run returns its
  partial summary with cancelled=True

Called by: routers/sync.py, services/sync_jobs.py
Depends on: connectors/shopify.py, rate_limit.py, services/audit_service.py,
            services/store_service.py
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.shopify import client_for_store
from ..database import utcnow
from ..exceptions import (
    ConnectivityError,
    ProductNotFoundError,
    RemoteApiError,
    SyncValidationError,
)
from ..models import Product, Store
from ..rate_limit import store_limiters
from . import audit_service
from .store_service import connected_stores

log = logging.getLogger("shopsync.sync")

CONNECTIVITY_SKU = "*"

# Core table: sync bookkeeping must not touch the optimistic-lock version
_products = Product.__table__


# ── Unit outcomes ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class SyncSuccess:
    sku: str
    store_domain: str
    old_quantity: int
    new_quantity: int
    shopify_product_id: int | None = None
    shopify_variant_id: int | None = None
    duration_ms: int = 0
    ok = True

    @property
    def quantity_change(self) -> int:
        return self.new_quantity - self.old_quantity


@dataclass(frozen=True)
class SyncFailure:
    sku: str
    store_domain: str
    new_quantity: int
    error: str
    old_quantity: int | None = None
    not_found: bool = False
    duration_ms: int = 0
    ok = False


SyncOutcome = SyncSuccess | SyncFailure


class CancellationToken:
    """Flag checked between units of work."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# ── Run summaries ─────────────────────────────────────────────────────


@dataclass
class StoreRunSummary:
    store_id: int
    store_name: str
    store_domain: str
    attempted: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    connected: bool = True
    error: str | None = None
    outcomes: list = field(default_factory=list)

    def add(self, outcome: SyncOutcome) -> None:
        self.attempted += 1
        self.outcomes.append(outcome)
        if outcome.ok:
            self.updated += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "store_name": self.store_name,
            "store_domain": self.store_domain,
            "attempted": self.attempted,
            "updated": self.updated,
            "failed": self.failed,
            "skipped": self.skipped,
            "connected": self.connected,
            "error": self.error,
            "errors": [
                {"sku": o.sku, "error": o.error} for o in self.outcomes if not o.ok
            ],
        }


@dataclass
class RunSummary:
    sync_type: str
    products_total: int = 0
    stores: list[StoreRunSummary] = field(default_factory=list)
    missing_skus: list[str] = field(default_factory=list)
    cancelled: bool = False
    started_at: object = None
    finished_at: object = None

    @property
    def stores_processed(self) -> int:
        return len(self.stores)

    @property
    def products_attempted(self) -> int:
        return sum(s.attempted for s in self.stores)

    @property
    def products_updated(self) -> int:
        return sum(s.updated for s in self.stores)

    @property
    def products_failed(self) -> int:
        return sum(s.failed for s in self.stores)

    @property
    def products_skipped(self) -> int:
        return sum(s.skipped for s in self.stores)

    @property
    def duration_ms(self) -> int:
        if not self.started_at or not self.finished_at:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "sync_type": self.sync_type,
            "products_total": self.products_total,
            "stores_processed": self.stores_processed,
            "products_attempted": self.products_attempted,
            "products_updated": self.products_updated,
            "products_failed": self.products_failed,
            "products_skipped": self.products_skipped,
            "missing_skus": list(self.missing_skus),
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "stores": [s.to_dict() for s in self.stores],
        }


@dataclass(frozen=True)
class _Item:
    """Product fields frozen at run start; the pushed quantity is this one."""

    id: int
    sku: str
    product_name: str
    quantity: int


# ── Executor ──────────────────────────────────────────────────────────


def clean_skus(skus) -> list[str]:
    seen: list[str] = []
    for sku in skus or []:
        sku = str(sku or "").strip()
        if sku and sku not in seen:
            seen.append(sku)
    return seen


class SyncExecutor:
    """Drives ShopifyClient per store under the per-store rate limiter."""

    def __init__(
        self,
        db: Session,
        *,
        client_factory=client_for_store,
        limiters=None,
        store_delay: float | None = None,
        parallel_stores: bool | None = None,
        sleep=asyncio.sleep,
        user_name: str | None = None,
    ):
        self.db = db
        self.client_factory = client_factory
        self.limiters = limiters if limiters is not None else store_limiters
        self.store_delay = (
            store_delay if store_delay is not None else settings.sync_store_delay_ms / 1000
        )
        self.parallel_stores = (
            parallel_stores if parallel_stores is not None else settings.sync_parallel_stores
        )
        self._sleep = sleep
        self.user_name = user_name or "system"

    # ── Entry points ──────────────────────────────────────────────────

    async def sync_single(self, sku: str, *, cancel: CancellationToken | None = None) -> RunSummary:
        sku = (sku or "").strip()
        if not sku:
            raise SyncValidationError("SKU is required")
        product = self.db.query(Product).filter(Product.sku == sku).first()
        if not product:
            raise ProductNotFoundError(sku)
        return await self._run([product], "single", cancel)

    async def sync_multi(self, skus, *, cancel: CancellationToken | None = None) -> RunSummary:
        wanted = clean_skus(skus)
        if not wanted:
            raise SyncValidationError("At least one SKU is required")
        rows = {p.sku: p for p in self.db.query(Product).filter(Product.sku.in_(wanted)).all()}
        products = [rows[s] for s in wanted if s in rows]
        if not products:
            raise SyncValidationError("None of the requested SKUs exist locally")
        missing = [s for s in wanted if s not in rows]
        return await self._run(products, "multi", cancel, missing=missing)

    async def sync_all(self, *, cancel: CancellationToken | None = None) -> RunSummary:
        products = self.db.query(Product).order_by(Product.id).all()
        if not products:
            raise SyncValidationError("No products to sync")
        return await self._run(products, "full", cancel)

    # ── Run ───────────────────────────────────────────────────────────

    async def _run(self, products, sync_type: str, cancel, missing=None) -> RunSummary:
        stores = connected_stores(self.db)
        if not stores:
            raise SyncValidationError("No connected stores found")
        cancel = cancel or CancellationToken()
        items = [_Item(p.id, p.sku, p.product_name, p.quantity) for p in products]
        summary = RunSummary(
            sync_type=sync_type,
            products_total=len(items),
            missing_skus=list(missing or []),
            started_at=utcnow(),
        )
        log.info(
            "Sync %s started: %d products x %d stores", sync_type, len(items), len(stores)
        )

        if self.parallel_stores:
            results = await asyncio.gather(
                *(self._run_store(s, items, sync_type, cancel) for s in stores)
            )
            summary.stores.extend(results)
        else:
            for index, store in enumerate(stores):
                if cancel.cancelled:
                    break
                if index > 0 and self.store_delay:
                    await self._sleep(self.store_delay)
                summary.stores.append(await self._run_store(store, items, sync_type, cancel))

        self._clear_needs_sync(items, summary, len(stores))
        summary.cancelled = cancel.cancelled
        summary.finished_at = utcnow()
        log.info(
            "Sync %s finished: %d updated, %d failed, %d skipped across %d stores%s",
            sync_type,
            summary.products_updated,
            summary.products_failed,
            summary.products_skipped,
            summary.stores_processed,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    async def _run_store(self, store: Store, items: list[_Item], sync_type: str, cancel) -> StoreRunSummary:
        result = StoreRunSummary(store.id, store.store_name, store.store_domain)
        client = self.client_factory(store)
        limiter = self.limiters.get(store.store_domain)

        await limiter.acquire()
        check = await client.test_connectivity()
        if not check.ok:
            self._record_connectivity_failure(store, items, sync_type, check.error, result)
            return result

        log.info("Sync %s: store %s, %d products", sync_type, store.store_domain, len(items))
        for item in items:
            if cancel.cancelled:
                log.info("Sync cancelled in store %s", store.store_domain)
                break
            outcome = await self._sync_unit(client, limiter, store, item)
            result.add(outcome)
            self._record_outcome(store, item, outcome, sync_type)

        result.skipped = len(items) - result.attempted
        store.last_sync = utcnow()
        self._commit()
        return result

    async def _sync_unit(self, client, limiter, store: Store, item: _Item) -> SyncOutcome:
        """One (product, store) push. Never raises."""
        started = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        try:
            await limiter.acquire()
            match = await client.find_variant_by_sku(item.sku)
            if match is None:
                return SyncFailure(
                    sku=item.sku,
                    store_domain=store.store_domain,
                    new_quantity=item.quantity,
                    error=f"SKU {item.sku} not found in store {store.store_name}",
                    not_found=True,
                    duration_ms=elapsed(),
                )

            await limiter.acquire()
            await client.set_inventory_level(
                item.quantity,
                inventory_item_id=match.inventory_item_id,
                variant_id=match.variant_id,
            )
            outcome = SyncSuccess(
                sku=item.sku,
                store_domain=store.store_domain,
                old_quantity=match.current_quantity,
                new_quantity=item.quantity,
                shopify_product_id=match.product_id,
                shopify_variant_id=match.variant_id,
                duration_ms=elapsed(),
            )
            log.info(
                "Synced %s to %s: %d -> %d (%dms)",
                item.sku,
                store.store_domain,
                outcome.old_quantity,
                outcome.new_quantity,
                outcome.duration_ms,
            )
            return outcome
        except RemoteApiError as e:
            log.warning("Sync %s to %s failed: %s", item.sku, store.store_domain, e)
            error = str(e)
        except Exception as e:
            log.exception("Sync %s to %s crashed", item.sku, store.store_domain)
            error = str(e) or e.__class__.__name__
        return SyncFailure(
            sku=item.sku,
            store_domain=store.store_domain,
            new_quantity=item.quantity,
            error=error,
            duration_ms=elapsed(),
        )

    # ── Bookkeeping ───────────────────────────────────────────────────

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Sync bookkeeping commit failed")

    def _record_outcome(self, store: Store, item: _Item, outcome: SyncOutcome, sync_type: str) -> None:
        fields = dict(
            sku=item.sku,
            product_name=item.product_name,
            store_name=store.store_name,
            store_domain=store.store_domain,
            new_quantity=outcome.new_quantity,
            old_quantity=outcome.old_quantity,
            sync_type=sync_type,
            sync_duration_ms=outcome.duration_ms,
            user_name=self.user_name,
            commit=False,
        )
        if outcome.ok:
            fields.update(
                action="sync_success",
                shopify_product_id=outcome.shopify_product_id,
                shopify_variant_id=outcome.shopify_variant_id,
            )
        else:
            fields.update(action="sync_failed", error_message=outcome.error)
        try:
            audit_service.record_sync_attempt(self.db, **fields)
            if outcome.ok:
                self.db.execute(
                    update(_products)
                    .where(_products.c.id == item.id)
                    .values(last_synced=utcnow())
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Could not record sync outcome for %s in %s", item.sku, store.store_domain)

    def _record_connectivity_failure(self, store, items, sync_type, reason, result) -> None:
        error = ConnectivityError(store.store_domain, reason or "connectivity check failed")
        log.warning("Skipping store %s: %s", store.store_domain, error)
        result.connected = False
        result.error = str(error)
        result.skipped = len(items)
        store.connected = False
        try:
            audit_service.record_sync_attempt(
                self.db,
                sku=CONNECTIVITY_SKU,
                product_name=f"{len(items)} products skipped",
                store_name=store.store_name,
                store_domain=store.store_domain,
                action="sync_failed",
                new_quantity=0,
                error_message=str(error),
                sync_type=sync_type,
                user_name=self.user_name,
                commit=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Could not record connectivity failure for %s", store.store_domain)

    def _clear_needs_sync(self, items: list[_Item], summary: RunSummary, store_count: int) -> None:
        """needs_sync=False for products that succeeded in every connected store of the run."""
        if not store_count:
            return
        succeeded: dict[str, int] = {}
        for store_result in summary.stores:
            for outcome in store_result.outcomes:
                if outcome.ok:
                    succeeded[outcome.sku] = succeeded.get(outcome.sku, 0) + 1
        done = [i for i in items if succeeded.get(i.sku, 0) == store_count]
        for item in done:
            # The local quantity may have moved during the run; only the pushed value counts
            self.db.execute(
                update(_products)
                .where(_products.c.id == item.id, _products.c.quantity == item.quantity)
                .values(needs_sync=False)
            )
        if done:
            self._commit()


# ── Status ────────────────────────────────────────────────────────────


def sync_status(db: Session) -> dict:
    """Snapshot for the sync dashboard: stores, pending products, recent outcomes."""
    stores = db.query(Store).order_by(Store.id).all()
    pending = (
        db.query(Product)
        .filter(Product.needs_sync.is_(True))
        .order_by(Product.last_modified.desc())
        .limit(100)
        .all()
    )
    return {
        "stores": [
            {
                "id": s.id,
                "store_name": s.store_name,
                "store_domain": s.store_domain,
                "connected": s.connected,
                "last_sync": s.last_sync.isoformat() if s.last_sync else None,
            }
            for s in stores
        ],
        "connected_stores": sum(1 for s in stores if s.connected),
        "needs_sync_count": db.query(Product).filter(Product.needs_sync.is_(True)).count(),
        "needs_sync": [
            {"sku": p.sku, "product_name": p.product_name, "quantity": p.quantity}
            for p in pending
        ],
        "recent": audit_service.sync_stats(db),
    }


# ── Manual sync flags ─────────────────────────────────────────────────


def mark_needs_sync(db: Session, sku: str | None = None) -> dict:
    """Flag one SKU, or every product not yet flagged, as needing a push."""
    now = utcnow()
    if sku is not None:
        sku = sku.strip()
        if not sku:
            raise SyncValidationError("SKU is required")
        stmt = update(_products).where(_products.c.sku == sku)
    else:
        stmt = update(_products).where(_products.c.needs_sync.is_(False))
    updated = db.execute(stmt.values(needs_sync=True, last_modified=now)).rowcount
    if sku is not None and not updated:
        db.rollback()
        raise ProductNotFoundError(sku)
    db.commit()
    db.expire_all()
    log.info("Marked %d products as needing sync%s", updated, f" ({sku})" if sku else "")
    return {"updated": updated, "sku": sku}


def mark_all_up_to_date(db: Session) -> dict:
    """Declare the whole catalog in sync without pushing anything."""
    updated = db.execute(
        update(_products).values(needs_sync=False, last_synced=utcnow())
    ).rowcount
    db.commit()
    db.expire_all()
    log.warning("Marked all %d products as up to date without a sync run", updated)
    return {"updated": updated, "needs_sync_count": 0}
