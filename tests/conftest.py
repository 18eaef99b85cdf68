"""
conftest.py: shared test fixtures for ShopSync

Provides an in-memory SQLite database, a FastAPI TestClient wired to it,
factory fixtures for products and stores, and an in-process fake Shopify
catalog that stands in for ShopifyClient in executor/engine tests.

Business Rules:
- All tests run against an isolated in-memory DB
- No test talks to a real Shopify store; remote calls hit FakeShopify
- Rate-limiter pauses are no-ops so tests never sleep

Called by: all test files via pytest autodiscovery
Depends on: shopsync.models (Base), shopsync.database (get_db)
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing shopsync modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shopsync.connectors.shopify import (
    ConnectivityResult,
    LocationLevel,
    RemoteVariant,
    StoreInventory,
    VariantMatch,
)
from shopsync.exceptions import RemoteApiError
from shopsync.models import Base, Product, Store
from shopsync.rate_limit import RateLimiterRegistry, TokenBucket

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    """FastAPI TestClient with get_db overridden to the test session."""
    from shopsync.database import get_db
    from shopsync.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_product(db_session: Session):
    def _make(sku="ABC123", quantity=10, name=None, category=None, needs_sync=True):
        p = Product(
            sku=sku,
            product_name=name or f"Product {sku}",
            category=category,
            quantity=quantity,
            needs_sync=needs_sync,
        )
        db_session.add(p)
        db_session.commit()
        db_session.refresh(p)
        return p

    return _make


@pytest.fixture()
def make_store(db_session: Session):
    def _make(domain="alpha.myshopify.com", name=None, connected=True, token="shpat_test"):
        s = Store(
            store_name=name or domain.split(".")[0].title(),
            store_domain=domain,
            access_token=token,
            connected=connected,
        )
        db_session.add(s)
        db_session.commit()
        db_session.refresh(s)
        return s

    return _make


# ── Fake Shopify ─────────────────────────────────────────────────────


class FakeShopify:
    """In-memory stand-in for ShopifyClient, one instance per store.

    catalog maps sku -> list of (product_id, variant_id, inventory_item_id, quantity).
    """

    def __init__(self, domain, catalog=None, *, online=True, fail_skus=(), lookup_error=None):
        self.store_domain = domain
        self.catalog = {k.lower(): list(v) for k, v in (catalog or {}).items()}
        self.online = online
        self.fail_skus = {s.lower() for s in fail_skus}
        self.lookup_error = lookup_error
        self.calls: list[tuple] = []

    async def test_connectivity(self):
        self.calls.append(("connectivity",))
        if not self.online:
            return ConnectivityResult(ok=False, error="Shopify API error: 401 - invalid token")
        return ConnectivityResult(ok=True, shop={"name": self.store_domain})

    async def find_variant_by_sku(self, sku):
        self.calls.append(("find", sku))
        if self.lookup_error:
            raise self.lookup_error
        rows = self.catalog.get(sku.strip().lower())
        if not rows:
            return None
        product_id, variant_id, item_id, qty = rows[0]
        return VariantMatch(product_id, variant_id, item_id, qty)

    async def get_store_inventory(self, sku):
        self.calls.append(("inventory", sku))
        if self.lookup_error:
            raise self.lookup_error
        rows = self.catalog.get(sku.strip().lower()) or []
        if not rows:
            return StoreInventory(found=False)
        variants = [
            RemoteVariant(
                product_id=pid,
                variant_id=vid,
                inventory_item_id=iid,
                sku=sku,
                locations=[LocationLevel(location_id=1, quantity=qty)],
            )
            for pid, vid, iid, qty in rows
        ]
        return StoreInventory(
            found=True,
            quantity=sum(v.quantity for v in variants),
            variants=variants,
            products_found=len({v.product_id for v in variants}),
        )

    async def set_inventory_level(self, quantity, *, inventory_item_id=None, variant_id=None, location_id=None):
        self.calls.append(("set", inventory_item_id, quantity))
        for sku, rows in self.catalog.items():
            if sku in self.fail_skus and any(r[2] == inventory_item_id for r in rows):
                raise RemoteApiError("Shopify API error", status_code=422, body='{"errors":"bad"}')
            for i, (pid, vid, iid, _qty) in enumerate(rows):
                if iid == inventory_item_id:
                    rows[i] = (pid, vid, iid, quantity)
                    return {"available": quantity}
        raise RemoteApiError("Shopify API error", status_code=404, body="Not Found")


@pytest.fixture()
def fake_shops():
    """domain -> FakeShopify registry plus a client_factory bound to it."""
    shops: dict[str, FakeShopify] = {}

    def factory(store):
        return shops[store.store_domain]

    return shops, factory


async def _no_sleep(_seconds):
    return None


@pytest.fixture()
def instant_limiters():
    """Per-store limiter registry whose buckets never actually wait."""
    return RateLimiterRegistry(lambda: TokenBucket(capacity=2, refill_per_second=2.0, min_interval=0.5, sleep=_no_sleep))


@pytest.fixture()
def no_sleep():
    return _no_sleep
