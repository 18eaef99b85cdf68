"""
test_sync_service.py: Tests for the sync executor (single / multi / all).

Uses FakeShopify stores and no-op rate limiter sleeps. Checks audit records,
run summaries, connectivity short-circuit, idempotence, cancellation and
trigger validation.

Called by: pytest
Depends on: shopsync/services/sync_service.py, tests/conftest.py
"""

import pytest

from conftest import FakeShopify
from shopsync.exceptions import ProductNotFoundError, SyncValidationError
from shopsync.models import Product, Store, SyncAudit
from shopsync.services.sync_service import (
    CancellationToken,
    SyncExecutor,
    SyncFailure,
    SyncSuccess,
    mark_all_up_to_date,
    mark_needs_sync,
)


@pytest.fixture()
def executor(db_session, fake_shops, instant_limiters, no_sleep):
    _, factory = fake_shops
    return SyncExecutor(
        db_session,
        client_factory=factory,
        limiters=instant_limiters,
        store_delay=1.0,
        parallel_stores=False,
        sleep=no_sleep,
    )


def _audits(db, **filters):
    return db.query(SyncAudit).filter_by(**filters).order_by(SyncAudit.id).all()


class TestSingle:
    @pytest.mark.asyncio
    async def test_success_writes_audit_and_pushes_quantity(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        product = make_product("ABC123", quantity=17)
        make_store("alpha.myshopify.com")
        shop = shops["alpha.myshopify.com"] = FakeShopify("alpha", {"ABC123": [(1, 11, 111, 12)]})

        summary = await executor.sync_single("ABC123")

        assert summary.products_updated == 1
        assert summary.products_failed == 0
        assert ("set", 111, 17) in shop.calls
        [audit] = _audits(db_session)
        assert audit.action == "sync_success"
        assert audit.old_quantity == 12
        assert audit.new_quantity == 17
        assert audit.quantity_change == 5
        assert audit.sync_type == "single"
        assert audit.shopify_variant_id == "11"
        assert audit.user_name == "system"
        db_session.refresh(product)
        assert product.needs_sync is False
        assert product.last_synced is not None

    @pytest.mark.asyncio
    async def test_round_trip_reports_pushed_quantity(self, executor, make_product, make_store, fake_shops):
        shops, _ = fake_shops
        make_product("ABC123", quantity=8)
        make_store("alpha.myshopify.com")
        shop = shops["alpha.myshopify.com"] = FakeShopify("alpha", {"ABC123": [(1, 11, 111, 0)]})

        await executor.sync_single("ABC123")
        match = await shop.find_variant_by_sku("ABC123")
        assert match.current_quantity == 8

    @pytest.mark.asyncio
    async def test_resync_is_idempotent_with_zero_delta(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        product = make_product("ABC123", quantity=9)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"ABC123": [(1, 11, 111, 9)]})

        await executor.sync_single("ABC123")
        await executor.sync_single("ABC123")

        audits = _audits(db_session, action="sync_success")
        assert len(audits) == 2
        assert all(a.quantity_change == 0 for a in audits)
        db_session.refresh(product)
        assert product.quantity == 9

    @pytest.mark.asyncio
    async def test_sku_missing_remotely_is_failed_record(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        product = make_product("GHOST", quantity=3)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {})

        summary = await executor.sync_single("GHOST")

        assert summary.products_failed == 1
        [audit] = _audits(db_session)
        assert audit.action == "sync_failed"
        assert audit.old_quantity is None
        assert audit.quantity_change == 0
        assert "not found" in audit.error_message
        db_session.refresh(product)
        assert product.needs_sync is True

    @pytest.mark.asyncio
    async def test_remote_error_is_recorded_not_raised(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        make_product("BAD", quantity=3)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify(
            "alpha", {"BAD": [(1, 11, 111, 1)]}, fail_skus=["BAD"]
        )

        summary = await executor.sync_single("BAD")

        assert summary.products_failed == 1
        [audit] = _audits(db_session)
        assert audit.action == "sync_failed"
        assert "422" in audit.error_message

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        make_product("ABC123")
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", lookup_error=KeyError("variants"))

        summary = await executor.sync_single("ABC123")

        assert summary.products_failed == 1
        outcome = summary.stores[0].outcomes[0]
        assert isinstance(outcome, SyncFailure)
        assert outcome.ok is False

    @pytest.mark.asyncio
    async def test_unknown_local_sku(self, executor):
        with pytest.raises(ProductNotFoundError):
            await executor.sync_single("NOPE")

    @pytest.mark.asyncio
    async def test_no_connected_stores_rejected(self, executor, make_product, make_store):
        make_product("ABC123")
        make_store("alpha.myshopify.com", connected=False)
        with pytest.raises(SyncValidationError):
            await executor.sync_single("ABC123")


class TestMulti:
    @pytest.mark.asyncio
    async def test_empty_sku_list_rejected(self, executor):
        with pytest.raises(SyncValidationError):
            await executor.sync_multi(["", "  "])

    @pytest.mark.asyncio
    async def test_unknown_skus_only_rejected(self, executor, make_store):
        make_store("alpha.myshopify.com")
        with pytest.raises(SyncValidationError):
            await executor.sync_multi(["NOPE"])

    @pytest.mark.asyncio
    async def test_missing_skus_reported_and_order_kept(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        make_product("A", quantity=1)
        make_product("B", quantity=2)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify(
            "alpha", {"A": [(1, 1, 1, 0)], "B": [(2, 2, 2, 0)]}
        )

        summary = await executor.sync_multi(["B", "MISSING", "A", "B"])

        assert summary.missing_skus == ["MISSING"]
        assert [a.sku for a in _audits(db_session)] == ["B", "A"]
        assert all(a.sync_type == "multi" for a in _audits(db_session))


class TestAll:
    @pytest.mark.asyncio
    async def test_failed_connectivity_check_writes_one_summary_record(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        for sku in ("P1", "P2", "P3"):
            make_product(sku, quantity=5)
        make_store("alpha.myshopify.com")
        beta = make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify(
            "alpha", {"P1": [(1, 1, 1, 5)], "P2": [(2, 2, 2, 0)]}
        )
        shops["beta.myshopify.com"] = FakeShopify("beta", {"P1": [(9, 9, 9, 0)]}, online=False)

        summary = await executor.sync_all()

        assert len(_audits(db_session, store_domain="alpha.myshopify.com")) == 3
        beta_audits = _audits(db_session, store_domain="beta.myshopify.com")
        assert len(beta_audits) == 1
        assert beta_audits[0].action == "sync_failed"
        assert "Connection failed" in beta_audits[0].error_message
        db_session.refresh(beta)
        assert beta.connected is False
        assert beta.last_sync is None

        alpha_run, beta_run = summary.stores
        assert (alpha_run.attempted, alpha_run.updated, alpha_run.failed) == (3, 2, 1)
        assert beta_run.connected is False
        assert beta_run.skipped == 3
        assert summary.products_skipped == 3
        # only the connectivity check went to beta
        assert shops["beta.myshopify.com"].calls == [("connectivity",)]

    @pytest.mark.asyncio
    async def test_last_sync_stamped_and_store_delay_taken(
        self, db_session, fake_shops, instant_limiters, make_product, make_store
    ):
        shops, factory = fake_shops
        pauses = []

        async def record_sleep(seconds):
            pauses.append(seconds)

        make_product("P1")
        make_store("alpha.myshopify.com")
        make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"P1": [(1, 1, 1, 0)]})
        shops["beta.myshopify.com"] = FakeShopify("beta", {"P1": [(2, 2, 2, 0)]})
        executor = SyncExecutor(
            db_session,
            client_factory=factory,
            limiters=instant_limiters,
            store_delay=1.0,
            parallel_stores=False,
            sleep=record_sleep,
        )

        summary = await executor.sync_all()

        assert pauses == [1.0]
        assert summary.sync_type == "full"
        assert all(s.last_sync is not None for s in db_session.query(Store).all())

    @pytest.mark.asyncio
    async def test_needs_sync_kept_when_one_store_fails(
        self, db_session, executor, make_product, make_store, fake_shops
    ):
        shops, _ = fake_shops
        product = make_product("P1")
        make_store("alpha.myshopify.com")
        make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"P1": [(1, 1, 1, 0)]})
        shops["beta.myshopify.com"] = FakeShopify("beta", {})

        await executor.sync_all()

        db_session.refresh(product)
        assert product.needs_sync is True

    @pytest.mark.asyncio
    async def test_parallel_stores_complete_independently(
        self, db_session, fake_shops, instant_limiters, no_sleep, make_product, make_store
    ):
        shops, factory = fake_shops
        make_product("P1")
        make_store("alpha.myshopify.com")
        make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"P1": [(1, 1, 1, 0)]})
        shops["beta.myshopify.com"] = FakeShopify("beta", {"P1": [(2, 2, 2, 0)]}, online=False)
        executor = SyncExecutor(
            db_session, client_factory=factory, limiters=instant_limiters,
            parallel_stores=True, sleep=no_sleep,
        )

        summary = await executor.sync_all()

        assert summary.products_updated == 1
        assert len(_audits(db_session)) == 2

    @pytest.mark.asyncio
    async def test_cancelled_run_returns_partial_summary(
        self, db_session, fake_shops, instant_limiters, no_sleep, make_product, make_store
    ):
        shops, factory = fake_shops
        for sku in ("P1", "P2", "P3"):
            make_product(sku)
        make_store("alpha.myshopify.com")
        token = CancellationToken()

        class CancelAfterFirst(FakeShopify):
            async def set_inventory_level(self, quantity, **kwargs):
                result = await super().set_inventory_level(quantity, **kwargs)
                token.cancel()
                return result

        shops["alpha.myshopify.com"] = CancelAfterFirst(
            "alpha", {s: [(i, i, i, 0)] for i, s in enumerate(("P1", "P2", "P3"), start=1)}
        )
        executor = SyncExecutor(
            db_session, client_factory=factory, limiters=instant_limiters,
            parallel_stores=False, sleep=no_sleep,
        )

        summary = await executor.sync_all(cancel=token)

        assert summary.cancelled is True
        assert summary.products_attempted == 1
        assert summary.stores[0].skipped == 2
        assert summary.to_dict()["cancelled"] is True

    @pytest.mark.asyncio
    async def test_cancel_between_stores_keeps_needs_sync(
        self, db_session, fake_shops, instant_limiters, no_sleep, make_product, make_store
    ):
        shops, factory = fake_shops
        product = make_product("P1", quantity=6)
        make_store("alpha.myshopify.com")
        make_store("beta.myshopify.com")
        token = CancellationToken()

        class CancelAfterPush(FakeShopify):
            async def set_inventory_level(self, quantity, **kwargs):
                result = await super().set_inventory_level(quantity, **kwargs)
                token.cancel()
                return result

        shops["alpha.myshopify.com"] = CancelAfterPush("alpha", {"P1": [(1, 1, 1, 0)]})
        shops["beta.myshopify.com"] = FakeShopify("beta", {"P1": [(2, 2, 2, 0)]})
        executor = SyncExecutor(
            db_session, client_factory=factory, limiters=instant_limiters,
            parallel_stores=False, sleep=no_sleep,
        )

        summary = await executor.sync_all(cancel=token)

        assert summary.cancelled is True
        assert summary.stores_processed == 1
        assert shops["beta.myshopify.com"].calls == []
        db_session.refresh(product)
        assert product.needs_sync is True

    @pytest.mark.asyncio
    async def test_empty_catalog_rejected(self, executor, make_store):
        make_store("alpha.myshopify.com")
        with pytest.raises(SyncValidationError):
            await executor.sync_all()


class TestOutcomes:
    def test_success_delta(self):
        s = SyncSuccess(sku="A", store_domain="x", old_quantity=3, new_quantity=10)
        assert s.ok is True
        assert s.quantity_change == 7

    def test_failure_flags(self):
        f = SyncFailure(sku="A", store_domain="x", new_quantity=1, error="nope", not_found=True)
        assert f.ok is False
        assert f.old_quantity is None


class TestManualFlags:
    def test_mark_one_sku(self, db_session, make_product):
        product = make_product("P1", needs_sync=False)
        version = product.version

        result = mark_needs_sync(db_session, " P1 ")

        assert result == {"updated": 1, "sku": "P1"}
        db_session.refresh(product)
        assert product.needs_sync is True
        assert product.version == version

    def test_mark_unknown_sku(self, db_session):
        with pytest.raises(ProductNotFoundError):
            mark_needs_sync(db_session, "GHOST")

    def test_mark_all_only_counts_unflagged(self, db_session, make_product):
        make_product("P1", needs_sync=False)
        make_product("P2", needs_sync=True)
        assert mark_needs_sync(db_session)["updated"] == 1
        assert db_session.query(Product).filter(Product.needs_sync.is_(False)).count() == 0

    def test_all_up_to_date(self, db_session, make_product):
        p1 = make_product("P1", needs_sync=True)
        make_product("P2", needs_sync=True)

        assert mark_all_up_to_date(db_session)["updated"] == 2

        db_session.refresh(p1)
        assert p1.needs_sync is False
        assert p1.last_synced is not None
