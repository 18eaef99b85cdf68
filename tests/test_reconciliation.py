"""
test_reconciliation.py: Tests for the local vs Shopify comparison engine.

Covers classification, multi-store / multi-variant summing, per-store error
isolation, smart ordering, status filtering and filtered pagination totals.

Called by: pytest
Depends on: shopsync/services/reconciliation_service.py, tests/conftest.py
"""

import pytest

from conftest import FakeShopify
from shopsync.exceptions import RemoteApiError, SyncValidationError
from shopsync.services.reconciliation_service import ReconciliationEngine, classify


def _by_sku(result):
    return {item["sku"]: item for item in result["items"]}


class TestClassify:
    def test_not_found_when_no_variants(self):
        assert classify(0, 0) == "not_found"
        assert classify(0, 10) == "not_found"

    def test_found_statuses(self):
        assert classify(1, 0) == "in_sync"
        assert classify(2, 5) == "local_higher"
        assert classify(1, -3) == "shopify_higher"


class TestCompare:
    @pytest.mark.asyncio
    async def test_two_stores_sum_to_in_sync(self, db_session, make_product, make_store, fake_shops):
        shops, factory = fake_shops
        make_product("ABC123", quantity=50)
        make_store("alpha.myshopify.com")
        make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"ABC123": [(1, 11, 111, 50)]})
        shops["beta.myshopify.com"] = FakeShopify("beta", {"abc123": [(2, 22, 222, 0)]})

        result = await ReconciliationEngine(db_session, client_factory=factory).compare()
        row = _by_sku(result)["ABC123"]
        assert row["total_shopify_quantity"] == 50
        assert row["total_variants_found"] == 2
        assert row["difference"] == 0
        assert row["status"] == "in_sync"
        assert len(row["shopify_quantities"]) == 2

    @pytest.mark.asyncio
    async def test_missing_everywhere_reports_local_quantity_as_difference(
        self, db_session, make_product, make_store, fake_shops
    ):
        shops, factory = fake_shops
        make_product("XYZ1", quantity=10)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {})

        result = await ReconciliationEngine(db_session, client_factory=factory).compare()
        row = _by_sku(result)["XYZ1"]
        assert row["total_variants_found"] == 0
        assert row["status"] == "not_found"
        assert row["difference"] == 10

    @pytest.mark.asyncio
    async def test_difference_is_local_minus_remote_for_every_row(
        self, db_session, make_product, make_store, fake_shops
    ):
        shops, factory = fake_shops
        make_product("A", quantity=5)
        make_product("B", quantity=2)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify(
            "alpha", {"A": [(1, 1, 1, 3), (1, 2, 2, 1)], "B": [(2, 3, 3, 9)]}
        )

        result = await ReconciliationEngine(db_session, client_factory=factory).compare()
        rows = _by_sku(result)
        assert rows["A"]["status"] == "local_higher"
        assert rows["A"]["difference"] == 1
        assert rows["B"]["status"] == "shopify_higher"
        assert rows["B"]["difference"] == -7
        for row in result["items"]:
            assert row["difference"] == row["local_quantity"] - row["total_shopify_quantity"]

    @pytest.mark.asyncio
    async def test_one_store_error_does_not_abort_comparison(
        self, db_session, make_product, make_store, fake_shops
    ):
        shops, factory = fake_shops
        make_product("ABC123", quantity=4)
        alpha = make_store("alpha.myshopify.com")
        beta = make_store("beta.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"ABC123": [(1, 11, 111, 4)]})
        shops["beta.myshopify.com"] = FakeShopify(
            "beta", lookup_error=RemoteApiError("Shopify API error", status_code=503, body="down")
        )

        result = await ReconciliationEngine(db_session, client_factory=factory).compare()
        row = _by_sku(result)["ABC123"]
        assert row["shopify_quantities"][str(alpha.id)]["found"] is True
        assert row["shopify_quantities"][str(alpha.id)]["error"] is None
        assert "503" in row["shopify_quantities"][str(beta.id)]["error"]
        assert row["status"] == "in_sync"

    @pytest.mark.asyncio
    async def test_disconnected_stores_are_not_queried(self, db_session, make_product, make_store, fake_shops):
        shops, factory = fake_shops
        make_product("ABC123", quantity=1)
        make_store("alpha.myshopify.com", connected=False)

        result = await ReconciliationEngine(db_session, client_factory=factory).compare()
        assert result["stores"] == []
        assert _by_sku(result)["ABC123"]["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_smart_order_puts_matched_first(self, db_session, make_product, make_store, fake_shops):
        shops, factory = fake_shops
        make_product("A1", name="Alpha widget")
        make_product("Z1", name="Zeta widget")
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"Z1": [(1, 1, 1, 10)]})

        result = await ReconciliationEngine(db_session, client_factory=factory).compare(sort_by="smart")
        assert [i["sku"] for i in result["items"]] == ["Z1", "A1"]

    @pytest.mark.asyncio
    async def test_status_filter_totals_reflect_filtered_set(
        self, db_session, make_product, make_store, fake_shops
    ):
        shops, factory = fake_shops
        for sku in ("P1", "P2", "P3"):
            make_product(sku, quantity=10)
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify(
            "alpha", {"P1": [(1, 1, 1, 10)], "P2": [(2, 2, 2, 4)], "P3": [(3, 3, 3, 1)]}
        )

        result = await ReconciliationEngine(db_session, client_factory=factory).compare(
            status="local_higher", limit=1
        )
        assert result["pagination"]["total"] == 2
        assert result["pagination"]["total_pages"] == 2
        assert result["pagination"]["has_next"] is True
        assert len(result["items"]) == 1
        assert result["items"][0]["status"] == "local_higher"

    @pytest.mark.asyncio
    async def test_name_sort_pages_locally(self, db_session, make_product, make_store, fake_shops):
        shops, factory = fake_shops
        make_product("C", name="Charlie")
        make_product("A", name="Alpha")
        make_product("B", name="Bravo")
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {})

        result = await ReconciliationEngine(db_session, client_factory=factory).compare(
            sort_by="name", page=2, limit=1
        )
        assert [i["sku"] for i in result["items"]] == ["B"]
        assert result["pagination"]["total"] == 3
        assert result["pagination"]["has_prev"] is True
        # only the page was evaluated against Shopify
        assert shops["alpha.myshopify.com"].calls == [("inventory", "B")]

    @pytest.mark.asyncio
    async def test_search_and_stats(self, db_session, make_product, make_store, fake_shops):
        shops, factory = fake_shops
        make_product("CAB-1", name="Cable", needs_sync=True)
        make_product("CAB-2", name="Cable long", needs_sync=False)
        make_product("MUG-1", name="Mug")
        make_store("alpha.myshopify.com")
        shops["alpha.myshopify.com"] = FakeShopify("alpha", {"CAB-1": [(1, 1, 1, 10)]})

        result = await ReconciliationEngine(db_session, client_factory=factory).compare(search="cab")
        stats = result["stats"]
        assert stats["total_products"] == 2
        assert stats["modified_products"] == 1
        assert stats["by_status"]["in_sync"] == 1
        assert stats["by_status"]["not_found"] == 1

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, db_session):
        with pytest.raises(SyncValidationError):
            await ReconciliationEngine(db_session).compare(status="weird")
