"""Shopify Admin REST connector, one instance per connected store.

Hides pagination and payload shapes behind a handful of async calls:
SKU lookup, inventory level read/set, locations, connectivity check and
product creation.

Business Rules:
- Products are paged with since_id (cursor = last seen product id), at most
  250 per page, stopping on a short page or after max_pages (safety bound)
- A fixed pause separates consecutive page fetches
- SKU absent after the scan is a normal answer (None / found=False), not an error
- Any non-2xx response raises RemoteApiError carrying status and body
- The client never retries; pacing and retry policy belong to the sync executor
- Multi-location stores are written through their FIRST location only
- VariantMatch.current_quantity is the variant-wide inventory_quantity (all
  locations), so on multi-location stores the audited old quantity and delta
  describe the whole variant, not the one location that gets written

Called by: services/reconciliation_service.py, services/sync_service.py,
           services/store_service.py
Depends on: http_client (shared httpx.AsyncClient), config
"""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from ..config import settings
from ..exceptions import RemoteApiError
from ..utils import normalize_sku, safe_int

log = logging.getLogger("shopsync.shopify")


@dataclass
class LocationLevel:
    location_id: int
    quantity: int


@dataclass
class RemoteVariant:
    """One Shopify variant whose SKU matched a local product."""

    product_id: int
    variant_id: int
    inventory_item_id: int | None
    sku: str
    title: str = "Default Title"
    product_title: str = ""
    inventory_quantity: int = 0
    locations: list[LocationLevel] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        if self.locations:
            return sum(level.quantity for level in self.locations)
        return self.inventory_quantity


@dataclass
class VariantMatch:
    """Answer of find_variant_by_sku: identifiers and the pre-update quantity.

    current_quantity is summed over every location, while writes only reach
    the first location.
    """

    product_id: int
    variant_id: int
    inventory_item_id: int | None
    current_quantity: int


@dataclass
class StoreInventory:
    """Everything one store knows about one SKU, for the comparison drill-down."""

    found: bool
    quantity: int = 0
    variants: list[RemoteVariant] = field(default_factory=list)
    products_found: int = 0
    error: str | None = None

    @property
    def variant_count(self) -> int:
        return len(self.variants)


@dataclass
class ConnectivityResult:
    ok: bool
    shop: dict | None = None
    error: str | None = None


class ShopifyClient:
    """Shopify Admin REST API for a single store, token auth via header."""

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        *,
        api_version: str | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        page_delay: float | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        sleep=asyncio.sleep,
    ):
        self.store_domain = store_domain
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.page_size = max(1, min(page_size or settings.page_size, 250))
        self.max_pages = max_pages or settings.shopify_max_pages
        self.page_delay = (
            page_delay if page_delay is not None else settings.shopify_page_delay_ms / 1000
        )
        self.timeout = timeout or settings.shopify_timeout_seconds
        self.base_url = f"https://{store_domain}/admin/api/{self.api_version}"
        self._client = client
        self._sleep = sleep
        self._primary_location_id: int | None = None

    # ── Transport ─────────────────────────────────────────────────────

    def _headers(self) -> dict:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self, method: str, path: str, *, params: dict | None = None, json: dict | None = None
    ) -> dict:
        if self._client is not None:
            client = self._client
        else:
            from ..http_client import http as client

        url = f"{self.base_url}{path}"
        try:
            r = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise RemoteApiError(
                f"Shopify request to {self.store_domain} failed: {e}"
            ) from e

        if not 200 <= r.status_code < 300:
            raise RemoteApiError("Shopify API error", status_code=r.status_code, body=r.text)

        try:
            data = r.json()
        except ValueError as e:
            raise RemoteApiError(
                "Shopify returned a non-JSON body", status_code=r.status_code, body=r.text[:300]
            ) from e
        if not isinstance(data, dict):
            raise RemoteApiError("Shopify returned an unexpected payload", status_code=r.status_code)
        return data

    # ── Catalog scan ──────────────────────────────────────────────────

    async def iter_product_pages(self):
        """Yield pages of products until a short page or the page ceiling."""
        since_id = 0
        for page in range(1, self.max_pages + 1):
            data = await self._request(
                "GET",
                "/products.json",
                params={
                    "limit": self.page_size,
                    "since_id": since_id,
                    "fields": "id,title,variants",
                },
            )
            products = data.get("products") or []
            log.debug(
                "Shopify %s: page %d -> %d products", self.store_domain, page, len(products)
            )
            if products:
                yield products
            if len(products) < self.page_size:
                return

            next_cursor = max(safe_int(p.get("id")) or 0 for p in products)
            if next_cursor <= since_id:
                log.warning("Shopify %s: cursor did not advance at page %d", self.store_domain, page)
                return
            since_id = next_cursor
            if page < self.max_pages:
                await self._sleep(self.page_delay)

        log.warning(
            "Shopify %s: stopped after %d pages (page ceiling)", self.store_domain, self.max_pages
        )

    @staticmethod
    def _variant_from(product: dict, variant: dict) -> RemoteVariant:
        return RemoteVariant(
            product_id=safe_int(product.get("id")),
            variant_id=safe_int(variant.get("id")),
            inventory_item_id=safe_int(variant.get("inventory_item_id")),
            sku=(variant.get("sku") or "").strip(),
            title=variant.get("title") or "Default Title",
            product_title=product.get("title") or "",
            inventory_quantity=safe_int(variant.get("inventory_quantity")) or 0,
        )

    async def find_variants_by_sku(self, sku: str) -> list[RemoteVariant]:
        """Every variant, across every product, whose SKU matches (trimmed, case-insensitive)."""
        key = normalize_sku(sku)
        matches: list[RemoteVariant] = []
        if not key:
            return matches
        async for products in self.iter_product_pages():
            for product in products:
                for variant in product.get("variants") or []:
                    if normalize_sku(variant.get("sku")) == key:
                        matches.append(self._variant_from(product, variant))
        return matches

    async def find_variant_by_sku(self, sku: str) -> VariantMatch | None:
        """First variant with this SKU, or None when the store does not carry it."""
        key = normalize_sku(sku)
        if not key:
            return None
        async for products in self.iter_product_pages():
            for product in products:
                for variant in product.get("variants") or []:
                    if normalize_sku(variant.get("sku")) == key:
                        v = self._variant_from(product, variant)
                        return VariantMatch(
                            product_id=v.product_id,
                            variant_id=v.variant_id,
                            inventory_item_id=v.inventory_item_id,
                            current_quantity=v.inventory_quantity,
                        )
        log.info("Shopify %s: SKU %s not found", self.store_domain, sku)
        return None

    # ── Inventory ─────────────────────────────────────────────────────

    async def get_inventory_levels(self, inventory_item_ids: list[int]) -> dict[int, list[LocationLevel]]:
        """Per-location available quantities keyed by inventory item id."""
        ids = [i for i in inventory_item_ids if i]
        levels: dict[int, list[LocationLevel]] = {i: [] for i in ids}
        if not ids:
            return levels
        data = await self._request(
            "GET",
            "/inventory_levels.json",
            params={"inventory_item_ids": ",".join(str(i) for i in ids), "limit": 250},
        )
        for level in data.get("inventory_levels") or []:
            item_id = safe_int(level.get("inventory_item_id"))
            if item_id not in levels:
                continue
            levels[item_id].append(
                LocationLevel(
                    location_id=safe_int(level.get("location_id")),
                    quantity=safe_int(level.get("available")) or 0,
                )
            )
        return levels

    async def get_store_inventory(self, sku: str) -> StoreInventory:
        """Remote quantity for a SKU: all matching variants, summed over locations."""
        variants = await self.find_variants_by_sku(sku)
        if not variants:
            return StoreInventory(found=False)

        levels = await self.get_inventory_levels([v.inventory_item_id for v in variants])
        for v in variants:
            v.locations = levels.get(v.inventory_item_id, [])
            if not v.locations:
                v.inventory_quantity = 0

        return StoreInventory(
            found=True,
            quantity=sum(v.quantity for v in variants),
            variants=variants,
            products_found=len({v.product_id for v in variants}),
        )

    async def get_variant(self, variant_id: int) -> dict:
        data = await self._request("GET", f"/variants/{variant_id}.json")
        variant = data.get("variant")
        if not variant:
            raise RemoteApiError(f"Variant {variant_id} missing from response")
        return variant

    async def list_locations(self) -> list[dict]:
        data = await self._request("GET", "/locations.json")
        return data.get("locations") or []

    async def primary_location_id(self) -> int:
        """First registered location, resolved once per client."""
        if self._primary_location_id is None:
            locations = await self.list_locations()
            if not locations:
                raise RemoteApiError(f"No locations found in store {self.store_domain}")
            self._primary_location_id = safe_int(locations[0].get("id"))
        return self._primary_location_id

    async def set_inventory_level(
        self,
        quantity: int,
        *,
        inventory_item_id: int | None = None,
        variant_id: int | None = None,
        location_id: int | None = None,
    ) -> dict:
        """Set `available` at one location. Without location_id the first location is used."""
        if inventory_item_id is None:
            if variant_id is None:
                raise ValueError("inventory_item_id or variant_id is required")
            variant = await self.get_variant(variant_id)
            inventory_item_id = safe_int(variant.get("inventory_item_id"))
            if inventory_item_id is None:
                raise RemoteApiError(f"Variant {variant_id} has no inventory item")
        if location_id is None:
            location_id = await self.primary_location_id()

        data = await self._request(
            "POST",
            "/inventory_levels/set.json",
            json={
                "location_id": location_id,
                "inventory_item_id": inventory_item_id,
                "available": int(quantity),
            },
        )
        return data.get("inventory_level") or {}

    # ── Store-level ───────────────────────────────────────────────────

    async def test_connectivity(self) -> ConnectivityResult:
        """Call /shop.json. Never raises; failures come back as ok=False."""
        try:
            data = await self._request("GET", "/shop.json")
        except RemoteApiError as e:
            log.warning("Shopify %s: connection test failed: %s", self.store_domain, e)
            return ConnectivityResult(ok=False, error=str(e))
        except Exception as e:
            log.exception("Shopify %s: connection test crashed", self.store_domain)
            return ConnectivityResult(ok=False, error=str(e) or e.__class__.__name__)
        return ConnectivityResult(ok=True, shop=data.get("shop") or {})

    async def create_product(self, product_data: dict) -> dict:
        """Create a single-variant Shopify product from a local product dict."""
        payload = {
            "product": {
                "title": product_data.get("product_name") or product_data["sku"],
                "vendor": product_data.get("vendor") or "Default",
                "product_type": product_data.get("category") or "Default",
                "variants": [
                    {
                        "sku": product_data["sku"],
                        "inventory_quantity": int(product_data.get("quantity") or 0),
                        "inventory_management": "shopify",
                    }
                ],
            }
        }
        if product_data.get("image_url"):
            payload["product"]["images"] = [{"src": product_data["image_url"]}]

        data = await self._request("POST", "/products.json", json=payload)
        product = data.get("product")
        if not product:
            raise RemoteApiError("Shopify did not return the created product")
        log.info("Shopify %s: created product %s for SKU %s", self.store_domain, product.get("id"), product_data["sku"])
        return product


def client_for_store(store, **kwargs) -> ShopifyClient:
    """Build a client from a Store row (domain + access token)."""
    return ShopifyClient(store.store_domain, store.access_token, **kwargs)
