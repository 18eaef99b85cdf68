"""Store service: registration and credential management for Shopify stores.

Business Rules:
- store_domain is stored without protocol or trailing slash and is unique
- A new store starts disconnected; only a connectivity check sets connected=True
- Changing the access token resets connected=False until the next connectivity check
- A failed connectivity check always sets connected=False

Called by: routers/stores.py, services/sync_service.py
Depends on: models (Store), connectors/shopify.py
"""

import logging

from sqlalchemy.orm import Session

from ..connectors.shopify import client_for_store
from ..exceptions import DuplicateStoreError, StoreNotFoundError, SyncValidationError
from ..models import Store
from ..utils import clean_domain

log = logging.getLogger("shopsync.stores")


def list_stores(db: Session) -> list[Store]:
    return db.query(Store).order_by(Store.created_at.desc(), Store.id.desc()).all()


def connected_stores(db: Session) -> list[Store]:
    return db.query(Store).filter(Store.connected.is_(True)).order_by(Store.id).all()


def get_store(db: Session, store_id: int) -> Store:
    store = db.get(Store, store_id)
    if not store:
        raise StoreNotFoundError(store_id)
    return store


def _check_domain_free(db: Session, domain: str, exclude_id: int | None = None) -> None:
    query = db.query(Store).filter(Store.store_domain == domain)
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first():
        raise DuplicateStoreError("Store with this domain already exists")


def register_store(db: Session, store_name: str, store_domain: str, access_token: str) -> Store:
    store_name = (store_name or "").strip()
    domain = clean_domain(store_domain)
    access_token = (access_token or "").strip()
    if not store_name or not domain or not access_token:
        raise SyncValidationError("store_name, store_domain and access_token are required")
    _check_domain_free(db, domain)

    store = Store(store_name=store_name, store_domain=domain, access_token=access_token, connected=False)
    db.add(store)
    db.commit()
    db.refresh(store)
    log.info("Store registered: %s (%s)", store.store_name, store.store_domain)
    return store


def update_store(
    db: Session,
    store_id: int,
    *,
    store_name: str | None = None,
    store_domain: str | None = None,
    access_token: str | None = None,
) -> Store:
    store = get_store(db, store_id)
    if store_name:
        store.store_name = store_name.strip()
    if store_domain:
        domain = clean_domain(store_domain)
        if domain != store.store_domain:
            _check_domain_free(db, domain, exclude_id=store.id)
            store.store_domain = domain
            store.connected = False
    if access_token and access_token != store.access_token:
        store.access_token = access_token.strip()
        store.connected = False
    db.commit()
    db.refresh(store)
    return store


def delete_store(db: Session, store_id: int) -> None:
    store = get_store(db, store_id)
    db.delete(store)
    db.commit()
    log.info("Store deleted: %s", store.store_domain)


async def test_store_connection(db: Session, store: Store, client_factory=client_for_store):
    """Check the store connection and persist the outcome on `connected`."""
    result = await client_factory(store).test_connectivity()
    store.connected = result.ok
    db.commit()
    if result.ok:
        log.info("Store %s connected", store.store_domain)
    else:
        log.warning("Store %s failed connection test: %s", store.store_domain, result.error)
    return result


async def search_sku(store: Store, sku: str, client_factory=client_for_store) -> dict:
    """Look one SKU up in a store's catalog (debug helper for the stores page)."""
    match = await client_factory(store).find_variant_by_sku(sku)
    return {
        "store_name": store.store_name,
        "searched_sku": sku,
        "found": match is not None,
        "product": None
        if match is None
        else {
            "product_id": match.product_id,
            "variant_id": match.variant_id,
            "inventory_item_id": match.inventory_item_id,
            "inventory_quantity": match.current_quantity,
        },
    }
