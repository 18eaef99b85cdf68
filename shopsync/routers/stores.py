"""
routers/stores.py: Shopify store registry (CRUD + connection test)

Business Rules:
- Duplicate domains are rejected with 400
- The access token is never echoed back
- The connection test is the only way a store becomes connected
- Creating a remote product is an explicit operator action, never part of sync

Called by: main.py (router mount)
Depends on: services/store_service.py, connectors/shopify.py
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from ..connectors.shopify import client_for_store
from ..database import get_db
from ..rate_limit import limiter
from ..schemas.stores import ConnectionTestOut, StoreCreate, StoreOut, StoreUpdate
from ..services import store_service
from ..services.stock_service import get_product

router = APIRouter(tags=["stores"])


@router.get("/api/stores", response_model=list[StoreOut])
async def list_stores(db: Session = Depends(get_db)):
    return store_service.list_stores(db)


@router.post("/api/stores", response_model=StoreOut, status_code=201)
async def add_store(body: StoreCreate, db: Session = Depends(get_db)):
    return store_service.register_store(db, body.store_name, body.store_domain, body.access_token)


@router.put("/api/stores/{store_id}", response_model=StoreOut)
async def update_store(store_id: int, body: StoreUpdate, db: Session = Depends(get_db)):
    return store_service.update_store(
        db,
        store_id,
        store_name=body.store_name,
        store_domain=body.store_domain,
        access_token=body.access_token,
    )


@router.delete("/api/stores/{store_id}")
async def delete_store(store_id: int, db: Session = Depends(get_db)):
    store_service.delete_store(db, store_id)
    return {"ok": True, "message": "Store deleted successfully"}


@router.post("/api/stores/{store_id}/test", response_model=ConnectionTestOut)
@limiter.limit("10/minute")
async def test_store(store_id: int, request: Request, db: Session = Depends(get_db)):
    store = store_service.get_store(db, store_id)
    result = await store_service.test_store_connection(db, store)
    if result.ok:
        shop_name = (result.shop or {}).get("name")
        return {"success": True, "message": "Connection successful", "shop_name": shop_name}
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": f"Connection failed: {result.error}"},
    )


@router.get("/api/stores/{store_id}/search/{sku}")
async def search_store_sku(store_id: int, sku: str, db: Session = Depends(get_db)):
    store = store_service.get_store(db, store_id)
    return await store_service.search_sku(store, sku)


@router.post("/api/stores/{store_id}/products/{sku}", status_code=201)
async def create_remote_product(store_id: int, sku: str, db: Session = Depends(get_db)):
    """Create a missing Shopify product from the local record."""
    store = store_service.get_store(db, store_id)
    product = get_product(db, sku)
    remote = await client_for_store(store).create_product(
        {
            "sku": product.sku,
            "product_name": product.product_name,
            "category": product.category,
            "quantity": product.quantity,
            "image_url": product.image_url,
        }
    )
    logger.info("Created Shopify product {} in {} for {}", remote.get("id"), store.store_domain, sku)
    return {"ok": True, "shopify_product_id": remote.get("id"), "store_domain": store.store_domain}
