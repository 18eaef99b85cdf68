"""
schemas/stores.py: Pydantic models for Shopify store registration

Business Rules:
- store_name, store_domain and access_token are required on create
- Domains are accepted with or without protocol; the service strips it
- The access token is write-only; responses never include it

Called by: routers/stores.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class StoreCreate(BaseModel):
    store_name: str
    store_domain: str
    access_token: str

    @field_validator("store_name", "store_domain", "access_token")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class StoreUpdate(BaseModel):
    store_name: str | None = None
    store_domain: str | None = None
    access_token: str | None = None


class StoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    store_name: str
    store_domain: str
    connected: bool
    last_sync: datetime | None = None
    created_at: datetime | None = None


class ConnectionTestOut(BaseModel):
    success: bool
    message: str
    shop_name: str | None = None
