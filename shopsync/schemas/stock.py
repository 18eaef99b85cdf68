"""
schemas/stock.py: Pydantic models for local stock movements and uploads

Business Rules:
- Stock in/out quantities must be positive integers
- Manual updates and upload rows accept zero but never negative quantities
- Upload rows need a non-blank SKU

Called by: routers/stock.py
Depends on: pydantic
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class StockMovement(BaseModel):
    sku: str
    quantity: int = Field(gt=0)
    reason: str | None = None
    notes: str | None = None
    user_name: str | None = None

    @field_validator("sku")
    @classmethod
    def sku_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sku must not be blank")
        return v


class QuantityUpdate(BaseModel):
    sku: str
    quantity: int = Field(ge=0)
    reason: str = "Manual update"
    notes: str | None = None
    user_name: str | None = None


class UploadRow(BaseModel):
    sku: str
    product_name: str | None = None
    category: str | None = None
    quantity: int = Field(default=0, ge=0)
    image_url: str | None = None


class UploadRequest(BaseModel):
    products: list[UploadRow] = Field(min_length=1, max_length=10000)
    user_name: str | None = None


class MovementOut(BaseModel):
    sku: str
    old_quantity: int
    new_quantity: int
    changed: bool = True


class UploadOut(BaseModel):
    batch_id: str
    created: int
    updated: int
    unchanged: int
    errors: list[dict] = Field(default_factory=list)
