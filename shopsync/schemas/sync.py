"""
schemas/sync.py: request/response models for the sync trigger endpoints

Business Rules:
- A multi sync needs at least one non-blank SKU; blanks and duplicates are dropped
- Background jobs run either a full sync or a multi sync
- user_name defaults to "system" when the caller gives none

Called by: routers/sync.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


def _dedupe_skus(v):
    if isinstance(v, str):
        v = [s for s in v.replace("\n", ",").split(",")]
    if isinstance(v, list):
        out: list[str] = []
        for s in v:
            s = str(s or "").strip()
            if s and s not in out:
                out.append(s)
        return out
    return v


class MultiSyncRequest(BaseModel):
    skus: list[str] = Field(min_length=1, max_length=1000)
    user_name: str | None = None

    @field_validator("skus", mode="before")
    @classmethod
    def clean_skus(cls, v):
        return _dedupe_skus(v)


class SyncRunRequest(BaseModel):
    user_name: str | None = None


class SyncJobRequest(BaseModel):
    kind: Literal["full", "multi"] = "full"
    skus: list[str] = Field(default_factory=list, max_length=1000)
    user_name: str | None = None

    @field_validator("skus", mode="before")
    @classmethod
    def clean_skus(cls, v):
        return _dedupe_skus(v)


class StoreRunOut(BaseModel):
    store_id: int
    store_name: str
    store_domain: str
    attempted: int
    updated: int
    failed: int
    skipped: int
    connected: bool
    error: str | None = None
    errors: list[dict] = Field(default_factory=list)


class RunSummaryOut(BaseModel):
    sync_type: str
    products_total: int
    stores_processed: int
    products_attempted: int
    products_updated: int
    products_failed: int
    products_skipped: int
    missing_skus: list[str] = Field(default_factory=list)
    cancelled: bool = False
    started_at: str | None = None
    finished_at: str | None = None
    duration_ms: int = 0
    stores: list[StoreRunOut] = Field(default_factory=list)


class SyncJobOut(BaseModel):
    id: str
    kind: str
    status: str
    created_at: str | None = None
    finished_at: str | None = None
    cancel_requested: bool = False
    summary: RunSummaryOut | None = None
    error: str | None = None
