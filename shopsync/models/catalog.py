"""Catalog models: local products (source of truth) and Shopify stores."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import validates

from ..database import UTCDateTime, utcnow
from .base import Base


class Product(Base):
    """Canonical product record. SKU is the identity and never changes."""

    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    sku = Column(String(100), nullable=False, unique=True)
    product_name = Column(String(255), nullable=False)
    category = Column(String(100))
    quantity = Column(Integer, nullable=False, default=0)
    image_url = Column(Text)
    needs_sync = Column(Boolean, nullable=False, default=True)
    last_synced = Column(UTCDateTime)
    last_modified = Column(UTCDateTime, default=utcnow)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    # Optimistic lock: UPDATE ... WHERE version = :expected
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        Index("ix_products_name", "product_name"),
        Index("ix_products_category", "category"),
    )

    @validates("sku")
    def _validate_sku(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("SKU is required")
        current = self.__dict__.get("sku")
        if current is not None and current != value:
            raise ValueError(f"SKU is immutable (was {current!r})")
        return value

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is None:
            return 0
        if isinstance(value, bool) or int(value) != value:
            raise ValueError("quantity must be an integer")
        value = int(value)
        if value < 0:
            raise ValueError("quantity must be >= 0")
        return value

    def __repr__(self) -> str:
        return f"<Product {self.sku} qty={self.quantity}>"


class Store(Base):
    """A connected Shopify store. `connected` is only ever set by a connectivity check."""

    __tablename__ = "stores"
    id = Column(Integer, primary_key=True)
    store_name = Column(String(255), nullable=False)
    store_domain = Column(String(255), nullable=False, unique=True)
    access_token = Column(String(500), nullable=False)
    connected = Column(Boolean, nullable=False, default=False)
    last_sync = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Store {self.store_domain} connected={self.connected}>"
