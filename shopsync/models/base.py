"""Declarative base shared by every ShopSync model."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
