"""Shared utility helpers used across the connector and services."""

import re

_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)


def safe_int(v):
    """Safely convert a value to int, returning None on failure."""
    if v is None:
        return None
    try:
        return int(v)
    except (ValueError, TypeError):
        return None


def normalize_sku(sku) -> str:
    """Key used for remote SKU matching: trimmed, case-folded."""
    return str(sku or "").strip().lower()


def clean_domain(domain: str) -> str:
    """Strip protocol and trailing slashes: 'https://x.myshopify.com/' -> 'x.myshopify.com'."""
    return _PROTOCOL_RE.sub("", (domain or "").strip()).rstrip("/")
