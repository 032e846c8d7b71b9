"""Utility helpers for the rating service."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

EXTERNAL_ID_RE = re.compile(r"^tt\d+$")
CATALOG_ID_RE = re.compile(r"^\d+$")
PLACEHOLDER_MARKERS = ("YOUR_", "CHANGEME", "PLACEHOLDER")


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """Return the first UTC midnight strictly after ``now``."""

    current = ensure_utc(now)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def mask_key(secret: str) -> str:
    """Mask a credential so only its first and last two characters remain."""

    if len(secret) < 5:
        return "*" * len(secret)
    return f"{secret[:2]}...{secret[-2:]}"


def is_placeholder(value: str) -> bool:
    upper = value.upper()
    if any(marker in upper for marker in PLACEHOLDER_MARKERS):
        return True
    return value.startswith("<") and value.endswith(">")


def is_valid_external_id(value: Any) -> bool:
    return isinstance(value, str) and bool(EXTERNAL_ID_RE.match(value))


def normalize_catalog_id(value: Any) -> str:
    """Return the canonical catalog identifier or raise ``ValueError``."""

    if isinstance(value, bool):
        raise ValueError("Catalog ID must be a string or integer")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError("Catalog ID must be positive")
        return str(value)
    if not isinstance(value, str):
        raise ValueError("Catalog ID must be a string or integer")
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("Catalog ID is required")
    if not CATALOG_ID_RE.match(cleaned):
        raise ValueError(f"Malformed catalog ID: {value!r}")
    return cleaned
