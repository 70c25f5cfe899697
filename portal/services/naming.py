"""Utility helpers for consistent record identifiers."""

from __future__ import annotations

import re
import time
from typing import Optional

__all__ = [
    "slugify",
    "build_series_id",
    "build_chapter_id",
]


def slugify(value: str) -> str:
    """Return a URL-friendly representation of *value*."""

    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    value = re.sub(r"-+", "-", value).strip("-")
    return value or "item"


def build_series_id(title: str) -> str:
    """Return the series identifier derived from *title*."""

    return slugify(title)


def build_chapter_id(title: str, *, created_ms: Optional[int] = None) -> str:
    """Return a chapter identifier made unique by its creation time in milliseconds."""

    stamp = created_ms if created_ms is not None else int(time.time() * 1000)
    return f"{slugify(title)}-{stamp}"
