"""Utilities for reporting deterministic reading-progress percentages."""

from __future__ import annotations

import math
from typing import Any, Optional


PROGRESS_STEP = 10
PROGRESS_FINISHED = 100


def quantize_progress(raw_percent: Any) -> int:
    """Return ``raw_percent`` rounded to the nearest multiple of ten.

    Halves round up (``45`` becomes ``50``). Values are clamped to the
    inclusive range ``[0, 100]`` and anything that is not a finite number is
    treated as ``0``.
    """

    try:
        value = float(raw_percent)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0

    clamped = max(0.0, min(value, float(PROGRESS_FINISHED)))
    steps = math.floor(clamped / PROGRESS_STEP + 0.5)
    return int(steps * PROGRESS_STEP)


def progress_from_ratio(completed: Optional[float], total: Optional[float]) -> int:
    """Return a quantized percentage for ``completed`` out of ``total``.

    Readers report scroll offsets or playback positions; a missing or zero
    total means nothing has been read yet.
    """

    if completed is None or total in {None, 0}:
        return 0

    try:
        ratio = float(completed) / float(total)
    except (TypeError, ValueError):
        return 0

    return quantize_progress(ratio * 100)


def is_in_progress(percent: int) -> bool:
    """Return ``True`` when a chapter has been started but not finished."""

    return 0 < percent < PROGRESS_FINISHED


__all__ = [
    "PROGRESS_FINISHED",
    "PROGRESS_STEP",
    "is_in_progress",
    "progress_from_ratio",
    "quantize_progress",
]
