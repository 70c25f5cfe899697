"""Structured log events for the cache, the profile store and SQLite."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("reading_portal.events")

_MAX_VALUE_LENGTH = 200


def _clean_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip()
    if not text:
        return None
    if len(text) > _MAX_VALUE_LENGTH:
        return text[:_MAX_VALUE_LENGTH] + "…"
    return text


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty keys and values; flatten enums and sequences to log-friendly text."""

    normalized: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        value = _clean_value(raw_value)
        if key and value is not None:
            normalized[str(key)] = value
    return normalized


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    correlation: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[TYPE] message (key=value, ...)`` with the details attached as ``extra``."""

    text = str(message).strip()
    sections = {
        "debug_correlation": normalize_context(correlation),
        "debug_context": normalize_context(context),
        "debug_payload": normalize_context(payload),
    }
    details = {key: value for section in sections.values() for key, value in section.items()}

    line = f"[{event_type}] {text}" if event_type else text
    if details:
        line += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"debug_event": text, "debug_event_type": event_type or ""}
    extra.update({name: section for name, section in sections.items() if section})
    if duration_ms is not None:
        extra["debug_duration_ms"] = float(duration_ms)
    logger.log(level, line, extra=extra)


def _typed_emitter(event_type: str, default_level: int) -> Callable[..., None]:
    def emit(
        action: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        level: int = default_level,
    ) -> None:
        emit_structured_event(
            event_type,
            action,
            payload=payload,
            context=context,
            duration_ms=duration_ms,
            level=level,
        )

    emit.__name__ = f"emit_{event_type.lower()}_event"
    emit.__doc__ = f"Emit a ``{event_type}`` event at {logging.getLevelName(default_level)} by default."
    return emit


# Query timings from ``CatalogRepository``.
emit_db_event = _typed_emitter("DB_QUERY", logging.DEBUG)
# Hits, stores and invalidations in ``ContentCache``.
emit_cache_event = _typed_emitter("CACHE", logging.DEBUG)
# Bookmark, history and progress writes.
emit_profile_event = _typed_emitter("READING_STATE", logging.INFO)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_cache_event",
    "emit_db_event",
    "emit_profile_event",
    "emit_structured_event",
    "normalize_context",
]
