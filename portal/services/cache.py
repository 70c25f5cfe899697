"""Time-boxed, write-invalidated cache over the remote catalog."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypeVar

from ..errors import MalformedInputError
from ..models import Chapter, ChapterKind, Series
from .defaults import DefaultCatalogProvider
from .events import emit_cache_event
from .gateway import CatalogGateway
from .results import MutationResult


T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 30.0

SERIES_NOT_FOUND = "Series not found"
CHAPTER_NOT_FOUND = "Chapter not found"
SERIES_EXISTS = "A series with this title already exists"
TITLE_REQUIRED = "Title is required"


@dataclass(frozen=True)
class CacheEntry:
    series: List[Series]
    fetched_at: float


def _describe_error(error: BaseException) -> str:
    message = str(error).strip()
    name = error.__class__.__name__
    return f"{name}: {message}" if message else name


def require_title(title: Optional[str]) -> str:
    """Return ``title`` stripped of whitespace, rejecting blank titles."""

    cleaned = (title or "").strip()
    if not cleaned:
        raise MalformedInputError(TITLE_REQUIRED)
    return cleaned


class ContentCache:
    """Process-wide catalog cache shared by every reader.

    Reads degrade to the default catalog instead of raising. Every mutation
    drops the cached collection, whatever its outcome, so the next read goes
    back to the gateway. Readers receive their own copies of the series, so
    changing a returned object never alters the cached collection.
    """

    def __init__(
        self,
        gateway: CatalogGateway,
        *,
        defaults: Optional[DefaultCatalogProvider] = None,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._defaults = defaults or DefaultCatalogProvider()
        self._freshness_seconds = float(freshness_seconds)
        self._timeout_seconds = timeout_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._inflight: Optional[asyncio.Future[List[Series]]] = None
        self._generation = 0

    @property
    def gateway(self) -> CatalogGateway:
        return self._gateway

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    def _fresh_entry(self) -> Optional[CacheEntry]:
        entry = self._entry
        if entry is None:
            return None
        age = self._clock() - entry.fetched_at
        if age < self._freshness_seconds:
            return entry
        emit_cache_event("expired", payload={"age_seconds": round(age, 3)})
        return None

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout_seconds is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout_seconds)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_all(self) -> List[Series]:
        """Return the catalog, fetching it when the cached copy is missing or stale."""

        entry = self._fresh_entry()
        if entry is not None:
            emit_cache_event("hit", payload={"series_count": len(entry.series)})
            return copy.deepcopy(entry.series)

        inflight = self._inflight
        if inflight is None or inflight.done():
            inflight = asyncio.ensure_future(self._fetch(self._generation))
            self._inflight = inflight
        else:
            emit_cache_event("joined in-flight fetch")
        return copy.deepcopy(await asyncio.shield(inflight))

    async def _fetch(self, generation: int) -> List[Series]:
        start = time.perf_counter()
        try:
            series = await self._call(self._gateway.list_series())
        except Exception as error:  # noqa: BLE001 - readers always get a catalog
            LOGGER.warning("Catalog fetch failed; serving defaults: %s", _describe_error(error))
            emit_cache_event(
                "fetch failed",
                payload={"error": _describe_error(error)},
                level=logging.WARNING,
            )
            return self._defaults.get_all()

        duration_ms = (time.perf_counter() - start) * 1000.0
        if not series:
            emit_cache_event("remote catalog empty", duration_ms=duration_ms)
            return self._defaults.get_all()

        if generation == self._generation:
            self._entry = CacheEntry(series=copy.deepcopy(list(series)), fetched_at=self._clock())
            emit_cache_event(
                "stored",
                payload={"series_count": len(series)},
                duration_ms=duration_ms,
            )
        else:
            # A write invalidated the cache while this fetch was running.
            emit_cache_event("discarded stale fetch", duration_ms=duration_ms)
        return list(series)

    def get_all_sync(self) -> List[Series]:
        """Return the last cached catalog or the defaults, without any I/O."""

        if self._entry is not None:
            return copy.deepcopy(self._entry.series)
        return self._defaults.get_all()

    async def get_by_id(self, series_id: str) -> Optional[Series]:
        entry = self._fresh_entry()
        if entry is not None:
            for series in entry.series:
                if series.id == series_id:
                    return copy.deepcopy(series)

        try:
            series = await self._call(self._gateway.get_series(series_id))
        except Exception as error:  # noqa: BLE001 - fall back to defaults
            LOGGER.warning(
                "Series lookup for '%s' failed; checking defaults: %s",
                series_id,
                _describe_error(error),
            )
            series = None
        if series is not None:
            return series
        return self._defaults.get_by_id(series_id)

    def get_by_id_sync(self, series_id: str) -> Optional[Series]:
        for series in self.get_all_sync():
            if series.id == series_id:
                return series
        return None

    async def initialize(self) -> None:
        """Warm the cache so synchronous readers see remote content."""

        await self.get_all()

    def invalidate(self) -> None:
        self._generation += 1
        if self._entry is not None:
            emit_cache_event("invalidated", payload={"generation": self._generation})
        self._entry = None
        # Later readers must not join a fetch that started before the write.
        self._inflight = None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def _mutate(
        self,
        action: str,
        operation: Callable[[], Awaitable[Any]],
        *,
        missing: str,
    ) -> MutationResult[Any]:
        try:
            value = await self._call(operation())
        except Exception as error:  # noqa: BLE001 - surfaced as a failed result
            LOGGER.warning("Catalog write %s failed: %s", action, _describe_error(error))
            return MutationResult.failed(_describe_error(error))
        finally:
            self.invalidate()

        if value is None or value is False:
            return MutationResult.failed(missing)
        LOGGER.info("Catalog write %s succeeded", action)
        return MutationResult.succeeded(value)

    async def add_series(
        self,
        title: str,
        description: str = "",
        icon: str = "",
        image: Optional[str] = None,
    ) -> MutationResult[Series]:
        try:
            title = require_title(title)
        except MalformedInputError as error:
            return MutationResult.failed(str(error))
        return await self._mutate(
            "add_series",
            lambda: self._gateway.create_series(title, description, icon, image),
            missing=SERIES_EXISTS,
        )

    async def delete_series(self, series_id: str) -> MutationResult[bool]:
        return await self._mutate(
            "delete_series",
            lambda: self._gateway.delete_series(series_id),
            missing=SERIES_NOT_FOUND,
        )

    async def add_chapter(
        self,
        series_id: str,
        title: str,
        link: str = "",
        kind: ChapterKind = ChapterKind.STORY,
        content: Optional[str] = None,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> MutationResult[Chapter]:
        try:
            title = require_title(title)
        except MalformedInputError as error:
            return MutationResult.failed(str(error))
        return await self._mutate(
            "add_chapter",
            lambda: self._gateway.append_chapter(
                series_id,
                title,
                link,
                ChapterKind.parse(kind),
                content,
                credit_name,
                credit_link,
            ),
            missing=SERIES_NOT_FOUND,
        )

    async def delete_chapter(self, series_id: str, chapter_id: str) -> MutationResult[bool]:
        return await self._mutate(
            "delete_chapter",
            lambda: self._gateway.remove_chapter(series_id, chapter_id),
            missing=CHAPTER_NOT_FOUND,
        )

    async def update_chapter(
        self, series_id: str, chapter_id: str, fields: Mapping[str, Any]
    ) -> MutationResult[Chapter]:
        updates = dict(fields)
        if "title" in updates:
            try:
                updates["title"] = require_title(updates["title"])
            except MalformedInputError as error:
                return MutationResult.failed(str(error))
        return await self._mutate(
            "update_chapter",
            lambda: self._gateway.patch_chapter(series_id, chapter_id, updates),
            missing=CHAPTER_NOT_FOUND,
        )


__all__ = [
    "CHAPTER_NOT_FOUND",
    "CacheEntry",
    "ContentCache",
    "DEFAULT_FRESHNESS_SECONDS",
    "SERIES_EXISTS",
    "SERIES_NOT_FOUND",
    "TITLE_REQUIRED",
    "require_title",
]
