"""Bookmarks, reading history and progress for signed-in readers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from ..errors import RemoteUnavailableError
from ..models import (
    DEFAULT_THEME,
    Chapter,
    ChapterKind,
    HistoryEntry,
    Series,
    UserProfile,
    utc_now_iso,
)
from .events import emit_profile_event
from .gateway import CatalogGateway
from .progress import is_in_progress, quantize_progress
from .results import MutationResult


T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

HISTORY_LIMIT = 50


# ----------------------------------------------------------------------
# Pure state transitions shared by the service and optimistic callers
# ----------------------------------------------------------------------
def apply_bookmark_toggle(bookmarks: Iterable[str], series_id: str) -> Tuple[List[str], bool]:
    """Return the bookmark list with ``series_id`` flipped and its new membership."""

    current = list(bookmarks)
    if series_id in current:
        return [item for item in current if item != series_id], False
    return current + [series_id], True


def apply_history_entry(
    history: Iterable[HistoryEntry],
    entry: HistoryEntry,
    *,
    limit: int = HISTORY_LIMIT,
) -> List[HistoryEntry]:
    """Return ``history`` with ``entry`` moved to the front, deduplicated by chapter."""

    remaining = [item for item in history if item.chapter_id != entry.chapter_id]
    return [entry, *remaining][:limit]


# ----------------------------------------------------------------------
# Derived read views
# ----------------------------------------------------------------------
@dataclass
class ContinueItem:
    series: Series
    chapter: Chapter
    progress: int
    next_chapter: Optional[Chapter]


@dataclass
class HistoryItem:
    entry: HistoryEntry
    series: Series
    chapter: Chapter


def _index_chapters(catalog: Iterable[Series]) -> Dict[str, Tuple[Series, int]]:
    index: Dict[str, Tuple[Series, int]] = {}
    for series in catalog:
        for position, chapter in enumerate(series.chapters):
            index.setdefault(chapter.id, (series, position))
    return index


def continue_reading(profile: UserProfile, catalog: Iterable[Series]) -> List[ContinueItem]:
    """Chapters that are started but unfinished, most progressed first."""

    index = _index_chapters(catalog)
    items: List[ContinueItem] = []
    for chapter_id, progress in profile.reading_progress.items():
        if not is_in_progress(progress):
            continue
        located = index.get(chapter_id)
        if located is None:
            continue
        series, position = located
        following = series.chapters[position + 1] if position + 1 < len(series.chapters) else None
        items.append(
            ContinueItem(
                series=series,
                chapter=series.chapters[position],
                progress=progress,
                next_chapter=following,
            )
        )
    items.sort(key=lambda item: item.progress, reverse=True)
    return items


def bookmarked_series(profile: UserProfile, catalog: Iterable[Series]) -> List[Series]:
    marks = set(profile.bookmarks)
    return [series for series in catalog if series.id in marks]


def history_items(profile: UserProfile, catalog: Iterable[Series]) -> List[HistoryItem]:
    """Enrich history entries, dropping those whose series or chapter is gone.

    Entries keep the stored most-recent-first order.
    """

    by_id = {series.id: series for series in catalog}
    items: List[HistoryItem] = []
    for entry in profile.reading_history:
        series = by_id.get(entry.series_id)
        if series is None:
            continue
        chapter = series.find_chapter(entry.chapter_id)
        if chapter is None:
            continue
        items.append(HistoryItem(entry=entry, series=series, chapter=chapter))
    return items


def adjacent_chapters(
    series: Series,
    chapter_id: str,
    *,
    kind: Optional[ChapterKind] = None,
) -> Tuple[Optional[Chapter], Optional[Chapter]]:
    """Return the previous and next chapter around ``chapter_id`` by list order.

    When ``kind`` is given only chapters of that kind take part in navigation.
    """

    chapters = [
        chapter for chapter in series.chapters if kind is None or chapter.kind is kind
    ]
    for position, chapter in enumerate(chapters):
        if chapter.id != chapter_id:
            continue
        previous = chapters[position - 1] if position > 0 else None
        following = chapters[position + 1] if position + 1 < len(chapters) else None
        return previous, following
    return None, None


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------
class ReadingStateService:
    """Read-modify-write operations on a user's profile document.

    Each method writes back the whole field it changes, so a retried call has
    the same effect and a failed write leaves the stored profile untouched.
    Gateway failures raise :class:`~portal.errors.RemoteUnavailableError`.
    """

    def __init__(
        self,
        gateway: CatalogGateway,
        *,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._gateway = gateway
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            if self._timeout_seconds is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, timeout=self._timeout_seconds)
        except RemoteUnavailableError:
            raise
        except Exception as error:  # noqa: BLE001 - normalise gateway failures
            raise RemoteUnavailableError(
                f"Profile store call failed: {error.__class__.__name__}: {error}"
            ) from error

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return await self._call(self._gateway.get_user_profile(user_id))

    async def ensure_profile(
        self,
        user_id: str,
        *,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> UserProfile:
        """Create the profile on first sign-in, otherwise refresh ``lastLogin``."""

        now = self._clock()
        existing = await self._call(self._gateway.get_user_profile(user_id))
        if existing is not None:
            updated = await self._call(
                self._gateway.patch_user_profile(user_id, {"lastLogin": now})
            )
            return updated or existing

        emit_profile_event("created profile", context={"user_id": user_id})
        return await self._call(
            self._gateway.create_user_profile(
                user_id,
                {
                    "displayName": display_name,
                    "email": email,
                    "photoURL": photo_url,
                    "createdAt": now,
                    "lastLogin": now,
                    "bookmarks": [],
                    "readingHistory": [],
                    "readingProgress": {},
                    "preferredTheme": DEFAULT_THEME,
                },
            )
        )

    async def toggle_bookmark(self, user_id: str, series_id: str) -> bool:
        """Flip ``series_id`` in the bookmark set and return the new membership."""

        profile = await self._call(self._gateway.get_user_profile(user_id))
        if profile is None:
            LOGGER.debug("Bookmark toggle ignored; no profile for %s", user_id)
            return False

        bookmarks, bookmarked = apply_bookmark_toggle(profile.bookmarks, series_id)
        await self._call(self._gateway.patch_user_profile(user_id, {"bookmarks": bookmarks}))
        emit_profile_event(
            "bookmark added" if bookmarked else "bookmark removed",
            context={"user_id": user_id, "series_id": series_id},
        )
        return bookmarked

    async def record_history(
        self, user_id: str, series_id: str, chapter_id: str
    ) -> Optional[List[HistoryEntry]]:
        """Move ``chapter_id`` to the front of the reading history."""

        profile = await self._call(self._gateway.get_user_profile(user_id))
        if profile is None:
            LOGGER.debug("History update ignored; no profile for %s", user_id)
            return None

        entry = HistoryEntry(series_id=series_id, chapter_id=chapter_id, timestamp=self._clock())
        history = apply_history_entry(profile.reading_history, entry)
        await self._call(
            self._gateway.patch_user_profile(
                user_id,
                {"readingHistory": [item.to_document() for item in history]},
            )
        )
        emit_profile_event(
            "history recorded",
            context={"user_id": user_id, "chapter_id": chapter_id},
            payload={"history_length": len(history)},
        )
        return history

    async def update_progress(
        self, user_id: str, chapter_id: str, raw_percent: float
    ) -> Optional[int]:
        """Store the quantized progress for ``chapter_id``; ``None`` when no profile exists."""

        percent = quantize_progress(raw_percent)
        updated = await self._call(
            self._gateway.patch_user_profile(
                user_id, {f"readingProgress.{chapter_id}": percent}
            )
        )
        if updated is None:
            LOGGER.debug("Progress update ignored; no profile for %s", user_id)
            return None
        emit_profile_event(
            "progress updated",
            context={"user_id": user_id, "chapter_id": chapter_id},
            payload={"raw_percent": raw_percent, "stored_percent": percent},
            level=logging.DEBUG,
        )
        return percent

    async def update_preferred_theme(self, user_id: str, theme: str) -> bool:
        updated = await self._call(
            self._gateway.patch_user_profile(user_id, {"preferredTheme": theme})
        )
        return updated is not None


class OptimisticReadingState:
    """Local copy of a profile that applies changes before the store confirms them.

    A failed write restores the copy taken before the change and reports a
    failed :class:`MutationResult`.
    """

    def __init__(self, service: ReadingStateService, profile: UserProfile) -> None:
        self._service = service
        self._profile = profile.copy()
        self._last_result: MutationResult[object] = MutationResult.succeeded(None)

    @property
    def profile(self) -> UserProfile:
        return self._profile

    @property
    def last_result(self) -> MutationResult[object]:
        return self._last_result

    def is_bookmarked(self, series_id: str) -> bool:
        return series_id in self._profile.bookmarks

    def _rollback(self, snapshot: UserProfile, error: str) -> MutationResult:
        LOGGER.warning("Rolling back optimistic change for %s: %s", snapshot.user_id, error)
        self._profile = snapshot
        self._last_result = MutationResult.failed(error)
        return self._last_result

    async def toggle_bookmark(self, series_id: str) -> MutationResult[bool]:
        snapshot = self._profile.copy()
        bookmarks, expected = apply_bookmark_toggle(self._profile.bookmarks, series_id)
        self._profile.bookmarks = bookmarks
        self._last_result = MutationResult.pending()

        try:
            confirmed = await self._service.toggle_bookmark(snapshot.user_id, series_id)
        except RemoteUnavailableError as error:
            return self._rollback(snapshot, str(error))

        if confirmed != expected:
            # Another writer changed the set first; the stored state wins.
            others = [item for item in snapshot.bookmarks if item != series_id]
            self._profile.bookmarks = others + [series_id] if confirmed else others
        self._last_result = MutationResult.succeeded(confirmed)
        return self._last_result

    async def record_history(self, series_id: str, chapter_id: str) -> MutationResult[List[HistoryEntry]]:
        snapshot = self._profile.copy()
        provisional = HistoryEntry(series_id=series_id, chapter_id=chapter_id, timestamp=utc_now_iso())
        self._profile.reading_history = apply_history_entry(
            self._profile.reading_history, provisional
        )
        self._last_result = MutationResult.pending()

        try:
            history = await self._service.record_history(snapshot.user_id, series_id, chapter_id)
        except RemoteUnavailableError as error:
            return self._rollback(snapshot, str(error))
        if history is None:
            return self._rollback(snapshot, "Profile not found")

        self._profile.reading_history = list(history)
        self._last_result = MutationResult.succeeded(history)
        return self._last_result

    async def update_progress(self, chapter_id: str, raw_percent: float) -> MutationResult[int]:
        snapshot = self._profile.copy()
        self._profile.reading_progress[chapter_id] = quantize_progress(raw_percent)
        self._last_result = MutationResult.pending()

        try:
            stored = await self._service.update_progress(snapshot.user_id, chapter_id, raw_percent)
        except RemoteUnavailableError as error:
            return self._rollback(snapshot, str(error))
        if stored is None:
            return self._rollback(snapshot, "Profile not found")

        self._last_result = MutationResult.succeeded(stored)
        return self._last_result


__all__ = [
    "ContinueItem",
    "HISTORY_LIMIT",
    "HistoryItem",
    "OptimisticReadingState",
    "ReadingStateService",
    "adjacent_chapters",
    "apply_bookmark_toggle",
    "apply_history_entry",
    "bookmarked_series",
    "continue_reading",
    "history_items",
]
