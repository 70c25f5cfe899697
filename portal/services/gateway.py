"""Contract for the document store holding the catalog and user profiles."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, runtime_checkable

from ..models import Chapter, ChapterKind, Series, UserProfile


@runtime_checkable
class CatalogGateway(Protocol):
    """Asynchronous document API consumed by the cache and reading-state service.

    Every call is atomic for a single document. Failures are reported either
    by returning ``None`` (missing document) or by raising; writes are never
    partially applied.
    """

    async def list_series(self) -> List[Series]: ...

    async def get_series(self, series_id: str) -> Optional[Series]: ...

    async def create_series(
        self,
        title: str,
        description: str,
        icon: str,
        image: Optional[str] = None,
    ) -> Optional[Series]: ...

    async def delete_series(self, series_id: str) -> bool: ...

    async def append_chapter(
        self,
        series_id: str,
        title: str,
        link: str,
        kind: ChapterKind,
        body: Optional[str] = None,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> Optional[Chapter]: ...

    async def remove_chapter(self, series_id: str, chapter_id: str) -> bool: ...

    async def patch_chapter(
        self, series_id: str, chapter_id: str, fields: Mapping[str, Any]
    ) -> Optional[Chapter]: ...

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]: ...

    async def create_user_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> UserProfile: ...

    async def patch_user_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[UserProfile]: ...


__all__ = ["CatalogGateway"]
