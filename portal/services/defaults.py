"""Fallback catalog shown when the document store is empty or unreachable."""

from __future__ import annotations

from typing import Iterable, List, Optional

from ..models import Series, utc_now_iso


_DEFAULT_SERIES = (
    {
        "id": "shadow-slave-peaceful-dreams",
        "title": "Shadow Slave - Peaceful Dreams",
        "description": (
            "An alternate universe story featuring Sunny, Cassie, Nephis and more "
            "characters from the Shadow Slave universe."
        ),
        "icon": "\U0001F319",
    },
)


class DefaultCatalogProvider:
    """Hand out fresh copies of a static placeholder catalog.

    The collection is never empty, so visitors always have something to browse.
    """

    def __init__(self, series: Optional[Iterable[Series]] = None) -> None:
        templates = [item.to_document() for item in series] if series is not None else None
        if templates is not None and not templates:
            raise ValueError("The default catalog must contain at least one series")
        self._templates = templates

    def get_all(self) -> List[Series]:
        if self._templates is not None:
            return [Series.from_document(template) for template in self._templates]
        created_at = utc_now_iso()
        return [
            Series(
                id=entry["id"],
                title=entry["title"],
                description=entry["description"],
                icon=entry["icon"],
                chapters=[],
                created_at=created_at,
            )
            for entry in _DEFAULT_SERIES
        ]

    def get_by_id(self, series_id: str) -> Optional[Series]:
        for series in self.get_all():
            if series.id == series_id:
                return series
        return None


__all__ = ["DefaultCatalogProvider"]
