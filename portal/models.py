"""Catalog and profile records exchanged with the document store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


class ChapterKind(str, Enum):
    STORY = "story"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value: Any) -> "ChapterKind":
        if isinstance(value, ChapterKind):
            return value
        normalized = str(value or "").strip().lower()
        # Older documents store audio chapters as "audiobook".
        if normalized == "audiobook":
            return cls.AUDIO
        return cls(normalized)


@dataclass
class Chapter:
    id: str
    title: str
    kind: ChapterKind = ChapterKind.STORY
    link: Optional[str] = None
    content: Optional[str] = None
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "type": self.kind.value,
            "link": self.link or "",
            "createdAt": self.created_at,
        }
        if self.content is not None:
            document["content"] = self.content
        if self.credit_name is not None:
            document["creditName"] = self.credit_name
        if self.credit_link is not None:
            document["creditLink"] = self.credit_link
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Chapter":
        return cls(
            id=str(document["id"]),
            title=str(document.get("title", "")),
            kind=ChapterKind.parse(document.get("type", ChapterKind.STORY.value)),
            link=document.get("link") or None,
            content=document.get("content"),
            credit_name=document.get("creditName"),
            credit_link=document.get("creditLink"),
            created_at=str(document.get("createdAt") or utc_now_iso()),
        )


@dataclass
class Series:
    id: str
    title: str
    description: str = ""
    icon: str = ""
    image: Optional[str] = None
    chapters: List[Chapter] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)

    def find_chapter(self, chapter_id: str) -> Optional[Chapter]:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "chapters": [chapter.to_document() for chapter in self.chapters],
            "createdAt": self.created_at,
        }
        if self.image is not None:
            document["image"] = self.image
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Series":
        return cls(
            id=str(document["id"]),
            title=str(document.get("title", "")),
            description=str(document.get("description") or ""),
            icon=str(document.get("icon") or ""),
            image=document.get("image") or None,
            chapters=[Chapter.from_document(item) for item in document.get("chapters") or []],
            created_at=str(document.get("createdAt") or utc_now_iso()),
        )


@dataclass(frozen=True)
class HistoryEntry:
    series_id: str
    chapter_id: str
    timestamp: str

    def to_document(self) -> Dict[str, str]:
        return {
            "seriesId": self.series_id,
            "chapterId": self.chapter_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "HistoryEntry":
        return cls(
            series_id=str(document["seriesId"]),
            chapter_id=str(document["chapterId"]),
            timestamp=str(document.get("timestamp") or ""),
        )


DEFAULT_THEME = "night"


@dataclass
class UserProfile:
    """Reading state and identity details for a signed-in user."""

    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None
    bookmarks: List[str] = field(default_factory=list)
    reading_history: List[HistoryEntry] = field(default_factory=list)
    reading_progress: Dict[str, int] = field(default_factory=dict)
    preferred_theme: str = DEFAULT_THEME
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    def copy(self) -> "UserProfile":
        return UserProfile(
            user_id=self.user_id,
            display_name=self.display_name,
            email=self.email,
            photo_url=self.photo_url,
            bookmarks=list(self.bookmarks),
            reading_history=list(self.reading_history),
            reading_progress=dict(self.reading_progress),
            preferred_theme=self.preferred_theme,
            created_at=self.created_at,
            last_login=self.last_login,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "displayName": self.display_name,
            "email": self.email,
            "photoURL": self.photo_url,
            "bookmarks": list(self.bookmarks),
            "readingHistory": [entry.to_document() for entry in self.reading_history],
            "readingProgress": dict(self.reading_progress),
            "preferredTheme": self.preferred_theme,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
        }

    @classmethod
    def from_document(cls, user_id: str, document: Mapping[str, Any]) -> "UserProfile":
        progress: Dict[str, int] = {}
        for chapter_id, value in (document.get("readingProgress") or {}).items():
            try:
                progress[str(chapter_id)] = int(value)
            except (TypeError, ValueError):
                continue
        return cls(
            user_id=user_id,
            display_name=document.get("displayName"),
            email=document.get("email"),
            photo_url=document.get("photoURL"),
            bookmarks=[str(item) for item in document.get("bookmarks") or []],
            reading_history=[
                HistoryEntry.from_document(item) for item in document.get("readingHistory") or []
            ],
            reading_progress=progress,
            preferred_theme=str(document.get("preferredTheme") or DEFAULT_THEME),
            created_at=document.get("createdAt"),
            last_login=document.get("lastLogin"),
        )


__all__ = [
    "Chapter",
    "ChapterKind",
    "DEFAULT_THEME",
    "HistoryEntry",
    "Series",
    "UserProfile",
    "utc_now",
    "utc_now_iso",
]
