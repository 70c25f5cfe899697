"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from ..config import AppConfig
from ..errors import RemoteUnavailableError
from ..models import Chapter, ChapterKind, Series, UserProfile, utc_now_iso
from .naming import build_chapter_id, build_series_id


T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


_CHAPTER_COLUMNS: Dict[str, str] = {
    "title": "title",
    "link": "link",
    "type": "kind",
    "kind": "kind",
    "content": "content",
    "creditName": "credit_name",
    "creditLink": "credit_link",
}

_PROFILE_FIELDS = {
    "displayName",
    "email",
    "photoURL",
    "bookmarks",
    "readingHistory",
    "readingProgress",
    "preferredTheme",
    "createdAt",
    "lastLogin",
}


def _apply_document_patch(document: Dict[str, Any], fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``document`` updated with ``fields``.

    Dotted keys such as ``readingProgress.<chapterId>`` update a single entry
    of a nested mapping instead of replacing the whole field.
    """

    patched = dict(document)
    for key, value in fields.items():
        head, dot, tail = key.partition(".")
        if head not in _PROFILE_FIELDS:
            raise ValueError(f"Unknown profile field: {head}")
        if dot:
            nested = dict(patched.get(head) or {})
            nested[tail] = value
            patched[head] = nested
        else:
            patched[key] = value
    return patched


class CatalogRepository:
    """Synchronous repository exposing CRUD helpers for series, chapters and profiles."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter
        self._profile_lock = threading.Lock()

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:  # pragma: no cover - instrumentation only
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...]
        if parameters is None:
            params = ()
        elif isinstance(parameters, tuple):
            params = parameters
        else:
            params = tuple(parameters)
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            rowcount = cursor.rowcount if cursor.rowcount >= 0 else None
            if rowcount is not None:
                event.setdefault("rowcount", int(rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        self._execute(
            connection,
            "PRAGMA foreign_keys = ON",
            action="pragma_foreign_keys",
        )
        return connection

    def _next_position(self, connection: sqlite3.Connection, series_id: str) -> int:
        cursor = self._execute(
            connection,
            "SELECT COALESCE(MAX(position), -1) + 1 FROM chapters WHERE series_id = ?",
            (series_id,),
            action="chapters.next_position",
            table="chapters",
        )
        row = cursor.fetchone()
        next_value = int(row[0] or 0) if row else 0
        LOGGER.debug("Computed next chapter position for %s -> %s", series_id, next_value)
        return next_value

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------
    @staticmethod
    def _chapter_from_row(row: sqlite3.Row) -> Chapter:
        return Chapter(
            id=row["id"],
            title=row["title"],
            kind=ChapterKind.parse(row["kind"]),
            link=row["link"] or None,
            content=row["content"],
            credit_name=row["credit_name"],
            credit_link=row["credit_link"],
            created_at=row["created_at"],
        )

    def _load_chapters(self, connection: sqlite3.Connection, series_id: str) -> List[Chapter]:
        cursor = self._execute(
            connection,
            """
            SELECT id, title, kind, link, content, credit_name, credit_link, created_at
            FROM chapters
            WHERE series_id = ?
            ORDER BY position, rowid
            """,
            (series_id,),
            action="chapters.list",
            table="chapters",
        )
        return [self._chapter_from_row(row) for row in cursor.fetchall()]

    def _series_from_row(self, connection: sqlite3.Connection, row: sqlite3.Row) -> Series:
        return Series(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            icon=row["icon"] or "",
            image=row["image"],
            chapters=self._load_chapters(connection, row["id"]),
            created_at=row["created_at"],
        )

    def list_series(self) -> List[Series]:
        with self._track_db_event("list_series", table="series") as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    """
                    SELECT id, title, description, icon, image, created_at
                    FROM series
                    ORDER BY created_at DESC, rowid DESC
                    """,
                    action="series.list",
                    table="series",
                )
                records = [self._series_from_row(connection, row) for row in cursor.fetchall()]
                event["series_count"] = len(records)
                return records

    def get_series(self, series_id: str) -> Optional[Series]:
        LOGGER.debug("Looking up series '%s'", series_id)
        with self._track_db_event("get_series", table="series", series_id=series_id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "SELECT id, title, description, icon, image, created_at FROM series WHERE id = ?",
                    (series_id,),
                    action="series.lookup",
                    table="series",
                )
                row = cursor.fetchone()
                event["found"] = bool(row)
                return self._series_from_row(connection, row) if row else None

    def create_series(
        self,
        title: str,
        description: str = "",
        icon: str = "",
        image: Optional[str] = None,
    ) -> Optional[Series]:
        series_id = build_series_id(title)
        created_at = utc_now_iso()
        LOGGER.debug("Adding series '%s' as '%s'", title, series_id)
        with self._track_db_event(
            "create_series",
            table="series",
            series_id=series_id,
            has_image=bool(image),
        ) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    """
                    INSERT OR IGNORE INTO series(id, title, description, icon, image, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (series_id, title, description, icon, image, created_at),
                    action="series.insert",
                    table="series",
                )
                if cursor.rowcount == 0:
                    event["status"] = "duplicate"
                    LOGGER.warning("Series '%s' already exists; not overwriting", series_id)
                    return None
                return Series(
                    id=series_id,
                    title=title,
                    description=description,
                    icon=icon,
                    image=image,
                    chapters=[],
                    created_at=created_at,
                )

    def delete_series(self, series_id: str) -> bool:
        with self._track_db_event("delete_series", table="series", series_id=series_id):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "DELETE FROM series WHERE id = ?",
                    (series_id,),
                    action="series.delete",
                    table="series",
                )
                removed = cursor.rowcount > 0
                LOGGER.debug("Deleted series '%s': %s", series_id, removed)
                return removed

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------
    def _series_exists(self, connection: sqlite3.Connection, series_id: str) -> bool:
        cursor = self._execute(
            connection,
            "SELECT 1 FROM series WHERE id = ?",
            (series_id,),
            action="series.exists",
            table="series",
        )
        return cursor.fetchone() is not None

    def _unique_chapter_id(self, connection: sqlite3.Connection, series_id: str, title: str) -> str:
        created_ms = int(time.time() * 1000)
        while True:
            candidate = build_chapter_id(title, created_ms=created_ms)
            cursor = self._execute(
                connection,
                "SELECT 1 FROM chapters WHERE series_id = ? AND id = ?",
                (series_id, candidate),
                action="chapters.exists",
                table="chapters",
            )
            if cursor.fetchone() is None:
                return candidate
            created_ms += 1

    def append_chapter(
        self,
        series_id: str,
        title: str,
        link: str = "",
        kind: ChapterKind = ChapterKind.STORY,
        body: Optional[str] = None,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> Optional[Chapter]:
        kind = ChapterKind.parse(kind)
        with self._track_db_event(
            "append_chapter",
            table="chapters",
            series_id=series_id,
            kind=kind.value,
            has_link=bool(link),
            has_body=bool(body),
        ) as event:
            with self._connect() as connection:
                if not self._series_exists(connection, series_id):
                    event["status"] = "missing_series"
                    LOGGER.debug("Cannot add chapter; series '%s' not found", series_id)
                    return None
                chapter = Chapter(
                    id=self._unique_chapter_id(connection, series_id, title),
                    title=title,
                    kind=kind,
                    link=link or None,
                    content=body,
                    credit_name=credit_name,
                    credit_link=credit_link,
                    created_at=utc_now_iso(),
                )
                position = self._next_position(connection, series_id)
                self._execute(
                    connection,
                    """
                    INSERT INTO chapters(
                        id,
                        series_id,
                        title,
                        kind,
                        link,
                        content,
                        credit_name,
                        credit_link,
                        position,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chapter.id,
                        series_id,
                        chapter.title,
                        chapter.kind.value,
                        chapter.link,
                        chapter.content,
                        chapter.credit_name,
                        chapter.credit_link,
                        position,
                        chapter.created_at,
                    ),
                    action="chapters.insert",
                    table="chapters",
                )
                event.update({"chapter_id": chapter.id, "position": position})
                LOGGER.debug(
                    "Chapter '%s' inserted as %s at position=%s for series '%s'",
                    title,
                    chapter.id,
                    position,
                    series_id,
                )
                return chapter

    def remove_chapter(self, series_id: str, chapter_id: str) -> bool:
        with self._track_db_event(
            "remove_chapter", table="chapters", series_id=series_id, chapter_id=chapter_id
        ):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "DELETE FROM chapters WHERE series_id = ? AND id = ?",
                    (series_id, chapter_id),
                    action="chapters.delete",
                    table="chapters",
                )
                return cursor.rowcount > 0

    def patch_chapter(
        self, series_id: str, chapter_id: str, fields: Mapping[str, Any]
    ) -> Optional[Chapter]:
        assignments: List[str] = []
        parameters: List[Any] = []
        for key, value in fields.items():
            column = _CHAPTER_COLUMNS.get(key)
            if column is None:
                raise ValueError(f"Unknown chapter field: {key}")
            if column == "kind":
                value = ChapterKind.parse(value).value
            assignments.append(f"{column} = ?")
            parameters.append(value)

        with self._track_db_event(
            "patch_chapter",
            table="chapters",
            series_id=series_id,
            chapter_id=chapter_id,
            field_count=len(assignments),
        ) as event:
            with self._connect() as connection:
                if assignments:
                    self._execute(
                        connection,
                        f"UPDATE chapters SET {', '.join(assignments)} WHERE series_id = ? AND id = ?",
                        (*parameters, series_id, chapter_id),
                        action="chapters.update",
                        table="chapters",
                    )
                cursor = self._execute(
                    connection,
                    """
                    SELECT id, title, kind, link, content, credit_name, credit_link, created_at
                    FROM chapters
                    WHERE series_id = ? AND id = ?
                    """,
                    (series_id, chapter_id),
                    action="chapters.lookup",
                    table="chapters",
                )
                row = cursor.fetchone()
                event["found"] = bool(row)
                return self._chapter_from_row(row) if row else None

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------
    def _load_profile_document(
        self, connection: sqlite3.Connection, user_id: str
    ) -> Optional[Dict[str, Any]]:
        cursor = self._execute(
            connection,
            "SELECT document FROM user_profiles WHERE user_id = ?",
            (user_id,),
            action="user_profiles.lookup",
            table="user_profiles",
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["document"])

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._track_db_event("get_user_profile", table="user_profiles") as event:
            with self._connect() as connection:
                document = self._load_profile_document(connection, user_id)
                event["found"] = document is not None
                if document is None:
                    return None
                return UserProfile.from_document(user_id, document)

    def create_user_profile(self, user_id: str, fields: Mapping[str, Any]) -> UserProfile:
        document = _apply_document_patch({}, fields)
        with self._track_db_event("create_user_profile", table="user_profiles"):
            with self._connect() as connection:
                self._execute(
                    connection,
                    "INSERT OR REPLACE INTO user_profiles(user_id, document) VALUES (?, ?)",
                    (user_id, json.dumps(document)),
                    action="user_profiles.insert",
                    table="user_profiles",
                )
        return UserProfile.from_document(user_id, document)

    def patch_user_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[UserProfile]:
        with self._track_db_event(
            "patch_user_profile",
            table="user_profiles",
            fields=sorted(fields.keys()),
        ) as event:
            with self._profile_lock, self._connect() as connection:
                # The read and the write below form a single write transaction.
                self._execute(
                    connection,
                    "BEGIN IMMEDIATE",
                    action="user_profiles.begin",
                    table="user_profiles",
                )
                document = self._load_profile_document(connection, user_id)
                if document is None:
                    event["found"] = False
                    return None
                patched = _apply_document_patch(document, fields)
                self._execute(
                    connection,
                    "UPDATE user_profiles SET document = ? WHERE user_id = ?",
                    (json.dumps(patched), user_id),
                    action="user_profiles.update",
                    table="user_profiles",
                )
                return UserProfile.from_document(user_id, patched)


class SQLiteCatalogGateway:
    """Asynchronous :class:`~portal.services.gateway.CatalogGateway` over SQLite.

    Blocking database work runs on the loop's default executor. SQLite errors
    surface as :class:`~portal.errors.RemoteUnavailableError`.
    """

    def __init__(self, repository: CatalogRepository) -> None:
        self._repository = repository

    @property
    def repository(self) -> CatalogRepository:
        return self._repository

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(operation, *args))
        except sqlite3.Error as error:
            LOGGER.error("Catalog store call %s failed: %s", operation.__name__, error)
            raise RemoteUnavailableError(str(error)) from error

    async def list_series(self) -> List[Series]:
        return await self._run(self._repository.list_series)

    async def get_series(self, series_id: str) -> Optional[Series]:
        return await self._run(self._repository.get_series, series_id)

    async def create_series(
        self,
        title: str,
        description: str,
        icon: str,
        image: Optional[str] = None,
    ) -> Optional[Series]:
        return await self._run(self._repository.create_series, title, description, icon, image)

    async def delete_series(self, series_id: str) -> bool:
        return await self._run(self._repository.delete_series, series_id)

    async def append_chapter(
        self,
        series_id: str,
        title: str,
        link: str,
        kind: ChapterKind,
        body: Optional[str] = None,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> Optional[Chapter]:
        return await self._run(
            self._repository.append_chapter,
            series_id,
            title,
            link,
            kind,
            body,
            credit_name,
            credit_link,
        )

    async def remove_chapter(self, series_id: str, chapter_id: str) -> bool:
        return await self._run(self._repository.remove_chapter, series_id, chapter_id)

    async def patch_chapter(
        self, series_id: str, chapter_id: str, fields: Mapping[str, Any]
    ) -> Optional[Chapter]:
        return await self._run(self._repository.patch_chapter, series_id, chapter_id, dict(fields))

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return await self._run(self._repository.get_user_profile, user_id)

    async def create_user_profile(self, user_id: str, fields: Mapping[str, Any]) -> UserProfile:
        return await self._run(self._repository.create_user_profile, user_id, dict(fields))

    async def patch_user_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[UserProfile]:
        return await self._run(self._repository.patch_user_profile, user_id, dict(fields))


__all__ = ["CatalogRepository", "SQLiteCatalogGateway"]
