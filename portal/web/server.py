"""FastAPI application exposing the catalog cache and reading state."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Response
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..errors import RemoteUnavailableError
from ..models import Chapter, ChapterKind, Series, UserProfile
from ..services.audio import AudioSource, AudioSourceResolver, resolve_document_embed
from ..services.cache import (
    CHAPTER_NOT_FOUND,
    SERIES_EXISTS,
    SERIES_NOT_FOUND,
    TITLE_REQUIRED,
    ContentCache,
)
from ..services.events import emit_structured_event
from ..services.progress import progress_from_ratio
from ..services.reading_state import (
    ReadingStateService,
    bookmarked_series,
    continue_reading,
    history_items,
)
from ..services.results import MutationResult


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "reading_portal_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("reading_portal.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


# ----------------------------------------------------------------------
# Payloads
# ----------------------------------------------------------------------
class SeriesCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    icon: str = ""
    image: Optional[str] = None


class ChapterCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    kind: ChapterKind = ChapterKind.STORY
    link: str = ""
    content: Optional[str] = None
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None


class ChapterUpdatePayload(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    kind: Optional[ChapterKind] = None
    link: Optional[str] = None
    content: Optional[str] = None
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None


class ProfilePayload(BaseModel):
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None


class HistoryPayload(BaseModel):
    series_id: str = Field(..., min_length=1)
    chapter_id: str = Field(..., min_length=1)


class ProgressPayload(BaseModel):
    """Either a percentage or a reader position out of a total (seconds, pixels)."""

    percent: Optional[float] = None
    position: Optional[float] = Field(None, ge=0)
    total: Optional[float] = Field(None, ge=0)

    def raw_percent(self) -> Optional[float]:
        if self.percent is not None:
            return self.percent
        if self.position is not None and self.total is not None:
            return progress_from_ratio(self.position, self.total)
        return None


class ThemePayload(BaseModel):
    theme: str = Field(..., min_length=1)


_UPDATE_FIELD_NAMES: Dict[str, str] = {
    "title": "title",
    "kind": "type",
    "link": "link",
    "content": "content",
    "credit_name": "creditName",
    "credit_link": "creditLink",
}

_FAILURE_STATUS: Dict[str, int] = {
    SERIES_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CHAPTER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    SERIES_EXISTS: status.HTTP_409_CONFLICT,
    TITLE_REQUIRED: status.HTTP_400_BAD_REQUEST,
}


# ----------------------------------------------------------------------
# Serialisation helpers
# ----------------------------------------------------------------------
def _serialize_series(series: Series) -> Dict[str, Any]:
    payload = series.to_document()
    payload["chapter_count"] = len(series.chapters)
    return payload


def _serialize_audio(source: AudioSource) -> Dict[str, Any]:
    return {
        "playable_url": source.playable_url,
        "embed_url": source.embed_url,
        "is_third_party_host": source.is_third_party_host,
        "has_source": source.has_source,
    }


def _serialize_profile(profile: UserProfile) -> Dict[str, Any]:
    payload = profile.to_document()
    payload["userId"] = profile.user_id
    return payload


def _unwrap(result: MutationResult[Any]) -> Any:
    if result.ok:
        return result.value
    detail = result.error or "Write failed"
    status_code = _FAILURE_STATUS.get(detail, status.HTTP_503_SERVICE_UNAVAILABLE)
    raise HTTPException(status_code=status_code, detail=detail)


def create_app(
    cache: ContentCache,
    reading_state: ReadingStateService,
    *,
    resolver: Optional[AudioSourceResolver] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application around the shared cache."""

    @contextlib.asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        await cache.initialize()
        LOGGER.info("Catalog cache warmed")
        yield

    app = FastAPI(
        title="Reading Portal",
        description="Browse, read and listen to fan-fiction series",
        root_path=root_path or "",
        lifespan=_lifespan,
    )
    app.state.server = None
    app.state.cache = cache
    app.state.reading_state = reading_state
    app.state.resolver = resolver or AudioSourceResolver()
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    audio_resolver: AudioSourceResolver = app.state.resolver

    async def _require_series(series_id: str) -> Series:
        series = await cache.get_by_id(series_id)
        if series is None:
            raise HTTPException(status_code=404, detail=SERIES_NOT_FOUND)
        return series

    async def _require_chapter(series_id: str, chapter_id: str) -> Chapter:
        series = await _require_series(series_id)
        chapter = series.find_chapter(chapter_id)
        if chapter is None:
            raise HTTPException(status_code=404, detail=CHAPTER_NOT_FOUND)
        return chapter

    async def _require_profile(user_id: str) -> UserProfile:
        try:
            profile = await reading_state.get_profile(user_id)
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return profile

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    @app.get("/api/series")
    async def list_series() -> Dict[str, Any]:
        series = await cache.get_all()
        _log_event("Listed series", series_count=len(series))
        return {
            "series": [_serialize_series(item) for item in series],
            "stats": {
                "series_count": len(series),
                "chapter_count": sum(len(item.chapters) for item in series),
            },
        }

    @app.get("/api/series/{series_id}")
    async def get_series(series_id: str) -> Dict[str, Any]:
        series = await _require_series(series_id)
        return {"series": _serialize_series(series)}

    @app.post("/api/series", status_code=status.HTTP_201_CREATED)
    async def create_series(payload: SeriesCreatePayload) -> Dict[str, Any]:
        _log_event("Creating series", title=payload.title)
        created = _unwrap(
            await cache.add_series(
                payload.title,
                payload.description.strip(),
                payload.icon.strip(),
                payload.image,
            )
        )
        _log_event("Created series", series_id=created.id)
        return {"series": _serialize_series(created)}

    @app.delete(
        "/api/series/{series_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        response_class=Response,
    )
    async def delete_series(series_id: str) -> Response:
        _log_event("Deleting series", series_id=series_id)
        _unwrap(await cache.delete_series(series_id))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/series/{series_id}/chapters", status_code=status.HTTP_201_CREATED)
    async def create_chapter(series_id: str, payload: ChapterCreatePayload) -> Dict[str, Any]:
        _log_event("Creating chapter", series_id=series_id, title=payload.title, kind=payload.kind)
        chapter = _unwrap(
            await cache.add_chapter(
                series_id,
                payload.title,
                payload.link.strip(),
                payload.kind,
                payload.content,
                payload.credit_name,
                payload.credit_link,
            )
        )
        return {"chapter": chapter.to_document()}

    @app.put("/api/series/{series_id}/chapters/{chapter_id}")
    async def update_chapter(
        series_id: str, chapter_id: str, payload: ChapterUpdatePayload
    ) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        for name, value in payload.model_dump(exclude_unset=True).items():
            if value is None and name in {"title", "kind"}:
                continue
            updates[_UPDATE_FIELD_NAMES[name]] = value
        _log_event("Updating chapter", series_id=series_id, chapter_id=chapter_id)
        chapter = _unwrap(await cache.update_chapter(series_id, chapter_id, updates))
        return {"chapter": chapter.to_document()}

    @app.delete(
        "/api/series/{series_id}/chapters/{chapter_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        response_class=Response,
    )
    async def delete_chapter(series_id: str, chapter_id: str) -> Response:
        _log_event("Deleting chapter", series_id=series_id, chapter_id=chapter_id)
        _unwrap(await cache.delete_chapter(series_id, chapter_id))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/series/{series_id}/chapters/{chapter_id}/audio")
    async def chapter_audio(series_id: str, chapter_id: str) -> Dict[str, Any]:
        chapter = await _require_chapter(series_id, chapter_id)
        return {"audio": _serialize_audio(audio_resolver.resolve(chapter.link))}

    @app.get("/api/series/{series_id}/chapters/{chapter_id}/document")
    async def chapter_document(series_id: str, chapter_id: str) -> Dict[str, Any]:
        chapter = await _require_chapter(series_id, chapter_id)
        if chapter.content:
            return {"document": {"mode": "inline", "content": chapter.content}}
        embed_url = resolve_document_embed(chapter.link)
        if embed_url is None:
            return {"document": {"mode": "none"}}
        return {"document": {"mode": "embed", "embed_url": embed_url}}

    @app.get("/api/audio/resolve")
    async def resolve_audio(link: str = Query("", description="Stored chapter link")) -> Dict[str, Any]:
        return {"audio": _serialize_audio(audio_resolver.resolve(link))}

    # ------------------------------------------------------------------
    # Reading state
    # ------------------------------------------------------------------
    @app.post("/api/users/{user_id}/profile")
    async def ensure_profile(user_id: str, payload: ProfilePayload) -> Dict[str, Any]:
        try:
            profile = await reading_state.ensure_profile(
                user_id,
                display_name=payload.display_name,
                email=payload.email,
                photo_url=payload.photo_url,
            )
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        return {"profile": _serialize_profile(profile)}

    @app.get("/api/users/{user_id}/profile")
    async def get_profile(user_id: str) -> Dict[str, Any]:
        profile = await _require_profile(user_id)
        return {"profile": _serialize_profile(profile)}

    @app.post("/api/users/{user_id}/bookmarks/{series_id}")
    async def toggle_bookmark(user_id: str, series_id: str) -> Dict[str, Any]:
        await _require_profile(user_id)
        try:
            bookmarked = await reading_state.toggle_bookmark(user_id, series_id)
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        return {"series_id": series_id, "bookmarked": bookmarked}

    @app.post("/api/users/{user_id}/history")
    async def record_history(user_id: str, payload: HistoryPayload) -> Dict[str, Any]:
        try:
            history = await reading_state.record_history(
                user_id, payload.series_id, payload.chapter_id
            )
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        if history is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return {"history": [entry.to_document() for entry in history]}

    @app.put("/api/users/{user_id}/progress/{chapter_id}")
    async def update_progress(
        user_id: str, chapter_id: str, payload: ProgressPayload
    ) -> Dict[str, Any]:
        raw_percent = payload.raw_percent()
        if raw_percent is None:
            raise HTTPException(status_code=400, detail="Provide percent, or position and total")
        try:
            stored = await reading_state.update_progress(user_id, chapter_id, raw_percent)
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        if stored is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return {"chapter_id": chapter_id, "progress": stored}

    @app.put("/api/users/{user_id}/theme")
    async def update_theme(user_id: str, payload: ThemePayload) -> Dict[str, Any]:
        try:
            updated = await reading_state.update_preferred_theme(user_id, payload.theme.strip())
        except RemoteUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error
        if not updated:
            raise HTTPException(status_code=404, detail="Profile not found")
        return {"theme": payload.theme.strip()}

    @app.get("/api/users/{user_id}/continue-reading")
    async def list_continue_reading(user_id: str) -> Dict[str, Any]:
        profile = await _require_profile(user_id)
        items = continue_reading(profile, await cache.get_all())
        return {
            "items": [
                {
                    "series_id": item.series.id,
                    "series_title": item.series.title,
                    "chapter": item.chapter.to_document(),
                    "progress": item.progress,
                    "next_chapter": item.next_chapter.to_document() if item.next_chapter else None,
                }
                for item in items
            ]
        }

    @app.get("/api/users/{user_id}/bookmarks")
    async def list_bookmarks(user_id: str) -> Dict[str, Any]:
        profile = await _require_profile(user_id)
        series: List[Series] = bookmarked_series(profile, await cache.get_all())
        return {"series": [_serialize_series(item) for item in series]}

    @app.get("/api/users/{user_id}/history")
    async def list_history(user_id: str) -> Dict[str, Any]:
        profile = await _require_profile(user_id)
        items = history_items(profile, await cache.get_all())
        return {
            "items": [
                {
                    **item.entry.to_document(),
                    "series_title": item.series.title,
                    "chapter_title": item.chapter.title,
                }
                for item in items
            ]
        }

    return app


__all__ = ["create_app", "ContextualLoggerAdapter", "RequestContextMiddleware"]
