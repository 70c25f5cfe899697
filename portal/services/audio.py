"""Classify stored chapter links and drive the playback fallback chain."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from ..errors import InvalidTransitionError


LOGGER = logging.getLogger(__name__)


# Hosted-file links, e.g. https://drive.google.com/file/d/<id>/view and
# https://drive.google.com/uc?export=download&id=<id>. Derived URLs keep the
# origin of the stored link.
HOSTED_FILE_DOMAINS = ("drive.google.com",)

_DIRECT_DOWNLOAD_TEMPLATE = "{origin}/uc?export=download&id={file_id}"
_PREVIEW_TEMPLATE = "{origin}/file/d/{file_id}/preview"


def compile_hosted_patterns(domains: Iterable[str]) -> Tuple[Pattern[str], Pattern[str]]:
    """Return the file-view and direct-download patterns for *domains*."""

    hosts = "|".join(re.escape(domain.strip().lower()) for domain in domains if domain.strip())
    if not hosts:
        raise ValueError("At least one hosted-file domain is required")
    file_view = re.compile(
        rf"^(?P<origin>https?://(?:{hosts}))/file/d/(?P<file_id>[^/?#]+)", re.IGNORECASE
    )
    direct_download = re.compile(
        rf"^https?://(?:{hosts})/uc\?(?:.*&)?id=(?P<file_id>[^&#]+)", re.IGNORECASE
    )
    return file_view, direct_download


@dataclass(frozen=True)
class AudioSource:
    playable_url: str
    embed_url: Optional[str] = None
    is_third_party_host: bool = False

    @property
    def has_source(self) -> bool:
        return bool(self.playable_url)


class AudioSourceResolver:
    """Turn a stored chapter link into a playback strategy.

    Links to the hosted document service come in two shapes: a "file view"
    page, which yields both a direct-download URL and an embeddable preview,
    and a "direct-download" URL, which is used as-is. Anything else is taken
    to be directly playable.
    """

    def __init__(self, *, hosted_domains: Iterable[str] = HOSTED_FILE_DOMAINS) -> None:
        self._file_view_pattern, self._direct_download_pattern = compile_hosted_patterns(
            hosted_domains
        )

    def resolve(self, link: Optional[str]) -> AudioSource:
        url = (link or "").strip()
        if not url:
            return AudioSource(playable_url="")

        match = self._file_view_pattern.search(url)
        if match:
            origin = match.group("origin")
            file_id = match.group("file_id")
            LOGGER.debug("Resolved file view link to hosted file %s", file_id)
            return AudioSource(
                playable_url=_DIRECT_DOWNLOAD_TEMPLATE.format(origin=origin, file_id=file_id),
                embed_url=_PREVIEW_TEMPLATE.format(origin=origin, file_id=file_id),
                is_third_party_host=True,
            )

        if self._direct_download_pattern.search(url):
            return AudioSource(playable_url=url, is_third_party_host=True)

        return AudioSource(playable_url=url)


def resolve_document_embed(link: Optional[str]) -> Optional[str]:
    """Return a preview URL suitable for embedding a hosted document.

    Links already pointing at ``/preview`` pass through; ``/view`` and
    ``/edit`` suffixes are rewritten to ``/preview``.
    """

    url = (link or "").strip()
    if not url:
        return None
    if "/preview" in url:
        return url
    return url.replace("/view", "/preview").replace("/edit", "/preview")


# ----------------------------------------------------------------------
# Playback state machine
# ----------------------------------------------------------------------
class PlaybackState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"


class PlaybackEvent(str, Enum):
    METADATA_LOADED = "metadata_loaded"
    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    ENDED = "ended"
    MEDIA_ERROR = "media_error"


class FallbackMode(str, Enum):
    NATIVE = "native"
    EMBED = "embed"
    NO_SOURCE = "no_source"


_TRANSITIONS: Dict[Tuple[PlaybackState, PlaybackEvent], PlaybackState] = {
    (PlaybackState.LOADING, PlaybackEvent.METADATA_LOADED): PlaybackState.READY,
    (PlaybackState.LOADING, PlaybackEvent.MEDIA_ERROR): PlaybackState.ERROR,
    (PlaybackState.READY, PlaybackEvent.PLAY): PlaybackState.PLAYING,
    (PlaybackState.READY, PlaybackEvent.SEEK): PlaybackState.READY,
    (PlaybackState.PLAYING, PlaybackEvent.PAUSE): PlaybackState.PAUSED,
    (PlaybackState.PLAYING, PlaybackEvent.SEEK): PlaybackState.PLAYING,
    (PlaybackState.PLAYING, PlaybackEvent.ENDED): PlaybackState.ENDED,
    (PlaybackState.PLAYING, PlaybackEvent.MEDIA_ERROR): PlaybackState.ERROR,
    (PlaybackState.PAUSED, PlaybackEvent.PLAY): PlaybackState.PLAYING,
    (PlaybackState.PAUSED, PlaybackEvent.SEEK): PlaybackState.PAUSED,
    (PlaybackState.ENDED, PlaybackEvent.PLAY): PlaybackState.PLAYING,
    (PlaybackState.ENDED, PlaybackEvent.SEEK): PlaybackState.PAUSED,
}


@dataclass
class PlaybackSession:
    """One attempt at playing an :class:`AudioSource`.

    Each named event moves the session along the transition table; events
    that do not apply to the current state raise
    :class:`~portal.errors.InvalidTransitionError`.
    """

    source: AudioSource
    state: PlaybackState = PlaybackState.LOADING
    history: List[PlaybackState] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.source.has_source:
            self.state = PlaybackState.ERROR
        self.history.append(self.state)

    def dispatch(self, event: PlaybackEvent) -> PlaybackState:
        target = _TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidTransitionError(
                f"Event '{event.value}' is not valid while {self.state.value}"
            )
        LOGGER.debug("Playback %s --%s--> %s", self.state.value, event.value, target.value)
        self.state = target
        self.history.append(target)
        return target

    @property
    def fallback(self) -> FallbackMode:
        if self.state is not PlaybackState.ERROR:
            return FallbackMode.NATIVE
        if self.source.is_third_party_host and self.source.embed_url:
            return FallbackMode.EMBED
        return FallbackMode.NO_SOURCE

    @property
    def display_url(self) -> Optional[str]:
        """URL the player should show for the current fallback mode."""

        mode = self.fallback
        if mode is FallbackMode.NATIVE:
            return self.source.playable_url
        if mode is FallbackMode.EMBED:
            return self.source.embed_url
        return None


__all__ = [
    "AudioSource",
    "AudioSourceResolver",
    "FallbackMode",
    "HOSTED_FILE_DOMAINS",
    "PlaybackEvent",
    "PlaybackSession",
    "PlaybackState",
    "compile_hosted_patterns",
    "resolve_document_embed",
]
