"""Exception hierarchy shared by the portal services."""

from __future__ import annotations


class PortalError(RuntimeError):
    """Base class for errors raised by the portal core."""


class RemoteUnavailableError(PortalError):
    """Raised when the catalog gateway cannot be reached or fails."""


class MalformedInputError(PortalError, ValueError):
    """Raised when a required field is missing before any write is attempted."""


class InvalidTransitionError(PortalError):
    """Raised when a playback event is not valid for the current state."""


__all__ = [
    "InvalidTransitionError",
    "MalformedInputError",
    "PortalError",
    "RemoteUnavailableError",
]
