"""HTTP surface for the reading portal."""

from .server import create_app

__all__ = ["create_app"]
