"""Web bridge plugin: Starlette routes plus a WebSocket activity stream."""

from __future__ import annotations

from .plugin import FORWARDED_SIGNALS, WebappUI

__all__ = ["FORWARDED_SIGNALS", "WebappUI"]
