"""Registry core: plugin lifecycle, tool/event catalogs and message buses."""

from .bus import Channel
from .errors import (
    AlreadyLoaded,
    AthenaError,
    DuplicateEvent,
    DuplicateTool,
    NotLoaded,
    PluginLoadError,
    UnknownEvent,
    UnknownPlugin,
    UnknownTool,
)
from .registry import PLUGINS_LOADED, Athena
from .schema import ArgType, Argument, Event, Explanation, SchemaError, Tool

__all__ = [
    "AlreadyLoaded",
    "ArgType",
    "Argument",
    "Athena",
    "AthenaError",
    "Channel",
    "DuplicateEvent",
    "DuplicateTool",
    "Event",
    "Explanation",
    "NotLoaded",
    "PLUGINS_LOADED",
    "PluginLoadError",
    "SchemaError",
    "Tool",
    "UnknownEvent",
    "UnknownPlugin",
    "UnknownTool",
]
