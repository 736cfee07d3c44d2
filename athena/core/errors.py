"""Registry contract violations and lifecycle failures."""

from __future__ import annotations


class AthenaError(RuntimeError):
    """Base class for registry errors."""


class AlreadyLoaded(AthenaError):
    """A plugin with this name is already loaded."""


class NotLoaded(AthenaError):
    """No plugin with this name is loaded."""


class UnknownPlugin(AthenaError):
    """The catalog has no implementation for this plugin name."""


class PluginLoadError(AthenaError):
    """A plugin's load hook failed and was rolled back."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.plugin = name


class DuplicateTool(AthenaError):
    """A tool with this name is already registered."""


class UnknownTool(AthenaError):
    """No tool with this name is registered."""


class DuplicateEvent(AthenaError):
    """An event with this name is already registered."""


class UnknownEvent(AthenaError):
    """No event with this name is registered."""


__all__ = [
    "AlreadyLoaded",
    "AthenaError",
    "DuplicateEvent",
    "DuplicateTool",
    "NotLoaded",
    "PluginLoadError",
    "UnknownEvent",
    "UnknownPlugin",
    "UnknownTool",
]
