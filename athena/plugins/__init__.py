"""Plugin contract and catalog; the built-in plugins live in ``builtin``."""

from __future__ import annotations

from .base import PluginBase
from .catalog import PluginCatalog, PluginDefinition, PluginFactory

__all__ = ["PluginBase", "PluginCatalog", "PluginDefinition", "PluginFactory"]
