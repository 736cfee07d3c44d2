"""Catalog mapping plugin names to factories."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from ..core.errors import UnknownPlugin
from .base import PluginBase

logger = logging.getLogger("athena.plugins.catalog")

PluginFactory = Callable[[Dict[str, Any]], PluginBase]


@dataclass
class PluginDefinition:
    """Metadata describing a loadable plugin implementation."""

    name: str
    description: str
    factory: PluginFactory


class PluginCatalog:
    """Registry of plugin implementations that can be loaded by name."""

    def __init__(self) -> None:
        self._definitions: Dict[str, PluginDefinition] = {}

    def register(self, definition: PluginDefinition) -> None:
        key = definition.name.strip()
        if not key:
            raise ValueError("Plugin name cannot be empty.")
        self._definitions[key] = definition
        logger.debug("Registered plugin definition '%s'.", key)

    def definitions(self) -> Sequence[PluginDefinition]:
        return list(self._definitions.values())

    def definition(self, name: str) -> Optional[PluginDefinition]:
        return self._definitions.get(name.strip())

    @property
    def names(self) -> Sequence[str]:
        return sorted(self._definitions)

    def create(self, name: str, config: Optional[Dict[str, Any]] = None) -> PluginBase:
        """Instantiate the plugin registered under ``name``."""

        definition = self.definition(name)
        if definition is None:
            raise UnknownPlugin(f"Plugin {name} is not available")
        plugin = definition.factory(dict(config or {}))
        if not isinstance(plugin, PluginBase):
            raise TypeError(
                f"Factory for plugin '{name}' returned {type(plugin).__name__}, "
                "expected a PluginBase."
            )
        return plugin

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._definitions


__all__ = ["PluginCatalog", "PluginDefinition", "PluginFactory"]
