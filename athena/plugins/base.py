"""Base class every loadable Athena plugin implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..core.registry import Athena


class PluginBase(ABC):
    """Contract between the registry and a plugin.

    ``load`` registers tools/events and subscribes to the buses; ``unload``
    must undo every registration made in ``load`` because the registry does
    not clean up after a plugin. The optional hooks below default to
    "nothing to say" and "nothing to persist".
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config: Dict[str, Any] = dict(config or {})

    @abstractmethod
    async def load(self, athena: "Athena") -> None:
        """Register capabilities and acquire resources."""

    @abstractmethod
    async def unload(self, athena: "Athena") -> None:
        """Deregister everything registered in ``load`` and release resources."""

    def describe(self) -> Optional[str]:
        """Paragraph contributed to the LLM system preamble, or ``None``."""

        return None

    def get_state(self) -> Optional[Any]:
        """Serializable blob to persist across reloads, or ``None``."""

        return None

    def set_state(self, state: Any) -> None:
        """Restore a blob previously returned by ``get_state``."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} plugin>"


__all__ = ["PluginBase"]
