"""Default catalog of the plugins shipped with Athena."""

from __future__ import annotations

from ..cognition.cerebrum import Cerebrum
from .athena_tools import AthenaPlugin
from .catalog import PluginCatalog, PluginDefinition
from .cli_ui import CliUI
from .clock import Clock
from .short_term_memory import ShortTermMemory
from .webapp_ui import WebappUI

CATALOG = PluginCatalog()

CATALOG.register(
    PluginDefinition(
        name="cerebrum",
        description="LLM cognition loop turning events into tool calls.",
        factory=Cerebrum,
    )
)
CATALOG.register(
    PluginDefinition(
        name="athena",
        description="Self-management tools to load, reload and unload plugins.",
        factory=AthenaPlugin,
    )
)
CATALOG.register(
    PluginDefinition(
        name="clock",
        description="Periodic ticks and one-shot timers.",
        factory=Clock,
    )
)
CATALOG.register(
    PluginDefinition(
        name="short-term-memory",
        description="Bounded scratchpad the agent keeps across transcript truncation.",
        factory=ShortTermMemory,
    )
)
CATALOG.register(
    PluginDefinition(
        name="cli-ui",
        description="Terminal front end.",
        factory=CliUI,
    )
)
CATALOG.register(
    PluginDefinition(
        name="webapp-ui",
        description="HTTP/WebSocket bridge for a browser front end.",
        factory=WebappUI,
    )
)

__all__ = ["CATALOG"]
