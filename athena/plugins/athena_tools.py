"""Self-management tools: let the agent load, reload and unload plugins."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..core.errors import NotLoaded
from ..core.schema import Argument, ArgType, Explanation, Tool
from .base import PluginBase

if TYPE_CHECKING:
    from ..core.registry import Athena

logger = logging.getLogger("athena.plugins.athena")

TOOL_NAMES = ("athena/load-plugin", "athena/unload-plugin", "athena/list-plugins")
_STATUS = {"status": Argument(ArgType.STRING, "The status of the operation.")}


class AthenaPlugin(PluginBase):
    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.athena: Optional["Athena"] = None

    def describe(self) -> Optional[str]:
        return (
            "Your capabilities come from plugins. Use athena/list-plugins to see which "
            "plugins are loaded and which can be loaded, athena/load-plugin to load one "
            "(loading a plugin that is already loaded reloads it with the new arguments) "
            "and athena/unload-plugin to remove one you no longer need."
        )

    async def load(self, athena: "Athena") -> None:
        self.athena = athena
        athena.register_tool(
            Tool(
                name="athena/load-plugin",
                desc="Loads a plugin, reloading it first if it is already loaded.",
                args={
                    "name": Argument(ArgType.STRING, "The name of the plugin to load."),
                    "args": Argument(
                        ArgType.OBJECT, "The configuration passed to the plugin.", required=False
                    ),
                },
                retvals=_STATUS,
                handler=self._load_plugin,
                explain_args=lambda args: Explanation(f"Loading plugin {args['name']}..."),
                explain_retvals=lambda args, _: Explanation(f"Plugin {args['name']} is loaded."),
            )
        )
        athena.register_tool(
            Tool(
                name="athena/unload-plugin",
                desc="Unloads a plugin.",
                args={"name": Argument(ArgType.STRING, "The name of the plugin to unload.")},
                retvals=_STATUS,
                handler=self._unload_plugin,
                explain_args=lambda args: Explanation(f"Unloading plugin {args['name']}..."),
            )
        )
        athena.register_tool(
            Tool(
                name="athena/list-plugins",
                desc="Lists loaded plugins and plugins available to load.",
                retvals={
                    "loaded": Argument(
                        ArgType.ARRAY, "Names of loaded plugins.",
                        of=Argument(ArgType.STRING, "A plugin name."),
                    ),
                    "available": Argument(
                        ArgType.ARRAY, "Names of every plugin that can be loaded.",
                        of=Argument(ArgType.STRING, "A plugin name."),
                    ),
                },
                handler=self._list_plugins,
            )
        )

    async def unload(self, athena: "Athena") -> None:
        for name in TOOL_NAMES:
            athena.deregister_tool(name)

    async def _load_plugin(self, args: Dict[str, Any]) -> Dict[str, Any]:
        name = args["name"]
        if name in self.athena.plugins:
            try:
                await self.athena.unload_plugin(name)
            except NotLoaded:
                pass
            except Exception:
                # The registry evicts the handle even when unload fails.
                logger.exception("Plugin %s failed to unload before reload.", name)
        await self.athena.load_plugin(name, args.get("args") or {})
        return {"status": "success"}

    async def _unload_plugin(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.athena.unload_plugin(args["name"])
        return {"status": "success"}

    async def _list_plugins(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "loaded": list(self.athena.plugins),
            "available": list(self.athena.catalog.names),
        }


__all__ = ["AthenaPlugin"]
