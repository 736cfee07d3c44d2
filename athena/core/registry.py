"""The Athena registry: plugins, tools, events and the two message buses."""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from .bus import Channel, Listener
from .errors import (
    AlreadyLoaded,
    AthenaError,
    DuplicateEvent,
    DuplicateTool,
    NotLoaded,
    PluginLoadError,
    UnknownEvent,
    UnknownTool,
)
from .schema import Event, Explanation, Tool, validate_arguments

if TYPE_CHECKING:
    from ..plugins.base import PluginBase
    from ..plugins.catalog import PluginCatalog

logger = logging.getLogger("athena.core.registry")

PLUGINS_LOADED = "athena/plugins-loaded"
TOOL_CALL_SIGNAL = "athena/tool-call"
TOOL_RESULT_SIGNAL = "athena/tool-result"
EVENT_SIGNAL = "athena/event"


class _LoadScope:
    """Marks registrations made while a plugin's load hook runs.

    Tasks started during the hook inherit the scope through their copied
    context, so the scope is closed once the hook returns and later
    registrations from those tasks stay unattributed.
    """

    __slots__ = ("plugin", "open")

    def __init__(self, plugin: str) -> None:
        self.plugin = plugin
        self.open = True


_load_scope: ContextVar[Optional[_LoadScope]] = ContextVar("athena_load_scope", default=None)


def _loading_plugin() -> Optional[str]:
    scope = _load_scope.get()
    if scope is None or not scope.open:
        return None
    return scope.plugin


_OwnedKey = Tuple[str, str]


class Athena:
    """Owns loaded plugins plus the tool and event catalogs they register.

    All mutating operations are synchronous, so under a single event loop no
    two registrations can interleave. Tool handlers and plugin hooks are the
    only suspension points.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        states: Optional[Mapping[str, Any]] = None,
        catalog: Optional["PluginCatalog"] = None,
    ) -> None:
        self.config: Dict[str, Any] = dict(config or {})
        self.states: Dict[str, Any] = dict(states or {})
        if catalog is None:
            from ..plugins.builtin import CATALOG

            catalog = CATALOG
        self.catalog = catalog
        self.plugins: Dict[str, "PluginBase"] = {}
        self.tools: Dict[str, Tool] = {}
        self.events: Dict[str, Event] = {}
        self.events_bus = Channel("event")
        self.private_bus = Channel("private-event")
        self._owners: Dict[_OwnedKey, str] = {}
        self._unloading: Set[str] = set()
        self.ready = False

    # ------------------------------------------------------------------
    # Plugin lifecycle
    # ------------------------------------------------------------------
    async def load_plugins(self) -> Dict[str, str]:
        """Load every plugin named in ``config['plugins']`` in order."""

        plugins = self.config.get("plugins")
        if not plugins:
            raise AthenaError("No plugins found in config")

        results: Dict[str, str] = {}
        for name, args in plugins.items():
            try:
                await self.load_plugin(name, args)
            except AthenaError as exc:
                logger.error("Plugin %s failed to load: %s", name, exc, extra={"plugin": name})
                results[name] = "error"
                continue
            logger.info("Plugin %s is loaded", name, extra={"plugin": name})
            results[name] = "loaded"

        self.ready = True
        self.emit_private_event(PLUGINS_LOADED, {"plugins": list(self.plugins)})
        return results

    async def load_plugin(self, name: str, config: Optional[Mapping[str, Any]] = None) -> "PluginBase":
        """Instantiate ``name`` from the catalog, run its load hook, restore state.

        Loading is all-or-nothing: if the load hook raises, every tool, event
        and subscription the plugin created is removed again and the handle
        is evicted before ``PluginLoadError`` is raised. A restore hook that
        rejects its stored blob is logged; the plugin stays loaded with fresh
        state and the blob is discarded.
        """

        if name in self.plugins:
            raise AlreadyLoaded(f"Plugin {name} already loaded")
        try:
            plugin = self.catalog.create(name, dict(config or {}))
        except Exception as exc:
            if isinstance(exc, AthenaError):
                raise
            raise PluginLoadError(name, f"Plugin {name} could not be created: {exc}") from exc

        self.plugins[name] = plugin
        scope = _LoadScope(name)
        token = _load_scope.set(scope)
        try:
            await plugin.load(self)
        except Exception as exc:
            self._rollback(name, plugin)
            raise PluginLoadError(name, f"Plugin {name} failed to load: {exc}") from exc
        finally:
            scope.open = False
            _load_scope.reset(token)

        self.restore_state(name)
        return plugin

    def restore_state(self, name: str) -> bool:
        """Hand the stored blob for ``name`` to its plugin; False if none was applied."""

        state = self.states.get(name)
        if state is None:
            return False
        try:
            self.plugins[name].set_state(state)
        except Exception:
            logger.exception("Plugin %s rejected its stored state; starting fresh.", name, extra={"plugin": name})
            self.states.pop(name, None)
            return False
        return True

    async def unload_plugin(self, name: str) -> None:
        """Gather the plugin's state, run its unload hook and evict it.

        The handle is evicted even when the unload hook raises; the error is
        still propagated to the caller.
        """

        plugin = self.plugins.get(name)
        if plugin is None or name in self._unloading:
            raise NotLoaded(f"Plugin {name} not loaded")

        self._unloading.add(name)
        self.gather_state(name)
        try:
            await plugin.unload(self)
        finally:
            self._unloading.discard(name)
            if self.plugins.get(name) is plugin:
                del self.plugins[name]
            leftovers = self.owned_by(name)
            if leftovers:
                logger.warning(
                    "Plugin %s left registrations behind after unload: %s",
                    name,
                    ", ".join(f"{kind}:{item}" for kind, item in leftovers),
                )

    async def unload_plugins(self) -> None:
        """Unload everything in reverse load order, continuing past failures."""

        for name in reversed(list(self.plugins)):
            try:
                await self.unload_plugin(name)
            except Exception:
                logger.exception("Plugin %s failed to unload cleanly.", name)
                continue
            logger.info("Plugin %s is unloaded", name, extra={"plugin": name})

    def evict_plugin(self, name: str) -> bool:
        """Forcibly drop a plugin handle without running any hook."""

        plugin = self.plugins.pop(name, None)
        if plugin is None:
            return False
        logger.warning("Plugin %s evicted without unloading.", name)
        return True

    def _rollback(self, name: str, plugin: "PluginBase") -> None:
        for kind, item in self.owned_by(name):
            if kind == "tool":
                self.tools.pop(item, None)
            else:
                self.events.pop(item, None)
            self._owners.pop((kind, item), None)
        dropped = self.events_bus.drop_owner(name) + self.private_bus.drop_owner(name)
        if self.plugins.get(name) is plugin:
            del self.plugins[name]
        logger.warning(
            "Rolled back partial load of plugin %s (%d subscription(s) dropped).",
            name,
            dropped,
        )

    def owned_by(self, name: str) -> List[_OwnedKey]:
        return [key for key, owner in self._owners.items() if owner == name]

    # ------------------------------------------------------------------
    # State bridge
    # ------------------------------------------------------------------
    def gather_state(self, name: str) -> Optional[Any]:
        plugin = self.plugins.get(name)
        if plugin is None:
            raise NotLoaded(f"Plugin {name} not loaded")
        try:
            state = plugin.get_state()
        except Exception:
            logger.exception("Plugin %s failed to report its state; skipping.", name)
            return None
        if state is not None:
            self.states[name] = state
        return state

    def gather_states(self) -> Dict[str, Any]:
        for name in list(self.plugins):
            self.gather_state(name)
        return self.states

    # ------------------------------------------------------------------
    # Tools and events
    # ------------------------------------------------------------------
    def register_tool(self, tool: Tool) -> None:
        if tool.name in self.tools:
            raise DuplicateTool(f"Tool {tool.name} already registered")
        self.tools[tool.name] = tool
        self._claim("tool", tool.name)

    def deregister_tool(self, name: str) -> None:
        if name not in self.tools:
            raise UnknownTool(f"Tool {name} not registered")
        del self.tools[name]
        self._owners.pop(("tool", name), None)

    def register_event(self, event: Event) -> None:
        if event.name in self.events:
            raise DuplicateEvent(f"Event {event.name} already registered")
        self.events[event.name] = event
        self._claim("event", event.name)

    def deregister_event(self, name: str) -> None:
        if name not in self.events:
            raise UnknownEvent(f"Event {name} not registered")
        del self.events[name]
        self._owners.pop(("event", name), None)

    def _claim(self, kind: str, item: str) -> None:
        owner = _loading_plugin()
        if owner is not None:
            self._owners[(kind, item)] = owner

    async def call_tool(self, name: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        """Validate ``args``, run the tool handler and return its result.

        Handler failures propagate untouched.
        """

        tool = self.tools.get(name)
        if tool is None:
            raise UnknownTool(f"Tool {name} not registered")
        payload = dict(args or {})
        validate_arguments(tool.args, payload)
        if tool.explain_args is not None:
            self._explain(TOOL_CALL_SIGNAL, name, tool.explain_args, payload)
        result = await tool.handler(payload)
        if tool.explain_retvals is not None:
            self._explain(TOOL_RESULT_SIGNAL, name, tool.explain_retvals, payload, result)
        return result

    def emit_event(self, name: str, args: Optional[Mapping[str, Any]] = None) -> None:
        event = self.events.get(name)
        if event is None:
            raise UnknownEvent(f"Event {name} not registered")
        payload = dict(args or {})
        validate_arguments(event.args, payload)
        if event.explain_args is not None:
            self._explain(EVENT_SIGNAL, name, event.explain_args, payload)
        self.events_bus.publish(name, payload)

    def emit_private_event(self, name: str, args: Optional[Mapping[str, Any]] = None) -> None:
        self.private_bus.publish(name, dict(args or {}))

    def _explain(self, signal: str, name: str, explain: Callable[..., Explanation], *params: Any) -> None:
        try:
            explanation = explain(*params)
        except Exception:
            logger.exception("Explain hook for '%s' failed.", name)
            return
        if explanation is None:
            return
        self.emit_private_event(
            signal,
            {"name": name, "summary": explanation.summary, "details": explanation.details},
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def on_event(self, callback: Listener) -> None:
        self.events_bus.subscribe(callback, owner=_loading_plugin())

    def off_event(self, callback: Listener) -> bool:
        return self.events_bus.unsubscribe(callback)

    def on_private_event(self, callback: Listener, name: Optional[str] = None) -> None:
        self.private_bus.subscribe(callback, name=name, owner=_loading_plugin())

    def once_private_event(self, name: str, callback: Listener) -> None:
        self.private_bus.subscribe(callback, name=name, once=True, owner=_loading_plugin())

    def off_private_event(self, callback: Listener) -> bool:
        return self.private_bus.unsubscribe(callback)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def tool_schemas(self) -> List[Dict[str, Any]]:
        return [tool.to_dict() for tool in self.tools.values()]

    def event_schemas(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events.values()]

    def plugin_descriptions(self) -> List[str]:
        descriptions: List[str] = []
        for name, plugin in list(self.plugins.items()):
            try:
                desc = plugin.describe()
            except Exception:
                logger.exception("Plugin %s failed to describe itself.", name)
                continue
            if desc:
                descriptions.append(desc)
        return descriptions


__all__ = [
    "Athena",
    "EVENT_SIGNAL",
    "PLUGINS_LOADED",
    "TOOL_CALL_SIGNAL",
    "TOOL_RESULT_SIGNAL",
]
