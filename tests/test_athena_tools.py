from __future__ import annotations

import pytest

from athena.core import Athena, NotLoaded, PluginLoadError, UnknownPlugin
from athena.plugins.builtin import CATALOG


async def _athena() -> Athena:
    athena = Athena({"plugins": {"athena": {}, "short-term-memory": {"max_messages": 5}}})
    await athena.load_plugins()
    return athena


@pytest.mark.asyncio
async def test_list_plugins_reports_loaded_and_available():
    athena = await _athena()

    listing = await athena.call_tool("athena/list-plugins")

    assert listing["loaded"] == ["athena", "short-term-memory"]
    assert listing["available"] == CATALOG.names


@pytest.mark.asyncio
async def test_load_plugin_reloads_with_new_args_and_keeps_state():
    athena = await _athena()
    await athena.call_tool("short-term-memory/add", {"message": "hello"})
    before = athena.plugins["short-term-memory"]

    result = await athena.call_tool(
        "athena/load-plugin", {"name": "short-term-memory", "args": {"max_messages": 2}}
    )

    after = athena.plugins["short-term-memory"]
    assert result == {"status": "success"}
    assert after is not before
    assert after.max_messages == 2
    assert after.messages == ["hello"]


@pytest.mark.asyncio
async def test_unload_plugin_removes_its_tools():
    athena = await _athena()

    await athena.call_tool("athena/unload-plugin", {"name": "short-term-memory"})

    assert "short-term-memory" not in athena.plugins
    assert not any(name.startswith("short-term-memory/") for name in athena.tools)
    with pytest.raises(NotLoaded):
        await athena.call_tool("athena/unload-plugin", {"name": "short-term-memory"})


@pytest.mark.asyncio
async def test_load_plugin_surfaces_unknown_and_failed_loads():
    athena = await _athena()

    with pytest.raises(UnknownPlugin):
        await athena.call_tool("athena/load-plugin", {"name": "no-such-plugin"})
    with pytest.raises(PluginLoadError):
        await athena.call_tool(
            "athena/load-plugin", {"name": "clock", "args": {"tick_every_seconds": "soon"}}
        )
    assert "clock" not in athena.plugins
    assert "clock/set-timer" not in athena.tools
