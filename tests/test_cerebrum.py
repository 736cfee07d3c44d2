"""Tests for the cognition loop driven by a scripted chat backend."""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from athena.cognition.cerebrum import Cerebrum
from athena.cognition.llm import ContextLengthExceeded, LLMError
from athena.cognition.transcript import Transcript
from athena.core import Argument, ArgType, Athena, Event, Tool
from athena.plugins import PluginBase, PluginCatalog, PluginDefinition


class FakeBackend:
    """Scripted stand-in for a chat-completion endpoint."""

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.api_keys: List[str] = []

    async def complete(self, messages, stop=()):
        self.calls.append({"messages": copy.deepcopy(list(messages)), "stop": tuple(stop)})
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return ""
        reply = self.responses.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def update_api_key(self, token):
        self.api_keys.append(token)


class DemoPlugin(PluginBase):
    """A user-message event plus an adder tool."""

    async def load(self, athena):
        athena.register_event(
            Event(
                name="ui/message-received",
                desc="User said something.",
                args={"content": Argument(ArgType.STRING, "Text.")},
            )
        )

        async def add(args):
            return {"sum": args["a"] + args["b"]}

        athena.register_tool(
            Tool(
                name="math/add",
                desc="Adds.",
                args={
                    "a": Argument(ArgType.NUMBER, "a"),
                    "b": Argument(ArgType.NUMBER, "b"),
                },
                handler=add,
            )
        )

    async def unload(self, athena):
        athena.deregister_tool("math/add")
        athena.deregister_event("ui/message-received")


def _athena(backend: FakeBackend, states=None, **cerebrum_config) -> Athena:
    catalog = PluginCatalog()
    catalog.register(PluginDefinition(name="demo", description="", factory=DemoPlugin))
    catalog.register(
        PluginDefinition(
            name="cerebrum",
            description="",
            factory=lambda cfg: Cerebrum(cfg, backend=backend),
        )
    )
    config = {"debounce_seconds": 0.02, **cerebrum_config}
    return Athena({"plugins": {"demo": {}, "cerebrum": config}}, states, catalog=catalog)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def _idle(cerebrum: Cerebrum) -> bool:
    return (
        not cerebrum.busy
        and len(cerebrum.event_queue) == 0
        and not cerebrum._tool_tasks
        and cerebrum._debounce_handle is None
    )


def _say(athena: Athena, text: str) -> None:
    athena.emit_event("ui/message-received", {"content": text})


def _last_user(call: Dict[str, Any]) -> str:
    return [m for m in call["messages"] if m["role"] == "user"][-1]["content"]


@pytest.mark.asyncio
async def test_bursts_are_coalesced_into_one_cycle():
    backend = FakeBackend(["<thinking>noted</thinking>"])
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "one")
    _say(athena, "two")
    await _wait_for(lambda: _idle(cerebrum) and backend.calls)

    assert len(backend.calls) == 1
    user_turn = _last_user(backend.calls[0])
    assert user_turn.count("<event>") == 2
    assert user_turn.index('"one"') < user_turn.index('"two"')
    assert backend.calls[0]["messages"][0]["role"] == "system"
    assert backend.calls[0]["stop"] == ("<tool_result>", "<event>")
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_events_arriving_mid_call_wait_for_the_next_cycle():
    backend = FakeBackend(["first", "second"])
    backend.gate = asyncio.Event()
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "e1")
    _say(athena, "e2")
    await _wait_for(lambda: len(backend.calls) == 1)
    _say(athena, "e3")
    await asyncio.sleep(0.1)

    assert len(backend.calls) == 1
    assert [item.args["content"] for item in cerebrum.event_queue] == ["e1", "e2", "e3"]

    backend.gate.set()
    await _wait_for(lambda: len(backend.calls) == 2 and _idle(cerebrum))

    second = _last_user(backend.calls[1])
    assert '"e3"' in second
    assert '"e1"' not in second and '"e2"' not in second
    assert cerebrum.event_queue.removed_total == 3
    roles = [m["role"] for m in cerebrum.transcript.messages]
    assert roles == ["system", "user", "assistant", "user", "assistant"]
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_tool_calls_run_and_results_come_back_with_their_id():
    backend = FakeBackend(
        [
            '<tool_call>{"name": "math/add", "id": "c1", "args": {"a": 2, "b": 3}}</tool_call>',
            "<thinking>5 it is</thinking>",
        ]
    )
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "add 2 and 3")
    await _wait_for(lambda: len(backend.calls) == 2 and _idle(cerebrum))

    follow_up = _last_user(backend.calls[1])
    assert "<tool_result>" in follow_up
    assert '"id": "c1"' in follow_up
    assert '"sum": 5' in follow_up
    await athena.unload_plugins()


class GatedPlugin(PluginBase):
    """A tool that records its start and blocks until released."""

    def __init__(self, config=None):
        super().__init__(config)
        self.started: List[str] = []
        self.release = asyncio.Event()

    async def load(self, athena):
        async def hold(args):
            self.started.append(args["tag"])
            await self.release.wait()
            return {"tag": args["tag"]}

        athena.register_tool(
            Tool(
                name="wait/hold",
                desc="Blocks.",
                args={"tag": Argument(ArgType.STRING, "Label.")},
                handler=hold,
            )
        )

    async def unload(self, athena):
        self.release.set()
        athena.deregister_tool("wait/hold")


@pytest.mark.asyncio
async def test_tool_calls_in_one_response_run_concurrently():
    backend = FakeBackend(
        [
            '<tool_call>{"name": "wait/hold", "id": "h1", "args": {"tag": "a"}}</tool_call>'
            '<tool_call>{"name": "wait/hold", "id": "h2", "args": {"tag": "b"}}</tool_call>',
        ]
    )
    athena = _athena(backend, debounce_seconds=5)
    athena.catalog.register(PluginDefinition(name="gated", description="", factory=GatedPlugin))
    await athena.load_plugins()
    gated = await athena.load_plugin("gated", {})
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "hold twice")
    assert await cerebrum.process_event_queue() is True
    await _wait_for(lambda: len(gated.started) == 2)

    assert sorted(gated.started) == ["a", "b"]
    assert len(cerebrum.event_queue) == 0

    gated.release.set()
    await _wait_for(lambda: len(cerebrum.event_queue) == 2)
    assert {item.correlation_id for item in cerebrum.event_queue} == {"h1", "h2"}
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_failed_and_malformed_calls_become_error_results():
    backend = FakeBackend(
        [
            '<tool_call>{"name": "nope/missing", "id": "c9", "args": {}}</tool_call>'
            '<tool_call>{"id": "orphan", "args": {}}</tool_call>',
        ]
    )
    athena = _athena(backend, debounce_seconds=5)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "go")
    assert await cerebrum.process_event_queue() is True
    await _wait_for(lambda: len(cerebrum.event_queue) == 2)

    results = {item.correlation_id: item for item in cerebrum.event_queue}
    assert results["c9"].is_tool_result
    assert results["c9"].name == "nope/missing"
    assert "not registered" in results["c9"].args["error"]
    assert results["tool_error"].name == "tool_error"
    assert "error" in results["tool_error"].args
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_context_overflow_drops_oldest_entry_and_retries():
    backend = FakeBackend([ContextLengthExceeded("maximum context length exceeded"), "ok"])
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]
    cerebrum.transcript = Transcript(
        [
            {"role": "system", "content": "old preamble"},
            {"role": "user", "content": "ancient question"},
            {"role": "assistant", "content": "ancient answer"},
        ]
    )
    errors = []
    athena.on_private_event(lambda name, args: errors.append(args), name="cerebrum/error")

    _say(athena, "hello")
    await _wait_for(lambda: len(backend.calls) == 2 and _idle(cerebrum))

    assert errors and "maximum context length" in errors[0]["content"]
    retried = [m["content"] for m in backend.calls[1]["messages"]]
    assert "ancient question" not in retried
    assert "ancient answer" in retried
    assert '"hello"' in _last_user(backend.calls[1])
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_transport_failure_keeps_queue_and_retries():
    backend = FakeBackend([LLMError("connection reset"), "recovered"])
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "still there?")
    await _wait_for(lambda: len(backend.calls) == 2 and _idle(cerebrum))

    assert _last_user(backend.calls[0]) == _last_user(backend.calls[1])
    assert cerebrum.transcript.messages[-1] == {"role": "assistant", "content": "recovered"}
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_transcript_never_exceeds_configured_bound():
    backend = FakeBackend([f"reply {idx}" for idx in range(6)])
    athena = _athena(backend, max_prompts=4, debounce_seconds=5)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    for idx in range(6):
        _say(athena, f"m{idx}")
        await cerebrum.process_event_queue()
        assert len(cerebrum.transcript) <= 4

    assert all(len(call["messages"]) <= 4 for call in backend.calls)
    assert cerebrum.transcript.messages[0]["role"] == "system"
    assert cerebrum.transcript.messages[-1]["content"] == "reply 5"
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_response_is_trimmed_at_reserved_tags_and_thinking_is_published():
    backend = FakeBackend(["<thinking>plan</thinking>\n<event>\n{\"name\": \"fake\"}\n</event>"])
    athena = _athena(backend, debounce_seconds=5)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]
    signals = []
    athena.on_private_event(lambda name, args: signals.append((name, args)))

    _say(athena, "hi")
    await cerebrum.process_event_queue()

    assert cerebrum.transcript.messages[-1]["content"] == "<thinking>plan</thinking>\n"
    names = [name for name, _ in signals]
    assert ("cerebrum/thinking", {"content": "plan"}) in signals
    assert names.index("cerebrum/busy") < names.index("cerebrum/model-response")
    assert signals[-1] == ("cerebrum/busy", {"busy": False})
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_empty_queue_skips_the_model():
    backend = FakeBackend()
    athena = _athena(backend)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    assert await cerebrum.process_event_queue() is False
    assert backend.calls == []
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_state_round_trip_resumes_pending_events():
    idle_backend = FakeBackend()
    first = _athena(idle_backend, debounce_seconds=60)
    await first.load_plugins()
    _say(first, "remember me")
    await first.unload_plugins()

    saved = first.states["cerebrum"]
    assert [item["args"]["content"] for item in saved["event_queue"]] == ["remember me"]

    backend = FakeBackend(["welcome back"])
    second = _athena(backend, states=first.states)
    await second.load_plugins()
    cerebrum = second.plugins["cerebrum"]
    await _wait_for(lambda: backend.calls and _idle(cerebrum))

    assert '"remember me"' in _last_user(backend.calls[0])
    assert cerebrum.get_state()["event_queue"] == []
    await second.unload_plugins()


@pytest.mark.asyncio
async def test_unload_cancels_pending_debounce():
    backend = FakeBackend(["never"])
    athena = _athena(backend, debounce_seconds=0.05)
    await athena.load_plugins()

    _say(athena, "too late")
    await athena.unload_plugins()
    await asyncio.sleep(0.1)

    assert backend.calls == []


@pytest.mark.asyncio
async def test_token_refresh_reaches_backend():
    backend = FakeBackend()
    athena = _athena(backend)
    await athena.load_plugins()

    athena.emit_private_event("cerebrum/token-refreshed", {"token": "fresh"})

    assert backend.api_keys == ["fresh"]
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_oversized_payloads_are_spilled_before_queueing(tmp_path: Path):
    backend = FakeBackend()
    athena = _athena(backend, debounce_seconds=60, max_event_strlen=16, spill_dir=str(tmp_path))
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "y" * 100)

    queued = list(cerebrum.event_queue)[0].args["content"]
    assert "100 characters" in queued
    assert len(list(tmp_path.iterdir())) == 1
    await athena.unload_plugins()


@pytest.mark.asyncio
async def test_image_tool_buffers_urls_for_next_turn(tmp_path: Path):
    backend = FakeBackend(
        ['<tool_call>{"name": "image/check-out", "id": "i1", "args": {"image": "https://example.com/a.png"}}</tool_call>', "nice"]
    )
    athena = _athena(backend, image_supported=True)
    await athena.load_plugins()
    cerebrum = athena.plugins["cerebrum"]

    _say(athena, "look at this")
    await _wait_for(lambda: len(backend.calls) == 2 and _idle(cerebrum))

    content = backend.calls[1]["messages"][-1]["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": "https://example.com/a.png"}}
    assert len(cerebrum.image_urls) == 0
    await athena.unload_plugins()
    assert "image/check-out" not in athena.tools
