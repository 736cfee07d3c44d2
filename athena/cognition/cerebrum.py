"""The cognition loop: events in, one model turn at a time, tool calls out.

Incoming domain events and tool results are appended to ``event_queue`` and
(re)start a short debounce timer. When the timer fires and no cycle is
running, a cycle snapshots the queue *by length*, renders those items into a
new user turn on a copy of the transcript, calls the model, and only after a
successful call removes exactly that many items from the head of the queue.
Anything that arrived mid-call stays queued and the ``finally`` block re-arms
the timer so it is picked up next.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Set
import weakref

from ..core.registry import PLUGINS_LOADED
from ..core.schema import Argument, ArgType, Explanation, Tool
from ..plugins.base import PluginBase
from .directives import (
    RESERVED_TAGS,
    extract_thinking,
    extract_tool_call_blocks,
    parse_tool_call,
    render_item,
    render_items,
    trim_reserved,
)
from .llm import ChatBackend, ContextLengthExceeded, LLMSettings, build_backend
from .prompt import render_system_prompt
from .queue import QueueItem, SnapshotQueue
from .spill import PayloadSpill
from .transcript import Transcript

if TYPE_CHECKING:
    from ..core.registry import Athena

logger = logging.getLogger("athena.cognition.cerebrum")

EVENT_SIGNAL = "cerebrum/event"
BUSY_SIGNAL = "cerebrum/busy"
MODEL_RESPONSE_SIGNAL = "cerebrum/model-response"
THINKING_SIGNAL = "cerebrum/thinking"
ERROR_SIGNAL = "cerebrum/error"
TOKEN_REFRESHED = "cerebrum/token-refreshed"
IMAGE_TOOL = "image/check-out"
TOOL_ERROR_NAME = "tool_error"


@dataclass
class CerebrumSettings:
    name: str = "Athena"
    max_prompts: int = 50
    max_event_strlen: int = 65536
    debounce_seconds: float = 0.5
    spill_dir: Path = Path("spill")
    image_supported: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CerebrumSettings":
        default = cls()
        max_prompts = int(config.get("max_prompts", default.max_prompts))
        if max_prompts < 2:
            raise ValueError("max_prompts must leave room for the system prompt and one turn.")
        return cls(
            name=str(config.get("name", default.name)),
            max_prompts=max_prompts,
            max_event_strlen=int(config.get("max_event_strlen", default.max_event_strlen)),
            debounce_seconds=float(config.get("debounce_seconds", default.debounce_seconds)),
            spill_dir=Path(str(config.get("spill_dir", default.spill_dir))).expanduser(),
            image_supported=bool(config.get("image_supported", default.image_supported)),
        )


class Cerebrum(PluginBase):
    """Plugin that turns the event stream into tool calls through an LLM."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        backend: Optional[ChatBackend] = None,
    ) -> None:
        super().__init__(config)
        self.settings = CerebrumSettings.from_config(self.config)
        self.llm_settings = LLMSettings.from_config(self.config)
        self.backend = backend
        self.spill = PayloadSpill(self.settings.spill_dir, self.settings.max_event_strlen)
        self.athena: Optional["Athena"] = None
        self.busy = False
        self.cycles = 0
        self.event_queue: SnapshotQueue[QueueItem] = SnapshotQueue()
        self.image_urls: SnapshotQueue[str] = SnapshotQueue()
        self.transcript = Transcript()
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._tool_tasks: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def load(self, athena: "Athena") -> None:
        self.athena = weakref.proxy(athena)
        self._closed = False
        if self.backend is None:
            self.backend = build_backend(self.llm_settings)
        if self.settings.image_supported:
            athena.register_tool(
                Tool(
                    name=IMAGE_TOOL,
                    desc=(
                        "Check out an image. Use this whenever you want to see an image "
                        "or someone asks you to look at one."
                    ),
                    args={
                        "image": Argument(ArgType.STRING, "The URL or local path of the image."),
                    },
                    retvals={
                        "result": Argument(ArgType.STRING, "The result of checking out the image."),
                    },
                    handler=self._check_out_image,
                    explain_args=lambda args: Explanation("Checking out the image...", args["image"]),
                )
            )
        athena.on_event(self._on_event)
        athena.on_private_event(self._on_token_refreshed, name=TOKEN_REFRESHED)
        athena.once_private_event(PLUGINS_LOADED, self._on_plugins_loaded)

    async def unload(self, athena: "Athena") -> None:
        self._closed = True
        if self.settings.image_supported:
            athena.deregister_tool(IMAGE_TOOL)
        athena.off_event(self._on_event)
        athena.off_private_event(self._on_token_refreshed)
        athena.off_private_event(self._on_plugins_loaded)
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        pending = list(self._tool_tasks)
        if self._cycle_task is not None and not self._cycle_task.done():
            pending.append(self._cycle_task)
        # A tool call may be the one unloading this plugin.
        current = asyncio.current_task()
        pending = [task for task in pending if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def get_state(self) -> Dict[str, Any]:
        return {
            "prompts": self.transcript.messages,
            "event_queue": [item.to_dict() for item in self.event_queue],
            "image_urls": list(self.image_urls),
        }

    def set_state(self, state: Mapping[str, Any]) -> None:
        self.transcript = Transcript(state.get("prompts") or [])
        self.event_queue = SnapshotQueue(
            [QueueItem.from_dict(item) for item in state.get("event_queue") or []]
        )
        self.image_urls = SnapshotQueue(list(state.get("image_urls") or []))
        if self.athena is not None and getattr(self.athena, "ready", False) and len(self.event_queue):
            self.schedule()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    def push_event(self, item: QueueItem) -> None:
        item.args = self.spill.sanitize(item.args)
        rendered = render_item(item)
        logger.info("%s", rendered)
        self._signal(EVENT_SIGNAL, {"content": rendered})
        self.event_queue.enqueue_tail(item)
        self.schedule()

    def _on_event(self, name: str, args: Dict[str, Any]) -> None:
        self.push_event(QueueItem(is_tool_result=False, name=name, args=args))

    def _on_token_refreshed(self, name: str, args: Dict[str, Any]) -> None:
        token = args.get("token")
        if token and self.backend is not None:
            self.backend.update_api_key(str(token))

    def _on_plugins_loaded(self, name: str, args: Dict[str, Any]) -> None:
        logger.info("Initial prompt:\n%s", self.initial_prompt())
        if len(self.event_queue):
            self.schedule()

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------
    def schedule(self) -> None:
        """(Re)start the debounce timer."""

        if self._closed:
            return
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.settings.debounce_seconds, self._on_debounce)

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        if self.busy:
            # The running cycle re-arms the timer when it finishes.
            return
        self._cycle_task = asyncio.ensure_future(self.process_event_queue())

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    async def process_event_queue(self) -> bool:
        """Run one cognition cycle. Returns ``False`` if nothing was attempted."""

        if self.busy:
            return False
        events_len = self.event_queue.peek_length()
        images_len = self.image_urls.peek_length()
        if events_len == 0 and images_len == 0:
            return False

        self.busy = True
        self.cycles += 1
        working = self.transcript.copy()
        try:
            snapshot = self.event_queue.peek(events_len)
            images = self.image_urls.peek(images_len)
            working.set_system(self.initial_prompt())
            working.append_user(render_items(snapshot), images)
            working.truncate(self.settings.max_prompts)
            self._signal(BUSY_SIGNAL, {"busy": True})

            raw = await self.backend.complete(working.messages, stop=RESERVED_TAGS)
            response = trim_reserved(raw)
            working.append_assistant(response)
            working.truncate(self.settings.max_prompts)

            self.event_queue.remove_prefix(events_len)
            self.image_urls.remove_prefix(images_len)
            self.transcript = working

            logger.info("Model response:\n%s", response)
            self._signal(MODEL_RESPONSE_SIGNAL, {"content": response})
            for thinking in extract_thinking(response):
                self._signal(THINKING_SIGNAL, {"content": thinking})
            for block in extract_tool_call_blocks(response):
                self._dispatch(block)
        except ContextLengthExceeded as exc:
            logger.warning("Context budget exceeded; dropping oldest transcript entry: %s", exc)
            self._signal(ERROR_SIGNAL, {"content": str(exc)})
            if self.transcript.drop_oldest() is None:
                logger.error("Transcript holds nothing left to drop; the pending events alone exceed the budget.")
        except Exception as exc:
            logger.exception("Cognition cycle failed: %s", exc)
            self._signal(ERROR_SIGNAL, {"content": str(exc)})
        finally:
            self.busy = False
            self._signal(BUSY_SIGNAL, {"busy": False})
            if len(self.event_queue) or len(self.image_urls):
                self.schedule()
        return True

    def initial_prompt(self) -> str:
        return render_system_prompt(self.athena, name=self.settings.name)

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------
    def _dispatch(self, block: str) -> None:
        task = asyncio.ensure_future(self._run_tool_call(block))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool_call(self, block: str) -> None:
        name = TOOL_ERROR_NAME
        call_id = TOOL_ERROR_NAME
        try:
            call = parse_tool_call(block)
            name = call.name
            call_id = call.id or TOOL_ERROR_NAME
            result = await self.athena.call_tool(call.name, call.args)
        except Exception as exc:
            logger.warning("Tool call %s (%s) failed: %s", name, call_id, exc)
            self.push_event(
                QueueItem(is_tool_result=True, name=name, args={"error": str(exc)}, correlation_id=call_id)
            )
            return
        self.push_event(QueueItem(is_tool_result=True, name=name, args=result, correlation_id=call_id))

    async def _check_out_image(self, args: Dict[str, Any]) -> Dict[str, Any]:
        image = args["image"]
        if not image.startswith(("http://", "https://", "data:")):
            image = await asyncio.to_thread(_image_to_data_uri, Path(image).expanduser())
        self.image_urls.enqueue_tail(image)
        return {"result": "success"}

    def _signal(self, name: str, args: Dict[str, Any]) -> None:
        if self.athena is not None:
            self.athena.emit_private_event(name, args)


def _image_to_data_uri(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'application/octet-stream'};base64,{encoded}"


__all__ = ["Cerebrum", "CerebrumSettings"]
