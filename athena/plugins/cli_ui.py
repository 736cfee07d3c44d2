"""Terminal front end rendered with rich."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import sys
import threading
from typing import TYPE_CHECKING, Any, Dict, Optional, TextIO

from rich.console import Console
from rich.status import Status
from rich.text import Text

from ..core.registry import PLUGINS_LOADED
from ..core.schema import Argument, ArgType, Event, Explanation, Tool
from .base import PluginBase

if TYPE_CHECKING:
    from ..core.registry import Athena

logger = logging.getLogger("athena.plugins.cli_ui")

MESSAGE_RECEIVED = "ui/message-received"
SEND_MESSAGE = "ui/send-message"

# private signal -> (label, style, payload key)
SIGNAL_STYLES: Dict[str, tuple] = {
    "cerebrum/thinking": ("Thinking", "cyan", "content"),
    "athena/tool-call": ("Tool Call", "magenta", "summary"),
    "athena/tool-result": ("Tool Result", "green", "summary"),
    "athena/event": ("Event", "yellow", "summary"),
    "cerebrum/error": ("Error", "bold red", "content"),
}


def message_received_event() -> Event:
    return Event(
        name=MESSAGE_RECEIVED,
        desc="Triggered when a message is received from the user.",
        args={
            "content": Argument(ArgType.STRING, "The message received from the user."),
            "time": Argument(ArgType.STRING, "When the message was sent, in ISO 8601 format."),
        },
        explain_args=lambda args: Explanation("Message from the user.", args["content"]),
    )


class CliUI(PluginBase):
    """Reads user lines from stdin and prints the agent's activity."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        console: Optional[Console] = None,
        stdin: Optional[TextIO] = None,
    ) -> None:
        super().__init__(config)
        self.name = str(self.config.get("name", "Athena"))
        self.verbose = bool(self.config.get("verbose", True))
        self.console = console or Console()
        self.stdin = stdin or sys.stdin
        self.athena: Optional["Athena"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reader: Optional[threading.Thread] = None
        self._closed = threading.Event()
        self._status: Optional[Status] = None

    def describe(self) -> Optional[str]:
        return (
            "You talk with the user through ui/message-received events and the "
            "ui/send-message tool. If a request is vague or needs details only the user "
            "has, ask for them. Keep the user posted on progress, milestones and obstacles."
        )

    async def load(self, athena: "Athena") -> None:
        self.athena = athena
        self._loop = asyncio.get_running_loop()
        self._closed.clear()
        athena.register_event(message_received_event())
        athena.register_tool(
            Tool(
                name=SEND_MESSAGE,
                desc="Sends a message to the user.",
                args={"content": Argument(ArgType.STRING, "The message to send; plain text.")},
                retvals={"status": Argument(ArgType.STRING, "The status of the operation.")},
                handler=self._send_message,
            )
        )
        athena.on_private_event(self._on_private_event)
        if getattr(athena, "ready", False):
            self._start_reader()
        else:
            athena.once_private_event(PLUGINS_LOADED, self._on_plugins_loaded)

    async def unload(self, athena: "Athena") -> None:
        self._closed.set()
        self._stop_status()
        athena.off_private_event(self._on_private_event)
        athena.off_private_event(self._on_plugins_loaded)
        athena.deregister_tool(SEND_MESSAGE)
        athena.deregister_event(MESSAGE_RECEIVED)

    # ------------------------------------------------------------------
    def _on_plugins_loaded(self, name: str, args: Dict[str, Any]) -> None:
        self.console.print(Text(f"Welcome to {self.name}! Type a message and press Enter.", style="bold"))
        self._start_reader()

    def _start_reader(self) -> None:
        if self._reader is not None and self._reader.is_alive():
            return
        # Daemon thread: a blocked readline must not keep the process alive.
        self._reader = threading.Thread(target=self._read_lines, name="athena-cli-ui", daemon=True)
        self._reader.start()

    def _read_lines(self) -> None:
        while not self._closed.is_set():
            line = self.stdin.readline()
            if not line:
                logger.info("stdin closed; no more user input.")
                return
            if self._closed.is_set() or self._loop is None or self._loop.is_closed():
                return
            self._loop.call_soon_threadsafe(self.handle_line, line)

    def handle_line(self, line: str) -> None:
        content = line.strip()
        if not content or self.athena is None or self._closed.is_set():
            return
        self.athena.emit_event(
            MESSAGE_RECEIVED,
            {"content": content, "time": datetime.now(timezone.utc).isoformat()},
        )

    def _on_private_event(self, name: str, args: Dict[str, Any]) -> None:
        if name == "cerebrum/busy":
            if args.get("busy"):
                self._start_status()
            else:
                self._stop_status()
            return
        style = SIGNAL_STYLES.get(name)
        if style is None or not self.verbose:
            return
        label, color, key = style
        text = Text(f"[{label}] ", style=color)
        text.append(str(args.get(key) or ""))
        self.console.print(text)

    def _start_status(self) -> None:
        if self._status is None and self.console.is_terminal:
            self._status = self.console.status("[cyan]Thinking…", spinner="dots")
            self._status.start()

    def _stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    async def _send_message(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self.console.print(Text(f"<{self.name}>", style="bold cyan"), args["content"])
        return {"status": "success"}


__all__ = ["CliUI", "message_received_event"]
