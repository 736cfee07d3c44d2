"""Small scratchpad the agent keeps across transcript truncation."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.schema import Argument, ArgType, Explanation, Tool
from .base import PluginBase

if TYPE_CHECKING:
    from ..core.registry import Athena

_STATUS = {"status": Argument(ArgType.STRING, "The status of the operation.")}
_INDEX = Argument(ArgType.NUMBER, "Zero-based index of the message.")


class ShortTermMemory(PluginBase):
    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.max_messages = int(self.config.get("max_messages", 20))
        self.max_length = int(self.config.get("max_length", 1000))
        self.messages: List[str] = []

    def describe(self) -> Optional[str]:
        return (
            "You have a short-term memory that survives when older conversation turns are "
            "dropped. Keep the most important, specific facts about the current task in it "
            "with the short-term-memory tools. It holds at most "
            f"{self.max_messages} messages of at most {self.max_length} characters each. "
            f"Current contents: {json.dumps(self.messages, ensure_ascii=False)}"
        )

    async def load(self, athena: "Athena") -> None:
        athena.register_tool(
            Tool(
                name="short-term-memory/add",
                desc="Adds a message to your short-term memory.",
                args={"message": Argument(ArgType.STRING, "The message to remember.")},
                retvals=_STATUS,
                handler=self._add,
                explain_args=lambda args: Explanation("Remembering...", args["message"]),
            )
        )
        athena.register_tool(
            Tool(
                name="short-term-memory/remove",
                desc="Removes a message from your short-term memory.",
                args={"index": _INDEX},
                retvals=_STATUS,
                handler=self._remove,
            )
        )
        athena.register_tool(
            Tool(
                name="short-term-memory/edit",
                desc="Replaces a message in your short-term memory.",
                args={
                    "index": _INDEX,
                    "message": Argument(ArgType.STRING, "The new message."),
                },
                retvals=_STATUS,
                handler=self._edit,
            )
        )

    async def unload(self, athena: "Athena") -> None:
        athena.deregister_tool("short-term-memory/add")
        athena.deregister_tool("short-term-memory/remove")
        athena.deregister_tool("short-term-memory/edit")

    def get_state(self) -> Dict[str, Any]:
        return {"messages": list(self.messages)}

    def set_state(self, state: Dict[str, Any]) -> None:
        self.messages = [str(message) for message in state.get("messages") or []]

    async def _add(self, args: Dict[str, Any]) -> Dict[str, Any]:
        if len(self.messages) >= self.max_messages:
            raise ValueError(
                f"Short-term memory is full ({self.max_messages} messages). "
                "Remove or edit a message first."
            )
        self.messages.append(self._checked(args["message"]))
        return {"status": "success"}

    async def _remove(self, args: Dict[str, Any]) -> Dict[str, Any]:
        del self.messages[self._index(args["index"])]
        return {"status": "success"}

    async def _edit(self, args: Dict[str, Any]) -> Dict[str, Any]:
        index = self._index(args["index"])
        self.messages[index] = self._checked(args["message"])
        return {"status": "success"}

    def _checked(self, message: str) -> str:
        if len(message) > self.max_length:
            raise ValueError(f"Message is too long; the limit is {self.max_length} characters.")
        return message

    def _index(self, raw: float) -> int:
        if not self.messages:
            raise ValueError("Short-term memory is empty.")
        if raw != int(raw) or not 0 <= raw < len(self.messages):
            raise ValueError(f"Invalid index; it must be between 0 and {len(self.messages) - 1}.")
        return int(raw)


__all__ = ["ShortTermMemory"]
