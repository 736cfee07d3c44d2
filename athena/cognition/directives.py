"""Delimiter grammar between the cognition loop and the model.

The model answers with ``<thinking>`` segments and ``<tool_call>`` blocks.
The loop feeds back ``<tool_result>`` and ``<event>`` blocks, which the model
must never produce itself; a response is cut at the first one it echoes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from typing import Any, Dict, List, Sequence

from json_repair import repair_json

from .queue import QueueItem

TOOL_RESULT_TAG = "<tool_result>"
EVENT_TAG = "<event>"
RESERVED_TAGS: tuple[str, ...] = (TOOL_RESULT_TAG, EVENT_TAG)

THINKING_PATTERN = re.compile(r"<thinking>\s*([\s\S]*?)\s*</thinking>")
TOOL_CALL_PATTERN = re.compile(r"<tool_call>\s*(\{[\s\S]*?\})\s*</tool_call>")


class DirectiveError(ValueError):
    """Raised when a tool-call block cannot be turned into a call."""


@dataclass
class ToolCall:
    name: str
    id: str
    args: Dict[str, Any] = field(default_factory=dict)


def trim_reserved(response: str, tags: Sequence[str] = RESERVED_TAGS) -> str:
    """Cut ``response`` at the first reserved tag the model hallucinated."""

    positions = [idx for idx in (response.find(tag) for tag in tags) if idx != -1]
    if not positions:
        return response
    return response[: min(positions)]


def extract_thinking(response: str) -> List[str]:
    return [match.group(1) for match in THINKING_PATTERN.finditer(response)]


def extract_tool_call_blocks(response: str) -> List[str]:
    return [match.group(1) for match in TOOL_CALL_PATTERN.finditer(response)]


def parse_tool_call(block: str) -> ToolCall:
    """Parse one ``<tool_call>`` body, repairing mildly malformed JSON."""

    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        data = repair_json(block, return_objects=True)
    if not isinstance(data, dict):
        raise DirectiveError(f"Tool call is not a JSON object: {block[:80]!r}")
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise DirectiveError("Tool call is missing a tool name.")
    call_id = data.get("id")
    args = data.get("args")
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise DirectiveError(f"Arguments for '{name}' must be a JSON object.")
    return ToolCall(name=name, id=str(call_id) if call_id is not None else "", args=args)


def render_item(item: QueueItem) -> str:
    """Render a queue item as the block the model reads."""

    if item.is_tool_result:
        body = {"name": item.name, "id": item.correlation_id, "result": item.args}
        return f"<tool_result>\n{_dumps(body)}\n</tool_result>"
    body = {"name": item.name, "args": item.args}
    return f"<event>\n{_dumps(body)}\n</event>"


def render_items(items: Sequence[QueueItem]) -> str:
    return "\n\n".join(render_item(item) for item in items)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


__all__ = [
    "DirectiveError",
    "EVENT_TAG",
    "RESERVED_TAGS",
    "TOOL_RESULT_TAG",
    "ToolCall",
    "extract_thinking",
    "extract_tool_call_blocks",
    "parse_tool_call",
    "render_item",
    "render_items",
    "trim_reserved",
]
