"""System preamble rendered from the live registry on every cycle."""

from __future__ import annotations

import json
from textwrap import dedent
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.registry import Athena

DEFAULT_PREAMBLE_TEMPLATE = dedent(
    """
    You are {name}, an agent that lives inside a plugin runtime. You perceive
    the world only through events and act on it only through tools.

    Tools you can call:
    <tools>
    {tools}
    </tools>

    Events you may receive:
    <events>
    {events}
    </events>

    How to work:
    - Each user turn contains one or more <event> blocks (things that happened)
      and <tool_result> blocks (answers to calls you made earlier). Results may
      arrive several turns after the call.
    - Plan inside <thinking> tags before acting.
    - To act, emit one <tool_call> block per call holding a JSON object with
      the tool name, a unique id you choose, and the arguments, for example:
      <tool_call>
      {{"name":"tool_name","id":"call_1","args":{{"arg1":"value1"}}}}
      </tool_call>
      Arguments must be valid JSON; escape newlines inside strings as \\n.
    - Every tool call in one response runs concurrently. If a call needs the
      result of another, wait for that <tool_result> before issuing it.
    - Never write <tool_result> or <event> blocks yourself.
    - Put nothing outside <thinking> and <tool_call> tags; plain text is not
      delivered to anyone. Reply to people with the appropriate tool.
    - Answer in the language the person is using.

    {descriptions}
    """
).strip()


def render_system_prompt(athena: "Athena", name: str = "Athena", template: str = DEFAULT_PREAMBLE_TEMPLATE) -> str:
    tools = "\n\n".join(json.dumps(schema, ensure_ascii=False) for schema in athena.tool_schemas())
    events = "\n\n".join(json.dumps(schema, ensure_ascii=False) for schema in athena.event_schemas())
    descriptions = "\n\n".join(athena.plugin_descriptions())
    return template.format(
        name=name,
        tools=tools or "(no tools registered)",
        events=events or "(no events registered)",
        descriptions=descriptions,
    ).strip()


__all__ = ["DEFAULT_PREAMBLE_TEMPLATE", "render_system_prompt"]
