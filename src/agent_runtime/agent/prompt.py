"""System prompt composition."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from agent_runtime.agent.registry import ToolRegistry

BASE_INSTRUCTIONS = """
You are a helpful assistant embedded in an administration application.
You can call tools to look up and change data on the user's behalf.

Rules:
1) Use a tool whenever the request needs data or an action you cannot perform from the conversation alone.
2) Never invent tool results; rely only on what the tools return.
3) If a tool fails, explain the problem plainly or try a different tool.
""".strip()

RESPONSE_GUIDELINES = """
Response guidelines:
- Be concise and answer the user's actual question first.
- Summarize tool results in plain language instead of echoing raw data.
- Ask a clarifying question when required information is missing.
- Confirm what was changed after any write operation.
""".strip()


def build_system_prompt(
    context: Mapping[str, Any] | None,
    registry: ToolRegistry,
    user_email: str | None = None,
    memories: Sequence[str] | None = None,
    *,
    today: date | None = None,
) -> str:
    """Compose the system prompt for one execution.

    Section order is fixed: base instructions, context summary, user line,
    current date, memories (if any), tool sections (registration order, tools
    without a section skipped), response guidelines.
    """

    sections = [
        BASE_INSTRUCTIONS,
        render_context(context),
        f"User: {user_email or 'unknown'}",
        f"Current date: {(today or date.today()).isoformat()}",
    ]

    memory_lines = [f"- {memory.strip()}" for memory in memories or [] if memory and memory.strip()]
    if memory_lines:
        sections.append("What you remember about this user:\n" + "\n".join(memory_lines))

    tool_sections = []
    for tool in registry.get_all_tools():
        section = tool.get_system_prompt_section()
        if section and section.strip():
            tool_sections.append(section.strip())
    if tool_sections:
        sections.append("Tool instructions:\n\n" + "\n\n".join(tool_sections))

    sections.append(RESPONSE_GUIDELINES)
    return "\n\n".join(sections)


def render_context(context: Mapping[str, Any] | None) -> str:
    if not context:
        return "Context: none provided."
    lines = ["Context:"]
    for key, value in context.items():
        if value is None or value == "":
            continue
        label = str(key).replace("_", " ")
        lines.append(f"- {label}: {_render_value(value)}")
    if len(lines) == 1:
        return "Context: none provided."
    return "\n".join(lines)


def _render_value(value: Any) -> str:
    if isinstance(value, Mapping):
        return ", ".join(f"{key}={_render_value(item)}" for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return ", ".join(_render_value(item) for item in value)
    return str(value)
