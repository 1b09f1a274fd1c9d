"""Tool registry keyed by tool name."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from agent_runtime.agent.tool import Tool
from agent_runtime.types import ToolDefinition

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool names to tool instances.

    Writes are copy-on-write: every `register`/`unregister` publishes a new
    dict, so readers running concurrently with a re-registration always see a
    complete tool set. Executions take a `snapshot()` to pin the set for the
    duration of one run.
    """

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not getattr(tool, "name", None):
            raise ValueError("Tool must define a non-empty name")
        with self._lock:
            if tool.name in self._tools:
                logger.warning("Tool %s is already registered; replacing it", tool.name)
            tools = dict(self._tools)
            tools[tool.name] = tool
            self._tools = tools
        logger.debug("Registered tool: %s", tool.name)

    def unregister(self, name: str) -> bool:
        with self._lock:
            if name not in self._tools:
                return False
            tools = dict(self._tools)
            del tools[name]
            self._tools = tools
        logger.debug("Unregistered tool: %s", name)
        return True

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tool_definitions(self) -> list[ToolDefinition]:
        return [tool.get_definition() for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def count(self) -> int:
        return len(self._tools)

    def snapshot(self) -> ToolRegistry:
        """Return an independent registry holding the currently published tools."""
        copy = ToolRegistry()
        copy._tools = self._tools
        return copy

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_tool(name)
