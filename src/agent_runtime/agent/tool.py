"""Tool plugin contract and a function-backed implementation."""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from agent_runtime.types import ToolDefinition, ToolExecutionContext, ToolResult

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class Tool(ABC):
    """Capability invocable by the model.

    Subclasses set `name` and `description`, usually declare a pydantic
    `args_schema`, and implement `execute`. The optional hooks below are
    explicit members: a tool that does not contribute a prompt section or UI
    components simply keeps the `None` default.
    """

    name: str
    description: str
    category: str = "General"
    sample_prompts: tuple[str, ...] = ()
    args_schema: type[BaseModel] | None = None

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.get_input_schema(),
        )

    def get_catalog_entry(self) -> dict[str, Any]:
        """Definition plus the metadata a tool picker UI shows."""
        return {
            **self.get_definition().to_dict(),
            "category": self.category,
            "sample_prompts": list(self.sample_prompts),
            "permissions": self.get_required_permissions(),
        }

    def get_input_schema(self) -> dict[str, Any]:
        if self.args_schema is None:
            return dict(_EMPTY_SCHEMA)
        schema = self.args_schema.model_json_schema()
        schema.pop("title", None)
        return schema

    @abstractmethod
    async def execute(self, input: dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        """Run the tool. Expected failures are returned, not raised."""

    def get_progress_message(self, input: dict[str, Any]) -> str:
        return f"Running {self.name}..."

    def get_system_prompt_section(self) -> str | None:
        return None

    def generate_components(self, result: ToolResult) -> list[dict[str, Any]] | None:
        return None

    def get_required_permissions(self) -> list[str]:
        """Declarative only; enforcement belongs to a `PermissionGate`."""
        return []

    def success(self, data: Any = None) -> ToolResult:
        return ToolResult.ok(data)

    def error(self, message: str) -> ToolResult:
        logger.warning("Tool %s failed: %s", self.name, message)
        return ToolResult.fail(message)

    def parse_input(self, payload: dict[str, Any]) -> BaseModel:
        if self.args_schema is None:
            raise TypeError(f"Tool {self.name} declares no args_schema")
        return self.args_schema.model_validate(payload)


ToolHandler = Callable[[Any, ToolExecutionContext], Any]


class FunctionTool(Tool):
    """Tool backed by a plain (sync or async) handler and a pydantic schema.

    The handler receives the validated arguments model and the execution
    context. It may return a `ToolResult` directly; any other value is wrapped
    as successful data. Invalid input never reaches the handler.
    """

    def __init__(
        self,
        *,
        name: str,
        description: str,
        args_schema: type[BaseModel],
        handler: ToolHandler | Callable[..., Awaitable[Any]],
        progress_message: str | Callable[[dict[str, Any]], str] | None = None,
        prompt_section: str | None = None,
        components: Callable[[ToolResult], list[dict[str, Any]] | None] | None = None,
        permissions: list[str] | None = None,
        category: str = "General",
        sample_prompts: list[str] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.args_schema = args_schema
        self.category = category
        self.sample_prompts = tuple(sample_prompts or ())
        self._handler = handler
        self._progress_message = progress_message
        self._prompt_section = prompt_section
        self._components = components
        self._permissions = list(permissions or [])

    async def execute(self, input: dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        try:
            arguments = self.parse_input(input)
        except ValidationError as exc:
            return self.error(f"Invalid input for {self.name}: {_describe_validation(exc)}")

        output = self._handler(arguments, context)
        if inspect.isawaitable(output):
            output = await output
        if isinstance(output, ToolResult):
            return output
        return self.success(output)

    def get_progress_message(self, input: dict[str, Any]) -> str:
        if callable(self._progress_message):
            return self._progress_message(input)
        if self._progress_message:
            return self._progress_message
        return super().get_progress_message(input)

    def get_system_prompt_section(self) -> str | None:
        return self._prompt_section

    def generate_components(self, result: ToolResult) -> list[dict[str, Any]] | None:
        if self._components is None:
            return None
        return self._components(result)

    def get_required_permissions(self) -> list[str]:
        return list(self._permissions)


def _describe_validation(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "input"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)
