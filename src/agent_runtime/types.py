"""Shared domain models."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal, Union

if TYPE_CHECKING:
    from agent_runtime.agent.cancellation import CancellationToken


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = "text"


@dataclass(slots=True, frozen=True)
class ImageBlock:
    """Inline image, base64 encoded."""

    media_type: str
    data: str
    type: Literal["image"] = "image"


@dataclass(slots=True, frozen=True)
class FileBlock:
    """Inline binary document (e.g. PDF), base64 encoded."""

    name: str
    media_type: str
    data: str
    type: Literal["file"] = "file"


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any]
    type: Literal["tool_use"] = "tool_use"


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    """The outcome of a tool invocation, fed back to the model."""

    tool_use_id: str
    content: str
    is_error: bool = False
    type: Literal["tool_result"] = "tool_result"


ContentBlock = Union[TextBlock, ImageBlock, FileBlock, ToolUseBlock, ToolResultBlock]
Role = Literal["user", "assistant"]


@dataclass(slots=True)
class Message:
    """One conversation message made of typed content blocks."""

    role: Role
    content: list[ContentBlock]

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=[TextBlock(text)])

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role="assistant", content=[TextBlock(text)])

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


# ---------------------------------------------------------------------------
# Tool contract records
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """Model-facing description of a tool."""

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass(slots=True)
class ToolResult:
    """Tagged success/failure outcome of a tool execution."""

    success: bool
    data: Any = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("A successful ToolResult cannot carry an error")
        if not self.success and not (self.error and self.error.strip()):
            raise ValueError("A failed ToolResult requires a non-empty error")

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> ToolResult:
        return cls(success=False, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class ToolProgress:
    """Progress reported by a tool while it runs."""

    tool_name: str
    message: str
    data: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "tool_progress",
            "toolName": self.tool_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(slots=True, frozen=True)
class ToolExecutionContext:
    """Per-invocation context handed to every tool. Tools must not mutate it."""

    user_id: str | None = None
    session_id: str | None = None
    tenant_id: str | None = None
    user_email: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)
    cancellation: CancellationToken | None = None
    on_progress: Callable[[str, dict[str, Any] | None], None] | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled

    def report_progress(self, message: str, data: dict[str, Any] | None = None) -> None:
        if self.on_progress is not None:
            self.on_progress(message, data)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True


# ---------------------------------------------------------------------------
# Model backend records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class ModelRequest:
    messages: list[Message]
    system: str | None = None
    tools: list[ToolDefinition] | None = None
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(slots=True)
class ModelResponse:
    content: list[TextBlock | ToolUseBlock]
    stop_reason: str | None = None
    usage: ModelUsage = field(default_factory=ModelUsage)

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def has_tool_uses(self) -> bool:
        return any(isinstance(block, ToolUseBlock) for block in self.content)


@dataclass(slots=True)
class StreamChunk:
    """Incremental piece of a streamed model response."""

    text: str = ""
    tool_uses: list[ToolUseBlock] = field(default_factory=list)
    usage: ModelUsage | None = None
    stop_reason: str | None = None


# ---------------------------------------------------------------------------
# Executor records
# ---------------------------------------------------------------------------

StepType = Literal["thinking", "tool_use", "response"]


@dataclass(slots=True)
class ExecutionStep:
    """One transcript entry of an execution."""

    type: StepType
    content: str
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_result: ToolResult | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_name is not None:
            payload["toolName"] = self.tool_name
        if self.tool_input is not None:
            payload["toolInput"] = self.tool_input
        if self.tool_result is not None:
            payload["toolResult"] = self.tool_result.to_dict()
        return payload


ProgressEvent = Union[ExecutionStep, ToolProgress]
ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(slots=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    def add(self, usage: ModelUsage) -> None:
        self.input += max(0, usage.input_tokens)
        self.output += max(0, usage.output_tokens)

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output}


@dataclass(slots=True)
class ExecutionRequest:
    query: str | list[ContentBlock]
    history: list[Message] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    session_id: str | None = None
    tenant_id: str | None = None
    user_email: str | None = None
    memories: list[str] = field(default_factory=list)
    cancellation: CancellationToken | None = None


@dataclass(slots=True)
class ExecutionResult:
    final_response: str
    steps: list[ExecutionStep]
    components: list[dict[str, Any]]
    tokens_used: TokenUsage
    turns: int = 0
    max_turns_reached: bool = False
    tool_traces: list[ToolTrace] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Orchestrator records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Attachment:
    """Raw attachment as supplied by the client: a URL or inline base64 data."""

    name: str
    mime_type: str
    url: str | None = None
    data: str | None = None
    size: int | None = None


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str
    attachments: list[Attachment] = field(default_factory=list)


@dataclass(slots=True)
class ChatRequest:
    message: str
    history: list[ChatMessage] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    session_id: str | None = None
    tenant_id: str | None = None
    user_email: str | None = None
    memories: list[str] = field(default_factory=list)
    generate_title: bool = False
    cancellation: CancellationToken | None = None


@dataclass(slots=True)
class ChatResponse:
    message: str
    components: list[dict[str, Any]]
    steps: list[ExecutionStep]
    tokens_used: TokenUsage
    session_id: str | None = None
    trace_id: str | None = None
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "components": self.components,
            "steps": [step.to_dict() for step in self.steps],
            "tokensUsed": self.tokens_used.to_dict(),
            "sessionId": self.session_id,
            "traceId": self.trace_id,
            "title": self.title,
        }


StreamEventType = Literal["start", "progress", "complete", "error", "title_update"]


@dataclass(slots=True)
class StreamEvent:
    type: StreamEventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}
