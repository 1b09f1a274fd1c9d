"""Model backend contract and the LangChain chat-model adapter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol
from uuid import uuid4

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from agent_runtime.errors import ModelBackendError
from agent_runtime.types import (
    FileBlock,
    ImageBlock,
    Message,
    ModelRequest,
    ModelResponse,
    ModelUsage,
    StreamChunk,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)


class ModelBackend(Protocol):
    """Minimal language-model contract consumed by the executor."""

    async def send_message(self, request: ModelRequest) -> ModelResponse:
        """Send the conversation and return text and/or tool-use blocks."""

    def stream_message(self, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        """Stream the response as incremental chunks."""


class LangChainBackend:
    """Adapts any LangChain `BaseChatModel` to the `ModelBackend` contract.

    Tool definitions are bound per request with `bind_tools`; generation
    parameters (`max_tokens`, `temperature`) are forwarded as call kwargs.
    Provider exceptions are wrapped in `ModelBackendError`.
    """

    def __init__(self, model: BaseChatModel, *, forward_generation_params: bool = True) -> None:
        self.model = model
        self.forward_generation_params = forward_generation_params

    async def send_message(self, request: ModelRequest) -> ModelResponse:
        runnable = self._bind(request)
        try:
            message = await runnable.ainvoke(to_langchain_messages(request))
        except Exception as exc:
            logger.exception("Model backend call failed")
            raise ModelBackendError(f"Model backend call failed: {exc}") from exc
        return from_langchain_message(message)

    async def stream_message(self, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        runnable = self._bind(request)
        aggregate: Any = None
        try:
            async for chunk in runnable.astream(to_langchain_messages(request)):
                aggregate = chunk if aggregate is None else aggregate + chunk
                text = _text_from_content(chunk.content)
                if text:
                    yield StreamChunk(text=text)
        except Exception as exc:
            logger.exception("Model backend stream failed")
            raise ModelBackendError(f"Model backend stream failed: {exc}") from exc

        if aggregate is None:
            yield StreamChunk(stop_reason="end_turn")
            return
        final = from_langchain_message(aggregate)
        yield StreamChunk(
            tool_uses=final.tool_uses,
            usage=final.usage,
            stop_reason=final.stop_reason,
        )

    def _bind(self, request: ModelRequest) -> Any:
        runnable: Any = self.model
        if request.tools:
            runnable = runnable.bind_tools([tool.to_openai_tool() for tool in request.tools])
        if self.forward_generation_params:
            params = {
                key: value
                for key, value in (
                    ("max_tokens", request.max_tokens),
                    ("temperature", request.temperature),
                )
                if value is not None
            }
            if params:
                runnable = runnable.bind(**params)
        return runnable


async def collect_stream(
    chunks: AsyncIterator[StreamChunk],
    *,
    idle_timeout: float | None = None,
) -> ModelResponse:
    """Drain a chunk stream into a single `ModelResponse`.

    `idle_timeout` bounds the wait for each chunk so a stalled provider
    cannot hold the request forever.
    """

    text_parts: list[str] = []
    tool_uses: list[ToolUseBlock] = []
    usage = ModelUsage()
    stop_reason: str | None = None

    iterator = chunks.__aiter__()
    while True:
        try:
            chunk = await asyncio.wait_for(iterator.__anext__(), timeout=idle_timeout)
        except StopAsyncIteration:
            break
        except asyncio.TimeoutError as exc:
            raise ModelBackendError(
                f"Model stream produced no data for {idle_timeout} seconds"
            ) from exc
        if chunk.text:
            text_parts.append(chunk.text)
        tool_uses.extend(chunk.tool_uses)
        if chunk.usage is not None:
            usage.input_tokens += chunk.usage.input_tokens
            usage.output_tokens += chunk.usage.output_tokens
        if chunk.stop_reason:
            stop_reason = chunk.stop_reason

    content: list[TextBlock | ToolUseBlock] = []
    text = "".join(text_parts)
    if text:
        content.append(TextBlock(text))
    content.extend(tool_uses)
    return ModelResponse(content=content, stop_reason=stop_reason, usage=usage)


def to_langchain_messages(request: ModelRequest) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if request.system:
        messages.append(SystemMessage(content=request.system))
    for message in request.messages:
        if message.role == "assistant":
            messages.append(_assistant_message(message))
        else:
            messages.extend(_user_messages(message))
    return messages


def from_langchain_message(message: BaseMessage) -> ModelResponse:
    content: list[TextBlock | ToolUseBlock] = []
    text = _text_from_content(message.content)
    if text:
        content.append(TextBlock(text))

    for call in getattr(message, "tool_calls", None) or []:
        content.append(
            ToolUseBlock(
                id=call.get("id") or f"toolu_{uuid4().hex[:12]}",
                name=call["name"],
                input=dict(call.get("args") or {}),
            )
        )

    usage = ModelUsage()
    usage_metadata = getattr(message, "usage_metadata", None)
    if usage_metadata:
        usage = ModelUsage(
            input_tokens=int(usage_metadata.get("input_tokens", 0) or 0),
            output_tokens=int(usage_metadata.get("output_tokens", 0) or 0),
        )

    metadata = getattr(message, "response_metadata", None) or {}
    stop_reason = metadata.get("stop_reason") or metadata.get("finish_reason")
    if stop_reason is None:
        stop_reason = "tool_use" if any(isinstance(b, ToolUseBlock) for b in content) else "end_turn"
    return ModelResponse(content=content, stop_reason=stop_reason, usage=usage)


def _assistant_message(message: Message) -> AIMessage:
    text_parts = [block.text for block in message.content if isinstance(block, TextBlock)]
    tool_calls = [
        {"name": block.name, "args": block.input, "id": block.id, "type": "tool_call"}
        for block in message.content
        if isinstance(block, ToolUseBlock)
    ]
    return AIMessage(content="\n".join(text_parts), tool_calls=tool_calls)


def _user_messages(message: Message) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, ToolResultBlock):
            converted.append(
                ToolMessage(
                    content=block.content,
                    tool_call_id=block.tool_use_id,
                    status="error" if block.is_error else "success",
                )
            )
        elif isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
                }
            )
        elif isinstance(block, FileBlock):
            parts.append(
                {
                    "type": "file",
                    "source_type": "base64",
                    "mime_type": block.media_type,
                    "data": block.data,
                    "filename": block.name,
                }
            )
        else:
            raise TypeError(f"Unsupported block in user message: {block!r}")

    if len(parts) == 1 and parts[0]["type"] == "text":
        converted.append(HumanMessage(content=parts[0]["text"]))
    elif parts:
        converted.append(HumanMessage(content=parts))
    return converted


def _text_from_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content or "")
    parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and item.get("type") == "text" and "text" in item:
            parts.append(str(item["text"]))
    return "".join(parts)
