"""Deterministic backends used when no external model is configured."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable
from typing import Union

from agent_runtime.errors import ModelBackendError
from agent_runtime.obs.tracing import estimate_token_count
from agent_runtime.types import (
    Message,
    ModelRequest,
    ModelResponse,
    ModelUsage,
    StreamChunk,
    TextBlock,
    ToolUseBlock,
)


class OfflineBackend:
    """Backend that answers without any LLM dependency.

    Keeps the same contract as `LangChainBackend` and is useful for local or
    offline environments where `OPENAI_API_KEY` is not configured. It never
    requests tools; it acknowledges the latest user message and lists the
    tools that would be available with a real model.
    """

    async def send_message(self, request: ModelRequest) -> ModelResponse:
        question = _latest_user_text(request.messages)
        tool_names = [tool.name for tool in request.tools or []]
        lines = [
            "The assistant is running without a language model, so it cannot act on requests.",
        ]
        if question:
            lines.append(f"Received: {question[:200]}")
        if tool_names:
            lines.append("Available tools: " + ", ".join(tool_names))
        answer = "\n".join(lines)
        prompt_text = (request.system or "") + "\n".join(m.text for m in request.messages)
        return ModelResponse(
            content=[TextBlock(answer)],
            stop_reason="end_turn",
            usage=ModelUsage(
                input_tokens=estimate_token_count(prompt_text),
                output_tokens=estimate_token_count(answer),
            ),
        )

    async def stream_message(self, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        response = await self.send_message(request)
        for line in response.text.splitlines(keepends=True):
            yield StreamChunk(text=line)
        yield StreamChunk(usage=response.usage, stop_reason=response.stop_reason)


ScriptStep = Union[ModelResponse, Exception, Callable[[ModelRequest], ModelResponse]]


class ScriptedBackend:
    """Replays a fixed sequence of responses and records every request.

    Primarily used for tests and demos. Each script entry may be a
    `ModelResponse`, an exception to raise, or a callable producing a
    response from the request. When the script is exhausted the last entry
    repeats if `repeat_last` is set, otherwise the call fails.
    """

    def __init__(self, script: Iterable[ScriptStep], *, repeat_last: bool = False) -> None:
        self._script = list(script)
        self._repeat_last = repeat_last
        self.requests: list[ModelRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def send_message(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(
            ModelRequest(
                messages=list(request.messages),
                system=request.system,
                tools=list(request.tools or []),
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        )
        index = len(self.requests) - 1
        if index >= len(self._script):
            if not self._repeat_last or not self._script:
                raise ModelBackendError("Scripted backend has no more responses")
            index = len(self._script) - 1

        step = self._script[index]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(request)
        return step

    async def stream_message(self, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        response = await self.send_message(request)
        if response.text:
            yield StreamChunk(text=response.text)
        yield StreamChunk(
            tool_uses=response.tool_uses,
            usage=response.usage,
            stop_reason=response.stop_reason,
        )


def text_response(text: str, *, input_tokens: int = 0, output_tokens: int = 0) -> ModelResponse:
    return ModelResponse(
        content=[TextBlock(text)],
        stop_reason="end_turn",
        usage=ModelUsage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def tool_response(
    *calls: tuple[str, dict],
    text: str = "",
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> ModelResponse:
    """Build a response requesting `calls` (name, input) in the given order."""
    content: list[TextBlock | ToolUseBlock] = []
    if text:
        content.append(TextBlock(text))
    for index, (name, tool_input) in enumerate(calls):
        content.append(ToolUseBlock(id=f"toolu_{index:02d}_{name}", name=name, input=tool_input))
    return ModelResponse(
        content=content,
        stop_reason="tool_use",
        usage=ModelUsage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _latest_user_text(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == "user" and message.text:
            return message.text
    return ""
