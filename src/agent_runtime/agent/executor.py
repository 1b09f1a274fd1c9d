"""Multi-turn agentic executor: model proposes tool calls, runtime runs them."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from agent_runtime.agent.backend import ModelBackend
from agent_runtime.agent.cancellation import CancellationToken
from agent_runtime.agent.prompt import build_system_prompt
from agent_runtime.agent.registry import ToolRegistry
from agent_runtime.agent.tool import Tool
from agent_runtime.config import AgentConfig
from agent_runtime.errors import ExecutionCancelled, ModelBackendError
from agent_runtime.obs.tracing import Timer
from agent_runtime.types import (
    ExecutionRequest,
    ExecutionResult,
    ExecutionStep,
    Message,
    ModelRequest,
    ModelResponse,
    ProgressCallback,
    ProgressEvent,
    TokenUsage,
    ToolExecutionContext,
    ToolProgress,
    ToolResult,
    ToolResultBlock,
    ToolTrace,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

NO_OUTPUT_PLACEHOLDER = "(no output)"
MAX_TURNS_FALLBACK = (
    "I apologize, but I reached the maximum number of steps while processing your request. "
    "Please try again or narrow the request."
)
EMPTY_RESPONSE_FALLBACK = "I'm sorry, I wasn't able to generate a response."


class PermissionGate(Protocol):
    """Pre-dispatch authorization hook supplied by the host application."""

    async def check(
        self,
        tool: Tool,
        tool_input: dict[str, Any],
        context: ToolExecutionContext,
    ) -> str | None:
        """Return a denial reason, or None to allow the call."""


@dataclass(slots=True)
class _ToolOutcome:
    result: ToolResult
    step: ExecutionStep
    components: list[dict[str, Any]]
    trace: ToolTrace


class AgenticExecutor:
    """Drives one bounded conversation turn-loop to a terminal answer.

    Each turn calls the model backend with the running message list. Tool
    calls requested in a turn run sequentially in the order the model listed
    them; their results are appended as one message once the whole turn is
    done. The loop ends on a plain-text answer, on `max_turns` (soft limit,
    fallback answer), on cancellation (`ExecutionCancelled`) or when the
    backend fails (`ModelBackendError`).
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolRegistry,
        *,
        config: AgentConfig | None = None,
        permission_gate: PermissionGate | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.config = config or AgentConfig()
        self.permission_gate = permission_gate
        self._on_progress = on_progress

    async def execute(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        progress = on_progress or self._on_progress
        token = request.cancellation
        max_turns = self.config.max_turns

        tools = self.registry.snapshot()
        system_prompt = build_system_prompt(
            request.context,
            tools,
            request.user_email,
            request.memories,
        )
        tool_definitions = tools.get_tool_definitions()
        messages: list[Message] = [*request.history, _query_message(request.query)]

        steps: list[ExecutionStep] = []
        components: list[dict[str, Any]] = []
        tool_traces: list[ToolTrace] = []
        usage = TokenUsage()
        final_text: str | None = None
        turns = 0

        while turns < max_turns:
            _check_cancelled(token)
            turns += 1
            logger.info("Agentic turn %d/%d", turns, max_turns)

            response = await self._call_backend(
                ModelRequest(
                    messages=list(messages),
                    system=system_prompt,
                    tools=tool_definitions,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                )
            )
            usage.add(response.usage)
            _check_cancelled(token)

            text = response.text.strip()
            if not response.has_tool_uses:
                final_text = text
                break

            if text:
                _record(steps, ExecutionStep(type="thinking", content=text), progress)

            tool_uses = response.tool_uses
            logger.info("Model requested %d tool call(s)", len(tool_uses))
            if len(tool_uses) > 1:
                _emit(
                    progress,
                    ExecutionStep(
                        type="thinking",
                        content=f"Executing {len(tool_uses)} tasks in sequence...",
                    ),
                )

            messages.append(Message(role="assistant", content=list(response.content)))

            results: list[ToolResultBlock] = []
            for tool_use in tool_uses:
                _check_cancelled(token)
                outcome = await self._dispatch(tools, tool_use, request, progress)
                _record(steps, outcome.step, progress)
                components.extend(outcome.components)
                tool_traces.append(outcome.trace)
                results.append(
                    ToolResultBlock(
                        tool_use_id=tool_use.id,
                        content=tool_result_content(outcome.result),
                        is_error=not outcome.result.success,
                    )
                )

            messages.append(Message(role="user", content=list(results)))

        max_turns_reached = final_text is None
        if final_text is None:
            logger.warning("Max turns (%d) reached, stopping agentic loop", max_turns)
            final_text = MAX_TURNS_FALLBACK
        elif not final_text:
            logger.warning("Model returned an empty final response")
            final_text = EMPTY_RESPONSE_FALLBACK

        _record(steps, ExecutionStep(type="response", content=final_text), progress)
        logger.info(
            "Execution complete after %d turn(s): %d step(s), %d component(s)",
            turns,
            len(steps),
            len(components),
        )

        return ExecutionResult(
            final_response=final_text,
            steps=steps,
            components=components,
            tokens_used=usage,
            turns=turns,
            max_turns_reached=max_turns_reached,
            tool_traces=tool_traces,
        )

    async def _call_backend(self, model_request: ModelRequest) -> ModelResponse:
        try:
            return await self.backend.send_message(model_request)
        except (ModelBackendError, ExecutionCancelled):
            raise
        except Exception as exc:
            logger.exception("Model backend call failed")
            raise ModelBackendError(f"Model backend call failed: {exc}") from exc

    async def _dispatch(
        self,
        tools: ToolRegistry,
        tool_use: ToolUseBlock,
        request: ExecutionRequest,
        progress: ProgressCallback | None,
    ) -> _ToolOutcome:
        tool = tools.get_tool(tool_use.name)
        if tool is None:
            logger.warning("Model requested unknown tool: %s", tool_use.name)
            result = ToolResult.fail(f"Tool not found: {tool_use.name}")
            return _ToolOutcome(
                result=result,
                step=ExecutionStep(
                    type="tool_use",
                    content=f"Error: Tool not found - {tool_use.name}",
                    tool_name=tool_use.name,
                    tool_input=tool_use.input,
                    tool_result=result,
                ),
                components=[],
                trace=ToolTrace(
                    name=tool_use.name,
                    input_payload=tool_use.input,
                    output_preview=result.error or "",
                    latency_ms=0.0,
                    success=False,
                ),
            )

        logger.info("Executing tool: %s", tool.name)
        progress_message = self._progress_message(tool, tool_use.input)
        context = self._tool_context(request, tool.name, progress)
        with Timer() as timer:
            result = await self._run_tool(tool, tool_use.input, context)

        return _ToolOutcome(
            result=result,
            step=ExecutionStep(
                type="tool_use",
                content=progress_message,
                tool_name=tool.name,
                tool_input=tool_use.input,
                tool_result=result,
            ),
            components=self._collect_components(tool, result),
            trace=ToolTrace(
                name=tool.name,
                input_payload=tool_use.input,
                output_preview=tool_result_content(result)[:320],
                latency_ms=timer.elapsed_ms,
                success=result.success,
            ),
        )

    async def _run_tool(
        self,
        tool: Tool,
        tool_input: dict[str, Any],
        context: ToolExecutionContext,
    ) -> ToolResult:
        if self.permission_gate is not None:
            try:
                denial = await self.permission_gate.check(tool, tool_input, context)
            except ExecutionCancelled:
                raise
            except Exception as exc:
                logger.exception("Permission check for tool %s raised", tool.name)
                return ToolResult.fail(f"Permission check failed for {tool.name}: {type(exc).__name__}: {exc}")
            if denial:
                logger.warning("Permission denied for tool %s: %s", tool.name, denial)
                return ToolResult.fail(f"Permission denied: {denial}")

        try:
            result = await tool.execute(dict(tool_input), context)
        except ExecutionCancelled:
            raise
        except Exception as exc:
            logger.exception("Tool %s raised during execution", tool.name)
            return ToolResult.fail(f"Tool {tool.name} failed: {type(exc).__name__}: {exc}")

        if not isinstance(result, ToolResult):
            logger.warning("Tool %s returned %s instead of ToolResult", tool.name, type(result).__name__)
            return ToolResult.fail(f"Tool {tool.name} returned an invalid result")
        if not result.success:
            logger.warning("Tool %s returned an error: %s", tool.name, result.error)
        return result

    @staticmethod
    def _progress_message(tool: Tool, tool_input: dict[str, Any]) -> str:
        try:
            return tool.get_progress_message(tool_input)
        except Exception:
            logger.exception("Tool %s failed to build its progress message", tool.name)
            return f"Running {tool.name}..."

    def _collect_components(self, tool: Tool, result: ToolResult) -> list[dict[str, Any]]:
        try:
            generated = tool.generate_components(result)
        except Exception:
            logger.exception("Tool %s failed to generate components", tool.name)
            return []
        if generated:
            logger.debug("Collected %d component(s) from %s", len(generated), tool.name)
        return list(generated or [])

    @staticmethod
    def _tool_context(
        request: ExecutionRequest,
        tool_name: str,
        progress: ProgressCallback | None,
    ) -> ToolExecutionContext:
        forward = None
        if progress is not None:

            def forward(message: str, data: dict[str, Any] | None = None) -> None:
                progress(ToolProgress(tool_name=tool_name, message=message, data=data))

        return ToolExecutionContext(
            user_id=request.user_id,
            session_id=request.session_id,
            tenant_id=request.tenant_id,
            user_email=request.user_email,
            context=dict(request.context),
            cancellation=request.cancellation,
            on_progress=forward,
        )


def tool_result_content(result: ToolResult) -> str:
    """Text fed back to the model for one tool result; never empty."""
    if result.success:
        payload = result.data
    else:
        payload = result.error or result.data or "Tool execution failed"

    if payload is None:
        return NO_OUTPUT_PLACEHOLDER
    if isinstance(payload, str):
        text = payload
    else:
        if isinstance(payload, (list, dict, tuple)) and not payload:
            return NO_OUTPUT_PLACEHOLDER
        text = json.dumps(payload, ensure_ascii=False, default=str)
    return text if text.strip() else NO_OUTPUT_PLACEHOLDER


def _query_message(query: str | list[Any]) -> Message:
    if isinstance(query, str):
        return Message.user(query)
    return Message(role="user", content=list(query))


def _check_cancelled(token: CancellationToken | None) -> None:
    if token is not None and token.cancelled:
        logger.info("Execution cancelled: %s", token.reason or "no reason given")
        token.raise_if_cancelled()


def _record(steps: list[ExecutionStep], step: ExecutionStep, progress: ProgressCallback | None) -> None:
    if steps and step.timestamp < steps[-1].timestamp:
        step.timestamp = steps[-1].timestamp
    steps.append(step)
    _emit(progress, step)


def _emit(progress: ProgressCallback | None, event: ProgressEvent) -> None:
    if progress is not None:
        progress(event)
