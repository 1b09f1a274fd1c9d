"""Conversation orchestrator: chat request in, streamed execution, response out."""

from __future__ import annotations

import logging
import re

from agent_runtime.agent.executor import AgenticExecutor
from agent_runtime.chat.attachments import AttachmentResolver
from agent_runtime.chat.stream import StreamSink
from agent_runtime.errors import ExecutionCancelled
from agent_runtime.obs.tracing import ExecutionTrace, Timer, TraceStatus, TraceStore
from agent_runtime.types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStep,
    Message,
    TextBlock,
)

logger = logging.getLogger(__name__)

INITIAL_THINKING_MESSAGE = "Thinking..."
DEFAULT_TITLE = "New conversation"


class ConversationOrchestrator:
    """Entry point for one chat request.

    Emits `start` and an early `thinking` progress event, resolves
    attachments of the history and the current message, runs the executor
    with progress forwarded to the sink, and closes with `complete`. Any
    failure is announced on the sink's error channel and re-raised; the sink
    is always closed when `handle` returns.
    """

    def __init__(
        self,
        executor: AgenticExecutor,
        *,
        attachment_resolver: AttachmentResolver | None = None,
        trace_store: TraceStore | None = None,
        title_max_length: int = 60,
    ) -> None:
        self.executor = executor
        self.attachment_resolver = attachment_resolver or AttachmentResolver()
        self.trace_store = trace_store
        self.title_max_length = title_max_length

    async def handle(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        sink.send_start(request.session_id)
        sink.send_progress(ExecutionStep(type="thinking", content=INITIAL_THINKING_MESSAGE))

        timer = Timer()
        try:
            with timer:
                result = await self._execute(request, sink)
        except ExecutionCancelled as exc:
            logger.info("Chat request cancelled (session=%s)", request.session_id)
            self._record_trace(request, None, "cancelled", timer.elapsed_ms, error=exc.reason)
            sink.send_error("Request was cancelled", cancelled=True)
            sink.close()
            raise
        except Exception as exc:
            logger.exception("Chat request failed (session=%s)", request.session_id)
            self._record_trace(request, None, "failed", timer.elapsed_ms, error=str(exc))
            sink.send_error(str(exc) or type(exc).__name__)
            sink.close()
            raise

        title = None
        if request.generate_title and not request.history:
            title = derive_title(request.message, self.title_max_length)
            sink.send_title_update(title)

        trace = self._record_trace(request, result, "completed", timer.elapsed_ms)
        trace_id = trace.trace_id if trace is not None else None
        sink.send_complete(result.components, result.tokens_used, traceId=trace_id)
        sink.close()

        return ChatResponse(
            message=result.final_response,
            components=result.components,
            steps=result.steps,
            tokens_used=result.tokens_used,
            session_id=request.session_id,
            trace_id=trace_id,
            title=title,
        )

    async def _execute(self, request: ChatRequest, sink: StreamSink) -> ExecutionResult:
        history = [await self._history_message(message) for message in request.history]
        query = await self.attachment_resolver.build_content(request.message, request.attachments)
        return await self.executor.execute(
            ExecutionRequest(
                query=query,
                history=history,
                context=request.context,
                user_id=request.user_id,
                session_id=request.session_id,
                tenant_id=request.tenant_id,
                user_email=request.user_email,
                memories=request.memories,
                cancellation=request.cancellation,
            ),
            on_progress=sink.send_progress,
        )

    async def _history_message(self, message: ChatMessage) -> Message:
        if message.role == "assistant":
            text = message.content
            if message.attachments:
                names = ", ".join(attachment.name for attachment in message.attachments)
                text = f"{text}\n[Attachments: {names}]" if text else f"[Attachments: {names}]"
            return Message(role="assistant", content=[TextBlock(text)])

        content = await self.attachment_resolver.build_content(message.content, message.attachments)
        if isinstance(content, str):
            return Message.user(content)
        return Message(role="user", content=content)

    def _record_trace(
        self,
        request: ChatRequest,
        result: ExecutionResult | None,
        status: TraceStatus,
        latency_ms: float,
        *,
        error: str | None = None,
    ) -> ExecutionTrace | None:
        if self.trace_store is None:
            return None
        return self.trace_store.create_record(
            query=request.message,
            answer=result.final_response if result else "",
            status=status,
            tool_traces=result.tool_traces if result else [],
            turns=result.turns if result else 0,
            input_tokens=result.tokens_used.input if result else 0,
            output_tokens=result.tokens_used.output if result else 0,
            latency_ms=latency_ms,
            session_id=request.session_id,
            error=error,
        )


def derive_title(message: str, max_length: int = 60) -> str:
    """Short conversation title from the first user message."""
    text = re.sub(r"\s+", " ", message).strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) <= max_length:
        return text
    cut = text[: max_length - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "..."
