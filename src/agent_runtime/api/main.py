"""FastAPI app factory for chat streaming, tool listing and trace endpoints.

Serve with `uvicorn --factory agent_runtime.api.main:create_app`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from agent_runtime.agent.backend import LangChainBackend, ModelBackend
from agent_runtime.agent.cancellation import CancellationToken
from agent_runtime.agent.executor import AgenticExecutor, PermissionGate
from agent_runtime.agent.fallback import OfflineBackend
from agent_runtime.agent.registry import ToolRegistry
from agent_runtime.agent.tools import register_builtin_tools
from agent_runtime.chat.attachments import AttachmentResolver
from agent_runtime.chat.orchestrator import ConversationOrchestrator
from agent_runtime.chat.stream import StreamSink
from agent_runtime.config import RuntimeSettings
from agent_runtime.errors import ExecutionCancelled, ModelBackendError
from agent_runtime.obs.tracing import TraceStore
from agent_runtime.types import Attachment, ChatMessage, ChatRequest

logger = logging.getLogger(__name__)


def _create_backend(settings: RuntimeSettings) -> ModelBackend:
    if not settings.openai_api_key:
        return OfflineBackend()

    from langchain_openai import ChatOpenAI

    return LangChainBackend(ChatOpenAI(model=settings.openai_model, api_key=settings.openai_api_key))


class AttachmentPayload(BaseModel):
    name: str = Field(min_length=1)
    mime_type: str = Field(min_length=1)
    url: str | None = None
    data: str | None = None
    size: int | None = Field(default=None, ge=0)

    def to_attachment(self) -> Attachment:
        return Attachment(
            name=self.name,
            mime_type=self.mime_type,
            url=self.url,
            data=self.data,
            size=self.size,
        )


class ChatMessagePayload(BaseModel):
    role: Literal["user", "assistant"]
    content: str = ""
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class ChatRequestPayload(BaseModel):
    message: str = Field(min_length=1)
    history: list[ChatMessagePayload] = Field(default_factory=list)
    attachments: list[AttachmentPayload] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    session_id: str | None = None
    tenant_id: str | None = None
    user_email: str | None = None
    memories: list[str] = Field(default_factory=list)
    generate_title: bool = False

    def to_chat_request(self, cancellation: CancellationToken | None = None) -> ChatRequest:
        return ChatRequest(
            message=self.message,
            history=[
                ChatMessage(
                    role=message.role,
                    content=message.content,
                    attachments=[item.to_attachment() for item in message.attachments],
                )
                for message in self.history
            ],
            attachments=[item.to_attachment() for item in self.attachments],
            context=dict(self.context),
            user_id=self.user_id,
            session_id=self.session_id,
            tenant_id=self.tenant_id,
            user_email=self.user_email,
            memories=list(self.memories),
            generate_title=self.generate_title,
            cancellation=cancellation,
        )


def create_app(
    *,
    settings: RuntimeSettings | None = None,
    backend: ModelBackend | None = None,
    registry: ToolRegistry | None = None,
    trace_store: TraceStore | None = None,
    attachment_resolver: AttachmentResolver | None = None,
    permission_gate: PermissionGate | None = None,
) -> FastAPI:
    """Composition root: wire backend, registry, executor and orchestrator."""

    settings = settings or RuntimeSettings.from_env()
    if registry is None:
        registry = ToolRegistry()
        register_builtin_tools(registry, sqlite_path=settings.kv_db_path)
    backend = backend or _create_backend(settings)
    trace_store = trace_store or TraceStore()

    executor = AgenticExecutor(
        backend,
        registry,
        config=settings.agent,
        permission_gate=permission_gate,
    )
    orchestrator = ConversationOrchestrator(
        executor,
        attachment_resolver=attachment_resolver or AttachmentResolver(settings.attachments),
        trace_store=trace_store,
    )
    background_tasks: set[asyncio.Task[None]] = set()

    app = FastAPI(title="Agent Runtime", version="0.1.0")
    app.state.registry = registry
    app.state.trace_store = trace_store
    app.state.orchestrator = orchestrator

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "backend": type(backend).__name__,
            "llm_configured": not isinstance(backend, OfflineBackend),
            "tool_count": registry.count(),
            "trace_count": len(trace_store.list_recent(limit=1000)),
        }

    @app.get("/tools")
    def tools() -> dict[str, Any]:
        return {"items": [tool.get_catalog_entry() for tool in registry.get_all_tools()]}

    @app.post("/chat")
    async def chat(payload: ChatRequestPayload) -> StreamingResponse:
        token = CancellationToken()
        sink = StreamSink()
        request = payload.to_chat_request(cancellation=token)

        async def _run() -> None:
            try:
                await orchestrator.handle(request, sink)
            except (ExecutionCancelled, ModelBackendError) as exc:
                logger.info("Chat stream ended early: %s", exc)
            except Exception:
                logger.exception("Chat stream failed")

        async def _frames():
            task = asyncio.create_task(_run())
            background_tasks.add(task)
            task.add_done_callback(background_tasks.discard)
            try:
                async for frame in sink.frames():
                    yield frame
            finally:
                if not task.done():
                    token.cancel("client disconnected")
                    sink.close()

        return StreamingResponse(
            _frames(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/chat/complete")
    async def chat_complete(payload: ChatRequestPayload) -> dict[str, Any]:
        sink = StreamSink()
        try:
            response = await orchestrator.handle(payload.to_chat_request(), sink)
        except ModelBackendError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except Exception as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return response.to_dict()

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app

