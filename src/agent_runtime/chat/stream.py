"""Server-Sent-Events progress sink for one chat request."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from agent_runtime.types import (
    ExecutionStep,
    ProgressEvent,
    StreamEvent,
    StreamEventType,
    TokenUsage,
    ToolProgress,
)

logger = logging.getLogger(__name__)


def encode_sse(event: StreamEvent) -> str:
    """Serialize one event as an SSE frame: `data: <json>\\n\\n`."""
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False, default=str)}\n\n"


class StreamSink:
    """Write-only channel of lifecycle events for a single request.

    Sends never block and never raise: frames are queued for `frames()` to
    drain, and once the sink is closed every send is a silent no-op. This
    tolerates a client disconnecting while the executor is still running.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self.sent: list[StreamEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def send_event(self, type: StreamEventType, data: dict[str, Any] | None = None) -> None:
        if self._closed:
            logger.debug("Dropping %s event on closed stream", type)
            return
        event = StreamEvent(type=type, data=dict(data or {}))
        self.sent.append(event)
        self._queue.put_nowait(encode_sse(event))

    def send_start(self, session_id: str | None = None) -> None:
        self.send_event("start", {"sessionId": session_id} if session_id else {})

    def send_progress(self, progress: ProgressEvent | dict[str, Any]) -> None:
        if isinstance(progress, (ExecutionStep, ToolProgress)):
            payload = progress.to_dict()
        else:
            payload = dict(progress)
        self.send_event("progress", {"data": payload})

    def send_complete(
        self,
        components: list[dict[str, Any]] | None = None,
        tokens_used: TokenUsage | None = None,
        **extra: Any,
    ) -> None:
        self.send_event(
            "complete",
            {
                "components": list(components or []),
                "tokensUsed": (tokens_used or TokenUsage()).to_dict(),
                **extra,
            },
        )

    def send_error(self, message: str, **extra: Any) -> None:
        self.send_event("error", {"message": message, **extra})

    def send_title_update(self, title: str) -> None:
        self.send_event("title_update", {"title": title})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded frames until the sink is closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
