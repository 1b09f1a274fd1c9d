"""Cooperative cancellation token threaded through executor and tools."""

from __future__ import annotations

from agent_runtime.errors import ExecutionCancelled


class CancellationToken:
    """One-shot cancellation signal checked at defined suspension points.

    The token only records the request; nothing is interrupted until the
    holder calls `raise_if_cancelled()` (or polls `cancelled`).
    """

    def __init__(self) -> None:
        self._reason: str | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ExecutionCancelled(self._reason)
