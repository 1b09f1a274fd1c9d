"""Runtime exception hierarchy."""

from __future__ import annotations


class AgentRuntimeError(Exception):
    """Base class for errors raised by the agent runtime."""


class ExecutionCancelled(AgentRuntimeError):
    """Raised when the caller's cancellation token fires mid-execution."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or "Execution cancelled"
        super().__init__(self.reason)


class ModelBackendError(AgentRuntimeError):
    """The model backend call failed (network, auth, rate limit, ...)."""
