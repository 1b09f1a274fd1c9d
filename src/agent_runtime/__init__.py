"""Agentic conversation runtime package."""

from .agent.executor import AgenticExecutor
from .agent.registry import ToolRegistry
from .agent.tool import FunctionTool, Tool
from .chat.orchestrator import ConversationOrchestrator
from .chat.stream import StreamSink
from .config import AgentConfig, AttachmentConfig, RuntimeSettings

__all__ = [
    "AgentConfig",
    "AgenticExecutor",
    "AttachmentConfig",
    "ConversationOrchestrator",
    "FunctionTool",
    "RuntimeSettings",
    "StreamSink",
    "Tool",
    "ToolRegistry",
]
