"""Configuration models for the agent runtime."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """Configures the agentic turn loop."""

    max_turns: int = Field(default=10, ge=1)
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class AttachmentConfig(BaseModel):
    """Bounds attachment fetching and the token cost of inlined files."""

    max_text_chars: int = Field(default=50_000, ge=1)
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    fetch_timeout_seconds: float = Field(default=15.0, gt=0.0)


class RuntimeSettings(BaseModel):
    """Process-level settings assembled by the composition root."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    kv_db_path: str = "agent_runtime.db"

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        agent = AgentConfig(max_turns=int(os.getenv("AGENT_MAX_TURNS", "10")))
        attachments = AttachmentConfig(
            max_text_chars=int(os.getenv("ATTACHMENT_MAX_TEXT_CHARS", "50000")),
        )
        return cls(
            agent=agent,
            attachments=attachments,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            kv_db_path=os.getenv("KV_DB_PATH", "agent_runtime.db"),
        )
