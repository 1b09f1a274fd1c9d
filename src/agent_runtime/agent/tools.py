"""Built-in tool implementations."""

from __future__ import annotations

import re
import sqlite3
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from agent_runtime.agent.registry import ToolRegistry
from agent_runtime.agent.tool import FunctionTool
from agent_runtime.types import ToolExecutionContext, ToolResult


class SummarizeToolInput(BaseModel):
    text: str = Field(min_length=1, description="Text passage to summarize.")
    max_sentences: int = Field(default=3, ge=1, le=10)


class PolicyExtractToolInput(BaseModel):
    text: str = Field(min_length=1, description="Text to scan for rules and obligations.")


class KvReadToolInput(BaseModel):
    key: str = Field(min_length=1)


class KvWriteToolInput(BaseModel):
    key: str = Field(min_length=1)
    value: str = Field(min_length=1)


_POLICY_KEYWORDS = ("must", "shall", "required", "prohibited", "may not", "should not")


def register_builtin_tools(registry: ToolRegistry, *, sqlite_path: str = "agent_runtime.db") -> None:
    """Register the default tool set.

    Tools:
    - `summarize_text`: first-N-sentences summarization.
    - `extract_policy`: rule/obligation sentence extraction.
    - `kv_read` / `kv_write`: SQLite key-value notes scoped per tenant.
    """

    db_file = Path(sqlite_path)
    _ensure_kv_table(db_file)

    def _summarize(data: SummarizeToolInput, context: ToolExecutionContext) -> dict[str, Any]:
        sentences = [
            part.strip()
            for part in re.split(r"(?<=[.!?])\s+", data.text)
            if part.strip()
        ]
        return {
            "summary": " ".join(sentences[: data.max_sentences]),
            "sentence_count": len(sentences),
        }

    def _extract_policy(data: PolicyExtractToolInput, context: ToolExecutionContext) -> ToolResult:
        lines = [line.strip() for line in data.text.splitlines() if line.strip()]
        hits = [line for line in lines if any(keyword in line.lower() for keyword in _POLICY_KEYWORDS)]
        if not hits:
            return ToolResult.fail("No policy statements found in the text")
        return ToolResult.ok({"policies": hits})

    def _kv_read(data: KvReadToolInput, context: ToolExecutionContext) -> ToolResult:
        with sqlite3.connect(db_file) as conn:
            cur = conn.execute(
                "SELECT value FROM kv WHERE scope = ? AND key = ?",
                (_scope(context), data.key),
            )
            row = cur.fetchone()
        if row is None:
            return ToolResult.fail(f"No value stored for key '{data.key}'")
        return ToolResult.ok({"key": data.key, "value": row[0]})

    def _kv_write(data: KvWriteToolInput, context: ToolExecutionContext) -> dict[str, Any]:
        context.report_progress(f"Saving '{data.key}'")
        with sqlite3.connect(db_file) as conn:
            conn.execute(
                "INSERT INTO kv(scope, key, value) VALUES(?, ?, ?) "
                "ON CONFLICT(scope, key) DO UPDATE SET value=excluded.value",
                (_scope(context), data.key, data.value),
            )
            conn.commit()
        return {"key": data.key, "value": data.value, "saved": True}

    def _kv_write_components(result: ToolResult) -> list[dict[str, Any]] | None:
        if not result.success or not isinstance(result.data, dict):
            return None
        return [{"type": "KeyValueSaved", "props": {"key": result.data["key"], "value": result.data["value"]}}]

    registry.register(
        FunctionTool(
            name="summarize_text",
            description="Summarize a text passage into its first few sentences.",
            args_schema=SummarizeToolInput,
            handler=_summarize,
            progress_message="Summarizing text...",
            category="Text Tools",
            sample_prompts=["Summarize this paragraph in two sentences."],
        )
    )
    registry.register(
        FunctionTool(
            name="extract_policy",
            description="Extract policy and compliance sentences (must/shall/required) from text.",
            args_schema=PolicyExtractToolInput,
            handler=_extract_policy,
            progress_message="Extracting policy statements...",
            prompt_section=(
                "EXTRACT POLICY TOOL:\n"
                "- Use extract_policy when the user pastes a document and asks what is required or forbidden.\n"
                "- Quote the returned sentences; do not paraphrase obligations."
            ),
            category="Text Tools",
            sample_prompts=["What does this policy require from contractors?"],
        )
    )
    registry.register(
        FunctionTool(
            name="kv_read",
            description="Read a saved note by key.",
            args_schema=KvReadToolInput,
            handler=_kv_read,
            progress_message=lambda payload: f"Looking up '{payload.get('key', '')}'...",
            permissions=["notes:read"],
            category="Notes",
            sample_prompts=["What did I save under 'wifi'?"],
        )
    )
    registry.register(
        FunctionTool(
            name="kv_write",
            description="Save a note under a key, replacing any previous value.",
            args_schema=KvWriteToolInput,
            handler=_kv_write,
            progress_message=lambda payload: f"Saving '{payload.get('key', '')}'...",
            prompt_section=(
                "NOTES TOOLS:\n"
                "- kv_write saves a note the user wants to keep; kv_read retrieves it later by the same key.\n"
                "- Confirm the key you used after saving."
            ),
            components=_kv_write_components,
            permissions=["notes:write"],
            category="Notes",
            sample_prompts=["Remember that the wifi password is hunter2."],
        )
    )


def _scope(context: ToolExecutionContext) -> str:
    return context.tenant_id or context.user_id or "global"


def _ensure_kv_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS kv ("
            "scope TEXT NOT NULL, key TEXT NOT NULL, value TEXT NOT NULL, "
            "PRIMARY KEY (scope, key))"
        )
        conn.commit()
