import asyncio

import pytest
from pydantic import BaseModel, Field

from agent_runtime.agent.tool import FunctionTool, Tool
from agent_runtime.types import ToolExecutionContext, ToolResult


class LookupInput(BaseModel):
    account_id: str = Field(min_length=1, description="Account identifier.")
    limit: int = Field(default=5, ge=1, le=50)


class BareTool(Tool):
    name = "bare"
    description = "Tool without schema or hooks."

    async def execute(self, input, context):
        return self.success({"echo": input})


def test_tool_result_rejects_inconsistent_states() -> None:
    with pytest.raises(ValueError):
        ToolResult(success=True, error="boom")
    with pytest.raises(ValueError):
        ToolResult(success=False)
    with pytest.raises(ValueError):
        ToolResult(success=False, error="")

    assert ToolResult.ok().to_dict() == {"success": True}
    assert ToolResult.fail("nope", data={"id": 1}).to_dict() == {
        "success": False,
        "data": {"id": 1},
        "error": "nope",
    }


def test_tool_defaults_are_explicit() -> None:
    tool = BareTool()

    assert tool.get_system_prompt_section() is None
    assert tool.generate_components(ToolResult.ok()) is None
    assert tool.get_required_permissions() == []
    assert tool.get_progress_message({}) == "Running bare..."
    assert tool.category == "General"
    assert tool.get_definition().input_schema == {"type": "object", "properties": {}}
    assert tool.error("bad").to_dict() == {"success": False, "error": "bad"}


def test_parse_input_requires_schema() -> None:
    with pytest.raises(TypeError):
        BareTool().parse_input({})


def test_function_tool_schema_comes_from_args_model() -> None:
    tool = FunctionTool(
        name="lookup",
        description="Look up an account.",
        args_schema=LookupInput,
        handler=lambda args, context: args.account_id,
    )

    definition = tool.get_definition()

    assert definition.name == "lookup"
    assert definition.input_schema["required"] == ["account_id"]
    assert definition.input_schema["properties"]["limit"]["maximum"] == 50
    assert definition.to_dict()["input_schema"] == definition.input_schema
    openai_tool = definition.to_openai_tool()
    assert openai_tool["type"] == "function"
    assert openai_tool["function"]["name"] == "lookup"


def test_function_tool_invalid_input_never_reaches_handler() -> None:
    calls = []

    def _handler(args, context):
        calls.append(args)
        return "ok"

    tool = FunctionTool(name="lookup", description="d", args_schema=LookupInput, handler=_handler)

    result = asyncio.run(tool.execute({"limit": 100}, ToolExecutionContext()))

    assert not result.success
    assert result.error.startswith("Invalid input for lookup:")
    assert "account_id" in result.error
    assert "limit" in result.error
    assert calls == []


def test_function_tool_supports_async_handlers_and_passes_results_through() -> None:
    async def _handler(args, context):
        if args.account_id == "missing":
            return ToolResult.fail("Account not found")
        return {"account": args.account_id, "user": context.user_id}

    tool = FunctionTool(name="lookup", description="d", args_schema=LookupInput, handler=_handler)
    context = ToolExecutionContext(user_id="u-1")

    found = asyncio.run(tool.execute({"account_id": "a-9"}, context))
    missing = asyncio.run(tool.execute({"account_id": "missing"}, context))

    assert found == ToolResult.ok({"account": "a-9", "user": "u-1"})
    assert missing.error == "Account not found"


def test_function_tool_optional_hooks() -> None:
    tool = FunctionTool(
        name="lookup",
        description="d",
        args_schema=LookupInput,
        handler=lambda args, context: {"id": args.account_id},
        progress_message=lambda payload: f"Looking up {payload['account_id']}...",
        prompt_section="LOOKUP:\n- use for accounts",
        components=lambda result: [{"type": "Account", "props": result.data}],
        permissions=["accounts:read"],
    )

    assert tool.get_progress_message({"account_id": "a-1"}) == "Looking up a-1..."
    assert tool.get_system_prompt_section() == "LOOKUP:\n- use for accounts"
    assert tool.generate_components(ToolResult.ok({"id": "a-1"})) == [
        {"type": "Account", "props": {"id": "a-1"}}
    ]
    assert tool.get_required_permissions() == ["accounts:read"]


def test_context_reports_progress_only_when_subscribed() -> None:
    received = []
    ToolExecutionContext().report_progress("ignored")
    ToolExecutionContext(on_progress=lambda message, data: received.append((message, data))).report_progress(
        "half way", {"pct": 50}
    )

    assert received == [("half way", {"pct": 50})]


def test_catalog_entry_exposes_picker_metadata() -> None:
    tool = FunctionTool(
        name="lookup",
        description="Look up an account.",
        args_schema=LookupInput,
        handler=lambda args, context: None,
        permissions=["accounts:read"],
        category="Accounts",
        sample_prompts=["Show account a-1"],
    )

    entry = tool.get_catalog_entry()

    assert entry["name"] == "lookup"
    assert entry["input_schema"] == tool.get_input_schema()
    assert entry["category"] == "Accounts"
    assert entry["sample_prompts"] == ["Show account a-1"]
    assert entry["permissions"] == ["accounts:read"]
    assert BareTool().get_catalog_entry()["sample_prompts"] == []
