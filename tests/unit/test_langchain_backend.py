import asyncio

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from agent_runtime.agent.backend import (
    LangChainBackend,
    collect_stream,
    from_langchain_message,
    to_langchain_messages,
)
from agent_runtime.agent.fallback import ScriptedBackend, tool_response
from agent_runtime.errors import ModelBackendError
from agent_runtime.types import (
    ImageBlock,
    Message,
    ModelRequest,
    StreamChunk,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


class FailingChatModel(GenericFakeChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RuntimeError("rate limited")


def test_messages_are_converted_to_langchain_roles() -> None:
    request = ModelRequest(
        system="be helpful",
        messages=[
            Message.user("balance?"),
            Message(
                role="assistant",
                content=[TextBlock("checking"), ToolUseBlock(id="call-1", name="get_balance", input={"id": "a"})],
            ),
            Message(role="user", content=[ToolResultBlock(tool_use_id="call-1", content="boom", is_error=True)]),
            Message(role="user", content=[ImageBlock(media_type="image/png", data="AAAA"), TextBlock("what is this?")]),
        ],
    )

    converted = to_langchain_messages(request)

    assert [type(message) for message in converted] == [
        SystemMessage,
        HumanMessage,
        AIMessage,
        ToolMessage,
        HumanMessage,
    ]
    assert converted[1].content == "balance?"
    assert converted[2].tool_calls[0]["name"] == "get_balance"
    assert converted[2].tool_calls[0]["args"] == {"id": "a"}
    assert converted[3].tool_call_id == "call-1"
    assert converted[3].status == "error"
    assert converted[4].content[0] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}
    assert converted[4].content[1] == {"type": "text", "text": "what is this?"}


def test_tool_calls_and_usage_are_read_back() -> None:
    message = AIMessage(
        content="Let me look.",
        tool_calls=[{"name": "get_balance", "args": {"id": "a"}, "id": "call-9"}],
        usage_metadata={"input_tokens": 40, "output_tokens": 6, "total_tokens": 46},
    )

    response = from_langchain_message(message)

    assert response.text == "Let me look."
    assert response.tool_uses == [ToolUseBlock(id="call-9", name="get_balance", input={"id": "a"})]
    assert response.usage.input_tokens == 40
    assert response.usage.output_tokens == 6
    assert response.stop_reason == "tool_use"


def test_send_message_with_fake_chat_model() -> None:
    model = GenericFakeChatModel(messages=iter([AIMessage(content="All good.")]))
    backend = LangChainBackend(model, forward_generation_params=False)

    response = asyncio.run(backend.send_message(ModelRequest(messages=[Message.user("status?")])))

    assert response.text == "All good."
    assert response.has_tool_uses is False
    assert response.stop_reason == "end_turn"


def test_provider_errors_are_wrapped() -> None:
    backend = LangChainBackend(FailingChatModel(messages=iter([])), forward_generation_params=False)

    with pytest.raises(ModelBackendError, match="rate limited"):
        asyncio.run(backend.send_message(ModelRequest(messages=[Message.user("hi")])))


def test_collect_stream_assembles_a_response() -> None:
    backend = ScriptedBackend([tool_response(("ping", {}), text="one moment", input_tokens=7, output_tokens=2)])

    response = asyncio.run(collect_stream(backend.stream_message(ModelRequest(messages=[Message.user("hi")]))))

    assert response.text == "one moment"
    assert [block.name for block in response.tool_uses] == ["ping"]
    assert response.usage.input_tokens == 7
    assert response.stop_reason == "tool_use"


def test_collect_stream_idle_timeout() -> None:
    async def _stalled():
        yield StreamChunk(text="partial")
        await asyncio.sleep(10)
        yield StreamChunk(text="never")

    with pytest.raises(ModelBackendError, match="no data"):
        asyncio.run(collect_stream(_stalled(), idle_timeout=0.05))
