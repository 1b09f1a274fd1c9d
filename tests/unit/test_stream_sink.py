import asyncio
import json

from agent_runtime.chat.stream import StreamSink, encode_sse
from agent_runtime.types import ExecutionStep, StreamEvent, TokenUsage, ToolProgress


def _drain(sink: StreamSink) -> list[dict]:
    async def _collect() -> list[str]:
        return [frame async for frame in sink.frames()]

    frames = asyncio.run(_collect())
    for frame in frames:
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
    return [json.loads(frame[len("data: ") :]) for frame in frames]


def test_encode_sse_frame_format() -> None:
    frame = encode_sse(StreamEvent(type="error", data={"message": "Zürich down"}))

    assert frame == 'data: {"type": "error", "message": "Zürich down"}\n\n'


def test_lifecycle_events_are_serialized_in_order() -> None:
    sink = StreamSink()
    sink.send_start("sess-1")
    sink.send_progress(ExecutionStep(type="thinking", content="Thinking..."))
    sink.send_progress(ToolProgress(tool_name="kv_write", message="Saving"))
    sink.send_title_update("Balance question")
    sink.send_complete([{"type": "Card", "props": {}}], TokenUsage(input=3, output=4), traceId="t-1")
    sink.close()

    events = _drain(sink)

    assert [event["type"] for event in events] == ["start", "progress", "progress", "title_update", "complete"]
    assert events[0]["sessionId"] == "sess-1"
    assert events[1]["data"]["type"] == "thinking"
    assert events[1]["data"]["content"] == "Thinking..."
    assert events[2]["data"] == {
        "type": "tool_progress",
        "toolName": "kv_write",
        "message": "Saving",
        "timestamp": events[2]["data"]["timestamp"],
    }
    assert events[3]["title"] == "Balance question"
    assert events[4]["components"] == [{"type": "Card", "props": {}}]
    assert events[4]["tokensUsed"] == {"input": 3, "output": 4}
    assert events[4]["traceId"] == "t-1"


def test_sends_after_close_are_silent_no_ops() -> None:
    sink = StreamSink()
    sink.send_start()
    sink.close()
    sink.close()
    sink.send_error("too late")
    sink.send_progress({"type": "thinking", "content": "late"})

    events = _drain(sink)

    assert sink.closed
    assert events == [{"type": "start"}]
    assert [event.type for event in sink.sent] == ["start"]
