import json

from fastapi.testclient import TestClient

from agent_runtime.agent.fallback import ScriptedBackend, text_response, tool_response
from agent_runtime.api.main import create_app
from agent_runtime.config import RuntimeSettings
from agent_runtime.obs.tracing import TraceStore


def _sse_events(body: str) -> list[dict]:
    events = []
    for frame in body.split("\n\n"):
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: ") :]))
    return events


def test_api_chat_tools_traces_metrics(tmp_path) -> None:
    backend = ScriptedBackend(
        [
            tool_response(("kv_write", {"key": "color", "value": "blue"}), input_tokens=10, output_tokens=3),
            text_response("Saved your favourite color.", input_tokens=15, output_tokens=5),
            tool_response(("kv_read", {"key": "color"})),
            text_response("Your favourite color is blue."),
        ]
    )
    app = create_app(
        settings=RuntimeSettings(kv_db_path=str(tmp_path / "kv.db")),
        backend=backend,
        trace_store=TraceStore(),
    )
    client = TestClient(app)

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["backend"] == "ScriptedBackend"
    assert health["tool_count"] == 4

    tools = client.get("/tools").json()["items"]
    assert {tool["name"] for tool in tools} == {"summarize_text", "extract_policy", "kv_read", "kv_write"}
    assert all(tool["input_schema"]["type"] == "object" for tool in tools)
    kv_write = next(tool for tool in tools if tool["name"] == "kv_write")
    assert kv_write["category"] == "Notes"
    assert kv_write["permissions"] == ["notes:write"]
    assert kv_write["sample_prompts"]

    chat_resp = client.post(
        "/chat",
        json={"message": "Remember that my favourite color is blue", "tenant_id": "acme", "session_id": "s-1"},
    )
    assert chat_resp.status_code == 200
    assert chat_resp.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(chat_resp.text)
    assert events[0] == {"type": "start", "sessionId": "s-1"}
    assert events[-1]["type"] == "complete"
    assert events[-1]["components"] == [{"type": "KeyValueSaved", "props": {"key": "color", "value": "blue"}}]
    assert events[-1]["tokensUsed"] == {"input": 25, "output": 8}
    progress = [event["data"] for event in events if event["type"] == "progress"]
    assert {"type": "tool_progress", "toolName": "kv_write", "message": "Saving 'color'"}.items() <= progress[1].items()
    assert progress[-1]["content"] == "Saved your favourite color."

    complete_resp = client.post("/chat/complete", json={"message": "What is my color?", "tenant_id": "acme"})
    assert complete_resp.status_code == 200
    payload = complete_resp.json()
    assert payload["message"] == "Your favourite color is blue."
    assert payload["steps"][0]["toolResult"] == {"success": True, "data": {"key": "color", "value": "blue"}}

    exhausted = client.post("/chat/complete", json={"message": "Anything else?"})
    assert exhausted.status_code == 502

    traces = client.get("/traces").json()["items"]
    assert [trace["status"] for trace in traces] == ["completed", "completed", "failed"]
    detail = client.get(f"/traces/{traces[0]['trace_id']}")
    assert detail.status_code == 200
    assert detail.json()["tool_traces"][0]["name"] == "kv_write"
    assert client.get("/traces/missing").status_code == 404

    metrics = client.get("/metrics").json()
    assert metrics["total_requests"] == 3
    assert metrics["failed_requests"] == 1
    assert metrics["total_tool_calls"] == 2


def test_chat_payload_is_validated(tmp_path) -> None:
    app = create_app(
        settings=RuntimeSettings(kv_db_path=str(tmp_path / "kv.db")),
        backend=ScriptedBackend([]),
    )
    client = TestClient(app)

    assert client.post("/chat", json={"message": ""}).status_code == 422
    assert client.post("/chat", json={"message": "hi", "history": [{"role": "system"}]}).status_code == 422


def test_each_app_gets_its_own_collaborators(tmp_path) -> None:
    from agent_runtime.api import main

    first = create_app(settings=RuntimeSettings(kv_db_path=str(tmp_path / "a.db")), backend=ScriptedBackend([]))
    second = create_app(settings=RuntimeSettings(kv_db_path=str(tmp_path / "b.db")), backend=ScriptedBackend([]))

    assert not hasattr(main, "app")
    assert first.state.registry is not second.state.registry
    assert first.state.trace_store is not second.state.trace_store
