import pytest

from agent_runtime.obs.tracing import CostModel, TraceStore, estimate_token_count
from agent_runtime.types import ToolTrace


def _record(store: TraceStore, **overrides):
    fields = {
        "query": "q",
        "answer": "a",
        "status": "completed",
        "tool_traces": [],
        "turns": 1,
        "input_tokens": 1000,
        "output_tokens": 1000,
        "latency_ms": 10.0,
    }
    fields.update(overrides)
    return store.create_record(**fields)


def test_trace_store_records_cost_and_lookup() -> None:
    store = TraceStore(cost_model=CostModel(input_per_1k=0.01, output_per_1k=0.02))
    trace = ToolTrace(name="echo", input_payload={"text": "hi"}, output_preview="HI", latency_ms=1.5)

    record = _record(store, tool_traces=[trace], session_id="s-1")

    assert store.get(record.trace_id) is record
    assert record.estimated_cost_usd == pytest.approx(0.03)
    assert record.tool_traces[0].input_payload == {"text": "hi"}
    with pytest.raises(KeyError):
        store.get("missing")


def test_trace_store_is_bounded_and_summarizes_statuses() -> None:
    store = TraceStore(max_records=2)
    _record(store, latency_ms=5.0)
    failed = _record(store, status="failed", turns=0, latency_ms=20.0, error="boom")
    cancelled = _record(store, status="cancelled", turns=3, latency_ms=40.0)

    assert [record.trace_id for record in store.list_recent()] == [failed.trace_id, cancelled.trace_id]
    assert store.list_recent(limit=0) == []

    summary = store.summary()
    assert summary["total_requests"] == 2
    assert summary["failed_requests"] == 1
    assert summary["cancelled_requests"] == 1
    assert summary["avg_latency_ms"] == pytest.approx(30.0)
    assert summary["avg_turns"] == pytest.approx(1.5)


def test_empty_summary_and_token_estimate() -> None:
    assert TraceStore().summary()["total_requests"] == 0
    assert estimate_token_count("Hello, world!") == 4
