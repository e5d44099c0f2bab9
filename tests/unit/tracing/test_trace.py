"""
agent-governance — unit tests for the trace model

File: tests/unit/tracing/test_trace.py

Purpose
- Validate trace assembly, derived usage/status, and serialization.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from agent_governance.domain.enums import TraceStatus
from agent_governance.errors import ValidationError
from agent_governance.tracing.trace import (
    AgentTrace,
    StepType,
    TraceBuilder,
    TraceUsage,
    calculate_usage_from_steps,
    extract_tool_call_traces,
)

from . import BASE_TIME, make_trace, ticking_clock


def test_builder_derives_usage_from_llm_steps() -> None:
    builder = TraceBuilder(
        tenant_id="t1",
        workspace_id="ws-1",
        model="gpt-4o-mini",
        provider="openai",
        input_message="hello",
        clock=ticking_clock(),
    )
    builder.add_llm_call(input_tokens=100, output_tokens=20, cost=0.001, duration_ms=10)
    builder.add_llm_call(input_tokens=50, output_tokens=30, cost=0.002, duration_ms=10)
    trace = builder.finalize()

    assert trace.usage == TraceUsage(input_tokens=150, output_tokens=50, total_cost=0.003)
    assert trace.usage.total_tokens == 200
    assert trace.started_at == "2026-02-01T12:00:00.000000Z"
    assert trace.completed_at == "2026-02-01T12:00:00.750000Z"
    assert trace.duration_ms == 750


def test_explicit_usage_overrides_derived_usage() -> None:
    builder = TraceBuilder(
        tenant_id="t1",
        workspace_id="ws-1",
        model="m",
        provider="p",
        input_message="hello",
        clock=ticking_clock(),
    )
    builder.add_llm_call(input_tokens=100, output_tokens=20, cost=0.001, duration_ms=10)
    builder.set_usage(TraceUsage(input_tokens=1, output_tokens=2, total_cost=0.5))
    assert builder.finalize().usage.total_cost == 0.5


def test_status_follows_error_field() -> None:
    assert make_trace().status is TraceStatus.SUCCESS
    failed = make_trace(error="rate limited")
    assert failed.status is TraceStatus.ERROR
    assert failed.steps[-1].type is StepType.ERROR


def test_snapshot_is_not_completed() -> None:
    builder = TraceBuilder(
        tenant_id="t1",
        workspace_id="ws-1",
        model="m",
        provider="p",
        input_message="hello",
        clock=ticking_clock(),
    )
    snapshot = builder.snapshot()
    assert snapshot.completed_at is None
    assert snapshot.duration_ms is None
    assert snapshot.id == builder.id


def test_tool_calls_are_paired_with_results() -> None:
    trace = make_trace(
        tools=[("read_file", {"path": "a.md"}, "contents"), ("search", {"q": "x"}, ["hit"])],
        output=None,
    )
    calls = extract_tool_call_traces(trace.steps)

    assert [call.name for call in calls] == ["read_file", "search"]
    assert calls[0].arguments == {"path": "a.md"}
    assert calls[0].result == "contents"
    assert calls[0].success is True
    assert calls[0].duration_ms == 10
    assert trace.tool_calls == calls


def test_unmatched_tool_result_is_ignored() -> None:
    builder = TraceBuilder(
        tenant_id="t1", workspace_id="ws-1", model="m", provider="p", input_message="x"
    )
    builder.add_tool_result(tool_call_id="ghost", tool_name="x", success=True, duration_ms=1)
    assert extract_tool_call_traces(builder.snapshot().steps) == ()


def test_usage_ignores_non_llm_steps() -> None:
    trace = make_trace(tools=[("read_file", {}, None)], cost=0.25)
    usage = calculate_usage_from_steps(trace.steps)
    assert usage.total_cost == 0.25
    assert usage.input_tokens == 100


def test_to_dict_from_dict_preserves_replay_fields() -> None:
    trace = make_trace(
        skill_versions={"summarizer": "1.2.0"},
        workspace_hash="a" * 64,
        labels={"env": "prod"},
        task_id="task-1",
        tools=[("read_file", {"path": "a.md"}, "ok")],
    )

    restored = AgentTrace.from_dict(trace.to_dict())

    assert restored == trace
    assert restored.replay_context() == {
        "trace_id": trace.id,
        "workspace_hash": "a" * 64,
        "skill_versions": {"summarizer": "1.2.0"},
        "model": "gpt-4o-mini",
        "provider": "openai",
        "input": {"message": "Summarize the attached notes.", "message_history": 2},
    }


@pytest.mark.parametrize(
    ("mutation", "match"),
    [
        ({"id": "not-a-trace"}, "AgentTrace.id"),
        ({"tenant_id": ""}, "AgentTrace.tenant_id"),
        ({"input": {"message": 3}}, "AgentTrace.input.message"),
        ({"steps": [{"type": "sleep", "timestamp": "2026-02-01T12:00:00Z"}]}, "unknown step type"),
        ({"skill_versions": {"summarizer": 1}}, "AgentTrace.skill_versions.summarizer"),
    ],
)
def test_from_dict_rejects_malformed_payloads(mutation: dict[str, object], match: str) -> None:
    payload = make_trace().to_dict()
    payload.update(mutation)
    with pytest.raises(ValidationError, match=match):
        AgentTrace.from_dict(payload)


def test_builder_validates_required_context() -> None:
    with pytest.raises(ValidationError, match="tenant_id"):
        TraceBuilder(tenant_id="", workspace_id="ws", model="m", provider="p", input_message="x")
    builder = TraceBuilder(
        tenant_id="t1", workspace_id="ws", model="m", provider="p", input_message="x"
    )
    with pytest.raises(ValidationError, match="input_tokens"):
        builder.add_llm_call(input_tokens=-1, output_tokens=0, cost=0.0, duration_ms=0)


def test_with_labels_returns_copy() -> None:
    trace = make_trace(started=BASE_TIME)
    labelled = trace.with_labels({"team": "ops"})
    assert labelled.labels == {"team": "ops"}
    assert trace.labels == {}


def test_timestamps_are_normalized_to_utc() -> None:
    trace = replace(
        make_trace(),
        started_at="2026-05-11T09:00:00-05:00",
        completed_at="2026-05-11T09:00:01.5-05:00",
    )
    assert trace.started_at == "2026-05-11T14:00:00.000000Z"
    assert trace.completed_at == "2026-05-11T14:00:01.500000Z"


@pytest.mark.parametrize(
    ("field_name", "value"),
    [
        ("started_at", "not-a-time"),
        ("started_at", "2026-05-11T09:00:00"),
        ("completed_at", "yesterday"),
    ],
)
def test_invalid_timestamps_are_rejected(field_name: str, value: str) -> None:
    with pytest.raises(ValidationError, match=f"AgentTrace.{field_name}"):
        replace(make_trace(), **{field_name: value})
