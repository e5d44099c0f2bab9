"""
agent-governance — unit tests for the trace store

File: tests/unit/tracing/test_store.py

Purpose
- Validate persistence, tenant isolation, labels, linked lookups and stats.

What this test file should cover
- Finalized traces round-trip and are audited exactly once.
- Listing and lookups never cross tenants; a foreign trace reads as not found.
- Finalized trace fields are immutable while labels stay editable.
"""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import timedelta

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import ConflictError, NotFoundError, ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.tracing.store import TraceStore

from . import BASE_TIME, make_trace


@pytest.fixture
def store(db: StateDB, audit: AuditLog) -> TraceStore:
    return TraceStore(db, audit)


def test_finalize_persists_and_audits(store: TraceStore, audit: AuditLog) -> None:
    trace = make_trace(skill_versions={"summarizer": "1.0.0"}, labels={"env": "prod"})
    store.finalize(trace)

    assert store.get(trace.id) == trace
    entries = audit.get_by_trace(trace.id)
    assert [entry.event_type for entry in entries] == [AuditEventType.AGENT_EXECUTION_COMPLETED]
    assert entries[0].details.data["model"] == "gpt-4o-mini"


def test_failed_trace_is_audited_as_failure(store: TraceStore, audit: AuditLog) -> None:
    trace = make_trace(error="provider timeout")
    store.finalize(trace)
    (entry,) = audit.get_by_trace(trace.id)
    assert entry.event_type is AuditEventType.AGENT_EXECUTION_FAILED
    assert entry.details.data["error"] == "provider timeout"


def test_duplicate_finalize_conflicts_without_second_audit(
    store: TraceStore, audit: AuditLog
) -> None:
    trace = make_trace()
    store.finalize(trace)
    with pytest.raises(ConflictError, match="trace already finalized"):
        store.finalize(trace)
    assert len(audit.get_by_trace(trace.id)) == 1


def test_finalized_fields_are_immutable(store: TraceStore, db: StateDB) -> None:
    trace = make_trace()
    store.finalize(trace)
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("UPDATE traces SET model = 'other' WHERE id = ?", (trace.id,))


def test_list_is_tenant_scoped_and_newest_first(store: TraceStore) -> None:
    older = make_trace(tenant_id="A", started=BASE_TIME)
    newer = make_trace(tenant_id="A", started=BASE_TIME + timedelta(hours=1))
    foreign = make_trace(tenant_id="B", started=BASE_TIME + timedelta(hours=2))
    for trace in (older, newer, foreign):
        store.finalize(trace)

    page = store.list("A")
    assert [trace.id for trace in page] == [newer.id, older.id]
    assert page.total == 2
    assert not page.has_more
    assert all(trace.tenant_id == "A" for trace in page)

    assert [trace.id for trace in store.list("B")] == [foreign.id]
    assert store.list("C").total == 0


def test_list_filters_and_paginates(store: TraceStore) -> None:
    for hour in range(3):
        store.finalize(
            make_trace(
                started=BASE_TIME + timedelta(hours=hour),
                workspace_id="ws-1" if hour < 2 else "ws-2",
                agent_role="planner" if hour == 0 else "assistant",
            )
        )

    assert store.list("t1", workspace_id="ws-2").total == 1
    assert store.list("t1", agent_role="planner").total == 1
    window = store.list("t1", start=BASE_TIME + timedelta(minutes=30), end=BASE_TIME + timedelta(hours=1))
    assert window.total == 1

    first = store.list("t1", limit=2)
    assert len(first) == 2
    assert first.has_more
    assert len(store.list("t1", limit=2, offset=2)) == 1

    with pytest.raises(ValidationError):
        store.list("t1", limit=0)


def test_get_for_tenant_hides_foreign_traces(store: TraceStore) -> None:
    trace = make_trace(tenant_id="A")
    store.finalize(trace)

    assert store.get_for_tenant("A", trace.id).id == trace.id
    with pytest.raises(NotFoundError) as foreign:
        store.get_for_tenant("B", trace.id)
    with pytest.raises(NotFoundError) as missing:
        store.get_for_tenant("B", "trc-01ARZ3NDEKTSV4RRFFQ69G5FAV")
    assert foreign.value.kind == missing.value.kind == "trace"


def test_labels_are_mutable_and_tenant_checked(store: TraceStore) -> None:
    trace = make_trace(labels={"env": "staging"})
    store.finalize(trace)

    assert store.set_label(trace.id, "team", "ops", tenant_id="t1") == {
        "env": "staging",
        "team": "ops",
    }
    assert store.remove_label(trace.id, "env") == {"team": "ops"}
    assert store.set_labels(trace.id, {"priority": "high"}) == {"priority": "high"}
    assert store.get_labels(trace.id) == {"priority": "high"}
    assert store.get_labels("trc-01ARZ3NDEKTSV4RRFFQ69G5FAV") is None

    with pytest.raises(NotFoundError):
        store.set_label(trace.id, "team", "x", tenant_id="other")
    with pytest.raises(ValidationError, match="labels"):
        store.set_labels(trace.id, {"count": 3})  # type: ignore[dict-item]


def test_find_by_label_and_links(store: TraceStore) -> None:
    linked = make_trace(labels={"env": "prod"}, task_id="task-7", document_id="doc-1")
    other = make_trace(labels={"env": "dev"}, message_id="msg-3")
    foreign = make_trace(tenant_id="B", labels={"env": "prod"}, task_id="task-7")
    for trace in (linked, other, foreign):
        store.finalize(trace)

    assert [t.id for t in store.find_by_label("t1", "env", "prod")] == [linked.id]
    assert {t.id for t in store.find_by_label("t1", "env")} == {linked.id, other.id}
    assert [t.id for t in store.find_by_task("t1", "task-7")] == [linked.id]
    assert [t.id for t in store.find_by_document("t1", "doc-1")] == [linked.id]
    assert [t.id for t in store.find_by_message("t1", "msg-3")] == [other.id]
    assert store.find_by_message("B", "msg-3") == []


def test_stats_cover_tokens_cost_and_error_rate(store: TraceStore) -> None:
    store.finalize(make_trace(cost=0.25))
    store.finalize(make_trace(cost=0.75, error="boom"))
    store.finalize(make_trace(tenant_id="B", cost=9.0))

    stats = store.get_stats("t1")
    assert stats.total_traces == 2
    assert stats.total_tokens == 300
    assert stats.total_cost == 1.0
    assert stats.error_rate == 0.5
    assert stats.average_duration_ms > 0

    empty = store.get_stats("nobody")
    assert empty.total_traces == 0
    assert empty.error_rate == 0.0


def test_skill_usage_counts_per_skill(store: TraceStore) -> None:
    store.finalize(make_trace(skill_versions={"summarizer": "1.0.0", "search": "2.0.0"}))
    store.finalize(
        make_trace(
            started=BASE_TIME + timedelta(days=1),
            skill_versions={"summarizer": "1.1.0"},
        )
    )
    store.finalize(make_trace(tenant_id="B", skill_versions={"search": "2.0.0"}))

    usage = store.skill_usage("t1")
    assert set(usage) == {"search", "summarizer"}
    assert usage["summarizer"].usage_count == 2
    assert usage["summarizer"].last_used == "2026-02-02T12:00:00.000000Z"
    assert store.skill_usage()["search"].usage_count == 2


def test_retention_helpers_use_strict_cutoff(store: TraceStore) -> None:
    old = make_trace(started=BASE_TIME - timedelta(days=10))
    boundary = make_trace(started=BASE_TIME)
    for trace in (old, boundary):
        store.finalize(trace)

    assert store.count_older_than("t1", BASE_TIME) == 1
    assert store.oldest_started_at("t1") == old.started_at
    assert store.delete_older_than("t1", BASE_TIME) == 1
    assert store.get(old.id) is None
    assert store.get(boundary.id) is not None
    assert store.delete(boundary.id) is True
    assert store.delete(boundary.id) is False
    assert store.oldest_started_at("t1") is None


def test_replay_context_for_stored_trace(store: TraceStore) -> None:
    trace = make_trace(workspace_hash="b" * 64, skill_versions={"summarizer": "1.0.0"})
    store.finalize(trace)
    context = store.get_replay_context(trace.id)
    assert context is not None
    assert context["workspace_hash"] == "b" * 64
    assert store.get_replay_context("trc-01ARZ3NDEKTSV4RRFFQ69G5FAV") is None


def test_offset_start_time_is_stored_as_utc(store: TraceStore) -> None:
    trace = replace(make_trace(), started_at="2026-02-01T07:30:00-05:00")
    store.finalize(trace)

    stored = store.get_for_tenant("t1", trace.id)
    assert stored.started_at == "2026-02-01T12:30:00.000000Z"
    window = store.list(
        "t1", start=BASE_TIME + timedelta(minutes=15), end=BASE_TIME + timedelta(minutes=45)
    )
    assert [item.id for item in window.items] == [trace.id]
