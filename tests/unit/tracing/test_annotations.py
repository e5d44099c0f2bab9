"""Append-only trace annotations and their latest-value projection."""

from __future__ import annotations

import sqlite3

import pytest

from agent_governance.errors import NotFoundError, ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.tracing.annotations import (
    TraceAnnotation,
    TraceAnnotations,
    project_annotations,
)
from agent_governance.tracing.store import TraceStore

from . import make_trace

_MISSING_TRACE = "trc-01ARZ3NDEKTSV4RRFFQ69G5FAV"


@pytest.fixture
def store(db: StateDB, audit: AuditLog) -> TraceStore:
    return TraceStore(db, audit)


@pytest.fixture
def annotations(db: StateDB) -> TraceAnnotations:
    return TraceAnnotations(db)


def test_later_annotation_supersedes_earlier_value(
    store: TraceStore, annotations: TraceAnnotations
) -> None:
    trace = store.finalize(make_trace())

    first = annotations.annotate(trace.id, "quality", "good", author="alice")
    second = annotations.annotate(trace.id, "quality", "bad", author="bob")
    annotations.annotate(trace.id, "reviewed", "yes")

    assert second.id > first.id
    assert [entry.value for entry in annotations.get_for_trace(trace.id)] == ["good", "bad", "yes"]
    assert annotations.current_values(trace.id) == {"quality": "bad", "reviewed": "yes"}


def test_projection_ignores_input_order() -> None:
    newer = TraceAnnotation(id=5, trace_id="t", key="k", value="new", author=None, created_at="x")
    older = TraceAnnotation(id=2, trace_id="t", key="k", value="old", author=None, created_at="x")
    assert project_annotations([newer, older]) == {"k": "new"}
    assert project_annotations([]) == {}


def test_annotations_cannot_be_rewritten(
    store: TraceStore, annotations: TraceAnnotations, db: StateDB
) -> None:
    trace = store.finalize(make_trace())
    entry = annotations.annotate(trace.id, "quality", "good")

    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("UPDATE trace_annotations SET value = 'bad' WHERE id = ?", (entry.id,))


def test_annotating_missing_or_foreign_trace_is_not_found(
    store: TraceStore, annotations: TraceAnnotations
) -> None:
    trace = store.finalize(make_trace(tenant_id="A"))

    with pytest.raises(NotFoundError):
        annotations.annotate(_MISSING_TRACE, "quality", "good")
    with pytest.raises(NotFoundError):
        annotations.annotate(trace.id, "quality", "good", tenant_id="B")
    assert annotations.annotate(trace.id, "quality", "good", tenant_id="A").trace_id == trace.id


def test_empty_key_or_value_rejected(store: TraceStore, annotations: TraceAnnotations) -> None:
    trace = store.finalize(make_trace())
    with pytest.raises(ValidationError, match="key"):
        annotations.annotate(trace.id, " ", "x")
    with pytest.raises(ValidationError, match="value"):
        annotations.annotate(trace.id, "k", "")


def test_lookup_helpers(store: TraceStore, annotations: TraceAnnotations) -> None:
    first = store.finalize(make_trace())
    second = store.finalize(make_trace())
    annotations.annotate(first.id, "quality", "good")
    annotations.annotate(second.id, "quality", "bad")
    annotations.annotate(first.id, "flag", "review")

    assert annotations.find_traces("quality") == [second.id, first.id]
    assert annotations.find_traces("quality", "good") == [first.id]
    assert annotations.has_annotation(first.id, "flag")
    assert not annotations.has_annotation(second.id, "flag")
    assert annotations.has_annotation(second.id, "quality", "bad")
    assert [entry.trace_id for entry in annotations.get_by_key("quality")] == [second.id, first.id]
    assert annotations.get_stats() == {"quality": 2, "flag": 1}


def test_deleting_trace_cascades_annotations(
    store: TraceStore, annotations: TraceAnnotations
) -> None:
    trace = store.finalize(make_trace())
    annotations.annotate(trace.id, "quality", "good")
    assert store.delete(trace.id)
    assert annotations.get_for_trace(trace.id) == []
