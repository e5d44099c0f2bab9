"""
agent-governance — unit tests for retention enforcement

File: tests/unit/tracing/test_retention.py

Purpose
- Validate per-tenant retention windows, idempotent purges and sampling.

What this test file should cover
- Tenants without an explicit policy are never purged.
- Purges respect the window, audit once per run, and are idempotent.
- Sampling strategies decide write-time retention deterministically.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta, timezone

import pytest

from agent_governance.domain.enums import AuditEventType, SamplingStrategy, StorageMode
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.tracing.annotations import TraceAnnotations
from agent_governance.tracing.retention import (
    RetentionEngine,
    RetentionPolicy,
    should_retain_trace,
)
from agent_governance.tracing.store import TraceStore

from . import BASE_TIME, make_trace

_NOW = BASE_TIME + timedelta(days=100)


@pytest.fixture
def store(db: StateDB, audit: AuditLog) -> TraceStore:
    return TraceStore(db, audit)


@pytest.fixture
def engine(db: StateDB, audit: AuditLog, store: TraceStore) -> RetentionEngine:
    return RetentionEngine(db, audit, store, clock=lambda: _NOW)


def _seed(store: TraceStore, tenant_id: str, ages_in_days: list[int]) -> list[str]:
    ids = []
    for age in ages_in_days:
        trace = make_trace(tenant_id=tenant_id, started=_NOW - timedelta(days=age))
        store.finalize(trace)
        ids.append(trace.id)
    return ids


def test_tenant_without_policy_is_never_purged(
    engine: RetentionEngine, store: TraceStore
) -> None:
    _seed(store, "t1", [400, 200, 1])

    result = engine.enforce_policy("t1")

    assert result.policy_applied is False
    assert result.deleted == 0
    assert result.cutoff is None
    assert store.list("t1").total == 3
    assert engine.enforce_all() == []


def test_enforce_respects_window_and_is_idempotent(
    engine: RetentionEngine, store: TraceStore, audit: AuditLog, db: StateDB
) -> None:
    old, recent = _seed(store, "t1", [45, 10])
    TraceAnnotations(db).annotate(old, "quality", "good")
    engine.set_policy("t1", retention_days=30, actor="admin")

    first = engine.enforce_policy("t1")
    second = engine.enforce_policy("t1")

    assert first.deleted == 1
    assert first.cutoff == "2026-04-12T12:00:00.000000Z"
    assert first.oldest_remaining == store.get(recent).started_at  # type: ignore[union-attr]
    assert second.deleted == 0
    assert store.get(old) is None
    assert TraceAnnotations(db).get_for_trace(old) == []

    enforced = audit.query(tenant_id="t1", event_type=AuditEventType.RETENTION_ENFORCED)
    assert [entry.details.data["deleted"] for entry in enforced] == [0, 1]


def test_enforce_all_only_touches_tenants_with_policies(
    engine: RetentionEngine, store: TraceStore
) -> None:
    _seed(store, "A", [120, 5])
    _seed(store, "B", [120, 5])
    engine.set_policy("A", retention_days=90)

    results = engine.enforce_all()

    assert [(item.tenant_id, item.deleted) for item in results] == [("A", 1)]
    assert store.list("A").total == 1
    assert store.list("B").total == 2


def test_set_policy_upserts_and_audits(engine: RetentionEngine, audit: AuditLog) -> None:
    engine.set_policy("t1", retention_days=30)
    updated = engine.set_policy(
        "t1",
        retention_days=7,
        sampling_strategy="errors_only",
        storage_mode=StorageMode.FULL,
    )

    assert updated.retention_days == 7
    assert updated.sampling_strategy is SamplingStrategy.ERRORS_ONLY
    assert engine.get_policy("t1") == updated
    assert len(engine.list_policies()) == 1
    changes = audit.query(tenant_id="t1", event_type=AuditEventType.CONFIG_CHANGE)
    assert changes.total == 2
    assert changes.items[0].details.action == "retention_policy_set"


@pytest.mark.parametrize(
    ("kwargs", "match"),
    [
        ({"retention_days": 0}, "retention_days"),
        ({"sampling_strategy": "most"}, "sampling_strategy"),
        ({"storage_mode": "compressed"}, "storage_mode"),
    ],
)
def test_set_policy_rejects_invalid_values(
    engine: RetentionEngine, kwargs: dict[str, object], match: str
) -> None:
    with pytest.raises(ValidationError, match=match):
        engine.set_policy("t1", **kwargs)  # type: ignore[arg-type]


def test_delete_policy_stops_purging(engine: RetentionEngine, store: TraceStore) -> None:
    _seed(store, "t1", [200])
    engine.set_policy("t1", retention_days=30)
    assert engine.delete_policy("t1") is True
    assert engine.delete_policy("t1") is False
    assert engine.get_policy("t1") is None
    assert engine.enforce_policy("t1").deleted == 0


def test_default_policy_describes_unconfigured_tenant(engine: RetentionEngine) -> None:
    policy = engine.get_policy_or_default("t9")
    assert policy == RetentionPolicy(tenant_id="t9")
    assert policy.sampling_strategy is SamplingStrategy.FULL


def test_cleanup_candidates_and_stats(engine: RetentionEngine, store: TraceStore) -> None:
    _seed(store, "A", [60, 61, 1])
    _seed(store, "B", [5])
    engine.set_policy("A", retention_days=30, sampling_strategy="sampled")
    engine.set_policy("B", retention_days=90)

    candidates = engine.tenants_needing_cleanup()
    assert [(c.tenant_id, c.old_trace_count) for c in candidates] == [("A", 2)]

    stats = engine.get_stats()
    assert stats.total_policies == 2
    assert stats.by_strategy["sampled"] == 1
    assert stats.by_strategy["full"] == 1
    assert stats.average_retention_days == 60
    assert stats.tenants_needing_cleanup == 1


def test_sampling_strategies() -> None:
    full = RetentionPolicy(tenant_id="t", sampling_strategy=SamplingStrategy.FULL)
    errors = RetentionPolicy(tenant_id="t", sampling_strategy=SamplingStrategy.ERRORS_ONLY)
    sampled = RetentionPolicy(tenant_id="t", sampling_strategy=SamplingStrategy.SAMPLED)

    assert should_retain_trace(full, has_error=False)
    assert not should_retain_trace(errors, has_error=False)
    assert should_retain_trace(errors, has_error=True)
    assert should_retain_trace(sampled, has_error=True, rng=lambda: 0.99)
    assert should_retain_trace(sampled, has_error=False, sample_rate=0.1, rng=lambda: 0.05)
    assert not should_retain_trace(sampled, has_error=False, sample_rate=0.1, rng=lambda: 0.5)


def test_engine_rejects_bad_construction(
    db: StateDB, audit: AuditLog, store: TraceStore
) -> None:
    with pytest.raises(ValueError, match="default_days"):
        RetentionEngine(db, audit, store, default_days=0)
    with pytest.raises(ValueError, match="sample_rate"):
        RetentionEngine(db, audit, store, sample_rate=1.5)


def test_offset_timestamps_inside_window_survive_purge(
    engine: RetentionEngine, store: TraceStore
) -> None:
    # 22 hours old, written with a -05:00 offset that sorts before the cutoff as raw text.
    local = (_NOW - timedelta(hours=22)).astimezone(timezone(timedelta(hours=-5)))
    trace = replace(make_trace(), started_at=local.isoformat())
    store.finalize(trace)
    engine.set_policy("t1", retention_days=1)

    result = engine.enforce_policy("t1")

    assert result.deleted == 0
    assert store.get(trace.id) is not None
    assert store.list("t1").total == 1
