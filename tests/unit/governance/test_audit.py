"""Append-only audit log: entries, filters, pagination and stats."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.persistence.state_db import StateDB


def test_log_appends_one_structured_entry(audit: AuditLog) -> None:
    entry = audit.log(
        AuditEventType.SKILL_PUBLISHED,
        tenant_id="system",
        actor="alice",
        details=AuditDetails(action="publish", target_id="summarizer@1.0.0", data={"state": "draft"}),
    )

    page = audit.query("system")
    assert page.total == 1
    (stored,) = page.items
    assert stored == entry
    assert stored.id.startswith("aud-")
    assert stored.details.to_dict() == {
        "schema_version": 1,
        "action": "publish",
        "target_id": "summarizer@1.0.0",
        "reason": None,
        "data": {"state": "draft"},
    }


def test_loose_mapping_details_keep_unknown_keys_in_data(audit: AuditLog) -> None:
    entry = audit.log(
        "config_change",
        tenant_id="t1",
        details={"action": "set", "key": "risk.high_risk_threshold", "value": 60},
    )
    assert entry.details.action == "set"
    assert entry.details.data == {"key": "risk.high_risk_threshold", "value": 60}


def test_unknown_event_type_rejected_before_write(audit: AuditLog) -> None:
    with pytest.raises(ValidationError, match="unknown audit event type"):
        audit.log("made_up_event", tenant_id="t1")
    assert audit.query("t1").total == 0


def test_query_filters_are_tenant_scoped(audit: AuditLog) -> None:
    audit.log(AuditEventType.WORKSPACE_CHANGE, tenant_id="t1", workspace_id="ws-1", actor="alice")
    audit.log(AuditEventType.BUDGET_UPDATED, tenant_id="t1", actor="bob")
    audit.log(AuditEventType.WORKSPACE_CHANGE, tenant_id="t2", workspace_id="ws-1", actor="alice")
    audit.log(AuditEventType.TOOL_PERMISSION_DENIED, tenant_id="t1", trace_id="trc-1")

    assert audit.query("t1").total == 3
    assert [e.actor for e in audit.query("t1", workspace_id="ws-1")] == ["alice"]
    assert audit.query("t1", actor="bob").items[0].event_type is AuditEventType.BUDGET_UPDATED
    assert audit.query("t1", trace_id="trc-1").total == 1
    assert (
        audit.query(
            "t1",
            event_types=[AuditEventType.WORKSPACE_CHANGE, "tool_permission_denied"],
        ).total
        == 2
    )
    assert [entry.tenant_id for entry in audit.query("t2")] == ["t2"]


def test_query_is_newest_first_with_pagination(audit: AuditLog) -> None:
    created = [
        audit.log(AuditEventType.CONFIG_CHANGE, tenant_id="t1", details={"action": str(i)})
        for i in range(5)
    ]

    first = audit.query("t1", limit=2)
    second = audit.query("t1", limit=2, offset=2)
    last = audit.query("t1", limit=2, offset=4)

    assert [e.id for e in first] == [created[4].id, created[3].id]
    assert [e.id for e in second] == [created[2].id, created[1].id]
    assert first.has_more and second.has_more and not last.has_more
    assert first.total == 5


def test_query_date_range(audit: AuditLog) -> None:
    audit.log(AuditEventType.CONFIG_CHANGE, tenant_id="t1")
    now = datetime.now(UTC)
    assert audit.query("t1", start=now - timedelta(hours=1)).total == 1
    assert audit.query("t1", end=now - timedelta(hours=1)).total == 0


@pytest.mark.parametrize(("limit", "offset"), [(0, 0), (1_001, 0), (10, -1)])
def test_query_rejects_bad_pagination(audit: AuditLog, limit: int, offset: int) -> None:
    with pytest.raises(ValidationError):
        audit.query("t1", limit=limit, offset=offset)


def test_stats_count_by_type(audit: AuditLog) -> None:
    audit.log(AuditEventType.BUDGET_WARNING, tenant_id="t1")
    audit.log(AuditEventType.BUDGET_WARNING, tenant_id="t1")
    audit.log(AuditEventType.BUDGET_EXCEEDED, tenant_id="t1")

    stats = audit.get_stats("t1")
    assert stats.total == 3
    assert stats.by_type == {"budget_exceeded": 1, "budget_warning": 2}
    assert stats.oldest is not None and stats.newest is not None
    assert stats.oldest <= stats.newest
    assert audit.get_stats("empty").to_dict() == {
        "total": 0,
        "by_type": {},
        "oldest": None,
        "newest": None,
    }


def test_entries_written_inside_rolled_back_transaction_disappear(db: StateDB, audit: AuditLog) -> None:
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            audit.log(AuditEventType.CONFIG_CHANGE, tenant_id="t1", conn=conn)
            raise RuntimeError("mutation failed")
    assert audit.query("t1").total == 0


def test_stored_entries_cannot_be_rewritten(db: StateDB, audit: AuditLog) -> None:
    entry = audit.log(AuditEventType.CONFIG_CHANGE, tenant_id="t1")
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("DELETE FROM audit_log WHERE id = ?", (entry.id,))
    assert audit.get_by_trace("trc-none") == []
