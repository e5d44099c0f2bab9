"""
agent-governance — trace store

File: src/agent_governance/tracing/store.py

Purpose
- Persist finalized agent traces and serve tenant-scoped reads.

Functional requirements
- ``finalize`` writes the complete record in one INSERT; readers never see a
  partial trace. A duplicate id raises ``ConflictError``.
- Every listing and secondary lookup is scoped by tenant at the query itself.
- ``get_for_tenant`` raises the same ``NotFoundError`` for absent ids and for
  ids owned by another tenant.
- Finalized columns are immutable (DB trigger); only ``labels_json`` changes.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

import structlog

from agent_governance.constants import DEFAULT_LOOKUP_LIMIT, DEFAULT_PAGE_SIZE
from agent_governance.domain.enums import AuditEventType, TraceStatus
from agent_governance.errors import NotFoundError, ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.governance.pricing import round_usd
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    Page,
    as_mapping,
    as_non_empty_str,
    iso8601z,
    load_json_object,
    row_float,
    row_int,
    row_optional_text,
    row_text,
    utc_now,
)
from agent_governance.persistence.state_db import SQLValue, StateDB, canonical_json
from agent_governance.tracing.redaction import Redactor
from agent_governance.tracing.trace import AgentTrace

# Columns stored alongside the payload; labels are mutable and live only in labels_json.
_PAYLOAD_EXCLUDED_KEYS: Final[frozenset[str]] = frozenset({"labels", "status"})


@dataclass(frozen=True, slots=True)
class TraceStats:
    total_traces: int
    total_tokens: int
    total_cost: float
    average_duration_ms: float
    error_rate: float

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total_traces": self.total_traces,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "average_duration_ms": self.average_duration_ms,
            "error_rate": self.error_rate,
        }


@dataclass(frozen=True, slots=True)
class SkillUsage:
    skill_name: str
    usage_count: int
    last_used: str | None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "skill_name": self.skill_name,
            "usage_count": self.usage_count,
            "last_used": self.last_used,
        }


class TraceStore(BaseRepo):
    """SQLite-backed trace persistence with tenant-scoped access."""

    def __init__(
        self,
        db: StateDB,
        audit: AuditLog,
        *,
        redactor: Redactor | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(db)
        self._audit = audit
        self._redactor = redactor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def finalize(self, trace: AgentTrace) -> AgentTrace:
        """Persist a completed trace and record its execution outcome.

        With a redactor configured, message text, tool payloads and the prompt
        are redacted before the write and the redacted trace is returned.
        """

        if not isinstance(trace, AgentTrace):
            raise ValidationError("trace: expected AgentTrace")
        if self._redactor is not None:
            trace = self._redactor.redact_trace(trace)
        labels = validate_labels(trace.labels)
        payload = {
            key: value for key, value in trace.to_dict().items() if key not in _PAYLOAD_EXCLUDED_KEYS
        }
        event = (
            AuditEventType.AGENT_EXECUTION_FAILED
            if trace.status is TraceStatus.ERROR
            else AuditEventType.AGENT_EXECUTION_COMPLETED
        )

        with self._conflict_on_duplicate(f"trace already finalized: {trace.id}"):
            with self._db.transaction() as conn:
                self._db.insert(
                    """
                    INSERT INTO traces (
                        id, tenant_id, workspace_id, agent_role, started_at, completed_at,
                        duration_ms, status, model, provider, workspace_hash, input_tokens,
                        output_tokens, total_cost, skill_versions_json, labels_json, task_id,
                        document_id, message_id, payload_json, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        trace.id,
                        trace.tenant_id,
                        trace.workspace_id,
                        trace.agent_role,
                        trace.started_at,
                        trace.completed_at,
                        trace.duration_ms,
                        trace.status.value,
                        trace.model,
                        trace.provider,
                        trace.workspace_hash,
                        trace.usage.input_tokens,
                        trace.usage.output_tokens,
                        round_usd(trace.usage.total_cost),
                        canonical_json(trace.skill_versions),
                        canonical_json(labels),
                        trace.task_id,
                        trace.document_id,
                        trace.message_id,
                        canonical_json(payload),
                        iso8601z(utc_now()),
                    ),
                    conn=conn,
                )
                self._audit.log(
                    event,
                    tenant_id=trace.tenant_id,
                    workspace_id=trace.workspace_id,
                    trace_id=trace.id,
                    details=AuditDetails(
                        action="finalize",
                        target_id=trace.id,
                        data={
                            "model": trace.model,
                            "provider": trace.provider,
                            "duration_ms": trace.duration_ms,
                            "total_cost": round_usd(trace.usage.total_cost),
                            "error": trace.error,
                        },
                    ),
                    conn=conn,
                )

        self._logger.info(
            "trace_finalized",
            trace_id=trace.id,
            tenant_id=trace.tenant_id,
            workspace_id=trace.workspace_id,
            status=trace.status.value,
            total_cost=trace.usage.total_cost,
        )
        return trace

    def get(self, trace_id: str) -> AgentTrace | None:
        row = self._db.query_one(
            "SELECT * FROM traces WHERE id = ?", (as_non_empty_str(trace_id, "trace_id"),)
        )
        return None if row is None else _trace_from_row(row)

    def get_for_tenant(self, tenant_id: str, trace_id: str) -> AgentTrace:
        row = self._db.query_one(
            "SELECT * FROM traces WHERE id = ? AND tenant_id = ?",
            (as_non_empty_str(trace_id, "trace_id"), as_non_empty_str(tenant_id, "tenant_id")),
        )
        if row is None:
            raise NotFoundError("trace", trace_id)
        return _trace_from_row(row)

    def list(
        self,
        tenant_id: str,
        *,
        workspace_id: str | None = None,
        agent_role: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[AgentTrace]:
        """List a tenant's traces newest first."""

        self._validate_page(limit, offset)
        clauses = ["tenant_id = ?"]
        params: list[SQLValue] = [as_non_empty_str(tenant_id, "tenant_id")]
        if workspace_id is not None:
            clauses.append("workspace_id = ?")
            params.append(workspace_id)
        if agent_role is not None:
            clauses.append("agent_role = ?")
            params.append(agent_role)
        _add_range(clauses, params, start, end)

        where = " AND ".join(clauses)
        total_row = self._db.query_one(
            f"SELECT COUNT(*) AS total FROM traces WHERE {where}", tuple(params)
        )
        rows = self._db.query_all(
            f"SELECT * FROM traces WHERE {where} ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return Page(
            items=tuple(_trace_from_row(row) for row in rows),
            total=0 if total_row is None else row_int(total_row, "total"),
            limit=limit,
            offset=offset,
        )

    def get_replay_context(self, trace_id: str) -> dict[str, JSONValue] | None:
        trace = self.get(trace_id)
        return None if trace is None else trace.replay_context()

    def set_labels(
        self, trace_id: str, labels: Mapping[str, str], *, tenant_id: str | None = None
    ) -> dict[str, str]:
        """Replace the label map of a trace."""

        parsed = validate_labels(labels)
        with self._db.transaction() as conn:
            self._require_row(trace_id, tenant_id, conn=conn)
            self._write_labels(trace_id, parsed, conn=conn)
        self._logger.debug("trace_labels_set", trace_id=trace_id, labels=sorted(parsed))
        return parsed

    def set_label(
        self, trace_id: str, key: str, value: str, *, tenant_id: str | None = None
    ) -> dict[str, str]:
        with self._db.transaction() as conn:
            labels = self._labels_for_update(trace_id, tenant_id, conn=conn)
            labels[key] = value
            labels = validate_labels(labels)
            self._write_labels(trace_id, labels, conn=conn)
        return labels

    def remove_label(
        self, trace_id: str, key: str, *, tenant_id: str | None = None
    ) -> dict[str, str]:
        with self._db.transaction() as conn:
            labels = self._labels_for_update(trace_id, tenant_id, conn=conn)
            labels.pop(key, None)
            self._write_labels(trace_id, labels, conn=conn)
        return labels

    def get_labels(self, trace_id: str) -> dict[str, str] | None:
        row = self._db.query_one(
            "SELECT labels_json FROM traces WHERE id = ?", (as_non_empty_str(trace_id, "trace_id"),)
        )
        if row is None:
            return None
        return _labels_from_row(row)

    def find_by_label(
        self,
        tenant_id: str,
        key: str,
        value: str | None = None,
        *,
        limit: int = DEFAULT_LOOKUP_LIMIT,
    ) -> list[AgentTrace]:
        self._validate_page(limit, 0)
        label_key = as_non_empty_str(key, "key")
        if value is None:
            condition = "EXISTS (SELECT 1 FROM json_each(traces.labels_json) AS l WHERE l.key = ?)"
            params: tuple[SQLValue, ...] = (label_key,)
        else:
            condition = (
                "EXISTS (SELECT 1 FROM json_each(traces.labels_json) AS l "
                "WHERE l.key = ? AND l.value = ?)"
            )
            params = (label_key, value)
        rows = self._db.query_all(
            f"""
            SELECT * FROM traces WHERE tenant_id = ? AND {condition}
            ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (as_non_empty_str(tenant_id, "tenant_id"), *params, limit),
        )
        return [_trace_from_row(row) for row in rows]

    def find_by_task(
        self, tenant_id: str, task_id: str, *, limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> list[AgentTrace]:
        return self._find_linked(tenant_id, "task_id", task_id, limit)

    def find_by_document(
        self, tenant_id: str, document_id: str, *, limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> list[AgentTrace]:
        return self._find_linked(tenant_id, "document_id", document_id, limit)

    def find_by_message(
        self, tenant_id: str, message_id: str, *, limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> list[AgentTrace]:
        return self._find_linked(tenant_id, "message_id", message_id, limit)

    def delete(self, trace_id: str) -> bool:
        deleted = self._db.execute(
            "DELETE FROM traces WHERE id = ?", (as_non_empty_str(trace_id, "trace_id"),)
        )
        return deleted > 0

    def delete_older_than(
        self,
        tenant_id: str,
        cutoff: datetime,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Delete the tenant's traces that started strictly before ``cutoff``."""

        return self._db.execute(
            "DELETE FROM traces WHERE tenant_id = ? AND started_at < ?",
            (as_non_empty_str(tenant_id, "tenant_id"), iso8601z(cutoff)),
            conn=conn,
        )

    def count_older_than(
        self,
        tenant_id: str,
        cutoff: datetime,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        row = self._db.query_one(
            "SELECT COUNT(*) AS total FROM traces WHERE tenant_id = ? AND started_at < ?",
            (as_non_empty_str(tenant_id, "tenant_id"), iso8601z(cutoff)),
            conn=conn,
        )
        return 0 if row is None else row_int(row, "total")

    def oldest_started_at(
        self, tenant_id: str, *, conn: sqlite3.Connection | None = None
    ) -> str | None:
        row = self._db.query_one(
            "SELECT MIN(started_at) AS oldest FROM traces WHERE tenant_id = ?",
            (as_non_empty_str(tenant_id, "tenant_id"),),
            conn=conn,
        )
        return None if row is None else row_optional_text(row, "oldest")

    def get_stats(
        self,
        tenant_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TraceStats:
        clauses = ["tenant_id = ?"]
        params: list[SQLValue] = [as_non_empty_str(tenant_id, "tenant_id")]
        _add_range(clauses, params, start, end)
        row = self._db.query_one(
            f"""
            SELECT
                COUNT(*) AS total_traces,
                COALESCE(SUM(input_tokens + output_tokens), 0) AS total_tokens,
                COALESCE(SUM(total_cost), 0) AS total_cost,
                COALESCE(AVG(duration_ms), 0) AS average_duration_ms,
                COALESCE(SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END), 0) AS error_count
            FROM traces WHERE {' AND '.join(clauses)}
            """,
            tuple(params),
        )
        if row is None:
            return TraceStats(0, 0, 0.0, 0.0, 0.0)
        total = row_int(row, "total_traces")
        return TraceStats(
            total_traces=total,
            total_tokens=row_int(row, "total_tokens"),
            total_cost=round_usd(row_float(row, "total_cost")),
            average_duration_ms=row_float(row, "average_duration_ms"),
            error_rate=row_int(row, "error_count") / total if total > 0 else 0.0,
        )

    def skill_usage(self, tenant_id: str | None = None) -> dict[str, SkillUsage]:
        """Per-skill invocation counts and last-use time across stored traces."""

        where = "" if tenant_id is None else "WHERE traces.tenant_id = ?"
        params: tuple[SQLValue, ...] = () if tenant_id is None else (tenant_id,)
        rows = self._db.query_all(
            f"""
            SELECT s.key AS skill_name, COUNT(*) AS usage_count, MAX(traces.started_at) AS last_used
            FROM traces, json_each(traces.skill_versions_json) AS s
            {where}
            GROUP BY s.key ORDER BY s.key
            """,
            params,
        )
        usage: dict[str, SkillUsage] = {}
        for row in rows:
            name = row_text(row, "skill_name", "traces.skill_versions_json")
            usage[name] = SkillUsage(
                skill_name=name,
                usage_count=row_int(row, "usage_count"),
                last_used=row_optional_text(row, "last_used"),
            )
        return usage

    def _find_linked(self, tenant_id: str, column: str, value: str, limit: int) -> list[AgentTrace]:
        self._validate_page(limit, 0)
        rows = self._db.query_all(
            f"""
            SELECT * FROM traces WHERE tenant_id = ? AND {column} = ?
            ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (
                as_non_empty_str(tenant_id, "tenant_id"),
                as_non_empty_str(value, column),
                limit,
            ),
        )
        return [_trace_from_row(row) for row in rows]

    def _require_row(
        self, trace_id: str, tenant_id: str | None, *, conn: sqlite3.Connection
    ) -> dict[str, Any]:
        trace = as_non_empty_str(trace_id, "trace_id")
        if tenant_id is None:
            row = self._db.query_one(
                "SELECT id, labels_json FROM traces WHERE id = ?", (trace,), conn=conn
            )
        else:
            row = self._db.query_one(
                "SELECT id, labels_json FROM traces WHERE id = ? AND tenant_id = ?",
                (trace, as_non_empty_str(tenant_id, "tenant_id")),
                conn=conn,
            )
        if row is None:
            raise NotFoundError("trace", trace)
        return row

    def _labels_for_update(
        self, trace_id: str, tenant_id: str | None, *, conn: sqlite3.Connection
    ) -> dict[str, str]:
        return _labels_from_row(self._require_row(trace_id, tenant_id, conn=conn))

    def _write_labels(
        self, trace_id: str, labels: Mapping[str, str], *, conn: sqlite3.Connection
    ) -> None:
        self._db.execute(
            "UPDATE traces SET labels_json = ? WHERE id = ?",
            (canonical_json(dict(labels)), trace_id),
            conn=conn,
        )


def validate_labels(labels: Mapping[str, str]) -> dict[str, str]:
    parsed = as_mapping(labels, "labels")
    out: dict[str, str] = {}
    for key, value in parsed.items():
        label_key = as_non_empty_str(key, "labels key")
        if not isinstance(value, str):
            raise ValidationError(f"labels.{label_key}: expected string")
        out[label_key] = value
    return out


def _add_range(
    clauses: list[str], params: list[SQLValue], start: datetime | None, end: datetime | None
) -> None:
    if start is not None:
        clauses.append("started_at >= ?")
        params.append(iso8601z(start))
    if end is not None:
        clauses.append("started_at <= ?")
        params.append(iso8601z(end))


def _labels_from_row(row: Mapping[str, Any]) -> dict[str, str]:
    loaded = load_json_object(row.get("labels_json"), "traces.labels_json")
    return {key: value for key, value in loaded.items() if isinstance(value, str)}


def _trace_from_row(row: Mapping[str, Any]) -> AgentTrace:
    payload = load_json_object(row.get("payload_json"), "traces.payload_json")
    payload["labels"] = _labels_from_row(row)
    return AgentTrace.from_dict(payload)


__all__ = [
    "SkillUsage",
    "TraceStats",
    "TraceStore",
    "validate_labels",
]
