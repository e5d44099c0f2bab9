"""
agent-governance — audit log

File: src/agent_governance/governance/audit.py

Purpose
- Append-only ledger of governance events, consumed by every mutating component.

Functional requirements
- ``log`` appends exactly one entry; when given ``conn`` it participates in the
  caller's transaction so the entry commits (or rolls back) with the mutation.
- Entries are never updated or deleted; DB triggers reject both.
- Details are a versioned structured payload with an open ``data`` bag.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final

import structlog

from agent_governance.constants import AUDIT_DETAILS_SCHEMA_VERSION, DEFAULT_LOOKUP_LIMIT
from agent_governance.domain.enums import AuditEventType
from agent_governance.domain.ids import generate_audit_id
from agent_governance.errors import ValidationError
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    Page,
    as_json_object,
    as_non_empty_str,
    as_optional_str,
    iso8601z,
    load_json_object,
    row_int,
    row_optional_text,
    row_text,
    sql_placeholders,
    utc_now,
)
from agent_governance.persistence.state_db import SQLValue, StateDB, canonical_json

_DETAIL_FIELDS: Final[frozenset[str]] = frozenset(
    {"schema_version", "action", "target_id", "reason", "data"}
)


@dataclass(frozen=True, slots=True)
class AuditDetails:
    """Structured, versioned audit payload.

    ``action``, ``target_id`` and ``reason`` cover the common shape of
    governance events; anything event-specific goes in ``data``.
    """

    action: str | None = None
    target_id: str | None = None
    reason: str | None = None
    data: dict[str, JSONValue] = field(default_factory=dict)
    schema_version: int = AUDIT_DETAILS_SCHEMA_VERSION

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> AuditDetails:
        """Build details from a loose mapping; unknown keys land in ``data``."""

        data: dict[str, object] = {}
        raw_data = payload.get("data")
        if isinstance(raw_data, Mapping):
            data.update(raw_data)
        for key, value in payload.items():
            if key not in _DETAIL_FIELDS:
                data[key] = value
        schema_version = payload.get("schema_version", AUDIT_DETAILS_SCHEMA_VERSION)
        if isinstance(schema_version, bool) or not isinstance(schema_version, int):
            raise ValidationError("AuditDetails.schema_version: expected integer")
        return cls(
            action=_optional_text(payload.get("action"), "AuditDetails.action"),
            target_id=_optional_text(payload.get("target_id"), "AuditDetails.target_id"),
            reason=_optional_text(payload.get("reason"), "AuditDetails.reason"),
            data=as_json_object(data, "AuditDetails.data"),
            schema_version=schema_version,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": self.schema_version,
            "action": self.action,
            "target_id": self.target_id,
            "reason": self.reason,
            "data": self.data,
        }


@dataclass(frozen=True, slots=True)
class AuditEntry:
    id: str
    created_at: str
    event_type: AuditEventType
    tenant_id: str
    workspace_id: str | None
    trace_id: str | None
    actor: str | None
    details: AuditDetails

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "event_type": self.event_type.value,
            "tenant_id": self.tenant_id,
            "workspace_id": self.workspace_id,
            "trace_id": self.trace_id,
            "actor": self.actor,
            "details": self.details.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class AuditStats:
    total: int
    by_type: dict[str, int]
    oldest: str | None
    newest: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "oldest": self.oldest,
            "newest": self.newest,
        }


class AuditLog(BaseRepo):
    """Append-only audit ledger backed by the ``audit_log`` table."""

    def __init__(self, db: StateDB, *, logger: Any | None = None) -> None:
        super().__init__(db)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def log(
        self,
        event_type: AuditEventType | str,
        *,
        tenant_id: str,
        workspace_id: str | None = None,
        trace_id: str | None = None,
        actor: str | None = None,
        details: AuditDetails | Mapping[str, object] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> AuditEntry:
        parsed_type = parse_event_type(event_type)
        entry = AuditEntry(
            id=generate_audit_id(),
            created_at=iso8601z(utc_now()),
            event_type=parsed_type,
            tenant_id=as_non_empty_str(tenant_id, "AuditEntry.tenant_id"),
            workspace_id=as_optional_str(workspace_id, "AuditEntry.workspace_id"),
            trace_id=as_optional_str(trace_id, "AuditEntry.trace_id"),
            actor=as_optional_str(actor, "AuditEntry.actor"),
            details=_coerce_details(details),
        )
        self._db.insert(
            """
            INSERT INTO audit_log (
                id, created_at, event_type, tenant_id, workspace_id, trace_id, actor, details_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.created_at,
                entry.event_type.value,
                entry.tenant_id,
                entry.workspace_id,
                entry.trace_id,
                entry.actor,
                canonical_json(entry.details.to_dict()),
            ),
            conn=conn,
        )
        self._logger.debug(
            "audit_entry_appended",
            audit_id=entry.id,
            event_type=entry.event_type.value,
            tenant_id=entry.tenant_id,
            action=entry.details.action,
        )
        return entry

    def query(
        self,
        tenant_id: str,
        *,
        workspace_id: str | None = None,
        trace_id: str | None = None,
        actor: str | None = None,
        event_type: AuditEventType | str | None = None,
        event_types: Iterable[AuditEventType | str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_LOOKUP_LIMIT,
        offset: int = 0,
    ) -> Page[AuditEntry]:
        """Return entries for ``tenant_id`` newest first."""

        self._validate_page(limit, offset)
        clauses = ["tenant_id = ?"]
        params: list[SQLValue] = [as_non_empty_str(tenant_id, "tenant_id")]
        if workspace_id is not None:
            clauses.append("workspace_id = ?")
            params.append(workspace_id)
        if trace_id is not None:
            clauses.append("trace_id = ?")
            params.append(trace_id)
        if actor is not None:
            clauses.append("actor = ?")
            params.append(actor)

        types: list[str] = []
        if event_type is not None:
            types.append(parse_event_type(event_type).value)
        if event_types is not None:
            types.extend(parse_event_type(item).value for item in event_types)
        if types:
            unique_types = sorted(set(types))
            clauses.append(f"event_type IN ({sql_placeholders(unique_types)})")
            params.extend(unique_types)
        if start is not None:
            clauses.append("created_at >= ?")
            params.append(iso8601z(start))
        if end is not None:
            clauses.append("created_at <= ?")
            params.append(iso8601z(end))

        where = " AND ".join(clauses)
        total_row = self._db.query_one(
            f"SELECT COUNT(*) AS total FROM audit_log WHERE {where}", tuple(params)
        )
        rows = self._db.query_all(
            f"""
            SELECT * FROM audit_log WHERE {where}
            ORDER BY created_at DESC, seq DESC
            LIMIT ? OFFSET ?
            """,
            (*params, limit, offset),
        )
        return Page(
            items=tuple(_entry_from_row(row) for row in rows),
            total=0 if total_row is None else row_int(total_row, "total"),
            limit=limit,
            offset=offset,
        )

    def get_by_trace(self, trace_id: str) -> list[AuditEntry]:
        rows = self._db.query_all(
            "SELECT * FROM audit_log WHERE trace_id = ? ORDER BY seq ASC",
            (as_non_empty_str(trace_id, "trace_id"),),
        )
        return [_entry_from_row(row) for row in rows]

    def get_stats(self, tenant_id: str) -> AuditStats:
        tenant = as_non_empty_str(tenant_id, "tenant_id")
        summary = self._db.query_one(
            """
            SELECT COUNT(*) AS total, MIN(created_at) AS oldest, MAX(created_at) AS newest
            FROM audit_log WHERE tenant_id = ?
            """,
            (tenant,),
        )
        rows = self._db.query_all(
            """
            SELECT event_type, COUNT(*) AS count FROM audit_log
            WHERE tenant_id = ? GROUP BY event_type ORDER BY event_type
            """,
            (tenant,),
        )
        return AuditStats(
            total=0 if summary is None else row_int(summary, "total"),
            by_type={row_text(row, "event_type", "audit_log.event_type"): row_int(row, "count") for row in rows},
            oldest=None if summary is None else row_optional_text(summary, "oldest"),
            newest=None if summary is None else row_optional_text(summary, "newest"),
        )


def parse_event_type(value: AuditEventType | str) -> AuditEventType:
    if isinstance(value, AuditEventType):
        return value
    if not isinstance(value, str):
        raise ValidationError("event_type: expected string")
    try:
        return AuditEventType(value)
    except ValueError as exc:
        raise ValidationError(f"event_type: unknown audit event type {value!r}") from exc


def _coerce_details(details: AuditDetails | Mapping[str, object] | None) -> AuditDetails:
    if details is None:
        return AuditDetails()
    if isinstance(details, AuditDetails):
        return details
    if isinstance(details, Mapping):
        return AuditDetails.from_mapping(details)
    raise ValidationError("AuditEntry.details: expected AuditDetails or mapping")


def _optional_text(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{path}: expected string")
    return value


def _entry_from_row(row: Mapping[str, Any]) -> AuditEntry:
    return AuditEntry(
        id=row_text(row, "id", "audit_log.id"),
        created_at=row_text(row, "created_at", "audit_log.created_at"),
        event_type=AuditEventType(row_text(row, "event_type", "audit_log.event_type")),
        tenant_id=row_text(row, "tenant_id", "audit_log.tenant_id"),
        workspace_id=row_optional_text(row, "workspace_id"),
        trace_id=row_optional_text(row, "trace_id"),
        actor=row_optional_text(row, "actor"),
        details=AuditDetails.from_mapping(
            load_json_object(row.get("details_json"), "audit_log.details_json")
        ),
    )


__all__ = [
    "AuditDetails",
    "AuditEntry",
    "AuditLog",
    "AuditStats",
    "parse_event_type",
]
