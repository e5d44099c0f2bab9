"""Append-only annotations on stored traces.

The annotation log is authoritative. ``project_annotations`` is a derived
"current value per key" view: for each key the entry with the highest id
(i.e. the last one appended) wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from agent_governance.constants import DEFAULT_LOOKUP_LIMIT
from agent_governance.errors import NotFoundError
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    as_non_empty_str,
    as_optional_str,
    iso8601z,
    row_int,
    row_optional_text,
    row_text,
    utc_now,
)
from agent_governance.persistence.state_db import StateDB


class StandardAnnotationKey(StrEnum):
    BASELINE = "baseline"
    INCIDENT = "incident"
    REGRESSION = "regression"
    APPROVED = "approved"
    REVIEWED = "reviewed"
    NOTE = "note"
    TAG = "tag"


@dataclass(frozen=True, slots=True)
class TraceAnnotation:
    id: int
    trace_id: str
    key: str
    value: str
    author: str | None
    created_at: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "trace_id": self.trace_id,
            "key": self.key,
            "value": self.value,
            "author": self.author,
            "created_at": self.created_at,
        }


def project_annotations(entries: Iterable[TraceAnnotation]) -> dict[str, str]:
    """Current value per key; the highest id wins regardless of input order."""

    latest: dict[str, TraceAnnotation] = {}
    for entry in entries:
        current = latest.get(entry.key)
        if current is None or entry.id > current.id:
            latest[entry.key] = entry
    return {key: latest[key].value for key in sorted(latest)}


class TraceAnnotations(BaseRepo):
    def __init__(self, db: StateDB, *, logger: Any | None = None) -> None:
        super().__init__(db)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def annotate(
        self,
        trace_id: str,
        key: str,
        value: str,
        *,
        author: str | None = None,
        tenant_id: str | None = None,
    ) -> TraceAnnotation:
        trace = as_non_empty_str(trace_id, "trace_id")
        annotation_key = as_non_empty_str(key, "key")
        annotation_value = as_non_empty_str(value, "value")
        annotation_author = as_optional_str(author, "author")
        created_at = iso8601z(utc_now())

        with self._db.transaction() as conn:
            if tenant_id is None:
                exists = self._db.query_one(
                    "SELECT 1 AS found FROM traces WHERE id = ?", (trace,), conn=conn
                )
            else:
                exists = self._db.query_one(
                    "SELECT 1 AS found FROM traces WHERE id = ? AND tenant_id = ?",
                    (trace, as_non_empty_str(tenant_id, "tenant_id")),
                    conn=conn,
                )
            if exists is None:
                raise NotFoundError("trace", trace)
            annotation_id = self._db.insert(
                """
                INSERT INTO trace_annotations (trace_id, key, value, author, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (trace, annotation_key, annotation_value, annotation_author, created_at),
                conn=conn,
            )

        self._logger.info(
            "trace_annotated", trace_id=trace, key=annotation_key, author=annotation_author
        )
        return TraceAnnotation(
            id=annotation_id,
            trace_id=trace,
            key=annotation_key,
            value=annotation_value,
            author=annotation_author,
            created_at=created_at,
        )

    def get_for_trace(self, trace_id: str) -> list[TraceAnnotation]:
        rows = self._db.query_all(
            "SELECT * FROM trace_annotations WHERE trace_id = ? ORDER BY id ASC",
            (as_non_empty_str(trace_id, "trace_id"),),
        )
        return [_annotation_from_row(row) for row in rows]

    def get_by_key(self, key: str, *, limit: int = DEFAULT_LOOKUP_LIMIT) -> list[TraceAnnotation]:
        self._validate_page(limit, 0)
        rows = self._db.query_all(
            "SELECT * FROM trace_annotations WHERE key = ? ORDER BY id DESC LIMIT ?",
            (as_non_empty_str(key, "key"), limit),
        )
        return [_annotation_from_row(row) for row in rows]

    def find_traces(
        self, key: str, value: str | None = None, *, limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> list[str]:
        """Distinct trace ids carrying ``key`` (and ``value`` when given), most recent first."""

        self._validate_page(limit, 0)
        annotation_key = as_non_empty_str(key, "key")
        if value is None:
            rows = self._db.query_all(
                """
                SELECT trace_id, MAX(id) AS last_id FROM trace_annotations
                WHERE key = ? GROUP BY trace_id ORDER BY last_id DESC LIMIT ?
                """,
                (annotation_key, limit),
            )
        else:
            rows = self._db.query_all(
                """
                SELECT trace_id, MAX(id) AS last_id FROM trace_annotations
                WHERE key = ? AND value = ? GROUP BY trace_id ORDER BY last_id DESC LIMIT ?
                """,
                (annotation_key, value, limit),
            )
        return [row_text(row, "trace_id", "trace_annotations.trace_id") for row in rows]

    def has_annotation(self, trace_id: str, key: str, value: str | None = None) -> bool:
        trace = as_non_empty_str(trace_id, "trace_id")
        annotation_key = as_non_empty_str(key, "key")
        if value is None:
            row = self._db.query_one(
                "SELECT 1 AS found FROM trace_annotations WHERE trace_id = ? AND key = ? LIMIT 1",
                (trace, annotation_key),
            )
        else:
            row = self._db.query_one(
                """
                SELECT 1 AS found FROM trace_annotations
                WHERE trace_id = ? AND key = ? AND value = ? LIMIT 1
                """,
                (trace, annotation_key, value),
            )
        return row is not None

    def current_values(self, trace_id: str) -> dict[str, str]:
        return project_annotations(self.get_for_trace(trace_id))

    def get_stats(self) -> dict[str, int]:
        """Annotation counts by key, most used first."""

        rows = self._db.query_all(
            "SELECT key, COUNT(*) AS count FROM trace_annotations GROUP BY key ORDER BY count DESC, key ASC"
        )
        return {row_text(row, "key", "trace_annotations.key"): row_int(row, "count") for row in rows}


def _annotation_from_row(row: Mapping[str, Any]) -> TraceAnnotation:
    return TraceAnnotation(
        id=row_int(row, "id"),
        trace_id=row_text(row, "trace_id", "trace_annotations.trace_id"),
        key=row_text(row, "key", "trace_annotations.key"),
        value=row_text(row, "value", "trace_annotations.value"),
        author=row_optional_text(row, "author"),
        created_at=row_text(row, "created_at", "trace_annotations.created_at"),
    )


__all__ = [
    "StandardAnnotationKey",
    "TraceAnnotation",
    "TraceAnnotations",
    "project_annotations",
]
