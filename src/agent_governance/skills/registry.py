"""
agent-governance — skill registry

File: src/agent_governance/skills/registry.py

Purpose
- Versioned, immutable skill manifests with a guarded lifecycle state.

Functional requirements
- ``(name, version)`` is unique; re-publishing raises ``ConflictError`` and the
  stored manifest/checksum are left untouched (a DB trigger also rejects any
  UPDATE touching them).
- Only ``state`` mutates, and ``promote`` only along ``SKILL_TRANSITIONS``.
  The transition check and the write happen in one ``BEGIN IMMEDIATE``
  transaction and the write is conditioned on the observed state.
- Default lookups only see ``active`` skills; "latest" is resolved by numeric
  semantic-version ordering.
- Every mutation appends one audit entry inside the same transaction.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

import structlog

from agent_governance.constants import DEFAULT_LOOKUP_LIMIT, DEFAULT_PAGE_SIZE, SYSTEM_TENANT_ID
from agent_governance.domain.enums import AuditEventType, SkillState
from agent_governance.domain.semver import latest_version, parse_semver, sort_versions
from agent_governance.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from agent_governance.governance.audit import AuditDetails, AuditEntry, AuditLog
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    Page,
    as_non_empty_str,
    iso8601z,
    load_json_object,
    row_optional_text,
    row_text,
    sql_placeholders,
    utc_now,
)
from agent_governance.persistence.state_db import SQLValue, StateDB
from agent_governance.skills.manifest import SkillManifest, coerce_manifest

LATEST: Final[str] = "latest"

SKILL_TRANSITIONS: Final[dict[SkillState, tuple[SkillState, ...]]] = {
    SkillState.DRAFT: (SkillState.TESTED, SkillState.DEPRECATED),
    SkillState.TESTED: (SkillState.APPROVED, SkillState.DRAFT, SkillState.DEPRECATED),
    SkillState.APPROVED: (SkillState.ACTIVE, SkillState.TESTED, SkillState.DEPRECATED),
    SkillState.ACTIVE: (SkillState.DEPRECATED,),
    SkillState.DEPRECATED: (),
}


@dataclass(frozen=True, slots=True)
class SkillRecord:
    name: str
    version: str
    description: str
    manifest: SkillManifest
    instructions: str
    checksum: str
    state: SkillState
    published_at: str
    published_by: str | None
    state_changed_at: str

    @property
    def ref(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def is_executable(self) -> bool:
        return self.state is SkillState.ACTIVE

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "manifest": self.manifest.to_dict(),
            "instructions": self.instructions,
            "checksum": self.checksum,
            "state": self.state.value,
            "published_at": self.published_at,
            "published_by": self.published_by,
            "state_changed_at": self.state_changed_at,
        }


@dataclass(frozen=True, slots=True)
class StateChange:
    name: str
    version: str
    old_state: SkillState
    new_state: SkillState

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "version": self.version,
            "old_state": self.old_state.value,
            "new_state": self.new_state.value,
        }


def parse_skill_state(value: SkillState | str) -> SkillState:
    if isinstance(value, SkillState):
        return value
    try:
        return SkillState(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(state.value for state in SkillState)
        raise ValidationError(f"state: expected one of: {allowed}") from exc


def allowed_transitions(state: SkillState | str) -> tuple[SkillState, ...]:
    return SKILL_TRANSITIONS[parse_skill_state(state)]


def can_transition(current: SkillState | str, target: SkillState | str) -> bool:
    return parse_skill_state(target) in allowed_transitions(current)


class SkillRegistry(BaseRepo):
    """Publish, look up, and move skills through their lifecycle."""

    def __init__(self, db: StateDB, audit: AuditLog, *, logger: Any | None = None) -> None:
        super().__init__(db)
        self._audit = audit
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def publish(
        self,
        manifest: SkillManifest | Mapping[str, object] | str,
        *,
        author: str | None = None,
        initial_state: SkillState | str = SkillState.DRAFT,
    ) -> SkillRecord:
        parsed = coerce_manifest(manifest)
        state = parse_skill_state(initial_state)
        checksum = parsed.checksum
        now = iso8601z(utc_now())
        ref = f"{parsed.name}@{parsed.version}"

        with self._conflict_on_duplicate(f"Skill {ref} already exists. Versions are immutable."):
            with self._db.transaction() as conn:
                self._db.insert(
                    """
                    INSERT INTO skill_registry (
                        name, version, description, manifest_json, instructions, checksum,
                        state, published_at, published_by, state_changed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        parsed.name,
                        parsed.version,
                        parsed.description,
                        parsed.canonical_json(),
                        parsed.instructions,
                        checksum,
                        state.value,
                        now,
                        author,
                        now,
                    ),
                    conn=conn,
                )
                self._audit.log(
                    AuditEventType.SKILL_PUBLISHED,
                    tenant_id=SYSTEM_TENANT_ID,
                    actor=author,
                    details=AuditDetails(
                        action="publish",
                        target_id=ref,
                        data={
                            "name": parsed.name,
                            "version": parsed.version,
                            "checksum": checksum,
                            "initial_state": state.value,
                        },
                    ),
                    conn=conn,
                )
                record = self._get_exact(parsed.name, parsed.version, conn=conn)

        if record is None:
            raise NotFoundError("skill", ref)
        self._logger.info(
            "skill_published",
            name=parsed.name,
            version=parsed.version,
            state=state.value,
            checksum=checksum,
        )
        return record

    def get(
        self,
        name: str,
        version: str | None = LATEST,
        *,
        state: SkillState | str | None = None,
        any_state: bool = False,
    ) -> SkillRecord | None:
        """
        Resolve a skill.

        Without ``state`` or ``any_state`` only ``active`` skills match, so
        execution paths never pick up drafts or deprecated versions.
        """

        skill_name = as_non_empty_str(name, "name")
        states: tuple[SkillState, ...] | None
        if state is not None:
            states = (parse_skill_state(state),)
        elif any_state:
            states = None
        else:
            states = (SkillState.ACTIVE,)

        if version is None or version == LATEST:
            rows = self._rows_for_name(skill_name, states)
            if not rows:
                return None
            best = latest_version(row_text(row, "version", "skill_registry.version") for row in rows)
            chosen = next(row for row in rows if row.get("version") == best)
            return _record_from_row(chosen)

        record = self._get_exact(skill_name, as_non_empty_str(version, "version"))
        if record is None:
            return None
        if states is not None and record.state not in states:
            return None
        return record

    def get_any_state(self, name: str, version: str | None = LATEST) -> SkillRecord | None:
        return self.get(name, version, any_state=True)

    def require(
        self,
        name: str,
        version: str | None = LATEST,
        *,
        state: SkillState | str | None = None,
        any_state: bool = False,
    ) -> SkillRecord:
        record = self.get(name, version, state=state, any_state=any_state)
        if record is None:
            raise NotFoundError("skill", f"{name}@{version or LATEST}")
        return record

    def list_versions(self, name: str) -> list[str]:
        """All published versions of ``name``, newest first by numeric ordering."""

        rows = self._db.query_all(
            "SELECT version FROM skill_registry WHERE name = ?",
            (as_non_empty_str(name, "name"),),
        )
        return sort_versions(
            (row_text(row, "version", "skill_registry.version") for row in rows), descending=True
        )

    def exists(self, name: str, version: str | None = None) -> bool:
        skill_name = as_non_empty_str(name, "name")
        if version is None:
            row = self._db.query_one(
                "SELECT 1 AS found FROM skill_registry WHERE name = ? LIMIT 1", (skill_name,)
            )
        else:
            row = self._db.query_one(
                "SELECT 1 AS found FROM skill_registry WHERE name = ? AND version = ?",
                (skill_name, version),
            )
        return row is not None

    def get_state(self, name: str, version: str) -> SkillState | None:
        row = self._db.query_one(
            "SELECT state FROM skill_registry WHERE name = ? AND version = ?",
            (as_non_empty_str(name, "name"), as_non_empty_str(version, "version")),
        )
        if row is None:
            return None
        return SkillState(row_text(row, "state", "skill_registry.state"))

    def promote(
        self,
        name: str,
        version: str,
        target: SkillState | str,
        *,
        actor: str | None = None,
    ) -> StateChange:
        skill_name = as_non_empty_str(name, "name")
        skill_version = as_non_empty_str(version, "version")
        target_state = parse_skill_state(target)
        ref = f"{skill_name}@{skill_version}"

        with self._db.transaction() as conn:
            current = self._current_state(skill_name, skill_version, conn=conn)
            if current is None:
                raise NotFoundError("skill", ref)
            allowed = SKILL_TRANSITIONS[current]
            if target_state not in allowed:
                raise InvalidTransitionError(
                    subject=f"skill {ref}",
                    current=current.value,
                    attempted=target_state.value,
                    allowed=[state.value for state in allowed],
                )
            self._write_state(skill_name, skill_version, current, target_state, conn=conn)
            self._audit.log(
                AuditEventType.SKILL_STATE_CHANGED,
                tenant_id=SYSTEM_TENANT_ID,
                actor=actor,
                details=AuditDetails(
                    action="promote",
                    target_id=ref,
                    data={
                        "name": skill_name,
                        "version": skill_version,
                        "from_state": current.value,
                        "to_state": target_state.value,
                    },
                ),
                conn=conn,
            )

        self._logger.info(
            "skill_promoted",
            name=skill_name,
            version=skill_version,
            from_state=current.value,
            to_state=target_state.value,
            actor=actor,
        )
        return StateChange(skill_name, skill_version, current, target_state)

    def set_state(
        self,
        name: str,
        version: str,
        state: SkillState | str,
        *,
        actor: str | None = None,
        reason: str | None = None,
    ) -> StateChange:
        """
        Administrative state write that bypasses the transition graph.

        Intended for recovery only; the write is logged at warning level and
        audited with ``data.unchecked = true``.
        """

        skill_name = as_non_empty_str(name, "name")
        skill_version = as_non_empty_str(version, "version")
        target_state = parse_skill_state(state)
        ref = f"{skill_name}@{skill_version}"

        with self._db.transaction() as conn:
            current = self._current_state(skill_name, skill_version, conn=conn)
            if current is None:
                raise NotFoundError("skill", ref)
            self._write_state(skill_name, skill_version, current, target_state, conn=conn)
            self._audit.log(
                AuditEventType.SKILL_STATE_CHANGED,
                tenant_id=SYSTEM_TENANT_ID,
                actor=actor,
                details=AuditDetails(
                    action="set_state",
                    target_id=ref,
                    reason=reason,
                    data={
                        "name": skill_name,
                        "version": skill_version,
                        "from_state": current.value,
                        "to_state": target_state.value,
                        "unchecked": True,
                    },
                ),
                conn=conn,
            )

        self._logger.warning(
            "skill_state_set_unchecked",
            name=skill_name,
            version=skill_version,
            from_state=current.value,
            to_state=target_state.value,
            actor=actor,
            reason=reason,
        )
        return StateChange(skill_name, skill_version, current, target_state)

    def search(
        self,
        query: str = "",
        *,
        include_deprecated: bool = False,
        state: SkillState | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[SkillRecord]:
        """
        Case-insensitive substring search over name, description and instructions.

        Returns the latest matching version per skill name, ordered by name.
        ``total`` counts distinct names. Deprecated versions are excluded unless
        ``include_deprecated`` is set or ``state`` asks for them explicitly.
        """

        self._validate_page(limit, offset)
        if not isinstance(query, str):
            raise ValidationError("query: expected string")

        clauses: list[str] = []
        params: list[SQLValue] = []
        needle = query.strip().lower()
        if needle:
            pattern = f"%{_escape_like(needle)}%"
            clauses.append(
                "(lower(name) LIKE ? ESCAPE '\\' OR lower(description) LIKE ? ESCAPE '\\' "
                "OR lower(instructions) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        if state is not None:
            clauses.append("state = ?")
            params.append(parse_skill_state(state).value)
        elif not include_deprecated:
            clauses.append("state != ?")
            params.append(SkillState.DEPRECATED.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._db.query_all(f"SELECT name, version FROM skill_registry {where}", tuple(params))

        versions_by_name: dict[str, list[str]] = {}
        for row in rows:
            versions_by_name.setdefault(
                row_text(row, "name", "skill_registry.name"), []
            ).append(row_text(row, "version", "skill_registry.version"))

        names = sorted(versions_by_name)
        page_names = names[offset : offset + limit]
        items: list[SkillRecord] = []
        for skill_name in page_names:
            best = latest_version(versions_by_name[skill_name])
            record = self._get_exact(skill_name, best) if best is not None else None
            if record is not None:
                items.append(record)
        return Page(items=tuple(items), total=len(names), limit=limit, offset=offset)

    def list(
        self,
        *,
        include_deprecated: bool = False,
        state: SkillState | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[SkillRecord]:
        return self.search(
            "", include_deprecated=include_deprecated, state=state, limit=limit, offset=offset
        )

    def get_by_state(
        self, state: SkillState | str, *, limit: int = DEFAULT_LOOKUP_LIMIT
    ) -> list[SkillRecord]:
        self._validate_page(limit, 0)
        rows = self._db.query_all(
            "SELECT * FROM skill_registry WHERE state = ?",
            (parse_skill_state(state).value,),
        )
        records = [_record_from_row(row) for row in rows]
        records.sort(key=lambda item: parse_semver(item.version), reverse=True)
        records.sort(key=lambda item: item.name)
        return records[:limit]

    def get_many(self, refs: Mapping[str, str]) -> dict[str, SkillRecord]:
        """Look up ``name -> version`` pairs in any state; missing pairs are omitted."""

        if not refs:
            return {}
        names = sorted(refs)
        rows = self._db.query_all(
            f"SELECT * FROM skill_registry WHERE name IN ({sql_placeholders(names)})",
            tuple(names),
        )
        found: dict[str, SkillRecord] = {}
        for row in rows:
            record = _record_from_row(row)
            if refs.get(record.name) == record.version:
                found[record.name] = record
        return found

    def is_executable(self, name: str, version: str | None = None) -> bool:
        return self.get(name, version if version is not None else LATEST) is not None

    def record_test_run(
        self,
        name: str,
        version: str,
        *,
        passed: bool,
        actor: str | None = None,
        results: Mapping[str, object] | None = None,
    ) -> AuditEntry:
        """Record the outcome of a caller-executed test run for a skill version."""

        record = self.require(name, version, any_state=True)
        data: dict[str, object] = {
            "name": record.name,
            "version": record.version,
            "passed": bool(passed),
            "state": record.state.value,
            "test_count": len(record.manifest.tests),
        }
        if results is not None:
            data["results"] = dict(results)
        entry = self._audit.log(
            AuditEventType.SKILL_TEST_RUN,
            tenant_id=SYSTEM_TENANT_ID,
            actor=actor,
            details=AuditDetails.from_mapping(
                {"action": "test_run", "target_id": record.ref, "data": data}
            ),
        )
        self._logger.info(
            "skill_test_run_recorded", name=record.name, version=record.version, passed=bool(passed)
        )
        return entry

    def delete(self, name: str, version: str, *, actor: str | None = None) -> bool:
        """Remove a draft version. Any other state raises ``InvalidTransitionError``."""

        skill_name = as_non_empty_str(name, "name")
        skill_version = as_non_empty_str(version, "version")
        ref = f"{skill_name}@{skill_version}"
        with self._db.transaction() as conn:
            current = self._current_state(skill_name, skill_version, conn=conn)
            if current is None:
                return False
            if current is not SkillState.DRAFT:
                raise InvalidTransitionError(
                    subject=f"skill {ref}",
                    current=current.value,
                    attempted="deleted",
                    allowed=[state.value for state in SKILL_TRANSITIONS[current]],
                )
            self._db.execute(
                "DELETE FROM skill_registry WHERE name = ? AND version = ? AND state = ?",
                (skill_name, skill_version, SkillState.DRAFT.value),
                conn=conn,
            )
            self._audit.log(
                AuditEventType.SKILL_STATE_CHANGED,
                tenant_id=SYSTEM_TENANT_ID,
                actor=actor,
                details=AuditDetails(
                    action="delete",
                    target_id=ref,
                    data={"name": skill_name, "version": skill_version, "from_state": current.value},
                ),
                conn=conn,
            )
        self._logger.info("skill_deleted", name=skill_name, version=skill_version, actor=actor)
        return True

    def _rows_for_name(
        self, name: str, states: tuple[SkillState, ...] | None
    ) -> list[dict[str, Any]]:
        if states is None:
            return self._db.query_all("SELECT * FROM skill_registry WHERE name = ?", (name,))
        values = [item.value for item in states]
        return self._db.query_all(
            f"SELECT * FROM skill_registry WHERE name = ? AND state IN ({sql_placeholders(values)})",
            (name, *values),
        )

    def _get_exact(
        self, name: str, version: str, *, conn: sqlite3.Connection | None = None
    ) -> SkillRecord | None:
        row = self._db.query_one(
            "SELECT * FROM skill_registry WHERE name = ? AND version = ?",
            (name, version),
            conn=conn,
        )
        return None if row is None else _record_from_row(row)

    def _current_state(
        self, name: str, version: str, *, conn: sqlite3.Connection
    ) -> SkillState | None:
        row = self._db.query_one(
            "SELECT state FROM skill_registry WHERE name = ? AND version = ?",
            (name, version),
            conn=conn,
        )
        if row is None:
            return None
        return SkillState(row_text(row, "state", "skill_registry.state"))

    def _write_state(
        self,
        name: str,
        version: str,
        observed: SkillState,
        target: SkillState,
        *,
        conn: sqlite3.Connection,
    ) -> None:
        updated = self._db.execute(
            """
            UPDATE skill_registry SET state = ?, state_changed_at = ?
            WHERE name = ? AND version = ? AND state = ?
            """,
            (target.value, iso8601z(utc_now()), name, version, observed.value),
            conn=conn,
        )
        if updated != 1:
            raise ConflictError(
                f"skill {name}@{version} changed state concurrently; expected {observed.value}"
            )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _record_from_row(row: Mapping[str, Any]) -> SkillRecord:
    manifest = SkillManifest.from_mapping(
        load_json_object(row.get("manifest_json"), "skill_registry.manifest_json")
    )
    return SkillRecord(
        name=row_text(row, "name", "skill_registry.name"),
        version=row_text(row, "version", "skill_registry.version"),
        description=row_text(row, "description", "skill_registry.description"),
        manifest=manifest,
        instructions=row_text(row, "instructions", "skill_registry.instructions"),
        checksum=row_text(row, "checksum", "skill_registry.checksum"),
        state=SkillState(row_text(row, "state", "skill_registry.state")),
        published_at=row_text(row, "published_at", "skill_registry.published_at"),
        published_by=row_optional_text(row, "published_by"),
        state_changed_at=row_text(row, "state_changed_at", "skill_registry.state_changed_at"),
    )


__all__ = [
    "LATEST",
    "SKILL_TRANSITIONS",
    "SkillRecord",
    "SkillRegistry",
    "StateChange",
    "allowed_transitions",
    "can_transition",
    "parse_skill_state",
]
