"""
agent-governance — workspace pins

File: src/agent_governance/workspace/pins.py

Purpose
- Record the full run recipe of a workspace environment: version hash, skill
  versions, model and provider.

Functional requirements
- One pin per ``(workspace_id, environment)``; ``pin`` replaces it wholesale.
- Skill pins map skill names to semantic versions.
- Every mutation that changes a row appends one ``workspace_change`` audit entry
  in the same transaction. Audit entries use the workspace id as tenant unless
  a tenant is supplied.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from agent_governance.constants import DEFAULT_PIN_ENVIRONMENT
from agent_governance.domain.enums import AuditEventType
from agent_governance.domain.semver import is_valid_semver
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    as_non_empty_str,
    as_optional_str,
    iso8601z,
    load_json_object,
    row_int,
    row_optional_text,
    row_text,
    utc_now,
)
from agent_governance.persistence.state_db import StateDB, canonical_json


@dataclass(frozen=True, slots=True)
class WorkspacePin:
    workspace_id: str
    version_hash: str
    environment: str = DEFAULT_PIN_ENVIRONMENT
    skill_pins: dict[str, str] = field(default_factory=dict)
    model_pin: str | None = None
    provider_pin: str | None = None
    pinned_at: str | None = None
    pinned_by: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "workspace_id": self.workspace_id,
            "environment": self.environment,
            "version_hash": self.version_hash,
            "skill_pins": dict(self.skill_pins),
            "model_pin": self.model_pin,
            "provider_pin": self.provider_pin,
            "pinned_at": self.pinned_at,
            "pinned_by": self.pinned_by,
        }


@dataclass(frozen=True, slots=True)
class PinnedModel:
    model: str
    provider: str | None


@dataclass(frozen=True, slots=True)
class PinStats:
    total_pins: int
    by_environment: dict[str, int]
    workspaces_with_pins: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total_pins": self.total_pins,
            "by_environment": dict(self.by_environment),
            "workspaces_with_pins": self.workspaces_with_pins,
        }


def validate_skill_pins(skill_pins: Mapping[str, str] | None) -> dict[str, str]:
    if skill_pins is None:
        return {}
    if not isinstance(skill_pins, Mapping):
        raise ValidationError("skill_pins: expected mapping of skill name to version")
    validated: dict[str, str] = {}
    for name, version in skill_pins.items():
        skill = as_non_empty_str(name, "skill_pins key")
        if not is_valid_semver(version):
            raise ValidationError(f"skill_pins.{skill}: expected semantic version, got {version!r}")
        validated[skill] = str(version)
    return validated


def store_pin(db: StateDB, pin: WorkspacePin, *, conn: sqlite3.Connection) -> WorkspacePin:
    """Upsert ``pin`` inside the caller's transaction; auditing is the caller's job."""

    pinned_at = pin.pinned_at or iso8601z(utc_now())
    db.execute(
        """
        INSERT INTO workspace_pins (
            workspace_id, environment, version_hash, skill_pins_json,
            model_pin, provider_pin, pinned_at, pinned_by
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(workspace_id, environment) DO UPDATE SET
            version_hash = excluded.version_hash,
            skill_pins_json = excluded.skill_pins_json,
            model_pin = excluded.model_pin,
            provider_pin = excluded.provider_pin,
            pinned_at = excluded.pinned_at,
            pinned_by = excluded.pinned_by
        """,
        (
            pin.workspace_id,
            pin.environment,
            pin.version_hash,
            canonical_json(pin.skill_pins),
            pin.model_pin,
            pin.provider_pin,
            pinned_at,
            pin.pinned_by,
        ),
        conn=conn,
    )
    return replace(pin, pinned_at=pinned_at)


def load_pin(
    db: StateDB,
    workspace_id: str,
    environment: str,
    *,
    conn: sqlite3.Connection | None = None,
) -> WorkspacePin | None:
    row = db.query_one(
        "SELECT * FROM workspace_pins WHERE workspace_id = ? AND environment = ?",
        (workspace_id, environment),
        conn=conn,
    )
    return None if row is None else _pin_from_row(row)


class WorkspacePins(BaseRepo):
    def __init__(
        self,
        db: StateDB,
        audit: AuditLog,
        *,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(db)
        self._audit = audit
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def pin(
        self,
        workspace_id: str,
        version_hash: str,
        *,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        skill_pins: Mapping[str, str] | None = None,
        model_pin: str | None = None,
        provider_pin: str | None = None,
        pinned_by: str | None = None,
        tenant_id: str | None = None,
    ) -> WorkspacePin:
        """Create or replace the pin for ``(workspace_id, environment)``."""

        pin = WorkspacePin(
            workspace_id=as_non_empty_str(workspace_id, "workspace_id"),
            environment=as_non_empty_str(environment, "environment"),
            version_hash=as_non_empty_str(version_hash, "version_hash"),
            skill_pins=validate_skill_pins(skill_pins),
            model_pin=as_optional_str(model_pin, "model_pin"),
            provider_pin=as_optional_str(provider_pin, "provider_pin"),
            pinned_at=iso8601z(self._clock()),
            pinned_by=as_optional_str(pinned_by, "pinned_by"),
        )
        with self._db.transaction() as conn:
            stored = store_pin(self._db, pin, conn=conn)
            self._log_change(
                "pin",
                pin.workspace_id,
                pin.environment,
                actor=pinned_by,
                tenant_id=tenant_id,
                data={"pin": stored.to_dict()},
                conn=conn,
            )
        self._logger.info(
            "workspace_pinned",
            workspace_id=pin.workspace_id,
            environment=pin.environment,
            version_hash=pin.version_hash,
            skills=len(pin.skill_pins),
        )
        return stored

    def get(
        self, workspace_id: str, environment: str = DEFAULT_PIN_ENVIRONMENT
    ) -> WorkspacePin | None:
        return load_pin(self._db, workspace_id, environment)

    def list_for_workspace(self, workspace_id: str) -> list[WorkspacePin]:
        rows = self._db.query_all(
            "SELECT * FROM workspace_pins WHERE workspace_id = ? ORDER BY environment",
            (as_non_empty_str(workspace_id, "workspace_id"),),
        )
        return [_pin_from_row(row) for row in rows]

    def list_by_environment(self, environment: str) -> list[WorkspacePin]:
        rows = self._db.query_all(
            "SELECT * FROM workspace_pins WHERE environment = ? ORDER BY workspace_id",
            (as_non_empty_str(environment, "environment"),),
        )
        return [_pin_from_row(row) for row in rows]

    def pin_skill(
        self,
        workspace_id: str,
        skill_name: str,
        skill_version: str,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        """Pin one skill version on an existing pin; ``False`` when there is no pin."""

        addition = validate_skill_pins({skill_name: skill_version})
        with self._db.transaction() as conn:
            current = load_pin(self._db, workspace_id, environment, conn=conn)
            if current is None:
                return False
            skill_pins = {**current.skill_pins, **addition}
            self._write_skill_pins(workspace_id, environment, skill_pins, conn=conn)
            self._log_change(
                "pin_skill",
                workspace_id,
                environment,
                actor=actor,
                tenant_id=tenant_id,
                data={"skill": skill_name, "version": skill_version},
                conn=conn,
            )
        return True

    def unpin_skill(
        self,
        workspace_id: str,
        skill_name: str,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        with self._db.transaction() as conn:
            current = load_pin(self._db, workspace_id, environment, conn=conn)
            if current is None:
                return False
            skill_pins = {
                name: version for name, version in current.skill_pins.items() if name != skill_name
            }
            self._write_skill_pins(workspace_id, environment, skill_pins, conn=conn)
            self._log_change(
                "unpin_skill",
                workspace_id,
                environment,
                actor=actor,
                tenant_id=tenant_id,
                data={"skill": skill_name},
                conn=conn,
            )
        return True

    def pin_model(
        self,
        workspace_id: str,
        model: str,
        provider: str | None = None,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        model_name = as_non_empty_str(model, "model")
        provider_name = as_optional_str(provider, "provider")
        with self._db.transaction() as conn:
            changed = self._db.execute(
                """
                UPDATE workspace_pins SET model_pin = ?, provider_pin = ?
                WHERE workspace_id = ? AND environment = ?
                """,
                (model_name, provider_name, workspace_id, environment),
                conn=conn,
            )
            if changed:
                self._log_change(
                    "pin_model",
                    workspace_id,
                    environment,
                    actor=actor,
                    tenant_id=tenant_id,
                    data={"model": model_name, "provider": provider_name},
                    conn=conn,
                )
        return changed > 0

    def unpin_model(
        self,
        workspace_id: str,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        with self._db.transaction() as conn:
            changed = self._db.execute(
                """
                UPDATE workspace_pins SET model_pin = NULL, provider_pin = NULL
                WHERE workspace_id = ? AND environment = ?
                """,
                (workspace_id, environment),
                conn=conn,
            )
            if changed:
                self._log_change(
                    "unpin_model", workspace_id, environment, actor=actor, tenant_id=tenant_id, conn=conn
                )
        return changed > 0

    def unpin(
        self,
        workspace_id: str,
        environment: str = DEFAULT_PIN_ENVIRONMENT,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        with self._db.transaction() as conn:
            deleted = self._db.execute(
                "DELETE FROM workspace_pins WHERE workspace_id = ? AND environment = ?",
                (workspace_id, environment),
                conn=conn,
            )
            if deleted:
                self._log_change(
                    "unpin", workspace_id, environment, actor=actor, tenant_id=tenant_id, conn=conn
                )
        if deleted:
            self._logger.info("workspace_unpinned", workspace_id=workspace_id, environment=environment)
        return deleted > 0

    def unpin_all(
        self, workspace_id: str, *, actor: str | None = None, tenant_id: str | None = None
    ) -> int:
        with self._db.transaction() as conn:
            deleted = self._db.execute(
                "DELETE FROM workspace_pins WHERE workspace_id = ?", (workspace_id,), conn=conn
            )
            if deleted:
                self._log_change(
                    "unpin_all",
                    workspace_id,
                    None,
                    actor=actor,
                    tenant_id=tenant_id,
                    data={"removed": deleted},
                    conn=conn,
                )
        return deleted

    def is_pinned(self, workspace_id: str, environment: str = DEFAULT_PIN_ENVIRONMENT) -> bool:
        return self.get(workspace_id, environment) is not None

    def get_pinned_skill_version(
        self, workspace_id: str, skill_name: str, environment: str = DEFAULT_PIN_ENVIRONMENT
    ) -> str | None:
        pin = self.get(workspace_id, environment)
        return None if pin is None else pin.skill_pins.get(skill_name)

    def get_pinned_model(
        self, workspace_id: str, environment: str = DEFAULT_PIN_ENVIRONMENT
    ) -> PinnedModel | None:
        pin = self.get(workspace_id, environment)
        if pin is None or pin.model_pin is None:
            return None
        return PinnedModel(model=pin.model_pin, provider=pin.provider_pin)

    def get_stats(self) -> PinStats:
        total = self._db.query_one(
            """
            SELECT COUNT(*) AS total, COUNT(DISTINCT workspace_id) AS workspaces
            FROM workspace_pins
            """
        )
        rows = self._db.query_all(
            "SELECT environment, COUNT(*) AS count FROM workspace_pins GROUP BY environment ORDER BY environment"
        )
        return PinStats(
            total_pins=0 if total is None else row_int(total, "total"),
            by_environment={
                row_text(row, "environment", "workspace_pins.environment"): row_int(row, "count")
                for row in rows
            },
            workspaces_with_pins=0 if total is None else row_int(total, "workspaces"),
        )

    def _write_skill_pins(
        self,
        workspace_id: str,
        environment: str,
        skill_pins: Mapping[str, str],
        *,
        conn: sqlite3.Connection,
    ) -> None:
        self._db.execute(
            "UPDATE workspace_pins SET skill_pins_json = ? WHERE workspace_id = ? AND environment = ?",
            (canonical_json(dict(skill_pins)), workspace_id, environment),
            conn=conn,
        )

    def _log_change(
        self,
        action: str,
        workspace_id: str,
        environment: str | None,
        *,
        actor: str | None,
        tenant_id: str | None,
        conn: sqlite3.Connection,
        data: dict[str, JSONValue] | None = None,
    ) -> None:
        payload: dict[str, JSONValue] = {"environment": environment}
        payload.update(data or {})
        self._audit.log(
            AuditEventType.WORKSPACE_CHANGE,
            tenant_id=tenant_id or workspace_id,
            workspace_id=workspace_id,
            actor=actor,
            details=AuditDetails(action=action, target_id=workspace_id, data=payload),
            conn=conn,
        )


def _pin_from_row(row: Mapping[str, Any]) -> WorkspacePin:
    skill_pins = load_json_object(row.get("skill_pins_json"), "workspace_pins.skill_pins_json")
    return WorkspacePin(
        workspace_id=row_text(row, "workspace_id", "workspace_pins.workspace_id"),
        environment=row_text(row, "environment", "workspace_pins.environment"),
        version_hash=row_text(row, "version_hash", "workspace_pins.version_hash"),
        skill_pins={str(name): str(version) for name, version in skill_pins.items()},
        model_pin=row_optional_text(row, "model_pin"),
        provider_pin=row_optional_text(row, "provider_pin"),
        pinned_at=row_optional_text(row, "pinned_at"),
        pinned_by=row_optional_text(row, "pinned_by"),
    )


__all__ = [
    "PinStats",
    "PinnedModel",
    "WorkspacePin",
    "WorkspacePins",
    "load_pin",
    "store_pin",
    "validate_skill_pins",
]
