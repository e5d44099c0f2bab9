"""
agent-governance — workspace environments

File: src/agent_governance/workspace/environments.py

Purpose
- Named deployment environments per workspace, each pointing at one version.

Functional requirements
- ``locked`` blocks an environment from being a promotion or rollback target;
  a locked environment may still be a promotion source.
- ``promote`` is a mutation only; policy gating lives in the promotion checker.
- Target version writes are conditioned on the version observed in the same
  ``BEGIN IMMEDIATE`` transaction, so a concurrent writer makes the loser fail
  with ``ConflictError`` instead of silently overwriting.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

import structlog

from agent_governance.constants import STANDARD_ENVIRONMENTS
from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import ConflictError, NotFoundError, ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
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
from agent_governance.persistence.state_db import SQLValue, StateDB
from agent_governance.workspace.pins import WorkspacePin, load_pin, store_pin

PROMOTION_PATHS: Final[dict[str, str | None]] = {
    "dev": "staging",
    "staging": "prod",
    "prod": None,
}

_UNSET: Final = object()


@dataclass(frozen=True, slots=True)
class WorkspaceEnvironment:
    workspace_id: str
    environment: str
    description: str | None
    version_hash: str | None
    is_default: bool
    locked: bool
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "workspace_id": self.workspace_id,
            "environment": self.environment,
            "description": self.description,
            "version_hash": self.version_hash,
            "is_default": self.is_default,
            "locked": self.locked,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class EnvironmentWithPin:
    environment: WorkspaceEnvironment | None
    pin: WorkspacePin | None


@dataclass(frozen=True, slots=True)
class PromotionResult:
    success: bool
    source_env: str
    target_env: str
    version_hash: str | None = None
    previous_hash: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "success": self.success,
            "source_env": self.source_env,
            "target_env": self.target_env,
            "version_hash": self.version_hash,
            "previous_hash": self.previous_hash,
            "error": self.error,
        }


def promotion_target(source: str) -> str | None:
    """Next environment on the standard dev -> staging -> prod path."""

    return PROMOTION_PATHS.get(source)


class WorkspaceEnvironments(BaseRepo):
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

    def upsert(
        self,
        workspace_id: str,
        environment: str,
        *,
        description: str | None | object = _UNSET,
        version_hash: str | None | object = _UNSET,
        is_default: bool | None = None,
        locked: bool | None = None,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> WorkspaceEnvironment:
        """Create the environment or update only the fields that were passed."""

        workspace = as_non_empty_str(workspace_id, "workspace_id")
        name = as_non_empty_str(environment, "environment")
        now = iso8601z(self._clock())
        fields: dict[str, SQLValue] = {}
        if description is not _UNSET:
            fields["description"] = as_optional_str(description, "description")
        if version_hash is not _UNSET:
            fields["version_hash"] = as_optional_str(version_hash, "version_hash")
        if is_default is not None:
            fields["is_default"] = 1 if is_default else 0
        if locked is not None:
            fields["locked"] = 1 if locked else 0

        with self._db.transaction() as conn:
            existing = self._load(workspace, name, conn=conn)
            if existing is None:
                self._db.execute(
                    """
                    INSERT INTO workspace_environments (
                        workspace_id, environment, description, version_hash,
                        is_default, locked, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        workspace,
                        name,
                        fields.get("description"),
                        fields.get("version_hash"),
                        fields.get("is_default", 0),
                        fields.get("locked", 0),
                        now,
                        now,
                    ),
                    conn=conn,
                )
                action = "environment_created"
            else:
                assignments = ", ".join(f"{column} = ?" for column in fields)
                params: list[SQLValue] = [*fields.values(), now, workspace, name]
                self._db.execute(
                    f"""
                    UPDATE workspace_environments
                    SET {assignments + ', ' if assignments else ''}updated_at = ?
                    WHERE workspace_id = ? AND environment = ?
                    """,
                    tuple(params),
                    conn=conn,
                )
                action = "environment_updated"
            self._log_change(
                action,
                workspace,
                name,
                actor=actor,
                tenant_id=tenant_id,
                data={"fields": dict(fields)},
                conn=conn,
            )
            stored = self._load(workspace, name, conn=conn)

        if stored is None:
            raise NotFoundError("environment", f"{workspace}/{name}")
        self._logger.info("environment_upserted", workspace_id=workspace, environment=name, action=action)
        return stored

    def get(self, workspace_id: str, environment: str) -> WorkspaceEnvironment | None:
        return self._load(workspace_id, environment)

    def list(self, workspace_id: str) -> list[WorkspaceEnvironment]:
        """Standard environments first in promotion order, then the rest alphabetically."""

        rows = self._db.query_all(
            """
            SELECT * FROM workspace_environments WHERE workspace_id = ?
            ORDER BY CASE environment
                WHEN 'dev' THEN 1
                WHEN 'staging' THEN 2
                WHEN 'prod' THEN 3
                ELSE 4
            END, environment
            """,
            (as_non_empty_str(workspace_id, "workspace_id"),),
        )
        return [_environment_from_row(row) for row in rows]

    def get_default(self, workspace_id: str) -> WorkspaceEnvironment | None:
        row = self._db.query_one(
            """
            SELECT * FROM workspace_environments
            WHERE workspace_id = ? AND is_default = 1
            ORDER BY environment LIMIT 1
            """,
            (as_non_empty_str(workspace_id, "workspace_id"),),
        )
        return None if row is None else _environment_from_row(row)

    def set_default(
        self,
        workspace_id: str,
        environment: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        now = iso8601z(self._clock())
        with self._db.transaction() as conn:
            if self._load(workspace_id, environment, conn=conn) is None:
                return False
            self._db.execute(
                "UPDATE workspace_environments SET is_default = 0, updated_at = ? WHERE workspace_id = ?",
                (now, workspace_id),
                conn=conn,
            )
            self._db.execute(
                """
                UPDATE workspace_environments SET is_default = 1, updated_at = ?
                WHERE workspace_id = ? AND environment = ?
                """,
                (now, workspace_id, environment),
                conn=conn,
            )
            self._log_change(
                "set_default", workspace_id, environment, actor=actor, tenant_id=tenant_id, conn=conn
            )
        return True

    def lock(
        self,
        workspace_id: str,
        environment: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        return self._set_locked(workspace_id, environment, True, actor=actor, tenant_id=tenant_id)

    def unlock(
        self,
        workspace_id: str,
        environment: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        return self._set_locked(workspace_id, environment, False, actor=actor, tenant_id=tenant_id)

    def delete(
        self,
        workspace_id: str,
        environment: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        """Remove an unlocked environment; locked or absent environments return ``False``."""

        with self._db.transaction() as conn:
            deleted = self._db.execute(
                """
                DELETE FROM workspace_environments
                WHERE workspace_id = ? AND environment = ? AND locked = 0
                """,
                (workspace_id, environment),
                conn=conn,
            )
            if deleted:
                self._log_change(
                    "environment_deleted",
                    workspace_id,
                    environment,
                    actor=actor,
                    tenant_id=tenant_id,
                    conn=conn,
                )
        return deleted > 0

    def get_with_pin(self, workspace_id: str, environment: str) -> EnvironmentWithPin:
        return EnvironmentWithPin(
            environment=self._load(workspace_id, environment),
            pin=load_pin(self._db, workspace_id, environment),
        )

    def initialize_standard_environments(
        self,
        workspace_id: str,
        version_hash: str | None = None,
        *,
        default_environment: str = "dev",
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> list[WorkspaceEnvironment]:
        """Create dev/staging/prod; prod starts locked, ``default_environment`` is the default."""

        if default_environment not in STANDARD_ENVIRONMENTS:
            raise ValidationError(
                f"default_environment must be one of: {', '.join(STANDARD_ENVIRONMENTS)}"
            )
        created: list[WorkspaceEnvironment] = []
        for name in STANDARD_ENVIRONMENTS:
            created.append(
                self.upsert(
                    workspace_id,
                    name,
                    description=f"{name.capitalize()} environment",
                    version_hash=version_hash if version_hash is not None else _UNSET,
                    is_default=name == default_environment,
                    locked=name == "prod",
                    actor=actor,
                    tenant_id=tenant_id,
                )
            )
        return created

    def promote(
        self,
        workspace_id: str,
        source: str,
        target: str | None = None,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
        audit_data: Mapping[str, JSONValue] | None = None,
    ) -> PromotionResult:
        """Point ``target`` at ``source``'s version and copy the source pin."""

        workspace = as_non_empty_str(workspace_id, "workspace_id")
        source_name = as_non_empty_str(source, "source")
        target_name = target if target is not None else promotion_target(source_name)
        now = iso8601z(self._clock())
        with self._db.transaction() as conn:

            def refuse(target_env_name: str, error: str) -> PromotionResult:
                return self._refused(
                    "promote_refused",
                    workspace,
                    source_name,
                    target_env_name,
                    error,
                    actor=actor,
                    tenant_id=tenant_id,
                    conn=conn,
                )

            if target_name is None:
                return refuse("unknown", f"No promotion target for environment: {source_name}")
            source_env = self._load(workspace, source_name, conn=conn)
            if source_env is None:
                return refuse(target_name, f"Source environment {source_name} not found")
            if source_env.version_hash is None:
                return refuse(target_name, f"Source environment {source_name} has no version pinned")
            target_env = self._load(workspace, target_name, conn=conn)
            if target_env is not None and target_env.locked:
                return refuse(target_name, f"Target environment {target_name} is locked")

            version = source_env.version_hash
            previous = None if target_env is None else target_env.version_hash
            if target_env is None:
                self._db.execute(
                    """
                    INSERT INTO workspace_environments (
                        workspace_id, environment, description, version_hash,
                        is_default, locked, created_at, updated_at
                    ) VALUES (?, ?, NULL, ?, 0, 0, ?, ?)
                    """,
                    (workspace, target_name, version, now, now),
                    conn=conn,
                )
            else:
                self._write_version_conditionally(
                    workspace, target_name, version, observed=previous, now=now, conn=conn
                )

            source_pin = load_pin(self._db, workspace, source_name, conn=conn)
            target_pin = WorkspacePin(
                workspace_id=workspace,
                environment=target_name,
                version_hash=version,
                skill_pins={} if source_pin is None else dict(source_pin.skill_pins),
                model_pin=None if source_pin is None else source_pin.model_pin,
                provider_pin=None if source_pin is None else source_pin.provider_pin,
                pinned_at=now,
                pinned_by=actor,
            )
            store_pin(self._db, target_pin, conn=conn)

            data: dict[str, JSONValue] = {
                "source_env": source_name,
                "target_env": target_name,
                "version_hash": version,
                "previous_hash": previous,
            }
            data.update(audit_data or {})
            self._audit.log(
                AuditEventType.WORKSPACE_CHANGE,
                tenant_id=tenant_id or workspace,
                workspace_id=workspace,
                actor=actor,
                details=AuditDetails(action="promote", target_id=workspace, data=data),
                conn=conn,
            )

        self._logger.info(
            "environment_promoted",
            workspace_id=workspace,
            source_env=source_name,
            target_env=target_name,
            version_hash=version,
            previous_hash=previous,
        )
        return PromotionResult(
            success=True,
            source_env=source_name,
            target_env=target_name,
            version_hash=version,
            previous_hash=previous,
        )

    def rollback(
        self,
        workspace_id: str,
        environment: str,
        version_hash: str,
        *,
        actor: str | None = None,
        tenant_id: str | None = None,
        audit_data: Mapping[str, JSONValue] | None = None,
    ) -> PromotionResult:
        """Point an existing, unlocked environment (and its pin) back at ``version_hash``."""

        workspace = as_non_empty_str(workspace_id, "workspace_id")
        name = as_non_empty_str(environment, "environment")
        version = as_non_empty_str(version_hash, "version_hash")
        now = iso8601z(self._clock())
        with self._db.transaction() as conn:
            current = self._load(workspace, name, conn=conn)
            if current is None:
                raise NotFoundError("environment", f"{workspace}/{name}")
            known = self._db.query_one(
                "SELECT 1 AS found FROM workspace_versions WHERE workspace_id = ? AND hash = ?",
                (workspace, version),
                conn=conn,
            )
            if known is None:
                raise NotFoundError("workspace_version", f"{workspace}/{version}")
            if current.locked:
                return self._refused(
                    "environment_rollback_refused",
                    workspace,
                    name,
                    name,
                    f"Environment {name} is locked",
                    actor=actor,
                    tenant_id=tenant_id,
                    conn=conn,
                    data={"version_hash": version},
                )
            self._write_version_conditionally(
                workspace, name, version, observed=current.version_hash, now=now, conn=conn
            )
            pin = load_pin(self._db, workspace, name, conn=conn)
            if pin is not None:
                store_pin(
                    self._db,
                    WorkspacePin(
                        workspace_id=workspace,
                        environment=name,
                        version_hash=version,
                        skill_pins=dict(pin.skill_pins),
                        model_pin=pin.model_pin,
                        provider_pin=pin.provider_pin,
                        pinned_at=now,
                        pinned_by=actor,
                    ),
                    conn=conn,
                )
            data: dict[str, JSONValue] = {
                "environment": name,
                "version_hash": version,
                "previous_hash": current.version_hash,
            }
            data.update(audit_data or {})
            self._audit.log(
                AuditEventType.WORKSPACE_CHANGE,
                tenant_id=tenant_id or workspace,
                workspace_id=workspace,
                actor=actor,
                details=AuditDetails(action="environment_rollback", target_id=workspace, data=data),
                conn=conn,
            )

        self._logger.info(
            "environment_rolled_back",
            workspace_id=workspace,
            environment=name,
            version_hash=version,
            previous_hash=current.version_hash,
        )
        return PromotionResult(
            success=True,
            source_env=name,
            target_env=name,
            version_hash=version,
            previous_hash=current.version_hash,
        )

    def _refused(
        self,
        action: str,
        workspace_id: str,
        source: str,
        target: str,
        error: str,
        *,
        actor: str | None,
        tenant_id: str | None,
        conn: sqlite3.Connection,
        data: dict[str, JSONValue] | None = None,
    ) -> PromotionResult:
        payload: dict[str, JSONValue] = {"source_env": source, "target_env": target, "error": error}
        payload.update(data or {})
        self._log_change(
            action, workspace_id, source, actor=actor, tenant_id=tenant_id, conn=conn, data=payload
        )
        self._logger.warning("environment_change_refused", source_env=source, target_env=target, error=error)
        return PromotionResult(success=False, source_env=source, target_env=target, error=error)

    def _write_version_conditionally(
        self,
        workspace_id: str,
        environment: str,
        version_hash: str,
        *,
        observed: str | None,
        now: str,
        conn: sqlite3.Connection,
    ) -> None:
        changed = self._db.execute(
            """
            UPDATE workspace_environments SET version_hash = ?, updated_at = ?
            WHERE workspace_id = ? AND environment = ? AND locked = 0
              AND version_hash IS ?
            """,
            (version_hash, now, workspace_id, environment, observed),
            conn=conn,
        )
        if changed != 1:
            raise ConflictError(
                f"environment {workspace_id}/{environment} changed concurrently; re-read and retry"
            )

    def _set_locked(
        self,
        workspace_id: str,
        environment: str,
        locked: bool,
        *,
        actor: str | None,
        tenant_id: str | None,
    ) -> bool:
        with self._db.transaction() as conn:
            changed = self._db.execute(
                """
                UPDATE workspace_environments SET locked = ?, updated_at = ?
                WHERE workspace_id = ? AND environment = ?
                """,
                (1 if locked else 0, iso8601z(self._clock()), workspace_id, environment),
                conn=conn,
            )
            if changed:
                self._log_change(
                    "lock" if locked else "unlock",
                    workspace_id,
                    environment,
                    actor=actor,
                    tenant_id=tenant_id,
                    conn=conn,
                )
        return changed > 0

    def _load(
        self,
        workspace_id: str,
        environment: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> WorkspaceEnvironment | None:
        row = self._db.query_one(
            "SELECT * FROM workspace_environments WHERE workspace_id = ? AND environment = ?",
            (workspace_id, environment),
            conn=conn,
        )
        return None if row is None else _environment_from_row(row)

    def _log_change(
        self,
        action: str,
        workspace_id: str,
        environment: str,
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


def _environment_from_row(row: Mapping[str, Any]) -> WorkspaceEnvironment:
    return WorkspaceEnvironment(
        workspace_id=row_text(row, "workspace_id", "workspace_environments.workspace_id"),
        environment=row_text(row, "environment", "workspace_environments.environment"),
        description=row_optional_text(row, "description"),
        version_hash=row_optional_text(row, "version_hash"),
        is_default=row_int(row, "is_default") == 1,
        locked=row_int(row, "locked") == 1,
        created_at=row_text(row, "created_at", "workspace_environments.created_at"),
        updated_at=row_text(row, "updated_at", "workspace_environments.updated_at"),
    )


__all__ = [
    "PROMOTION_PATHS",
    "EnvironmentWithPin",
    "PromotionResult",
    "WorkspaceEnvironment",
    "WorkspaceEnvironments",
    "promotion_target",
]
