"""
agent-governance — unit tests for workspace environments

File: tests/unit/workspace/test_environments.py

Purpose
- Validate environment records, the dev -> staging -> prod path, locking and
  environment rollback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import NotFoundError
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.workspace.environments import WorkspaceEnvironments, promotion_target
from agent_governance.workspace.pins import WorkspacePins
from agent_governance.workspace.versions import WorkspaceVersioning

if TYPE_CHECKING:
    from pathlib import Path

_V1 = "1" * 64
_V2 = "2" * 64


@pytest.fixture
def environments(db: StateDB, audit: AuditLog) -> WorkspaceEnvironments:
    return WorkspaceEnvironments(db, audit)


@pytest.fixture
def pins(db: StateDB, audit: AuditLog) -> WorkspacePins:
    return WorkspacePins(db, audit)


@pytest.fixture
def recorded_hash(db: StateDB, audit: AuditLog, tmp_path: Path) -> str:
    versioning = WorkspaceVersioning(db, audit, tmp_path / "workspace")
    return versioning.record("ws-1", {"SOUL.md": "known good"}).hash


def test_standard_environments_initialized(environments: WorkspaceEnvironments) -> None:
    created = environments.initialize_standard_environments("ws-1", _V1)

    assert [env.environment for env in created] == ["dev", "staging", "prod"]
    assert [env.locked for env in created] == [False, False, True]
    assert environments.get_default("ws-1").environment == "dev"  # type: ignore[union-attr]
    assert all(env.version_hash == _V1 for env in created)


def test_list_orders_standard_environments_first(environments: WorkspaceEnvironments) -> None:
    environments.upsert("ws-1", "qa")
    environments.upsert("ws-1", "prod")
    environments.upsert("ws-1", "dev")
    assert [env.environment for env in environments.list("ws-1")] == ["dev", "prod", "qa"]


def test_upsert_updates_only_passed_fields(environments: WorkspaceEnvironments) -> None:
    environments.upsert("ws-1", "dev", description="Development", version_hash=_V1)
    updated = environments.upsert("ws-1", "dev", locked=True)

    assert updated.description == "Development"
    assert updated.version_hash == _V1
    assert updated.locked is True
    cleared = environments.upsert("ws-1", "dev", description=None)
    assert cleared.description is None


def test_promotion_path() -> None:
    assert promotion_target("dev") == "staging"
    assert promotion_target("staging") == "prod"
    assert promotion_target("prod") is None
    assert promotion_target("qa") is None


def test_promote_copies_version_and_pin(
    environments: WorkspaceEnvironments, pins: WorkspacePins, audit: AuditLog
) -> None:
    environments.initialize_standard_environments("ws-1")
    environments.upsert("ws-1", "dev", version_hash=_V2)
    environments.upsert("ws-1", "staging", version_hash=_V1)
    pins.pin("ws-1", _V2, environment="dev", skill_pins={"summarizer": "1.0.0"}, model_pin="gpt-4o")

    result = environments.promote("ws-1", "dev", actor="alice")

    assert result.success
    assert result.target_env == "staging"
    assert result.version_hash == _V2
    assert result.previous_hash == _V1
    assert environments.get("ws-1", "staging").version_hash == _V2  # type: ignore[union-attr]
    staging_pin = pins.get("ws-1", "staging")
    assert staging_pin is not None
    assert staging_pin.skill_pins == {"summarizer": "1.0.0"}
    assert staging_pin.model_pin == "gpt-4o"
    assert staging_pin.pinned_by == "alice"

    promoted = [
        entry
        for entry in audit.query("ws-1", event_type=AuditEventType.WORKSPACE_CHANGE).items
        if entry.details.action == "promote"
    ]
    assert len(promoted) == 1
    assert promoted[0].details.data["previous_hash"] == _V1


def test_locked_target_is_refused_but_locked_source_allowed(
    environments: WorkspaceEnvironments,
) -> None:
    environments.initialize_standard_environments("ws-1", _V1)

    refused = environments.promote("ws-1", "staging")
    assert not refused.success
    assert refused.error == "Target environment prod is locked"
    assert environments.get("ws-1", "prod").version_hash == _V1  # type: ignore[union-attr]

    environments.upsert("ws-1", "prod", version_hash=_V2, locked=False)
    environments.lock("ws-1", "prod")
    from_locked = environments.promote("ws-1", "prod", "hotfix")
    assert from_locked.success
    assert environments.get("ws-1", "hotfix").version_hash == _V2  # type: ignore[union-attr]


@pytest.mark.parametrize(
    ("setup_version", "source", "error"),
    [
        (None, "dev", "Source environment dev has no version pinned"),
        (_V1, "qa", "Source environment qa not found"),
    ],
)
def test_promote_refusals(
    environments: WorkspaceEnvironments, setup_version: str | None, source: str, error: str
) -> None:
    environments.upsert("ws-1", "dev", version_hash=setup_version)
    result = environments.promote("ws-1", source, "staging")
    assert not result.success
    assert result.error == error


def test_promote_without_path_reports_unknown_target(environments: WorkspaceEnvironments) -> None:
    result = environments.promote("ws-1", "prod")
    assert not result.success
    assert result.target_env == "unknown"
    assert result.error == "No promotion target for environment: prod"


def test_environment_rollback(
    environments: WorkspaceEnvironments, pins: WorkspacePins, audit: AuditLog, recorded_hash: str
) -> None:
    environments.upsert("ws-1", "staging", version_hash=_V2)
    pins.pin("ws-1", _V2, environment="staging", skill_pins={"search": "2.0.0"})

    result = environments.rollback("ws-1", "staging", recorded_hash, actor="bob")

    assert result.success
    assert result.previous_hash == _V2
    assert environments.get("ws-1", "staging").version_hash == recorded_hash  # type: ignore[union-attr]
    assert pins.get("ws-1", "staging").version_hash == recorded_hash  # type: ignore[union-attr]
    actions = [
        entry.details.action
        for entry in audit.query("ws-1", event_type=AuditEventType.WORKSPACE_CHANGE).items
    ]
    assert actions.count("environment_rollback") == 1


def test_rollback_refused_when_locked_or_missing(
    environments: WorkspaceEnvironments, audit: AuditLog, recorded_hash: str
) -> None:
    environments.upsert("ws-1", "prod", version_hash=_V2, locked=True)

    refused = environments.rollback("ws-1", "prod", recorded_hash)
    assert not refused.success
    assert refused.error == "Environment prod is locked"
    with pytest.raises(NotFoundError):
        environments.rollback("ws-1", "qa", recorded_hash)
    (entry,) = [
        item
        for item in audit.query("ws-1", event_type=AuditEventType.WORKSPACE_CHANGE).items
        if item.details.action == "environment_rollback_refused"
    ]
    assert entry.details.data["error"] == "Environment prod is locked"
    assert entry.details.data["version_hash"] == recorded_hash


def test_lock_unlock_default_and_delete(environments: WorkspaceEnvironments) -> None:
    environments.upsert("ws-1", "dev")
    environments.upsert("ws-1", "staging")

    assert environments.set_default("ws-1", "staging")
    assert environments.set_default("ws-1", "qa") is False
    assert environments.get_default("ws-1").environment == "staging"  # type: ignore[union-attr]

    assert environments.lock("ws-1", "dev")
    assert environments.delete("ws-1", "dev") is False
    assert environments.unlock("ws-1", "dev")
    assert environments.delete("ws-1", "dev")
    assert environments.get("ws-1", "dev") is None
    assert environments.lock("ws-1", "missing") is False


def test_get_with_pin(environments: WorkspaceEnvironments, pins: WorkspacePins) -> None:
    environments.upsert("ws-1", "dev", version_hash=_V1)
    pins.pin("ws-1", _V1, environment="dev")

    combined = environments.get_with_pin("ws-1", "dev")
    assert combined.environment is not None
    assert combined.pin is not None
    assert combined.pin.version_hash == combined.environment.version_hash
    assert environments.get_with_pin("ws-1", "qa").environment is None


def test_rollback_to_unknown_version_is_not_found(
    environments: WorkspaceEnvironments, pins: WorkspacePins, recorded_hash: str
) -> None:
    environments.upsert("ws-1", "staging", version_hash=recorded_hash)
    pins.pin("ws-1", recorded_hash, environment="staging")

    with pytest.raises(NotFoundError, match="workspace_version"):
        environments.rollback("ws-1", "staging", "f" * 64)
    with pytest.raises(NotFoundError):
        environments.rollback("ws-2", "staging", recorded_hash)

    assert environments.get("ws-1", "staging").version_hash == recorded_hash  # type: ignore[union-attr]
    assert pins.get("ws-1", "staging").version_hash == recorded_hash  # type: ignore[union-attr]


def test_refused_promotions_are_audited(
    environments: WorkspaceEnvironments, audit: AuditLog
) -> None:
    environments.initialize_standard_environments("ws-1", _V1)

    environments.promote("ws-1", "staging", actor="dana")
    environments.promote("ws-1", "qa", "staging", actor="dana")

    refused = [
        entry
        for entry in reversed(audit.query("ws-1", event_type=AuditEventType.WORKSPACE_CHANGE).items)
        if entry.details.action == "promote_refused"
    ]
    assert [entry.details.data["error"] for entry in refused] == [
        "Target environment prod is locked",
        "Source environment qa not found",
    ]
    assert all(entry.actor == "dana" for entry in refused)
    assert refused[0].details.data["target_env"] == "prod"
