"""Workspace pins: full run recipes per environment, audited on every change."""

from __future__ import annotations

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.workspace.pins import PinnedModel, WorkspacePins

_HASH = "a" * 64


@pytest.fixture
def pins(db: StateDB, audit: AuditLog) -> WorkspacePins:
    return WorkspacePins(db, audit)


def _actions(audit: AuditLog, tenant_id: str = "ws-1") -> list[str | None]:
    page = audit.query(tenant_id, event_type=AuditEventType.WORKSPACE_CHANGE)
    return [entry.details.action for entry in reversed(page.items)]


def test_pin_replaces_recipe_wholesale(pins: WorkspacePins, audit: AuditLog) -> None:
    pins.pin(
        "ws-1",
        _HASH,
        environment="prod",
        skill_pins={"summarizer": "1.0.0"},
        model_pin="gpt-4o",
        provider_pin="openai",
        pinned_by="alice",
    )
    replaced = pins.pin("ws-1", "b" * 64, environment="prod")

    assert replaced.version_hash == "b" * 64
    assert replaced.skill_pins == {}
    assert replaced.model_pin is None
    assert pins.get("ws-1", "prod") == replaced
    assert _actions(audit) == ["pin", "pin"]


def test_default_environment_and_listing(pins: WorkspacePins) -> None:
    pins.pin("ws-1", _HASH)
    pins.pin("ws-1", _HASH, environment="dev")
    pins.pin("ws-2", _HASH, environment="dev")

    assert pins.is_pinned("ws-1")
    assert pins.get("ws-1").environment == "default"  # type: ignore[union-attr]
    assert [pin.environment for pin in pins.list_for_workspace("ws-1")] == ["default", "dev"]
    assert [pin.workspace_id for pin in pins.list_by_environment("dev")] == ["ws-1", "ws-2"]

    stats = pins.get_stats()
    assert stats.total_pins == 3
    assert stats.by_environment == {"default": 1, "dev": 2}
    assert stats.workspaces_with_pins == 2


def test_skill_pins_require_semantic_versions(pins: WorkspacePins) -> None:
    with pytest.raises(ValidationError, match="skill_pins.summarizer"):
        pins.pin("ws-1", _HASH, skill_pins={"summarizer": "latest"})
    pins.pin("ws-1", _HASH)
    with pytest.raises(ValidationError):
        pins.pin_skill("ws-1", "summarizer", "1.0")


def test_skill_and_model_edits_on_existing_pin(pins: WorkspacePins, audit: AuditLog) -> None:
    assert pins.pin_skill("ws-1", "summarizer", "1.0.0") is False
    pins.pin("ws-1", _HASH, skill_pins={"search": "2.0.0"})

    assert pins.pin_skill("ws-1", "summarizer", "1.1.0", actor="bob")
    assert pins.get_pinned_skill_version("ws-1", "summarizer") == "1.1.0"
    assert pins.unpin_skill("ws-1", "search")
    assert pins.get("ws-1").skill_pins == {"summarizer": "1.1.0"}  # type: ignore[union-attr]

    assert pins.pin_model("ws-1", "claude-3-5-sonnet", "anthropic")
    assert pins.get_pinned_model("ws-1") == PinnedModel(model="claude-3-5-sonnet", provider="anthropic")
    assert pins.unpin_model("ws-1")
    assert pins.get_pinned_model("ws-1") is None
    assert pins.pin_model("ws-9", "gpt-4o") is False

    assert _actions(audit) == ["pin", "pin_skill", "unpin_skill", "pin_model", "unpin_model"]


def test_unpin_and_unpin_all(pins: WorkspacePins, audit: AuditLog) -> None:
    pins.pin("ws-1", _HASH, environment="dev")
    pins.pin("ws-1", _HASH, environment="prod")

    assert pins.unpin("ws-1", "dev")
    assert pins.unpin("ws-1", "dev") is False
    assert pins.unpin_all("ws-1") == 1
    assert pins.list_for_workspace("ws-1") == []
    assert _actions(audit)[-2:] == ["unpin", "unpin_all"]


def test_audit_uses_supplied_tenant(pins: WorkspacePins, audit: AuditLog) -> None:
    pins.pin("ws-1", _HASH, tenant_id="acme")
    assert _actions(audit, "acme") == ["pin"]
    assert _actions(audit, "ws-1") == []
