"""
Integration test for one governed agent lifecycle over a single state DB.

Coverage:
- skill publication and the draft -> tested -> approved -> active path
- workspace snapshots, environments, pins and gated promotion
- trace capture, spend, redacted operator views
- deprecation blocking promotion, audited override, rollback
- retention enforcement
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from agent_governance.domain.enums import AuditEventType, SkillState
from agent_governance.errors import PromotionBlockedError
from agent_governance.governance.permissions import Role
from agent_governance.ops.views import SENSITIVE_CONTENT_PLACEHOLDER
from agent_governance.persistence.state_db import StateDB
from agent_governance.services import GovernanceServices, build_services_from_db
from agent_governance.tracing.trace import TraceBuilder

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    (root / "skills").mkdir(parents=True)
    (root / "SOUL.md").write_text("Be helpful.", encoding="utf-8")
    (root / "skills" / "summarizer.md").write_text("Summarize the input.", encoding="utf-8")
    return root


@pytest.fixture
def services(tmp_path: Path, workspace_root: Path) -> GovernanceServices:
    db = StateDB(tmp_path / "state" / "governance.sqlite3", busy_timeout_ms=1_000)
    return build_services_from_db(db, workspace_root=workspace_root)


def _record_trace(services: GovernanceServices, workspace_hash: str) -> str:
    builder = TraceBuilder(
        tenant_id="acme",
        workspace_id="ws-1",
        model="gpt-4o-mini",
        provider="openai",
        input_message="Summarize the board minutes for jane@example.com",
        agent_role="assistant",
    )
    builder.set_skill_versions({"summarizer": "1.0.0"})
    builder.set_workspace_hash(workspace_hash)
    builder.add_llm_call(input_tokens=800, output_tokens=200, cost=0.002, duration_ms=90)
    builder.set_redacted_prompt("Summarize the board minutes for [email]")
    builder.set_output("Minutes summarized.")
    builder.set_labels({"environment": "staging"})
    trace = services.traces.finalize(builder.finalize())
    services.budgets.record_spend("acme", trace.usage.total_cost, trace_id=trace.id)
    return trace.id


def test_governed_lifecycle(services: GovernanceServices, workspace_root: Path) -> None:
    registry = services.registry
    registry.publish(
        {
            "name": "summarizer",
            "version": "1.0.0",
            "description": "Summarize documents",
            "instructions": "Summarize the input in three bullet points.",
            "permissions": {"tools": ["read_file"], "filesystem": "read"},
        },
        author="alice",
    )
    assert registry.get("summarizer") is None
    for state in (SkillState.TESTED, SkillState.APPROVED, SkillState.ACTIVE):
        registry.promote("summarizer", "1.0.0", state, actor="alice")
    active = registry.get("summarizer")
    assert active is not None
    assert active.state is SkillState.ACTIVE

    v1 = services.versions.snapshot("ws-1", message="initial", actor="alice")
    services.environments.initialize_standard_environments("ws-1", v1.hash, actor="alice")
    pin_recipe = {"skill_pins": {"summarizer": "1.0.0"}, "model_pin": "gpt-4o-mini"}
    services.pins.pin("ws-1", v1.hash, environment="dev", **pin_recipe)

    (workspace_root / "SOUL.md").write_text("Be helpful and concise.", encoding="utf-8")
    v2 = services.versions.snapshot("ws-1", message="tighten tone", actor="alice")
    services.environments.upsert("ws-1", "dev", version_hash=v2.hash)
    services.pins.pin("ws-1", v2.hash, environment="dev", **pin_recipe)

    first = services.promotion.execute("ws-1", "dev", actor="alice", role=Role.RELEASE_MANAGER)
    assert first.success
    assert first.report.impact is not None
    assert first.report.impact.diff.modified == ("SOUL.md",)
    staging = services.environments.get("ws-1", "staging")
    assert staging is not None and staging.version_hash == v2.hash

    services.budgets.set_budget("acme", limit_usd=5.0)
    trace_id = _record_trace(services, v2.hash)
    budget = services.budgets.require_budget("acme")
    assert budget.spent_usd == pytest.approx(0.002)

    detail = services.ops.trace_detail("acme", trace_id, Role.VIEWER)
    assert detail.input_message == SENSITIVE_CONTENT_PLACEHOLDER
    assert detail.summary.environment == "staging"
    assert detail.skill_states == {"summarizer": "active"}
    assert detail.redaction_info.types_detected == ("email",)
    assert not detail.summary.deprecated_skill_used

    registry.promote("summarizer", "1.0.0", SkillState.DEPRECATED, actor="alice")
    with pytest.raises(PromotionBlockedError) as excinfo:
        services.promotion.execute("ws-1", "staging", actor="bob", role=Role.RELEASE_MANAGER)
    assert excinfo.value.failed_checks == ("target_unlocked", "deprecated_skills")

    services.environments.unlock("ws-1", "prod", actor="root")
    forced = services.promotion.execute(
        "ws-1",
        "staging",
        actor="bob",
        role=Role.RELEASE_MANAGER,
        override=("business_deadline", "Launch review signed off by the product owner"),
    )
    assert forced.success
    assert forced.override_used
    overrides = services.audit.query("ws-1", event_type=AuditEventType.OPS_OVERRIDE_USED)
    assert overrides.total == 1
    prod_pin = services.pins.get("ws-1", "prod")
    assert prod_pin is not None and prod_pin.skill_pins == {"summarizer": "1.0.0"}

    summary = services.ops.trace_detail("acme", trace_id, Role.ADMIN).summary
    assert summary.deprecated_skill_used

    services.versions.rollback("ws-1", v1.hash, actor="carol", role=Role.RELEASE_MANAGER)
    assert (workspace_root / "SOUL.md").read_text(encoding="utf-8") == "Be helpful."
    assert services.versions.diff_from_current(v1.hash).has_changes is False

    services.retention.set_policy("acme", retention_days=1, actor="carol")
    result = services.retention.enforce_policy(
        "acme", datetime.now(UTC) + timedelta(days=30), actor="carol"
    )
    assert result.deleted == 1
    assert services.traces.get(trace_id) is None
    enforced = services.audit.query("acme", event_type=AuditEventType.RETENTION_ENFORCED)
    assert enforced.total == 1
