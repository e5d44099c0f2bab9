"""
agent-governance — service container

File: src/agent_governance/services.py

Purpose
- Construct one instance of every governance service over a single state DB.

Functional requirements
- Every mutating service receives the same ``AuditLog``.
- Values from the effective config (budgets, retention, promotion, redaction,
  ops deep links) are passed to constructors; no service reads config on its own.
- No module-level singletons: callers hold the container.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from agent_governance.config import default_config
from agent_governance.governance.audit import AuditLog
from agent_governance.governance.budgets import BudgetManager
from agent_governance.ops.promotion import PromotionChecker
from agent_governance.ops.views import OpsViews
from agent_governance.persistence.state_db import StateDB
from agent_governance.skills.registry import SkillRegistry
from agent_governance.tracing.annotations import TraceAnnotations
from agent_governance.tracing.redaction import Redactor, redactor_from_config
from agent_governance.tracing.retention import RetentionEngine
from agent_governance.tracing.store import TraceStore
from agent_governance.workspace.environments import WorkspaceEnvironments
from agent_governance.workspace.impact import ImpactAnalyzer
from agent_governance.workspace.pins import WorkspacePins
from agent_governance.workspace.versions import WorkspaceVersioning


@dataclass(frozen=True, slots=True)
class GovernanceServices:
    db: StateDB
    audit: AuditLog
    registry: SkillRegistry
    budgets: BudgetManager
    redactor: Redactor | None
    traces: TraceStore
    annotations: TraceAnnotations
    retention: RetentionEngine
    versions: WorkspaceVersioning
    pins: WorkspacePins
    environments: WorkspaceEnvironments
    impact: ImpactAnalyzer
    promotion: PromotionChecker
    ops: OpsViews


def build_services(config: Mapping[str, Any] | None = None) -> GovernanceServices:
    """Open the configured database and wire every service over it."""

    effective: Mapping[str, Any] = config if config is not None else default_config()
    database = effective["database"]
    db = StateDB(database["path"], busy_timeout_ms=int(database["busy_timeout_ms"]))
    return build_services_from_db(db, config=effective)


def build_services_from_db(
    db: StateDB,
    *,
    config: Mapping[str, Any] | None = None,
    workspace_root: str | Path | None = None,
    clock: Callable[[], datetime] | None = None,
) -> GovernanceServices:
    effective: Mapping[str, Any] = config if config is not None else default_config()
    budgets_cfg = effective["budgets"]
    retention_cfg = effective["retention"]
    promotion_cfg = effective["promotion"]
    root = Path(workspace_root if workspace_root is not None else effective["workspace"]["root"])

    db.ensure_migrated()
    audit = AuditLog(db)
    registry = SkillRegistry(db, audit)
    budgets = BudgetManager(
        db,
        audit,
        alert_threshold=float(budgets_cfg["alert_threshold"]),
        hard_limit=bool(budgets_cfg["hard_limit"]),
        default_max_output_tokens=int(budgets_cfg["default_max_output_tokens"]),
        clock=clock,
    )
    redactor = redactor_from_config(effective["redaction"])
    traces = TraceStore(db, audit, redactor=redactor)
    annotations = TraceAnnotations(db)
    retention = RetentionEngine(
        db,
        audit,
        traces,
        default_days=int(retention_cfg["default_days"]),
        sample_rate=float(retention_cfg["sample_rate"]),
        clock=clock,
    )
    versions = WorkspaceVersioning(db, audit, root, clock=clock)
    pins = WorkspacePins(db, audit, clock=clock)
    environments = WorkspaceEnvironments(db, audit, clock=clock)
    impact = ImpactAnalyzer(
        versions,
        registry,
        prompt_growth_warning_percent=float(promotion_cfg["cost_change_threshold_percent"]),
    )
    promotion = PromotionChecker(
        environments,
        pins,
        registry,
        budgets,
        impact,
        audit,
        default_model=str(promotion_cfg["default_model"]),
    )
    ops = OpsViews(
        db,
        traces,
        annotations,
        registry,
        deep_links=dict(effective["ops"]["deep_links"]),
        high_risk_threshold=int(effective["risk"]["high_risk_threshold"]),
    )

    structlog.get_logger(__name__).debug(
        "governance_services_ready", db_path=db.path.as_posix(), workspace_root=root.as_posix()
    )
    return GovernanceServices(
        db=db,
        audit=audit,
        registry=registry,
        budgets=budgets,
        redactor=redactor,
        traces=traces,
        annotations=annotations,
        retention=retention,
        versions=versions,
        pins=pins,
        environments=environments,
        impact=impact,
        promotion=promotion,
        ops=ops,
    )


__all__ = ["GovernanceServices", "build_services", "build_services_from_db"]
