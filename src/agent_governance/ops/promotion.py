"""
agent-governance — promotion checker

File: src/agent_governance/ops/promotion.py

Purpose
- Gate environment promotion behind an ordered set of governance checks.

Functional requirements
- Checks always run in the same order and every check is always reported:
  source_env_exists, target_unlocked, workspace_pinned, deprecated_skills,
  impact_reviewed, cost_forecast.
- ``blocked`` is true iff any check failed. An override never changes a check
  result; it only lets ``execute`` proceed past a blocked report.
- An accepted override writes exactly one ``ops_override_used`` entry before
  the promotion runs; the promotion itself writes one ``workspace_change``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final

import structlog

from agent_governance.domain.enums import SkillState
from agent_governance.errors import NotFoundError, PromotionBlockedError, ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.governance.budgets import BudgetManager, CostForecast
from agent_governance.governance.overrides import OverrideRequest, coerce_override, record_override
from agent_governance.governance.permissions import Permission, require_permission
from agent_governance.persistence.repository import JSONValue, as_non_empty_str, as_optional_str
from agent_governance.skills.registry import SkillRegistry
from agent_governance.workspace.environments import (
    PromotionResult,
    WorkspaceEnvironments,
    promotion_target,
)
from agent_governance.workspace.impact import ImpactAnalysis, ImpactAnalyzer
from agent_governance.workspace.pins import WorkspacePins

DEFAULT_PROMOTION_MODEL: Final[str] = "gpt-4o-mini"
FORECAST_MAX_OUTPUT_TOKENS: Final[int] = 1000


class PromotionCheckName(StrEnum):
    SOURCE_ENV_EXISTS = "source_env_exists"
    TARGET_UNLOCKED = "target_unlocked"
    WORKSPACE_PINNED = "workspace_pinned"
    DEPRECATED_SKILLS = "deprecated_skills"
    IMPACT_REVIEWED = "impact_reviewed"
    COST_FORECAST = "cost_forecast"


CHECK_ORDER: Final[tuple[PromotionCheckName, ...]] = tuple(PromotionCheckName)


@dataclass(frozen=True, slots=True)
class PromotionCheck:
    name: PromotionCheckName
    passed: bool
    details: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {"name": self.name.value, "passed": self.passed, "details": self.details}


@dataclass(frozen=True, slots=True)
class PromotionReport:
    workspace_id: str
    source_env: str
    target_env: str
    checks: tuple[PromotionCheck, ...]
    impact: ImpactAnalysis | None = None
    cost_forecast: CostForecast | None = None
    deprecated_skills: tuple[str, ...] = ()

    @property
    def blocked(self) -> bool:
        return any(not check.passed for check in self.checks)

    @property
    def failed_checks(self) -> tuple[str, ...]:
        return tuple(check.name.value for check in self.checks if not check.passed)

    def check(self, name: PromotionCheckName | str) -> PromotionCheck:
        wanted = PromotionCheckName(name)
        for item in self.checks:
            if item.name is wanted:
                return item
        raise KeyError(wanted.value)

    def to_dict(self) -> dict[str, JSONValue]:
        forecast: JSONValue = None
        if self.cost_forecast is not None:
            remaining = self.cost_forecast.remaining_budget
            forecast = {
                "estimated_cost": self.cost_forecast.estimated_cost,
                "budget_remaining": remaining if math.isfinite(remaining) else None,
                "would_exceed_budget": self.cost_forecast.would_exceed_budget,
                "warning": self.cost_forecast.warning,
            }
        return {
            "workspace_id": self.workspace_id,
            "source_env": self.source_env,
            "target_env": self.target_env,
            "blocked": self.blocked,
            "checks": [check.to_dict() for check in self.checks],
            "impact": None if self.impact is None else self.impact.to_dict(),
            "cost_forecast": forecast,
            "deprecated_skills": list(self.deprecated_skills),
        }


@dataclass(frozen=True, slots=True)
class PromotionExecution:
    report: PromotionReport
    result: PromotionResult
    override_used: bool
    override_entry_id: str | None = None

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "success": self.success,
            "override_used": self.override_used,
            "override_entry_id": self.override_entry_id,
            "result": self.result.to_dict(),
            "report": self.report.to_dict(),
        }


class PromotionChecker:
    """Runs promotion checks and executes gated promotions."""

    def __init__(
        self,
        environments: WorkspaceEnvironments,
        pins: WorkspacePins,
        registry: SkillRegistry,
        budgets: BudgetManager,
        analyzer: ImpactAnalyzer,
        audit: AuditLog,
        *,
        default_model: str = DEFAULT_PROMOTION_MODEL,
        logger: Any | None = None,
    ) -> None:
        self._environments = environments
        self._pins = pins
        self._registry = registry
        self._budgets = budgets
        self._analyzer = analyzer
        self._audit = audit
        self._default_model = as_non_empty_str(default_model, "default_model")
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run_checks(
        self,
        workspace_id: str,
        source_env: str,
        target_env: str | None = None,
        *,
        tenant_id: str | None = None,
    ) -> PromotionReport:
        workspace = as_non_empty_str(workspace_id, "workspace_id")
        source_name = as_non_empty_str(source_env, "source_env")
        target_name = _resolve_target(source_name, target_env)
        budget_tenant = as_optional_str(tenant_id, "tenant_id") or workspace

        checks: list[PromotionCheck] = []
        source = self._environments.get(workspace, source_name)
        target = self._environments.get(workspace, target_name)

        if source is None:
            checks.append(
                _failed(PromotionCheckName.SOURCE_ENV_EXISTS, f"Source environment {source_name} not found")
            )
        elif source.version_hash is None:
            checks.append(
                _failed(
                    PromotionCheckName.SOURCE_ENV_EXISTS,
                    f"Source environment {source_name} has no version pinned",
                )
            )
        else:
            checks.append(_passed(PromotionCheckName.SOURCE_ENV_EXISTS, source.version_hash))

        if target is not None and target.locked:
            checks.append(
                _failed(PromotionCheckName.TARGET_UNLOCKED, f"Target environment {target_name} is locked")
            )
        else:
            checks.append(_passed(PromotionCheckName.TARGET_UNLOCKED))

        source_pin = self._pins.get(workspace, source_name)
        if source_pin is None:
            checks.append(
                _failed(PromotionCheckName.WORKSPACE_PINNED, "Workspace not pinned in source environment")
            )
        else:
            checks.append(_passed(PromotionCheckName.WORKSPACE_PINNED))

        deprecated: list[str] = []
        if source_pin is not None:
            for skill_name, version in sorted(source_pin.skill_pins.items()):
                record = self._registry.get_any_state(skill_name, version)
                if record is not None and record.state is SkillState.DEPRECATED:
                    deprecated.append(f"{skill_name}@{version}")
        if deprecated:
            checks.append(
                _failed(PromotionCheckName.DEPRECATED_SKILLS, f"{len(deprecated)} deprecated skill(s)")
            )
        else:
            checks.append(_passed(PromotionCheckName.DEPRECATED_SKILLS))

        impact: ImpactAnalysis | None = None
        source_hash = None if source is None else source.version_hash
        target_hash = None if target is None else target.version_hash
        if source_hash is not None and target_hash is not None:
            try:
                impact = self._analyzer.analyze(target_hash, source_hash)
            except NotFoundError as exc:
                checks.append(
                    _failed(PromotionCheckName.IMPACT_REVIEWED, f"Impact analysis unavailable: {exc}")
                )
            else:
                checks.append(
                    _passed(PromotionCheckName.IMPACT_REVIEWED, f"Files changed: {impact.files_changed}")
                )
        else:
            checks.append(
                _failed(
                    PromotionCheckName.IMPACT_REVIEWED,
                    "Impact analysis requires both source and target versions",
                )
            )

        forecast: CostForecast | None = None
        if impact is not None:
            model = self._default_model
            provider = None
            if source_pin is not None:
                model = source_pin.model_pin or self._default_model
                provider = source_pin.provider_pin
            forecast = self._budgets.forecast_cost(
                budget_tenant,
                prompt_size=impact.prompt_impact.new_size,
                model=model,
                max_output_tokens=FORECAST_MAX_OUTPUT_TOKENS,
                provider=provider,
            )
            checks.append(
                PromotionCheck(
                    name=PromotionCheckName.COST_FORECAST,
                    passed=not forecast.would_exceed_budget,
                    details=forecast.warning,
                )
            )
        else:
            checks.append(
                _failed(
                    PromotionCheckName.COST_FORECAST, "Cost forecast unavailable without impact analysis"
                )
            )

        report = PromotionReport(
            workspace_id=workspace,
            source_env=source_name,
            target_env=target_name,
            checks=tuple(checks),
            impact=impact,
            cost_forecast=forecast,
            deprecated_skills=tuple(deprecated),
        )
        self._logger.info(
            "promotion_checks_completed",
            workspace_id=workspace,
            source_env=source_name,
            target_env=target_name,
            blocked=report.blocked,
            failed_checks=list(report.failed_checks),
        )
        return report

    def execute(
        self,
        workspace_id: str,
        source_env: str,
        target_env: str | None = None,
        *,
        actor: str,
        role: str,
        override: OverrideRequest | tuple[str, str] | None = None,
        annotation: str | None = None,
        tenant_id: str | None = None,
    ) -> PromotionExecution:
        """
        Promote ``source_env`` into ``target_env`` when checks pass or an override is given.

        Failed preconditions detected by the environment store (for example a
        target locked between the check and the write) are reported through
        ``PromotionExecution.result`` rather than raised.
        """

        require_permission(role, Permission.WORKSPACE_PROMOTE)
        request = coerce_override(override)
        if request is not None:
            require_permission(role, Permission.OVERRIDE_USE)
        actor_name = as_non_empty_str(actor, "actor")
        note = as_optional_str(annotation, "annotation")

        report = self.run_checks(workspace_id, source_env, target_env, tenant_id=tenant_id)
        if report.blocked and request is None:
            self._logger.warning(
                "promotion_blocked",
                workspace_id=report.workspace_id,
                source_env=report.source_env,
                target_env=report.target_env,
                failed_checks=list(report.failed_checks),
            )
            raise PromotionBlockedError(report, report.failed_checks)

        override_entry_id: str | None = None
        if request is not None:
            entry = record_override(
                self._audit,
                request,
                tenant_id=tenant_id or report.workspace_id,
                actor=actor_name,
                role=str(role),
                action=Permission.WORKSPACE_PROMOTE.value,
                target_id=f"{report.workspace_id}:{report.source_env}->{report.target_env}",
                workspace_id=report.workspace_id,
            )
            override_entry_id = entry.id

        result = self._environments.promote(
            report.workspace_id,
            report.source_env,
            report.target_env,
            actor=actor_name,
            tenant_id=tenant_id,
            audit_data={
                "override_used": request is not None,
                "override_reason": None if request is None else request.reason_code.value,
                "annotation": note,
                "blocked": report.blocked,
                "checks": [check.to_dict() for check in report.checks],
            },
        )
        log = self._logger.info if result.success else self._logger.warning
        log(
            "promotion_executed",
            workspace_id=report.workspace_id,
            source_env=report.source_env,
            target_env=report.target_env,
            success=result.success,
            override_used=request is not None,
            error=result.error,
        )
        return PromotionExecution(
            report=report,
            result=result,
            override_used=request is not None,
            override_entry_id=override_entry_id,
        )


def _resolve_target(source: str, target: str | None) -> str:
    if target is not None:
        return as_non_empty_str(target, "target_env")
    resolved = promotion_target(source)
    if resolved is None:
        raise ValidationError(f"no promotion target for environment: {source}")
    return resolved


def _passed(name: PromotionCheckName, details: str | None = None) -> PromotionCheck:
    return PromotionCheck(name=name, passed=True, details=details)


def _failed(name: PromotionCheckName, details: str) -> PromotionCheck:
    return PromotionCheck(name=name, passed=False, details=details)


__all__ = [
    "CHECK_ORDER",
    "DEFAULT_PROMOTION_MODEL",
    "PromotionCheck",
    "PromotionCheckName",
    "PromotionChecker",
    "PromotionExecution",
    "PromotionReport",
]
