"""
agent-governance — ops views

File: src/agent_governance/ops/views.py

Purpose
- Read-only operator projections over traces, skills and spend.

Functional requirements
- Redaction is applied at read time by role: below admin, input and output
  messages are replaced with a placeholder, step payloads are reduced to
  ``{type, withheld}``, and the raw trace is omitted.
- Trace reads are tenant scoped and require ``trace:view``.
- List endpoints cap page size at ``MAX_PAGE_SIZE``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from agent_governance.constants import DEFAULT_PAGE_SIZE
from agent_governance.domain.enums import SkillState
from agent_governance.governance.permissions import (
    Permission,
    Role,
    is_role_at_least,
    parse_role,
    require_permission,
)
from agent_governance.governance.pricing import round_usd
from agent_governance.governance.risk import (
    DEFAULT_HIGH_RISK_THRESHOLD,
    SKILL_STATE_RISK,
    RiskInput,
    calculate_risk_score,
)
from agent_governance.persistence.repository import (
    JSONValue,
    Page,
    as_non_empty_str,
    row_float,
    row_int,
    row_text,
)
from agent_governance.persistence.state_db import StateDB
from agent_governance.skills.registry import SkillRegistry
from agent_governance.tracing.annotations import TraceAnnotation, TraceAnnotations, project_annotations
from agent_governance.tracing.redaction import RedactionInfo
from agent_governance.tracing.store import SkillUsage, TraceStore
from agent_governance.tracing.trace import AgentTrace, StepType, TraceStep

MAX_PAGE_SIZE: Final[int] = 200
SENSITIVE_CONTENT_PLACEHOLDER: Final[str] = "[Sensitive content withheld]"
UNKNOWN_ENVIRONMENT: Final[str] = "unknown"
RISK_DASHBOARD_SAMPLE: Final[int] = 200
RECENT_HIGH_RISK_LIMIT: Final[int] = 20

# Marker fragments written by the prompt redactor, per detected type.
REDACTION_MARKERS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("email", ("[email]", "email redacted")),
    ("ssn", ("[ssn]", "ssn redacted")),
    ("phone", ("[phone]", "phone redacted")),
    ("address", ("[address]", "address redacted")),
    ("credit_card", ("[credit_card]", "card redacted")),
    ("name", ("[name]", "name redacted")),
    ("ip_address", ("[ip_address]",)),
    ("api_key", ("[api_key]",)),
    ("jwt", ("[jwt]",)),
    ("password_field", ("[password_field]",)),
    ("other", ("[redacted]", "[hash:")),
)
_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\[(?:HASH:[0-9a-f]+|[\w_]+)\]")


@dataclass(frozen=True, slots=True)
class TraceRisk:
    score: int
    level: str
    factors: tuple[str, ...]

    def to_dict(self) -> dict[str, JSONValue]:
        return {"score": self.score, "level": self.level, "factors": list(self.factors)}


@dataclass(frozen=True, slots=True)
class LinkedId:
    value: str | None
    url: str | None

    def to_dict(self) -> dict[str, JSONValue]:
        return {"value": self.value, "url": self.url}


@dataclass(frozen=True, slots=True)
class PermissionDenial:
    tool_name: str
    reason: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {"tool_name": self.tool_name, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class TraceSummaryView:
    id: str
    tenant_id: str
    workspace_id: str
    agent_role: str | None
    environment: str
    started_at: str
    completed_at: str | None
    duration_ms: int | None
    status: str
    model: str
    provider: str
    cost: float
    input_tokens: int
    output_tokens: int
    risk: TraceRisk
    deprecated_skill_used: bool
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workspace_id": self.workspace_id,
            "agent_role": self.agent_role,
            "environment": self.environment,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "model": self.model,
            "provider": self.provider,
            "cost": self.cost,
            "tokens": {"input": self.input_tokens, "output": self.output_tokens},
            "risk": self.risk.to_dict(),
            "deprecated_skill_used": self.deprecated_skill_used,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
        }


@dataclass(frozen=True, slots=True)
class TraceDetailView:
    summary: TraceSummaryView
    input_message: str
    message_history: int
    output: dict[str, JSONValue] | None
    steps: tuple[dict[str, JSONValue], ...]
    skill_versions: dict[str, str]
    skill_states: dict[str, str]
    redaction_applied: bool
    permission_denials: tuple[PermissionDenial, ...]
    redaction_info: RedactionInfo
    linked_ids: dict[str, LinkedId]
    raw_trace: AgentTrace | None

    @property
    def id(self) -> str:
        return self.summary.id

    def to_dict(self) -> dict[str, JSONValue]:
        payload = self.summary.to_dict()
        payload.update(
            {
                "input": {"message": self.input_message, "message_history": self.message_history},
                "output": self.output,
                "steps": list(self.steps),
                "skill_versions": dict(self.skill_versions),
                "skill_states": dict(self.skill_states),
                "governance_signals": {
                    "redaction_applied": self.redaction_applied,
                    "permission_denials": [item.to_dict() for item in self.permission_denials],
                },
                "redaction_info": self.redaction_info.to_dict(),
                "linked_ids": {key: link.to_dict() for key, link in self.linked_ids.items()},
                "raw_trace": None if self.raw_trace is None else self.raw_trace.to_dict(),
            }
        )
        return payload


@dataclass(frozen=True, slots=True)
class SkillPermissionDiff:
    name: str
    version: str
    previous_version: str | None
    added: tuple[str, ...]
    removed: tuple[str, ...]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "version": self.version,
            "previous_version": self.previous_version,
            "added": list(self.added),
            "removed": list(self.removed),
        }


def derive_environment(trace: AgentTrace) -> str:
    return trace.labels.get("environment") or trace.labels.get("env") or UNKNOWN_ENVIRONMENT


def tool_names(steps: Sequence[TraceStep]) -> tuple[str, ...]:
    names: list[str] = []
    for step in steps:
        if step.type is not StepType.TOOL_CALL:
            continue
        name = step.data.get("tool_name")
        if isinstance(name, str) and name:
            names.append(name)
    return tuple(names)


def permission_denials(steps: Sequence[TraceStep]) -> tuple[PermissionDenial, ...]:
    denials: list[PermissionDenial] = []
    for step in steps:
        if step.type is not StepType.TOOL_CALL or step.data.get("permitted") is not False:
            continue
        name = step.data.get("tool_name")
        reason = step.data.get("permission_reason")
        denials.append(
            PermissionDenial(
                tool_name=name if isinstance(name, str) else "unknown",
                reason=reason if isinstance(reason, str) else None,
            )
        )
    return tuple(denials)


def riskiest_state(states: Mapping[str, str]) -> str | None:
    """The skill state contributing the most maturity risk, if any skill was resolved."""

    best: str | None = None
    best_score = -1
    for value in states.values():
        try:
            score = SKILL_STATE_RISK[SkillState(value)]
        except ValueError:
            continue
        if score > best_score:
            best, best_score = value, score
    return best


def compute_trace_risk(trace: AgentTrace, skill_states: Mapping[str, str]) -> TraceRisk:
    names = tool_names(trace.steps)
    score = calculate_risk_score(
        RiskInput(
            tool_count=len(names),
            tool_names=names,
            skill_state=riskiest_state(skill_states),
            model=trace.model,
        )
    )
    return TraceRisk(score=score.score, level=score.level.value, factors=score.risk_factors)


def detect_redaction_types(redacted_prompt: str | None) -> tuple[str, ...]:
    if not redacted_prompt:
        return ()
    lowered = redacted_prompt.lower()
    return tuple(
        kind for kind, markers in REDACTION_MARKERS if any(marker in lowered for marker in markers)
    )


def count_redactions(redacted_prompt: str | None) -> int:
    if not redacted_prompt:
        return 0
    return len(_PLACEHOLDER_RE.findall(redacted_prompt))


def build_deep_link(template: str | None, identifier: str | None) -> str | None:
    if not template or not identifier:
        return None
    return template.replace("{id}", identifier)


def withhold_step(step: TraceStep, *, reveal: bool) -> dict[str, JSONValue]:
    data: JSONValue = step.data if reveal else {"type": step.type.value, "withheld": True}
    return {
        "type": step.type.value,
        "timestamp": step.timestamp,
        "duration_ms": step.duration_ms,
        "data": data,
    }


class OpsViews:
    """Role-aware read projections for operators."""

    def __init__(
        self,
        db: StateDB,
        store: TraceStore,
        annotations: TraceAnnotations,
        registry: SkillRegistry,
        *,
        deep_links: Mapping[str, str] | None = None,
        high_risk_threshold: int = DEFAULT_HIGH_RISK_THRESHOLD,
        logger: Any | None = None,
    ) -> None:
        self._db = db
        self._store = store
        self._annotations = annotations
        self._registry = registry
        self._deep_links = dict(deep_links or {})
        self._high_risk_threshold = high_risk_threshold
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def skill_states(self, skill_versions: Mapping[str, str]) -> dict[str, str]:
        states: dict[str, str] = {}
        for name, version in skill_versions.items():
            record = self._registry.get_any_state(name, version)
            if record is not None:
                states[name] = record.state.value
        return states

    def summarize(
        self,
        trace: AgentTrace,
        annotations: Sequence[TraceAnnotation] = (),
        *,
        skill_states: Mapping[str, str] | None = None,
    ) -> TraceSummaryView:
        states = self.skill_states(trace.skill_versions) if skill_states is None else skill_states
        return TraceSummaryView(
            id=trace.id,
            tenant_id=trace.tenant_id,
            workspace_id=trace.workspace_id,
            agent_role=trace.agent_role,
            environment=derive_environment(trace),
            started_at=trace.started_at,
            completed_at=trace.completed_at,
            duration_ms=trace.duration_ms,
            status=trace.status.value,
            model=trace.model,
            provider=trace.provider,
            cost=trace.usage.total_cost,
            input_tokens=trace.usage.input_tokens,
            output_tokens=trace.usage.output_tokens,
            risk=compute_trace_risk(trace, states),
            deprecated_skill_used=SkillState.DEPRECATED.value in states.values(),
            labels=dict(trace.labels),
            annotations=project_annotations(annotations),
        )

    def detail(
        self,
        trace: AgentTrace,
        annotations: Sequence[TraceAnnotation] = (),
        *,
        role: Role | str = Role.VIEWER,
    ) -> TraceDetailView:
        reveal = is_role_at_least(parse_role(role), Role.ADMIN)
        states = self.skill_states(trace.skill_versions)

        output: dict[str, JSONValue] | None = None
        if trace.output is not None:
            output = {
                "message": trace.output.message if reveal else SENSITIVE_CONTENT_PLACEHOLDER,
                "tool_calls": [
                    {
                        "id": call.id,
                        "name": call.name,
                        "duration_ms": call.duration_ms,
                        "permitted": call.permitted,
                        "success": call.success,
                    }
                    for call in trace.output.tool_calls
                ],
            }

        return TraceDetailView(
            summary=self.summarize(trace, annotations, skill_states=states),
            input_message=trace.input.message if reveal else SENSITIVE_CONTENT_PLACEHOLDER,
            message_history=trace.input.message_history,
            output=output,
            steps=tuple(withhold_step(step, reveal=reveal) for step in trace.steps),
            skill_versions=dict(trace.skill_versions),
            skill_states=states,
            redaction_applied=bool(trace.redacted_prompt),
            permission_denials=permission_denials(trace.steps),
            redaction_info=RedactionInfo(
                applied=bool(trace.redacted_prompt),
                types_detected=detect_redaction_types(trace.redacted_prompt),
                count=count_redactions(trace.redacted_prompt),
            ),
            linked_ids={
                "task_id": self._link("task", trace.task_id),
                "document_id": self._link("document", trace.document_id),
                "message_id": self._link("message", trace.message_id),
            },
            raw_trace=trace if reveal else None,
        )

    def list_traces(
        self,
        tenant_id: str,
        role: Role | str,
        *,
        workspace_id: str | None = None,
        agent_role: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[TraceSummaryView]:
        require_permission(role, Permission.TRACE_VIEW)
        page = self._store.list(
            tenant_id,
            workspace_id=workspace_id,
            agent_role=agent_role,
            limit=min(limit, MAX_PAGE_SIZE),
            offset=offset,
        )
        return Page(
            items=tuple(
                self.summarize(trace, self._annotations.get_for_trace(trace.id)) for trace in page.items
            ),
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )

    def trace_detail(self, tenant_id: str, trace_id: str, role: Role | str) -> TraceDetailView:
        require_permission(role, Permission.TRACE_VIEW)
        trace = self._store.get_for_tenant(tenant_id, trace_id)
        view = self.detail(trace, self._annotations.get_for_trace(trace.id), role=role)
        self._logger.debug(
            "trace_detail_viewed",
            tenant_id=tenant_id,
            trace_id=trace.id,
            role=str(role),
            redacted=view.raw_trace is None,
        )
        return view

    def cost_dashboard(self, tenant_id: str) -> dict[str, JSONValue]:
        """Spend per day (last 30 days with traffic), top workspaces and top skills."""

        tenant = as_non_empty_str(tenant_id, "tenant_id")
        daily = self._db.query_all(
            """
            SELECT substr(started_at, 1, 10) AS day,
                   COALESCE(SUM(total_cost), 0) AS total_cost,
                   COUNT(*) AS trace_count
            FROM traces WHERE tenant_id = ?
            GROUP BY day ORDER BY day DESC LIMIT 30
            """,
            (tenant,),
        )
        by_workspace = self._db.query_all(
            """
            SELECT workspace_id,
                   COALESCE(SUM(total_cost), 0) AS total_cost,
                   COUNT(*) AS trace_count
            FROM traces WHERE tenant_id = ?
            GROUP BY workspace_id ORDER BY total_cost DESC, workspace_id LIMIT 20
            """,
            (tenant,),
        )
        by_skill = self._db.query_all(
            """
            SELECT s.key AS skill_name,
                   COALESCE(SUM(traces.total_cost), 0) AS total_cost,
                   COUNT(*) AS trace_count
            FROM traces, json_each(traces.skill_versions_json) AS s
            WHERE traces.tenant_id = ?
            GROUP BY s.key ORDER BY total_cost DESC, skill_name LIMIT 20
            """,
            (tenant,),
        )
        return {
            "daily": [
                {
                    "day": row_text(row, "day", "traces.started_at"),
                    "total_cost": round_usd(row_float(row, "total_cost")),
                    "trace_count": row_int(row, "trace_count"),
                }
                for row in daily
            ],
            "by_workspace": [
                {
                    "workspace_id": row_text(row, "workspace_id", "traces.workspace_id"),
                    "total_cost": round_usd(row_float(row, "total_cost")),
                    "trace_count": row_int(row, "trace_count"),
                }
                for row in by_workspace
            ],
            "by_skill": [
                {
                    "skill_name": row_text(row, "skill_name", "traces.skill_versions_json"),
                    "total_cost": round_usd(row_float(row, "total_cost")),
                    "trace_count": row_int(row, "trace_count"),
                }
                for row in by_skill
            ],
        }

    def risk_dashboard(self, tenant_id: str) -> dict[str, JSONValue]:
        """Risk level counts over the most recent traces and ids at or above the high-risk threshold."""

        page = self._store.list(tenant_id, limit=RISK_DASHBOARD_SAMPLE, offset=0)
        levels: dict[str, int] = {}
        recent_high_risk: list[str] = []
        for trace in page.items:
            risk = compute_trace_risk(trace, self.skill_states(trace.skill_versions))
            levels[risk.level] = levels.get(risk.level, 0) + 1
            if risk.score >= self._high_risk_threshold:
                recent_high_risk.append(trace.id)
        return {
            "levels": dict(sorted(levels.items())),
            "recent_high_risk": list(recent_high_risk[:RECENT_HIGH_RISK_LIMIT]),
        }

    def skill_usage_stats(self, tenant_id: str | None = None) -> dict[str, SkillUsage]:
        return self._store.skill_usage(tenant_id)

    def skill_environment_usage(self) -> dict[str, tuple[str, ...]]:
        """Environments in which each skill is pinned, across all workspaces."""

        rows = self._db.query_all(
            """
            SELECT DISTINCT s.key AS skill_name, workspace_pins.environment AS environment
            FROM workspace_pins, json_each(workspace_pins.skill_pins_json) AS s
            ORDER BY skill_name, environment
            """
        )
        usage: dict[str, list[str]] = {}
        for row in rows:
            name = row_text(row, "skill_name", "workspace_pins.skill_pins_json")
            usage.setdefault(name, []).append(row_text(row, "environment", "workspace_pins.environment"))
        return {name: tuple(envs) for name, envs in usage.items()}

    def permission_diff(self, name: str, version: str) -> SkillPermissionDiff:
        """Tools added and removed relative to the next-lower published version."""

        versions = self._registry.list_versions(name)
        previous_version: str | None = None
        if version in versions:
            index = versions.index(version)
            if index + 1 < len(versions):
                previous_version = versions[index + 1]

        current = self._registry.get_any_state(name, version)
        previous = None if previous_version is None else self._registry.get_any_state(name, previous_version)
        current_tools = () if current is None else current.manifest.permissions.tools
        previous_tools = () if previous is None else previous.manifest.permissions.tools
        return SkillPermissionDiff(
            name=name,
            version=version,
            previous_version=previous_version,
            added=tuple(tool for tool in current_tools if tool not in previous_tools),
            removed=tuple(tool for tool in previous_tools if tool not in current_tools),
        )

    def _link(self, kind: str, identifier: str | None) -> LinkedId:
        return LinkedId(value=identifier, url=build_deep_link(self._deep_links.get(kind), identifier))


__all__ = [
    "MAX_PAGE_SIZE",
    "SENSITIVE_CONTENT_PLACEHOLDER",
    "LinkedId",
    "OpsViews",
    "PermissionDenial",
    "RedactionInfo",
    "SkillPermissionDiff",
    "TraceDetailView",
    "TraceRisk",
    "TraceSummaryView",
    "build_deep_link",
    "compute_trace_risk",
    "count_redactions",
    "derive_environment",
    "detect_redaction_types",
    "permission_denials",
]
