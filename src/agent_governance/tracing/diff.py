"""Structured comparison of two agent traces.

Significance policy (fixed): a change is significant when the model changed,
the workspace hash changed, any skill was added/removed/re-versioned, tool
calls were added or removed, error status changed, the cost moved by more
than the threshold percent, or the output message differs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from agent_governance.persistence.state_db import canonical_json
from agent_governance.tracing.trace import AgentTrace, StepType, ToolCallTrace

DEFAULT_COST_THRESHOLD_PERCENT: Final[float] = 20.0

SIGNIFICANT_MODEL: Final[str] = "Model changed"
SIGNIFICANT_WORKSPACE: Final[str] = "Workspace changed"
SIGNIFICANT_SKILLS: Final[str] = "Skill versions changed"
SIGNIFICANT_TOOLS: Final[str] = "Tool calls differ"
SIGNIFICANT_ERROR: Final[str] = "Error status changed"
SIGNIFICANT_COST: Final[str] = "Cost changed significantly"
SIGNIFICANT_OUTPUT: Final[str] = "Output message differs"


@dataclass(frozen=True, slots=True)
class SkillVersionChange:
    base: str
    compare: str


@dataclass(frozen=True, slots=True)
class SkillDiff:
    added: dict[str, str]
    removed: dict[str, str]
    changed: dict[str, SkillVersionChange]
    unchanged: dict[str, str]

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)


@dataclass(frozen=True, slots=True)
class ToolCallSummary:
    id: str
    name: str
    success: bool
    duration_ms: int


@dataclass(frozen=True, slots=True)
class ToolCallChange:
    name: str
    base_id: str
    compare_id: str
    arguments_changed: bool
    result_changed: bool
    success_changed: bool
    duration_delta_ms: int


@dataclass(frozen=True, slots=True)
class ToolCallDiff:
    added: tuple[ToolCallSummary, ...]
    removed: tuple[ToolCallSummary, ...]
    changed: tuple[ToolCallChange, ...]
    unchanged: int
    base_count: int
    compare_count: int

    @property
    def count_delta(self) -> int:
        return self.compare_count - self.base_count


@dataclass(frozen=True, slots=True)
class StepDiff:
    base_step_count: int
    compare_step_count: int
    llm_call_count_delta: int
    tool_call_count_delta: int
    error_count_delta: int
    structural_differences: int


@dataclass(frozen=True, slots=True)
class OutputDiff:
    base_has_output: bool
    compare_has_output: bool
    messages_equal: bool
    base_message_length: int | None
    compare_message_length: int | None

    @property
    def message_length_delta(self) -> int | None:
        if self.base_message_length is None or self.compare_message_length is None:
            return None
        return self.compare_message_length - self.base_message_length


@dataclass(frozen=True, slots=True)
class TraceDiff:
    base_id: str
    compare_id: str
    same_tenant: bool
    same_workspace: bool
    same_agent_role: bool
    base_duration_ms: int | None
    compare_duration_ms: int | None
    duration_delta_ms: int | None
    duration_percent_change: float | None
    base_model: str
    compare_model: str
    model_changed: bool
    base_provider: str
    compare_provider: str
    provider_changed: bool
    base_workspace_hash: str | None
    compare_workspace_hash: str | None
    workspace_changed: bool
    skills: SkillDiff
    input_token_delta: int
    output_token_delta: int
    total_token_delta: int
    base_cost: float
    compare_cost: float
    cost_delta: float
    cost_percent_change: float | None
    tool_calls: ToolCallDiff
    steps: StepDiff
    output: OutputDiff
    base_error: str | None
    compare_error: str | None
    significant_changes: tuple[str, ...]

    @property
    def error_changed(self) -> bool:
        return self.base_error != self.compare_error

    @property
    def has_significant_changes(self) -> bool:
        return bool(self.significant_changes)

    def to_dict(self) -> dict[str, object]:
        return {
            "trace_ids": {"base": self.base_id, "compare": self.compare_id},
            "context": {
                "same_tenant": self.same_tenant,
                "same_workspace": self.same_workspace,
                "same_agent_role": self.same_agent_role,
            },
            "timing": {
                "base_duration_ms": self.base_duration_ms,
                "compare_duration_ms": self.compare_duration_ms,
                "delta_ms": self.duration_delta_ms,
                "percent_change": self.duration_percent_change,
            },
            "model": {
                "base_model": self.base_model,
                "compare_model": self.compare_model,
                "model_changed": self.model_changed,
                "base_provider": self.base_provider,
                "compare_provider": self.compare_provider,
                "provider_changed": self.provider_changed,
            },
            "workspace": {
                "base_hash": self.base_workspace_hash,
                "compare_hash": self.compare_workspace_hash,
                "changed": self.workspace_changed,
            },
            "skills": {
                "added": dict(self.skills.added),
                "removed": dict(self.skills.removed),
                "changed": {
                    name: {"base": change.base, "compare": change.compare}
                    for name, change in self.skills.changed.items()
                },
                "unchanged": dict(self.skills.unchanged),
            },
            "usage": {
                "input_token_delta": self.input_token_delta,
                "output_token_delta": self.output_token_delta,
                "total_token_delta": self.total_token_delta,
            },
            "cost": {
                "base_cost": self.base_cost,
                "compare_cost": self.compare_cost,
                "delta": self.cost_delta,
                "percent_change": self.cost_percent_change,
            },
            "tool_calls": {
                "added": [_summary_dict(item) for item in self.tool_calls.added],
                "removed": [_summary_dict(item) for item in self.tool_calls.removed],
                "changed": [
                    {
                        "name": item.name,
                        "base_id": item.base_id,
                        "compare_id": item.compare_id,
                        "arguments_changed": item.arguments_changed,
                        "result_changed": item.result_changed,
                        "success_changed": item.success_changed,
                        "duration_delta_ms": item.duration_delta_ms,
                    }
                    for item in self.tool_calls.changed
                ],
                "unchanged": self.tool_calls.unchanged,
                "base_count": self.tool_calls.base_count,
                "compare_count": self.tool_calls.compare_count,
                "count_delta": self.tool_calls.count_delta,
            },
            "steps": {
                "base_step_count": self.steps.base_step_count,
                "compare_step_count": self.steps.compare_step_count,
                "llm_call_count_delta": self.steps.llm_call_count_delta,
                "tool_call_count_delta": self.steps.tool_call_count_delta,
                "error_count_delta": self.steps.error_count_delta,
                "structural_differences": self.steps.structural_differences,
            },
            "output": {
                "base_has_output": self.output.base_has_output,
                "compare_has_output": self.output.compare_has_output,
                "messages_equal": self.output.messages_equal,
                "message_length_delta": self.output.message_length_delta,
            },
            "errors": {
                "base_error": self.base_error,
                "compare_error": self.compare_error,
                "changed": self.error_changed,
            },
            "significant_changes": list(self.significant_changes),
        }


def diff_traces(
    base: AgentTrace,
    compare: AgentTrace,
    *,
    cost_threshold_percent: float = DEFAULT_COST_THRESHOLD_PERCENT,
) -> TraceDiff:
    skills = diff_skill_versions(base.skill_versions, compare.skill_versions)
    tool_calls = diff_tool_calls(base.tool_calls, compare.tool_calls)
    steps = _diff_steps(base, compare)
    output = _diff_output(base, compare)

    duration_delta: int | None = None
    duration_percent: float | None = None
    if base.duration_ms is not None and compare.duration_ms is not None:
        duration_delta = compare.duration_ms - base.duration_ms
        if base.duration_ms > 0:
            duration_percent = duration_delta / base.duration_ms * 100.0

    base_cost = base.usage.total_cost
    compare_cost = compare.usage.total_cost
    cost_delta = compare_cost - base_cost
    cost_percent = cost_delta / base_cost * 100.0 if base_cost > 0 else None

    significant: list[str] = []
    if base.model != compare.model:
        significant.append(SIGNIFICANT_MODEL)
    if base.workspace_hash != compare.workspace_hash:
        significant.append(SIGNIFICANT_WORKSPACE)
    if skills.has_changes:
        significant.append(SIGNIFICANT_SKILLS)
    if tool_calls.added or tool_calls.removed:
        significant.append(SIGNIFICANT_TOOLS)
    if base.error != compare.error:
        significant.append(SIGNIFICANT_ERROR)
    if cost_percent is not None and abs(cost_percent) > cost_threshold_percent:
        significant.append(SIGNIFICANT_COST)
    if not output.messages_equal:
        significant.append(SIGNIFICANT_OUTPUT)

    return TraceDiff(
        base_id=base.id,
        compare_id=compare.id,
        same_tenant=base.tenant_id == compare.tenant_id,
        same_workspace=base.workspace_id == compare.workspace_id,
        same_agent_role=base.agent_role == compare.agent_role,
        base_duration_ms=base.duration_ms,
        compare_duration_ms=compare.duration_ms,
        duration_delta_ms=duration_delta,
        duration_percent_change=duration_percent,
        base_model=base.model,
        compare_model=compare.model,
        model_changed=base.model != compare.model,
        base_provider=base.provider,
        compare_provider=compare.provider,
        provider_changed=base.provider != compare.provider,
        base_workspace_hash=base.workspace_hash,
        compare_workspace_hash=compare.workspace_hash,
        workspace_changed=base.workspace_hash != compare.workspace_hash,
        skills=skills,
        input_token_delta=compare.usage.input_tokens - base.usage.input_tokens,
        output_token_delta=compare.usage.output_tokens - base.usage.output_tokens,
        total_token_delta=compare.usage.total_tokens - base.usage.total_tokens,
        base_cost=base_cost,
        compare_cost=compare_cost,
        cost_delta=cost_delta,
        cost_percent_change=cost_percent,
        tool_calls=tool_calls,
        steps=steps,
        output=output,
        base_error=base.error,
        compare_error=compare.error,
        significant_changes=tuple(significant),
    )


def diff_skill_versions(base: Mapping[str, str], compare: Mapping[str, str]) -> SkillDiff:
    added: dict[str, str] = {}
    removed: dict[str, str] = {}
    changed: dict[str, SkillVersionChange] = {}
    unchanged: dict[str, str] = {}
    for name in sorted(set(base) | set(compare)):
        old = base.get(name)
        new = compare.get(name)
        if old is not None and new is None:
            removed[name] = old
        elif old is None and new is not None:
            added[name] = new
        elif old != new and old is not None and new is not None:
            changed[name] = SkillVersionChange(base=old, compare=new)
        elif old is not None:
            unchanged[name] = old
    return SkillDiff(added=added, removed=removed, changed=changed, unchanged=unchanged)


def diff_tool_calls(
    base: Sequence[ToolCallTrace], compare: Sequence[ToolCallTrace]
) -> ToolCallDiff:
    """Pair calls by tool name and position within that name."""

    base_by_name = _group_by_name(base)
    compare_by_name = _group_by_name(compare)

    added: list[ToolCallSummary] = []
    removed: list[ToolCallSummary] = []
    changed: list[ToolCallChange] = []
    unchanged = 0
    for name in sorted(set(base_by_name) | set(compare_by_name)):
        base_calls = base_by_name.get(name, [])
        compare_calls = compare_by_name.get(name, [])
        for index in range(max(len(base_calls), len(compare_calls))):
            old = base_calls[index] if index < len(base_calls) else None
            new = compare_calls[index] if index < len(compare_calls) else None
            if old is not None and new is None:
                removed.append(_summarize_call(old))
            elif old is None and new is not None:
                added.append(_summarize_call(new))
            elif old is not None and new is not None:
                arguments_changed = canonical_json(old.arguments) != canonical_json(new.arguments)
                result_changed = canonical_json(old.result) != canonical_json(new.result)
                success_changed = old.success != new.success
                if arguments_changed or result_changed or success_changed:
                    changed.append(
                        ToolCallChange(
                            name=name,
                            base_id=old.id,
                            compare_id=new.id,
                            arguments_changed=arguments_changed,
                            result_changed=result_changed,
                            success_changed=success_changed,
                            duration_delta_ms=new.duration_ms - old.duration_ms,
                        )
                    )
                else:
                    unchanged += 1
    return ToolCallDiff(
        added=tuple(added),
        removed=tuple(removed),
        changed=tuple(changed),
        unchanged=unchanged,
        base_count=len(base),
        compare_count=len(compare),
    )


def summarize_diff(diff: TraceDiff) -> str:
    """Render the significant changes of ``diff`` as one sentence."""

    if not diff.significant_changes:
        return "No significant changes."

    parts: list[str] = []
    for change in diff.significant_changes:
        if change == SIGNIFICANT_MODEL:
            parts.append(f"model changed ({diff.base_model} -> {diff.compare_model})")
        elif change == SIGNIFICANT_WORKSPACE:
            parts.append("workspace changed")
        elif change == SIGNIFICANT_SKILLS:
            parts.append(f"skill versions changed ({_describe_skills(diff.skills)})")
        elif change == SIGNIFICANT_TOOLS:
            parts.append(
                f"tool calls differ ({diff.tool_calls.base_count} -> {diff.tool_calls.compare_count})"
            )
        elif change == SIGNIFICANT_ERROR:
            parts.append("error status changed")
        elif change == SIGNIFICANT_COST and diff.cost_percent_change is not None:
            parts.append(f"cost {diff.cost_percent_change:+.1f}%")
        elif change == SIGNIFICANT_OUTPUT:
            parts.append("output message differs")
    return "Significant changes: " + "; ".join(parts) + "."


def format_diff(diff: TraceDiff) -> str:
    """Multi-line human-readable report."""

    lines = [f"Trace Diff: {diff.base_id} vs {diff.compare_id}", ""]
    if diff.significant_changes:
        lines.append("Significant Changes:")
        lines.extend(f"  - {change}" for change in diff.significant_changes)
    else:
        lines.append("No significant changes detected.")
    lines.extend(["", "Summary:"])
    if diff.model_changed:
        lines.append(f"  Model: {diff.base_model} -> {diff.compare_model}")
    if diff.provider_changed:
        lines.append(f"  Provider: {diff.base_provider} -> {diff.compare_provider}")
    if diff.cost_percent_change is not None:
        lines.append(
            f"  Cost: ${diff.base_cost:.4f} -> ${diff.compare_cost:.4f} "
            f"({diff.cost_percent_change:+.1f}%)"
        )
    if diff.duration_delta_ms is not None:
        lines.append(
            f"  Duration: {diff.base_duration_ms}ms -> {diff.compare_duration_ms}ms "
            f"({diff.duration_delta_ms:+d}ms)"
        )
    lines.append(f"  Tool Calls: {diff.tool_calls.base_count} -> {diff.tool_calls.compare_count}")
    if diff.tool_calls.added:
        lines.append(f"    Added: {', '.join(item.name for item in diff.tool_calls.added)}")
    if diff.tool_calls.removed:
        lines.append(f"    Removed: {', '.join(item.name for item in diff.tool_calls.removed)}")
    if diff.skills.changed:
        lines.append("  Skill Version Changes:")
        lines.extend(
            f"    {name}: {change.base} -> {change.compare}"
            for name, change in diff.skills.changed.items()
        )
    return "\n".join(lines)


def _describe_skills(skills: SkillDiff) -> str:
    parts = [f"{name} {change.base} -> {change.compare}" for name, change in skills.changed.items()]
    parts.extend(f"+{name}@{version}" for name, version in skills.added.items())
    parts.extend(f"-{name}@{version}" for name, version in skills.removed.items())
    return ", ".join(parts)


def _group_by_name(calls: Sequence[ToolCallTrace]) -> dict[str, list[ToolCallTrace]]:
    grouped: dict[str, list[ToolCallTrace]] = {}
    for call in calls:
        grouped.setdefault(call.name, []).append(call)
    return grouped


def _summarize_call(call: ToolCallTrace) -> ToolCallSummary:
    return ToolCallSummary(
        id=call.id, name=call.name, success=call.success, duration_ms=call.duration_ms
    )


def _summary_dict(summary: ToolCallSummary) -> dict[str, object]:
    return {
        "id": summary.id,
        "name": summary.name,
        "success": summary.success,
        "duration_ms": summary.duration_ms,
    }


def _diff_steps(base: AgentTrace, compare: AgentTrace) -> StepDiff:
    def count(trace: AgentTrace, step_type: StepType) -> int:
        return sum(1 for step in trace.steps if step.type is step_type)

    structural = 0
    for index in range(max(len(base.steps), len(compare.steps))):
        old = base.steps[index].type if index < len(base.steps) else None
        new = compare.steps[index].type if index < len(compare.steps) else None
        if old != new:
            structural += 1
    return StepDiff(
        base_step_count=len(base.steps),
        compare_step_count=len(compare.steps),
        llm_call_count_delta=count(compare, StepType.LLM_CALL) - count(base, StepType.LLM_CALL),
        tool_call_count_delta=count(compare, StepType.TOOL_CALL) - count(base, StepType.TOOL_CALL),
        error_count_delta=count(compare, StepType.ERROR) - count(base, StepType.ERROR),
        structural_differences=structural,
    )


def _diff_output(base: AgentTrace, compare: AgentTrace) -> OutputDiff:
    base_message = None if base.output is None else base.output.message
    compare_message = None if compare.output is None else compare.output.message
    return OutputDiff(
        base_has_output=bool(base_message),
        compare_has_output=bool(compare_message),
        messages_equal=base_message == compare_message,
        base_message_length=None if base_message is None else len(base_message),
        compare_message_length=None if compare_message is None else len(compare_message),
    )


__all__ = [
    "DEFAULT_COST_THRESHOLD_PERCENT",
    "OutputDiff",
    "SkillDiff",
    "SkillVersionChange",
    "StepDiff",
    "ToolCallChange",
    "ToolCallDiff",
    "ToolCallSummary",
    "TraceDiff",
    "diff_skill_versions",
    "diff_tool_calls",
    "diff_traces",
    "format_diff",
    "summarize_diff",
]
