"""
agent-governance — promotion impact analysis

File: src/agent_governance/workspace/impact.py

Purpose
- Summarize what changing a workspace from one version to another touches:
  files, skills, tool permissions, prompt size and expected cost direction.

Functional requirements
- Skill files are ``skills/<name>.(md|yaml|yml)`` or ``skill_<name>.(md|yaml|yml)``.
- A change to a shared file (SOUL.md, IDENTITY.md, MEMORY.md, AGENTS.md) marks
  every registered skill as ``dependency_changed``.
- Permission changes compare tool sets per skill between the old and new side.
- Prompt and cost impact are ``increase``/``decrease`` beyond +/-5%, else
  ``unchanged``; risk is low below 2 points, medium below 5, else high.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

import structlog

from agent_governance.domain.enums import SkillState
from agent_governance.errors import ValidationError
from agent_governance.persistence.repository import JSONValue
from agent_governance.skills.manifest import load_manifest_yaml
from agent_governance.skills.registry import SkillRecord, SkillRegistry
from agent_governance.workspace.versions import FileDiff, FileStatus, WorkspaceVersioning

SHARED_DEPENDENCY_FILES: Final[tuple[str, ...]] = ("SOUL.md", "IDENTITY.md", "MEMORY.md", "AGENTS.md")
COST_CHANGE_THRESHOLD_PERCENT: Final[float] = 5.0
LARGE_PROMPT_CHANGE_PERCENT: Final[float] = 30.0
PROMPT_GROWTH_WARNING_PERCENT: Final[float] = 20.0

_SKILL_PATH_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"^skills/([^/]+)\.(?:md|yaml|yml)$", re.IGNORECASE),
    re.compile(r"^skill_([^/]+)\.(?:md|yaml|yml)$", re.IGNORECASE),
)


class SkillChangeType(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    DEPENDENCY_CHANGED = "dependency_changed"


class ImpactDirection(StrEnum):
    INCREASE = "increase"
    DECREASE = "decrease"
    UNCHANGED = "unchanged"


class ImpactRiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class AffectedSkill:
    name: str
    change_type: SkillChangeType
    affected_files: tuple[str, ...]
    version: str | None = None
    state: SkillState | None = None


@dataclass(frozen=True, slots=True)
class PermissionChange:
    skill_name: str
    tool_name: str
    change_type: str


@dataclass(frozen=True, slots=True)
class PromptImpact:
    current_size: int
    new_size: int

    @property
    def delta(self) -> int:
        return self.new_size - self.current_size

    @property
    def percent_change(self) -> float:
        if self.current_size <= 0:
            return 0.0
        return self.delta / self.current_size * 100

    @property
    def direction(self) -> ImpactDirection:
        if self.delta == 0:
            return ImpactDirection.UNCHANGED
        if self.percent_change > COST_CHANGE_THRESHOLD_PERCENT:
            return ImpactDirection.INCREASE
        if self.percent_change < -COST_CHANGE_THRESHOLD_PERCENT:
            return ImpactDirection.DECREASE
        return ImpactDirection.UNCHANGED


@dataclass(frozen=True, slots=True)
class ImpactRisk:
    level: ImpactRiskLevel
    score: int
    factors: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ImpactAnalysis:
    diff: FileDiff
    affected_skills: tuple[AffectedSkill, ...]
    permission_changes: tuple[PermissionChange, ...]
    prompt_impact: PromptImpact
    recommendations: tuple[str, ...]
    risk: ImpactRisk
    shared_dependencies_changed: tuple[str, ...] = field(default_factory=tuple)

    @property
    def files_changed(self) -> int:
        return self.diff.files_changed

    @property
    def cost_impact(self) -> ImpactDirection:
        return self.prompt_impact.direction

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "summary": {
                "total_files_changed": self.files_changed,
                "skills_affected": len(self.affected_skills),
                "permissions_changed": len(self.permission_changes),
                "estimated_cost_impact": self.cost_impact.value,
            },
            "file_changes": {
                "added": list(self.diff.added),
                "modified": list(self.diff.modified),
                "deleted": list(self.diff.deleted),
            },
            "affected_skills": [
                {
                    "name": skill.name,
                    "version": skill.version,
                    "state": None if skill.state is None else skill.state.value,
                    "change_type": skill.change_type.value,
                    "affected_files": list(skill.affected_files),
                }
                for skill in self.affected_skills
            ],
            "permission_changes": [
                {
                    "skill_name": change.skill_name,
                    "tool_name": change.tool_name,
                    "change_type": change.change_type,
                }
                for change in self.permission_changes
            ],
            "shared_dependencies_changed": list(self.shared_dependencies_changed),
            "prompt_impact": {
                "current_size": self.prompt_impact.current_size,
                "new_size": self.prompt_impact.new_size,
                "delta": self.prompt_impact.delta,
                "percent_change": round(self.prompt_impact.percent_change, 2),
            },
            "recommendations": list(self.recommendations),
            "risk": {
                "level": self.risk.level.value,
                "score": self.risk.score,
                "factors": list(self.risk.factors),
            },
        }


def skill_name_from_path(path: str) -> str | None:
    for pattern in _SKILL_PATH_PATTERNS:
        match = pattern.match(path)
        if match is not None:
            return match.group(1)
    return None


def is_shared_dependency(path: str) -> bool:
    return any(path.endswith(name) for name in SHARED_DEPENDENCY_FILES)


def analyze_impact(
    diff: FileDiff,
    *,
    old_tools: Mapping[str, Sequence[str]] | None = None,
    new_tools: Mapping[str, Sequence[str]] | None = None,
    known_skills: Mapping[str, tuple[str | None, SkillState | None]] | None = None,
    prompt_growth_warning_percent: float = PROMPT_GROWTH_WARNING_PERCENT,
) -> ImpactAnalysis:
    """
    Pure impact computation over a file diff.

    ``old_tools``/``new_tools`` map skill name to its granted tools on each side;
    ``known_skills`` maps registered skill names to ``(version, state)`` and is
    what a shared-file change fans out to.
    """

    registered = dict(known_skills or {})
    skills: dict[str, AffectedSkill] = {}
    shared: list[str] = []
    for change in diff.changes:
        if change.status is FileStatus.UNCHANGED:
            continue
        name = skill_name_from_path(change.path)
        if name is not None:
            current = skills.get(name)
            if current is None:
                version, state = registered.get(name, (None, None))
                skills[name] = AffectedSkill(
                    name=name,
                    change_type=_skill_change_type(change.status),
                    affected_files=(change.path,),
                    version=version,
                    state=state,
                )
            else:
                skills[name] = AffectedSkill(
                    name=current.name,
                    change_type=current.change_type,
                    affected_files=(*current.affected_files, change.path),
                    version=current.version,
                    state=current.state,
                )
        if is_shared_dependency(change.path):
            shared.append(change.path)

    # Direct skill-file changes take precedence over shared-file fan-out.
    for path in shared:
        for skill_name in sorted(registered):
            current = skills.get(skill_name)
            if current is None:
                version, state = registered[skill_name]
                skills[skill_name] = AffectedSkill(
                    name=skill_name,
                    change_type=SkillChangeType.DEPENDENCY_CHANGED,
                    affected_files=(path,),
                    version=version,
                    state=state,
                )
            elif current.change_type is SkillChangeType.DEPENDENCY_CHANGED:
                skills[skill_name] = AffectedSkill(
                    name=current.name,
                    change_type=current.change_type,
                    affected_files=(*current.affected_files, path),
                    version=current.version,
                    state=current.state,
                )

    affected = tuple(skills.values())
    permissions = _permission_changes(affected, old_tools or {}, new_tools or {})
    prompt = PromptImpact(current_size=diff.old_size, new_size=diff.new_size)
    return ImpactAnalysis(
        diff=diff,
        affected_skills=affected,
        permission_changes=permissions,
        prompt_impact=prompt,
        recommendations=_recommendations(
            affected, permissions, prompt, growth_warning_percent=prompt_growth_warning_percent
        ),
        risk=_assess_risk(affected, permissions, prompt),
        shared_dependencies_changed=tuple(shared),
    )


class ImpactAnalyzer:
    """Runs ``analyze_impact`` against stored versions and the skill registry."""

    def __init__(
        self,
        versioning: WorkspaceVersioning,
        registry: SkillRegistry,
        *,
        prompt_growth_warning_percent: float = PROMPT_GROWTH_WARNING_PERCENT,
        logger: Any | None = None,
    ) -> None:
        self._versioning = versioning
        self._registry = registry
        self._growth_warning_percent = prompt_growth_warning_percent
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def analyze(self, old_hash: str, new_hash: str) -> ImpactAnalysis:
        diff = self._versioning.diff(old_hash, new_hash)
        old_files = self._versioning.read_files(old_hash)
        new_files = self._versioning.read_files(new_hash)
        return self._analyze(diff, old_files, new_files)

    def analyze_from_current(self, version_hash: str) -> ImpactAnalysis:
        """Impact of moving the live workspace to ``version_hash``."""

        diff = self._versioning.diff_from_current(version_hash)
        live = {
            path: self._versioning.workspace_root.joinpath(path).read_bytes()
            for path in (*diff.modified, *diff.deleted, *diff.unchanged)
        }
        return self._analyze(diff, live, self._versioning.read_files(version_hash))

    def _analyze(
        self,
        diff: FileDiff,
        old_files: Mapping[str, bytes],
        new_files: Mapping[str, bytes],
    ) -> ImpactAnalysis:
        known: dict[str, tuple[str | None, SkillState | None]] = {}
        for record in _all_skills(self._registry):
            known[record.name] = (record.version, record.state)
        for change in diff.changes:
            name = skill_name_from_path(change.path)
            if name is not None and name not in known:
                record = self._registry.get_any_state(name)
                if record is not None:
                    known[name] = (record.version, record.state)

        old_tools = self._tools_by_skill(old_files)
        new_tools = self._tools_by_skill(new_files)
        analysis = analyze_impact(
            diff,
            old_tools=old_tools,
            new_tools=new_tools,
            known_skills=known,
            prompt_growth_warning_percent=self._growth_warning_percent,
        )
        self._logger.info(
            "impact_analyzed",
            old_hash=diff.old_hash,
            new_hash=diff.new_hash,
            files_changed=analysis.files_changed,
            skills_affected=len(analysis.affected_skills),
            risk=analysis.risk.level.value,
        )
        return analysis

    def _tools_by_skill(self, files: Mapping[str, bytes]) -> dict[str, tuple[str, ...]]:
        """Tools granted per skill, read from YAML manifests or else the registry."""

        tools: dict[str, tuple[str, ...]] = {}
        for path, content in files.items():
            name = skill_name_from_path(path)
            if name is None:
                continue
            if path.lower().endswith((".yaml", ".yml")):
                try:
                    manifest = load_manifest_yaml(content.decode("utf-8"))
                except (UnicodeDecodeError, ValidationError) as exc:
                    self._logger.warning("skill_manifest_unreadable", path=path, error=str(exc))
                    continue
                tools[name] = manifest.permissions.tools
            else:
                record = self._registry.get_any_state(name)
                if record is not None:
                    tools[name] = record.manifest.permissions.tools
        return tools


def _all_skills(registry: SkillRegistry) -> Iterator[SkillRecord]:
    offset = 0
    while True:
        page = registry.list(include_deprecated=True, limit=1000, offset=offset)
        yield from page.items
        if not page.has_more:
            return
        offset += page.limit


def _skill_change_type(status: FileStatus) -> SkillChangeType:
    if status is FileStatus.ADDED:
        return SkillChangeType.ADDED
    if status is FileStatus.DELETED:
        return SkillChangeType.DELETED
    return SkillChangeType.MODIFIED


def _permission_changes(
    skills: Sequence[AffectedSkill],
    old_tools: Mapping[str, Sequence[str]],
    new_tools: Mapping[str, Sequence[str]],
) -> tuple[PermissionChange, ...]:
    changes: list[PermissionChange] = []
    for skill in skills:
        if skill.change_type is SkillChangeType.DEPENDENCY_CHANGED:
            continue
        before = set(old_tools.get(skill.name, ()))
        after = set(new_tools.get(skill.name, ()))
        changes.extend(PermissionChange(skill.name, tool, "added") for tool in sorted(after - before))
        changes.extend(PermissionChange(skill.name, tool, "removed") for tool in sorted(before - after))
    return tuple(changes)


def _recommendations(
    skills: Sequence[AffectedSkill],
    permissions: Sequence[PermissionChange],
    prompt: PromptImpact,
    *,
    growth_warning_percent: float,
) -> tuple[str, ...]:
    out: list[str] = []
    drafts = [skill for skill in skills if skill.state is SkillState.DRAFT]
    if drafts:
        out.append(f"{len(drafts)} skill(s) are in draft state - consider promoting before deployment")
    added = [change for change in permissions if change.change_type == "added"]
    if added:
        out.append(f"{len(added)} new tool permission(s) added - review for security")
    if prompt.percent_change > growth_warning_percent:
        out.append(f"Prompt size increased by {prompt.percent_change:.1f}% - may impact costs")
    deleted = [skill for skill in skills if skill.change_type is SkillChangeType.DELETED]
    if deleted:
        out.append(f"{len(deleted)} skill(s) will be removed - ensure no dependencies")
    return tuple(out)


def _assess_risk(
    skills: Sequence[AffectedSkill],
    permissions: Sequence[PermissionChange],
    prompt: PromptImpact,
) -> ImpactRisk:
    factors: list[str] = []
    score = 0
    if len(skills) > 5:
        factors.append(f"Many skills affected ({len(skills)})")
        score += 2
    elif len(skills) > 2:
        score += 1
    if permissions:
        factors.append(f"Permission changes ({len(permissions)})")
        score += len(permissions)
    if abs(prompt.percent_change) > LARGE_PROMPT_CHANGE_PERCENT:
        factors.append(f"Large prompt size change ({prompt.percent_change:.1f}%)")
        score += 2
    deleted = [skill for skill in skills if skill.change_type is SkillChangeType.DELETED]
    if deleted:
        factors.append(f"Skills being deleted ({len(deleted)})")
        score += len(deleted)
    drafts = [skill for skill in skills if skill.state is SkillState.DRAFT]
    if drafts:
        factors.append(f"Draft skills affected ({len(drafts)})")
        score += len(drafts)

    if score < 2:
        level = ImpactRiskLevel.LOW
    elif score < 5:
        level = ImpactRiskLevel.MEDIUM
    else:
        level = ImpactRiskLevel.HIGH
    return ImpactRisk(level=level, score=score, factors=tuple(factors))


__all__ = [
    "SHARED_DEPENDENCY_FILES",
    "AffectedSkill",
    "ImpactAnalysis",
    "ImpactAnalyzer",
    "ImpactDirection",
    "ImpactRisk",
    "ImpactRiskLevel",
    "PermissionChange",
    "PromptImpact",
    "SkillChangeType",
    "analyze_impact",
    "is_shared_dependency",
    "skill_name_from_path",
]
