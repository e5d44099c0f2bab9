"""Impact analysis between workspace versions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import yaml

from agent_governance.domain.enums import SkillState
from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB
from agent_governance.skills.registry import SkillRegistry
from agent_governance.workspace.impact import (
    ImpactAnalyzer,
    ImpactDirection,
    ImpactRiskLevel,
    PromptImpact,
    SkillChangeType,
    analyze_impact,
    is_shared_dependency,
    skill_name_from_path,
)
from agent_governance.workspace.versions import FileDiff, WorkspaceVersioning, diff_manifests

if TYPE_CHECKING:
    from pathlib import Path


def _diff(old: dict[str, str], new: dict[str, str], *, size: int = 100) -> FileDiff:
    return diff_manifests(
        old,
        new,
        old_sizes={path: size for path in old},
        new_sizes={path: size for path in new},
        old_hash="o" * 64,
        new_hash="n" * 64,
    )


def _manifest_yaml(name: str, tools: list[str]) -> str:
    return yaml.safe_dump(
        {
            "name": name,
            "version": "1.0.0",
            "description": f"{name} skill",
            "instructions": f"Use {name} carefully.",
            "permissions": {"tools": tools, "filesystem": "read"},
        },
        sort_keys=True,
    )


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("skills/summarizer.md", "summarizer"),
        ("skills/search.YAML", "search"),
        ("skill_writer.yml", "writer"),
        ("skills/nested/x.md", None),
        ("README.md", None),
    ],
)
def test_skill_name_from_path(path: str, expected: str | None) -> None:
    assert skill_name_from_path(path) == expected


def test_shared_dependency_detection() -> None:
    assert is_shared_dependency("SOUL.md")
    assert is_shared_dependency("agents/AGENTS.md")
    assert not is_shared_dependency("NOTES.md")


def test_direct_changes_and_shared_fan_out() -> None:
    diff = _diff(
        {"SOUL.md": "s1", "skills/alpha.md": "a1", "skills/beta.md": "b1"},
        {"SOUL.md": "s2", "skills/alpha.md": "a2", "skill_gamma.yaml": "g1"},
    )
    known = {
        "alpha": ("1.0.0", SkillState.ACTIVE),
        "omega": ("0.1.0", SkillState.DRAFT),
    }

    analysis = analyze_impact(diff, known_skills=known)

    by_name = {skill.name: skill for skill in analysis.affected_skills}
    assert by_name["alpha"].change_type is SkillChangeType.MODIFIED
    assert by_name["alpha"].version == "1.0.0"
    assert by_name["beta"].change_type is SkillChangeType.DELETED
    assert by_name["gamma"].change_type is SkillChangeType.ADDED
    assert by_name["omega"].change_type is SkillChangeType.DEPENDENCY_CHANGED
    assert by_name["omega"].affected_files == ("SOUL.md",)
    assert analysis.shared_dependencies_changed == ("SOUL.md",)
    assert analysis.files_changed == 4


def test_permission_changes_recommendations_and_risk() -> None:
    diff = _diff({"skills/alpha.md": "a1"}, {"skills/alpha.md": "a2"})

    analysis = analyze_impact(
        diff,
        old_tools={"alpha": ["read_file", "search"]},
        new_tools={"alpha": ["read_file", "write_file", "shell"]},
        known_skills={"alpha": ("0.2.0", SkillState.DRAFT)},
    )

    assert [(c.tool_name, c.change_type) for c in analysis.permission_changes] == [
        ("shell", "added"),
        ("write_file", "added"),
        ("search", "removed"),
    ]
    assert analysis.recommendations == (
        "1 skill(s) are in draft state - consider promoting before deployment",
        "2 new tool permission(s) added - review for security",
    )
    assert analysis.risk.score == 4
    assert analysis.risk.level is ImpactRiskLevel.MEDIUM
    assert analysis.to_dict()["summary"] == {
        "total_files_changed": 1,
        "skills_affected": 1,
        "permissions_changed": 3,
        "estimated_cost_impact": "unchanged",
    }


@pytest.mark.parametrize(
    ("current", "new", "direction"),
    [
        (1000, 1000, ImpactDirection.UNCHANGED),
        (1000, 1040, ImpactDirection.UNCHANGED),
        (1000, 1100, ImpactDirection.INCREASE),
        (1000, 900, ImpactDirection.DECREASE),
        (0, 500, ImpactDirection.UNCHANGED),
    ],
)
def test_prompt_direction_uses_five_percent_band(
    current: int, new: int, direction: ImpactDirection
) -> None:
    assert PromptImpact(current_size=current, new_size=new).direction is direction


def test_large_prompt_growth_is_flagged() -> None:
    diff = diff_manifests(
        {"SOUL.md": "s1"},
        {"SOUL.md": "s2"},
        old_sizes={"SOUL.md": 100},
        new_sizes={"SOUL.md": 200},
        old_hash="o" * 64,
        new_hash="n" * 64,
    )
    analysis = analyze_impact(diff)
    assert analysis.cost_impact is ImpactDirection.INCREASE
    assert "Prompt size increased by 100.0% - may impact costs" in analysis.recommendations
    assert "Large prompt size change (100.0%)" in analysis.risk.factors


def test_analyzer_reads_stored_versions_and_registry(
    db: StateDB, audit: AuditLog, tmp_path: Path
) -> None:
    registry = SkillRegistry(db, audit)
    registry.publish(
        {
            "name": "summarizer",
            "version": "1.0.0",
            "description": "summarizer skill",
            "instructions": "Use summarizer carefully.",
            "permissions": {"tools": ["read_file"], "filesystem": "read"},
        }
    )
    versioning = WorkspaceVersioning(db, audit, tmp_path / "workspace")
    old = versioning.record(
        "ws-1",
        {"skills/summarizer.yaml": _manifest_yaml("summarizer", ["read_file"]), "NOTES.md": "n"},
    )
    new = versioning.record(
        "ws-1",
        {
            "skills/summarizer.yaml": _manifest_yaml("summarizer", ["read_file", "write_file"]),
            "NOTES.md": "n",
        },
    )

    analysis = ImpactAnalyzer(versioning, registry).analyze(old.hash, new.hash)

    (skill,) = analysis.affected_skills
    assert skill.name == "summarizer"
    assert skill.change_type is SkillChangeType.MODIFIED
    assert skill.state is SkillState.DRAFT
    assert [(c.tool_name, c.change_type) for c in analysis.permission_changes] == [
        ("write_file", "added")
    ]
    assert "Permission changes (1)" in analysis.risk.factors
    assert "Draft skills affected (1)" in analysis.risk.factors


def test_analyzer_from_live_tree(db: StateDB, audit: AuditLog, tmp_path: Path) -> None:
    root = tmp_path / "workspace"
    root.mkdir()
    (root / "SOUL.md").write_text("live soul", encoding="utf-8")
    registry = SkillRegistry(db, audit)
    versioning = WorkspaceVersioning(db, audit, root)
    target = versioning.record("ws-1", {"SOUL.md": "stored soul", "skills/search.md": "search"})

    analysis = ImpactAnalyzer(versioning, registry).analyze_from_current(target.hash)

    assert analysis.diff.modified == ("SOUL.md",)
    assert analysis.diff.added == ("skills/search.md",)
    assert [skill.name for skill in analysis.affected_skills] == ["search"]
