"""Skill manifests and the lifecycle-guarded skill registry."""

from agent_governance.skills.manifest import (
    FilesystemAccess,
    SkillField,
    SkillManifest,
    SkillPermissions,
    SkillTestCase,
    coerce_manifest,
    load_manifest_yaml,
)
from agent_governance.skills.registry import (
    SKILL_TRANSITIONS,
    SkillRecord,
    SkillRegistry,
    StateChange,
    allowed_transitions,
    can_transition,
    parse_skill_state,
)

__all__ = [
    "SKILL_TRANSITIONS",
    "FilesystemAccess",
    "SkillField",
    "SkillManifest",
    "SkillPermissions",
    "SkillRecord",
    "SkillRegistry",
    "SkillTestCase",
    "StateChange",
    "allowed_transitions",
    "can_transition",
    "coerce_manifest",
    "load_manifest_yaml",
    "parse_skill_state",
]
