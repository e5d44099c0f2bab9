"""Workspace versions, pins, environments and impact analysis."""

from agent_governance.workspace.environments import (
    PromotionResult,
    WorkspaceEnvironment,
    WorkspaceEnvironments,
    promotion_target,
)
from agent_governance.workspace.impact import ImpactAnalysis, ImpactAnalyzer, analyze_impact
from agent_governance.workspace.pins import WorkspacePin, WorkspacePins
from agent_governance.workspace.versions import (
    FileDiff,
    FileStatus,
    RollbackResult,
    WorkspaceVersion,
    WorkspaceVersioning,
)

__all__ = [
    "FileDiff",
    "FileStatus",
    "ImpactAnalysis",
    "ImpactAnalyzer",
    "PromotionResult",
    "RollbackResult",
    "WorkspaceEnvironment",
    "WorkspaceEnvironments",
    "WorkspacePin",
    "WorkspacePins",
    "WorkspaceVersion",
    "WorkspaceVersioning",
    "analyze_impact",
    "promotion_target",
]
