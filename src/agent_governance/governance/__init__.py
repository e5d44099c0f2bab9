"""Governance core: audit ledger, overrides, permissions, budgets, and risk."""

from agent_governance.governance.audit import AuditDetails, AuditEntry, AuditLog, AuditStats
from agent_governance.governance.budgets import (
    BudgetCheck,
    BudgetCheckReason,
    BudgetManager,
    BudgetStats,
    CostForecast,
    TenantBudget,
)
from agent_governance.governance.overrides import (
    OverrideReasonCode,
    OverrideRequest,
    record_override,
    validate_override,
)
from agent_governance.governance.permissions import (
    Permission,
    Role,
    has_permission,
    require_permission,
)
from agent_governance.governance.risk import (
    RiskInput,
    RiskLevel,
    RiskScore,
    calculate_risk_score,
)

__all__ = [
    "AuditDetails",
    "AuditEntry",
    "AuditLog",
    "AuditStats",
    "BudgetCheck",
    "BudgetCheckReason",
    "BudgetManager",
    "BudgetStats",
    "CostForecast",
    "OverrideReasonCode",
    "OverrideRequest",
    "Permission",
    "RiskInput",
    "RiskLevel",
    "RiskScore",
    "Role",
    "TenantBudget",
    "calculate_risk_score",
    "has_permission",
    "record_override",
    "require_permission",
    "validate_override",
]
