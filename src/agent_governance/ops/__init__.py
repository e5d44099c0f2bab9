"""Operator-facing promotion gating and read views."""

from agent_governance.ops.promotion import (
    PromotionCheck,
    PromotionCheckName,
    PromotionChecker,
    PromotionExecution,
    PromotionReport,
)
from agent_governance.ops.views import (
    MAX_PAGE_SIZE,
    SENSITIVE_CONTENT_PLACEHOLDER,
    OpsViews,
    TraceDetailView,
    TraceSummaryView,
)

__all__ = [
    "MAX_PAGE_SIZE",
    "SENSITIVE_CONTENT_PLACEHOLDER",
    "OpsViews",
    "PromotionCheck",
    "PromotionCheckName",
    "PromotionChecker",
    "PromotionExecution",
    "PromotionReport",
    "TraceDetailView",
    "TraceSummaryView",
]
