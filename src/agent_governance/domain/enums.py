"""Closed enumerations shared by persistence and services."""

from __future__ import annotations

from enum import StrEnum


class SkillState(StrEnum):
    DRAFT = "draft"
    TESTED = "tested"
    APPROVED = "approved"
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class TraceStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class SamplingStrategy(StrEnum):
    FULL = "full"
    ERRORS_ONLY = "errors_only"
    SAMPLED = "sampled"


class StorageMode(StrEnum):
    FULL = "full"
    SUMMARY = "summary"
    MINIMAL = "minimal"


class AuditEventType(StrEnum):
    """Closed set of audit event types."""

    AGENT_EXECUTION_STARTED = "agent_execution_started"
    AGENT_EXECUTION_COMPLETED = "agent_execution_completed"
    AGENT_EXECUTION_FAILED = "agent_execution_failed"
    TOOL_CALL_REQUESTED = "tool_call_requested"
    TOOL_CALL_SUCCEEDED = "tool_call_succeeded"
    TOOL_CALL_FAILED = "tool_call_failed"
    TOOL_PERMISSION_DENIED = "tool_permission_denied"
    SKILL_PUBLISHED = "skill_published"
    SKILL_TEST_RUN = "skill_test_run"
    SKILL_STATE_CHANGED = "skill_state_changed"
    SKILL_DEPRECATED_USED = "skill_deprecated_used"
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"
    BUDGET_UPDATED = "budget_updated"
    WORKSPACE_CHANGE = "workspace_change"
    RETENTION_ENFORCED = "retention_enforced"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CONFIG_CHANGE = "config_change"
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"
    OPS_OVERRIDE_USED = "ops_override_used"


__all__ = [
    "AuditEventType",
    "SamplingStrategy",
    "SkillState",
    "StorageMode",
    "TraceStatus",
]
