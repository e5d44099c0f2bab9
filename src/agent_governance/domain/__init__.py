"""Domain primitives: closed enumerations, time-ordered identifiers and semantic versions."""

from agent_governance.domain.enums import (
    AuditEventType,
    SamplingStrategy,
    SkillState,
    StorageMode,
    TraceStatus,
)
from agent_governance.domain.ids import (
    MonotonicULIDGenerator,
    generate_audit_id,
    generate_prefixed_id,
    generate_trace_id,
    generate_ulid,
    validate_trace_id,
    validate_ulid,
)
from agent_governance.domain.semver import (
    SemVer,
    compare_versions,
    is_valid_semver,
    latest_version,
    parse_semver,
    sort_versions,
)

__all__ = [
    "AuditEventType",
    "MonotonicULIDGenerator",
    "SamplingStrategy",
    "SemVer",
    "SkillState",
    "StorageMode",
    "TraceStatus",
    "compare_versions",
    "generate_audit_id",
    "generate_prefixed_id",
    "generate_trace_id",
    "generate_ulid",
    "is_valid_semver",
    "latest_version",
    "parse_semver",
    "sort_versions",
    "validate_trace_id",
    "validate_ulid",
]
