"""Trace model, storage, comparison, annotations, redaction, and retention."""

from agent_governance.tracing.annotations import (
    StandardAnnotationKey,
    TraceAnnotation,
    TraceAnnotations,
    project_annotations,
)
from agent_governance.tracing.diff import TraceDiff, diff_traces, format_diff, summarize_diff
from agent_governance.tracing.redaction import (
    DEFAULT_PATTERNS,
    RedactionInfo,
    RedactionPattern,
    RedactionResult,
    RedactionStrategy,
    Redactor,
    redactor_from_config,
)
from agent_governance.tracing.retention import (
    RetentionEngine,
    RetentionPolicy,
    RetentionResult,
    should_retain_trace,
)
from agent_governance.tracing.store import TraceStats, TraceStore
from agent_governance.tracing.trace import (
    AgentTrace,
    StepType,
    ToolCallTrace,
    TraceBuilder,
    TraceStep,
    TraceUsage,
    calculate_usage_from_steps,
    extract_tool_call_traces,
)

__all__ = [
    "DEFAULT_PATTERNS",
    "AgentTrace",
    "RedactionInfo",
    "RedactionPattern",
    "RedactionResult",
    "RedactionStrategy",
    "Redactor",
    "RetentionEngine",
    "RetentionPolicy",
    "RetentionResult",
    "StandardAnnotationKey",
    "StepType",
    "ToolCallTrace",
    "TraceAnnotation",
    "TraceAnnotations",
    "TraceBuilder",
    "TraceDiff",
    "TraceStats",
    "TraceStep",
    "TraceStore",
    "TraceUsage",
    "calculate_usage_from_steps",
    "diff_traces",
    "extract_tool_call_traces",
    "format_diff",
    "project_annotations",
    "redactor_from_config",
    "should_retain_trace",
    "summarize_diff",
]
