"""
agent-governance — trace model

File: src/agent_governance/tracing/trace.py

Purpose
- Structured record of one agent invocation: context, versions used for
  replay, ordered execution steps, output, and usage metrics.

Functional requirements
- Trace ids are ``trc-<ULID>`` so lexicographic order tracks creation time.
- ``status`` is derived: ``error`` when the trace carries an error message,
  ``success`` otherwise.
- ``TraceBuilder.finalize`` stamps completion time/duration and, unless usage
  was set explicitly, derives usage from the recorded LLM-call steps.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum

from agent_governance.domain.enums import TraceStatus
from agent_governance.domain.ids import generate_trace_id, validate_trace_id
from agent_governance.errors import ValidationError
from agent_governance.governance.pricing import round_usd
from agent_governance.persistence.repository import (
    JSONValue,
    as_json_object,
    as_mapping,
    as_non_empty_str,
    as_non_negative_float,
    as_non_negative_int,
    as_utc_datetime,
    iso8601z,
    utc_now,
)


class StepType(StrEnum):
    LLM_CALL = "llm_call"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TraceStep:
    type: StepType
    timestamp: str
    duration_ms: int
    data: dict[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], path: str = "TraceStep") -> TraceStep:
        parsed = as_mapping(payload, path)
        try:
            step_type = StepType(parsed.get("type"))
        except ValueError as exc:
            raise ValidationError(f"{path}.type: unknown step type {parsed.get('type')!r}") from exc
        raw_data = parsed.get("data")
        return cls(
            type=step_type,
            timestamp=as_non_empty_str(parsed.get("timestamp"), f"{path}.timestamp"),
            duration_ms=as_non_negative_int(parsed.get("duration_ms", 0), f"{path}.duration_ms"),
            data={} if raw_data is None else as_json_object(raw_data, f"{path}.data"),
        )


@dataclass(frozen=True, slots=True)
class ToolCallTrace:
    id: str
    name: str
    arguments: JSONValue = None
    result: JSONValue = None
    duration_ms: int = 0
    permitted: bool = True
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
            "duration_ms": self.duration_ms,
            "permitted": self.permitted,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], path: str = "ToolCallTrace") -> ToolCallTrace:
        parsed = as_json_object(payload, path)
        error = parsed.get("error")
        return cls(
            id=as_non_empty_str(parsed.get("id"), f"{path}.id"),
            name=as_non_empty_str(parsed.get("name"), f"{path}.name"),
            arguments=parsed.get("arguments"),
            result=parsed.get("result"),
            duration_ms=as_non_negative_int(parsed.get("duration_ms", 0), f"{path}.duration_ms"),
            permitted=bool(parsed.get("permitted", True)),
            success=bool(parsed.get("success", False)),
            error=error if isinstance(error, str) else None,
        )


@dataclass(frozen=True, slots=True)
class TraceUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True, slots=True)
class TraceInput:
    message: str
    message_history: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {"message": self.message, "message_history": self.message_history}


@dataclass(frozen=True, slots=True)
class TraceOutput:
    message: str
    tool_calls: tuple[ToolCallTrace, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "message": self.message,
            "tool_calls": [item.to_dict() for item in self.tool_calls],
        }


@dataclass(frozen=True, slots=True)
class AgentTrace:
    id: str
    tenant_id: str
    workspace_id: str
    model: str
    provider: str
    started_at: str
    input: TraceInput
    agent_role: str | None = None
    completed_at: str | None = None
    duration_ms: int | None = None
    workspace_hash: str | None = None
    skill_versions: dict[str, str] = field(default_factory=dict)
    steps: tuple[TraceStep, ...] = ()
    output: TraceOutput | None = None
    usage: TraceUsage = field(default_factory=TraceUsage)
    redacted_prompt: str | None = None
    error: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    task_id: str | None = None
    document_id: str | None = None
    message_id: str | None = None

    def __post_init__(self) -> None:
        # Stored timestamps are compared as strings; keep them in canonical UTC form.
        object.__setattr__(
            self, "started_at", iso8601z(as_utc_datetime(self.started_at, "AgentTrace.started_at"))
        )
        if self.completed_at is not None:
            object.__setattr__(
                self,
                "completed_at",
                iso8601z(as_utc_datetime(self.completed_at, "AgentTrace.completed_at")),
            )

    @property
    def status(self) -> TraceStatus:
        return TraceStatus.ERROR if self.error is not None else TraceStatus.SUCCESS

    @property
    def tool_calls(self) -> tuple[ToolCallTrace, ...]:
        if self.output is not None and self.output.tool_calls:
            return self.output.tool_calls
        return extract_tool_call_traces(self.steps)

    def with_labels(self, labels: Mapping[str, str]) -> AgentTrace:
        return replace(self, labels=dict(labels))

    def replay_context(self) -> dict[str, JSONValue]:
        return {
            "trace_id": self.id,
            "workspace_hash": self.workspace_hash,
            "skill_versions": dict(self.skill_versions),
            "model": self.model,
            "provider": self.provider,
            "input": self.input.to_dict(),
        }

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workspace_id": self.workspace_id,
            "agent_role": self.agent_role,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "workspace_hash": self.workspace_hash,
            "skill_versions": dict(self.skill_versions),
            "model": self.model,
            "provider": self.provider,
            "input": self.input.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "output": None if self.output is None else self.output.to_dict(),
            "usage": self.usage.to_dict(),
            "redacted_prompt": self.redacted_prompt,
            "error": self.error,
            "labels": dict(self.labels),
            "task_id": self.task_id,
            "document_id": self.document_id,
            "message_id": self.message_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> AgentTrace:
        parsed = as_mapping(payload, "AgentTrace")
        trace_id = as_non_empty_str(parsed.get("id"), "AgentTrace.id")
        try:
            validate_trace_id(trace_id)
        except ValueError as exc:
            raise ValidationError(f"AgentTrace.id: {exc}") from exc

        input_payload = as_mapping(parsed.get("input"), "AgentTrace.input")
        message = input_payload.get("message")
        if not isinstance(message, str):
            raise ValidationError("AgentTrace.input.message: expected string")

        output: TraceOutput | None = None
        raw_output = parsed.get("output")
        if raw_output is not None:
            output_payload = as_mapping(raw_output, "AgentTrace.output")
            output_message = output_payload.get("message")
            if not isinstance(output_message, str):
                raise ValidationError("AgentTrace.output.message: expected string")
            output = TraceOutput(
                message=output_message,
                tool_calls=tuple(
                    ToolCallTrace.from_dict(
                        as_mapping(item, f"AgentTrace.output.tool_calls[{index}]"),
                        f"AgentTrace.output.tool_calls[{index}]",
                    )
                    for index, item in enumerate(_as_list(output_payload.get("tool_calls")))
                ),
            )

        usage_payload = as_mapping(parsed.get("usage") or {}, "AgentTrace.usage")
        duration = parsed.get("duration_ms")
        return cls(
            id=trace_id,
            tenant_id=as_non_empty_str(parsed.get("tenant_id"), "AgentTrace.tenant_id"),
            workspace_id=as_non_empty_str(parsed.get("workspace_id"), "AgentTrace.workspace_id"),
            model=as_non_empty_str(parsed.get("model"), "AgentTrace.model"),
            provider=as_non_empty_str(parsed.get("provider"), "AgentTrace.provider"),
            started_at=iso8601z(as_utc_datetime(parsed.get("started_at"), "AgentTrace.started_at")),
            input=TraceInput(
                message=message,
                message_history=as_non_negative_int(
                    input_payload.get("message_history", 0), "AgentTrace.input.message_history"
                ),
            ),
            agent_role=_optional_str(parsed.get("agent_role"), "AgentTrace.agent_role"),
            completed_at=(
                None
                if parsed.get("completed_at") is None
                else iso8601z(as_utc_datetime(parsed.get("completed_at"), "AgentTrace.completed_at"))
            ),
            duration_ms=None if duration is None else as_non_negative_int(duration, "AgentTrace.duration_ms"),
            workspace_hash=_optional_str(parsed.get("workspace_hash"), "AgentTrace.workspace_hash"),
            skill_versions=_string_map(parsed.get("skill_versions"), "AgentTrace.skill_versions"),
            steps=tuple(
                TraceStep.from_dict(
                    as_mapping(item, f"AgentTrace.steps[{index}]"), f"AgentTrace.steps[{index}]"
                )
                for index, item in enumerate(_as_list(parsed.get("steps")))
            ),
            output=output,
            usage=TraceUsage(
                input_tokens=as_non_negative_int(
                    usage_payload.get("input_tokens", 0), "AgentTrace.usage.input_tokens"
                ),
                output_tokens=as_non_negative_int(
                    usage_payload.get("output_tokens", 0), "AgentTrace.usage.output_tokens"
                ),
                total_cost=as_non_negative_float(
                    usage_payload.get("total_cost", 0.0), "AgentTrace.usage.total_cost"
                ),
            ),
            redacted_prompt=_optional_text(parsed.get("redacted_prompt"), "AgentTrace.redacted_prompt"),
            error=_optional_text(parsed.get("error"), "AgentTrace.error"),
            labels=_string_map(parsed.get("labels"), "AgentTrace.labels"),
            task_id=_optional_str(parsed.get("task_id"), "AgentTrace.task_id"),
            document_id=_optional_str(parsed.get("document_id"), "AgentTrace.document_id"),
            message_id=_optional_str(parsed.get("message_id"), "AgentTrace.message_id"),
        )


class TraceBuilder:
    """Incrementally assemble an ``AgentTrace`` during an invocation."""

    def __init__(
        self,
        *,
        tenant_id: str,
        workspace_id: str,
        model: str,
        provider: str,
        input_message: str,
        message_history: int = 0,
        agent_role: str | None = None,
        trace_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock if clock is not None else utc_now
        self._started = self._clock()
        self._id = trace_id if trace_id is not None else generate_trace_id()
        self._tenant_id = as_non_empty_str(tenant_id, "tenant_id")
        self._workspace_id = as_non_empty_str(workspace_id, "workspace_id")
        self._model = as_non_empty_str(model, "model")
        self._provider = as_non_empty_str(provider, "provider")
        self._agent_role = agent_role
        self._input = TraceInput(
            message=input_message,
            message_history=as_non_negative_int(message_history, "message_history"),
        )
        self._workspace_hash: str | None = None
        self._skill_versions: dict[str, str] = {}
        self._steps: list[TraceStep] = []
        self._output: TraceOutput | None = None
        self._usage: TraceUsage | None = None
        self._redacted_prompt: str | None = None
        self._error: str | None = None
        self._labels: dict[str, str] = {}
        self._task_id: str | None = None
        self._document_id: str | None = None
        self._message_id: str | None = None

    @property
    def id(self) -> str:
        return self._id

    def set_workspace_hash(self, workspace_hash: str) -> TraceBuilder:
        self._workspace_hash = as_non_empty_str(workspace_hash, "workspace_hash")
        return self

    def set_skill_versions(self, versions: Mapping[str, str]) -> TraceBuilder:
        self._skill_versions = _string_map(versions, "skill_versions")
        return self

    def add_llm_call(
        self,
        *,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        duration_ms: int,
        has_tool_calls: bool = False,
        finish_reason: str | None = None,
        model: str | None = None,
        provider: str | None = None,
    ) -> TraceBuilder:
        return self._add_step(
            StepType.LLM_CALL,
            duration_ms,
            {
                "model": model or self._model,
                "provider": provider or self._provider,
                "input_tokens": as_non_negative_int(input_tokens, "input_tokens"),
                "output_tokens": as_non_negative_int(output_tokens, "output_tokens"),
                "cost": as_non_negative_float(cost, "cost"),
                "has_tool_calls": has_tool_calls,
                "finish_reason": finish_reason,
            },
        )

    def add_tool_call(
        self,
        *,
        tool_call_id: str,
        tool_name: str,
        arguments: JSONValue = None,
        permitted: bool = True,
        permission_reason: str | None = None,
        duration_ms: int = 0,
    ) -> TraceBuilder:
        return self._add_step(
            StepType.TOOL_CALL,
            duration_ms,
            {
                "tool_call_id": as_non_empty_str(tool_call_id, "tool_call_id"),
                "tool_name": as_non_empty_str(tool_name, "tool_name"),
                "arguments": arguments,
                "permitted": permitted,
                "permission_reason": permission_reason,
            },
        )

    def add_tool_result(
        self,
        *,
        tool_call_id: str,
        tool_name: str,
        success: bool,
        duration_ms: int,
        result: JSONValue = None,
        error: str | None = None,
    ) -> TraceBuilder:
        return self._add_step(
            StepType.TOOL_RESULT,
            duration_ms,
            {
                "tool_call_id": as_non_empty_str(tool_call_id, "tool_call_id"),
                "tool_name": as_non_empty_str(tool_name, "tool_name"),
                "success": success,
                "result": result,
                "error": error,
            },
        )

    def add_error(
        self, *, code: str, message: str, recoverable: bool = False, duration_ms: int = 0
    ) -> TraceBuilder:
        return self._add_step(
            StepType.ERROR,
            duration_ms,
            {"code": code, "message": message, "recoverable": recoverable},
        )

    def set_output(self, message: str, tool_calls: Iterable[ToolCallTrace] = ()) -> TraceBuilder:
        self._output = TraceOutput(message=message, tool_calls=tuple(tool_calls))
        return self

    def set_usage(self, usage: TraceUsage) -> TraceBuilder:
        self._usage = usage
        return self

    def set_error(self, error: str) -> TraceBuilder:
        self._error = error
        return self

    def set_redacted_prompt(self, prompt: str) -> TraceBuilder:
        self._redacted_prompt = prompt
        return self

    def set_labels(self, labels: Mapping[str, str]) -> TraceBuilder:
        self._labels = _string_map(labels, "labels")
        return self

    def link(
        self,
        *,
        task_id: str | None = None,
        document_id: str | None = None,
        message_id: str | None = None,
    ) -> TraceBuilder:
        if task_id is not None:
            self._task_id = as_non_empty_str(task_id, "task_id")
        if document_id is not None:
            self._document_id = as_non_empty_str(document_id, "document_id")
        if message_id is not None:
            self._message_id = as_non_empty_str(message_id, "message_id")
        return self

    def snapshot(self) -> AgentTrace:
        """Current state of the trace without completing it."""

        return self._build(completed=None)

    def finalize(self) -> AgentTrace:
        return self._build(completed=self._clock())

    def _build(self, *, completed: datetime | None) -> AgentTrace:
        duration: int | None = None
        if completed is not None:
            duration = max(0, int((completed - self._started).total_seconds() * 1000))
        return AgentTrace(
            id=self._id,
            tenant_id=self._tenant_id,
            workspace_id=self._workspace_id,
            model=self._model,
            provider=self._provider,
            started_at=iso8601z(self._started),
            input=self._input,
            agent_role=self._agent_role,
            completed_at=None if completed is None else iso8601z(completed),
            duration_ms=duration,
            workspace_hash=self._workspace_hash,
            skill_versions=dict(self._skill_versions),
            steps=tuple(self._steps),
            output=self._output,
            usage=self._usage if self._usage is not None else calculate_usage_from_steps(self._steps),
            redacted_prompt=self._redacted_prompt,
            error=self._error,
            labels=dict(self._labels),
            task_id=self._task_id,
            document_id=self._document_id,
            message_id=self._message_id,
        )

    def _add_step(
        self, step_type: StepType, duration_ms: int, data: dict[str, JSONValue]
    ) -> TraceBuilder:
        self._steps.append(
            TraceStep(
                type=step_type,
                timestamp=iso8601z(self._clock()),
                duration_ms=as_non_negative_int(duration_ms, "duration_ms"),
                data=data,
            )
        )
        return self


def calculate_usage_from_steps(steps: Iterable[TraceStep]) -> TraceUsage:
    input_tokens = 0
    output_tokens = 0
    total_cost = 0.0
    for step in steps:
        if step.type is not StepType.LLM_CALL:
            continue
        input_tokens += _int_field(step.data, "input_tokens")
        output_tokens += _int_field(step.data, "output_tokens")
        cost = step.data.get("cost")
        if isinstance(cost, (int, float)) and not isinstance(cost, bool):
            total_cost += float(cost)
    return TraceUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_cost=round_usd(total_cost))


def extract_tool_call_traces(steps: Iterable[TraceStep]) -> tuple[ToolCallTrace, ...]:
    """Pair tool_call steps with their tool_result by call id, in call order."""

    calls: dict[str, ToolCallTrace] = {}
    for step in steps:
        call_id = step.data.get("tool_call_id")
        if not isinstance(call_id, str):
            continue
        if step.type is StepType.TOOL_CALL:
            name = step.data.get("tool_name")
            calls[call_id] = ToolCallTrace(
                id=call_id,
                name=name if isinstance(name, str) else "unknown",
                arguments=step.data.get("arguments"),
                permitted=bool(step.data.get("permitted", True)),
            )
        elif step.type is StepType.TOOL_RESULT and call_id in calls:
            error = step.data.get("error")
            calls[call_id] = replace(
                calls[call_id],
                result=step.data.get("result"),
                success=bool(step.data.get("success", False)),
                duration_ms=step.duration_ms,
                error=error if isinstance(error, str) else None,
            )
    return tuple(calls.values())


def _int_field(data: Mapping[str, JSONValue], key: str) -> int:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _as_list(value: object) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("expected list")
    return value


def _string_map(value: object, path: str) -> dict[str, str]:
    if value is None:
        return {}
    parsed = as_mapping(value, path)
    out: dict[str, str] = {}
    for key, item in parsed.items():
        if not isinstance(item, str):
            raise ValidationError(f"{path}.{key}: expected string")
        out[key] = item
    return out


def _optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return as_non_empty_str(value, path)


def _optional_text(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{path}: expected string")
    return value


__all__ = [
    "AgentTrace",
    "StepType",
    "ToolCallTrace",
    "TraceBuilder",
    "TraceInput",
    "TraceOutput",
    "TraceStep",
    "TraceUsage",
    "calculate_usage_from_steps",
    "extract_tool_call_traces",
]
