from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta

from agent_governance.tracing.trace import AgentTrace, TraceBuilder

BASE_TIME = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def ticking_clock(start: datetime = BASE_TIME, *, step_ms: int = 250) -> Callable[[], datetime]:
    """Clock that advances ``step_ms`` on every read."""

    state = {"now": start - timedelta(milliseconds=step_ms)}

    def _now() -> datetime:
        state["now"] = state["now"] + timedelta(milliseconds=step_ms)
        return state["now"]

    return _now


def make_trace(
    *,
    tenant_id: str = "t1",
    workspace_id: str = "ws-1",
    started: datetime = BASE_TIME,
    model: str = "gpt-4o-mini",
    provider: str = "openai",
    agent_role: str | None = "assistant",
    cost: float = 0.01,
    output: str | None = "done",
    error: str | None = None,
    skill_versions: Mapping[str, str] | None = None,
    workspace_hash: str | None = None,
    tools: Iterable[tuple[str, dict[str, object], object]] = (),
    labels: Mapping[str, str] | None = None,
    task_id: str | None = None,
    document_id: str | None = None,
    message_id: str | None = None,
) -> AgentTrace:
    builder = TraceBuilder(
        tenant_id=tenant_id,
        workspace_id=workspace_id,
        model=model,
        provider=provider,
        input_message="Summarize the attached notes.",
        message_history=2,
        agent_role=agent_role,
        clock=ticking_clock(started),
    )
    builder.add_llm_call(input_tokens=100, output_tokens=50, cost=cost, duration_ms=40)
    for index, (name, arguments, result) in enumerate(tools):
        call_id = f"call-{index}"
        builder.add_tool_call(tool_call_id=call_id, tool_name=name, arguments=arguments)
        builder.add_tool_result(
            tool_call_id=call_id, tool_name=name, success=True, duration_ms=10, result=result
        )
    if skill_versions:
        builder.set_skill_versions(skill_versions)
    if workspace_hash is not None:
        builder.set_workspace_hash(workspace_hash)
    if output is not None:
        builder.set_output(output)
    if error is not None:
        builder.add_error(code="provider_error", message=error)
        builder.set_error(error)
    if labels:
        builder.set_labels(labels)
    builder.link(task_id=task_id, document_id=document_id, message_id=message_id)
    return builder.finalize()
