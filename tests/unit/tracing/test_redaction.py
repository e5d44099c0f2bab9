"""
agent-governance — unit tests for trace redaction

File: tests/unit/tracing/test_redaction.py

Purpose
- Validate PII detection, replacement strategies and trace-wide redaction.

What this test file should cover
- Built-in detectors and overlap priority.
- mask/hash/drop/summarize output.
- Messages, tool payloads and the prompt are redacted; other fields are untouched.
- Config-driven construction and the operator view summary agree with the redactor.
"""

from __future__ import annotations

import hashlib

import pytest

from agent_governance.config import default_config
from agent_governance.constants import PII_PATTERN_NAMES
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.ops.views import count_redactions, detect_redaction_types
from agent_governance.persistence.state_db import StateDB
from agent_governance.tracing.redaction import (
    DEFAULT_HASH_SALT,
    RedactionStrategy,
    Redactor,
    redactor_from_config,
)
from agent_governance.tracing.store import TraceStore
from agent_governance.tracing.trace import StepType, ToolCallTrace, TraceBuilder

from . import ticking_clock


@pytest.fixture
def redactor() -> Redactor:
    return Redactor()


def _trace_with_pii() -> TraceBuilder:
    builder = TraceBuilder(
        tenant_id="t1",
        workspace_id="ws-1",
        model="gpt-4o-mini",
        provider="openai",
        input_message="Email bob@corp.io the invoice",
        clock=ticking_clock(),
    )
    builder.add_llm_call(input_tokens=120, output_tokens=30, cost=0.004, duration_ms=50)
    builder.add_tool_call(tool_call_id="call-1", tool_name="send_email", arguments={"to": "bob@corp.io"})
    builder.add_tool_result(
        tool_call_id="call-1",
        tool_name="send_email",
        success=True,
        duration_ms=15,
        result={"status": "queued, callback 555-123-4567"},
    )
    builder.set_output(
        "Sent to bob@corp.io",
        tool_calls=[
            ToolCallTrace(
                id="call-1",
                name="send_email",
                arguments={"to": "bob@corp.io"},
                result="ok",
                success=True,
            )
        ],
    )
    return builder


def test_mask_replaces_each_detected_value(redactor: Redactor) -> None:
    text = "Contact jane.doe@example.com or 555-123-4567, SSN 123-45-6789."

    result = redactor.redact(text)

    assert result.redacted == "Contact [EMAIL] or [PHONE], SSN [SSN]."
    assert [match.pattern for match in result.matches] == ["email", "phone", "ssn"]
    first = result.matches[0]
    assert text[first.start : first.end] == "jane.doe@example.com"
    info = result.info()
    assert info.applied
    assert info.types_detected == ("email", "phone", "ssn")
    assert info.count == 3


def test_clean_text_is_returned_unchanged(redactor: Redactor) -> None:
    result = redactor.redact("Summarize the attached notes.")
    assert result.redacted == "Summarize the attached notes."
    assert not result.has_redactions
    assert result.info().to_dict() == {"applied": False, "types_detected": [], "count": 0}


def test_match_values_are_kept_out_of_repr(redactor: Redactor) -> None:
    match = redactor.redact("ping ops@example.com").matches[0]
    assert match.original == "ops@example.com"
    assert "ops@example.com" not in repr(match)


def test_higher_priority_detector_wins_overlaps(redactor: Redactor) -> None:
    redactor.add_pattern("digits", r"\d+")

    result = redactor.redact("SSN 123-45-6789 ref 42")

    assert result.redacted == "SSN [SSN] ref [DIGITS]"
    assert [match.pattern for match in result.matches] == ["ssn", "digits"]


def test_capture_group_limits_the_rewrite(redactor: Redactor) -> None:
    assert redactor.redact("Hi, my name is Jane Doe.").redacted == "Hi, my name is [NAME]."
    assert redactor.redact("Ship to 42 Main Street today").redacted == "Ship to [ADDRESS] today"


def test_mask_output_is_stable_under_repeat(redactor: Redactor) -> None:
    once = redactor.redact("password=hunter2 from 10.0.0.1 key sk-abcdefghijklmnopqrstuvwx")
    assert once.redacted == "[PASSWORD_FIELD] from [IP_ADDRESS] key [API_KEY]"
    assert not redactor.redact(once.redacted).has_redactions


def test_hash_strategy_is_salted_and_deterministic() -> None:
    redactor = Redactor(strategy="hash")
    digest = hashlib.sha256(f"{DEFAULT_HASH_SALT}a@b.io".encode()).hexdigest()[:8]

    assert redactor.redact("mail a@b.io").redacted == f"mail [HASH:{digest}]"
    assert Redactor(strategy="hash", hash_salt="other").redact("mail a@b.io").redacted != (
        f"mail [HASH:{digest}]"
    )


def test_drop_and_summarize_strategies() -> None:
    assert Redactor(strategy=RedactionStrategy.DROP).redact("ip 10.0.0.1 here").redacted == "ip  here"
    summarize = Redactor(strategy="summarize")
    assert summarize.redact("card 4111-1111-1111-1111").redacted == "card 41..11"

    short = Redactor((), strategy="summarize")
    short.add_pattern("pin", r"\b\d{4}\b")
    assert short.redact("pin 1234").redacted == "pin [PIN]"


def test_per_pattern_strategy_overrides_default() -> None:
    redactor = Redactor(())
    redactor.add_pattern("order", r"ORD-\d+", strategy="drop")
    redactor.add_pattern("ticket", r"TCK-\d+", replacement="[TICKET#]")
    assert redactor.redact("ORD-1 and TCK-9").redacted == " and [TICKET#]"


def test_redact_value_walks_nested_payloads(redactor: Redactor) -> None:
    payload = {"to": ["x@y.com"], "n": 3, "meta": {"ip": "192.168.0.1", "ok": True}}
    assert redactor.redact_value(payload) == {
        "to": ["[EMAIL]"],
        "n": 3,
        "meta": {"ip": "[IP_ADDRESS]", "ok": True},
    }


def test_redact_trace_covers_messages_tools_and_prompt(redactor: Redactor) -> None:
    trace = _trace_with_pii().finalize()

    redacted = redactor.redact_trace(trace, prompt="System: reply to bob@corp.io")

    assert redacted.id == trace.id
    assert redacted.usage == trace.usage
    assert redacted.input.message == "Email [EMAIL] the invoice"
    assert redacted.output is not None
    assert redacted.output.message == "Sent to [EMAIL]"
    assert redacted.output.tool_calls[0].arguments == {"to": "[EMAIL]"}
    assert redacted.output.tool_calls[0].result == "ok"
    by_type = {step.type: step for step in redacted.steps}
    assert by_type[StepType.TOOL_CALL].data["arguments"] == {"to": "[EMAIL]"}
    assert by_type[StepType.TOOL_RESULT].data["result"] == {"status": "queued, callback [PHONE]"}
    assert by_type[StepType.LLM_CALL] == trace.steps[0]
    assert redacted.redacted_prompt == "System: reply to [EMAIL]"
    assert trace.input.message == "Email bob@corp.io the invoice"


def test_existing_prompt_is_redacted_again(redactor: Redactor) -> None:
    builder = _trace_with_pii()
    builder.set_redacted_prompt("Forward to 123-45-6789")
    assert redactor.redact_trace(builder.finalize()).redacted_prompt == "Forward to [SSN]"


def test_detection_helpers(redactor: Redactor) -> None:
    text = "key sk-abcdefghijklmnopqrstuvwxyz from 10.1.2.3"
    assert redactor.contains_sensitive_data(text)
    assert not redactor.contains_sensitive_data("nothing to see")
    assert redactor.detect_patterns(text) == ("ip_address", "api_key")


def test_pattern_management(redactor: Redactor) -> None:
    assert redactor.pattern_names == PII_PATTERN_NAMES
    assert redactor.remove_pattern("phone")
    assert not redactor.remove_pattern("phone")
    assert "phone" not in redactor.pattern_names
    assert redactor.redact("call 555-123-4567").redacted == "call 555-123-4567"

    with pytest.raises(ValidationError, match="invalid redaction pattern"):
        redactor.add_pattern("broken", r"(unclosed")
    with pytest.raises(ValidationError, match="has no group 2"):
        redactor.add_pattern("grouped", r"id=(\d+)", sensitive_group=2)
    with pytest.raises(ValidationError, match="unknown redaction strategy"):
        Redactor(strategy="shred")


def test_redactor_from_config() -> None:
    section = default_config()["redaction"]
    built = redactor_from_config(section)
    assert built is not None
    assert built.pattern_names == PII_PATTERN_NAMES
    assert built.strategy is RedactionStrategy.MASK

    narrowed = redactor_from_config({"enabled": True, "strategy": "hash", "patterns": ["ssn", "email"]})
    assert narrowed is not None
    assert narrowed.pattern_names == ("email", "ssn")
    assert narrowed.strategy is RedactionStrategy.HASH

    assert redactor_from_config({"enabled": False, "strategy": "mask", "patterns": []}) is None
    with pytest.raises(ValidationError, match="unknown redaction patterns: zip"):
        redactor_from_config({"enabled": True, "strategy": "mask", "patterns": ["zip"]})


def test_operator_summary_matches_redactor_info(redactor: Redactor) -> None:
    result = redactor.redact("Reach jane@example.com at 555-123-4567, 42 Main Street")
    info = result.info()

    assert detect_redaction_types(result.redacted) == info.types_detected == ("email", "phone", "address")
    assert count_redactions(result.redacted) == info.count == 3

    hashed = Redactor(strategy="hash").redact("Reach jane@example.com")
    assert detect_redaction_types(hashed.redacted) == ("other",)
    assert count_redactions(hashed.redacted) == 1


def test_store_redacts_before_write(db: StateDB, audit: AuditLog, redactor: Redactor) -> None:
    store = TraceStore(db, audit, redactor=redactor)
    builder = _trace_with_pii()
    builder.set_redacted_prompt("reply to bob@corp.io")

    returned = store.finalize(builder.finalize())
    stored = store.get(returned.id)

    assert stored is not None
    assert stored.input.message == "Email [EMAIL] the invoice"
    assert stored.redacted_prompt == "reply to [EMAIL]"
    assert stored.output is not None
    assert stored.output.tool_calls[0].arguments == {"to": "[EMAIL]"}
    assert returned.input.message == stored.input.message
