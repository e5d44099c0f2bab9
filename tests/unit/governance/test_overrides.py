"""Override validation and the single audit record per accepted override."""

from __future__ import annotations

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import OverrideRejectedError, ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.governance.overrides import (
    OverrideReasonCode,
    OverrideRequest,
    coerce_override,
    record_override,
    validate_override,
)


@pytest.mark.parametrize("code", [item.value for item in OverrideReasonCode])
def test_every_closed_reason_code_accepted(code: str) -> None:
    request = validate_override(code, "  production incident INC-42  ")
    assert request.reason_code.value == code
    assert request.justification == "production incident INC-42"


@pytest.mark.parametrize(
    ("code", "justification", "message"),
    [
        ("yolo", "a perfectly long justification", "invalid override reason code"),
        (None, "a perfectly long justification", "reason code is required"),
        ("hotfix", "too short", "at least 10 characters"),
        ("hotfix", "   padded   ", "at least 10 characters"),
        ("hotfix", None, "justification is required"),
    ],
)
def test_invalid_overrides_fail_closed(code: object, justification: object, message: str) -> None:
    with pytest.raises(OverrideRejectedError, match=message):
        validate_override(code, justification)


def test_override_rejection_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        coerce_override(("hotfix", "short"))


def test_coerce_override_accepts_pairs_and_requests() -> None:
    request = OverrideRequest(OverrideReasonCode.HOTFIX, "patch for CVE-2026-0001")
    assert coerce_override(None) is None
    assert coerce_override(request) is request
    assert coerce_override(("hotfix", "patch for CVE-2026-0001")) == request
    assert request.label == "Hotfix"


def test_record_override_writes_exactly_one_entry(audit: AuditLog) -> None:
    request = validate_override("incident_response", "rollback of bad prompt in prod")

    entry = record_override(
        audit,
        request,
        tenant_id="t1",
        actor="alice",
        role="release_manager",
        action="workspace:promote",
        target_id="ws-1:staging->prod",
        workspace_id="ws-1",
    )

    page = audit.query("t1", event_type=AuditEventType.OPS_OVERRIDE_USED)
    assert page.total == 1
    assert page.items[0].id == entry.id
    data = entry.details.data
    assert entry.details.action == "workspace:promote"
    assert entry.details.target_id == "ws-1:staging->prod"
    assert entry.details.reason == "incident_response"
    assert data["actor"] == "alice"
    assert data["role"] == "release_manager"
    assert data["justification"] == "rollback of bad prompt in prod"
    assert data["reason_label"] == "Incident Response"
    assert isinstance(data["timestamp"], str)


@pytest.mark.parametrize(
    ("code", "justification", "message"),
    [
        (OverrideReasonCode.HOTFIX, "no", "at least 10 characters"),
        ("hotfix", "", "at least 10 characters"),
        ("not_a_reason", "a perfectly long justification", "invalid override reason code"),
    ],
)
def test_directly_constructed_request_fails_closed(
    code: object, justification: str, message: str
) -> None:
    with pytest.raises(OverrideRejectedError, match=message):
        OverrideRequest(code, justification)  # type: ignore[arg-type]


def test_direct_construction_normalizes_like_validate() -> None:
    request = OverrideRequest("data_correction", "  fix mislabeled spend rows  ")  # type: ignore[arg-type]
    assert request.reason_code is OverrideReasonCode.DATA_CORRECTION
    assert request.justification == "fix mislabeled spend rows"
    assert request == validate_override("data_correction", "fix mislabeled spend rows")
