"""Justified overrides of failed governance checks.

An override is never persisted as its own entity. Validation is fail-closed
and every accepted override produces exactly one ``ops_override_used`` audit
entry; if that write fails, the exception propagates and the gated action
must not proceed.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import OverrideRejectedError
from agent_governance.governance.audit import AuditDetails, AuditEntry, AuditLog
from agent_governance.persistence.repository import iso8601z, utc_now

MIN_JUSTIFICATION_LENGTH: Final[int] = 10


class OverrideReasonCode(StrEnum):
    INCIDENT_RESPONSE = "incident_response"
    HOTFIX = "hotfix"
    BUSINESS_DEADLINE = "business_deadline"
    DATA_CORRECTION = "data_correction"
    OTHER = "other"


OVERRIDE_REASON_LABELS: Final[dict[OverrideReasonCode, str]] = {
    OverrideReasonCode.INCIDENT_RESPONSE: "Incident Response",
    OverrideReasonCode.HOTFIX: "Hotfix",
    OverrideReasonCode.BUSINESS_DEADLINE: "Business Deadline",
    OverrideReasonCode.DATA_CORRECTION: "Data Correction",
    OverrideReasonCode.OTHER: "Other",
}


@dataclass(frozen=True, slots=True)
class OverrideRequest:
    """A validated override; construction fails closed with ``OverrideRejectedError``."""

    reason_code: OverrideReasonCode
    justification: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "reason_code", _coerce_reason_code(self.reason_code))
        if not isinstance(self.justification, str):
            raise OverrideRejectedError("override justification is required")
        text = self.justification.strip()
        if len(text) < MIN_JUSTIFICATION_LENGTH:
            raise OverrideRejectedError(
                f"override justification must be at least {MIN_JUSTIFICATION_LENGTH} characters"
            )
        object.__setattr__(self, "justification", text)

    @property
    def label(self) -> str:
        return OVERRIDE_REASON_LABELS[self.reason_code]


def validate_override(reason_code: object, justification: object) -> OverrideRequest:
    """Return a validated request or raise ``OverrideRejectedError``."""

    return OverrideRequest(reason_code=reason_code, justification=justification)  # type: ignore[arg-type]


def _coerce_reason_code(reason_code: object) -> OverrideReasonCode:
    if isinstance(reason_code, OverrideReasonCode):
        return reason_code
    if not isinstance(reason_code, str):
        raise OverrideRejectedError("override reason code is required")
    try:
        return OverrideReasonCode(reason_code.strip())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in OverrideReasonCode)
        raise OverrideRejectedError(
            f"invalid override reason code {reason_code!r}; expected one of: {allowed}"
        ) from exc


def coerce_override(value: OverrideRequest | tuple[str, str] | None) -> OverrideRequest | None:
    """Accept a validated request or a ``(reason_code, justification)`` pair."""

    if value is None or isinstance(value, OverrideRequest):
        return value
    if isinstance(value, tuple) and len(value) == 2:
        return validate_override(value[0], value[1])
    raise OverrideRejectedError("override must be an OverrideRequest or (reason_code, justification)")


def record_override(
    audit: AuditLog,
    request: OverrideRequest,
    *,
    tenant_id: str,
    actor: str,
    role: str,
    action: str,
    target_id: str,
    workspace_id: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> AuditEntry:
    """Write the single ``ops_override_used`` entry for an accepted override."""

    return audit.log(
        AuditEventType.OPS_OVERRIDE_USED,
        tenant_id=tenant_id,
        workspace_id=workspace_id,
        actor=actor,
        details=AuditDetails(
            action=action,
            target_id=target_id,
            reason=request.reason_code.value,
            data={
                "actor": actor,
                "role": role,
                "reason_code": request.reason_code.value,
                "reason_label": request.label,
                "justification": request.justification,
                "timestamp": iso8601z(utc_now()),
            },
        ),
        conn=conn,
    )


__all__ = [
    "MIN_JUSTIFICATION_LENGTH",
    "OVERRIDE_REASON_LABELS",
    "OverrideReasonCode",
    "OverrideRequest",
    "coerce_override",
    "record_override",
    "validate_override",
]
