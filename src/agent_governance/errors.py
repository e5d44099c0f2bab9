"""Typed governance errors shared by every component.

The taxonomy maps one-to-one onto caller-visible outcomes:

- ``ValidationError``: malformed input, raised before any state change.
- ``NotFoundError``: absent entity, or an entity owned by another tenant in a
  tenant-scoped lookup. Both cases produce the same message.
- ``ConflictError``: re-publishing an immutable versioned entity.
- ``InvalidTransitionError``: state-machine violation.
- ``BudgetExceededError``: hard-limit breach. Soft-limit breaches are warnings.
- ``GovernancePermissionError``: role lacks a governance permission.
"""

from __future__ import annotations

from collections.abc import Iterable


class GovernanceError(Exception):
    """Base class for governance failures."""


class ValidationError(GovernanceError, ValueError):
    """Raised when input is malformed."""


class NotFoundError(GovernanceError, LookupError):
    """Raised when an entity is absent or not visible to the caller."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConflictError(GovernanceError):
    """Raised when an immutable entity already exists."""


class InvalidTransitionError(GovernanceError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(self, *, subject: str, current: str, attempted: str, allowed: Iterable[str]) -> None:
        self.subject = subject
        self.current = current
        self.attempted = attempted
        self.allowed = tuple(allowed)
        rendered = ", ".join(self.allowed) if self.allowed else "none (terminal state)"
        super().__init__(
            f"invalid transition for {subject}: {current} -> {attempted}; allowed: {rendered}"
        )


class BudgetExceededError(GovernanceError):
    """Raised when a hard budget limit would be breached."""

    def __init__(self, message: str, *, tenant_id: str, result: object | None = None) -> None:
        self.tenant_id = tenant_id
        self.result = result
        super().__init__(message)


class GovernancePermissionError(GovernanceError):
    """Raised when a role lacks a governance permission."""

    def __init__(self, *, permission: str, role: str, required_roles: Iterable[str]) -> None:
        self.permission = permission
        self.role = role
        self.required_roles = tuple(required_roles)
        super().__init__(
            f"Permission denied: {permission} requires one of "
            f"[{', '.join(self.required_roles)}], but role is {role}"
        )


class OverrideRejectedError(ValidationError):
    """Raised when an override request fails validation."""


class PromotionBlockedError(GovernanceError):
    """Raised when promotion checks fail and no override was supplied."""

    def __init__(self, report: object, failed_checks: Iterable[str]) -> None:
        self.report = report
        self.failed_checks = tuple(failed_checks)
        super().__init__(
            "promotion blocked by failed checks: "
            f"{', '.join(self.failed_checks)}; supply an override to proceed"
        )


__all__ = [
    "BudgetExceededError",
    "ConflictError",
    "GovernanceError",
    "GovernancePermissionError",
    "InvalidTransitionError",
    "NotFoundError",
    "OverrideRejectedError",
    "PromotionBlockedError",
    "ValidationError",
]
