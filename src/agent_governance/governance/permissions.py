"""Role-based governance permissions."""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from agent_governance.errors import GovernancePermissionError, ValidationError


class Role(StrEnum):
    VIEWER = "viewer"
    OPERATOR = "operator"
    RELEASE_MANAGER = "release_manager"
    ADMIN = "admin"


class Permission(StrEnum):
    TRACE_VIEW = "trace:view"
    TRACE_ANNOTATE = "trace:annotate"
    TRACE_DIFF = "trace:diff"
    TRACE_LABEL = "trace:label"
    WORKSPACE_VIEW = "workspace:view"
    WORKSPACE_PROMOTE = "workspace:promote"
    WORKSPACE_ROLLBACK = "workspace:rollback"
    WORKSPACE_LOCK = "workspace:lock"
    SKILL_VIEW = "skill:view"
    SKILL_PROMOTE = "skill:promote"
    BUDGET_VIEW = "budget:view"
    BUDGET_MODIFY = "budget:modify"
    RETENTION_VIEW = "retention:view"
    RETENTION_MODIFY = "retention:modify"
    DASHBOARD_VIEW = "dashboard:view"
    AUDIT_VIEW = "audit:view"
    OVERRIDE_USE = "override:use"


ROLE_RANK: Final[dict[Role, int]] = {
    Role.VIEWER: 1,
    Role.OPERATOR: 2,
    Role.RELEASE_MANAGER: 3,
    Role.ADMIN: 4,
}

_ALL: Final[tuple[Role, ...]] = (Role.VIEWER, Role.OPERATOR, Role.RELEASE_MANAGER, Role.ADMIN)
_OPERATOR_UP: Final[tuple[Role, ...]] = (Role.OPERATOR, Role.RELEASE_MANAGER, Role.ADMIN)
_RELEASE_UP: Final[tuple[Role, ...]] = (Role.RELEASE_MANAGER, Role.ADMIN)
_ADMIN_ONLY: Final[tuple[Role, ...]] = (Role.ADMIN,)

PERMISSION_ROLES: Final[dict[Permission, tuple[Role, ...]]] = {
    Permission.TRACE_VIEW: _ALL,
    Permission.TRACE_ANNOTATE: _OPERATOR_UP,
    Permission.TRACE_DIFF: _OPERATOR_UP,
    Permission.TRACE_LABEL: _OPERATOR_UP,
    Permission.WORKSPACE_VIEW: _ALL,
    Permission.WORKSPACE_PROMOTE: _RELEASE_UP,
    Permission.WORKSPACE_ROLLBACK: _RELEASE_UP,
    Permission.WORKSPACE_LOCK: _ADMIN_ONLY,
    Permission.SKILL_VIEW: _ALL,
    Permission.SKILL_PROMOTE: _ADMIN_ONLY,
    Permission.BUDGET_VIEW: _OPERATOR_UP,
    Permission.BUDGET_MODIFY: _RELEASE_UP,
    Permission.RETENTION_VIEW: _OPERATOR_UP,
    Permission.RETENTION_MODIFY: _RELEASE_UP,
    Permission.DASHBOARD_VIEW: _ALL,
    Permission.AUDIT_VIEW: _OPERATOR_UP,
    Permission.OVERRIDE_USE: _RELEASE_UP,
}


def parse_role(value: Role | str) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(role.value for role in Role)
        raise ValidationError(f"unknown role {value!r}; expected one of: {allowed}") from exc


def parse_permission(value: Permission | str) -> Permission:
    if isinstance(value, Permission):
        return value
    try:
        return Permission(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"unknown permission {value!r}") from exc


def has_permission(role: Role | str, permission: Permission | str) -> bool:
    return parse_role(role) in PERMISSION_ROLES[parse_permission(permission)]


def effective_permissions(role: Role | str) -> tuple[Permission, ...]:
    parsed = parse_role(role)
    return tuple(perm for perm, roles in PERMISSION_ROLES.items() if parsed in roles)


def is_role_at_least(role: Role | str, minimum: Role | str) -> bool:
    return ROLE_RANK[parse_role(role)] >= ROLE_RANK[parse_role(minimum)]


def minimum_role_for(permission: Permission | str) -> Role:
    roles = PERMISSION_ROLES[parse_permission(permission)]
    return min(roles, key=lambda role: ROLE_RANK[role])


def require_permission(role: Role | str, permission: Permission | str) -> None:
    """Raise ``GovernancePermissionError`` when ``role`` lacks ``permission``."""

    parsed_permission = parse_permission(permission)
    if has_permission(role, parsed_permission):
        return
    raise GovernancePermissionError(
        permission=parsed_permission.value,
        role=str(role),
        required_roles=[item.value for item in PERMISSION_ROLES[parsed_permission]],
    )


__all__ = [
    "PERMISSION_ROLES",
    "Permission",
    "ROLE_RANK",
    "Role",
    "effective_permissions",
    "has_permission",
    "is_role_at_least",
    "minimum_role_for",
    "parse_permission",
    "parse_role",
    "require_permission",
]
