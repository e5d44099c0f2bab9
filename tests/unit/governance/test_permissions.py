"""Role hierarchy and permission checks."""

from __future__ import annotations

import pytest

from agent_governance.errors import GovernancePermissionError, ValidationError
from agent_governance.governance.permissions import (
    PERMISSION_ROLES,
    Permission,
    Role,
    effective_permissions,
    has_permission,
    is_role_at_least,
    minimum_role_for,
    parse_role,
    require_permission,
)


def test_role_hierarchy() -> None:
    assert is_role_at_least(Role.ADMIN, Role.VIEWER)
    assert is_role_at_least("release_manager", "operator")
    assert not is_role_at_least("viewer", "operator")


def test_every_permission_is_granted_to_admin() -> None:
    assert set(effective_permissions(Role.ADMIN)) == set(Permission)
    assert all(Role.ADMIN in roles for roles in PERMISSION_ROLES.values())


def test_grants_are_monotonic_in_role_rank() -> None:
    ordered = [Role.VIEWER, Role.OPERATOR, Role.RELEASE_MANAGER, Role.ADMIN]
    for lower, higher in zip(ordered, ordered[1:]):
        assert set(effective_permissions(lower)) <= set(effective_permissions(higher))


def test_promotion_and_override_require_release_manager() -> None:
    assert minimum_role_for(Permission.WORKSPACE_PROMOTE) is Role.RELEASE_MANAGER
    assert minimum_role_for("override:use") is Role.RELEASE_MANAGER
    assert has_permission("viewer", "trace:view")
    assert not has_permission("operator", Permission.WORKSPACE_PROMOTE)


def test_require_permission_reports_permission_and_roles() -> None:
    require_permission("admin", Permission.SKILL_PROMOTE)
    with pytest.raises(GovernancePermissionError) as excinfo:
        require_permission("operator", Permission.WORKSPACE_PROMOTE)
    error = excinfo.value
    assert error.permission == "workspace:promote"
    assert error.required_roles == ("release_manager", "admin")
    assert "workspace:promote" in str(error)


def test_parse_role_normalizes_and_rejects_unknown() -> None:
    assert parse_role(" Admin ") is Role.ADMIN
    with pytest.raises(ValidationError, match="unknown role"):
        parse_role("superuser")
