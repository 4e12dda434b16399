"""
Role-based access control (RBAC) for the operations assistant.

Provides:
- Role enum (MEMBER, MANAGER, ADMIN, SUPER_ADMIN)
- Role hierarchy and permission checking

Role Hierarchy:
  SUPER_ADMIN >= ADMIN >= MANAGER >= MEMBER

Permissions:
  MEMBER: read tools, own tasks, task creation and status changes
  MANAGER: programme mutation, team insight tools, playbooks
  ADMIN / SUPER_ADMIN: everything, team scope covers every profile

Usage:
    from lib.security.rbac import Role, has_role

    if not has_role(user_role, Role.MANAGER):
        return "You need manager access to do that."
"""

import logging
from enum import StrEnum

logger = logging.getLogger(__name__)


class Role(StrEnum):
    """Role enumeration with hierarchy: SUPER_ADMIN > ADMIN > MANAGER > MEMBER.

    Inherits from str so comparisons with stored role strings work naturally.
    """

    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Role hierarchy: higher value = more permissions
_ROLE_HIERARCHY = {
    Role.MEMBER: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
    Role.SUPER_ADMIN: 4,
}


def role_from_value(value: str | None) -> Role:
    """Map a stored role string onto Role, unknown values become MEMBER."""
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        if value:
            logger.warning("Unknown role %r, treating as member", value)
        return Role.MEMBER


def _role_has_permission(user_role: Role, minimum_role: Role) -> bool:
    """Check if user_role has at least minimum_role permissions.

    Args:
        user_role: The user's actual role
        minimum_role: The minimum required role

    Returns:
        True if user_role >= minimum_role in the hierarchy
    """
    user_level = _ROLE_HIERARCHY.get(user_role, 0)
    min_level = _ROLE_HIERARCHY.get(minimum_role, 0)
    return user_level >= min_level


def has_role(user_role: str | Role | None, minimum_role: Role) -> bool:
    """Hierarchy check that accepts raw stored role strings."""
    return _role_has_permission(role_from_value(user_role), minimum_role)


def sees_all_profiles(user_role: str | Role | None) -> bool:
    """Admins and super admins see the whole team, not only direct reports."""
    return has_role(user_role, Role.ADMIN)
