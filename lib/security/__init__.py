"""
Security module for the operations assistant.

Exports:
    Role: Enum of user roles (MEMBER, MANAGER, ADMIN, SUPER_ADMIN)
    has_role: Hierarchy check for a stored role string
    role_from_value: Parse a stored role string
    sees_all_profiles: Whether a role's team scope covers every profile
"""

from lib.security.rbac import Role, has_role, role_from_value, sees_all_profiles

__all__ = [
    "Role",
    "has_role",
    "role_from_value",
    "sees_all_profiles",
]
