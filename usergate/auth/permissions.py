"""
Roles and permissions.

This defines WHAT users can do, not HOW we check it.
The actual checking happens in policies.py.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    """Platform-wide role. Every user has exactly one."""
    
    ADMIN = "admin"          # Everything
    INTERNO = "interno"      # Staff: can browse the user directory
    USUARIO = "usuario"      # Regular user: own profile only
    
    @classmethod
    def _missing_(cls, value: object) -> Role | None:
        # Some deployments call the staff role "moderador"
        if isinstance(value, str) and value.lower() == "moderador":
            return cls.INTERNO
        return None


class Permission(str, Enum):
    """
    Atomic capability tags.
    
    Never composed from one another; a role either holds a permission or not.
    """
    
    # User management
    USER_READ = "user:read"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_READ_ALL = "user:read_all"
    
    # Admin surface
    ADMIN_DASHBOARD = "admin:dashboard"
    ADMIN_LOGS = "admin:logs"
    ADMIN_SYSTEM = "admin:system"
    
    # Own profile
    PROFILE_READ = "profile:read"
    PROFILE_UPDATE = "profile:update"


# =============================================================================
# Permission Mappings
# =============================================================================


# Admin holds every permission by construction, so it can never fall behind
# a lesser role when permissions are added.
ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.INTERNO: frozenset({
        Permission.USER_READ,
        Permission.USER_READ_ALL,
        Permission.PROFILE_READ,
        Permission.PROFILE_UPDATE,
    }),
    Role.USUARIO: frozenset({
        Permission.PROFILE_READ,
        Permission.PROFILE_UPDATE,
    }),
}


def _as_role(role: Role | str | None) -> Role | None:
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def _as_permission(permission: Permission | str) -> Permission | None:
    if isinstance(permission, Permission):
        return permission
    try:
        return Permission(permission)
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> frozenset[Permission]:
    """
    All permissions granted to a role.
    
    Unknown roles get the empty set, so callers deny instead of crashing.
    """
    resolved = _as_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(resolved, frozenset())


def has_permission(role: Role | str | None, permission: Permission | str) -> bool:
    """Check if a role holds a specific permission."""
    resolved = _as_permission(permission)
    return resolved is not None and resolved in permissions_for(role)


def has_any(role: Role | str | None, permissions: Iterable[Permission | str]) -> bool:
    """True if the role holds at least one of the permissions."""
    return any(has_permission(role, p) for p in permissions)


def has_all(role: Role | str | None, permissions: Iterable[Permission | str]) -> bool:
    """True if the role holds every one of the permissions."""
    return all(has_permission(role, p) for p in permissions)


def can_access_user(role: Role | str | None, requester_id: str, target_id: str) -> bool:
    """Users may always see themselves; seeing others needs user:read_all."""
    if has_permission(role, Permission.USER_READ_ALL):
        return True
    return requester_id == target_id
