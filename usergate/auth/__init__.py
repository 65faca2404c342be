"""
Authorization system - roles, permissions and credentials.

Design principles:
1. A role maps to a fixed set of permissions; routes check permissions, never roles
2. Admin holds every permission
3. One dependency per route (`require(...)` in `usergate.auth.policies`)

Only the pure modules are re-exported here so storage can import roles
without pulling in the token service.
"""

from usergate.auth.context import AuthContext
from usergate.auth.credentials import (
    PasswordStrength,
    hash_password,
    hash_password_async,
    score_password,
    verify_password,
    verify_password_async,
)
from usergate.auth.permissions import (
    ROLE_PERMISSIONS,
    Permission,
    Role,
    can_access_user,
    has_all,
    has_any,
    has_permission,
    permissions_for,
)

__all__ = [
    # Types
    "AuthContext",
    "Permission",
    "Role",
    "ROLE_PERMISSIONS",
    # Checks
    "permissions_for",
    "has_permission",
    "has_any",
    "has_all",
    "can_access_user",
    # Credentials
    "PasswordStrength",
    "hash_password",
    "hash_password_async",
    "verify_password",
    "verify_password_async",
    "score_password",
]
