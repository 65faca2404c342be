"""
Auth context - the "who can do what" for each request.

This is the lightweight object passed to route handlers once a token has
been verified. It contains everything needed to make authorization decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from usergate.auth.permissions import Permission, Role, permissions_for
from usergate.core.errors import AuthorizationError


@dataclass
class AuthContext:
    """
    Decoded identity of the caller.
    
    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require("user:read"))):
            print(f"User {ctx.subject_id} ({ctx.role.value})")
            if ctx.can("user:update"):
                # do something
    """
    
    subject_id: str
    email: str
    role: Role
    
    # The raw bearer token (needed to denylist it on logout)
    token: str = field(default="", repr=False)
    
    # Computed permissions (cached)
    _permissions: frozenset[Permission] = field(default_factory=frozenset, repr=False)
    
    def __post_init__(self):
        """Resolve permissions from the role."""
        self._permissions = permissions_for(self.role)
    
    @property
    def permissions(self) -> frozenset[Permission]:
        return self._permissions
    
    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
    
    def owns(self, user_id: str) -> bool:
        return self.subject_id == user_id
    
    def can(self, permission: Permission | str) -> bool:
        if isinstance(permission, str) and not isinstance(permission, Permission):
            try:
                permission = Permission(permission)
            except ValueError:
                return False
        return permission in self._permissions
    
    def can_any(self, *permissions: Permission | str) -> bool:
        """Check if user has ANY of the permissions."""
        return any(self.can(p) for p in permissions)
    
    def can_all(self, *permissions: Permission | str) -> bool:
        """Check if user has ALL of the permissions."""
        return all(self.can(p) for p in permissions)
    
    def require(self, permission: Permission | str) -> None:
        """
        Raise if user doesn't have the permission.
        
        Usage:
            ctx.require("user:update")  # raises if not allowed
        """
        if not self.can(permission):
            raise AuthorizationError()
