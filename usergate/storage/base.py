"""
Storage abstraction layer.

Everything stateful goes through these interfaces, so a single-process
dictionary and a shared backend are interchangeable:

- ExpiringStore → token denylist, refresh tokens, rate limit counters
  (in-memory locally, Redis or similar when running more than one instance)
- UserStore → the user directory (SQL table, LDAP tree, Supabase, ...)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from usergate.auth.permissions import Role
from usergate.core.utils import utc_now


# =============================================================================
# Recovery State (one outstanding attempt per user)
# =============================================================================


class PendingCode(BaseModel):
    """A verification code was emailed and has not been verified yet."""
    kind: Literal["code"] = "code"
    code: str
    expires_at: datetime


class PendingReset(BaseModel):
    """The code was verified and exchanged for a single-use reset token."""
    kind: Literal["reset"] = "reset"
    token: str
    expires_at: datetime


RecoveryState = PendingCode | PendingReset | None


# =============================================================================
# User Record
# =============================================================================


class UserRecord(BaseModel):
    """User as stored by the directory backend."""
    id: str
    email: str
    name: str = ""
    password_hash: str
    role: Role = Role.USUARIO
    email_verified: bool = False
    recovery: PendingCode | PendingReset | None = None
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class UserResponse(BaseModel):
    """User data returned to clients (no sensitive fields)."""
    id: str
    email: str
    name: str
    role: Role
    email_verified: bool
    last_login_at: datetime | None
    created_at: datetime
    
    @classmethod
    def from_record(cls, user: UserRecord) -> UserResponse:
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            email_verified=user.email_verified,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
        )


# =============================================================================
# Storage Interfaces
# =============================================================================


class ExpiringStore(ABC):
    """
    Key-value store whose entries disappear after a TTL.
    
    Reads never return expired entries. `sweep()` purges them eagerly and
    must be safe to call while requests mutate the store.
    """
    
    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set a value with optional TTL in seconds."""
        pass
    
    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a live value."""
        pass
    
    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass
    
    @abstractmethod
    async def items(self) -> list[tuple[str, Any]]:
        """Snapshot of all live entries."""
        pass
    
    @abstractmethod
    async def sweep(self) -> int:
        """Remove expired entries, return how many were removed."""
        pass


class UserStore(ABC):
    """
    The user directory.
    
    Only the fields this service owns are ever written: password hash,
    role, verification flags, recovery state and login timestamp.
    """
    
    @abstractmethod
    async def find_by_email(self, email: str) -> UserRecord | None:
        pass
    
    @abstractmethod
    async def find_by_id(self, user_id: str) -> UserRecord | None:
        pass
    
    @abstractmethod
    async def find_by_reset_token(self, token: str) -> UserRecord | None:
        """Find the user whose pending reset token equals `token`."""
        pass
    
    @abstractmethod
    async def create(self, user: UserRecord) -> UserRecord:
        """Insert a user. Raises ConflictError if the email is taken."""
        pass
    
    @abstractmethod
    async def update(self, user_id: str, **fields: Any) -> UserRecord:
        """Partial update. Raises NotFoundError if the user does not exist."""
        pass
    
    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        pass
    
    @abstractmethod
    async def list_users(self, limit: int = 100, offset: int = 0) -> list[UserRecord]:
        pass
    
    @abstractmethod
    async def count(self) -> int:
        pass
