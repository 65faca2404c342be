"""
Local storage implementations for development and single-process deployments.

These are in-memory and work without any external services. Running more
than one instance against them loses revocation and rate limit consistency.
"""

from __future__ import annotations

import time
from typing import Any, Callable, NamedTuple

from usergate.core.errors import ConflictError, NotFoundError
from usergate.core.utils import utc_now
from usergate.storage.base import ExpiringStore, PendingReset, UserRecord, UserStore


# =============================================================================
# In-Memory Expiring Store
# =============================================================================


class InMemoryExpiringStore(ExpiringStore):
    """In-memory TTL map."""
    
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
    
    def _expired(self, expires_at: float | None, now: float) -> bool:
        return expires_at is not None and now >= expires_at
    
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)
    
    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        
        value, expires_at = entry
        if self._expired(expires_at, self._clock()):
            self._entries.pop(key, None)
            return None
        
        return value
    
    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None
    
    async def items(self) -> list[tuple[str, Any]]:
        now = self._clock()
        return [
            (key, value)
            for key, (value, expires_at) in list(self._entries.items())
            if not self._expired(expires_at, now)
        ]
    
    async def sweep(self) -> int:
        now = self._clock()
        removed = 0
        # Iterate over a snapshot; requests may add or delete keys meanwhile
        for key, (_, expires_at) in list(self._entries.items()):
            if self._expired(expires_at, now) and self._entries.pop(key, None) is not None:
                removed += 1
        return removed
    
    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# In-Memory User Store
# =============================================================================


class InMemoryUserStore(UserStore):
    """In-memory user directory for development and tests."""
    
    def __init__(self):
        self._users: dict[str, UserRecord] = {}
        self._by_email: dict[str, str] = {}  # lowercased email -> user_id
    
    async def find_by_email(self, email: str) -> UserRecord | None:
        user_id = self._by_email.get(email.lower())
        return self._users.get(user_id) if user_id else None
    
    async def find_by_id(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)
    
    async def find_by_reset_token(self, token: str) -> UserRecord | None:
        for user in self._users.values():
            if isinstance(user.recovery, PendingReset) and user.recovery.token == token:
                return user
        return None
    
    async def create(self, user: UserRecord) -> UserRecord:
        email = user.email.lower()
        if email in self._by_email:
            raise ConflictError("Email already registered")
        
        user = user.model_copy(update={"email": email})
        self._users[user.id] = user
        self._by_email[email] = user.id
        return user
    
    async def update(self, user_id: str, **fields: Any) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        
        if "email" in fields:
            new_email = fields["email"].lower()
            owner = self._by_email.get(new_email)
            if owner is not None and owner != user_id:
                raise ConflictError("Email already registered")
            del self._by_email[user.email]
            self._by_email[new_email] = user_id
            fields["email"] = new_email
        
        updated = user.model_copy(update={**fields, "updated_at": utc_now()})
        self._users[user_id] = updated
        return updated
    
    async def delete(self, user_id: str) -> bool:
        user = self._users.pop(user_id, None)
        if user is None:
            return False
        self._by_email.pop(user.email, None)
        return True
    
    async def list_users(self, limit: int = 100, offset: int = 0) -> list[UserRecord]:
        users = sorted(self._users.values(), key=lambda u: u.created_at)
        return users[offset:offset + limit]
    
    async def count(self) -> int:
        return len(self._users)


# =============================================================================
# Factory
# =============================================================================


class LocalStores(NamedTuple):
    users: InMemoryUserStore
    denylist: InMemoryExpiringStore
    refresh_tokens: InMemoryExpiringStore
    rate_limits: InMemoryExpiringStore


def create_local_stores(clock: Callable[[], float] = time.time) -> LocalStores:
    """Create every store with in-memory implementations."""
    return LocalStores(
        users=InMemoryUserStore(),
        denylist=InMemoryExpiringStore(clock),
        refresh_tokens=InMemoryExpiringStore(clock),
        rate_limits=InMemoryExpiringStore(clock),
    )
