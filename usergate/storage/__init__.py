"""
Storage abstractions.

Integration points:
- ExpiringStore → Redis / ElastiCache when scaled beyond one process
- UserStore → SQL table, LDAP directory or Supabase
"""

from usergate.storage.base import (
    ExpiringStore,
    UserStore,
    UserRecord,
    UserResponse,
    PendingCode,
    PendingReset,
    RecoveryState,
)
from usergate.storage.local import (
    InMemoryExpiringStore,
    InMemoryUserStore,
    LocalStores,
    create_local_stores,
)

__all__ = [
    "ExpiringStore",
    "UserStore",
    "UserRecord",
    "UserResponse",
    "PendingCode",
    "PendingReset",
    "RecoveryState",
    "InMemoryExpiringStore",
    "InMemoryUserStore",
    "LocalStores",
    "create_local_stores",
]
