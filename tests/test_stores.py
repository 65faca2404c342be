"""
Tests for the in-memory storage backends.
"""

from datetime import timedelta

import pytest

from usergate.auth.permissions import Role
from usergate.core.errors import ConflictError, NotFoundError
from usergate.core.utils import utc_now
from usergate.storage.base import PendingCode, PendingReset, UserRecord
from usergate.storage.local import InMemoryExpiringStore, InMemoryUserStore, create_local_stores


def _user(user_id: str, email: str) -> UserRecord:
    return UserRecord(id=user_id, email=email, password_hash="$2b$04$hash")


# =============================================================================
# Expiring Store
# =============================================================================


class TestExpiringStore:
    
    @pytest.fixture
    def store(self, epoch):
        return InMemoryExpiringStore(clock=epoch)
    
    @pytest.mark.asyncio
    async def test_set_get_delete(self, store):
        await store.set("k", {"v": 1})
        assert await store.get("k") == {"v": 1}
        assert await store.delete("k")
        assert await store.get("k") is None
        assert not await store.delete("k")
    
    @pytest.mark.asyncio
    async def test_entries_expire(self, store, epoch):
        await store.set("short", 1, ttl=10)
        await store.set("forever", 2)
        
        epoch.advance(10)
        assert await store.get("short") is None
        assert await store.get("forever") == 2
    
    @pytest.mark.asyncio
    async def test_items_skip_expired(self, store, epoch):
        await store.set("a", 1, ttl=10)
        await store.set("b", 2, ttl=100)
        epoch.advance(50)
        assert await store.items() == [("b", 2)]
    
    @pytest.mark.asyncio
    async def test_sweep(self, store, epoch):
        await store.set("a", 1, ttl=10)
        await store.set("b", 2, ttl=10)
        await store.set("c", 3, ttl=100)
        
        epoch.advance(20)
        assert len(store) == 3
        assert await store.sweep() == 2
        assert len(store) == 1
        assert await store.sweep() == 0


# =============================================================================
# User Store
# =============================================================================


class TestUserStore:
    
    @pytest.fixture
    def store(self):
        return InMemoryUserStore()
    
    @pytest.mark.asyncio
    async def test_create_and_find(self, store):
        await store.create(_user("u1", "Alice@Example.com"))
        
        found = await store.find_by_email("alice@example.COM")
        assert found.id == "u1"
        assert found.email == "alice@example.com"
        assert found.role == Role.USUARIO
        assert (await store.find_by_id("u1")).email == "alice@example.com"
    
    @pytest.mark.asyncio
    async def test_duplicate_email(self, store):
        await store.create(_user("u1", "alice@example.com"))
        with pytest.raises(ConflictError):
            await store.create(_user("u2", "ALICE@example.com"))
    
    @pytest.mark.asyncio
    async def test_update(self, store):
        created = await store.create(_user("u1", "alice@example.com"))
        updated = await store.update("u1", name="Alice", role=Role.ADMIN)
        
        assert updated.name == "Alice"
        assert updated.role == Role.ADMIN
        assert updated.updated_at >= created.updated_at
    
    @pytest.mark.asyncio
    async def test_update_email_moves_index(self, store):
        await store.create(_user("u1", "alice@example.com"))
        await store.update("u1", email="Alice2@example.com")
        
        assert await store.find_by_email("alice@example.com") is None
        assert (await store.find_by_email("alice2@example.com")).id == "u1"
    
    @pytest.mark.asyncio
    async def test_update_email_conflict(self, store):
        await store.create(_user("u1", "alice@example.com"))
        await store.create(_user("u2", "bob@example.com"))
        with pytest.raises(ConflictError):
            await store.update("u2", email="alice@example.com")
    
    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update("nope", name="x")
    
    @pytest.mark.asyncio
    async def test_recovery_state(self, store):
        await store.create(_user("u1", "alice@example.com"))
        expires = utc_now() + timedelta(minutes=10)
        
        user = await store.update("u1", recovery=PendingCode(code="123456", expires_at=expires))
        assert isinstance(user.recovery, PendingCode)
        assert await store.find_by_reset_token("123456") is None
        
        await store.update("u1", recovery=PendingReset(token="t" * 32, expires_at=expires))
        assert (await store.find_by_reset_token("t" * 32)).id == "u1"
        
        await store.update("u1", recovery=None)
        assert await store.find_by_reset_token("t" * 32) is None
    
    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.create(_user("u1", "alice@example.com"))
        assert await store.delete("u1")
        assert await store.find_by_email("alice@example.com") is None
        assert not await store.delete("u1")
        
        # Email is free again
        await store.create(_user("u2", "alice@example.com"))
    
    @pytest.mark.asyncio
    async def test_list_and_count(self, store):
        for i in range(5):
            await store.create(_user(f"u{i}", f"user{i}@example.com"))
        
        assert await store.count() == 5
        page = await store.list_users(limit=2, offset=1)
        assert [u.id for u in page] == ["u1", "u2"]


# =============================================================================
# Factory
# =============================================================================


def test_create_local_stores_are_independent(epoch):
    stores = create_local_stores(clock=epoch)
    assert isinstance(stores.users, InMemoryUserStore)
    assert len({id(stores.denylist), id(stores.refresh_tokens), id(stores.rate_limits)}) == 3
