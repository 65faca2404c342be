"""
Shared fixtures.

Everything runs against the in-memory stores with a fast bcrypt cost and a
notifier that records what it would have sent.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from usergate.api.app import create_app
from usergate.auth.credentials import hash_password
from usergate.auth.permissions import Role
from usergate.auth.rate_limit import RateLimiter
from usergate.auth.recovery import RecoveryFlow
from usergate.auth.tokens import TokenService
from usergate.config import Settings
from usergate.integrations.email import Notifier
from usergate.services import create_services
from usergate.storage.base import UserRecord
from usergate.storage.local import InMemoryExpiringStore, InMemoryUserStore

PASSWORD = "Sup3r-Secret!"


# =============================================================================
# Test Doubles
# =============================================================================


class FakeClock:
    """Controllable wall clock; returns aware datetimes like utc_now()."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeEpoch:
    """Controllable epoch clock for the expiring stores and rate limiter."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNotifier(Notifier):
    """Captures outbound messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.codes: dict[str, str] = {}
        self.password_changed: list[str] = []
        self.fail = fail

    async def send_verification_code(self, email: str, code: str) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.codes[email] = code
        return True

    async def send_password_changed(self, email: str) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.password_changed.append(email)
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="test",
        bcrypt_rounds=4,
        jwt_secret_key="test-access-secret",
        jwt_refresh_secret_key="test-refresh-secret",
        sentry_dsn="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def epoch():
    return FakeEpoch()


@pytest.fixture
def password():
    """The password every `make_user` account is created with."""
    return PASSWORD


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def failing_notifier():
    return FakeNotifier(fail=True)


@pytest.fixture
def users():
    return InMemoryUserStore()


@pytest.fixture
def tokens(settings, clock):
    return TokenService(
        settings,
        denylist=InMemoryExpiringStore(),
        refresh_store=InMemoryExpiringStore(),
        clock=clock,
    )


@pytest.fixture
def rate_limiter(settings, epoch):
    return RateLimiter.from_settings(InMemoryExpiringStore(clock=epoch), settings, clock=epoch)


@pytest.fixture
def recovery(users, tokens, notifier, rate_limiter, settings):
    return RecoveryFlow(users, tokens, notifier, rate_limiter, settings)


@pytest.fixture
def make_user(users, settings):
    """Factory: store a user with the shared test password."""

    async def _make(email: str = "alice@example.com", role: Role = Role.USUARIO, name: str = "Alice") -> UserRecord:
        return await users.create(UserRecord(
            id=f"user_{email.split('@')[0]}",
            email=email,
            name=name,
            password_hash=hash_password(PASSWORD, rounds=settings.bcrypt_rounds),
            role=role,
        ))

    return _make


@pytest.fixture
def services(settings, users, notifier):
    return create_services(settings=settings, users=users, notifier=notifier)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client
