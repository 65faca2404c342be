"""
Service container.

Built once at process start and stored on `app.state.services`. Routes and
dependencies receive collaborators from here instead of module globals, so
tests and multi-instance deployments can swap any store.
"""

from __future__ import annotations

import logging

from fastapi import Request
from pydantic import BaseModel

from usergate.auth.policies import Authorizer
from usergate.auth.rate_limit import RateLimiter
from usergate.auth.recovery import RecoveryFlow
from usergate.auth.tokens import TokenService
from usergate.config import Settings, get_settings
from usergate.integrations.email import EmailService, Notifier
from usergate.storage.base import ExpiringStore, UserStore
from usergate.storage.local import create_local_stores

logger = logging.getLogger(__name__)


class AuthServices(BaseModel):
    """Container for every collaborator the API needs."""
    
    model_config = {"arbitrary_types_allowed": True}
    
    settings: Settings
    users: UserStore
    notifier: Notifier
    tokens: TokenService
    rate_limiter: RateLimiter
    authorizer: Authorizer
    recovery: RecoveryFlow
    
    async def sweep(self) -> int:
        """Purge expired denylist, refresh token and rate limit entries."""
        removed = await self.tokens.sweep() + await self.rate_limiter.sweep()
        if removed:
            logger.info(f"Swept {removed} expired cache entries")
        return removed


def create_services(
    settings: Settings | None = None,
    users: UserStore | None = None,
    notifier: Notifier | None = None,
    denylist: ExpiringStore | None = None,
    refresh_store: ExpiringStore | None = None,
    rate_limit_store: ExpiringStore | None = None,
) -> AuthServices:
    """Wire the services; anything not given gets the in-memory implementation."""
    settings = settings or get_settings()
    local = create_local_stores()
    if users is None:
        users = local.users
    if notifier is None:
        notifier = EmailService(settings)
    
    tokens = TokenService(
        settings,
        denylist=denylist if denylist is not None else local.denylist,
        refresh_store=refresh_store if refresh_store is not None else local.refresh_tokens,
    )
    rate_limiter = RateLimiter.from_settings(
        rate_limit_store if rate_limit_store is not None else local.rate_limits,
        settings,
    )
    
    return AuthServices(
        settings=settings,
        users=users,
        notifier=notifier,
        tokens=tokens,
        rate_limiter=rate_limiter,
        authorizer=Authorizer(tokens, settings),
        recovery=RecoveryFlow(users, tokens, notifier, rate_limiter, settings),
    )


def get_services(request: Request) -> AuthServices:
    """FastAPI dependency: the container attached at startup."""
    return request.app.state.services
