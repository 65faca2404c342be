"""
Fixed-window rate limiter.

Counts requests per (action, client) inside a window. The counters live in
an injected ExpiringStore whose TTL is the window, so expired windows
disappear on their own and a shared store gives consistent limits across
instances.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from starlette.requests import Request

from usergate.config import Settings
from usergate.core.errors import RateLimitError
from usergate.storage.base import ExpiringStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int  # seconds until the window resets


@dataclass
class _Window:
    count: int
    reset_at: float


def rules_from_settings(settings: Settings) -> dict[str, RateLimitRule]:
    return {
        "forgot_password": RateLimitRule(
            settings.rate_limit_forgot_password,
            settings.rate_limit_forgot_password_window_seconds,
        ),
        "verify_code": RateLimitRule(
            settings.rate_limit_verify_code,
            settings.rate_limit_verify_code_window_seconds,
        ),
        "login": RateLimitRule(
            settings.rate_limit_login,
            settings.rate_limit_login_window_seconds,
        ),
    }


class RateLimiter:
    """Per-client, per-action request quotas."""
    
    def __init__(
        self,
        store: ExpiringStore,
        rules: dict[str, RateLimitRule],
        default_rule: RateLimitRule = RateLimitRule(10, 15 * 60),
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.rules = rules
        self.default_rule = default_rule
        self.clock = clock
    
    @classmethod
    def from_settings(
        cls,
        store: ExpiringStore,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> RateLimiter:
        return cls(
            store,
            rules_from_settings(settings),
            default_rule=RateLimitRule(settings.rate_limit_default, settings.rate_limit_default_window_seconds),
            clock=clock,
        )
    
    def rule_for(self, action: str) -> RateLimitRule:
        return self.rules.get(action, self.default_rule)
    
    async def check(self, client: str, action: str) -> RateLimitDecision:
        """Count one request and report whether it is within quota."""
        rule = self.rule_for(action)
        key = f"{action}:{client}"
        now = self.clock()
        
        window: _Window | None = await self.store.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + rule.window_seconds)
        
        window.count += 1
        await self.store.set(key, window, ttl=window.reset_at - now)
        
        return RateLimitDecision(
            allowed=window.count <= rule.max_requests,
            remaining=max(0, rule.max_requests - window.count),
            retry_after=max(1, math.ceil(window.reset_at - now)),
        )
    
    async def hit(self, client: str, action: str) -> RateLimitDecision:
        """Like check(), but raises RateLimitError when over quota."""
        decision = await self.check(client, action)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {action} from {client} (retry in {decision.retry_after}s)")
            raise RateLimitError(retry_after=decision.retry_after)
        return decision
    
    async def sweep(self) -> int:
        return await self.store.sweep()


def client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Client address used for rate limiting and audit lines.
    
    Forwarding headers are honoured only when the socket peer is one of
    `trusted_proxies`; anyone else could put any address there.
    
    Priority (trusted peer only):
      1. Right-most X-Forwarded-For entry that is not itself a trusted proxy
      2. X-Real-IP
    Otherwise the socket peer.
    """
    peer = request.client.host if request.client else None
    trusted = set(trusted_proxies)
    
    if peer is not None and peer in trusted:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
            for hop in reversed(hops):
                if hop not in trusted:
                    return hop
            if hops:
                return hops[0]
        
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    
    return peer or "unknown"
