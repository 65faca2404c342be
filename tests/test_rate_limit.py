"""
Tests for the fixed-window rate limiter and client address resolution.
"""

import pytest
from starlette.requests import Request

from usergate.auth.rate_limit import RateLimiter, RateLimitRule, client_ip, rules_from_settings
from usergate.core.errors import RateLimitError
from usergate.storage.local import InMemoryExpiringStore


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.1", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


# =============================================================================
# Limiter
# =============================================================================


class TestRateLimiter:
    
    def test_rules_from_settings(self, settings):
        rules = rules_from_settings(settings)
        assert rules["forgot_password"] == RateLimitRule(5, 15 * 60)
        assert rules["verify_code"] == RateLimitRule(10, 5 * 60)
        assert rules["login"] == RateLimitRule(10, 15 * 60)
    
    @pytest.mark.asyncio
    async def test_sixth_forgot_password_request_is_rejected(self, rate_limiter):
        for i in range(5):
            decision = await rate_limiter.hit("1.2.3.4", "forgot_password")
            assert decision.remaining == 4 - i
        
        with pytest.raises(RateLimitError) as exc_info:
            await rate_limiter.hit("1.2.3.4", "forgot_password")
        assert exc_info.value.status_code == 429
        assert 0 < exc_info.value.retry_after <= 15 * 60
    
    @pytest.mark.asyncio
    async def test_window_resets(self, rate_limiter, epoch):
        for _ in range(5):
            await rate_limiter.hit("1.2.3.4", "forgot_password")
        
        epoch.advance(15 * 60)
        decision = await rate_limiter.hit("1.2.3.4", "forgot_password")
        assert decision.allowed
        assert decision.remaining == 4
    
    @pytest.mark.asyncio
    async def test_retry_after_counts_down(self, rate_limiter, epoch):
        for _ in range(10):
            await rate_limiter.check("1.2.3.4", "verify_code")
        
        epoch.advance(100)
        decision = await rate_limiter.check("1.2.3.4", "verify_code")
        assert not decision.allowed
        assert decision.retry_after == 5 * 60 - 100
    
    @pytest.mark.asyncio
    async def test_clients_and_actions_are_independent(self, rate_limiter):
        for _ in range(5):
            await rate_limiter.hit("1.2.3.4", "forgot_password")
        
        assert (await rate_limiter.check("5.6.7.8", "forgot_password")).allowed
        assert (await rate_limiter.check("1.2.3.4", "verify_code")).allowed
    
    @pytest.mark.asyncio
    async def test_unknown_action_uses_default_rule(self, epoch):
        limiter = RateLimiter(InMemoryExpiringStore(clock=epoch), {}, default_rule=RateLimitRule(2, 60), clock=epoch)
        assert (await limiter.check("c", "anything")).allowed
        assert (await limiter.check("c", "anything")).allowed
        assert not (await limiter.check("c", "anything")).allowed
    
    @pytest.mark.asyncio
    async def test_sweep_drops_finished_windows(self, rate_limiter, epoch):
        await rate_limiter.hit("1.2.3.4", "verify_code")
        await rate_limiter.hit("1.2.3.4", "forgot_password")
        
        epoch.advance(5 * 60)
        assert await rate_limiter.sweep() == 1


# =============================================================================
# Client Address
# =============================================================================


class TestClientIp:
    
    def test_socket_peer(self):
        assert client_ip(_request()) == "10.0.0.1"
    
    def test_unknown(self):
        assert client_ip(_request(client=None)) == "unknown"
    
    def test_forwarded_headers_ignored_from_untrusted_peer(self):
        request = _request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.1"})
        assert client_ip(request) == "10.0.0.1"
        assert client_ip(request, trusted_proxies=["10.0.0.99"]) == "10.0.0.1"
    
    def test_forwarded_for_from_trusted_proxy(self):
        request = _request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.1"})
        assert client_ip(request, trusted_proxies=["10.0.0.1"]) == "203.0.113.7"
    
    def test_forwarded_for_skips_trusted_hops(self):
        request = _request({"X-Forwarded-For": "198.51.100.23, 203.0.113.7, 10.0.0.2"})
        assert client_ip(request, trusted_proxies=["10.0.0.1", "10.0.0.2"]) == "203.0.113.7"
    
    def test_forwarded_for_all_trusted(self):
        request = _request({"X-Forwarded-For": "10.0.0.3, 10.0.0.2"})
        assert client_ip(request, trusted_proxies=["10.0.0.1", "10.0.0.2", "10.0.0.3"]) == "10.0.0.3"
    
    def test_real_ip_from_trusted_proxy(self):
        request = _request({"X-Real-IP": "198.51.100.1"})
        assert client_ip(request, trusted_proxies=["10.0.0.1"]) == "198.51.100.1"
