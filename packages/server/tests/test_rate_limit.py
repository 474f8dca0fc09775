"""
Tests for fixed-window rate limiting.

Covers:
- Counting, blocking and window reset
- Memory and Redis storage
- Key generators
- The 429 response envelope
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from echo_server.core.auth import SessionUser
from echo_server.core.errors import register_exception_handlers
from echo_server.core.rate_limit import (
    RATE_LIMITS,
    MemoryRateLimitStorage,
    RateLimitEntry,
    RateLimiter,
    RateLimitTier,
    RedisRateLimitStorage,
    api_key_key,
    get_rate_limiter,
    ip_key,
    rate_limit,
    user_key,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def tier(max_requests: int = 3, window: int = 60) -> RateLimitTier:
    return RateLimitTier("test", window, max_requests, ip_key)


def fake_request(headers=None, host="10.0.0.1", user=None):
    return SimpleNamespace(
        headers=headers or {},
        client=SimpleNamespace(host=host) if host else None,
        state=SimpleNamespace(user=user),
    )


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_blocks(self):
        clock = FakeClock()
        limiter = RateLimiter(MemoryRateLimitStorage(clock), clock)

        results = [await limiter.hit(tier(), "k") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].retry_after == 60

    @pytest.mark.asyncio
    async def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(MemoryRateLimitStorage(clock), clock)
        for _ in range(3):
            await limiter.hit(tier(), "k")

        clock.now += 30
        blocked = await limiter.hit(tier(), "k")
        assert not blocked.allowed
        assert blocked.retry_after == 30

        clock.now += 30
        fresh = await limiter.hit(tier(), "k")
        assert fresh.allowed
        assert fresh.remaining == 2

    @pytest.mark.asyncio
    async def test_keys_and_tiers_are_independent(self):
        clock = FakeClock()
        limiter = RateLimiter(MemoryRateLimitStorage(clock), clock)
        await limiter.hit(tier(max_requests=1), "a")

        assert (await limiter.hit(tier(max_requests=1), "b")).allowed
        other = RateLimitTier("other", 60, 1, ip_key)
        assert (await limiter.hit(other, "a")).allowed

    def test_configured_tiers(self):
        limits = {name: (t.window_seconds, t.max_requests) for name, t in RATE_LIMITS.items()}
        assert limits == {
            "public": (900, 100),
            "authenticated": (60, 60),
            "api_key": (60, 100),
            "write": (60, 20),
        }

    @pytest.mark.asyncio
    async def test_headers_shape(self):
        clock = FakeClock(0)
        limiter = RateLimiter(MemoryRateLimitStorage(clock), clock)
        headers = (await limiter.hit(tier(), "k")).headers()
        assert headers == {
            "X-RateLimit-Limit": "3",
            "X-RateLimit-Remaining": "2",
            "X-RateLimit-Reset": "1970-01-01T00:01:00+00:00",
        }


class TestStorage:
    @pytest.mark.asyncio
    async def test_memory_entries_expire(self):
        clock = FakeClock()
        storage = MemoryRateLimitStorage(clock)
        await storage.set("k", RateLimitEntry(count=1, reset_at=clock.now + 10))

        assert (await storage.get("k")).count == 1
        clock.now += 10
        assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_redis_setex_with_remaining_window(self):
        client = AsyncMock()
        storage = RedisRateLimitStorage(client, FakeClock(100.0))

        await storage.set("public:ip:1.2.3.4", RateLimitEntry(count=2, reset_at=160.5))

        client.setex.assert_awaited_once_with(
            "ratelimit:public:ip:1.2.3.4", 61, json.dumps({"count": 2, "reset_at": 160.5})
        )

    @pytest.mark.asyncio
    async def test_redis_get(self):
        client = AsyncMock()
        client.get.return_value = json.dumps({"count": 4, "reset_at": 200.0})
        storage = RedisRateLimitStorage(client)

        assert await storage.get("k") == RateLimitEntry(count=4, reset_at=200.0)
        client.get.assert_awaited_once_with("ratelimit:k")

        client.get.return_value = None
        assert await storage.get("missing") is None


# ---------------------------------------------------------------------------
# Key generators
# ---------------------------------------------------------------------------

class TestKeys:
    def test_ip_prefers_forwarded_for(self):
        request = fake_request({"x-forwarded-for": "1.1.1.1, 2.2.2.2", "x-real-ip": "3.3.3.3"})
        assert ip_key(request) == "ip:1.1.1.1"

    def test_ip_falls_back(self):
        assert ip_key(fake_request({"x-real-ip": "3.3.3.3"})) == "ip:3.3.3.3"
        assert ip_key(fake_request()) == "ip:10.0.0.1"
        assert ip_key(fake_request(host=None)) == "ip:unknown"

    def test_api_key_is_hashed(self):
        key = api_key_key(fake_request({"X-API-Key": "echo_secret"}))
        assert key.startswith("apikey:")
        assert "echo_secret" not in key

    def test_user_key(self):
        user = SessionUser(user_id="u1", email="u1@example.com")
        assert user_key(fake_request(user=user)) == "user:u1"
        assert user_key(fake_request()) == "ip:10.0.0.1"

    def test_api_key_falls_back_to_user_then_ip(self):
        user = SessionUser(user_id="u1", email="u1@example.com")
        assert api_key_key(fake_request(user=user)) == "user:u1"
        assert api_key_key(fake_request()) == "ip:10.0.0.1"


# ---------------------------------------------------------------------------
# Dependency over HTTP
# ---------------------------------------------------------------------------

class TestRateLimitDependency:
    def _make_app(self) -> FastAPI:
        app = FastAPI()
        register_exception_handlers(app)
        limiter = RateLimiter(MemoryRateLimitStorage())
        app.dependency_overrides[get_rate_limiter] = lambda: limiter

        @app.get("/limited", dependencies=[Depends(rate_limit("write"))])
        async def limited():
            return {"ok": True}

        return app

    def test_headers_then_429(self):
        client = TestClient(self._make_app())
        headers = {"X-API-Key": "echo_abc"}

        for _ in range(20):
            resp = client.get("/limited", headers=headers)
            assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "20"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

        resp = client.get("/limited", headers=headers)
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0
        body = resp.json()["error"]
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["status"] == 429
        assert body["retry_after"] == int(resp.headers["Retry-After"])

        other = client.get("/limited", headers={"X-API-Key": "echo_other"})
        assert other.status_code == 200
