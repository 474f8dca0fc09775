"""
Fixed-window rate limiting.

Each tier counts requests per key inside a window; the first request after the
window has elapsed starts a new one. Exceeding the tier raises ``RateLimited``
(429 with ``Retry-After``); allowed requests get ``X-RateLimit-*`` headers.

Storage:
- ``MemoryRateLimitStorage`` keeps counters in this process only. Behind
  several workers each one enforces its own limit.
- ``RedisRateLimitStorage`` shares counters across workers under
  ``ratelimit:<key>`` with a TTL of the remaining window.
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import redis.asyncio as redis
import structlog
from fastapi import Depends, Request, Response

from echo_server.core.api_keys import extract_api_key, hash_api_key
from echo_server.core.auth import SessionUser, get_session_user
from echo_server.core.config import get_settings
from echo_server.core.errors import RateLimited
from echo_server.core.redis import get_redis

log = structlog.get_logger()

KeyGenerator = Callable[[Request], str]


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> dict[str, str]:
        reset = datetime.fromtimestamp(self.reset_at, tz=timezone.utc)
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset.isoformat(),
        }


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class RateLimitStorage(Protocol):
    async def get(self, key: str) -> Optional[RateLimitEntry]: ...

    async def set(self, key: str, entry: RateLimitEntry) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryRateLimitStorage:
    """Process-local counters."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: dict[str, RateLimitEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        entry = self._entries.get(key)
        if entry is not None and entry.reset_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, entry: RateLimitEntry) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class RedisRateLimitStorage:
    """Counters shared through Redis."""

    prefix = "ratelimit:"

    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time):
        self._client = client
        self._clock = clock

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        data = await self._client.get(f"{self.prefix}{key}")
        if not data:
            return None
        return RateLimitEntry(**json.loads(data))

    async def set(self, key: str, entry: RateLimitEntry) -> None:
        ttl = max(1, math.ceil(entry.reset_at - self._clock()))
        await self._client.setex(f"{self.prefix}{key}", ttl, json.dumps(asdict(entry)))

    async def delete(self, key: str) -> None:
        await self._client.delete(f"{self.prefix}{key}")


# ---------------------------------------------------------------------------
# Key generators
# ---------------------------------------------------------------------------

def ip_key(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    ip = forwarded or request.headers.get("x-real-ip") or (
        request.client.host if request.client else None
    )
    return f"ip:{ip or 'unknown'}"


def user_key(request: Request) -> str:
    """Key by signed-in user (set on ``request.state`` by the session dependency)."""
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.user_id}"
    return ip_key(request)


def api_key_key(request: Request) -> str:
    """Key by API key digest, else by signed-in user, else by IP.

    The raw secret never reaches the counter store.
    """
    raw_key = extract_api_key(request.headers)
    if raw_key:
        return f"apikey:{hash_api_key(raw_key)}"
    return user_key(request)


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitTier:
    name: str
    window_seconds: int
    max_requests: int
    key: KeyGenerator


RATE_LIMITS: dict[str, RateLimitTier] = {
    "public": RateLimitTier("public", 15 * 60, 100, ip_key),
    "authenticated": RateLimitTier("authenticated", 60, 60, user_key),
    "api_key": RateLimitTier("api_key", 60, 100, api_key_key),
    "write": RateLimitTier("write", 60, 20, api_key_key),
}


class RateLimiter:
    def __init__(self, storage: RateLimitStorage, clock: Callable[[], float] = time.time):
        self.storage = storage
        self._clock = clock

    async def hit(self, tier: RateLimitTier, key: str) -> RateLimitResult:
        """Count one request against ``key`` and report whether it may proceed."""
        now = self._clock()
        storage_key = f"{tier.name}:{key}"
        entry = await self.storage.get(storage_key)

        if entry is None or entry.reset_at <= now:
            entry = RateLimitEntry(count=1, reset_at=now + tier.window_seconds)
        else:
            entry.count += 1
        await self.storage.set(storage_key, entry)

        return RateLimitResult(
            allowed=entry.count <= tier.max_requests,
            limit=tier.max_requests,
            remaining=max(0, tier.max_requests - entry.count),
            reset_at=entry.reset_at,
            retry_after=max(1, math.ceil(entry.reset_at - now)),
        )


_memory_storage = MemoryRateLimitStorage()


async def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency: limiter over the configured backend."""
    if get_settings().rate_limit_backend == "redis":
        return RateLimiter(RedisRateLimitStorage(await get_redis()))
    return RateLimiter(_memory_storage)


def rate_limit(tier_name: str):
    """Build a route dependency enforcing the named tier."""
    tier = RATE_LIMITS[tier_name]

    async def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
        _user: Optional[SessionUser] = Depends(get_session_user),
    ) -> RateLimitResult:
        key = tier.key(request)
        result = await limiter.hit(tier, key)
        if not result.allowed:
            log.warning("rate_limit.exceeded", tier=tier.name, key=key, path=request.url.path)
            raise RateLimited(result.retry_after, headers=result.headers())
        response.headers.update(result.headers())
        return result

    return dependency
