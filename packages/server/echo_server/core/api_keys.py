"""
API key authentication for the versioned public API.

Keys look like ``echo_<org8>_<32 alphanumerics>``. Only the SHA-256 digest
(deterministic, so it can be looked up) and a 20-character display prefix are
persisted; the raw key is handed to its creator once and never again.

Authentication steps, each a possible terminal failure:
  1. extract from ``X-API-Key`` or ``Authorization: Bearer``  -> MissingApiKey
  2. look up by hash                                         -> InvalidApiKey
  3. disabled flag                                           -> ApiKeyDisabled
  4. expiry                                                  -> ApiKeyExpired
Usage (``last_used``) is recorded after the response in a separate session.
"""

from __future__ import annotations

import hashlib
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

import structlog
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.database import get_session, get_session_context
from echo_server.core.errors import ApiKeyDisabled, ApiKeyExpired, InvalidApiKey, MissingApiKey
from echo_server.models.api_key import ApiKey
from echo_server.models.base import as_utc, utcnow

log = structlog.get_logger()

API_KEY_PREFIX = "echo_"
API_KEY_HEADER = "X-API-Key"
DISPLAY_PREFIX_LENGTH = 20
_RANDOM_LENGTH = 32
_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ApiKeyContext:
    organization_id: str
    api_key_id: int


# ---------------------------------------------------------------------------
# Generation & hashing
# ---------------------------------------------------------------------------

def generate_api_key(organization_id: str) -> str:
    """Generate a new raw API key bound (by hint only) to an organization."""
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"{API_KEY_PREFIX}{organization_id[:8]}_{random_part}"


def hash_api_key(key: str) -> str:
    """One-way SHA-256 hex digest used for storage and lookup."""
    return hashlib.sha256(key.encode()).hexdigest()


def extract_api_key_prefix(key: str) -> str:
    """Non-secret display prefix shown in the key list."""
    return key[:DISPLAY_PREFIX_LENGTH]


def extract_api_key(headers: Mapping[str, str]) -> Optional[str]:
    """Read the raw key from ``X-API-Key`` or ``Authorization: Bearer``."""
    key = (headers.get(API_KEY_HEADER) or "").strip()
    if key:
        return key
    authorization = (headers.get("Authorization") or "").strip()
    if authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def get_api_key_by_hash(session: AsyncSession, hashed_key: str) -> Optional[ApiKey]:
    result = await session.execute(select(ApiKey).where(ApiKey.hashed_key == hashed_key))
    return result.scalar_one_or_none()


async def touch_api_key(session: AsyncSession, api_key_id: int, used_at: datetime) -> None:
    """Set ``last_used``; a single-row write with no read."""
    await session.execute(
        update(ApiKey).where(ApiKey.id == api_key_id).values(last_used=used_at)
    )


async def authenticate_api_key(
    headers: Mapping[str, str],
    session: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> ApiKeyContext:
    """Map a request's API key to its organization binding."""
    raw_key = extract_api_key(headers)
    if raw_key is None:
        raise MissingApiKey()

    record = await get_api_key_by_hash(session, hash_api_key(raw_key))
    if record is None:
        log.info("api_key.invalid", prefix=extract_api_key_prefix(raw_key))
        raise InvalidApiKey()

    if record.disabled:
        log.info("api_key.disabled", api_key_id=record.id, org_id=record.organization_id)
        raise ApiKeyDisabled()

    now = now or utcnow()
    if record.expires_at is not None and as_utc(record.expires_at) <= now:
        log.info("api_key.expired", api_key_id=record.id, org_id=record.organization_id)
        raise ApiKeyExpired()

    return ApiKeyContext(organization_id=record.organization_id, api_key_id=record.id)


async def record_api_key_usage(api_key_id: int, used_at: datetime) -> None:
    """Best-effort ``last_used`` update in its own session.

    A failed write is logged and dropped; it never changes the outcome of the
    request that used the key.
    """
    try:
        async with get_session_context() as session:
            await touch_api_key(session, api_key_id, used_at)
    except (SQLAlchemyError, OSError) as exc:
        log.warning("api_key.usage_record_failed", api_key_id=api_key_id, error=str(exc))


async def require_api_key(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> ApiKeyContext:
    """FastAPI dependency for API-key authenticated routes."""
    context = await authenticate_api_key(request.headers, session)
    background_tasks.add_task(record_api_key_usage, context.api_key_id, utcnow())
    request.state.api_key = context
    return context
