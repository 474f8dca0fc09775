"""
API key service — creation, listing, toggling and deletion.

Every mutation is scoped by organization id so one tenant can never touch
another tenant's key.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.api_keys import extract_api_key_prefix, generate_api_key, hash_api_key
from echo_server.core.errors import NotFound
from echo_server.models.api_key import ApiKey
from echo_server.models.base import utcnow

log = structlog.get_logger()


async def create_api_key(
    session: AsyncSession,
    organization_id: str,
    name: str,
    expires_in_days: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> tuple[str, ApiKey]:
    """Create a key. Returns (raw_key, record); the raw key is not stored."""
    now = now or utcnow()
    raw_key = generate_api_key(organization_id)
    record = ApiKey(
        organization_id=organization_id,
        name=name,
        hashed_key=hash_api_key(raw_key),
        prefix=extract_api_key_prefix(raw_key),
        disabled=False,
        expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
    )
    session.add(record)
    await session.flush()

    log.info("api_key.created", api_key_id=record.id, org_id=organization_id, name=name)
    return raw_key, record


async def list_api_keys(session: AsyncSession, organization_id: str) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey)
        .where(ApiKey.organization_id == organization_id)
        .order_by(ApiKey.created_at)
    )
    return list(result.scalars().all())


async def _get_scoped(session: AsyncSession, api_key_id: int, organization_id: str) -> ApiKey:
    result = await session.execute(
        select(ApiKey).where(
            ApiKey.id == api_key_id,
            ApiKey.organization_id == organization_id,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFound("API key not found")
    return record


async def toggle_api_key(
    session: AsyncSession, api_key_id: int, organization_id: str, disabled: bool
) -> ApiKey:
    record = await _get_scoped(session, api_key_id, organization_id)
    record.disabled = disabled
    session.add(record)
    await session.flush()
    log.info("api_key.toggled", api_key_id=api_key_id, org_id=organization_id, disabled=disabled)
    return record


async def delete_api_key(session: AsyncSession, api_key_id: int, organization_id: str) -> None:
    record = await _get_scoped(session, api_key_id, organization_id)
    await session.delete(record)
    await session.flush()
    log.info("api_key.deleted", api_key_id=api_key_id, org_id=organization_id)

