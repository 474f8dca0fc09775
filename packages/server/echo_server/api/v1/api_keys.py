"""
API key management for an organization (requires manage_api_keys).

GET    /api/v1/orgs/{orgId}/api-keys           — List keys (never the secret)
POST   /api/v1/orgs/{orgId}/api-keys           — Create a key; the secret is returned once
PATCH  /api/v1/orgs/{orgId}/api-keys/{keyId}   — Enable / disable
DELETE /api/v1/orgs/{orgId}/api-keys/{keyId}   — Delete
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.auth import OrgScope
from echo_server.core.database import get_session
from echo_server.core.org_context import OrgContext
from echo_server.core.permissions import Permission
from echo_server.core.rate_limit import rate_limit
from echo_server.models.api_key import ApiKey
from echo_server.services import api_keys as api_key_service
from echo_shared.schemas.api_keys import (
    ApiKeyCreatedResponse,
    ApiKeyCreateRequest,
    ApiKeyListResponse,
    ApiKeyResponse,
    ApiKeyUpdateRequest,
)

router = APIRouter()

manage_keys = OrgScope(Permission.MANAGE_API_KEYS)
write_limit = [Depends(rate_limit("write"))]


def _to_response(record: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=record.id,
        name=record.name,
        prefix=record.prefix,
        display_key=f"{record.prefix}...",
        disabled=record.disabled,
        last_used=record.last_used,
        expires_at=record.expires_at,
        created_at=record.created_at,
    )


@router.get("", response_model=ApiKeyListResponse)
async def list_keys(
    ctx: OrgContext = Depends(manage_keys),
    session: AsyncSession = Depends(get_session),
):
    records = await api_key_service.list_api_keys(session, ctx.organization_id)
    return ApiKeyListResponse(data=[_to_response(r) for r in records])


@router.post("", response_model=ApiKeyCreatedResponse, status_code=201, dependencies=write_limit)
async def create_key(
    body: ApiKeyCreateRequest,
    ctx: OrgContext = Depends(manage_keys),
    session: AsyncSession = Depends(get_session),
):
    """Create a key. The raw key is in this response and nowhere else."""
    raw_key, record = await api_key_service.create_api_key(
        session, ctx.organization_id, body.name, body.expires_in_days
    )
    return ApiKeyCreatedResponse(**_to_response(record).model_dump(), key=raw_key)


@router.patch("/{keyId}", response_model=ApiKeyResponse, dependencies=write_limit)
async def update_key(
    keyId: int,
    body: ApiKeyUpdateRequest,
    ctx: OrgContext = Depends(manage_keys),
    session: AsyncSession = Depends(get_session),
):
    record = await api_key_service.toggle_api_key(session, keyId, ctx.organization_id, body.disabled)
    return _to_response(record)


@router.delete(
    "/{keyId}", status_code=204, response_class=Response, dependencies=write_limit
)
async def delete_key(
    keyId: int,
    ctx: OrgContext = Depends(manage_keys),
    session: AsyncSession = Depends(get_session),
):
    await api_key_service.delete_api_key(session, keyId, ctx.organization_id)
    return Response(status_code=204)
