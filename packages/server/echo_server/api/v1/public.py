"""
Public API, authenticated by organization API key.

The organization always comes from the key binding; request-supplied
organization ids are ignored here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.api_keys import ApiKeyContext, require_api_key
from echo_server.core.database import get_session
from echo_server.core.rate_limit import rate_limit
from echo_server.services import organizations as org_service
from echo_shared.schemas.api_keys import ApiKeyContextResponse

router = APIRouter(dependencies=[Depends(rate_limit("api_key"))])


@router.get("/organization", response_model=ApiKeyContextResponse)
async def get_bound_organization(
    key: ApiKeyContext = Depends(require_api_key),
    session: AsyncSession = Depends(get_session),
):
    """The organization this API key belongs to."""
    org = await org_service.get_organization(session, key.organization_id)
    return ApiKeyContextResponse(
        organization_id=org.id,
        organization_name=org.name,
        organization_slug=org.slug,
        api_key_id=key.api_key_id,
    )
