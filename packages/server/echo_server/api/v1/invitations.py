"""
Invitee-side invitation endpoints.

GET  /api/v1/invitations/{token}   — Preview (public)
POST /api/v1/invitations/accept    — Redeem (signed-in user)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.auth import SessionUser, require_user
from echo_server.core.database import get_session
from echo_server.core.permissions import Role
from echo_server.core.rate_limit import rate_limit
from echo_server.services import invitations as invitation_service
from echo_shared.schemas.invitations import (
    InvitationAcceptRequest,
    InvitationAcceptResponse,
    InvitationPreview,
)

router = APIRouter()


@router.post(
    "/accept",
    response_model=InvitationAcceptResponse,
    dependencies=[Depends(rate_limit("authenticated"))],
)
async def accept_invitation(
    body: InvitationAcceptRequest,
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Join the inviting organization with the invited role."""
    member = await invitation_service.redeem_invitation(
        session, token=body.token, user_id=user.user_id
    )
    return InvitationAcceptResponse(organization_id=member.organization_id, role=Role(member.role))


@router.get(
    "/{token}",
    response_model=InvitationPreview,
    dependencies=[Depends(rate_limit("public"))],
)
async def preview_invitation(
    token: str,
    session: AsyncSession = Depends(get_session),
):
    """Organization name, role and status for the invite landing page."""
    return await invitation_service.get_invitation_preview(session, token)
