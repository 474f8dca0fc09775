"""
Organization API endpoints.

GET    /api/v1/orgs                              — List orgs for the signed-in user
POST   /api/v1/orgs                              — Create an org (creator becomes owner)
GET    /api/v1/context                           — Resolve org from query/header/cookie
GET    /api/v1/orgs/{orgId}                      — Get org details (members)
GET    /api/v1/orgs/{orgId}/context              — Caller's role in the org
GET    /api/v1/orgs/{orgId}/members              — List members
PATCH  /api/v1/orgs/{orgId}/members/{userId}     — Change a member's role
DELETE /api/v1/orgs/{orgId}/members/{userId}     — Remove a member
POST   /api/v1/orgs/{orgId}/invitations          — Invite by email
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.auth import OrgScope, SessionUser, get_membership_store, require_user
from echo_server.core.database import get_session
from echo_server.core.email import EmailSender, get_email_sender
from echo_server.core.org_context import OrgContext
from echo_server.core.permissions import Permission, parse_role
from echo_server.core.rate_limit import rate_limit
from echo_server.services import invitations as invitation_service
from echo_server.services import memberships as member_service
from echo_server.services import organizations as org_service
from echo_server.services import users as user_service
from echo_server.services.memberships import MembershipStore
from echo_shared.schemas.invitations import (
    InvitationCreatedResponse,
    InvitationCreateRequest,
    InvitationResponse,
)
from echo_shared.schemas.organizations import (
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
    OrgContextResponse,
    OrgCreateRequest,
    OrgListResponse,
    OrgResponse,
)

log = structlog.get_logger()


def _context_response(ctx: OrgContext) -> OrgContextResponse:
    return OrgContextResponse(organization_id=ctx.organization_id, role=ctx.role, source=ctx.source)


# ---------------------------------------------------------------------------
# Non-org-scoped routes (no orgId in path)
# ---------------------------------------------------------------------------
router_global = APIRouter()


@router_global.get("/orgs", response_model=OrgListResponse, tags=["Organizations"])
async def list_orgs(
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """List orgs the signed-in user belongs to."""
    orgs = await org_service.list_user_organizations(session, user.user_id)
    return OrgListResponse(data=org_service.to_list_items(orgs))


@router_global.post(
    "/orgs",
    response_model=OrgResponse,
    status_code=201,
    tags=["Organizations"],
    dependencies=[Depends(rate_limit("authenticated"))],
)
async def create_org(
    body: OrgCreateRequest,
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Create a new organization. The creator becomes its owner."""
    org = await org_service.create_organization(session, body, user.user_id)
    return OrgResponse.model_validate(org)


@router_global.get("/context", response_model=OrgContextResponse, tags=["Organizations"])
async def current_context(ctx: OrgContext = Depends(OrgScope())):
    """The organization selected by query, header or ``orgId`` cookie, and the caller's role."""
    return _context_response(ctx)


# ---------------------------------------------------------------------------
# Org-scoped routes (orgId in path)
# ---------------------------------------------------------------------------
router_scoped = APIRouter()


@router_scoped.get("", response_model=OrgResponse, tags=["Organizations"])
async def get_org(
    ctx: OrgContext = Depends(OrgScope()),
    session: AsyncSession = Depends(get_session),
):
    """Get org details."""
    org = await org_service.get_organization(session, ctx.organization_id)
    return OrgResponse.model_validate(org)


@router_scoped.get("/context", response_model=OrgContextResponse, tags=["Organizations"])
async def get_context(ctx: OrgContext = Depends(OrgScope())):
    return _context_response(ctx)


@router_scoped.get("/members", response_model=MemberListResponse, tags=["Members"])
async def list_members(
    ctx: OrgContext = Depends(OrgScope()),
    store: MembershipStore = Depends(get_membership_store),
):
    """List members of the org (any member may view)."""
    members = await store.list_members(ctx.organization_id)
    data = []
    for m in members:
        role = parse_role(m.role)
        if role is None:
            continue
        data.append(
            MemberResponse(
                user_id=m.user_id,
                email=m.email,
                display_name=m.display_name,
                role=role,
                joined_at=m.joined_at,
            )
        )
    return MemberListResponse(data=data)


@router_scoped.patch("/members/{userId}", response_model=MemberResponse, tags=["Members"])
async def update_member(
    userId: str,
    body: MemberRoleUpdateRequest,
    ctx: OrgContext = Depends(OrgScope(Permission.MANAGE_MEMBERS)),
    session: AsyncSession = Depends(get_session),
):
    """Change a member's role (requires manage_members)."""
    member = await member_service.update_member_role(
        session,
        organization_id=ctx.organization_id,
        member_user_id=userId,
        new_role=body.role,
        actor_role=ctx.role,
    )
    account = await user_service.get_user(session, userId)
    return MemberResponse(
        user_id=member.user_id,
        email=account.email,
        display_name=account.display_name or account.email,
        role=body.role,
        joined_at=member.created_at,
    )


@router_scoped.delete(
    "/members/{userId}", status_code=204, response_class=Response, tags=["Members"]
)
async def remove_member(
    userId: str,
    ctx: OrgContext = Depends(OrgScope(Permission.MANAGE_MEMBERS)),
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Remove a member (requires manage_members). Members cannot remove themselves."""
    await member_service.remove_member(
        session,
        organization_id=ctx.organization_id,
        member_user_id=userId,
        actor_user_id=user.user_id,
        actor_role=ctx.role,
    )
    return Response(status_code=204)


@router_scoped.post(
    "/invitations",
    response_model=InvitationCreatedResponse,
    status_code=201,
    tags=["Invitations"],
    dependencies=[Depends(rate_limit("authenticated"))],
)
async def create_invitation(
    body: InvitationCreateRequest,
    ctx: OrgContext = Depends(OrgScope(Permission.MANAGE_MEMBERS)),
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """Invite someone by email (requires manage_members)."""
    invitation, invite_url, email_sent = await invitation_service.create_invitation(
        session,
        organization_id=ctx.organization_id,
        email=body.email,
        role=body.role,
        invited_by=user.user_id,
        email_sender=email_sender,
    )
    return InvitationCreatedResponse(
        data=InvitationResponse.model_validate(invitation),
        invite_url=invite_url,
        email_sent=email_sent,
    )
