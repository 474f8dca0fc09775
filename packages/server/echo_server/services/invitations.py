"""
Invitation service — create, preview and redeem invitations.

Lifecycle:
  pending  -> accepted   (redeemed once, membership created in the same transaction)
  pending  -> expired    (now >= expires_at; nothing is written)
  accepted -> accepted   (re-redemption rejected with 409)

Redemption guards against concurrent double use with a conditional update:
only the request whose ``UPDATE ... WHERE accepted_at IS NULL`` touches the row
goes on to insert the membership.
"""

from __future__ import annotations

import html
import secrets
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.config import get_settings
from echo_server.core.email import EmailMessage, EmailSender
from echo_server.core.errors import (
    AlreadyMember,
    InvitationAlreadyAccepted,
    InvitationExpired,
    InvitationNotFound,
    ValidationFailed,
)
from echo_server.core.permissions import Role, parse_role
from echo_server.models.base import as_utc, utcnow
from echo_server.models.invitation import Invitation
from echo_server.models.membership import OrganizationMember
from echo_server.models.organization import Organization
from echo_shared.schemas.invitations import InvitationPreview, InvitationStatus

log = structlog.get_logger()

TOKEN_BYTES = 32


def generate_invitation_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def build_invite_expiry(now: datetime, ttl_days: Optional[int] = None) -> datetime:
    days = ttl_days if ttl_days is not None else get_settings().invitation_ttl_days
    return now + timedelta(days=days)


def build_invite_url(token: str) -> str:
    return f"{get_settings().app_base_url.rstrip('/')}/invite/{token}"


def is_expired(invitation: Invitation, now: datetime) -> bool:
    """An invitation is unusable from the instant ``expires_at`` is reached."""
    return as_utc(invitation.expires_at) <= now


def invitation_status(invitation: Invitation, now: datetime) -> InvitationStatus:
    if invitation.accepted_at is not None:
        return InvitationStatus.ACCEPTED
    if is_expired(invitation, now):
        return InvitationStatus.EXPIRED
    return InvitationStatus.PENDING


async def get_invitation_by_token(session: AsyncSession, token: str) -> Optional[Invitation]:
    result = await session.execute(select(Invitation).where(Invitation.token == token))
    return result.scalar_one_or_none()


def _render_invite_email(to: str, org_name: str, invite_url: str, role: Role) -> EmailMessage:
    safe_name = html.escape(org_name)
    safe_url = html.escape(invite_url, quote=True)
    return EmailMessage(
        to=to,
        subject=f"You're invited to join {org_name} on Echo",
        html=(
            f"<p>You have been invited to join <strong>{safe_name}</strong> "
            f"as <em>{role.value}</em>.</p>"
            f'<p><a href="{safe_url}">Accept the invitation</a></p>'
        ),
        text=f"Accept the invitation to join {org_name}: {invite_url}",
    )


async def create_invitation(
    session: AsyncSession,
    *,
    organization_id: str,
    email: str,
    role: Role,
    invited_by: str,
    email_sender: EmailSender,
    now: Optional[datetime] = None,
) -> tuple[Invitation, str, bool]:
    """Persist an invitation and send its email.

    Returns (invitation, invite_url, email_sent). A failed send is logged and
    does not undo the invitation.
    """
    if role == Role.OWNER:
        raise ValidationFailed("owner cannot be granted by invitation")

    org = await session.get(Organization, organization_id)
    if org is None:
        raise InvitationNotFound("Organization not found")

    now = now or utcnow()
    invitation = Invitation(
        organization_id=organization_id,
        email=email.lower(),
        role=role.value,
        token=generate_invitation_token(),
        invited_by=invited_by,
        expires_at=build_invite_expiry(now),
    )
    session.add(invitation)
    await session.flush()

    invite_url = build_invite_url(invitation.token)
    log.info(
        "invitation.created",
        invitation_id=invitation.id,
        org_id=organization_id,
        role=role.value,
        invited_by=invited_by,
    )

    message = _render_invite_email(invitation.email, org.name, invite_url, role)
    try:
        result = await email_sender.send(message)
    except Exception:
        log.exception(
            "invitation.email_failed", invitation_id=invitation.id, org_id=organization_id
        )
        return invitation, invite_url, False

    if not result.success:
        log.warning(
            "invitation.email_failed",
            invitation_id=invitation.id,
            org_id=organization_id,
            error=result.error,
        )
    return invitation, invite_url, result.success


async def get_invitation_preview(
    session: AsyncSession, token: str, *, now: Optional[datetime] = None
) -> InvitationPreview:
    """Public view of an invitation for the invite landing page."""
    invitation = await get_invitation_by_token(session, token)
    if invitation is None:
        raise InvitationNotFound()
    org = await session.get(Organization, invitation.organization_id)
    role = parse_role(invitation.role)
    if org is None or role is None:
        raise InvitationNotFound()

    return InvitationPreview(
        organization_name=org.name,
        organization_slug=org.slug,
        email=invitation.email,
        role=role,
        status=invitation_status(invitation, now or utcnow()),
        expires_at=as_utc(invitation.expires_at),
    )


async def redeem_invitation(
    session: AsyncSession,
    *,
    token: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> OrganizationMember:
    """Turn a pending invitation into a membership, at most once.

    The acceptance mark and the membership row are written in the caller's
    transaction and commit (or roll back) together.
    """
    now = now or utcnow()

    invitation = await get_invitation_by_token(session, token)
    if invitation is None:
        raise InvitationNotFound()
    if invitation.accepted_at is not None:
        raise InvitationAlreadyAccepted()
    if is_expired(invitation, now):
        raise InvitationExpired()

    role = parse_role(invitation.role)
    if role is None:
        log.error("invitation.invalid_role", invitation_id=invitation.id, role=invitation.role)
        raise InvitationNotFound()

    existing = await session.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == invitation.organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyMember()

    result = await session.execute(
        update(Invitation)
        .where(Invitation.id == invitation.id, Invitation.accepted_at.is_(None))
        .values(accepted_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        log.info("invitation.redeem_race_lost", invitation_id=invitation.id, user_id=user_id)
        raise InvitationAlreadyAccepted()

    member = OrganizationMember(
        organization_id=invitation.organization_id,
        user_id=user_id,
        role=role.value,
        created_at=now,
    )
    session.add(member)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise AlreadyMember() from exc

    invitation.accepted_at = now
    log.info(
        "invitation.accepted",
        invitation_id=invitation.id,
        org_id=invitation.organization_id,
        user_id=user_id,
        role=role.value,
    )
    return member
