"""
Membership store and member management.

``MembershipStore`` is the read interface the context resolver depends on;
``SqlMembershipStore`` implements it over ``organization_members``. The
mutation helpers below (role change, removal) keep at least one owner/admin
in every organization.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.errors import Forbidden, LastAdminError, NotFound, ValidationFailed
from echo_server.core.permissions import ADMIN_ROLES, OWNER_ROLES, Role, parse_role
from echo_server.models.membership import OrganizationMember
from echo_server.models.organization import Organization
from echo_server.models.user import User

log = structlog.get_logger()


@dataclass(frozen=True)
class Membership:
    organization_id: str
    user_id: str
    role: str  # raw stored value; parsed by the caller


@dataclass(frozen=True)
class UserOrganization:
    id: str
    name: str
    slug: str
    description: Optional[str]
    role: str


@dataclass(frozen=True)
class MemberInfo:
    user_id: str
    email: str
    display_name: str
    role: str
    joined_at: datetime


class MembershipStore(Protocol):
    async def list_organizations_for_user(self, user_id: str) -> list[UserOrganization]: ...

    async def get_membership(self, user_id: str, organization_id: str) -> Optional[Membership]: ...

    async def list_members(self, organization_id: str) -> list[MemberInfo]: ...


class SqlMembershipStore:
    """MembershipStore over the relational schema. Every call re-reads."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_organizations_for_user(self, user_id: str) -> list[UserOrganization]:
        result = await self._session.execute(
            select(Organization, OrganizationMember.role)
            .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
            .where(OrganizationMember.user_id == user_id)
            .order_by(Organization.name)
        )
        return [
            UserOrganization(
                id=org.id,
                name=org.name,
                slug=org.slug,
                description=org.description,
                role=role,
            )
            for org, role in result.all()
        ]

    async def get_membership(self, user_id: str, organization_id: str) -> Optional[Membership]:
        result = await self._session.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Membership(organization_id=row.organization_id, user_id=row.user_id, role=row.role)

    async def list_members(self, organization_id: str) -> list[MemberInfo]:
        result = await self._session.execute(
            select(User, OrganizationMember)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at)
        )
        return [
            MemberInfo(
                user_id=user.id,
                email=user.email,
                display_name=user.display_name or user.email,
                role=member.role,
                joined_at=member.created_at,
            )
            for user, member in result.all()
        ]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def _get_member_row(
    session: AsyncSession, organization_id: str, user_id: str
) -> OrganizationMember:
    result = await session.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFound("Member not found")
    return member


async def _count_admins(session: AsyncSession, organization_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(OrganizationMember)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.role.in_([r.value for r in ADMIN_ROLES]),
        )
    )
    return result.scalar_one()


def _check_owner_change(actor_role: Role, *roles: Optional[Role]) -> None:
    if any(r in OWNER_ROLES for r in roles) and actor_role not in OWNER_ROLES:
        raise Forbidden("Only an owner can grant or revoke ownership")


async def update_member_role(
    session: AsyncSession,
    *,
    organization_id: str,
    member_user_id: str,
    new_role: Role,
    actor_role: Role,
) -> OrganizationMember:
    """Change a member's role, keeping at least one owner/admin."""
    member = await _get_member_row(session, organization_id, member_user_id)
    current = parse_role(member.role)
    _check_owner_change(actor_role, current, new_role)

    if current in ADMIN_ROLES and new_role not in ADMIN_ROLES:
        if await _count_admins(session, organization_id) <= 1:
            raise LastAdminError()

    member.role = new_role.value
    session.add(member)
    await session.flush()

    log.info(
        "member.role_updated",
        org_id=organization_id,
        user_id=member_user_id,
        old_role=current.value if current else None,
        new_role=new_role.value,
    )
    return member


async def remove_member(
    session: AsyncSession,
    *,
    organization_id: str,
    member_user_id: str,
    actor_user_id: str,
    actor_role: Role,
) -> None:
    """Remove a member from an organization."""
    if member_user_id == actor_user_id:
        raise ValidationFailed("Cannot remove yourself", code="CANNOT_REMOVE_SELF")

    member = await _get_member_row(session, organization_id, member_user_id)
    current = parse_role(member.role)
    _check_owner_change(actor_role, current)

    if current in ADMIN_ROLES and await _count_admins(session, organization_id) <= 1:
        raise LastAdminError()

    await session.execute(
        delete(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == member_user_id,
        )
    )
    await session.flush()
    log.info("member.removed", org_id=organization_id, user_id=member_user_id)
