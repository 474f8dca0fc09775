"""
Organization service — creation and lookup of tenants.
"""

from __future__ import annotations

import re
import unicodedata

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.errors import NotFound
from echo_server.core.permissions import Role, parse_role
from echo_server.models.membership import OrganizationMember
from echo_server.models.organization import Organization
from echo_server.services.memberships import SqlMembershipStore, UserOrganization
from echo_shared.schemas.organizations import OrgCreateRequest, OrgListItem

log = structlog.get_logger()

MAX_SLUG_LENGTH = 50


def slugify(name: str) -> str:
    """Lowercase ASCII slug: ``"Acme Feedback!"`` -> ``"acme-feedback"``."""
    normalized = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "org"


async def _slug_taken(session: AsyncSession, slug: str) -> bool:
    result = await session.execute(select(Organization.id).where(Organization.slug == slug))
    return result.first() is not None


async def unique_slug(session: AsyncSession, name: str) -> str:
    """Derive a slug from ``name``, suffixing ``-1``, ``-2``... until free."""
    base = slugify(name)
    slug = base
    suffix = 0
    while await _slug_taken(session, slug):
        suffix += 1
        slug = f"{base}-{suffix}"
    return slug


async def create_organization(
    session: AsyncSession,
    req: OrgCreateRequest,
    creator_id: str,
) -> Organization:
    """Create an org and make the creator its owner."""
    org = Organization(
        name=req.name.strip(),
        slug=await unique_slug(session, req.name),
        description=req.description,
    )
    session.add(org)
    await session.flush()

    session.add(
        OrganizationMember(
            organization_id=org.id,
            user_id=creator_id,
            role=Role.OWNER.value,
        )
    )
    await session.flush()

    log.info("org.created", org_id=org.id, slug=org.slug, creator=creator_id)
    return org


async def get_organization(session: AsyncSession, organization_id: str) -> Organization:
    org = await session.get(Organization, organization_id)
    if org is None:
        raise NotFound("Organization not found")
    return org


async def list_user_organizations(session: AsyncSession, user_id: str) -> list[UserOrganization]:
    """Organizations the user belongs to, for the organization switcher."""
    return await SqlMembershipStore(session).list_organizations_for_user(user_id)


def to_list_items(orgs: list[UserOrganization]) -> list[OrgListItem]:
    """Switcher entries; memberships with an unrecognized role are left out."""
    items = []
    for org in orgs:
        role = parse_role(org.role)
        if role is None:
            continue
        items.append(
            OrgListItem(id=org.id, name=org.name, slug=org.slug, description=org.description, role=role)
        )
    return items
