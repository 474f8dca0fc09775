"""
Organization context resolution.

For every organization-scoped request, determine the single target
organization and the caller's role in it. The organization id is taken from
the first non-empty source, highest precedence first:

  1. explicit  -- supplied by the calling code path (e.g. ``/orgs/{orgId}``)
  2. query     -- ``?organizationId=``
  3. header    -- ``x-organization-id``
  4. cookie    -- ``orgId`` (the browser's selected organization)

With an identity present, a membership row is mandatory. Without one, the
context is anonymous (role None) unless membership is required.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import structlog

from echo_server.core.errors import AccessDenied, MissingOrganization
from echo_server.core.permissions import Role, parse_role
from echo_server.services.memberships import MembershipStore
from echo_shared.schemas.common import ContextSource

log = structlog.get_logger()

ORG_QUERY_PARAM = "organizationId"
ORG_HEADER = "x-organization-id"
ORG_COOKIE = "orgId"


class ContextRequest(Protocol):
    """The parts of a request the resolver reads (Starlette ``Request`` fits)."""

    query_params: Mapping[str, str]
    headers: Mapping[str, str]
    cookies: Mapping[str, str]


@dataclass(frozen=True)
class OrgContext:
    organization_id: str
    role: Optional[Role]
    source: ContextSource


def _first(*candidates: tuple[Optional[str], ContextSource]) -> Optional[tuple[str, ContextSource]]:
    for value, source in candidates:
        if value:
            return value, source
    return None


def _get(mapping: Any, key: str) -> Optional[str]:
    if mapping is None:
        return None
    value = mapping.get(key)
    return value.strip() if isinstance(value, str) else None


def pick_organization_id(
    request: ContextRequest, explicit: Optional[str] = None
) -> Optional[tuple[str, ContextSource]]:
    """Apply the precedence rules; returns (organization_id, source) or None."""
    return _first(
        (explicit.strip() if explicit else None, ContextSource.EXPLICIT),
        (_get(request.query_params, ORG_QUERY_PARAM), ContextSource.QUERY),
        (_get(request.headers, ORG_HEADER), ContextSource.HEADER),
        (_get(getattr(request, "cookies", None), ORG_COOKIE), ContextSource.COOKIE),
    )


async def resolve_context(
    request: ContextRequest,
    store: MembershipStore,
    *,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    require_membership: bool = False,
) -> OrgContext:
    """Resolve the target organization and the caller's role in it.

    Raises:
        MissingOrganization: No source supplied an organization id.
        AccessDenied: The caller has no (valid) membership, or membership was
            required and there is no caller.
    """
    picked = pick_organization_id(request, organization_id)
    if picked is None:
        raise MissingOrganization()
    resolved, source = picked

    if user_id:
        membership = await store.get_membership(user_id, resolved)
        role = parse_role(membership.role) if membership is not None else None
        if role is None:
            log.info("org_context.access_denied", user_id=user_id, org_id=resolved, source=source.value)
            raise AccessDenied()
        return OrgContext(organization_id=resolved, role=role, source=source)

    if require_membership:
        raise AccessDenied()

    return OrgContext(organization_id=resolved, role=None, source=source)
