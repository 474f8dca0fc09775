"""
Organization and membership schemas shared between the server and its clients.

Covers: org create/list/get, member list and role changes, and the resolved
request context returned to the organization switcher.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import ContextSource, Role


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organization display name")
    description: Optional[str] = Field(None, max_length=500)


class MemberRoleUpdateRequest(BaseModel):
    role: Role


class SelectOrgRequest(BaseModel):
    organization_id: str = Field(..., min_length=1, max_length=64)

    model_config = {"str_strip_whitespace": True}


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    custom_domain: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrgListItem(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    role: Role  # the requesting user's role in this org


class OrgListResponse(BaseModel):
    data: list[OrgListItem]


class MemberResponse(BaseModel):
    user_id: str
    email: str
    display_name: str
    role: Role
    joined_at: datetime


class MemberListResponse(BaseModel):
    data: list[MemberResponse]


class OrgContextResponse(BaseModel):
    organization_id: str
    role: Optional[Role] = None
    source: ContextSource
