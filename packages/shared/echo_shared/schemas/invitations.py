"""Invitation schemas: create (admin side), preview and accept (invitee side)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .common import Role


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: Role = Role.CUSTOMER

    @field_validator("role")
    @classmethod
    def _no_owner_invites(cls, value: Role) -> Role:
        if value == Role.OWNER:
            raise ValueError("owner cannot be granted by invitation")
        return value


class InvitationAcceptRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)

    @field_validator("token")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Token is required")
        return value


class InvitationResponse(BaseModel):
    id: str
    organization_id: str
    email: str
    role: Role
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreatedResponse(BaseModel):
    data: InvitationResponse
    invite_url: str  # contains the token; shown to the inviter once
    email_sent: bool


class InvitationAcceptResponse(BaseModel):
    organization_id: str
    role: Role
    message: str = "Invitation accepted"


class InvitationPreview(BaseModel):
    organization_name: str
    organization_slug: str
    email: str
    role: Role
    status: InvitationStatus
    expires_at: datetime
