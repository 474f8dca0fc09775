"""API key schemas. The raw key only ever appears in ApiKeyCreatedResponse."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)


class ApiKeyUpdateRequest(BaseModel):
    disabled: bool


class ApiKeyResponse(BaseModel):
    id: int
    name: str
    prefix: str
    display_key: str
    disabled: bool
    last_used: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class ApiKeyCreatedResponse(ApiKeyResponse):
    key: str
    warning: str = "Save this key now. You will not be able to see it again."


class ApiKeyListResponse(BaseModel):
    data: list[ApiKeyResponse]


class ApiKeyContextResponse(BaseModel):
    """Public API: the organization a key is bound to."""
    organization_id: str
    organization_name: str
    organization_slug: str
    api_key_id: int
