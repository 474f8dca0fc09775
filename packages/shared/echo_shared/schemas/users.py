"""Session user schemas (register / login / me)."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .organizations import OrgListItem


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    display_name: str = Field(..., min_length=1, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    user_id: str
    email: str
    message: str


class MeResponse(BaseModel):
    user_id: str
    email: str
    display_name: Optional[str] = None
    organizations: list[OrgListItem]
