"""Single-use, time-bounded invitation to join an organization."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IdMixin, utcnow


class Invitation(IdMixin, SQLModel, table=True):
    __tablename__ = "invitations"

    organization_id: str = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(nullable=False)
    role: str = Field(nullable=False)
    token: str = Field(unique=True, nullable=False, index=True)
    invited_by: Optional[str] = Field(default=None, foreign_key="users.id")
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    accepted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
