"""Organization membership: the single source of truth for who can do what, where."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_members"

    # Composite key: at most one membership per (organization, user).
    organization_id: str = Field(foreign_key="organizations.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True, index=True)
    role: str = Field(nullable=False)  # see echo_server.core.permissions.Role
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
