"""Per-organization API key. Only the SHA-256 hash and a display prefix are stored."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class ApiKey(TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_keys"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    hashed_key: str = Field(unique=True, nullable=False, index=True)
    prefix: str = Field(nullable=False)
    disabled: bool = Field(default=False, nullable=False)
    last_used: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    expires_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
