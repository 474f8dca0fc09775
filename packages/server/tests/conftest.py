"""
Shared fixtures: in-memory SQLite database, app wired to it, session cookies.
"""

from __future__ import annotations

import os

os.environ.setdefault("ECHO_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ECHO_LOG_LEVEL", "warning")

from contextlib import asynccontextmanager
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import echo_server.models  # noqa: F401  (populate metadata)
from echo_server.core.auth import CSRF_COOKIE, SESSION_COOKIE, create_jwt
from echo_server.core.database import get_session
from echo_server.core.email import EmailMessage, EmailResult, get_email_sender
from echo_server.core.permissions import Role
from echo_server.core.rate_limit import MemoryRateLimitStorage, RateLimiter, get_rate_limiter
from echo_server.models.membership import OrganizationMember
from echo_server.models.organization import Organization
from echo_server.models.user import User

CSRF_TOKEN = "test-csrf-token"


class RecordingEmailSender:
    """Collects messages instead of sending them."""

    def __init__(self, success: bool = True):
        self.success = success
        self.sent: list[EmailMessage] = []
        self.raises: Optional[Exception] = None

    async def send(self, message: EmailMessage) -> EmailResult:
        self.sent.append(message)
        if self.raises is not None:
            raise self.raises
        if self.success:
            return EmailResult(success=True, message_id="msg_test")
        return EmailResult(success=False, error="delivery failed")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


class Seed:
    """Row builders for tests; call ``commit()`` before hitting the app."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def user(self, user_id: str, email: Optional[str] = None) -> User:
        user = User(id=user_id, email=email or f"{user_id}@example.com", display_name=user_id)
        self.session.add(user)
        await self.session.flush()
        return user

    async def org(self, org_id: str, name: Optional[str] = None) -> Organization:
        org = Organization(id=org_id, name=name or org_id, slug=org_id.replace("_", "-"))
        self.session.add(org)
        await self.session.flush()
        return org

    async def member(self, org_id: str, user_id: str, role: Role | str) -> OrganizationMember:
        value = role.value if isinstance(role, Role) else role
        member = OrganizationMember(organization_id=org_id, user_id=user_id, role=value)
        self.session.add(member)
        await self.session.flush()
        return member

    async def commit(self) -> None:
        await self.session.commit()


@pytest.fixture
def seed(session):
    return Seed(session)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def app(session_factory, email_sender):
    from echo_server.main import app as echo_app

    async def override_get_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    @asynccontextmanager
    async def test_session_context():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    limiter = RateLimiter(MemoryRateLimitStorage())
    echo_app.dependency_overrides[get_session] = override_get_session
    echo_app.dependency_overrides[get_rate_limiter] = lambda: limiter
    echo_app.dependency_overrides[get_email_sender] = lambda: email_sender

    with patch("echo_server.core.auth.is_jwt_revoked", AsyncMock(return_value=False)), patch(
        "echo_server.core.auth.revoke_jwt", AsyncMock()
    ), patch("echo_server.api.v1.auth.revoke_jwt", AsyncMock()), patch(
        "echo_server.core.api_keys.get_session_context", test_session_context
    ):
        yield echo_app

    echo_app.dependency_overrides.clear()


def session_cookies(user_id: str, **extra: str) -> dict[str, str]:
    token, _ = create_jwt(user_id, f"{user_id}@example.com")
    return {SESSION_COOKIE: token, CSRF_COOKIE: CSRF_TOKEN, **extra}


@pytest.fixture
def make_client(app):
    """Build a client, optionally signed in as ``user_id``."""
    def factory(user_id: Optional[str] = None, **cookies: str) -> AsyncClient:
        jar = session_cookies(user_id, **cookies) if user_id else dict(cookies)
        headers = {"X-CSRF-Token": CSRF_TOKEN} if user_id else {}
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            cookies=jar,
            headers=headers,
        )

    return factory


@pytest.fixture
async def client(make_client):
    async with make_client() as ac:
        yield ac
