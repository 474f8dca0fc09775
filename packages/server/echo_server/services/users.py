"""
User account service — email/password registration and login.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from echo_server.core.auth import hash_password, verify_password
from echo_server.core.errors import Conflict, Unauthenticated
from echo_server.models.user import User
from echo_shared.schemas.users import RegisterRequest

log = structlog.get_logger()


async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def register_user(session: AsyncSession, req: RegisterRequest) -> User:
    """Create an account. New users belong to no organization yet."""
    email = req.email.lower()
    if await get_user_by_email(session, email) is not None:
        raise Conflict("Email already registered", code="EMAIL_TAKEN")

    user = User(
        email=email,
        display_name=req.display_name.strip(),
        password_hash=hash_password(req.password),
    )
    session.add(user)
    await session.flush()

    log.info("user.registered", user_id=user.id, email=email)
    return user


async def authenticate_user(session: AsyncSession, email: str, password: str) -> User:
    """Check credentials; the same 401 covers unknown email and bad password."""
    user = await get_user_by_email(session, email)
    if user is None or not user.password_hash:
        log.warning("auth.login_failure", email=email, reason="unknown_user")
        raise Unauthenticated("Invalid email or password")

    if not verify_password(password, user.password_hash):
        log.warning("auth.login_failure", email=email, reason="bad_password")
        raise Unauthenticated("Invalid email or password")

    log.info("auth.login_success", user_id=user.id)
    return user
