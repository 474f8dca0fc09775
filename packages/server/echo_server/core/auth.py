"""
Authentication and organization scoping for the Echo portal.

Supports:
- Email/password accounts (bcrypt)
- JWT browser sessions in the ``echo_session`` cookie with a Redis revocation list
- ``OrgScope``: session identity -> organization context -> permission gate
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import redis.asyncio as redis
import structlog
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.config import get_settings
from echo_server.core.database import get_session
from echo_server.core.errors import Unauthenticated
from echo_server.core.gate import enforce_permission
from echo_server.core.org_context import OrgContext, resolve_context
from echo_server.core.permissions import Permission
from echo_server.core.redis import get_redis
from echo_server.services.memberships import MembershipStore, SqlMembershipStore

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "echo_session"
CSRF_COOKIE = "echo_csrf"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: str,
    email: str,
    *,
    role: Optional[str] = None,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    if role:
        payload["role"] = role
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int = 3600) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    client = await get_redis()
    await client.setex(f"jwt:revoked:{jti}", ttl_seconds, "1")


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    client = await get_redis()
    return await client.exists(f"jwt:revoked:{jti}") > 0


def remaining_ttl(payload: dict) -> int:
    """Seconds until the token would expire on its own (at least 1)."""
    exp = payload.get("exp")
    if not exp:
        return 1
    return max(1, int(exp - datetime.now(timezone.utc).timestamp()))


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Session identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: str
    jti: Optional[str] = None
    role: Optional[str] = None  # global flag, never an organization role


async def read_session(token: Optional[str]) -> Optional[SessionUser]:
    """Validate a session token. Corrupt, expired or revoked tokens yield None."""
    if not token:
        return None
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        return None

    jti = payload.get("jti")
    if jti:
        try:
            revoked = await is_jwt_revoked(jti)
        except redis.RedisError as exc:
            log.warning("auth.revocation_check_failed", error=str(exc))
            return None
        if revoked:
            return None

    if not payload.get("sub"):
        return None
    return SessionUser(
        user_id=str(payload["sub"]),
        email=payload.get("email", ""),
        jti=jti,
        role=payload.get("role"),
    )


async def get_session_user(request: Request) -> Optional[SessionUser]:
    """FastAPI dependency: the signed-in user, or None."""
    user = await read_session(request.cookies.get(SESSION_COOKIE))
    request.state.user = user
    return user


async def require_user(
    user: Optional[SessionUser] = Depends(get_session_user),
) -> SessionUser:
    """Reject the request with 401 unless a valid session is present."""
    if user is None:
        raise Unauthenticated()
    return user


async def get_membership_store(
    session: AsyncSession = Depends(get_session),
) -> MembershipStore:
    return SqlMembershipStore(session)


# ---------------------------------------------------------------------------
# Organization scoping
# ---------------------------------------------------------------------------

class OrgScope:
    """Route dependency resolving the target organization and gating access.

    The explicit organization id comes from an ``orgId`` path parameter when
    the route has one; otherwise the query, header and cookie are consulted.

        @router.post("/orgs/{orgId}/invitations")
        async def invite(ctx: OrgContext = Depends(OrgScope(Permission.MANAGE_MEMBERS))):
            ...
    """

    def __init__(
        self,
        permission: Optional[Permission] = None,
        *,
        require_membership: bool = True,
    ):
        self.permission = permission
        self.require_membership = require_membership

    async def __call__(
        self,
        request: Request,
        user: Optional[SessionUser] = Depends(get_session_user),
        store: MembershipStore = Depends(get_membership_store),
    ) -> OrgContext:
        if user is None and (self.require_membership or self.permission is not None):
            raise Unauthenticated()

        context = await resolve_context(
            request,
            store,
            user_id=user.user_id if user else None,
            organization_id=request.path_params.get("orgId"),
            require_membership=self.require_membership,
        )
        if self.permission is not None:
            enforce_permission(self.permission, context.role)

        request.state.org_context = context
        return context
