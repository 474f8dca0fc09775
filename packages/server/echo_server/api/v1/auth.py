"""
Authentication endpoints.

- Email/Password registration & login
- JWT session management (refresh, logout)
- Current user and organization selection (``orgId`` cookie)
"""

from __future__ import annotations

import jwt
import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from echo_server.core.auth import (
    CSRF_COOKIE,
    SESSION_COOKIE,
    SessionUser,
    create_jwt,
    decode_jwt,
    generate_csrf_token,
    get_membership_store,
    remaining_ttl,
    require_user,
    revoke_jwt,
)
from echo_server.core.config import get_settings
from echo_server.core.database import get_session
from echo_server.core.org_context import ORG_COOKIE, resolve_context
from echo_server.core.rate_limit import rate_limit
from echo_server.services import organizations as org_service
from echo_server.services import users as user_service
from echo_server.services.memberships import MembershipStore
from echo_shared.schemas.common import MessageResponse
from echo_shared.schemas.organizations import (
    OrgContextResponse,
    SelectOrgRequest,
)
from echo_shared.schemas.users import AuthResponse, LoginRequest, MeResponse, RegisterRequest

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(key=CSRF_COOKIE, value=csrf, **{**COOKIE_KWARGS, "httponly": False})


def _issue_session(response: Response, user_id: str, email: str, role: str | None = None) -> None:
    token, _jti = create_jwt(user_id, email, role=role)
    _set_session_cookies(response, token, generate_csrf_token())


# ---------------------------------------------------------------------------
# Email/Password Registration
# ---------------------------------------------------------------------------

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("public"))],
)
async def register(
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register a new user with email/password and start a session."""
    user = await user_service.register_user(session, body)
    _issue_session(response, user.id, user.email, user.role)
    return AuthResponse(user_id=user.id, email=user.email, message="Registration successful")


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(rate_limit("public"))],
)
async def login(
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    user = await user_service.authenticate_user(session, body.email, body.password)
    _issue_session(response, user.id, user.email, user.role)
    return AuthResponse(user_id=user.id, email=user.email, message="Login successful")


# ---------------------------------------------------------------------------
# Session Management
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=MessageResponse)
async def refresh_session(
    response: Response,
    user: SessionUser = Depends(require_user),
):
    """Refresh the current JWT session by issuing a new token."""
    _issue_session(response, user.user_id, user.email, user.role)
    if user.jti:
        await revoke_jwt(user.jti)
    return MessageResponse(message="Session refreshed")


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response):
    """Invalidate the current session."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError as exc:
            log.info("auth.logout_invalid_token", error=str(exc))
        else:
            if payload.get("jti"):
                await revoke_jwt(payload["jti"], ttl_seconds=remaining_ttl(payload))

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    response.delete_cookie(ORG_COOKIE, path="/")
    return MessageResponse(message="Logged out")


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse)
async def me(
    user: SessionUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """The signed-in user and every organization they belong to."""
    account = await user_service.get_user(session, user.user_id)
    orgs = await org_service.list_user_organizations(session, user.user_id)
    return MeResponse(
        user_id=user.user_id,
        email=user.email,
        display_name=account.display_name if account else None,
        organizations=org_service.to_list_items(orgs),
    )


@router.post("/select-organization", response_model=OrgContextResponse)
async def select_organization(
    body: SelectOrgRequest,
    request: Request,
    response: Response,
    user: SessionUser = Depends(require_user),
    store: MembershipStore = Depends(get_membership_store),
):
    """Remember the chosen organization in the ``orgId`` cookie (members only)."""
    context = await resolve_context(
        request,
        store,
        user_id=user.user_id,
        organization_id=body.organization_id,
        require_membership=True,
    )
    response.set_cookie(
        key=ORG_COOKIE, value=context.organization_id, **{**COOKIE_KWARGS, "httponly": False}
    )
    log.info("org.selected", user_id=user.user_id, org_id=context.organization_id)
    return OrgContextResponse(
        organization_id=context.organization_id,
        role=context.role,
        source=context.source,
    )
