"""
Tests for authentication.

Covers:
- Password hashing
- JWT creation, decoding, revocation-aware session reading
- CSRF middleware
- Security headers middleware
- Register / login / logout / me / select-organization endpoints
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import jwt as pyjwt
import pytest
import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from echo_server.core.auth import (
    SESSION_COOKIE,
    create_jwt,
    decode_jwt,
    generate_csrf_token,
    hash_password,
    read_session,
    verify_password,
)
from echo_server.core.middleware import SECURITY_HEADERS, CSRFMiddleware, SecurityHeadersMiddleware
from echo_server.core.permissions import Role


# ---------------------------------------------------------------------------
# Unit Tests: Password hashing
# ---------------------------------------------------------------------------

class TestPasswordHashing:
    def test_hash_and_verify(self):
        password = "MySecureP@ssw0rd!"
        hashed = hash_password(password)
        assert hashed != password
        assert verify_password(password, hashed)

    def test_wrong_password_fails(self):
        hashed = hash_password("correct-password")
        assert not verify_password("wrong-password", hashed)


# ---------------------------------------------------------------------------
# Unit Tests: JWT
# ---------------------------------------------------------------------------

class TestJWT:
    def test_create_and_decode(self):
        token, jti = create_jwt("user_1", "u1@example.com", role="superadmin")
        payload = decode_jwt(token)
        assert payload["sub"] == "user_1"
        assert payload["email"] == "u1@example.com"
        assert payload["role"] == "superadmin"
        assert payload["jti"] == jti

    def test_no_role_claim_by_default(self):
        token, _ = create_jwt("user_1", "u1@example.com")
        assert "role" not in decode_jwt(token)

    def test_expired_jwt_raises(self):
        token, _ = create_jwt("user_1", "u1@example.com", expires_delta=timedelta(seconds=-1))
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_jwt(token)

    def test_tampered_jwt_raises(self):
        token, _ = create_jwt("user_1", "u1@example.com")
        header, payload, signature = token.split(".")
        with pytest.raises(pyjwt.PyJWTError):
            decode_jwt(f"{header}.{payload}.{signature[::-1]}")


class TestReadSession:
    @pytest.mark.asyncio
    async def test_valid_session(self):
        token, jti = create_jwt("user_1", "u1@example.com")
        with patch("echo_server.core.auth.is_jwt_revoked", AsyncMock(return_value=False)):
            user = await read_session(token)
        assert user.user_id == "user_1"
        assert user.jti == jti

    @pytest.mark.asyncio
    async def test_missing_or_garbage_is_no_session(self):
        assert await read_session(None) is None
        assert await read_session("not-a-jwt") is None

    @pytest.mark.asyncio
    async def test_revoked_is_no_session(self):
        token, _ = create_jwt("user_1", "u1@example.com")
        with patch("echo_server.core.auth.is_jwt_revoked", AsyncMock(return_value=True)):
            assert await read_session(token) is None

    @pytest.mark.asyncio
    async def test_revocation_store_down_fails_closed(self):
        token, _ = create_jwt("user_1", "u1@example.com")
        failing = AsyncMock(side_effect=redis.ConnectionError("refused"))
        with patch("echo_server.core.auth.is_jwt_revoked", failing):
            assert await read_session(token) is None


class TestCSRFToken:
    def test_generates_unique_tokens(self):
        t1 = generate_csrf_token()
        t2 = generate_csrf_token()
        assert t1 != t2
        assert len(t1) > 20


# ---------------------------------------------------------------------------
# Integration Tests: Middleware
# ---------------------------------------------------------------------------

class TestSecurityHeadersMiddleware:
    def test_headers_present(self):
        app = FastAPI()
        app.add_middleware(SecurityHeadersMiddleware)

        @app.get("/test")
        async def test_endpoint():
            return {"ok": True}

        client = TestClient(app)
        resp = client.get("/test")
        assert resp.status_code == 200
        for header, value in SECURITY_HEADERS.items():
            assert resp.headers.get(header) == value


class TestCSRFMiddleware:
    def _make_app(self) -> FastAPI:
        app = FastAPI()
        app.add_middleware(CSRFMiddleware)

        @app.get("/test")
        async def get_test():
            return {"ok": True}

        @app.post("/test")
        async def post_test():
            return {"ok": True}

        return app

    def test_get_passes_without_csrf(self):
        client = TestClient(self._make_app())
        resp = client.get("/test")
        assert resp.status_code == 200

    def test_post_with_api_key_skips_csrf(self):
        client = TestClient(self._make_app(), cookies={"echo_session": "some-jwt"})
        resp = client.post("/test", headers={"X-API-Key": "echo_xxx"})
        assert resp.status_code == 200

    def test_post_without_session_cookie_passes(self):
        """No session cookie = not a browser request, skip CSRF."""
        client = TestClient(self._make_app())
        resp = client.post("/test")
        assert resp.status_code == 200

    def test_post_with_session_but_no_csrf_fails(self):
        client = TestClient(self._make_app(), cookies={"echo_session": "some-jwt"})
        resp = client.post("/test")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "CSRF_VALIDATION_FAILED"

    def test_post_with_matching_csrf_passes(self):
        csrf_token = "test-csrf-token"
        client = TestClient(
            self._make_app(),
            cookies={"echo_session": "some-jwt", "echo_csrf": csrf_token},
        )
        resp = client.post("/test", headers={"X-CSRF-Token": csrf_token})
        assert resp.status_code == 200

    def test_post_with_mismatched_csrf_fails(self):
        client = TestClient(
            self._make_app(),
            cookies={"echo_session": "some-jwt", "echo_csrf": "token-a"},
        )
        resp = client.post("/test", headers={"X-CSRF-Token": "token-b"})
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Integration Tests: Auth Endpoints
# ---------------------------------------------------------------------------

class TestAuthEndpoints:
    @pytest.mark.asyncio
    async def test_register_then_login(self, client):
        resp = await client.post(
            "/auth/register",
            json={"email": "New@Example.com", "password": "long-enough", "display_name": "New"},
        )
        assert resp.status_code == 201
        assert resp.json()["email"] == "new@example.com"
        assert SESSION_COOKIE in resp.headers.get("set-cookie", "")

        resp = await client.post(
            "/auth/login", json={"email": "new@example.com", "password": "long-enough"}
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "Login successful"

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, client, seed):
        await seed.user("u1", email="taken@example.com")
        await seed.commit()

        resp = await client.post(
            "/auth/register",
            json={"email": "taken@example.com", "password": "long-enough", "display_name": "X"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "EMAIL_TAKEN"

    @pytest.mark.asyncio
    async def test_register_short_password(self, client):
        resp = await client.post(
            "/auth/register",
            json={"email": "test@example.com", "password": "short", "display_name": "Test"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_login_bad_password(self, client):
        await client.post(
            "/auth/register",
            json={"email": "a@example.com", "password": "long-enough", "display_name": "A"},
        )
        resp = await client.post("/auth/login", json={"email": "a@example.com", "password": "wrong-one"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_logout_clears_cookies(self, client):
        resp = await client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out"

    @pytest.mark.asyncio
    async def test_me_requires_session(self, client):
        resp = await client.get("/auth/me")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_me_lists_organizations(self, seed, make_client):
        await seed.user("u1")
        await seed.org("org_1", name="Acme")
        await seed.member("org_1", "u1", Role.CUSTOMER_SUPPORT)
        await seed.commit()

        async with make_client("u1") as ac:
            resp = await ac.get("/auth/me")
        assert resp.status_code == 200
        orgs = resp.json()["organizations"]
        assert [(o["id"], o["role"]) for o in orgs] == [("org_1", "customer_support")]

    @pytest.mark.asyncio
    async def test_select_organization_sets_cookie(self, seed, make_client):
        await seed.user("u1")
        await seed.org("org_1")
        await seed.member("org_1", "u1", Role.DEVELOPER)
        await seed.commit()

        async with make_client("u1") as ac:
            resp = await ac.post("/auth/select-organization", json={"organization_id": "org_1"})
        assert resp.status_code == 200
        assert resp.json()["role"] == "developer"
        assert "orgId=org_1" in resp.headers.get("set-cookie", "")

    @pytest.mark.asyncio
    async def test_select_organization_non_member(self, seed, make_client):
        await seed.user("u1")
        await seed.org("org_1")
        await seed.commit()

        async with make_client("u1") as ac:
            resp = await ac.post("/auth/select-organization", json={"organization_id": "org_1"})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_select_organization_blank_id_rejected(self, seed, make_client):
        await seed.user("u1")
        await seed.org("org_1")
        await seed.member("org_1", "u1", Role.DEVELOPER)
        await seed.commit()

        async with make_client("u1", orgId="org_1") as ac:
            resp = await ac.post("/auth/select-organization", json={"organization_id": "   "})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert "set-cookie" not in resp.headers

    @pytest.mark.asyncio
    async def test_select_organization_strips_padding(self, seed, make_client):
        await seed.user("u1")
        await seed.org("org_1")
        await seed.member("org_1", "u1", Role.DEVELOPER)
        await seed.commit()

        async with make_client("u1") as ac:
            resp = await ac.post(
                "/auth/select-organization", json={"organization_id": "  org_1 "}
            )
        assert resp.status_code == 200
        assert resp.json()["organization_id"] == "org_1"
