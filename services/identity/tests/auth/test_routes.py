import json
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from ojtech_shared.auth.tokens import decode_access_token
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth import controller as auth_controller
from ojtech_identity.auth import oauth
from ojtech_identity.auth.models import User
from ojtech_identity.auth.redirect import save_authorization_request

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


async def _signup(client: AsyncClient, **overrides) -> httpx.Response:
    body = {"username": "ada", "email": "ada@example.com", "password": "secret123"}
    body.update(overrides)
    return await client.post("/api/auth/signup", json=body)


async def _count_users(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(User))).scalar_one()


async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "identity"}
    assert "X-Request-ID" in response.headers


# ── Local accounts ────────────────────────────────────────────────────────────

async def test_signup_then_signin(async_client: AsyncClient, auth_settings) -> None:
    created = await _signup(async_client, roles=["employer"])
    assert created.status_code == 201
    assert created.json() == {"message": "User registered successfully!"}

    for identifier in ("ada", "ADA@example.com"):
        response = await async_client.post(
            "/api/auth/signin", json={"usernameOrEmail": identifier, "password": "secret123"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "Bearer"
        assert data["username"] == "ada"
        assert data["email"] == "ada@example.com"
        assert data["roles"] == ["ROLE_EMPLOYER"]
        assert decode_access_token(data["token"], auth_settings)["sub"] == data["id"]


async def test_signup_duplicate_username(async_client: AsyncClient) -> None:
    await _signup(async_client)
    response = await _signup(async_client, email="other@example.com")
    assert response.status_code == 400
    assert response.json() == {
        "status": 400,
        "error": "Bad Request",
        "message": "Username is already taken!",
        "path": "/api/auth/signup",
    }


async def test_signup_validation_errors(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/api/auth/signup", json={"username": "ada", "email": "not-an-email"}
    )
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Validation Error"
    assert data["message"] == "Validation failed for request parameters"
    fields = [entry.split(":")[0] for entry in data["errors"]]
    assert fields == ["email", "password"]


async def test_bad_password_looks_like_unknown_user(async_client: AsyncClient) -> None:
    await _signup(async_client)
    wrong = await async_client.post(
        "/api/auth/signin", json={"usernameOrEmail": "ada", "password": "nope"}
    )
    unknown = await async_client.post(
        "/api/auth/signin", json={"usernameOrEmail": "ghost", "password": "nope"}
    )
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()
    assert wrong.json()["message"] == "Authentication failed: Bad credentials"
    assert wrong.headers["WWW-Authenticate"] == "Bearer"


# ── Request identity ──────────────────────────────────────────────────────────

async def test_me_requires_token(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["path"] == "/api/auth/me"


async def test_me_rejects_garbage_token(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"}
    )
    assert response.status_code == 401
    assert response.json()["message"] == (
        "Authentication failed: Token is invalid or has expired"
    )


async def test_me_returns_token_principal(async_client: AsyncClient, bearer) -> None:
    principal = AuthenticatedPrincipal(
        id=uuid4(), username="ada", email="ada@example.com", authorities=("ROLE_NLO",)
    )
    response = await async_client.get("/api/auth/me", headers=bearer(principal))
    assert response.status_code == 200
    assert response.json() == {
        "id": str(principal.id),
        "username": "ada",
        "email": "ada@example.com",
        "roles": ["ROLE_NLO"],
    }


async def test_user_lookup_is_admin_only(async_client: AsyncClient, bearer) -> None:
    await _signup(async_client)
    student = AuthenticatedPrincipal(
        id=uuid4(), username="s", email="s@example.com", authorities=("ROLE_STUDENT",)
    )
    response = await async_client.get("/api/users/ada", headers=bearer(student))
    assert response.status_code == 403
    assert response.json() == {
        "status": 403,
        "error": "Forbidden",
        "message": "You don't have permission to access this resource",
        "path": "/api/users/ada",
    }


async def test_admin_user_lookup(async_client: AsyncClient, bearer) -> None:
    await _signup(async_client)
    admin = AuthenticatedPrincipal(
        id=uuid4(), username="root", email="root@example.com", authorities=("ROLE_ADMIN",)
    )

    found = await async_client.get("/api/users/ada@example.com", headers=bearer(admin))
    assert found.status_code == 200
    assert found.json()["username"] == "ada"
    assert found.json()["roles"] == ["ROLE_STUDENT"]
    assert "password_hash" not in found.json()

    missing = await async_client.get("/api/users/ghost", headers=bearer(admin))
    assert missing.status_code == 404
    assert missing.json()["message"] == "User not found with username or email: ghost"


async def test_oversized_body(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/api/auth/signin",
        content=json.dumps({"usernameOrEmail": "ada", "password": "x" * 4096}),
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "File Size Exceeded"
    assert "X-Request-ID" in response.headers


# ── OAuth2 ────────────────────────────────────────────────────────────────────

def _mock_google(monkeypatch: pytest.MonkeyPatch, userinfo: dict) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and str(request.url) == GOOGLE_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "provider-token"})
        if request.method == "GET" and str(request.url) == GOOGLE_USERINFO_URL:
            return httpx.Response(200, json=userinfo)
        return httpx.Response(404)

    monkeypatch.setattr(
        oauth, "_http_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    )


async def test_authorize_redirects_to_provider(async_client: AsyncClient, fake_redis) -> None:
    response = await async_client.get(
        "/oauth2/authorize/google", params={"redirect_uri": "https://app.example.com/cb"}
    )
    assert response.status_code == 302
    location = urlsplit(response.headers["location"])
    assert location.netloc == "accounts.google.com"
    query = parse_qs(location.query)
    assert query["client_id"] == ["google-client"]
    assert query["redirect_uri"] == ["http://testserver/oauth2/callback/google"]

    state = query["state"][0]
    stored = json.loads(fake_redis.data[f"oauth2_auth_request:{state}"])
    assert stored == {"provider": "google", "redirect_uri": "https://app.example.com/cb"}


async def test_authorize_unknown_provider(async_client: AsyncClient) -> None:
    response = await async_client.get("/oauth2/authorize/facebook")
    assert response.status_code == 400
    assert response.json()["message"] == "Sorry! Login with facebook is not supported yet."


async def test_callback_provisions_and_redirects_with_token(
    async_client: AsyncClient, fake_redis, auth_settings, session_factory, monkeypatch
) -> None:
    _mock_google(monkeypatch, {"sub": "g-1", "name": "Ada", "email": "ada@example.com"})
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri="https://app.example.com/cb?tab=1",
        ttl_seconds=600,
    )

    response = await async_client.get(
        "/oauth2/callback/google", params={"code": "abc", "state": state}
    )

    assert response.status_code == 302
    location = urlsplit(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "https://app.example.com/cb"
    query = parse_qs(location.query)
    assert query["tab"] == ["1"]
    claims = decode_access_token(query["token"][0], auth_settings)
    assert claims["email"] == "ada@example.com"
    assert claims["roles"] == ["ROLE_STUDENT"]
    assert fake_redis.data == {}
    assert await _count_users(session_factory) == 1


async def test_callback_unsafe_redirect_uses_default(
    async_client: AsyncClient, fake_redis, settings, monkeypatch
) -> None:
    _mock_google(monkeypatch, {"sub": "g-1", "name": "Ada", "email": "ada@example.com"})
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri=None, ttl_seconds=600
    )
    response = await async_client.get(
        "/oauth2/callback/google",
        params={"code": "abc", "state": state, "redirect_uri": "javascript:alert(1)"},
    )
    assert response.status_code == 302
    assert response.headers["location"].startswith(
        settings.oauth2_default_redirect_url + "?token="
    )


async def test_failed_callback_still_clears_state(
    async_client: AsyncClient, fake_redis, session_factory, monkeypatch
) -> None:
    _mock_google(monkeypatch, {"sub": "g-1", "name": "Ada", "email": ""})
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri=None, ttl_seconds=600
    )

    response = await async_client.get(
        "/oauth2/callback/google", params={"code": "abc", "state": state}
    )

    assert response.status_code == 401
    assert response.json()["message"] == (
        "Authentication failed: email not available from provider"
    )
    assert fake_redis.data == {}
    assert await _count_users(session_factory) == 0


async def test_callback_with_unknown_state(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/oauth2/callback/google", params={"code": "abc", "state": "never-issued"}
    )
    assert response.status_code == 401
    assert response.json()["message"] == (
        "Authentication failed: Authorization request not found or expired"
    )


async def test_callback_provider_denied(async_client: AsyncClient, fake_redis) -> None:
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri=None, ttl_seconds=600
    )
    response = await async_client.get(
        "/oauth2/callback/google", params={"error": "access_denied", "state": state}
    )
    assert response.status_code == 401
    assert fake_redis.data == {}


async def test_callback_with_unreadable_token_response(
    async_client: AsyncClient, fake_redis, session_factory, monkeypatch
) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    monkeypatch.setattr(
        oauth, "_http_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    )
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri=None, ttl_seconds=600
    )

    response = await async_client.get(
        "/oauth2/callback/google", params={"code": "abc", "state": state}
    )

    assert response.status_code == 401
    assert response.json()["message"] == (
        "Authentication failed: google returned an unreadable response"
    )
    assert fake_redis.data == {}
    assert await _count_users(session_factory) == 0


async def test_callback_for_unknown_provider_clears_state(
    async_client: AsyncClient, fake_redis
) -> None:
    state = await save_authorization_request(
        fake_redis, provider="google", redirect_uri=None, ttl_seconds=600
    )
    response = await async_client.get(
        "/oauth2/callback/facebook", params={"code": "abc", "state": state}
    )
    assert response.status_code == 400
    assert fake_redis.data == {}


# ── Google ID token ───────────────────────────────────────────────────────────

def _mock_tokeninfo(monkeypatch: pytest.MonkeyPatch, claims: dict) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(f"{oauth.GOOGLE_TOKENINFO_URL}?"):
            return httpx.Response(200, json=claims)
        return httpx.Response(404)

    monkeypatch.setattr(
        oauth, "_http_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    )


async def test_google_id_token_signin_provisions_once(
    async_client: AsyncClient, auth_settings, session_factory, monkeypatch
) -> None:
    _mock_tokeninfo(
        monkeypatch,
        {"aud": "google-client", "sub": "g-9", "email": "grace@example.com", "name": "Grace"},
    )

    for path in ("/api/auth/google", "/api/auth/oauth2/google"):
        response = await async_client.post(path, json={"tokenId": "id-token"})
        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "grace@example.com"
        assert data["roles"] == ["ROLE_STUDENT"]
        assert decode_access_token(data["token"], auth_settings)["sub"] == data["id"]

    assert await _count_users(session_factory) == 1


async def test_google_id_token_for_another_app(
    async_client: AsyncClient, session_factory, monkeypatch
) -> None:
    _mock_tokeninfo(monkeypatch, {"aud": "someone-else", "sub": "g-9", "email": "g@example.com"})
    response = await async_client.post("/api/auth/google", json={"tokenId": "id-token"})
    assert response.status_code == 401
    assert response.json()["message"] == (
        "Authentication failed: Token was not issued for this application"
    )
    assert await _count_users(session_factory) == 0


async def test_google_id_token_required(async_client: AsyncClient) -> None:
    response = await async_client.post("/api/auth/google", json={"tokenId": ""})
    assert response.status_code == 400
    assert response.json()["error"] == "Validation Error"


# ── Aliases, limits and unexpected failures ───────────────────────────────────

async def test_register_and_login_aliases(async_client: AsyncClient) -> None:
    created = await async_client.post(
        "/api/auth/register",
        json={"username": "ada", "email": "ada@example.com", "password": "secret123"},
    )
    assert created.status_code == 201

    response = await async_client.post(
        "/api/auth/login", json={"usernameOrEmail": "ada", "password": "secret123"}
    )
    assert response.status_code == 200
    assert response.json()["username"] == "ada"


async def test_rate_limited_requests_get_an_error_response(async_client: AsyncClient) -> None:
    for _ in range(30):
        response = await async_client.get("/oauth2/authorize/facebook")
        assert response.status_code == 400

    limited = await async_client.get("/oauth2/authorize/facebook")
    assert limited.status_code == 400
    assert limited.json() == {
        "status": 400,
        "error": "Bad Request",
        "message": "Too many requests: 30 per 1 minute",
        "path": "/oauth2/authorize/facebook",
    }
    assert limited.headers["Retry-After"] == "60"


async def test_unexpected_failure_is_mapped_without_detail(
    async_client: AsyncClient, monkeypatch
) -> None:
    async def _explode(*args, **kwargs):
        raise RuntimeError("secret connection string")

    monkeypatch.setattr(auth_controller, "authenticate_user", _explode)

    response = await async_client.post(
        "/api/auth/signin", json={"usernameOrEmail": "ada", "password": "secret123"}
    )

    assert response.status_code == 500
    assert response.json() == {
        "status": 500,
        "error": "Server Error",
        "message": "An unexpected error occurred",
        "path": "/api/auth/signin",
    }
    assert "secret" not in response.text
    assert "X-Request-ID" in response.headers
