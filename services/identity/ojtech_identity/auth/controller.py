"""
Identity service: auth controller (request orchestration layer).

Responsibilities:
  - Receive validated input from the router.
  - Call service functions (which own business logic).
  - Compose and return the response model.

No framework validation logic here; that belongs in schemas.py.
No business logic here; that belongs in service.py / provisioning.py.
"""
from __future__ import annotations

import logging

import redis.asyncio as aioredis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth.oauth import (
    authorization_url,
    fetch_user_attributes,
    get_adapter,
    verify_google_id_token,
)
from ojtech_identity.auth.provisioning import provision_oauth_user
from ojtech_identity.auth.redirect import (
    clear_authorization_request,
    load_authorization_request,
    on_authentication_success,
    save_authorization_request,
)
from ojtech_identity.auth.schemas import (
    GoogleTokenRequest,
    JwtResponse,
    MessageResponse,
    PrincipalResponse,
    SigninRequest,
    SignupRequest,
)
from ojtech_identity.auth.service import (
    authenticate_user,
    create_access_token,
    principal_for,
    register_user,
)
from ojtech_identity.config import Settings
from ojtech_identity.exceptions import (
    InvalidOAuth2State,
    OAuth2AuthenticationError,
    UnsupportedProvider,
)

logger = logging.getLogger(__name__)


def _jwt_response(principal: AuthenticatedPrincipal, auth_settings: AuthSettings) -> JwtResponse:
    return JwtResponse(
        token=create_access_token(principal, auth_settings),
        id=principal.id,
        username=principal.username,
        email=principal.email,
        roles=list(principal.authorities),
    )


# ── Local accounts ────────────────────────────────────────────────────────────

async def signup(session: AsyncSession, body: SignupRequest) -> MessageResponse:
    user = await register_user(
        session,
        username=body.username,
        email=body.email,
        password=body.password,
        roles=body.roles,
    )
    logger.info("Registered local account %s (%s)", user.id, user.username)
    return MessageResponse(message="User registered successfully!")


async def signin(
    session: AsyncSession,
    body: SigninRequest,
    auth_settings: AuthSettings,
) -> JwtResponse:
    user = await authenticate_user(session, body.username_or_email, body.password)
    principal = principal_for(user)
    return _jwt_response(principal, auth_settings)


async def google_token_signin(
    session: AsyncSession,
    body: GoogleTokenRequest,
    settings: Settings,
    auth_settings: AuthSettings,
) -> JwtResponse:
    """Sign in with a Google ID token; the first sign-in provisions the account."""
    client_id, _ = settings.oauth2_client("google")
    if not client_id:
        raise UnsupportedProvider("google")
    claims = await verify_google_id_token(body.token_id, client_id=client_id)
    principal = await provision_oauth_user(session, "google", claims)
    return _jwt_response(principal, auth_settings)


def me(principal: AuthenticatedPrincipal) -> PrincipalResponse:
    return PrincipalResponse(
        id=principal.id,
        username=principal.username,
        email=principal.email,
        roles=list(principal.authorities),
    )


# ── OAuth2 ────────────────────────────────────────────────────────────────────

async def oauth2_authorize(
    redis: aioredis.Redis,
    provider: str,
    redirect_uri: str | None,
    settings: Settings,
) -> str:
    """Remember the request under a new state and return the provider's login URL."""
    adapter = get_adapter(provider)
    client_id, _ = settings.oauth2_client(adapter.name)
    if not client_id:
        raise UnsupportedProvider(provider)
    state = await save_authorization_request(
        redis,
        provider=adapter.name,
        redirect_uri=redirect_uri,
        ttl_seconds=settings.oauth2_state_ttl_seconds,
    )
    return authorization_url(
        adapter,
        client_id=client_id,
        redirect_uri=settings.oauth2_callback_url(adapter.name),
        state=state,
    )


async def oauth2_callback(
    request: Request,
    session: AsyncSession,
    redis: aioredis.Redis,
    provider: str,
    *,
    code: str | None,
    state: str,
    error: str | None,
    redirect_uri: str | None,
    settings: Settings,
    auth_settings: AuthSettings,
) -> str | None:
    """
    Complete the provider round trip and return the post-login redirect URL.

    The stored authorization request is single use: it is removed whether
    the exchange and provisioning succeed or fail.
    """
    try:
        adapter = get_adapter(provider)
        stored = await load_authorization_request(redis, state)
        if stored is None or stored.get("provider") != adapter.name:
            raise InvalidOAuth2State()
        if error:
            raise OAuth2AuthenticationError(f"{adapter.name} returned {error}")
        if not code:
            raise OAuth2AuthenticationError("authorization code missing")

        client_id, client_secret = settings.oauth2_client(adapter.name)
        attributes = await fetch_user_attributes(
            adapter,
            code=code,
            redirect_uri=settings.oauth2_callback_url(adapter.name),
            client_id=client_id,
            client_secret=client_secret,
        )
        principal = await provision_oauth_user(session, adapter.name, attributes)
        return on_authentication_success(
            request,
            principal,
            redirect_uri=redirect_uri or stored.get("redirect_uri"),
            default_url=settings.oauth2_default_redirect_url,
            auth_settings=auth_settings,
        )
    finally:
        await clear_authorization_request(redis, state)
