"""
Identity service: auth and OAuth2 routers.

Only HTTP concerns live here:
  - Route declarations, HTTP methods, status codes, response_model
  - Dependency injection (session, settings, Redis, current principal)
  - Forwarding to the controller

Zero business logic. Zero DB queries.
"""
from functools import lru_cache

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.auth.dependencies import get_auth_settings, get_current_principal
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth.controller import (
    google_token_signin as google_token_signin_controller,
    me as me_controller,
    oauth2_authorize as oauth2_authorize_controller,
    oauth2_callback as oauth2_callback_controller,
    signin as signin_controller,
    signup as signup_controller,
)
from ojtech_identity.auth.schemas import (
    GoogleTokenRequest,
    JwtResponse,
    MessageResponse,
    PrincipalResponse,
    SigninRequest,
    SignupRequest,
)
from ojtech_identity.config import Settings
from ojtech_identity.database import get_db
from ojtech_identity.rate_limit import limiter
from ojtech_identity.redis_client import get_redis_client

router = APIRouter(prefix="/api/auth", tags=["auth"])
oauth2_router = APIRouter(prefix="/oauth2", tags=["oauth2"])


@lru_cache
def _get_settings() -> Settings:
    return Settings()


def _get_redis(settings: Settings = Depends(_get_settings)) -> aioredis.Redis:
    return get_redis_client(settings.redis_url)


# ── Local accounts ────────────────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a local account (username + email + password)",
)
@router.post(
    "/register",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
@limiter.limit("10/hour")
async def signup(
    request: Request,
    body: SignupRequest,
    session: AsyncSession = Depends(get_db),
) -> MessageResponse:
    return await signup_controller(session, body)


@router.post(
    "/signin",
    response_model=JwtResponse,
    summary="Sign in with a username or an email",
)
@router.post("/login", response_model=JwtResponse, include_in_schema=False)
@limiter.limit("30/minute")
async def signin(
    request: Request,
    body: SigninRequest,
    session: AsyncSession = Depends(get_db),
    auth_settings: AuthSettings = Depends(get_auth_settings),
) -> JwtResponse:
    return await signin_controller(session, body, auth_settings)


@router.post(
    "/google",
    response_model=JwtResponse,
    summary="Sign in with a Google ID token obtained by the frontend",
)
@router.post("/oauth2/google", response_model=JwtResponse, include_in_schema=False)
@limiter.limit("30/minute")
async def google_token_signin(
    request: Request,
    body: GoogleTokenRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(_get_settings),
    auth_settings: AuthSettings = Depends(get_auth_settings),
) -> JwtResponse:
    return await google_token_signin_controller(session, body, settings, auth_settings)


@router.get(
    "/me",
    response_model=PrincipalResponse,
    summary="The caller's identity as carried by the bearer token",
)
async def me(
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
) -> PrincipalResponse:
    return me_controller(principal)


# ── OAuth2 ────────────────────────────────────────────────────────────────────

@oauth2_router.get(
    "/authorize/{provider}",
    status_code=status.HTTP_302_FOUND,
    summary="Start a social login (google, github, microsoft)",
)
@limiter.limit("30/minute")
async def oauth2_authorize(
    request: Request,
    provider: str,
    redirect_uri: str | None = Query(default=None),
    settings: Settings = Depends(_get_settings),
    redis: aioredis.Redis = Depends(_get_redis),
) -> RedirectResponse:
    url = await oauth2_authorize_controller(redis, provider, redirect_uri, settings)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@oauth2_router.get(
    "/callback/{provider}",
    status_code=status.HTTP_302_FOUND,
    summary="Provider redirect target; issues a token and redirects to the frontend",
    responses={204: {"description": "Response already committed, no redirect sent"}},
)
@limiter.limit("30/minute")
async def oauth2_callback(
    request: Request,
    provider: str,
    state: str = Query(min_length=1),
    code: str | None = Query(default=None),
    error: str | None = Query(default=None),
    redirect_uri: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(_get_settings),
    auth_settings: AuthSettings = Depends(get_auth_settings),
    redis: aioredis.Redis = Depends(_get_redis),
) -> Response:
    target = await oauth2_callback_controller(
        request,
        session,
        redis,
        provider,
        code=code,
        state=state,
        error=error,
        redirect_uri=redirect_uri,
        settings=settings,
        auth_settings=auth_settings,
    )
    if target is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND)
