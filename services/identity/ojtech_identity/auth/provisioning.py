"""
Identity service: OAuth2 first-login provisioning.

Runs once per successful provider handshake:
  - known email     → refresh display_name only (first provider wins: roles,
                      password and provider linkage are left as stored)
  - unknown email   → create a provider-linked identity with the default role

Creation happens inside a savepoint. Two concurrent first logins for the same
external account can both see "absent"; the loser's insert hits a unique
constraint, the savepoint is rolled back and the row written by the winner is
re-read, so both requests converge on one identity.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.errors import AppError, AuthenticationFailed
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth import store
from ojtech_identity.auth.constants import (
    DEFAULT_OAUTH_ROLE,
    PROVISIONING_MAX_ATTEMPTS,
    USERNAME_MAX_LENGTH,
)
from ojtech_identity.auth.models import User
from ojtech_identity.auth.oauth import OAuthUserInfo, get_adapter
from ojtech_identity.auth.service import principal_for
from ojtech_identity.auth.utils import normalize_email
from ojtech_identity.exceptions import (
    AuthenticationServiceError,
    OAuth2AuthenticationError,
    ProvisioningConflict,
    RoleCatalogError,
)

logger = logging.getLogger(__name__)


async def provision_oauth_user(
    session: AsyncSession,
    provider: str,
    attributes: Mapping[str, Any],
) -> AuthenticatedPrincipal:
    """
    Map provider attributes to a local identity and return its principal.

    Authentication failures and role catalog misconfiguration propagate as-is.
    Anything else is re-raised as AuthenticationServiceError with the original
    exception as its cause, so callers see one uniform failure path.
    """
    try:
        return await _process_oauth_user(session, provider, attributes)
    except (AuthenticationFailed, RoleCatalogError):
        raise
    except AppError as exc:
        # Developer-written message (e.g. unsupported provider) is safe to surface.
        raise AuthenticationServiceError(exc.message) from exc
    except Exception as exc:
        logger.warning("OAuth2 provisioning failed for provider %s", provider, exc_info=True)
        raise AuthenticationServiceError() from exc


async def _process_oauth_user(
    session: AsyncSession,
    provider: str,
    attributes: Mapping[str, Any],
) -> AuthenticatedPrincipal:
    adapter = get_adapter(provider)
    info = adapter.normalize(attributes)

    if not info.email:
        raise OAuth2AuthenticationError("email not available from provider")

    user = await store.get_user_by_email(session, info.email)
    if user is not None:
        await _refresh_existing_user(session, user, info)
    else:
        user = await _register_new_user(session, adapter.name, info)

    return principal_for(user, attributes=attributes)


async def _refresh_existing_user(
    session: AsyncSession, user: User, info: OAuthUserInfo
) -> None:
    user.display_name = info.display_name
    await store.save_user(session, user)


def _username_base(display_name: str) -> str:
    return display_name.strip()[:USERNAME_MAX_LENGTH]


def _with_suffix(base: str, suffix: int) -> str:
    tail = str(suffix)
    return f"{base[: USERNAME_MAX_LENGTH - len(tail)]}{tail}"


async def _available_username(session: AsyncSession, base: str, attempt: int) -> str:
    # Later attempts skip the candidates an earlier attempt already lost on.
    start = 1 + attempt * 100
    for n in range(start, start + 100):
        candidate = base if n == 1 else _with_suffix(base, n)
        if not await store.username_exists(session, candidate):
            return candidate
    raise ProvisioningConflict()


async def _register_new_user(
    session: AsyncSession, provider: str, info: OAuthUserInfo
) -> User:
    role = await store.get_role_by_name(session, DEFAULT_OAUTH_ROLE)
    if role is None:
        raise RoleCatalogError(DEFAULT_OAUTH_ROLE.value)

    base = _username_base(info.display_name)
    email = normalize_email(info.email)

    for attempt in range(PROVISIONING_MAX_ATTEMPTS):
        username = await _available_username(session, base, attempt)
        user = User(
            provider=provider,
            provider_id=info.external_id,
            username=username,
            display_name=info.display_name,
            email=email,
            image_url=info.image_url,
            # A completed OAuth2 handshake implies the provider verified the email.
            email_verified=True,
            roles=[role],
        )
        try:
            async with session.begin_nested():
                await store.save_user(session, user)
            logger.info("Provisioned %s identity %s (%s)", provider, user.id, username)
            return user
        except IntegrityError:
            existing = await store.get_user_by_email(
                session, email
            ) or await store.get_user_by_provider(session, provider, info.external_id)
            if existing is not None:
                logger.info("Concurrent first login for %s converged on %s", email, existing.id)
                await _refresh_existing_user(session, existing, info)
                return existing
            logger.info("Username %s taken concurrently, retrying", username)

    raise ProvisioningConflict()
