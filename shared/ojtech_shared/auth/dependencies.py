"""
Request identity context.

The caller's principal is resolved once per request from the bearer token and
handed to route handlers through FastAPI dependency injection. Nothing is
stored in module or thread globals, so background work spawned by a handler
only sees a principal if the handler passes it along explicitly.
"""
import logging
from collections.abc import Callable
from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.auth.tokens import decode_access_token, payload_to_principal
from ojtech_shared.errors import AccessDenied, AuthenticationFailed, InvalidToken
from ojtech_shared.models.principal import AuthenticatedPrincipal

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)


@lru_cache
def get_auth_settings() -> AuthSettings:
    return AuthSettings()


async def get_current_principal_optional(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    settings: AuthSettings = Depends(get_auth_settings),
) -> AuthenticatedPrincipal | None:
    if not credentials or not credentials.credentials:
        return None
    try:
        payload = decode_access_token(credentials.credentials, settings)
        return payload_to_principal(payload)
    except (JWTError, ValueError, KeyError) as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise InvalidToken() from exc


async def get_current_principal(
    principal: AuthenticatedPrincipal | None = Depends(get_current_principal_optional),
) -> AuthenticatedPrincipal:
    if principal is None:
        raise AuthenticationFailed()
    return principal


def require_authority(*names: str) -> Callable[..., AuthenticatedPrincipal]:
    """Dependency factory: 403 unless the principal holds one of ``names``."""

    def _guard(
        principal: AuthenticatedPrincipal = Depends(get_current_principal),
    ) -> AuthenticatedPrincipal:
        if not principal.has_authority(*names):
            raise AccessDenied(f"Requires one of {', '.join(names)}")
        return principal

    return _guard
