"""
Bearer token issuing and validation (HS256 JWT via python-jose).

Claims: ``sub`` (identity id), ``username``, ``email``, ``roles``, ``iat``,
``exp``, ``iss``, ``aud``. Validation checks signature, expiry, issuer and
audience; the principal is rebuilt from claims without a database hit.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import jwt

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.models.principal import AuthenticatedPrincipal


def encode_access_token(
    principal: AuthenticatedPrincipal,
    settings: AuthSettings,
    *,
    expire_seconds: int | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    lifetime = settings.expire_seconds if expire_seconds is None else expire_seconds
    payload = {
        "sub": str(principal.id),
        "username": principal.username,
        "email": principal.email,
        "roles": list(principal.authorities),
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
        "iss": settings.issuer,
        "aud": settings.audience,
    }
    return jwt.encode(payload, settings.secret, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: AuthSettings) -> dict:
    return jwt.decode(
        token,
        settings.secret,
        algorithms=[settings.algorithm],
        issuer=settings.issuer,
        audience=settings.audience,
    )


def payload_to_principal(payload: dict) -> AuthenticatedPrincipal:
    user_id = payload.get("sub")
    if not user_id:
        raise ValueError("Missing sub in token")
    roles_raw = payload.get("roles") or []
    if not isinstance(roles_raw, list):
        raise ValueError("roles claim must be a list")
    return AuthenticatedPrincipal(
        id=UUID(user_id),
        username=payload.get("username") or "",
        email=payload.get("email") or "",
        authorities=tuple(str(r) for r in roles_raw),
    )
