"""
Identity service: OAuth2 authorization request store and success redirect.

The authorization request (provider + requested redirect_uri) is kept in Redis
under the random ``state`` value for the duration of the provider round trip:

    oauth2_auth_request:<state>  →  {"provider": "...", "redirect_uri": "..."}

It is single use. The callback loads it and must clear it on every exit path.

The redirect target must be a well-formed http/https URL; hosts are not
allow-listed.
"""
from __future__ import annotations

import json
import logging
import re
import secrets
from urllib.parse import quote, urlsplit, urlunsplit

import redis.asyncio as aioredis
from fastapi import Request

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.middleware.response_state import RESPONSE_COMMITTED
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth.constants import OAUTH2_STATE_PREFIX
from ojtech_identity.auth.service import create_access_token

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset({"http", "https"})


# ── Authorization request (Redis) ─────────────────────────────────────────────

def _state_key(state: str) -> str:
    return f"{OAUTH2_STATE_PREFIX}{state}"


async def save_authorization_request(
    redis: aioredis.Redis,
    *,
    provider: str,
    redirect_uri: str | None,
    ttl_seconds: int,
) -> str:
    """Store the request under a fresh state value and return the state."""
    state = secrets.token_urlsafe(32)
    payload = json.dumps({"provider": provider, "redirect_uri": redirect_uri})
    await redis.setex(_state_key(state), ttl_seconds, payload)
    return state


async def load_authorization_request(redis: aioredis.Redis, state: str) -> dict | None:
    raw = await redis.get(_state_key(state))
    if raw is None:
        return None
    return json.loads(raw)


async def clear_authorization_request(redis: aioredis.Redis, state: str) -> None:
    await redis.delete(_state_key(state))


# ── Target URL ────────────────────────────────────────────────────────────────

# Characters RFC 3986 never allows unencoded, plus "%" not followed by two hex digits.
_ILLEGAL_URI_TEXT = re.compile(r"[\x00-\x20\x7f<>\"{}|\\^`]|%(?![0-9A-Fa-f]{2})")


def resolve_redirect_target(redirect_uri: str | None, default_url: str) -> str:
    """
    Return redirect_uri if it is a well-formed absolute http(s) URL, else default_url.

    The scheme must match exactly; "HTTP://..." and "javascript:..." both fall
    back to the default, as does any value with spaces, control characters or
    other characters that must be percent-encoded.
    """
    if not redirect_uri or _ILLEGAL_URI_TEXT.search(redirect_uri):
        return default_url
    try:
        parts = urlsplit(redirect_uri)
    except ValueError:
        return default_url
    # urlsplit lower-cases the scheme; compare the text as given.
    raw_scheme = redirect_uri[: len(parts.scheme)]
    if not parts.scheme or raw_scheme not in _ALLOWED_SCHEMES:
        return default_url
    return redirect_uri


def append_token(url: str, token: str) -> str:
    """Append ``token=<token>`` to the query, leaving the existing query text as is."""
    parts = urlsplit(url)
    param = f"token={quote(token, safe='')}"
    query = f"{parts.query}&{param}" if parts.query else param
    return urlunsplit(parts._replace(query=query))


# ── Success handler ───────────────────────────────────────────────────────────

def on_authentication_success(
    request: Request,
    principal: AuthenticatedPrincipal,
    *,
    redirect_uri: str | None,
    default_url: str,
    auth_settings: AuthSettings,
) -> str | None:
    """
    Build the post-login redirect URL carrying a freshly issued token.

    Returns None when the response was already committed, which
    ``ResponseCommitMiddleware`` records on ``request.state``; the caller must
    then not send a redirect.
    """
    target = resolve_redirect_target(redirect_uri, default_url)
    if getattr(request.state, RESPONSE_COMMITTED, False):
        logger.debug("Response has already been committed. Unable to redirect to %s", target)
        return None
    token = create_access_token(principal, auth_settings)
    return append_token(target, token)
