"""
Identity service: pure business logic for local authentication.

Rules:
  - Zero FastAPI imports.
  - Zero direct DB driver calls, only the identity store over an AsyncSession.
  - All I/O functions are async def.
  - No side effects beyond the session passed in (no global state mutated).
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.auth.config import AuthSettings
from ojtech_shared.auth.tokens import encode_access_token
from ojtech_shared.constants import DEFAULT_ROLE, RoleName
from ojtech_shared.errors import BadCredentials
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth import store
from ojtech_identity.auth.constants import SIGNUP_ROLE_ALIASES
from ojtech_identity.auth.models import User
from ojtech_identity.auth.utils import hash_password, normalize_email, verify_password
from ojtech_identity.exceptions import (
    AccountDisabled,
    EmailAlreadyInUse,
    IdentityNotFound,
    RoleCatalogError,
    UnknownRoleRequested,
    UsernameTaken,
)


# ── Principal ─────────────────────────────────────────────────────────────────

def principal_for(
    user: User, *, attributes: Mapping[str, Any] | None = None
) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(
        id=user.id,
        username=user.username,
        email=user.email,
        authorities=user.role_names,
        attributes=dict(attributes or {}),
    )


# ── Credential resolution ─────────────────────────────────────────────────────

async def resolve_identity(session: AsyncSession, identifier: str) -> User:
    """
    Resolve a login identifier: email first, then username.

    The order is part of the contract: a value that is one account's email and
    another account's username resolves to the email owner. The failure does
    not say which lookup missed.
    """
    user = await store.get_user_by_email(session, identifier)
    if user is None:
        user = await store.get_user_by_username(session, identifier)
    if user is None:
        raise IdentityNotFound(identifier)
    return user


async def authenticate_user(
    session: AsyncSession,
    identifier: str,
    password: str,
) -> User:
    """
    Verify credentials and return the User.

    Unknown identifier, provider-only account and wrong password all raise the
    same BadCredentials so the response does not reveal which accounts exist.
    """
    try:
        user = await resolve_identity(session, identifier)
    except IdentityNotFound:
        raise BadCredentials() from None
    if not verify_password(password, user.password_hash):
        raise BadCredentials()
    if not user.is_active:
        raise AccountDisabled()
    return user


# ── Registration (local account) ──────────────────────────────────────────────

def _catalog_names(requested: Iterable[str] | None) -> list[RoleName]:
    names: list[RoleName] = []
    for raw in requested or ():
        role = SIGNUP_ROLE_ALIASES.get(raw.strip().lower())
        if role is None:
            raise UnknownRoleRequested(raw)
        if role not in names:
            names.append(role)
    return names or [DEFAULT_ROLE]


async def register_user(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    roles: Iterable[str] | None = None,
) -> User:
    """
    Create a local account.

    Guard clauses (uniqueness checks) run first, the happy path is last.
    Uses flush() so the caller can use user.id without committing.
    """
    if await store.username_exists(session, username):
        raise UsernameTaken()
    if await store.get_user_by_email(session, email) is not None:
        raise EmailAlreadyInUse()

    catalog = []
    for name in _catalog_names(roles):
        role = await store.get_role_by_name(session, name)
        if role is None:
            raise RoleCatalogError(name.value)
        catalog.append(role)

    user = User(
        username=username,
        email=normalize_email(email),
        password_hash=hash_password(password),
        display_name=username,
        roles=catalog,
    )
    return await store.save_user(session, user)


# ── Token issuing ─────────────────────────────────────────────────────────────

def create_access_token(principal: AuthenticatedPrincipal, settings: AuthSettings) -> str:
    return encode_access_token(principal, settings)
