"""
Identity service: identity store.

Single-record reads and writes against the users/roles tables. Callers own
the transaction; ``save_user`` only flushes so the caller can keep working
with the row (and catch constraint violations) before the request commits.
"""
from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.constants import RoleName

from ojtech_identity.auth.models import Role, User
from ojtech_identity.auth.utils import normalize_email


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Case-insensitive so rows written before normalization still match.
    result = await session.execute(
        select(User).where(func.lower(User.email) == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_provider(
    session: AsyncSession, provider: str, provider_id: str
) -> User | None:
    result = await session.execute(
        select(User).where(User.provider == provider, User.provider_id == provider_id)
    )
    return result.scalar_one_or_none()


async def username_exists(session: AsyncSession, username: str) -> bool:
    result = await session.execute(select(User.id).where(User.username == username))
    return result.first() is not None


async def save_user(session: AsyncSession, user: User) -> User:
    session.add(user)
    await session.flush()
    return user


async def get_role_by_name(session: AsyncSession, name: RoleName | str) -> Role | None:
    value = name.value if isinstance(name, RoleName) else name
    result = await session.execute(select(Role).where(Role.name == value))
    return result.scalar_one_or_none()


async def seed_roles(session: AsyncSession) -> list[str]:
    """Insert any catalog role that is missing. Returns the names created."""
    result = await session.execute(select(Role.name))
    existing = set(result.scalars().all())
    created = [name.value for name in RoleName if name.value not in existing]
    for name in created:
        session.add(Role(name=name))
    if created:
        await session.flush()
    return created
