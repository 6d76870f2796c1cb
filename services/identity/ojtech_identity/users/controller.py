"""
Identity service: user lookup controller.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_identity.auth.schemas import UserResponse
from ojtech_identity.auth.service import resolve_identity


async def get_user(session: AsyncSession, identifier: str) -> UserResponse:
    user = await resolve_identity(session, identifier)
    return UserResponse.model_validate(user)
