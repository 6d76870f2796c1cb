"""
Identity service: user lookup router (admin only).

Only HTTP concerns live here. Zero business logic. Zero DB queries.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ojtech_shared.auth.dependencies import require_authority
from ojtech_shared.constants import RoleName
from ojtech_shared.models.principal import AuthenticatedPrincipal

from ojtech_identity.auth.schemas import UserResponse
from ojtech_identity.database import get_db
from ojtech_identity.users.controller import get_user as get_user_controller

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get(
    "/{identifier}",
    response_model=UserResponse,
    summary="Look up an account by email or username",
)
async def get_user(
    identifier: str,
    session: AsyncSession = Depends(get_db),
    _admin: AuthenticatedPrincipal = Depends(require_authority(RoleName.ADMIN.value)),
) -> UserResponse:
    return await get_user_controller(session, identifier)
