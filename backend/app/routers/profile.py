"""
Profile endpoints for the authenticated user.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.dependencies import get_current_user
from app.models.user import User
from app.routers.auth import get_auth_service
from app.schemas.auth import MeResponse, ProfileUpdateRequest
from app.services.auth_service import AuthService

router = APIRouter()


@router.get("", response_model=MeResponse, summary="Get own profile")
async def get_profile(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    return await service.get_me(current_user)


@router.patch("", response_model=MeResponse, summary="Update own profile")
async def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Only the fields present in the body are changed."""
    return await service.update_profile(current_user, data)
