"""
Invitation endpoints for the invitee.
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_redis
from app.models.user import User
from app.schemas.invitation import (
    InvitationActionRequest,
    InvitationListResponse,
    InvitationResponse,
)
from app.services.invitation_service import InvitationService

router = APIRouter()


def get_invitation_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> InvitationService:
    return InvitationService(db=db, redis=redis)


@router.get(
    "",
    response_model=InvitationListResponse,
    summary="List my pending invitations",
)
async def list_invitations(
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationListResponse:
    return await service.list_for_user(current_user)


@router.post(
    "/accept",
    response_model=InvitationResponse,
    summary="Accept an invitation",
)
async def accept_invitation(
    data: InvitationActionRequest,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationResponse:
    return await service.accept(data, current_user)


@router.post(
    "/decline",
    response_model=InvitationResponse,
    summary="Decline an invitation",
)
async def decline_invitation(
    data: InvitationActionRequest,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationResponse:
    return await service.decline(data, current_user)
