"""
Comment endpoints.
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_redis
from app.models.user import User
from app.schemas.comment import (
    CommentCreateRequest,
    CommentListResponse,
    CommentResponse,
    CommentUpdateRequest,
)
from app.services.comment_service import CommentService

router = APIRouter()


def get_comment_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> CommentService:
    return CommentService(db=db, redis=redis)


@router.get(
    "",
    response_model=CommentListResponse,
    summary="List comments on a task",
)
async def list_comments(
    task_id: UUID = Query(...),
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentListResponse:
    return await service.list_comments(task_id, current_user)


@router.post(
    "",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a comment",
)
async def create_comment(
    data: CommentCreateRequest,
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentResponse:
    """
    Post a comment on a task (member+).

    `@handle` tokens that match project members create mentions and inbox
    items for those members.
    """
    return await service.create_comment(data, current_user)


@router.patch(
    "",
    response_model=CommentResponse,
    summary="Edit a comment",
)
async def update_comment(
    data: CommentUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> CommentResponse:
    return await service.update_comment(data, current_user)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a comment",
)
async def delete_comment(
    id: UUID = Query(...),
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> None:
    await service.delete_comment(id, current_user)
