"""
Mention autocomplete.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_current_user
from app.models.user import User
from app.routers.comments import get_comment_service
from app.schemas.comment import MentionableUserListResponse
from app.services.comment_service import MAX_MENTION_SUGGESTIONS, CommentService

router = APIRouter()


@router.get(
    "/users",
    response_model=MentionableUserListResponse,
    summary="Search project members to mention",
)
async def search_mentionable_users(
    project_id: UUID = Query(...),
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=10, ge=1, le=MAX_MENTION_SUGGESTIONS),
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
) -> MentionableUserListResponse:
    return await service.search_mentionable_users(project_id, current_user, query=q, limit=limit)
