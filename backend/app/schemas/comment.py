"""
Comment and mention schemas.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.task import UserSummaryResponse


class CommentCreateRequest(BaseModel):
    """Request body for POST /comments."""

    task_id: UUID
    content: str = Field(min_length=1, max_length=10000)


class CommentUpdateRequest(BaseModel):
    """Request body for PATCH /comments."""

    id: UUID
    content: str = Field(min_length=1, max_length=10000)


class CommentResponse(BaseModel):
    id: UUID
    task_id: UUID
    project_id: UUID
    content: str
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    author: UserSummaryResponse | None = None
    mentioned_user_ids: list[UUID] = Field(
        default_factory=list,
        description="Users notified by this write (new mentions only on edit)",
    )

    model_config = {"from_attributes": True}


class CommentListResponse(BaseModel):
    data: list[CommentResponse]
    total: int


# ---------------------------------------------------------------------------
# Mention autocomplete
# ---------------------------------------------------------------------------

class MentionableUser(BaseModel):
    id: UUID
    email: str
    full_name: str | None
    avatar_url: str | None
    handle: str


class MentionableUserListResponse(BaseModel):
    data: list[MentionableUser]
