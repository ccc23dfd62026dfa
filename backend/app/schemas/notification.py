"""
Pydantic schemas for notifications and inbox (attention) items.

Notification `data` is a tagged union keyed by `type`; clients navigate from
the typed payload instead of guessing at free-form keys.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from app.models.notification import AttentionPriority, AttentionType


# ---------------------------------------------------------------------------
# Notification payloads
# ---------------------------------------------------------------------------

class CommentAddedData(BaseModel):
    type: Literal["comment_added"] = "comment_added"
    task_id: uuid.UUID
    project_id: uuid.UUID
    comment_id: uuid.UUID
    commented_by: uuid.UUID
    commenter_name: str
    comment_preview: str


class MentionData(BaseModel):
    type: Literal["mention"] = "mention"
    task_id: uuid.UUID
    project_id: uuid.UUID
    comment_id: uuid.UUID
    mentioned_by: uuid.UUID
    mentioner_name: str
    is_edit: bool = False


class TaskMovedData(BaseModel):
    type: Literal["task_moved"] = "task_moved"
    task_id: uuid.UUID
    project_id: uuid.UUID
    old_stage_id: str
    new_stage_id: str
    old_stage_name: str
    new_stage_name: str
    moved_by: uuid.UUID
    moved_by_name: str
    moved_by_role: str


class TaskAssignedData(BaseModel):
    type: Literal["task_assigned"] = "task_assigned"
    task_id: uuid.UUID
    project_id: uuid.UUID
    assigned_by: uuid.UUID
    assigned_by_name: str


class ProjectInviteData(BaseModel):
    type: Literal["project_invite"] = "project_invite"
    project_id: uuid.UUID
    project_name: str
    role: str
    invited_by: uuid.UUID
    inviter_name: str


class TaskReviewData(BaseModel):
    type: Literal["task_approved", "task_rejected"]
    task_id: uuid.UUID
    project_id: uuid.UUID
    reviewed_by: uuid.UUID
    reviewer_name: str
    reason: str | None = None


class AnnouncementData(BaseModel):
    type: Literal["new_announcement"] = "new_announcement"
    organization_id: uuid.UUID
    organization_name: str
    announcement_id: uuid.UUID
    posted_by: uuid.UUID


NotificationData = Annotated[
    Union[
        CommentAddedData,
        MentionData,
        TaskMovedData,
        TaskAssignedData,
        ProjectInviteData,
        TaskReviewData,
        AnnouncementData,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Notification responses
# ---------------------------------------------------------------------------

class NotificationResponse(BaseModel):
    """Single notification response."""

    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID | None
    type: str
    title: str
    message: str
    data: dict[str, Any]
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Response for GET /notifications."""

    data: list[NotificationResponse]
    total: int
    unread_count: int


class NotificationUpdateRequest(BaseModel):
    """Request body for PATCH /notifications/{id}."""

    read: bool = True


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

class AttentionItemResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    attention_type: AttentionType
    priority: AttentionPriority
    title: str
    body: str | None
    task_id: uuid.UUID | None
    comment_id: uuid.UUID | None
    project_id: uuid.UUID | None
    actor_user_id: uuid.UUID | None
    dedup_key: str
    read_at: datetime | None
    dismissed_at: datetime | None
    actioned_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class InboxListResponse(BaseModel):
    items: list[AttentionItemResponse]
    total: int
    unread_count: int


class InboxActionRequest(BaseModel):
    """Request body for PATCH /inbox."""

    action: Literal["mark_read", "mark_all_read", "dismiss", "mark_actioned"]
    item_id: uuid.UUID | None = None


class CountResponse(BaseModel):
    updated: int
