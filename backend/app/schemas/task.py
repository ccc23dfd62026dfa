"""
Task schemas.

Request/response models for task CRUD, approvals and the activity log.
Unknown fields in request bodies are ignored.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

PRIORITY_PATTERN = "^(urgent|high|medium|low|none)$"
STATUS_PATTERN = "^(todo|in_progress|done)$"


# ---------------------------------------------------------------------------
# Task Create
# ---------------------------------------------------------------------------

class TaskCreateRequest(BaseModel):
    """Request body for POST /tasks."""

    project_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    stage_id: str | None = Field(
        default=None,
        max_length=64,
        description="Defaults to the project's first stage when missing or unknown",
    )
    priority: str = Field(default="medium", pattern=PRIORITY_PATTERN)
    due_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    assignee_ids: list[UUID] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Task Update
# ---------------------------------------------------------------------------

class TaskUpdateRequest(BaseModel):
    """
    Request body for PATCH /tasks.

    Only fields present in the body are applied.
    """

    id: UUID
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    status: str | None = Field(default=None, pattern=STATUS_PATTERN)
    stage_id: str | None = Field(default=None, max_length=64)
    priority: str | None = Field(default=None, pattern=PRIORITY_PATTERN)
    due_date: date | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    completed_at: datetime | None = None
    position: int | None = Field(default=None, ge=0)
    assignee_ids: list[UUID] | None = None


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------

class TaskRejectRequest(BaseModel):
    """Request body for POST /tasks/{task_id}/reject."""

    reason: str | None = Field(default=None, max_length=2000)
    return_stage_id: str | None = Field(
        default=None, description="Stage the task goes back to; defaults to the first stage"
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class UserSummaryResponse(BaseModel):
    """Compact user info embedded in other responses."""

    id: UUID
    display_name: str
    avatar_url: str | None
    email: str

    model_config = {"from_attributes": True}


class TaskResponse(BaseModel):
    id: UUID
    project_id: UUID
    title: str
    description: str | None
    stage_id: str
    status: str
    priority: str
    due_date: date | None
    tags: list[str]
    custom_fields: dict[str, Any]
    position: int
    approval_status: str
    approved_by: UUID | None
    approved_at: datetime | None
    rejection_reason: str | None
    completed_at: datetime | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
    assignee_ids: list[UUID] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class TaskListResponse(BaseModel):
    """Response for GET /tasks?project_id=."""

    data: list[TaskResponse]
    total: int


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

class ActivityResponse(BaseModel):
    id: UUID
    project_id: UUID
    task_id: UUID | None
    user_id: UUID | None
    action: str
    details: dict[str, Any]
    created_at: datetime
    user: UserSummaryResponse | None = None

    model_config = {"from_attributes": True}


class ActivityListResponse(BaseModel):
    data: list[ActivityResponse]
    total: int
