from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.member import MemberRole
from app.models.project import ProjectStatus


class WorkflowStage(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(default="#6B7280", max_length=20)


def _validate_stages(stages: list[WorkflowStage] | None) -> list[WorkflowStage] | None:
    if stages is None:
        return stages
    if not stages:
        raise ValueError("A project needs at least one workflow stage")
    ids = [stage.id for stage in stages]
    if len(set(ids)) != len(ids):
        raise ValueError("Workflow stage ids must be unique")
    return stages


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)
    organization_id: UUID | None = None
    workflow_stages: list[WorkflowStage] | None = None
    requires_approval: bool = False

    @field_validator("workflow_stages")
    @classmethod
    def stages_must_be_valid(cls, v: list[WorkflowStage] | None) -> list[WorkflowStage] | None:
        return _validate_stages(v)


class ProjectUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)
    status: ProjectStatus | None = None
    workflow_stages: list[WorkflowStage] | None = None
    requires_approval: bool | None = None

    @field_validator("workflow_stages")
    @classmethod
    def stages_must_be_valid(cls, v: list[WorkflowStage] | None) -> list[WorkflowStage] | None:
        return _validate_stages(v)


class ProjectResponse(BaseModel):
    id: UUID
    organization_id: UUID | None
    name: str
    description: str | None
    color: str
    status: ProjectStatus
    workflow_stages: list[dict[str, Any]]
    requires_approval: bool
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
    role: MemberRole | None = None
    tasks_count: int = 0
    completed_tasks_count: int = 0
    pending_approval_count: int = 0

    model_config = {"from_attributes": True}


class ProjectListResponse(BaseModel):
    data: list[ProjectResponse]
    total: int
