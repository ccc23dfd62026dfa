"""
Project management endpoints.

Project CRUD, membership, activity feed and the project's Slack settings.
"""
from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_redis
from app.models.user import User
from app.routers.slack import get_slack_integration_service
from app.routers.tasks import get_task_service
from app.schemas.member import (
    MemberAddRequest,
    MemberAddResponse,
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
)
from app.schemas.project import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdateRequest,
)
from app.schemas.slack import ProjectSlackIntegrationResponse, ProjectSlackIntegrationUpdate
from app.schemas.task import ActivityListResponse
from app.services.member_service import MemberService
from app.services.project_service import ProjectService
from app.services.slack_service import SlackIntegrationService
from app.services.task_service import TaskService

router = APIRouter()


def get_project_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> ProjectService:
    return ProjectService(db=db, redis=redis)


def get_member_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> MemberService:
    return MemberService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=ProjectListResponse,
    summary="List my projects",
)
async def list_projects(
    organization_id: UUID | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectListResponse:
    return await service.list_projects(current_user, organization_id=organization_id)


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new project",
)
async def create_project(
    data: ProjectCreateRequest,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    return await service.create_project(data, current_user)


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get project detail",
)
async def get_project(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    return await service.get_project(project_id, current_user)


@router.patch(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Update project",
)
async def update_project(
    project_id: UUID,
    data: ProjectUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    return await service.update_project(project_id, data, current_user)


@router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a project",
)
async def delete_project(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> None:
    await service.delete_project(project_id, current_user)


@router.get(
    "/{project_id}/activity",
    response_model=ActivityListResponse,
    summary="Recent project activity",
)
async def list_activity(
    project_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> ActivityListResponse:
    return await service.list_activity(project_id, current_user, limit=limit)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@router.get(
    "/{project_id}/members",
    response_model=MemberListResponse,
    summary="List project members",
)
async def list_members(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    service: MemberService = Depends(get_member_service),
) -> MemberListResponse:
    return await service.list_members(project_id, current_user)


@router.post(
    "/{project_id}/members",
    response_model=MemberAddResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add or invite a member",
)
async def add_member(
    project_id: UUID,
    data: MemberAddRequest,
    current_user: User = Depends(get_current_user),
    service: MemberService = Depends(get_member_service),
) -> MemberAddResponse:
    """
    Existing users are added immediately; other addresses receive an
    invitation email.
    """
    return await service.add_member(project_id, data, current_user)


@router.patch(
    "/{project_id}/members",
    response_model=MemberResponse,
    summary="Change a member's role",
)
async def change_member_role(
    project_id: UUID,
    data: MemberRoleUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: MemberService = Depends(get_member_service),
) -> MemberResponse:
    return await service.change_role(project_id, data, current_user)


@router.delete(
    "/{project_id}/members",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a member or leave the project",
)
async def remove_member(
    project_id: UUID,
    user_id: UUID = Query(...),
    current_user: User = Depends(get_current_user),
    service: MemberService = Depends(get_member_service),
) -> None:
    await service.remove_member(project_id, user_id, current_user)


# ---------------------------------------------------------------------------
# Slack integration
# ---------------------------------------------------------------------------

@router.get(
    "/{project_id}/slack",
    response_model=ProjectSlackIntegrationResponse,
    summary="Get the project's Slack integration",
)
async def get_slack_integration(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> ProjectSlackIntegrationResponse:
    return await service.get_project_integration(project_id, current_user)


@router.put(
    "/{project_id}/slack",
    response_model=ProjectSlackIntegrationResponse,
    summary="Create or update the project's Slack integration",
)
async def put_slack_integration(
    project_id: UUID,
    data: ProjectSlackIntegrationUpdate,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> ProjectSlackIntegrationResponse:
    return await service.upsert_project_integration(project_id, data, current_user)


@router.delete(
    "/{project_id}/slack",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove the project's Slack integration",
)
async def delete_slack_integration(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> None:
    await service.delete_project_integration(project_id, current_user)
