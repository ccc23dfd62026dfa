"""
Task endpoints.

Collection-style routes: the task id travels in the body (PATCH) or the
query string (DELETE).
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_redis
from app.models.user import User
from app.schemas.task import (
    TaskCreateRequest,
    TaskListResponse,
    TaskRejectRequest,
    TaskResponse,
    TaskUpdateRequest,
)
from app.services.task_service import TaskService

router = APIRouter()


def get_task_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> TaskService:
    return TaskService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# List / Create / Update / Delete
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=TaskListResponse,
    summary="List tasks in a project",
)
async def list_tasks(
    project_id: UUID = Query(...),
    stage_id: str | None = Query(default=None, max_length=64),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskListResponse:
    return await service.list_tasks(project_id, current_user, stage_id=stage_id)


@router.post(
    "",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new task",
)
async def create_task(
    data: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    """
    Create a task at the end of its stage (member+).

    Assignees are notified, and the project's Slack channel when enabled.
    """
    return await service.create_task(data, current_user)


@router.patch(
    "",
    response_model=TaskResponse,
    summary="Update a task",
)
async def update_task(
    data: TaskUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.update_task(data, current_user)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a task",
)
async def delete_task(
    id: UUID = Query(...),
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> None:
    await service.delete_task(id, current_user)


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------

@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    summary="Get a task",
)
async def get_task(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.get_task(task_id, current_user)


@router.post(
    "/{task_id}/approve",
    response_model=TaskResponse,
    summary="Approve a completed task",
)
async def approve_task(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.approve_task(task_id, current_user)


@router.post(
    "/{task_id}/reject",
    response_model=TaskResponse,
    summary="Reject a task awaiting approval",
)
async def reject_task(
    task_id: UUID,
    data: TaskRejectRequest,
    current_user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.reject_task(task_id, data, current_user)
