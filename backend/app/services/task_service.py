"""
Task business logic.

Every mutation runs the same pipeline: authorize, validate, load the
pre-state, persist and commit, then fan out notifications and Slack
messages on a best-effort basis.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import Action, AuthorizationService, ResourceContext
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.base import utcnow
from app.models.member import ProjectMember
from app.models.project import Project
from app.models.task import ApprovalStatus, Task, TaskAssignment, TaskPriority, TaskStatus
from app.models.user import User
from app.schemas.task import (
    ActivityListResponse,
    ActivityResponse,
    TaskCreateRequest,
    TaskListResponse,
    TaskRejectRequest,
    TaskResponse,
    TaskUpdateRequest,
    UserSummaryResponse,
)
from app.services.fanout_service import FanoutService
from app.services.slack_service import SlackBridge

logger = logging.getLogger(__name__)

# Explicit nulls for these fields are ignored
_NOT_NULLABLE = frozenset({"title", "status", "priority", "position", "tags", "custom_fields"})


async def next_task_position(db: AsyncSession, project_id: UUID, stage_id: str) -> int:
    """max(position) in the stage + 1; the first task in a stage gets 0."""
    result = await db.execute(
        select(func.max(Task.position)).where(
            Task.project_id == project_id,
            Task.stage_id == stage_id,
        )
    )
    current = result.scalar()
    return 0 if current is None else current + 1


def task_response(task: Task, assignee_ids: list[UUID] | None = None) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        stage_id=task.stage_id,
        status=task.status.value,
        priority=task.priority.value,
        due_date=task.due_date,
        tags=list(task.tags or []),
        custom_fields=dict(task.custom_fields or {}),
        position=task.position,
        approval_status=task.approval_status.value,
        approved_by=task.approved_by,
        approved_at=task.approved_at,
        rejection_reason=task.rejection_reason,
        completed_at=task.completed_at,
        created_by=task.created_by,
        created_at=task.created_at,
        updated_at=task.updated_at,
        assignee_ids=assignee_ids or [],
    )


class TaskService:
    """Handles all task operations."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.authz = AuthorizationService(db=db, redis=redis)
        self.fanout = FanoutService(db)
        self.slack = SlackBridge(db)

    # -----------------------------------------------------------------------
    # List / Get
    # -----------------------------------------------------------------------

    async def list_tasks(
        self,
        project_id: UUID,
        current_user: User,
        stage_id: str | None = None,
    ) -> TaskListResponse:
        """Tasks of a project ordered by stage position."""
        await self.authz.require(current_user.id, Action.READ, ResourceContext.project(project_id))

        stmt = select(Task).where(Task.project_id == project_id)
        if stage_id is not None:
            stmt = stmt.where(Task.stage_id == stage_id)
        stmt = stmt.order_by(Task.position, Task.created_at)

        tasks = list((await self.db.execute(stmt)).scalars().all())
        assignees = await self._load_assignee_ids([t.id for t in tasks])

        return TaskListResponse(
            data=[task_response(t, assignees.get(t.id)) for t in tasks],
            total=len(tasks),
        )

    async def get_task(self, task_id: UUID, current_user: User) -> TaskResponse:
        task = await self._get_task(task_id)
        await self.authz.require(
            current_user.id, Action.READ, ResourceContext.project(task.project_id)
        )
        assignees = await self._load_assignee_ids([task.id])
        return task_response(task, assignees.get(task.id))

    # -----------------------------------------------------------------------
    # Create Task
    # -----------------------------------------------------------------------

    async def create_task(self, data: TaskCreateRequest, current_user: User) -> TaskResponse:
        """
        Create a task at the end of its stage.

        A missing or unknown stage_id falls back to the project's first stage.
        """
        await self.authz.require(
            current_user.id, Action.CREATE_TASK, ResourceContext.project(data.project_id)
        )
        project = await self._get_project(data.project_id)

        stage_id = data.stage_id if data.stage_id in project.stage_ids else project.first_stage_id
        assignee_ids = list(dict.fromkeys(data.assignee_ids))
        await self._verify_assignees(project.id, assignee_ids)

        task = Task(
            project_id=project.id,
            title=data.title,
            description=data.description,
            stage_id=stage_id,
            status=project.status_for_stage(stage_id),
            priority=TaskPriority(data.priority),
            due_date=data.due_date,
            tags=data.tags,
            custom_fields=data.custom_fields,
            position=await next_task_position(self.db, project.id, stage_id),
            created_by=current_user.id,
        )
        if stage_id == project.done_stage_id:
            self._enter_done(task, project)
        self.db.add(task)
        await self.db.flush()

        for user_id in assignee_ids:
            self.db.add(TaskAssignment(task_id=task.id, user_id=user_id, assigned_by=current_user.id))

        self._log_activity(
            project_id=project.id,
            task_id=task.id,
            user_id=current_user.id,
            action=ActivityAction.task_created,
            details={"title": task.title, "stage_id": stage_id},
        )
        await self.db.commit()
        logger.info("Task created: task_id=%s project_id=%s", task.id, project.id)

        await self.fanout.task_assigned(task, project, current_user, assignee_ids)
        await self.slack.task_created(project, task, current_user)

        return task_response(task, assignee_ids)

    # -----------------------------------------------------------------------
    # Update Task
    # -----------------------------------------------------------------------

    async def update_task(self, data: TaskUpdateRequest, current_user: User) -> TaskResponse:
        """
        Partially update a task.

        Stage changes are validated against the project's workflow. Entering
        the done stage sets approval to pending (approval required) or
        approved; leaving it clears the approval state.
        """
        task = await self._get_task(data.id)
        role = await self.authz.require(
            current_user.id, Action.EDIT_TASK, ResourceContext.project(task.project_id)
        )
        project = await self._get_project(task.project_id)

        fields = data.model_dump(exclude_unset=True, exclude={"id", "assignee_ids"})
        old_stage_id = task.stage_id
        changed: list[str] = []

        new_stage_id = fields.pop("stage_id", None)
        if new_stage_id is not None and new_stage_id != old_stage_id:
            if new_stage_id not in project.stage_ids:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={
                        "code": "INVALID_STAGE",
                        "message": f"Stage '{new_stage_id}' is not part of this project's workflow",
                    },
                )
            task.stage_id = new_stage_id
            if "status" not in fields:
                task.status = project.status_for_stage(new_stage_id)
            if "position" not in fields:
                task.position = await next_task_position(self.db, project.id, new_stage_id)
            changed.append("stage_id")
        stage_changed = task.stage_id != old_stage_id

        for field, value in fields.items():
            if field == "status" and value is not None:
                value = TaskStatus(value)
            elif field == "priority" and value is not None:
                value = TaskPriority(value)
            elif value is None and field in _NOT_NULLABLE:
                continue
            if getattr(task, field) != value:
                setattr(task, field, value)
                changed.append(field)

        entered_done = stage_changed and task.stage_id == project.done_stage_id
        left_done = stage_changed and old_stage_id == project.done_stage_id
        if entered_done:
            self._enter_done(task, project, completed_at=fields.get("completed_at"))
        elif left_done:
            task.approval_status = ApprovalStatus.none
            task.approved_by = None
            task.approved_at = None
            if "completed_at" not in fields:
                task.completed_at = None

        new_assignee_ids: list[UUID] = []
        if data.assignee_ids is not None:
            new_assignee_ids = await self._replace_assignees(task, data.assignee_ids, current_user)
            if new_assignee_ids:
                changed.append("assignee_ids")

        if stage_changed:
            self._log_activity(
                project_id=project.id,
                task_id=task.id,
                user_id=current_user.id,
                action=ActivityAction.task_moved,
                details={
                    "from_stage": old_stage_id,
                    "to_stage": task.stage_id,
                    "from_stage_name": project.stage_name(old_stage_id),
                    "to_stage_name": project.stage_name(task.stage_id),
                },
            )
        other_changes = [f for f in changed if f != "stage_id"]
        if other_changes:
            self._log_activity(
                project_id=project.id,
                task_id=task.id,
                user_id=current_user.id,
                action=ActivityAction.task_updated,
                details={"fields": other_changes},
            )

        await self.db.commit()

        if stage_changed:
            await self.fanout.task_moved(
                task, project, current_user, role, old_stage_id, task.stage_id
            )
            await self.slack.task_moved(project, task, current_user, old_stage_id, task.stage_id)
            if entered_done and task.approval_status == ApprovalStatus.approved:
                await self.slack.task_completed(project, task, current_user)
        if new_assignee_ids:
            await self.fanout.task_assigned(task, project, current_user, new_assignee_ids)
        if other_changes:
            await self.slack.task_updated(project, task, current_user, other_changes)

        assignees = await self._load_assignee_ids([task.id])
        return task_response(task, assignees.get(task.id))

    # -----------------------------------------------------------------------
    # Delete Task
    # -----------------------------------------------------------------------

    async def delete_task(self, task_id: UUID, current_user: User) -> None:
        """Delete a task (admin+). Comments, mentions and inbox items cascade."""
        task = await self._get_task(task_id)
        await self.authz.require(
            current_user.id, Action.DELETE_TASK, ResourceContext.project(task.project_id)
        )
        project = await self._get_project(task.project_id)
        title = task.title

        self._log_activity(
            project_id=project.id,
            task_id=task.id,
            user_id=current_user.id,
            action=ActivityAction.task_deleted,
            details={"title": title},
        )
        await self.db.delete(task)
        await self.db.commit()
        logger.info("Task deleted: task_id=%s by user_id=%s", task_id, current_user.id)

        await self.slack.task_deleted(project, title, current_user)

    # -----------------------------------------------------------------------
    # Approval
    # -----------------------------------------------------------------------

    async def approve_task(self, task_id: UUID, current_user: User) -> TaskResponse:
        """Approve a done task awaiting review. It then counts as completed."""
        task = await self._get_task(task_id)
        await self.authz.require(
            current_user.id, Action.APPROVE_TASK, ResourceContext.project(task.project_id)
        )
        project = await self._get_project(task.project_id)

        if task.stage_id != project.done_stage_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "NOT_IN_DONE_STAGE",
                    "message": "Task must be in the done stage to be approved",
                },
            )
        self._require_pending(task)

        now = utcnow()
        task.approval_status = ApprovalStatus.approved
        task.approved_by = current_user.id
        task.approved_at = now
        task.completed_at = now
        task.rejection_reason = None
        self._log_activity(
            project_id=project.id,
            task_id=task.id,
            user_id=current_user.id,
            action=ActivityAction.task_approved,
            details={"title": task.title},
        )
        await self.db.commit()

        await self.fanout.task_reviewed(task, project, current_user, approved=True)
        await self.slack.task_completed(project, task, current_user)

        assignees = await self._load_assignee_ids([task.id])
        return task_response(task, assignees.get(task.id))

    async def reject_task(
        self, task_id: UUID, data: TaskRejectRequest, current_user: User
    ) -> TaskResponse:
        """Send a pending task back to an earlier stage with a reason."""
        task = await self._get_task(task_id)
        await self.authz.require(
            current_user.id, Action.APPROVE_TASK, ResourceContext.project(task.project_id)
        )
        project = await self._get_project(task.project_id)
        self._require_pending(task)

        return_stage_id = data.return_stage_id or project.first_stage_id
        if return_stage_id not in project.stage_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "INVALID_STAGE",
                    "message": f"Stage '{return_stage_id}' is not part of this project's workflow",
                },
            )

        task.approval_status = ApprovalStatus.rejected
        task.rejection_reason = data.reason
        task.completed_at = None
        if return_stage_id != task.stage_id:
            task.stage_id = return_stage_id
            task.status = project.status_for_stage(return_stage_id)
            task.position = await next_task_position(self.db, project.id, return_stage_id)
        self._log_activity(
            project_id=project.id,
            task_id=task.id,
            user_id=current_user.id,
            action=ActivityAction.task_rejected,
            details={"title": task.title, "reason": data.reason, "return_stage_id": return_stage_id},
        )
        await self.db.commit()

        await self.fanout.task_reviewed(
            task, project, current_user, approved=False, reason=data.reason
        )

        assignees = await self._load_assignee_ids([task.id])
        return task_response(task, assignees.get(task.id))

    # -----------------------------------------------------------------------
    # Activity
    # -----------------------------------------------------------------------

    async def list_activity(
        self, project_id: UUID, current_user: User, limit: int = 50
    ) -> ActivityListResponse:
        """Most recent activity entries of a project, newest first."""
        await self.authz.require(current_user.id, Action.READ, ResourceContext.project(project_id))

        total = (
            await self.db.execute(
                select(func.count(ActivityLog.id)).where(ActivityLog.project_id == project_id)
            )
        ).scalar_one()
        result = await self.db.execute(
            select(ActivityLog, User)
            .outerjoin(User, User.id == ActivityLog.user_id)
            .where(ActivityLog.project_id == project_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        )

        items = [
            ActivityResponse(
                id=entry.id,
                project_id=entry.project_id,
                task_id=entry.task_id,
                user_id=entry.user_id,
                action=entry.action,
                details=entry.details or {},
                created_at=entry.created_at,
                user=UserSummaryResponse.model_validate(user) if user else None,
            )
            for entry, user in result.all()
        ]
        return ActivityListResponse(data=items, total=total)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_task(self, task_id: UUID) -> Task:
        result = await self.db.execute(select(Task).where(Task.id == task_id))
        task = result.scalar_one_or_none()
        if task is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "TASK_NOT_FOUND", "message": "Task not found"},
            )
        return task

    async def _get_project(self, project_id: UUID) -> Project:
        result = await self.db.execute(select(Project).where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "PROJECT_NOT_FOUND", "message": "Project not found"},
            )
        return project

    @staticmethod
    def _enter_done(task: Task, project: Project, completed_at: Any = None) -> None:
        task.status = TaskStatus.done
        task.rejection_reason = None
        if project.requires_approval:
            task.approval_status = ApprovalStatus.pending
            task.completed_at = completed_at
        else:
            task.approval_status = ApprovalStatus.approved
            task.completed_at = completed_at or utcnow()

    @staticmethod
    def _require_pending(task: Task) -> None:
        if task.approval_status != ApprovalStatus.pending:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "NOT_PENDING_APPROVAL", "message": "Task is not pending approval"},
            )

    async def _verify_assignees(self, project_id: UUID, user_ids: list[UUID]) -> None:
        """Assignees must be members of the project."""
        if not user_ids:
            return
        result = await self.db.execute(
            select(ProjectMember.user_id).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id.in_(user_ids),
            )
        )
        members = set(result.scalars().all())
        missing = [uid for uid in user_ids if uid not in members]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "INVALID_ASSIGNEE",
                    "message": "Assignees must be members of the project",
                },
            )

    async def _replace_assignees(
        self, task: Task, user_ids: list[UUID], actor: User
    ) -> list[UUID]:
        """Set the assignee list. Returns the users that were not assigned before."""
        wanted = list(dict.fromkeys(user_ids))
        await self._verify_assignees(task.project_id, wanted)

        result = await self.db.execute(
            select(TaskAssignment).where(TaskAssignment.task_id == task.id)
        )
        current = {a.user_id: a for a in result.scalars().all()}

        for user_id, assignment in current.items():
            if user_id not in wanted:
                await self.db.delete(assignment)
        added = [uid for uid in wanted if uid not in current]
        for user_id in added:
            self.db.add(TaskAssignment(task_id=task.id, user_id=user_id, assigned_by=actor.id))
        return added

    async def _load_assignee_ids(self, task_ids: list[UUID]) -> dict[UUID, list[UUID]]:
        if not task_ids:
            return {}
        result = await self.db.execute(
            select(TaskAssignment.task_id, TaskAssignment.user_id)
            .where(TaskAssignment.task_id.in_(task_ids))
            .order_by(TaskAssignment.created_at)
        )
        assignees: dict[UUID, list[UUID]] = {}
        for task_id, user_id in result.all():
            assignees.setdefault(task_id, []).append(user_id)
        return assignees

    def _log_activity(
        self,
        project_id: UUID,
        task_id: UUID | None,
        user_id: UUID,
        action: ActivityAction,
        details: dict[str, Any],
    ) -> None:
        self.db.add(
            ActivityLog(
                project_id=project_id,
                task_id=task_id,
                user_id=user_id,
                action=action.value,
                details=details,
            )
        )
