"""
Project business logic.

Handles project CRUD and the per-project board counters.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import Action, AuthorizationService, ResourceContext, ResourceKind
from app.models.member import MemberRole, ProjectMember
from app.models.project import DEFAULT_PROJECT_COLOR, Project, default_workflow_stages
from app.models.task import ApprovalStatus, Task
from app.models.user import User
from app.schemas.project import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdateRequest,
)

logger = logging.getLogger(__name__)


class BoardCounts:
    __slots__ = ("tasks", "completed", "pending_approval")

    def __init__(self) -> None:
        self.tasks = 0
        self.completed = 0
        self.pending_approval = 0


def project_response(
    project: Project, role: MemberRole | None = None, counts: BoardCounts | None = None
) -> ProjectResponse:
    response = ProjectResponse.model_validate(project)
    response.role = role
    if counts is not None:
        response.tasks_count = counts.tasks
        response.completed_tasks_count = counts.completed
        response.pending_approval_count = counts.pending_approval
    return response


class ProjectService:

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.authz = AuthorizationService(db=db, redis=redis)

    # -----------------------------------------------------------------------
    # List
    # -----------------------------------------------------------------------

    async def list_projects(
        self, current_user: User, organization_id: UUID | None = None
    ) -> ProjectListResponse:
        """Projects the caller is a member of, with the caller's role and board counters."""
        stmt = (
            select(Project, ProjectMember.role)
            .join(ProjectMember, ProjectMember.project_id == Project.id)
            .where(ProjectMember.user_id == current_user.id)
            .order_by(Project.created_at.desc())
        )
        if organization_id is not None:
            stmt = stmt.where(Project.organization_id == organization_id)
        rows = (await self.db.execute(stmt)).all()

        counts = await self._board_counts([project for project, _ in rows])
        return ProjectListResponse(
            data=[project_response(project, role, counts[project.id]) for project, role in rows],
            total=len(rows),
        )

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    async def create_project(
        self, data: ProjectCreateRequest, creator: User
    ) -> ProjectResponse:
        """
        Create a project. The creator becomes its owner.

        Organization projects require the creator to be a member of the
        organization.
        """
        if data.organization_id is not None:
            await self.authz.require(
                creator.id, Action.READ, ResourceContext.organization(data.organization_id)
            )

        stages = (
            [stage.model_dump() for stage in data.workflow_stages]
            if data.workflow_stages
            else default_workflow_stages()
        )
        project = Project(
            organization_id=data.organization_id,
            name=data.name,
            description=data.description,
            color=data.color or DEFAULT_PROJECT_COLOR,
            workflow_stages=stages,
            requires_approval=data.requires_approval,
            created_by=creator.id,
        )
        self.db.add(project)
        await self.db.flush()

        self.db.add(
            ProjectMember(project_id=project.id, user_id=creator.id, role=MemberRole.owner)
        )
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, project.id, creator.id)

        logger.info("Project created: project_id=%s by user_id=%s", project.id, creator.id)
        return project_response(project, MemberRole.owner, BoardCounts())

    # -----------------------------------------------------------------------
    # Get / Update / Delete
    # -----------------------------------------------------------------------

    async def get_project(self, project_id: UUID, current_user: User) -> ProjectResponse:
        role = await self.authz.require(
            current_user.id, Action.READ, ResourceContext.project(project_id)
        )
        project = await self._get_project(project_id)
        counts = await self._board_counts([project])
        return project_response(project, role, counts[project.id])

    async def update_project(
        self, project_id: UUID, data: ProjectUpdateRequest, current_user: User
    ) -> ProjectResponse:
        role = await self.authz.require(
            current_user.id, Action.UPDATE_SETTINGS, ResourceContext.project(project_id)
        )
        project = await self._get_project(project_id)

        changes = data.model_dump(exclude_unset=True)
        if "workflow_stages" in changes:
            if data.workflow_stages is None:
                changes.pop("workflow_stages")
            else:
                await self._ensure_stages_cover_tasks(
                    project.id, {stage.id for stage in data.workflow_stages}
                )
                changes["workflow_stages"] = [stage.model_dump() for stage in data.workflow_stages]

        for field, value in changes.items():
            if value is None and field != "description":
                continue
            setattr(project, field, value)

        await self.db.flush()
        logger.info("Project updated: project_id=%s fields=%s", project.id, sorted(changes))
        counts = await self._board_counts([project])
        return project_response(project, role, counts[project.id])

    async def delete_project(self, project_id: UUID, current_user: User) -> None:
        """Delete a project (owner only). Tasks, comments and members go with it."""
        await self.authz.require(
            current_user.id, Action.DELETE, ResourceContext.project(project_id)
        )
        project = await self._get_project(project_id)

        result = await self.db.execute(
            select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
        )
        member_ids = list(result.scalars().all())

        await self.db.delete(project)
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, project_id, *member_ids)
        logger.info("Project deleted: project_id=%s by user_id=%s", project_id, current_user.id)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_project(self, project_id: UUID) -> Project:
        result = await self.db.execute(select(Project).where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "PROJECT_NOT_FOUND", "message": "Project not found"},
            )
        return project

    async def _board_counts(self, projects: list[Project]) -> dict[UUID, BoardCounts]:
        """
        Task counters per project.

        A task counts as completed only when it sits in the done stage AND
        is approved.
        """
        counts: dict[UUID, BoardCounts] = defaultdict(BoardCounts)
        if not projects:
            return counts

        done_stage = {project.id: project.done_stage_id for project in projects}
        result = await self.db.execute(
            select(Task.project_id, Task.stage_id, Task.approval_status, func.count(Task.id))
            .where(Task.project_id.in_(done_stage.keys()))
            .group_by(Task.project_id, Task.stage_id, Task.approval_status)
        )
        for project_id, stage_id, approval_status, count in result.all():
            entry = counts[project_id]
            entry.tasks += count
            if approval_status == ApprovalStatus.pending:
                entry.pending_approval += count
            if stage_id == done_stage[project_id] and approval_status == ApprovalStatus.approved:
                entry.completed += count
        return counts

    async def _ensure_stages_cover_tasks(self, project_id: UUID, stage_ids: set[str]) -> None:
        result = await self.db.execute(
            select(Task.stage_id).where(Task.project_id == project_id).distinct()
        )
        orphaned = sorted(set(result.scalars().all()) - stage_ids)
        if orphaned:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "STAGE_IN_USE",
                    "message": f"Move tasks out of these stages first: {', '.join(orphaned)}",
                },
            )
