"""
Comment business logic.

Comments are plain text. @handles are resolved against the project's
members after the comment is committed; edits only act on handles that the
previous body did not contain.
"""

from __future__ import annotations

import logging
import time
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import Action, AuthorizationService, ResourceContext
from app.core.mentions import MentionResolver, extract_handles, mention_delta
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.comment import Comment, Mention
from app.models.member import ProjectMember
from app.models.notification import AttentionItem
from app.models.project import Project
from app.models.task import Task
from app.models.user import User
from app.schemas.comment import (
    CommentCreateRequest,
    CommentListResponse,
    CommentResponse,
    CommentUpdateRequest,
    MentionableUser,
    MentionableUserListResponse,
)
from app.schemas.task import UserSummaryResponse
from app.services.fanout_service import FanoutService

logger = logging.getLogger(__name__)

MAX_MENTION_SUGGESTIONS = 20


def _comment_response(
    comment: Comment,
    author: User | None = None,
    mentioned_user_ids: list[UUID] | None = None,
) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        task_id=comment.task_id,
        project_id=comment.project_id,
        content=comment.content,
        created_by=comment.created_by,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        author=UserSummaryResponse.model_validate(author) if author else None,
        mentioned_user_ids=mentioned_user_ids or [],
    )


class CommentService:
    """Handles comment CRUD and the mention pipeline."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.authz = AuthorizationService(db=db, redis=redis)
        self.fanout = FanoutService(db)
        self.resolver = MentionResolver(db)

    # -----------------------------------------------------------------------
    # List
    # -----------------------------------------------------------------------

    async def list_comments(self, task_id: UUID, current_user: User) -> CommentListResponse:
        task = await self._get_task(task_id)
        await self.authz.require(
            current_user.id, Action.READ, ResourceContext.project(task.project_id)
        )

        result = await self.db.execute(
            select(Comment, User)
            .outerjoin(User, User.id == Comment.created_by)
            .where(Comment.task_id == task_id)
            .order_by(Comment.created_at)
        )
        rows = result.all()
        return CommentListResponse(
            data=[_comment_response(comment, author) for comment, author in rows],
            total=len(rows),
        )

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    async def create_comment(
        self, data: CommentCreateRequest, current_user: User
    ) -> CommentResponse:
        """
        Post a comment (member+).

        Mentioned members get a mention notification; every other member
        except the author gets a comment notification.
        """
        task = await self._get_task(data.task_id)
        await self.authz.require(
            current_user.id, Action.CREATE_COMMENT, ResourceContext.project(task.project_id)
        )
        project = await self._get_project(task.project_id)

        comment = Comment(
            task_id=task.id,
            project_id=task.project_id,
            content=data.content,
            created_by=current_user.id,
        )
        self.db.add(comment)
        await self.db.flush()
        self.db.add(
            ActivityLog(
                project_id=project.id,
                task_id=task.id,
                user_id=current_user.id,
                action=ActivityAction.comment_added.value,
                details={"comment_id": str(comment.id)},
            )
        )
        await self.db.commit()
        logger.info("Comment created: comment_id=%s task_id=%s", comment.id, task.id)

        resolved = await self.resolver.resolve(
            extract_handles(comment.content), project.id, current_user.id
        )
        notified = await self.fanout.mentions_created(
            comment, task, project, current_user, resolved
        )
        await self.fanout.comment_posted(
            comment, task, project, current_user, [m.user_id for m in resolved]
        )

        return _comment_response(comment, current_user, notified)

    # -----------------------------------------------------------------------
    # Update
    # -----------------------------------------------------------------------

    async def update_comment(
        self, data: CommentUpdateRequest, current_user: User
    ) -> CommentResponse:
        """
        Edit a comment (author only).

        Only handles absent from the previous body produce mentions. Removed
        handles leave earlier mentions and notifications in place.
        """
        comment = await self._get_comment(data.id)
        await self.authz.require(
            current_user.id,
            Action.EDIT_COMMENT,
            ResourceContext.project(comment.project_id, author_id=comment.created_by),
        )

        previous = comment.content
        comment.content = data.content
        await self.db.commit()

        added_handles = mention_delta(previous, data.content)
        notified: list[UUID] = []
        if added_handles:
            task = await self._get_task(comment.task_id)
            project = await self._get_project(comment.project_id)
            resolved = await self.resolver.resolve(added_handles, project.id, current_user.id)
            if resolved:
                edit_marker = str(int(time.time() * 1000))
                notified = await self.fanout.mentions_created(
                    comment, task, project, current_user, resolved, edit_marker=edit_marker
                )

        return _comment_response(comment, current_user, notified)

    # -----------------------------------------------------------------------
    # Delete
    # -----------------------------------------------------------------------

    async def delete_comment(self, comment_id: UUID, current_user: User) -> None:
        """
        Delete a comment (author, or admin+).

        Its mentions and inbox items go with it; notifications already
        delivered are kept.
        """
        comment = await self._get_comment(comment_id)
        await self.authz.require(
            current_user.id,
            Action.DELETE_COMMENT,
            ResourceContext.project(comment.project_id, author_id=comment.created_by),
        )

        await self.db.execute(delete(Mention).where(Mention.comment_id == comment.id))
        await self.db.execute(delete(AttentionItem).where(AttentionItem.comment_id == comment.id))
        await self.db.delete(comment)
        await self.db.flush()
        logger.info("Comment deleted: comment_id=%s by user_id=%s", comment_id, current_user.id)

    # -----------------------------------------------------------------------
    # Mention autocomplete
    # -----------------------------------------------------------------------

    async def search_mentionable_users(
        self,
        project_id: UUID,
        current_user: User,
        query: str = "",
        limit: int = 10,
    ) -> MentionableUserListResponse:
        """Project members whose email or name starts with `query`."""
        await self.authz.require(current_user.id, Action.READ, ResourceContext.project(project_id))

        stmt = (
            select(User)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .where(ProjectMember.project_id == project_id)
        )
        query = query.strip().lstrip("@").lower()
        if query:
            pattern = f"{query}%"
            stmt = stmt.where(
                or_(
                    func.lower(User.email).like(pattern),
                    func.lower(User.full_name).like(pattern),
                    func.lower(User.full_name).like(f"% {query}%"),
                )
            )
        stmt = stmt.order_by(User.full_name, User.email).limit(min(limit, MAX_MENTION_SUGGESTIONS))

        users = (await self.db.execute(stmt)).scalars().all()
        return MentionableUserListResponse(
            data=[
                MentionableUser(
                    id=user.id,
                    email=user.email,
                    full_name=user.full_name,
                    avatar_url=user.avatar_url,
                    handle=user.email.split("@", 1)[0].lower(),
                )
                for user in users
            ]
        )

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

    async def _get_comment(self, comment_id: UUID) -> Comment:
        result = await self.db.execute(select(Comment).where(Comment.id == comment_id))
        comment = result.scalar_one_or_none()
        if comment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "COMMENT_NOT_FOUND", "message": "Comment not found"},
            )
        return comment
