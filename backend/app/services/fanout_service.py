"""
Notification and attention fan-out.

Turns domain events into per-recipient notifications, mention records and
inbox items. Runs after the primary write has been committed: every public
method is best-effort, logs its failures and never raises, so a broken
fan-out can only cost notifications, never the user's change. Each step
writes inside its own savepoint, and a failure undoes only that step.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.mentions import ResolvedMention, mention_context
from app.models.comment import Comment, Mention
from app.models.member import MemberRole, OrganizationMember, ProjectMember
from app.models.notification import (
    AttentionItem,
    AttentionPriority,
    AttentionType,
    Notification,
    NotificationType,
)
from app.models.organization import Organization, OrganizationAnnouncement
from app.models.project import Project
from app.models.task import Task
from app.models.user import User
from app.schemas.notification import (
    AnnouncementData,
    CommentAddedData,
    MentionData,
    NotificationData,
    ProjectInviteData,
    TaskAssignedData,
    TaskMovedData,
    TaskReviewData,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


def comment_preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    """First `length` characters, with an ellipsis when truncated."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


def mention_dedup_key(comment_id: UUID, user_id: UUID, edit_marker: str | None = None) -> str:
    """mention:{comment}:{user}, plus :edit:{marker} for mentions added by an edit."""
    key = f"mention:{comment_id}:{user_id}"
    if edit_marker is not None:
        key = f"{key}:edit:{edit_marker}"
    return key


class FanoutService:
    """Derives recipients from domain events and persists what they should see."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # -----------------------------------------------------------------------
    # Primitives
    # -----------------------------------------------------------------------

    def _notify(
        self,
        user_id: UUID,
        type: NotificationType,
        title: str,
        message: str,
        data: NotificationData,
        project_id: UUID | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            project_id=project_id,
            type=type.value,
            title=title,
            message=message,
            data=data.model_dump(mode="json"),
        )
        self.db.add(notification)
        return notification

    async def insert_attention_item(self, **fields: object) -> AttentionItem | None:
        """
        Insert an inbox item unless (user_id, dedup_key) already exists.

        Returns the new item, or None when it was a duplicate.
        """
        existing = await self.db.execute(
            select(AttentionItem.id).where(
                AttentionItem.user_id == fields["user_id"],
                AttentionItem.dedup_key == fields["dedup_key"],
            )
        )
        if existing.scalar_one_or_none() is not None:
            return None

        item = AttentionItem(**fields)
        try:
            async with self.db.begin_nested():
                self.db.add(item)
        except IntegrityError:
            # Lost a race with a concurrent insert of the same key
            logger.debug("Duplicate attention item ignored: %s", fields["dedup_key"])
            return None
        return item

    async def _project_member_ids(self, project_id: UUID) -> list[UUID]:
        result = await self.db.execute(
            select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
        )
        return list(result.scalars().all())

    # -----------------------------------------------------------------------
    # Comment posted
    # -----------------------------------------------------------------------

    async def comment_posted(
        self,
        comment: Comment,
        task: Task,
        project: Project,
        author: User,
        mentioned_user_ids: Iterable[UUID] = (),
    ) -> int:
        """
        Notify project members about a new comment.

        Mentioned users are skipped: they get the mention notification.
        """
        try:
            excluded = {author.id, *mentioned_user_ids}
            recipients = [uid for uid in await self._project_member_ids(project.id) if uid not in excluded]
            data = CommentAddedData(
                task_id=task.id,
                project_id=project.id,
                comment_id=comment.id,
                commented_by=author.id,
                commenter_name=author.display_name,
                comment_preview=comment_preview(comment.content),
            )
            # A failure undoes only this savepoint; mention rows flushed earlier stay
            async with self.db.begin_nested():
                for user_id in recipients:
                    self._notify(
                        user_id,
                        NotificationType.COMMENT_ADDED,
                        title="New comment",
                        message=f'{author.display_name} commented on "{task.title}" in {project.name}',
                        data=data,
                        project_id=project.id,
                    )
            return len(recipients)
        except Exception:
            logger.exception("comment_posted fan-out failed for comment_id=%s", comment.id)
            return 0

    # -----------------------------------------------------------------------
    # Mentions
    # -----------------------------------------------------------------------

    async def mentions_created(
        self,
        comment: Comment,
        task: Task,
        project: Project,
        author: User,
        mentions: list[ResolvedMention],
        edit_marker: str | None = None,
    ) -> list[UUID]:
        """
        Create Mention + AttentionItem + Notification for each mentioned user.

        The three rows for one user are written in one savepoint. A user whose
        attention item already exists for this key is skipped entirely, so a
        replay adds nothing. Returns the user ids that were notified.
        """
        notified: list[UUID] = []
        for mention in mentions:
            if mention.user_id == author.id:
                continue
            try:
                if await self._create_mention(comment, task, project, author, mention, edit_marker):
                    notified.append(mention.user_id)
            except Exception:
                logger.exception(
                    "Mention fan-out failed for comment_id=%s user_id=%s",
                    comment.id,
                    mention.user_id,
                )
        return notified

    async def _create_mention(
        self,
        comment: Comment,
        task: Task,
        project: Project,
        author: User,
        mention: ResolvedMention,
        edit_marker: str | None,
    ) -> bool:
        dedup_key = mention_dedup_key(comment.id, mention.user_id, edit_marker)
        existing = await self.db.execute(
            select(AttentionItem.id).where(
                AttentionItem.user_id == mention.user_id,
                AttentionItem.dedup_key == dedup_key,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return False

        title = f"{author.display_name} mentioned you"
        async with self.db.begin_nested():
            self.db.add(
                Mention(
                    mentioned_user_id=mention.user_id,
                    mentioner_user_id=author.id,
                    task_id=task.id,
                    comment_id=comment.id,
                    project_id=project.id,
                    mention_context=mention_context(comment.content, mention.handle)[:500],
                )
            )
            self.db.add(
                AttentionItem(
                    user_id=mention.user_id,
                    attention_type=AttentionType.mention,
                    priority=AttentionPriority.high,
                    title=title,
                    body=comment_preview(comment.content),
                    task_id=task.id,
                    comment_id=comment.id,
                    project_id=project.id,
                    actor_user_id=author.id,
                    dedup_key=dedup_key,
                )
            )
            self._notify(
                mention.user_id,
                NotificationType.MENTION,
                title=title,
                message=f'{author.display_name} mentioned you on "{task.title}" in {project.name}',
                data=MentionData(
                    task_id=task.id,
                    project_id=project.id,
                    comment_id=comment.id,
                    mentioned_by=author.id,
                    mentioner_name=author.display_name,
                    is_edit=edit_marker is not None,
                ),
                project_id=project.id,
            )
        return True

    # -----------------------------------------------------------------------
    # Task moved
    # -----------------------------------------------------------------------

    async def task_moved(
        self,
        task: Task,
        project: Project,
        mover: User,
        mover_role: MemberRole,
        old_stage_id: str,
        new_stage_id: str,
    ) -> int:
        """Notify the project owner(s) when someone else moves a task."""
        try:
            result = await self.db.execute(
                select(ProjectMember.user_id).where(
                    ProjectMember.project_id == project.id,
                    ProjectMember.role == MemberRole.owner,
                    ProjectMember.user_id != mover.id,
                )
            )
            owners = list(result.scalars().all())
            old_name = project.stage_name(old_stage_id)
            new_name = project.stage_name(new_stage_id)
            data = TaskMovedData(
                task_id=task.id,
                project_id=project.id,
                old_stage_id=old_stage_id,
                new_stage_id=new_stage_id,
                old_stage_name=old_name,
                new_stage_name=new_name,
                moved_by=mover.id,
                moved_by_name=mover.display_name,
                moved_by_role=mover_role.value.capitalize(),
            )
            async with self.db.begin_nested():
                for owner_id in owners:
                    self._notify(
                        owner_id,
                        NotificationType.TASK_MOVED,
                        title="Task moved",
                        message=(
                            f'{mover.display_name} moved "{task.title}" '
                            f"from {old_name} to {new_name}"
                        ),
                        data=data,
                        project_id=project.id,
                    )
            return len(owners)
        except Exception:
            logger.exception("task_moved fan-out failed for task_id=%s", task.id)
            return 0

    # -----------------------------------------------------------------------
    # Task assigned
    # -----------------------------------------------------------------------

    async def task_assigned(
        self,
        task: Task,
        project: Project,
        assigner: User,
        new_assignee_ids: Iterable[UUID],
    ) -> int:
        """Notify users newly added to a task's assignees (self-assignment excluded)."""
        count = 0
        try:
            async with self.db.begin_nested():
                for user_id in new_assignee_ids:
                    if user_id == assigner.id:
                        continue
                    self._notify(
                        user_id,
                        NotificationType.TASK_ASSIGNED,
                        title="Task assigned",
                        message=f'{assigner.display_name} assigned you to "{task.title}" in {project.name}',
                        data=TaskAssignedData(
                            task_id=task.id,
                            project_id=project.id,
                            assigned_by=assigner.id,
                            assigned_by_name=assigner.display_name,
                        ),
                        project_id=project.id,
                    )
                    await self.insert_attention_item(
                        user_id=user_id,
                        attention_type=AttentionType.assignment,
                        priority=AttentionPriority.normal,
                        title=f"You were assigned to {task.title}",
                        task_id=task.id,
                        project_id=project.id,
                        actor_user_id=assigner.id,
                        dedup_key=f"assignment:{task.id}:{user_id}",
                    )
                    count += 1
            return count
        except Exception:
            logger.exception("task_assigned fan-out failed for task_id=%s", task.id)
            return 0

    # -----------------------------------------------------------------------
    # Member added
    # -----------------------------------------------------------------------

    async def member_added(
        self, project: Project, user_id: UUID, role: MemberRole, inviter: User
    ) -> bool:
        try:
            async with self.db.begin_nested():
                self._notify(
                    user_id,
                    NotificationType.PROJECT_INVITE,
                    title="Added to project",
                    message=f'{inviter.display_name} added you to "{project.name}" as {role.value}',
                    data=ProjectInviteData(
                        project_id=project.id,
                        project_name=project.name,
                        role=role.value,
                        invited_by=inviter.id,
                        inviter_name=inviter.display_name,
                    ),
                    project_id=project.id,
                )
            return True
        except Exception:
            logger.exception("member_added fan-out failed for project_id=%s", project.id)
            return False

    # -----------------------------------------------------------------------
    # Task approved / rejected
    # -----------------------------------------------------------------------

    async def task_reviewed(
        self,
        task: Task,
        project: Project,
        reviewer: User,
        approved: bool,
        reason: str | None = None,
    ) -> bool:
        """Tell the task's creator the outcome of an approval review."""
        if task.created_by is None or task.created_by == reviewer.id:
            return False
        try:
            if approved:
                kind = NotificationType.TASK_APPROVED
                title = "Task approved"
                message = f'{reviewer.display_name} approved "{task.title}"'
            else:
                kind = NotificationType.TASK_REJECTED
                title = "Task needs changes"
                message = f'{reviewer.display_name} rejected "{task.title}"'
                if reason:
                    message = f"{message}: {reason}"
            async with self.db.begin_nested():
                self._notify(
                    task.created_by,
                    kind,
                    title=title,
                    message=message,
                    data=TaskReviewData(
                        type=kind.value,
                        task_id=task.id,
                        project_id=project.id,
                        reviewed_by=reviewer.id,
                        reviewer_name=reviewer.display_name,
                        reason=reason,
                    ),
                    project_id=project.id,
                )
            return True
        except Exception:
            logger.exception("task_reviewed fan-out failed for task_id=%s", task.id)
            return False

    # -----------------------------------------------------------------------
    # Organization announcement
    # -----------------------------------------------------------------------

    async def announcement_posted(
        self,
        organization: Organization,
        announcement: OrganizationAnnouncement,
        poster: User,
    ) -> int:
        try:
            result = await self.db.execute(
                select(OrganizationMember.user_id).where(
                    OrganizationMember.organization_id == organization.id,
                    OrganizationMember.user_id != poster.id,
                )
            )
            recipients = list(result.scalars().all())
            data = AnnouncementData(
                organization_id=organization.id,
                organization_name=organization.name,
                announcement_id=announcement.id,
                posted_by=poster.id,
            )
            async with self.db.begin_nested():
                for user_id in recipients:
                    self._notify(
                        user_id,
                        NotificationType.NEW_ANNOUNCEMENT,
                        title="New announcement posted",
                        message=(
                            f"{poster.display_name} posted an announcement in "
                            f'{organization.name}: "{announcement.title}"'
                        ),
                        data=data,
                    )
            return len(recipients)
        except Exception:
            logger.exception(
                "announcement fan-out failed for organization_id=%s", organization.id
            )
            return 0
