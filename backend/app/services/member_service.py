"""
Project membership business logic.

Adding a member either attaches an existing account directly or sends an
email invitation. Role changes, ownership transfer and removal all go
through the authorization engine, which owns the role rules.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import (
    INVITABLE_ROLES,
    Action,
    AuthorizationService,
    ResourceContext,
    ResourceKind,
)
from app.core.config import settings
from app.core.security import generate_invitation_token
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.base import as_utc, utcnow
from app.models.invitation import InvitationStatus, ProjectInvitation
from app.models.member import MemberRole, ProjectMember
from app.models.project import Project
from app.models.user import User
from app.schemas.member import (
    MemberAddRequest,
    MemberAddResponse,
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
)
from app.services.fanout_service import FanoutService

logger = logging.getLogger(__name__)


def member_response(member: ProjectMember, user: User) -> MemberResponse:
    return MemberResponse(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        role=member.role,
        joined_at=member.joined_at,
    )


class MemberService:

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.authz = AuthorizationService(db=db, redis=redis)
        self.fanout = FanoutService(db)

    # -----------------------------------------------------------------------
    # List
    # -----------------------------------------------------------------------

    async def list_members(self, project_id: UUID, current_user: User) -> MemberListResponse:
        await self.authz.require(current_user.id, Action.READ, ResourceContext.project(project_id))
        result = await self.db.execute(
            select(ProjectMember, User)
            .join(User, User.id == ProjectMember.user_id)
            .where(ProjectMember.project_id == project_id)
            .order_by(ProjectMember.joined_at)
        )
        rows = result.all()
        return MemberListResponse(
            data=[member_response(member, user) for member, user in rows],
            total=len(rows),
        )

    # -----------------------------------------------------------------------
    # Add / invite
    # -----------------------------------------------------------------------

    async def add_member(
        self, project_id: UUID, data: MemberAddRequest, current_user: User
    ) -> MemberAddResponse:
        """
        Add someone to a project (admin+, below the caller's own role).

        Existing users join immediately and are notified. Unknown addresses
        get an invitation email; `email_sent` reports whether it was queued.
        """
        if data.role not in INVITABLE_ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "ROLE_NOT_ALLOWED",
                    "message": f"Cannot invite with role '{data.role.value}'",
                },
            )
        await self.authz.require(
            current_user.id,
            Action.INVITE_MEMBER,
            ResourceContext.project(project_id, new_role=data.role),
        )
        project = await self._get_project(project_id)

        result = await self.db.execute(select(User).where(User.email == data.email))
        user = result.scalar_one_or_none()

        if user is not None:
            if await self._get_membership(project_id, user.id) is not None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={
                        "code": "ALREADY_MEMBER",
                        "message": "User is already a member of this project",
                    },
                )
            await self.authz.require_organization_member(project.organization_id, user.id)
            return await self._add_existing_user(project, user, data.role, current_user)

        return await self._invite_email(project, data.email, data.role, current_user)

    async def _add_existing_user(
        self, project: Project, user: User, role: MemberRole, inviter: User
    ) -> MemberAddResponse:
        member = ProjectMember(project_id=project.id, user_id=user.id, role=role)
        self.db.add(member)
        self._log_activity(
            project.id,
            inviter.id,
            ActivityAction.member_added,
            {"user_id": str(user.id), "role": role.value},
        )
        await self.db.commit()
        await self.authz.invalidate(ResourceKind.project, project.id, user.id)
        logger.info("Member added: project_id=%s user_id=%s role=%s", project.id, user.id, role.value)

        await self.fanout.member_added(project, user.id, role, inviter)
        return MemberAddResponse(status="added", member=member_response(member, user))

    async def _invite_email(
        self, project: Project, email: str, role: MemberRole, inviter: User
    ) -> MemberAddResponse:
        result = await self.db.execute(
            select(ProjectInvitation).where(
                ProjectInvitation.project_id == project.id,
                ProjectInvitation.email == email,
                ProjectInvitation.status == InvitationStatus.pending,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if as_utc(existing.expires_at) > utcnow():
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={
                        "code": "INVITE_EXISTS",
                        "message": "An invitation is already pending for this email",
                    },
                )
            existing.status = InvitationStatus.expired
            await self.db.flush()

        invitation = ProjectInvitation(
            project_id=project.id,
            email=email,
            role=role,
            token=generate_invitation_token(),
            expires_at=utcnow() + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
            invited_by=inviter.id,
        )
        self.db.add(invitation)
        await self.db.commit()
        logger.info("Invitation created: project_id=%s invitation_id=%s", project.id, invitation.id)

        email_sent = False
        try:
            from app.workers.email_tasks import send_project_invitation_email

            send_project_invitation_email.delay(
                to_email=email,
                project_name=project.name,
                inviter_name=inviter.display_name,
                role=role.value,
                invitation_token=invitation.token,
                frontend_url=settings.FRONTEND_URL,
                expire_days=settings.INVITATION_EXPIRE_DAYS,
            )
            email_sent = True
        except Exception:
            logger.exception("Failed to enqueue invitation email for invitation_id=%s", invitation.id)

        return MemberAddResponse(
            status="invited", invitation_id=invitation.id, email_sent=email_sent
        )

    # -----------------------------------------------------------------------
    # Role changes
    # -----------------------------------------------------------------------

    async def change_role(
        self, project_id: UUID, data: MemberRoleUpdateRequest, current_user: User
    ) -> MemberResponse:
        """
        Change a member's role.

        An owner granting `owner` transfers ownership: the target is promoted
        and the caller steps down to admin.
        """
        caller_role = await self.authz.get_project_role(project_id, current_user.id)
        if data.role == MemberRole.owner and caller_role == MemberRole.owner:
            return await self.transfer_ownership(project_id, data.user_id, current_user)

        target, user = await self._get_member_or_404(project_id, data.user_id)
        await self.authz.require(
            current_user.id,
            Action.CHANGE_MEMBER_ROLE,
            ResourceContext.project(
                project_id,
                target_user_id=target.user_id,
                target_role=target.role,
                new_role=data.role,
            ),
        )

        previous = target.role
        target.role = data.role
        self._log_activity(
            project_id,
            current_user.id,
            ActivityAction.member_role_changed,
            {"user_id": str(target.user_id), "from": previous.value, "to": data.role.value},
        )
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, project_id, target.user_id)
        logger.info(
            "Role changed: project_id=%s user_id=%s %s -> %s",
            project_id,
            target.user_id,
            previous.value,
            data.role.value,
        )
        return member_response(target, user)

    async def transfer_ownership(
        self, project_id: UUID, new_owner_id: UUID, current_user: User
    ) -> MemberResponse:
        await self.authz.require(
            current_user.id,
            Action.TRANSFER_OWNERSHIP,
            ResourceContext.project(project_id, target_user_id=new_owner_id),
        )
        target, user = await self._get_member_or_404(project_id, new_owner_id)
        if target.role == MemberRole.owner:
            return member_response(target, user)

        caller = await self._get_membership(project_id, current_user.id)
        previous = target.role
        target.role = MemberRole.owner
        caller.role = MemberRole.admin  # type: ignore[union-attr]

        self._log_activity(
            project_id,
            current_user.id,
            ActivityAction.member_role_changed,
            {"user_id": str(target.user_id), "from": previous.value, "to": MemberRole.owner.value},
        )
        self._log_activity(
            project_id,
            current_user.id,
            ActivityAction.member_role_changed,
            {"user_id": str(current_user.id), "from": MemberRole.owner.value, "to": MemberRole.admin.value},
        )
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, project_id, target.user_id, current_user.id)
        logger.info(
            "Ownership transferred: project_id=%s from user_id=%s to user_id=%s",
            project_id,
            current_user.id,
            target.user_id,
        )
        return member_response(target, user)

    # -----------------------------------------------------------------------
    # Remove
    # -----------------------------------------------------------------------

    async def remove_member(self, project_id: UUID, user_id: UUID, current_user: User) -> None:
        """Remove a member, or leave the project when `user_id` is the caller."""
        target, _ = await self._get_member_or_404(project_id, user_id)
        await self.authz.require(
            current_user.id,
            Action.REMOVE_MEMBER,
            ResourceContext.project(
                project_id, target_user_id=target.user_id, target_role=target.role
            ),
        )

        await self.db.delete(target)
        self._log_activity(
            project_id,
            current_user.id,
            ActivityAction.member_removed,
            {"user_id": str(user_id), "role": target.role.value},
        )
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, project_id, user_id)
        logger.info("Member removed: project_id=%s user_id=%s", project_id, user_id)

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

    async def _get_membership(self, project_id: UUID, user_id: UUID) -> ProjectMember | None:
        result = await self.db.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def _get_member_or_404(
        self, project_id: UUID, user_id: UUID
    ) -> tuple[ProjectMember, User]:
        result = await self.db.execute(
            select(ProjectMember, User)
            .join(User, User.id == ProjectMember.user_id)
            .where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        )
        row = result.first()
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "MEMBER_NOT_FOUND", "message": "Member not found"},
            )
        return row[0], row[1]

    def _log_activity(
        self,
        project_id: UUID,
        user_id: UUID,
        action: ActivityAction,
        details: dict[str, str],
    ) -> None:
        self.db.add(
            ActivityLog(
                project_id=project_id,
                user_id=user_id,
                action=action.value,
                details=details,
            )
        )
