"""
Invitation lifecycle for the invitee side.

Invitations are addressed to an email; only the account with that email may
accept or decline. A pending invitation past its expiry is marked expired
the first time it is touched.
"""

from __future__ import annotations

import logging
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import AuthorizationService, ResourceKind
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.base import as_utc, utcnow
from app.models.invitation import InvitationStatus, ProjectInvitation
from app.models.member import ProjectMember
from app.models.project import Project
from app.models.user import User
from app.schemas.invitation import (
    InvitationActionRequest,
    InvitationListResponse,
    InvitationResponse,
)

logger = logging.getLogger(__name__)


class InvitationService:

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.authz = AuthorizationService(db=db, redis=redis)

    async def list_for_user(self, current_user: User) -> InvitationListResponse:
        """Pending, unexpired invitations addressed to the caller's email."""
        result = await self.db.execute(
            select(ProjectInvitation, Project, User)
            .join(Project, Project.id == ProjectInvitation.project_id)
            .outerjoin(User, User.id == ProjectInvitation.invited_by)
            .where(
                ProjectInvitation.email == current_user.email.lower(),
                ProjectInvitation.status == InvitationStatus.pending,
            )
            .order_by(ProjectInvitation.created_at.desc())
        )

        now = utcnow()
        data: list[InvitationResponse] = []
        for invitation, project, inviter in result.all():
            if as_utc(invitation.expires_at) <= now:
                invitation.status = InvitationStatus.expired
                continue
            data.append(_invitation_response(invitation, project, inviter))
        await self.db.flush()
        return InvitationListResponse(data=data, total=len(data))

    async def accept(
        self, data: InvitationActionRequest, current_user: User
    ) -> InvitationResponse:
        invitation = await self._get_actionable(data, current_user)

        existing = await self.db.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == invitation.project_id,
                ProjectMember.user_id == current_user.id,
            )
        )
        if existing.scalar_one_or_none() is None:
            project = await self.db.get(Project, invitation.project_id)
            await self.authz.require_organization_member(
                project.organization_id if project else None, current_user.id
            )
            self.db.add(
                ProjectMember(
                    project_id=invitation.project_id,
                    user_id=current_user.id,
                    role=invitation.role,
                )
            )
            self.db.add(
                ActivityLog(
                    project_id=invitation.project_id,
                    user_id=current_user.id,
                    action=ActivityAction.member_added.value,
                    details={
                        "user_id": str(current_user.id),
                        "role": invitation.role.value,
                        "invitation_id": str(invitation.id),
                    },
                )
            )

        invitation.status = InvitationStatus.accepted
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.project, invitation.project_id, current_user.id)
        logger.info(
            "Invitation accepted: invitation_id=%s user_id=%s", invitation.id, current_user.id
        )
        return _invitation_response(invitation)

    async def decline(
        self, data: InvitationActionRequest, current_user: User
    ) -> InvitationResponse:
        invitation = await self._get_actionable(data, current_user)
        invitation.status = InvitationStatus.declined
        await self.db.flush()
        logger.info(
            "Invitation declined: invitation_id=%s user_id=%s", invitation.id, current_user.id
        )
        return _invitation_response(invitation)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_actionable(
        self, data: InvitationActionRequest, current_user: User
    ) -> ProjectInvitation:
        stmt = select(ProjectInvitation)
        if data.invitation_id is not None:
            stmt = stmt.where(ProjectInvitation.id == data.invitation_id)
        else:
            stmt = stmt.where(ProjectInvitation.token == data.token)
        invitation = (await self.db.execute(stmt)).scalar_one_or_none()

        if invitation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "INVITATION_NOT_FOUND", "message": "Invitation not found"},
            )
        if invitation.email != current_user.email.lower():
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "INVITATION_EMAIL_MISMATCH",
                    "message": "This invitation was sent to a different email address",
                },
            )
        if invitation.status != InvitationStatus.pending:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "INVITATION_NOT_PENDING",
                    "message": f"Invitation is already {invitation.status.value}",
                },
            )
        if as_utc(invitation.expires_at) <= utcnow():
            invitation.status = InvitationStatus.expired
            await self.db.commit()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "INVITATION_EXPIRED", "message": "Invitation has expired"},
            )
        return invitation


def _invitation_response(
    invitation: ProjectInvitation,
    project: Project | None = None,
    inviter: User | None = None,
) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        project_id=invitation.project_id,
        project_name=project.name if project else None,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        expires_at=invitation.expires_at,
        invited_by=invitation.invited_by,
        inviter_name=inviter.display_name if inviter else None,
        created_at=invitation.created_at,
    )
