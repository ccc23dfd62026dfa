"""
Organization business logic.

Handles organization CRUD, members and announcements. Role rules are the
same as for projects and are enforced by the authorization engine.
"""

from __future__ import annotations

import logging
import re
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
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.member import MemberRole, OrganizationMember, ProjectMember
from app.models.organization import Organization, OrganizationAnnouncement
from app.models.project import Project
from app.models.user import User
from app.schemas.member import (
    MemberAddRequest,
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
)
from app.schemas.organization import (
    AnnouncementCreateRequest,
    AnnouncementListResponse,
    AnnouncementResponse,
    OrganizationCreateRequest,
    OrganizationListResponse,
    OrganizationResponse,
    OrganizationUpdateRequest,
)
from app.services.fanout_service import FanoutService
from app.services.slack_service import SlackBridge

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 50


def slugify(name: str) -> str:
    """
    Lowercase, keep [a-z0-9 -], whitespace to '-', collapse runs of '-',
    truncate to 50 characters.
    """
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:SLUG_MAX_LENGTH]


def _member_response(member: OrganizationMember, user: User) -> MemberResponse:
    return MemberResponse(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        role=member.role,
        joined_at=member.joined_at,
    )


def _organization_response(
    organization: Organization, role: MemberRole | None = None
) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.role = role
    return response


class OrganizationService:
    """Handles all organization operations."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.authz = AuthorizationService(db=db, redis=redis)
        self.fanout = FanoutService(db)
        self.slack = SlackBridge(db)

    # -----------------------------------------------------------------------
    # Organizations
    # -----------------------------------------------------------------------

    async def list_organizations(self, current_user: User) -> OrganizationListResponse:
        result = await self.db.execute(
            select(Organization, OrganizationMember.role)
            .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
            .where(OrganizationMember.user_id == current_user.id)
            .order_by(Organization.name)
        )
        rows = result.all()
        return OrganizationListResponse(
            data=[_organization_response(org, role) for org, role in rows],
            total=len(rows),
        )

    async def create_organization(
        self, data: OrganizationCreateRequest, owner: User
    ) -> OrganizationResponse:
        """
        Create a new organization.

        - Derives a unique slug from the name
        - Assigns creator as owner
        """
        slug = await self._unique_slug(data.name)

        org = Organization(
            name=data.name,
            slug=slug,
            description=data.description,
            created_by=owner.id,
        )
        self.db.add(org)
        await self.db.flush()

        self.db.add(
            OrganizationMember(organization_id=org.id, user_id=owner.id, role=MemberRole.owner)
        )
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.organization, org.id, owner.id)

        logger.info("Organization created: organization_id=%s slug=%s", org.id, slug)
        return _organization_response(org, MemberRole.owner)

    async def get_organization(
        self, organization_id: UUID, current_user: User
    ) -> OrganizationResponse:
        role = await self.authz.require(
            current_user.id, Action.READ, ResourceContext.organization(organization_id)
        )
        return _organization_response(await self._get_organization(organization_id), role)

    async def update_organization(
        self, organization_id: UUID, data: OrganizationUpdateRequest, current_user: User
    ) -> OrganizationResponse:
        role = await self.authz.require(
            current_user.id, Action.UPDATE_SETTINGS, ResourceContext.organization(organization_id)
        )
        org = await self._get_organization(organization_id)

        if data.name is not None:
            org.name = data.name
        if "description" in data.model_fields_set:
            org.description = data.description

        await self.db.flush()
        return _organization_response(org, role)

    async def delete_organization(self, organization_id: UUID, current_user: User) -> None:
        """Delete an organization (owner only). Its projects go with it."""
        await self.authz.require(
            current_user.id, Action.DELETE, ResourceContext.organization(organization_id)
        )
        org = await self._get_organization(organization_id)

        result = await self.db.execute(
            select(OrganizationMember.user_id).where(
                OrganizationMember.organization_id == organization_id
            )
        )
        member_ids = list(result.scalars().all())

        await self.db.delete(org)
        await self.db.flush()
        await self.authz.invalidate(ResourceKind.organization, organization_id, *member_ids)
        logger.info("Organization deleted: organization_id=%s", organization_id)

    # -----------------------------------------------------------------------
    # Members
    # -----------------------------------------------------------------------

    async def list_members(
        self, organization_id: UUID, current_user: User
    ) -> MemberListResponse:
        """List all members of an organization with user details."""
        await self.authz.require(
            current_user.id, Action.READ, ResourceContext.organization(organization_id)
        )
        result = await self.db.execute(
            select(OrganizationMember, User)
            .join(User, OrganizationMember.user_id == User.id)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.joined_at)
        )
        rows = result.all()
        return MemberListResponse(
            data=[_member_response(member, user) for member, user in rows],
            total=len(rows),
        )

    async def add_member(
        self, organization_id: UUID, data: MemberAddRequest, current_user: User
    ) -> MemberResponse:
        """Add an existing user to the organization (admin+, below own role)."""
        if data.role not in INVITABLE_ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "ROLE_NOT_ALLOWED",
                    "message": f"Cannot add a member with role '{data.role.value}'",
                },
            )
        await self.authz.require(
            current_user.id,
            Action.INVITE_MEMBER,
            ResourceContext.organization(organization_id, new_role=data.role),
        )
        org = await self._get_organization(organization_id)

        result = await self.db.execute(select(User).where(User.email == data.email))
        user = result.scalar_one_or_none()
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "USER_NOT_FOUND", "message": "No account exists for this email"},
            )
        if await self._get_membership(organization_id, user.id) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "ALREADY_MEMBER",
                    "message": "User is already a member of this organization",
                },
            )

        member = OrganizationMember(organization_id=org.id, user_id=user.id, role=data.role)
        self.db.add(member)
        await self.db.commit()
        await self.authz.invalidate(ResourceKind.organization, org.id, user.id)
        logger.info("Organization member added: organization_id=%s user_id=%s", org.id, user.id)

        await self.slack.member_joined(org, user)
        return _member_response(member, user)

    async def change_role(
        self, organization_id: UUID, data: MemberRoleUpdateRequest, current_user: User
    ) -> MemberResponse:
        """
        Change a member's role. An owner granting `owner` hands over
        ownership and becomes an admin.
        """
        caller_role = await self.authz.get_organization_role(organization_id, current_user.id)
        target, user = await self._get_member_or_404(organization_id, data.user_id)

        if data.role == MemberRole.owner and caller_role == MemberRole.owner:
            await self.authz.require(
                current_user.id,
                Action.TRANSFER_OWNERSHIP,
                ResourceContext.organization(organization_id, target_user_id=target.user_id),
            )
            if target.role != MemberRole.owner:
                caller = await self._get_membership(organization_id, current_user.id)
                target.role = MemberRole.owner
                caller.role = MemberRole.admin  # type: ignore[union-attr]
        else:
            await self.authz.require(
                current_user.id,
                Action.CHANGE_MEMBER_ROLE,
                ResourceContext.organization(
                    organization_id,
                    target_user_id=target.user_id,
                    target_role=target.role,
                    new_role=data.role,
                ),
            )
            target.role = data.role

        await self.db.flush()
        await self.authz.invalidate(
            ResourceKind.organization, organization_id, target.user_id, current_user.id
        )
        logger.info(
            "Organization role changed: organization_id=%s user_id=%s role=%s",
            organization_id,
            target.user_id,
            target.role.value,
        )
        return _member_response(target, user)

    async def remove_member(
        self, organization_id: UUID, user_id: UUID, current_user: User
    ) -> None:
        """
        Remove a member, or leave when `user_id` is the caller.

        The user also leaves every project of the organization. Refused while
        they are the last owner of one of those projects.
        """
        target, user = await self._get_member_or_404(organization_id, user_id)
        await self.authz.require(
            current_user.id,
            Action.REMOVE_MEMBER,
            ResourceContext.organization(
                organization_id, target_user_id=target.user_id, target_role=target.role
            ),
        )
        org = await self._get_organization(organization_id)

        result = await self.db.execute(
            select(ProjectMember)
            .join(Project, Project.id == ProjectMember.project_id)
            .where(Project.organization_id == organization_id, ProjectMember.user_id == user_id)
        )
        project_memberships = list(result.scalars().all())
        for membership in project_memberships:
            if (
                membership.role == MemberRole.owner
                and await self.authz.count_owners(ResourceKind.project, membership.project_id) <= 1
            ):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={
                        "code": "LAST_OWNER",
                        "message": "User is the last owner of a project in this organization. "
                        "Transfer ownership first.",
                    },
                )

        for membership in project_memberships:
            await self.db.delete(membership)
            self.db.add(
                ActivityLog(
                    project_id=membership.project_id,
                    user_id=current_user.id,
                    action=ActivityAction.member_removed.value,
                    details={"user_id": str(user_id), "role": membership.role.value},
                )
            )
        await self.db.delete(target)
        await self.db.commit()
        await self.authz.invalidate(ResourceKind.organization, organization_id, user_id)
        for membership in project_memberships:
            await self.authz.invalidate(ResourceKind.project, membership.project_id, user_id)
        logger.info(
            "Organization member removed: organization_id=%s user_id=%s", organization_id, user_id
        )

        await self.slack.member_left(org, user)

    # -----------------------------------------------------------------------
    # Announcements
    # -----------------------------------------------------------------------

    async def list_announcements(
        self, organization_id: UUID, current_user: User, limit: int = 50
    ) -> AnnouncementListResponse:
        await self.authz.require(
            current_user.id, Action.READ, ResourceContext.organization(organization_id)
        )
        result = await self.db.execute(
            select(OrganizationAnnouncement)
            .where(OrganizationAnnouncement.organization_id == organization_id)
            .order_by(OrganizationAnnouncement.created_at.desc())
            .limit(limit)
        )
        announcements = list(result.scalars().all())
        return AnnouncementListResponse(
            data=[AnnouncementResponse.model_validate(a) for a in announcements],
            total=len(announcements),
        )

    async def create_announcement(
        self, organization_id: UUID, data: AnnouncementCreateRequest, current_user: User
    ) -> AnnouncementResponse:
        """
        Post an announcement (admin+).

        Every other member is notified, and the organization's Slack channel
        when announcements are enabled there.
        """
        await self.authz.require(
            current_user.id,
            Action.POST_ANNOUNCEMENT,
            ResourceContext.organization(organization_id),
        )
        org = await self._get_organization(organization_id)

        announcement = OrganizationAnnouncement(
            organization_id=org.id,
            title=data.title,
            content=data.content,
            created_by=current_user.id,
        )
        self.db.add(announcement)
        await self.db.commit()
        logger.info(
            "Announcement posted: announcement_id=%s organization_id=%s", announcement.id, org.id
        )

        await self.fanout.announcement_posted(org, announcement, current_user)
        await self.slack.announcement_posted(org, announcement, current_user)
        return AnnouncementResponse.model_validate(announcement)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _unique_slug(self, name: str) -> str:
        base = slugify(name) or "organization"
        slug = base
        suffix = 0
        while True:
            existing = await self.db.execute(
                select(Organization.id).where(Organization.slug == slug)
            )
            if existing.scalar_one_or_none() is None:
                return slug
            suffix += 1
            slug = f"{base}-{suffix}"

    async def _get_organization(self, organization_id: UUID) -> Organization:
        result = await self.db.execute(
            select(Organization).where(Organization.id == organization_id)
        )
        org = result.scalar_one_or_none()
        if org is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "ORGANIZATION_NOT_FOUND", "message": "Organization not found"},
            )
        return org

    async def _get_membership(
        self, organization_id: UUID, user_id: UUID
    ) -> OrganizationMember | None:
        result = await self.db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def _get_member_or_404(
        self, organization_id: UUID, user_id: UUID
    ) -> tuple[OrganizationMember, User]:
        result = await self.db.execute(
            select(OrganizationMember, User)
            .join(User, User.id == OrganizationMember.user_id)
            .where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        row = result.first()
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "MEMBER_NOT_FOUND", "message": "Member not found"},
            )
        return row[0], row[1]
