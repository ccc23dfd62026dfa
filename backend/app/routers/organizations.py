"""
Organization management endpoints.

Organization CRUD, members, announcements and Slack settings.
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
from app.schemas.slack import (
    OrganizationSlackIntegrationResponse,
    OrganizationSlackIntegrationUpdate,
)
from app.services.organization_service import OrganizationService
from app.services.slack_service import SlackIntegrationService

router = APIRouter()


def get_organization_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> OrganizationService:
    return OrganizationService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=OrganizationListResponse,
    summary="List my organizations",
)
async def list_organizations(
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> OrganizationListResponse:
    return await service.list_organizations(current_user)


@router.post(
    "",
    response_model=OrganizationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new organization",
)
async def create_organization(
    data: OrganizationCreateRequest,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> OrganizationResponse:
    """
    Create an organization. The creator becomes the owner; the slug is
    derived from the name and suffixed on collision.
    """
    return await service.create_organization(data, current_user)


@router.get(
    "/{organization_id}",
    response_model=OrganizationResponse,
    summary="Get organization",
)
async def get_organization(
    organization_id: UUID,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> OrganizationResponse:
    return await service.get_organization(organization_id, current_user)


@router.patch(
    "/{organization_id}",
    response_model=OrganizationResponse,
    summary="Update organization",
)
async def update_organization(
    organization_id: UUID,
    data: OrganizationUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> OrganizationResponse:
    return await service.update_organization(organization_id, data, current_user)


@router.delete(
    "/{organization_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete organization",
)
async def delete_organization(
    organization_id: UUID,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> None:
    await service.delete_organization(organization_id, current_user)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@router.get(
    "/{organization_id}/members",
    response_model=MemberListResponse,
    summary="List organization members",
)
async def list_members(
    organization_id: UUID,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> MemberListResponse:
    return await service.list_members(organization_id, current_user)


@router.post(
    "/{organization_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an existing user to the organization",
)
async def add_member(
    organization_id: UUID,
    data: MemberAddRequest,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> MemberResponse:
    return await service.add_member(organization_id, data, current_user)


@router.patch(
    "/{organization_id}/members",
    response_model=MemberResponse,
    summary="Change member role",
)
async def update_member_role(
    organization_id: UUID,
    data: MemberRoleUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> MemberResponse:
    return await service.change_role(organization_id, data, current_user)


@router.delete(
    "/{organization_id}/members",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove member from organization",
)
async def remove_member(
    organization_id: UUID,
    user_id: UUID = Query(...),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> None:
    await service.remove_member(organization_id, user_id, current_user)


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------

@router.get(
    "/{organization_id}/announcements",
    response_model=AnnouncementListResponse,
    summary="List announcements",
)
async def list_announcements(
    organization_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> AnnouncementListResponse:
    return await service.list_announcements(organization_id, current_user, limit=limit)


@router.post(
    "/{organization_id}/announcements",
    response_model=AnnouncementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post an announcement",
)
async def create_announcement(
    organization_id: UUID,
    data: AnnouncementCreateRequest,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> AnnouncementResponse:
    return await service.create_announcement(organization_id, data, current_user)


# ---------------------------------------------------------------------------
# Slack integration
# ---------------------------------------------------------------------------

@router.get(
    "/{organization_id}/slack",
    response_model=OrganizationSlackIntegrationResponse,
    summary="Get the organization's Slack integration",
)
async def get_slack_integration(
    organization_id: UUID,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> OrganizationSlackIntegrationResponse:
    return await service.get_organization_integration(organization_id, current_user)


@router.put(
    "/{organization_id}/slack",
    response_model=OrganizationSlackIntegrationResponse,
    summary="Create or update the organization's Slack integration",
)
async def put_slack_integration(
    organization_id: UUID,
    data: OrganizationSlackIntegrationUpdate,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> OrganizationSlackIntegrationResponse:
    return await service.upsert_organization_integration(organization_id, data, current_user)


@router.delete(
    "/{organization_id}/slack",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove the organization's Slack integration",
)
async def delete_slack_integration(
    organization_id: UUID,
    current_user: User = Depends(get_current_user),
    service: SlackIntegrationService = Depends(get_slack_integration_service),
) -> None:
    await service.delete_organization_integration(organization_id, current_user)
