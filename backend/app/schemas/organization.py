"""
Organization schemas.

Request/response models for organization, member and announcement endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.member import MemberRole


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------

class OrganizationCreateRequest(BaseModel):
    """Request body for POST /organizations. The slug is derived from the name."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class OrganizationUpdateRequest(BaseModel):
    """Request body for PATCH /organizations/{id}."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None


class OrganizationResponse(BaseModel):
    """Organization detail response."""

    id: UUID
    name: str
    slug: str
    description: str | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
    role: MemberRole | None = None

    model_config = {"from_attributes": True}


class OrganizationListResponse(BaseModel):
    data: list[OrganizationResponse]
    total: int


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------

class AnnouncementCreateRequest(BaseModel):
    """Request body for POST /organizations/{id}/announcements."""

    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=10000)


class AnnouncementResponse(BaseModel):
    id: UUID
    organization_id: UUID
    title: str
    content: str
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AnnouncementListResponse(BaseModel):
    data: list[AnnouncementResponse]
    total: int
