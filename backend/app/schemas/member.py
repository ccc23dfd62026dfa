"""
Membership schemas shared by projects and organizations.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.member import MemberRole


class MemberResponse(BaseModel):
    user_id: UUID
    email: str
    full_name: str | None
    avatar_url: str | None
    role: MemberRole
    joined_at: datetime


class MemberListResponse(BaseModel):
    data: list[MemberResponse]
    total: int


class MemberAddRequest(BaseModel):
    """Add an existing user, or invite an email address that has no account yet."""

    email: str = Field(min_length=3, max_length=255)
    role: MemberRole = MemberRole.member

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class MemberAddResponse(BaseModel):
    status: str = Field(description="'added' for existing users, 'invited' otherwise")
    member: MemberResponse | None = None
    invitation_id: UUID | None = None
    email_sent: bool = False


class MemberRoleUpdateRequest(BaseModel):
    user_id: UUID
    role: MemberRole
