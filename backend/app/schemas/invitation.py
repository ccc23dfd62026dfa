"""
Project invitation schemas.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, model_validator

from app.models.invitation import InvitationStatus
from app.models.member import MemberRole


class InvitationResponse(BaseModel):
    id: UUID
    project_id: UUID
    project_name: str | None = None
    email: str
    role: MemberRole
    status: InvitationStatus
    expires_at: datetime
    invited_by: UUID | None
    inviter_name: str | None = None
    created_at: datetime


class InvitationListResponse(BaseModel):
    data: list[InvitationResponse]
    total: int


class InvitationActionRequest(BaseModel):
    """Identify an invitation by id (from the inbox) or by token (from the email link)."""

    invitation_id: UUID | None = None
    token: str | None = None

    @model_validator(mode="after")
    def require_identifier(self) -> InvitationActionRequest:
        if self.invitation_id is None and not self.token:
            raise ValueError("Provide invitation_id or token")
        return self
