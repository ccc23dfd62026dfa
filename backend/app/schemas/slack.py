"""
Slack integration schemas.

Credentials are write-only: responses report `has_access_token` and
`has_webhook` instead of echoing secrets.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.slack_integration import OrganizationSlackIntegration, ProjectSlackIntegration


class SlackCredentialsUpdate(BaseModel):
    access_token: str | None = Field(default=None, max_length=500)
    webhook_url: str | None = Field(default=None, max_length=1000, pattern=r"^https://")
    channel_id: str | None = Field(default=None, max_length=64)
    channel_name: str | None = Field(default=None, max_length=100)
    team_id: str | None = Field(default=None, max_length=64)


class ProjectSlackIntegrationUpdate(SlackCredentialsUpdate):
    """Request body for PUT /projects/{id}/slack. Omitted fields keep their value."""

    notify_on_task_create: bool | None = None
    notify_on_task_update: bool | None = None
    notify_on_task_delete: bool | None = None
    notify_on_task_move: bool | None = None
    notify_on_task_complete: bool | None = None


class OrganizationSlackIntegrationUpdate(SlackCredentialsUpdate):
    """Request body for PUT /organizations/{id}/slack."""

    notify_on_announcement: bool | None = None
    notify_on_meeting: bool | None = None
    notify_on_member_join: bool | None = None
    notify_on_member_leave: bool | None = None


class _SlackIntegrationResponse(BaseModel):
    id: UUID
    channel_id: str | None
    channel_name: str | None
    team_id: str | None
    has_access_token: bool
    has_webhook: bool
    created_at: datetime
    updated_at: datetime


class ProjectSlackIntegrationResponse(_SlackIntegrationResponse):
    project_id: UUID
    notify_on_task_create: bool
    notify_on_task_update: bool
    notify_on_task_delete: bool
    notify_on_task_move: bool
    notify_on_task_complete: bool

    @classmethod
    def from_model(cls, integration: ProjectSlackIntegration) -> ProjectSlackIntegrationResponse:
        return cls(
            id=integration.id,
            project_id=integration.project_id,
            channel_id=integration.channel_id,
            channel_name=integration.channel_name,
            team_id=integration.team_id,
            has_access_token=bool(integration.access_token),
            has_webhook=bool(integration.webhook_url),
            notify_on_task_create=integration.notify_on_task_create,
            notify_on_task_update=integration.notify_on_task_update,
            notify_on_task_delete=integration.notify_on_task_delete,
            notify_on_task_move=integration.notify_on_task_move,
            notify_on_task_complete=integration.notify_on_task_complete,
            created_at=integration.created_at,
            updated_at=integration.updated_at,
        )


class OrganizationSlackIntegrationResponse(_SlackIntegrationResponse):
    organization_id: UUID
    notify_on_announcement: bool
    notify_on_meeting: bool
    notify_on_member_join: bool
    notify_on_member_leave: bool

    @classmethod
    def from_model(
        cls, integration: OrganizationSlackIntegration
    ) -> OrganizationSlackIntegrationResponse:
        return cls(
            id=integration.id,
            organization_id=integration.organization_id,
            channel_id=integration.channel_id,
            channel_name=integration.channel_name,
            team_id=integration.team_id,
            has_access_token=bool(integration.access_token),
            has_webhook=bool(integration.webhook_url),
            notify_on_announcement=integration.notify_on_announcement,
            notify_on_meeting=integration.notify_on_meeting,
            notify_on_member_join=integration.notify_on_member_join,
            notify_on_member_leave=integration.notify_on_member_leave,
            created_at=integration.created_at,
            updated_at=integration.updated_at,
        )
