"""
Slack outbound bridge and integration configuration.

The bridge decides whether a domain event goes to Slack (integration exists,
flag enabled, a credential is present) and enqueues delivery on Celery, so
requests never wait on Slack. `deliver_slack_message` is the delivery itself.
"""

from __future__ import annotations

import enum
import logging
from typing import Any
from uuid import UUID

import httpx
import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.authz import Action, AuthorizationService, ResourceContext
from app.core.config import settings
from app.core.slack import context_block, header_block, section_block
from app.models.organization import Organization, OrganizationAnnouncement
from app.models.project import Project
from app.models.slack_integration import OrganizationSlackIntegration, ProjectSlackIntegration
from app.models.task import Task
from app.models.user import User
from app.schemas.slack import (
    OrganizationSlackIntegrationResponse,
    OrganizationSlackIntegrationUpdate,
    ProjectSlackIntegrationResponse,
    ProjectSlackIntegrationUpdate,
)

logger = logging.getLogger(__name__)


class SlackEvent(str, enum.Enum):
    """Event kinds; each maps to a `notify_on_<value>` flag on an integration."""

    task_create = "task_create"
    task_update = "task_update"
    task_delete = "task_delete"
    task_move = "task_move"
    task_complete = "task_complete"
    announcement = "announcement"
    meeting = "meeting"
    member_join = "member_join"
    member_leave = "member_leave"

    @property
    def flag(self) -> str:
        return f"notify_on_{self.value}"


SlackIntegration = ProjectSlackIntegration | OrganizationSlackIntegration


class SlackDeliveryError(Exception):
    """Slack answered but refused the message (ok=false or non-2xx webhook)."""


def credentials_of(integration: SlackIntegration) -> dict[str, str | None]:
    return {
        "access_token": integration.access_token,
        "channel_id": integration.channel_id,
        "webhook_url": integration.webhook_url,
    }


def has_credentials(integration: SlackIntegration) -> bool:
    return bool(
        (integration.access_token and integration.channel_id) or integration.webhook_url
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def deliver_slack_message(
    credentials: dict[str, Any],
    message: dict[str, Any],
    client: httpx.Client | None = None,
) -> str:
    """
    Post `message` ({"text", "blocks"}) to Slack.

    Bot token + channel go through chat.postMessage with a Bearer header;
    otherwise an incoming webhook is used; otherwise nothing happens.
    Returns "chat_api", "webhook" or "skipped".

    Raises:
        SlackDeliveryError: Slack rejected the message.
        httpx.HTTPError: transport failure.
    """
    token = credentials.get("access_token")
    channel = credentials.get("channel_id")
    webhook_url = credentials.get("webhook_url")

    if not ((token and channel) or webhook_url):
        logger.debug("No Slack credentials, skipping delivery")
        return "skipped"

    owns_client = client is None
    http = client or httpx.Client(timeout=settings.SLACK_TIMEOUT_SECONDS)
    try:
        if token and channel:
            response = http.post(
                f"{settings.SLACK_API_BASE_URL}/chat.postMessage",
                headers={"Authorization": f"Bearer {token}"},
                json={"channel": channel, **message},
            )
            response.raise_for_status()
            body = response.json()
            if not body.get("ok"):
                raise SlackDeliveryError(body.get("error", "unknown_error"))
            return "chat_api"

        response = http.post(webhook_url, json=message)
        if response.status_code >= 400:
            raise SlackDeliveryError(f"webhook returned {response.status_code}")
        return "webhook"
    finally:
        if owns_client:
            http.close()


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------

class SlackBridge:
    """Forwards domain events to the Slack channel of a project or organization."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def notify_project_event(
        self,
        project_id: UUID,
        event: SlackEvent,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> bool:
        """Returns True when a delivery was enqueued. Never raises."""
        try:
            result = await self.db.execute(
                select(ProjectSlackIntegration).where(
                    ProjectSlackIntegration.project_id == project_id
                )
            )
            integration = result.scalar_one_or_none()
        except Exception:
            logger.exception("Slack integration lookup failed for project_id=%s", project_id)
            return False
        return self._enqueue(integration, event, text, blocks)

    async def notify_organization_event(
        self,
        organization_id: UUID,
        event: SlackEvent,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> bool:
        try:
            result = await self.db.execute(
                select(OrganizationSlackIntegration).where(
                    OrganizationSlackIntegration.organization_id == organization_id
                )
            )
            integration = result.scalar_one_or_none()
        except Exception:
            logger.exception(
                "Slack integration lookup failed for organization_id=%s", organization_id
            )
            return False
        return self._enqueue(integration, event, text, blocks)

    def _enqueue(
        self,
        integration: SlackIntegration | None,
        event: SlackEvent,
        text: str,
        blocks: list[dict[str, Any]] | None,
    ) -> bool:
        if integration is None:
            return False
        if not getattr(integration, event.flag, False):
            logger.debug("Slack %s disabled for integration %s", event.value, integration.id)
            return False
        if not has_credentials(integration):
            return False

        from app.workers.slack_tasks import post_slack_message

        message = {"text": text, "blocks": blocks or [section_block(text)]}
        try:
            post_slack_message.delay(credentials_of(integration), message, event.value)
        except Exception:
            logger.exception("Failed to enqueue Slack %s message", event.value)
            return False
        return True

    # -----------------------------------------------------------------------
    # Project events
    # -----------------------------------------------------------------------

    async def task_created(self, project: Project, task: Task, actor: User | None) -> bool:
        by = f"\nCreated by {actor.display_name}" if actor else ""
        return await self.notify_project_event(
            project.id,
            SlackEvent.task_create,
            f"New task: {task.title}",
            [
                header_block("New Task Created"),
                section_block(f"*{task.title}*{by}"),
                context_block(f"{project.name} · {project.stage_name(task.stage_id)}"),
            ],
        )

    async def task_updated(
        self, project: Project, task: Task, actor: User, changed: list[str]
    ) -> bool:
        fields = ", ".join(sorted(changed)) or "details"
        return await self.notify_project_event(
            project.id,
            SlackEvent.task_update,
            f"Task updated: {task.title}",
            [
                section_block(f"*{task.title}* was updated by {actor.display_name}"),
                context_block(f"Changed: {fields}"),
            ],
        )

    async def task_deleted(self, project: Project, title: str, actor: User) -> bool:
        return await self.notify_project_event(
            project.id,
            SlackEvent.task_delete,
            f"Task deleted: {title}",
            [section_block(f"~{title}~ was deleted by {actor.display_name}")],
        )

    async def task_moved(
        self, project: Project, task: Task, actor: User, old_stage_id: str, new_stage_id: str
    ) -> bool:
        old_name = project.stage_name(old_stage_id)
        new_name = project.stage_name(new_stage_id)
        return await self.notify_project_event(
            project.id,
            SlackEvent.task_move,
            f"{task.title} moved to {new_name}",
            [
                section_block(
                    f"*{task.title}*\n{old_name} → {new_name} by {actor.display_name}"
                ),
            ],
        )

    async def task_completed(self, project: Project, task: Task, actor: User) -> bool:
        return await self.notify_project_event(
            project.id,
            SlackEvent.task_complete,
            f"Task completed: {task.title}",
            [
                header_block("Task Completed"),
                section_block(f"*{task.title}* was completed by {actor.display_name}"),
            ],
        )

    # -----------------------------------------------------------------------
    # Organization events
    # -----------------------------------------------------------------------

    async def announcement_posted(
        self, organization: Organization, announcement: OrganizationAnnouncement, poster: User
    ) -> bool:
        return await self.notify_organization_event(
            organization.id,
            SlackEvent.announcement,
            f"New announcement: {announcement.title}",
            [
                header_block(f"📢 {announcement.title}"),
                section_block(announcement.content),
                context_block(f"Posted by {poster.display_name} in {organization.name}"),
            ],
        )

    async def member_joined(self, organization: Organization, user: User) -> bool:
        return await self.notify_organization_event(
            organization.id,
            SlackEvent.member_join,
            f"{user.display_name} joined {organization.name}",
        )

    async def member_left(self, organization: Organization, user: User) -> bool:
        return await self.notify_organization_event(
            organization.id,
            SlackEvent.member_leave,
            f"{user.display_name} left {organization.name}",
        )


# ---------------------------------------------------------------------------
# Integration configuration
# ---------------------------------------------------------------------------

class SlackIntegrationService:
    """CRUD for per-project and per-organization Slack settings (admin+)."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.authz = AuthorizationService(db=db, redis=redis)

    async def get_project_integration(
        self, project_id: UUID, current_user: User
    ) -> ProjectSlackIntegrationResponse:
        await self.authz.require(
            current_user.id, Action.CONFIGURE_INTEGRATIONS, ResourceContext.project(project_id)
        )
        integration = await self._project_integration(project_id)
        if integration is None:
            raise _not_configured()
        return ProjectSlackIntegrationResponse.from_model(integration)

    async def upsert_project_integration(
        self, project_id: UUID, data: ProjectSlackIntegrationUpdate, current_user: User
    ) -> ProjectSlackIntegrationResponse:
        await self.authz.require(
            current_user.id, Action.CONFIGURE_INTEGRATIONS, ResourceContext.project(project_id)
        )
        integration = await self._project_integration(project_id)
        if integration is None:
            integration = ProjectSlackIntegration(project_id=project_id)
            self.db.add(integration)
        _apply(integration, data.model_dump(exclude_unset=True))
        await self.db.flush()
        logger.info("Slack integration saved for project_id=%s", project_id)
        return ProjectSlackIntegrationResponse.from_model(integration)

    async def delete_project_integration(self, project_id: UUID, current_user: User) -> None:
        await self.authz.require(
            current_user.id, Action.CONFIGURE_INTEGRATIONS, ResourceContext.project(project_id)
        )
        integration = await self._project_integration(project_id)
        if integration is None:
            raise _not_configured()
        await self.db.delete(integration)
        await self.db.flush()

    async def get_organization_integration(
        self, organization_id: UUID, current_user: User
    ) -> OrganizationSlackIntegrationResponse:
        await self.authz.require(
            current_user.id,
            Action.CONFIGURE_INTEGRATIONS,
            ResourceContext.organization(organization_id),
        )
        integration = await self._organization_integration(organization_id)
        if integration is None:
            raise _not_configured()
        return OrganizationSlackIntegrationResponse.from_model(integration)

    async def upsert_organization_integration(
        self,
        organization_id: UUID,
        data: OrganizationSlackIntegrationUpdate,
        current_user: User,
    ) -> OrganizationSlackIntegrationResponse:
        await self.authz.require(
            current_user.id,
            Action.CONFIGURE_INTEGRATIONS,
            ResourceContext.organization(organization_id),
        )
        integration = await self._organization_integration(organization_id)
        if integration is None:
            integration = OrganizationSlackIntegration(organization_id=organization_id)
            self.db.add(integration)
        _apply(integration, data.model_dump(exclude_unset=True))
        await self.db.flush()
        logger.info("Slack integration saved for organization_id=%s", organization_id)
        return OrganizationSlackIntegrationResponse.from_model(integration)

    async def delete_organization_integration(
        self, organization_id: UUID, current_user: User
    ) -> None:
        await self.authz.require(
            current_user.id,
            Action.CONFIGURE_INTEGRATIONS,
            ResourceContext.organization(organization_id),
        )
        integration = await self._organization_integration(organization_id)
        if integration is None:
            raise _not_configured()
        await self.db.delete(integration)
        await self.db.flush()

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _project_integration(self, project_id: UUID) -> ProjectSlackIntegration | None:
        result = await self.db.execute(
            select(ProjectSlackIntegration).where(ProjectSlackIntegration.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def _organization_integration(
        self, organization_id: UUID
    ) -> OrganizationSlackIntegration | None:
        result = await self.db.execute(
            select(OrganizationSlackIntegration).where(
                OrganizationSlackIntegration.organization_id == organization_id
            )
        )
        return result.scalar_one_or_none()


def _apply(integration: SlackIntegration, changes: dict[str, Any]) -> None:
    for field, value in changes.items():
        # Flags cannot be cleared to NULL
        if value is None and field.startswith("notify_on_"):
            continue
        setattr(integration, field, value)


def _not_configured() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "INTEGRATION_NOT_FOUND", "message": "Slack integration not configured"},
    )
