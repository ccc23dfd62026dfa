"""
Slack integration ORM models.

One record per project and one per organization, each holding an outbound
credential (bot token + channel, or incoming webhook) and per-event toggles.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, UUIDMixin


class SlackCredentialsMixin:
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    channel_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    team_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ProjectSlackIntegration(Base, UUIDMixin, TimestampMixin, SlackCredentialsMixin):
    __tablename__ = "project_slack_integrations"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    notify_on_task_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_task_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_on_task_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_on_task_move: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_task_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ProjectSlackIntegration project_id={self.project_id} channel_id={self.channel_id!r}>"


class OrganizationSlackIntegration(Base, UUIDMixin, TimestampMixin, SlackCredentialsMixin):
    __tablename__ = "organization_slack_integrations"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    notify_on_announcement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_meeting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_member_join: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_member_leave: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<OrganizationSlackIntegration organization_id={self.organization_id} "
            f"channel_id={self.channel_id!r}>"
        )
