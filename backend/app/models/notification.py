"""
ORM models for notifications and attention (inbox) items.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, JSONType, UUIDMixin


class NotificationType(str, enum.Enum):
    """
    Known notification types.

    Stored as a plain string column; validated here so adding a type never
    requires a schema change.
    """

    COMMENT_ADDED = "comment_added"
    MENTION = "mention"
    TASK_MOVED = "task_moved"
    TASK_ASSIGNED = "task_assigned"
    PROJECT_INVITE = "project_invite"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    NEW_ANNOUNCEMENT = "new_announcement"


class AttentionType(str, enum.Enum):
    mention = "mention"
    assignment = "assignment"
    due_soon = "due_soon"
    overdue = "overdue"
    comment = "comment"
    status_change = "status_change"
    unassignment = "unassignment"


class AttentionPriority(str, enum.Enum):
    urgent = "urgent"
    high = "high"
    normal = "normal"
    low = "low"


class Notification(Base, UUIDMixin, CreatedAtMixin):
    """A push-style message for one user."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Project scope, so project deletion removes its notifications
    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user_id={self.user_id} type={self.type!r}>"


class AttentionItem(Base, UUIDMixin, CreatedAtMixin):
    """An inbox entry. (user_id, dedup_key) is unique so replays are no-ops."""

    __tablename__ = "attention_items"
    __table_args__ = (
        UniqueConstraint("user_id", "dedup_key", name="uq_attention_items_user_dedup"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attention_type: Mapped[AttentionType] = mapped_column(
        Enum(AttentionType, name="attention_type", native_enum=False, length=20),
        nullable=False,
    )
    priority: Mapped[AttentionPriority] = mapped_column(
        Enum(AttentionPriority, name="attention_priority", native_enum=False, length=16),
        nullable=False,
        default=AttentionPriority.normal,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    task_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )
    comment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("comments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    actor_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    dedup_key: Mapped[str] = mapped_column(String(255), nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AttentionItem id={self.id} user_id={self.user_id} dedup_key={self.dedup_key!r}>"
