"""
ActivityLog ORM model.
"""

from __future__ import annotations

import enum
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, JSONType, UUIDMixin


class ActivityAction(str, enum.Enum):
    task_created = "task_created"
    task_updated = "task_updated"
    task_moved = "task_moved"
    task_deleted = "task_deleted"
    task_approved = "task_approved"
    task_rejected = "task_rejected"
    comment_added = "comment_added"
    member_added = "member_added"
    member_removed = "member_removed"
    member_role_changed = "member_role_changed"


class ActivityLog(Base, UUIDMixin, CreatedAtMixin):
    """Immutable audit trail of project changes."""

    __tablename__ = "activity_logs"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: entries outlive deleted tasks
    task_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<ActivityLog id={self.id} action={self.action!r} project_id={self.project_id}>"
