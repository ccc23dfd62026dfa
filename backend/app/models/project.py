"""
Project ORM model.

A project owns an ordered list of workflow stages stored inline as JSON;
every task's stage_id must reference one of them.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin
from app.models.task import TaskStatus

if TYPE_CHECKING:
    from app.models.member import ProjectMember

DEFAULT_PROJECT_COLOR = "#3B82F6"

DEFAULT_WORKFLOW_STAGES: list[dict[str, str]] = [
    {"id": "todo", "name": "To Do", "color": "#6B7280"},
    {"id": "in_progress", "name": "In Progress", "color": "#3B82F6"},
    {"id": "review", "name": "Review", "color": "#F59E0B"},
    {"id": "done", "name": "Done", "color": "#10B981"},
]


def default_workflow_stages() -> list[dict[str, str]]:
    return [dict(stage) for stage in DEFAULT_WORKFLOW_STAGES]


class ProjectStatus(str, enum.Enum):
    active = "active"
    archived = "archived"


class Project(Base, UUIDMixin, TimestampMixin):
    """A board of tasks, optionally owned by an organization."""

    __tablename__ = "projects"

    organization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default=DEFAULT_PROJECT_COLOR)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, name="project_status", native_enum=False, length=16),
        nullable=False,
        default=ProjectStatus.active,
    )
    workflow_stages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=default_workflow_stages
    )
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    members: Mapped[list[ProjectMember]] = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # -----------------------------------------------------------------------
    # Workflow helpers
    # -----------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        return [stage["id"] for stage in self.workflow_stages or []]

    def get_stage(self, stage_id: str | None) -> dict[str, Any] | None:
        for stage in self.workflow_stages or []:
            if stage["id"] == stage_id:
                return stage
        return None

    def stage_name(self, stage_id: str | None) -> str:
        stage = self.get_stage(stage_id)
        return stage["name"] if stage else "Unknown"

    @property
    def first_stage_id(self) -> str:
        stages = self.workflow_stages or DEFAULT_WORKFLOW_STAGES
        return stages[0]["id"]

    @property
    def done_stage_id(self) -> str:
        """Stage with id 'done', else named 'Done', else the last stage."""
        stages = self.workflow_stages or DEFAULT_WORKFLOW_STAGES
        for stage in stages:
            if stage["id"] == "done":
                return stage["id"]
        for stage in stages:
            if str(stage.get("name", "")).strip().lower() == "done":
                return stage["id"]
        return stages[-1]["id"]

    def status_for_stage(self, stage_id: str) -> TaskStatus:
        """Coarse task status implied by a board column."""
        if stage_id == self.done_stage_id:
            return TaskStatus.done
        if stage_id == self.first_stage_id:
            return TaskStatus.todo
        return TaskStatus.in_progress

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r}>"
