"""
SQLAlchemy ORM models.

All models imported here to ensure they are registered with Base.metadata.
Import order matters: base models before dependent models.
"""

from app.models.base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin
from app.models.user import User
from app.models.organization import Organization, OrganizationAnnouncement
from app.models.project import Project, ProjectStatus
from app.models.member import MemberRole, OrganizationMember, ProjectMember
from app.models.invitation import InvitationStatus, ProjectInvitation
from app.models.task import ApprovalStatus, Task, TaskAssignment, TaskPriority, TaskStatus
from app.models.comment import Comment, Mention
from app.models.notification import (
    AttentionItem,
    AttentionPriority,
    AttentionType,
    Notification,
    NotificationType,
)
from app.models.slack_integration import OrganizationSlackIntegration, ProjectSlackIntegration
from app.models.password_reset import PasswordResetPin
from app.models.activity_log import ActivityAction, ActivityLog

__all__ = [
    "Base",
    "CreatedAtMixin",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "Organization",
    "OrganizationAnnouncement",
    "Project",
    "ProjectStatus",
    "MemberRole",
    "OrganizationMember",
    "ProjectMember",
    "InvitationStatus",
    "ProjectInvitation",
    "ApprovalStatus",
    "Task",
    "TaskAssignment",
    "TaskPriority",
    "TaskStatus",
    "Comment",
    "Mention",
    "AttentionItem",
    "AttentionPriority",
    "AttentionType",
    "Notification",
    "NotificationType",
    "OrganizationSlackIntegration",
    "ProjectSlackIntegration",
    "PasswordResetPin",
    "ActivityAction",
    "ActivityLog",
]
