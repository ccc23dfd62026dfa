"""
Realtime change feed, server side.

Row changes on the collaboration tables are captured from SQLAlchemy session
events, held until the transaction commits, then published as JSON to the
Redis channel of every user allowed to see the row:

    {prefix}:{user_id} <- {"table", "eventType", "new", "old", "commit_timestamp"}

Rolled-back changes are dropped. Publishing is best-effort and never raises.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import event, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.base import utcnow

logger = logging.getLogger(__name__)

REALTIME_TABLES = frozenset(
    {
        "projects",
        "tasks",
        "project_members",
        "notifications",
        "comments",
        "organizations",
        "organization_members",
    }
)

# Never leave the server, even to the row owner
_REDACTED_COLUMNS = frozenset({"password_hash", "access_token", "webhook_url"})

_PENDING_KEY = "realtime_pending"
_CASCADE_KEY = "realtime_cascade"
_COMMITTED_KEY = "realtime_committed"


@dataclass
class ChangeEvent:
    table: str
    event_type: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str = ""
    # Users resolved before the row was deleted; membership rows may be gone by commit
    recipients: set[str] = field(default_factory=set)

    @property
    def row(self) -> dict[str, Any]:
        """The row a subscriber filters on: old for deletes, new otherwise."""
        return self.old if self.event_type == "DELETE" else self.new

    def to_payload(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        }


def user_channel(user_id: UUID | str) -> str:
    """Redis pub/sub channel for one user. Format: {prefix}:{user_id}"""
    return f"{settings.REALTIME_CHANNEL_PREFIX}:{user_id}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _loaded_row(obj: Any) -> dict[str, Any]:
    """Column values already loaded on the instance. Never triggers IO."""
    state = inspect(obj)
    row: dict[str, Any] = {}
    for column in state.mapper.column_attrs:
        key = column.key
        if key in _REDACTED_COLUMNS or key not in state.dict:
            continue
        row[key] = _jsonable(state.dict[key])
    return row


def _previous_row(obj: Any) -> dict[str, Any]:
    """Pre-flush values of an updated instance."""
    state = inspect(obj)
    row = _loaded_row(obj)
    for column in state.mapper.column_attrs:
        key = column.key
        if key in _REDACTED_COLUMNS:
            continue
        history = state.attrs[key].history
        if history.deleted:
            row[key] = _jsonable(history.deleted[0])
    return row


# ---------------------------------------------------------------------------
# Session event capture
# ---------------------------------------------------------------------------

@event.listens_for(Session, "before_flush")
def _capture_cascaded_members(session: Session, flush_context: Any, instances: Any) -> None:
    """
    Read the membership rows a project or organization delete will cascade to.

    The database removes them without the ORM seeing it, so their DELETE
    events and the people who should receive them are captured up front.
    """
    from app.models.member import OrganizationMember, ProjectMember

    parents = {"projects": ProjectMember, "organizations": OrganizationMember}
    members_by_parent: dict[tuple[str, str], list[dict[str, Any]]] = {}

    with session.no_autoflush:
        for obj in session.deleted:
            model = parents.get(getattr(obj, "__tablename__", None))
            if model is None:
                continue
            parent_column = (
                model.project_id if model is ProjectMember else model.organization_id
            )
            rows = session.execute(
                select(model.__table__).where(parent_column == obj.id)
            ).mappings().all()
            members_by_parent[(obj.__tablename__, str(obj.id))] = [
                {key: _jsonable(value) for key, value in row.items()} for row in rows
            ]

    if members_by_parent:
        session.info[_CASCADE_KEY] = members_by_parent


@event.listens_for(Session, "after_flush")
def _capture_changes(session: Session, flush_context: Any) -> None:
    pending: list[ChangeEvent] = session.info.setdefault(_PENDING_KEY, [])
    cascaded: dict[tuple[str, str], list[dict[str, Any]]] = session.info.pop(_CASCADE_KEY, {})

    # Rows the ORM deletes itself already produce their own event below
    explicit = {str(obj.id) for obj in session.deleted if hasattr(obj, "user_id")}
    for (table, _), rows in cascaded.items():
        recipients = {row["user_id"] for row in rows}
        member_table = "project_members" if table == "projects" else "organization_members"
        pending.extend(
            ChangeEvent(table=member_table, event_type="DELETE", old=row, recipients=recipients)
            for row in rows
            if row["id"] not in explicit
        )

    for obj in session.new:
        table = getattr(obj, "__tablename__", None)
        if table in REALTIME_TABLES:
            pending.append(ChangeEvent(table=table, event_type="INSERT", new=_loaded_row(obj)))

    for obj in session.dirty:
        table = getattr(obj, "__tablename__", None)
        if table in REALTIME_TABLES and session.is_modified(obj, include_collections=False):
            pending.append(
                ChangeEvent(
                    table=table,
                    event_type="UPDATE",
                    new=_loaded_row(obj),
                    old=_previous_row(obj),
                )
            )

    for obj in session.deleted:
        table = getattr(obj, "__tablename__", None)
        if table in REALTIME_TABLES:
            rows = cascaded.get((table, str(obj.id)), [])
            pending.append(
                ChangeEvent(
                    table=table,
                    event_type="DELETE",
                    old=_loaded_row(obj),
                    recipients={row["user_id"] for row in rows},
                )
            )


@event.listens_for(Session, "after_commit")
def _promote_changes(session: Session) -> None:
    pending: list[ChangeEvent] = session.info.pop(_PENDING_KEY, [])
    if not pending:
        return
    timestamp = utcnow().isoformat()
    for change in pending:
        change.commit_timestamp = timestamp
    session.info.setdefault(_COMMITTED_KEY, []).extend(pending)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
    session.info.pop(_CASCADE_KEY, None)


# ---------------------------------------------------------------------------
# Audience resolution + publish
# ---------------------------------------------------------------------------

async def _audience(session: AsyncSession, change: ChangeEvent) -> set[str]:
    from app.models.member import OrganizationMember, ProjectMember

    row = change.row
    users: set[str] = set(change.recipients)

    if change.table == "notifications":
        users.add(row["user_id"])
        return users

    project_id: str | None = None
    organization_id: str | None = None
    if change.table == "projects":
        project_id = row.get("id")
        if row.get("created_by"):
            users.add(row["created_by"])
    elif change.table in ("tasks", "comments", "project_members"):
        project_id = row.get("project_id")
    elif change.table == "organizations":
        organization_id = row.get("id")
    elif change.table == "organization_members":
        organization_id = row.get("organization_id")

    if change.table in ("project_members", "organization_members") and row.get("user_id"):
        users.add(row["user_id"])

    if project_id:
        result = await session.execute(
            select(ProjectMember.user_id).where(ProjectMember.project_id == UUID(project_id))
        )
        users.update(str(uid) for uid in result.scalars().all())
    if organization_id:
        result = await session.execute(
            select(OrganizationMember.user_id).where(
                OrganizationMember.organization_id == UUID(organization_id)
            )
        )
        users.update(str(uid) for uid in result.scalars().all())
    return users


async def publish_committed_changes(session: AsyncSession) -> int:
    """
    Publish every change committed on `session` so far.

    Returns the number of messages published. Failures are logged.
    """
    committed: list[ChangeEvent] = session.sync_session.info.pop(_COMMITTED_KEY, [])
    if not committed:
        return 0

    from app.core.dependencies import get_redis

    published = 0
    try:
        redis = await get_redis()
        for change in committed:
            message = json.dumps(change.to_payload())
            for user_id in await _audience(session, change):
                await redis.publish(user_channel(user_id), message)
                published += 1
    except Exception:
        logger.exception("Realtime publish failed after %d messages", published)
    return published
