"""
Business logic for notifications.

Read-state management for the caller's own notifications. Creation lives in
the fan-out service; every query here is scoped by user_id.
"""

from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.notification import Notification
from app.models.user import User
from app.schemas.notification import (
    CountResponse,
    NotificationListResponse,
    NotificationResponse,
)


class NotificationService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # GET /notifications
    # ------------------------------------------------------------------

    async def list_notifications(
        self,
        current_user: User,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 25,
    ) -> NotificationListResponse:
        """
        List notifications for the current user, newest first.
        Optionally filter to unread only.
        """
        base_stmt = select(Notification).where(Notification.user_id == current_user.id)
        if unread_only:
            base_stmt = base_stmt.where(Notification.read_at.is_(None))

        total = await self._db.scalar(select(func.count()).select_from(base_stmt.subquery())) or 0

        # Unread count (always, regardless of filter)
        unread_count = await self._db.scalar(
            select(func.count()).where(
                Notification.user_id == current_user.id,
                Notification.read_at.is_(None),
            )
        ) or 0

        result = await self._db.execute(
            base_stmt.order_by(Notification.created_at.desc()).offset(skip).limit(limit)
        )
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in result.scalars().all()],
            total=total,
            unread_count=unread_count,
        )

    # ------------------------------------------------------------------
    # PATCH /notifications/{id}
    # ------------------------------------------------------------------

    async def set_read(
        self, notification_id: uuid.UUID, current_user: User, read: bool = True
    ) -> NotificationResponse:
        """Mark a single notification as read or unread."""
        notification = await self._get_own(notification_id, current_user)
        if read and notification.read_at is None:
            notification.read_at = utcnow()
        elif not read:
            notification.read_at = None
        await self._db.flush()
        return NotificationResponse.model_validate(notification)

    # ------------------------------------------------------------------
    # POST /notifications/mark-all-read
    # ------------------------------------------------------------------

    async def mark_all_read(self, current_user: User) -> CountResponse:
        """Mark all unread notifications as read. Returns the number updated."""
        result = await self._db.execute(
            update(Notification)
            .where(
                Notification.user_id == current_user.id,
                Notification.read_at.is_(None),
            )
            .values(read_at=utcnow())
        )
        return CountResponse(updated=result.rowcount or 0)

    # ------------------------------------------------------------------
    # DELETE /notifications/{id}
    # ------------------------------------------------------------------

    async def delete(self, notification_id: uuid.UUID, current_user: User) -> None:
        notification = await self._get_own(notification_id, current_user)
        await self._db.delete(notification)
        await self._db.flush()

    async def _get_own(self, notification_id: uuid.UUID, current_user: User) -> Notification:
        # Scoped to user_id: another user's notification is indistinguishable from a missing one
        notification = await self._db.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == current_user.id,
            )
        )
        if notification is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "code": "NOTIFICATION_NOT_FOUND",
                    "message": "Notification not found.",
                },
            )
        return notification
