"""
Notification endpoints.

GET    /notifications                list own notifications (paginated)
PATCH  /notifications/{id}           mark a notification read or unread
POST   /notifications/mark-all-read  mark all notifications as read
DELETE /notifications/{id}           delete an own notification
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.schemas.notification import (
    CountResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationUpdateRequest,
)
from app.services.notification_service import NotificationService

router = APIRouter()


def get_notification_service(
    db: AsyncSession = Depends(get_db),
) -> NotificationService:
    return NotificationService(db=db)


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notifications for current user",
)
async def list_notifications(
    unread: bool = Query(default=False, description="Filter to unread only"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=25, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    return await service.list_notifications(
        current_user, unread_only=unread, skip=skip, limit=limit
    )


@router.post(
    "/mark-all-read",
    response_model=CountResponse,
    summary="Mark all notifications as read",
)
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> CountResponse:
    return await service.mark_all_read(current_user)


@router.patch(
    "/{notification_id}",
    response_model=NotificationResponse,
    summary="Mark a notification read or unread",
)
async def update_notification(
    notification_id: UUID,
    data: NotificationUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    return await service.set_read(notification_id, current_user, read=data.read)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> None:
    await service.delete(notification_id, current_user)
