"""
Inbox endpoints.

GET   /inbox  list attention items (dismissed items excluded)
PATCH /inbox  mark_read | mark_all_read | dismiss | mark_actioned
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.schemas.notification import (
    AttentionItemResponse,
    CountResponse,
    InboxActionRequest,
    InboxListResponse,
)
from app.services.inbox_service import InboxService

router = APIRouter()


def get_inbox_service(db: AsyncSession = Depends(get_db)) -> InboxService:
    return InboxService(db=db)


@router.get(
    "",
    response_model=InboxListResponse,
    summary="List inbox items for current user",
)
async def list_inbox(
    unread_only: bool = Query(default=False),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: InboxService = Depends(get_inbox_service),
) -> InboxListResponse:
    return await service.list_items(current_user, unread_only=unread_only, skip=skip, limit=limit)


@router.patch(
    "",
    response_model=AttentionItemResponse | CountResponse,
    summary="Apply an inbox action",
)
async def update_inbox(
    data: InboxActionRequest,
    current_user: User = Depends(get_current_user),
    service: InboxService = Depends(get_inbox_service),
) -> AttentionItemResponse | CountResponse:
    return await service.apply(data, current_user)
