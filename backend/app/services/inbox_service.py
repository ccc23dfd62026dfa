"""
Inbox (attention item) read-state management.

Items are created by the fan-out service; here the owner reads, dismisses
and actions them. Dismissed items drop out of the inbox listing.
"""

from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.notification import AttentionItem
from app.models.user import User
from app.schemas.notification import (
    AttentionItemResponse,
    CountResponse,
    InboxActionRequest,
    InboxListResponse,
)


class InboxService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def list_items(
        self,
        current_user: User,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> InboxListResponse:
        visible = select(AttentionItem).where(
            AttentionItem.user_id == current_user.id,
            AttentionItem.dismissed_at.is_(None),
        )
        stmt = visible.where(AttentionItem.read_at.is_(None)) if unread_only else visible

        total = await self._db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        unread_count = await self._db.scalar(
            select(func.count()).select_from(
                visible.where(AttentionItem.read_at.is_(None)).subquery()
            )
        ) or 0

        result = await self._db.execute(
            stmt.order_by(AttentionItem.created_at.desc()).offset(skip).limit(limit)
        )
        return InboxListResponse(
            items=[AttentionItemResponse.model_validate(i) for i in result.scalars().all()],
            total=total,
            unread_count=unread_count,
        )

    async def apply(
        self, data: InboxActionRequest, current_user: User
    ) -> AttentionItemResponse | CountResponse:
        """Run one inbox action. Every action except mark_all_read needs item_id."""
        if data.action == "mark_all_read":
            result = await self._db.execute(
                update(AttentionItem)
                .where(
                    AttentionItem.user_id == current_user.id,
                    AttentionItem.read_at.is_(None),
                    AttentionItem.dismissed_at.is_(None),
                )
                .values(read_at=utcnow())
            )
            return CountResponse(updated=result.rowcount or 0)

        if data.item_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "ITEM_ID_REQUIRED", "message": f"{data.action} requires item_id"},
            )
        item = await self._get_own(data.item_id, current_user)

        now = utcnow()
        if data.action == "mark_read":
            item.read_at = item.read_at or now
        elif data.action == "dismiss":
            item.dismissed_at = item.dismissed_at or now
        elif data.action == "mark_actioned":
            item.actioned_at = item.actioned_at or now
            item.read_at = item.read_at or now

        await self._db.flush()
        return AttentionItemResponse.model_validate(item)

    async def _get_own(self, item_id: uuid.UUID, current_user: User) -> AttentionItem:
        item = await self._db.scalar(
            select(AttentionItem).where(
                AttentionItem.id == item_id,
                AttentionItem.user_id == current_user.id,
            )
        )
        if item is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "ITEM_NOT_FOUND", "message": "Inbox item not found"},
            )
        return item
