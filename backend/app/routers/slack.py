"""
Slack endpoints.

The slash-command webhook is authenticated by Slack's request signature,
not by a bearer token. Integration settings routes live on the project and
organization routers and share `get_slack_integration_service`.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import parse_qsl

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import get_redis
from app.core.slack import SlackSignatureError, verify_slack_signature
from app.services.slack_command_service import SlackCommandService
from app.services.slack_service import SlackIntegrationService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_slack_integration_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> SlackIntegrationService:
    return SlackIntegrationService(db=db, redis=redis)


def get_slack_command_service(db: AsyncSession = Depends(get_db)) -> SlackCommandService:
    return SlackCommandService(db=db)


@router.post(
    "/command",
    summary="Slack slash command webhook",
)
async def slash_command(
    request: Request,
    service: SlackCommandService = Depends(get_slack_command_service),
) -> dict[str, Any]:
    """
    Handle `/teamboard` slash commands.

    The raw body is verified before it is parsed: the signature covers the
    exact bytes Slack sent.
    """
    body = await request.body()
    try:
        verify_slack_signature(request.headers, body, settings.SLACK_SIGNING_SECRET)
    except SlackSignatureError as exc:
        logger.warning("Rejected Slack command: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "INVALID_SIGNATURE", "message": "Invalid Slack request signature"},
        )

    try:
        form = dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_PAYLOAD", "message": "Slack payload is not valid UTF-8"},
        )
    return await service.handle(form)
