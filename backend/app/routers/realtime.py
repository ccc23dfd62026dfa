"""
Realtime change-feed WebSocket.

Relays the row changes a user may see (published to their Redis channel
after each commit) to their socket.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.dependencies import authenticate_ws_token, get_redis
from app.core.websocket import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/realtime")
async def realtime_endpoint(
    websocket: WebSocket,
    token: str = Query(..., description="JWT access token"),
) -> None:
    """
    WebSocket endpoint authenticated via JWT query param.
    Connect: WS /api/v1/realtime?token={access_token}

    Closes with 4001 when the token is invalid, revoked or the user is gone.
    Incoming messages are ignored; reading them is how disconnects surface.
    """
    redis = await get_redis()
    user = await authenticate_ws_token(token, redis)
    if user is None:
        await websocket.close(code=4001)
        return

    user_id = str(user.id)
    await manager.connect(user_id=user_id, websocket=websocket)
    relay = asyncio.create_task(manager.relay(user_id, redis))

    try:
        await websocket.send_json({"type": "connected", "user_id": user_id})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.warning("WebSocket error for user_id=%s: %s", user_id, exc)
    finally:
        manager.disconnect(user_id, websocket)
        relay.cancel()
