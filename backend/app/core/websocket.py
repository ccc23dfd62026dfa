"""
WebSocket connection manager.

Registry of live client connections plus the relay that forwards a user's
realtime Redis channel to their socket. Works across API replicas because
every replica subscribes to the same Redis channels.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis
from fastapi import WebSocket

from app.core.realtime import user_channel

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Maps user_id (str) → active WebSocket.
    One connection per user. New connection replaces old.
    """

    def __init__(self) -> None:
        self._active: dict[str, WebSocket] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        previous = self._active.get(user_id)
        self._active[user_id] = websocket
        if previous is not None and previous is not websocket:
            try:
                await previous.close(code=4000)
            except RuntimeError:
                # Already closed by the client
                pass
        logger.info("WebSocket connected: user_id=%s", user_id)

    def disconnect(self, user_id: str, websocket: WebSocket | None = None) -> None:
        if websocket is not None and self._active.get(user_id) is not websocket:
            return
        self._active.pop(user_id, None)
        logger.info("WebSocket disconnected: user_id=%s", user_id)

    async def send_to_user(self, user_id: str, data: dict) -> None:
        """
        Send JSON payload to a connected user.
        Removes the connection on any send error.
        """
        websocket = self._active.get(user_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(data)
        except Exception as exc:
            logger.warning(
                "Failed to send to user_id=%s, removing connection: %s",
                user_id,
                exc,
            )
            self.disconnect(user_id)

    async def relay(self, user_id: str, redis: aioredis.Redis) -> None:
        """
        Forward change events from the user's Redis channel to their socket.

        Runs until cancelled. Malformed messages are skipped.
        """
        pubsub = redis.pubsub()
        await pubsub.subscribe(user_channel(user_id))
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    if user_id not in self._active:
                        return
                    continue
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed realtime message for user_id=%s", user_id)
                    continue
                await self.send_to_user(user_id, {"type": "change", **payload})
        finally:
            await pubsub.unsubscribe(user_channel(user_id))
            await pubsub.aclose()


# Module-level singleton, imported by the realtime router
manager = ConnectionManager()
