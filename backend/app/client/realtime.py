"""
Client-side realtime router.

One change-stream subscription per signed-in user, demultiplexed to
handlers registered by table and an optional `column=eq.value` filter.
Unsubscribing a handler never tears down the stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as aioredis

from app.client.identity_store import AuthState, AuthStatus, IdentityStore

logger = logging.getLogger(__name__)

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CLOSED = "CLOSED"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_ERROR = "CHANNEL_ERROR"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str | None = None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> ChangeEvent:
        return cls(
            table=message["table"],
            event_type=message["eventType"],
            new=message.get("new") or {},
            old=message.get("old") or {},
            commit_timestamp=message.get("commit_timestamp"),
        )

    @property
    def row(self) -> dict[str, Any]:
        """Row a filter is evaluated against: old for DELETE, new otherwise."""
        return self.old if self.event_type == "DELETE" else self.new


def parse_filter(expression: str) -> tuple[str, str]:
    """`project_id=eq.123` -> ("project_id", "123")."""
    column, sep, rest = expression.partition("=")
    operator, dot, value = rest.partition(".")
    if not sep or not dot or operator != "eq" or not column:
        raise ValueError(f"Unsupported filter expression: {expression!r}")
    return column.strip(), value


Handler = Callable[[ChangeEvent], None]
EventSink = Callable[[ChangeEvent], None]
StatusSink = Callable[[str], None]


class RealtimeTransport(Protocol):
    async def start(self, user_id: str, on_event: EventSink, on_status: StatusSink) -> None: ...

    async def stop(self) -> None: ...


class RealtimeRouter:
    """Routes change events from a single per-user stream to component handlers."""

    def __init__(self, transport: RealtimeTransport) -> None:
        self._transport = transport
        self._handlers: dict[tuple[str, tuple[str, str] | None], list[Handler]] = defaultdict(list)
        self.user_id: str | None = None
        self.connected = False

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------

    async def connect(self, user_id: str) -> None:
        """Open the stream for `user_id`. Same user is a no-op; a new user replaces it."""
        if self.user_id == user_id:
            return
        if self.user_id is not None:
            await self.disconnect()
        self.user_id = user_id
        await self._transport.start(user_id, self.dispatch, self._on_status)
        logger.info("Realtime stream opened for user_id=%s", user_id)

    async def disconnect(self) -> None:
        if self.user_id is None:
            return
        previous, self.user_id = self.user_id, None
        await self._transport.stop()
        self.connected = False
        logger.info("Realtime stream closed for user_id=%s", previous)

    def _on_status(self, status: str) -> None:
        # Handlers stay registered; reconnecting is the transport's job
        self.connected = status == STATUS_SUBSCRIBED
        if not self.connected:
            logger.info("Realtime stream status: %s", status)

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------

    def subscribe(
        self, table: str, handler: Handler, filter: str | None = None
    ) -> Callable[[], None]:
        key = (table, parse_filter(filter) if filter else None)
        self._handlers[key].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[key]

        return unsubscribe

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver one event. Returns how many handlers ran."""
        matched: list[Handler] = list(self._handlers.get((event.table, None), ()))
        row = event.row
        for (table, condition), handlers in list(self._handlers.items()):
            if table != event.table or condition is None:
                continue
            column, value = condition
            if column in row and str(row[column]) == value:
                matched.extend(handlers)

        for handler in matched:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Realtime handler failed for %s %s", event.table, event.event_type
                )
        return len(matched)


# ---------------------------------------------------------------------------
# Redis transport
# ---------------------------------------------------------------------------

class RedisChangeStream:
    """Reads a user's change events from their Redis pub/sub channel."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str = "realtime:user") -> None:
        self._redis = redis
        self._prefix = channel_prefix
        self._pubsub: Any = None
        self._task: asyncio.Task[None] | None = None

    def channel(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def start(self, user_id: str, on_event: EventSink, on_status: StatusSink) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel(user_id))
        on_status(STATUS_SUBSCRIBED)
        self._task = asyncio.create_task(self._read(on_event, on_status))

    async def _read(self, on_event: EventSink, on_status: StatusSink) -> None:
        try:
            while True:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message is None:
                    continue
                try:
                    event = ChangeEvent.from_message(json.loads(message["data"]))
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping malformed realtime message")
                    continue
                on_event(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Realtime stream failed")
            on_status(STATUS_ERROR)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None


# ---------------------------------------------------------------------------
# Identity binding
# ---------------------------------------------------------------------------

def bind_identity(router: RealtimeRouter, store: IdentityStore) -> Callable[[], None]:
    """
    Tie the stream to the auth lifecycle: open on authentication, reopen on
    user change, close on sign-out. Returns the unsubscribe function.
    """
    pending: set[asyncio.Task[None]] = set()

    def schedule(coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    def on_change(state: AuthState) -> None:
        if state.status == AuthStatus.authenticated and state.user_id:
            if router.user_id != state.user_id:
                schedule(router.connect(state.user_id))
        elif state.status == AuthStatus.unauthenticated and router.user_id is not None:
            schedule(router.disconnect())

    return store.subscribe(on_change)
