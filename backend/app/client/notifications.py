"""
Client-side notification list with optimistic read state.

Toggling read/unread, marking everything read and clearing a notification
change the local list first and notify listeners synchronously. The backend
write is scheduled in the background and never awaited by the caller. A
failed write is logged and the local state is left as the user set it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

import httpx

from app.client.realtime import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class NotificationBackend(Protocol):
    async def fetch(self, access_token: str) -> list[dict[str, Any]]: ...

    async def set_read(self, access_token: str, notification_id: str, read: bool) -> None: ...

    async def mark_all_read(self, access_token: str) -> None: ...

    async def delete(self, access_token: str, notification_id: str) -> None: ...


Listener = Callable[[list[dict[str, Any]]], None]
TokenGetter = Callable[[], str | None]


def _is_read(row: dict[str, Any]) -> bool:
    # Change-feed rows carry read_at; API responses carry is_read
    if "is_read" in row:
        return bool(row["is_read"])
    return row.get("read_at") is not None


class NotificationStore:
    """
    The signed-in user's notifications, newest first.

    `access_token` is called for every backend request so the store follows
    token refreshes made by the identity store.
    """

    def __init__(self, backend: NotificationBackend, access_token: TokenGetter) -> None:
        self._backend = backend
        self._access_token = access_token
        self._items: list[dict[str, Any]] = []
        self._listeners: list[Listener] = []
        self._writes: set[asyncio.Task[None]] = set()

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    @property
    def items(self) -> list[dict[str, Any]]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self._items if not item["is_read"])

    def get(self, notification_id: str) -> dict[str, Any] | None:
        for item in self._items:
            if item["id"] == notification_id:
                return item
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        snapshot = self.items
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Notification listener failed")

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    async def load(self) -> list[dict[str, Any]]:
        """Replace the local list with the server's. Errors propagate."""
        token = self._access_token()
        if not token:
            self.reset()
            return []
        rows = await self._backend.fetch(token)
        self._items = [{**row, "id": str(row["id"]), "is_read": _is_read(row)} for row in rows]
        self._changed()
        return self.items

    def reset(self) -> None:
        """Drop everything, e.g. on sign-out."""
        self._items = []
        self._changed()

    # -----------------------------------------------------------------------
    # Optimistic updates
    # -----------------------------------------------------------------------

    def mark_read(self, notification_id: str) -> bool:
        return self.set_read(notification_id, True)

    def mark_unread(self, notification_id: str) -> bool:
        return self.set_read(notification_id, False)

    def toggle_read(self, notification_id: str) -> bool:
        item = self.get(notification_id)
        if item is None:
            return False
        return self.set_read(notification_id, not item["is_read"])

    def set_read(self, notification_id: str, read: bool) -> bool:
        """Returns False when the notification is not in the local list."""
        item = self.get(notification_id)
        if item is None:
            return False
        if item["is_read"] != read:
            item["is_read"] = read
            self._changed()
        self._send(
            f"set_read({notification_id}, {read})",
            lambda token: self._backend.set_read(token, notification_id, read),
        )
        return True

    def mark_all_read(self) -> int:
        """Returns how many notifications flipped locally."""
        flipped = 0
        for item in self._items:
            if not item["is_read"]:
                item["is_read"] = True
                flipped += 1
        if flipped:
            self._changed()
        self._send("mark_all_read", self._backend.mark_all_read)
        return flipped

    def clear(self, notification_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item["id"] != notification_id]
        if len(self._items) == before:
            return False
        self._changed()
        self._send(
            f"delete({notification_id})",
            lambda token: self._backend.delete(token, notification_id),
        )
        return True

    def _send(self, label: str, write: Callable[[str], Any]) -> None:
        token = self._access_token()
        if not token:
            logger.warning("Skipping notification %s: not signed in", label)
            return
        task = asyncio.ensure_future(self._run(label, write, token))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _run(self, label: str, write: Callable[[str], Any], token: str) -> None:
        try:
            await write(token)
        except Exception:
            logger.exception("Notification %s failed; keeping local state", label)

    async def drain(self) -> None:
        """Wait for background writes. For shutdown and tests."""
        while self._writes:
            await asyncio.gather(*list(self._writes))

    # -----------------------------------------------------------------------
    # Realtime
    # -----------------------------------------------------------------------

    def apply_change(self, event: ChangeEvent) -> None:
        """Handler for `notifications` change events on the user's stream."""
        row = event.row
        if "id" not in row:
            return
        notification_id = str(row["id"])

        if event.event_type == "DELETE":
            before = len(self._items)
            self._items = [item for item in self._items if item["id"] != notification_id]
            if len(self._items) != before:
                self._changed()
            return

        incoming = {**row, "id": notification_id, "is_read": _is_read(row)}
        existing = self.get(notification_id)
        if existing is None:
            self._items.insert(0, incoming)
        else:
            existing.update(incoming)
        self._changed()


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------

class HttpNotificationBackend:
    """NotificationBackend backed by the Teamboard notifications API."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=DEFAULT_TIMEOUT_SECONDS)

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def fetch(self, access_token: str) -> list[dict[str, Any]]:
        response = await self._client.get(
            "/api/v1/notifications", params={"limit": 100}, headers=self._headers(access_token)
        )
        response.raise_for_status()
        return response.json()["data"]

    async def set_read(self, access_token: str, notification_id: str, read: bool) -> None:
        response = await self._client.patch(
            f"/api/v1/notifications/{notification_id}",
            json={"read": read},
            headers=self._headers(access_token),
        )
        response.raise_for_status()

    async def mark_all_read(self, access_token: str) -> None:
        response = await self._client.post(
            "/api/v1/notifications/mark-all-read", headers=self._headers(access_token)
        )
        response.raise_for_status()

    async def delete(self, access_token: str, notification_id: str) -> None:
        response = await self._client.delete(
            f"/api/v1/notifications/{notification_id}", headers=self._headers(access_token)
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
