"""
Client notification store tests.

Local read state must change before the backend write finishes, and must
stay as the user set it when the write fails.
"""

import asyncio
import logging

import pytest

from app.client.notifications import HttpNotificationBackend, NotificationStore
from app.client.realtime import ChangeEvent
from helpers import create_task, notifications, post_comment, project_with_members

ROWS = [
    {"id": "n-2", "title": "You were mentioned", "is_read": False},
    {"id": "n-1", "title": "Task moved", "is_read": True},
]


class FakeBackend:
    def __init__(self, rows=ROWS, error: Exception | None = None):
        self.rows = [dict(row) for row in rows]
        self.error = error
        self.gate = asyncio.Event()
        self.gate.set()
        self.calls: list[tuple] = []

    async def fetch(self, access_token):
        return [dict(row) for row in self.rows]

    async def _write(self, *call):
        await self.gate.wait()
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    async def set_read(self, access_token, notification_id, read):
        await self._write("set_read", access_token, notification_id, read)

    async def mark_all_read(self, access_token):
        await self._write("mark_all_read", access_token)

    async def delete(self, access_token, notification_id):
        await self._write("delete", access_token, notification_id)


async def loaded_store(backend, token="token-1") -> NotificationStore:
    store = NotificationStore(backend, lambda: token)
    await store.load()
    return store


# ---------------------------------------------------------------------------
# Optimistic updates
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mark_read_is_local_before_write_completes():
    backend = FakeBackend()
    backend.gate.clear()
    store = await loaded_store(backend)
    seen = []
    store.subscribe(lambda items: seen.append(sum(not i["is_read"] for i in items)))

    assert store.unread_count == 1
    assert store.mark_read("n-2") is True
    assert store.get("n-2")["is_read"] is True
    assert store.unread_count == 0
    assert seen == [0]
    assert backend.calls == []

    backend.gate.set()
    await store.drain()
    assert backend.calls == [("set_read", "token-1", "n-2", True)]


@pytest.mark.asyncio
async def test_failed_write_keeps_local_state(caplog):
    backend = FakeBackend(error=RuntimeError("write rejected"))
    store = await loaded_store(backend)

    with caplog.at_level(logging.ERROR, logger="app.client.notifications"):
        store.toggle_read("n-1")
        await store.drain()

    assert store.get("n-1")["is_read"] is False
    assert store.unread_count == 2
    assert "keeping local state" in caplog.text


@pytest.mark.asyncio
async def test_mark_all_read_and_clear():
    backend = FakeBackend()
    store = await loaded_store(backend)

    assert store.mark_all_read() == 1
    assert store.unread_count == 0
    assert store.clear("n-1") is True
    assert [item["id"] for item in store.items] == ["n-2"]
    assert store.clear("n-1") is False

    await store.drain()
    assert [call[0] for call in backend.calls] == ["mark_all_read", "delete"]


@pytest.mark.asyncio
async def test_unknown_notification_sends_nothing():
    backend = FakeBackend()
    store = await loaded_store(backend)
    assert store.mark_read("missing") is False
    await store.drain()
    assert backend.calls == []


@pytest.mark.asyncio
async def test_signed_out_store_stays_local():
    backend = FakeBackend()
    token = {"value": "token-1"}
    store = NotificationStore(backend, lambda: token["value"])
    await store.load()

    token["value"] = None
    store.mark_read("n-2")
    await store.drain()
    assert store.get("n-2")["is_read"] is True
    assert backend.calls == []


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_change_events_update_the_list():
    store = await loaded_store(FakeBackend())

    store.apply_change(
        ChangeEvent(table="notifications", event_type="INSERT", new={"id": "n-3", "read_at": None})
    )
    assert store.items[0]["id"] == "n-3"
    assert store.unread_count == 2

    store.apply_change(
        ChangeEvent(
            table="notifications",
            event_type="UPDATE",
            new={"id": "n-3", "read_at": "2026-01-01T00:00:00+00:00"},
        )
    )
    assert store.get("n-3")["is_read"] is True

    store.apply_change(ChangeEvent(table="notifications", event_type="DELETE", old={"id": "n-2"}))
    assert store.get("n-2") is None
    assert store.unread_count == 0


# ---------------------------------------------------------------------------
# HTTP backend against the API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_http_backend_round_trip(client):
    project, alice, users = await project_with_members(client, bob="member")
    bob = users["bob"]
    task = await create_task(client, alice["token"], project["id"])
    await post_comment(client, alice["token"], task["id"], "@bob please look")

    store = NotificationStore(HttpNotificationBackend("http://test", client=client), lambda: bob["token"])
    await store.load()
    (mention,) = [item for item in store.items if item["type"] == "mention"]
    assert mention["is_read"] is False

    store.mark_read(mention["id"])
    await store.drain()
    (stored,) = [n for n in await notifications(client, bob["token"]) if n["id"] == mention["id"]]
    assert stored["is_read"] is True

    store.mark_unread(mention["id"])
    await store.drain()
    (stored,) = [n for n in await notifications(client, bob["token"]) if n["id"] == mention["id"]]
    assert stored["is_read"] is False
