"""
Realtime tests: client-side routing and the server's per-user change feed.
"""

import asyncio
import json

import pytest

from app.client.identity_store import AuthEvent, IdentityStore, MemorySessionCache, Session
from app.client.realtime import (
    STATUS_CLOSED,
    STATUS_SUBSCRIBED,
    ChangeEvent,
    RealtimeRouter,
    RedisChangeStream,
    bind_identity,
    parse_filter,
)
from app.core.realtime import user_channel
from helpers import API, auth, create_project, create_task, project_with_members, register


class FakeTransport:
    def __init__(self):
        self.calls: list[tuple[str, str | None]] = []
        self.on_status = None

    async def start(self, user_id, on_event, on_status):
        self.calls.append(("start", user_id))
        self.on_status = on_status
        on_status(STATUS_SUBSCRIBED)

    async def stop(self):
        self.calls.append(("stop", None))


def task_event(event_type="UPDATE", **row) -> ChangeEvent:
    if event_type == "DELETE":
        return ChangeEvent(table="tasks", event_type=event_type, old=row)
    return ChangeEvent(table="tasks", event_type=event_type, new=row)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def test_parse_filter():
    assert parse_filter("project_id=eq.42") == ("project_id", "42")
    with pytest.raises(ValueError):
        parse_filter("project_id=gt.42")
    with pytest.raises(ValueError):
        parse_filter("project_id")


def test_change_event_from_message():
    event = ChangeEvent.from_message(
        {"table": "tasks", "eventType": "DELETE", "new": None, "old": {"id": "t1"}}
    )
    assert event.row == {"id": "t1"}
    assert event.new == {}


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_is_idempotent_per_user():
    transport = FakeTransport()
    router = RealtimeRouter(transport)

    await router.connect("u1")
    await router.connect("u1")
    assert transport.calls == [("start", "u1")]
    assert router.connected is True

    await router.connect("u2")
    assert transport.calls == [("start", "u1"), ("stop", None), ("start", "u2")]

    await router.disconnect()
    assert router.user_id is None
    assert router.connected is False


@pytest.mark.asyncio
async def test_handlers_survive_stream_status_changes():
    transport = FakeTransport()
    router = RealtimeRouter(transport)
    received = []
    router.subscribe("tasks", received.append)
    await router.connect("u1")

    transport.on_status(STATUS_CLOSED)
    assert router.connected is False
    transport.on_status(STATUS_SUBSCRIBED)
    assert router.connected is True

    router.dispatch(task_event(id="t1"))
    assert len(received) == 1


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def test_dispatch_by_table_and_filter():
    router = RealtimeRouter(FakeTransport())
    all_tasks, project_a, comments = [], [], []
    router.subscribe("tasks", all_tasks.append)
    router.subscribe("tasks", project_a.append, filter="project_id=eq.A")
    router.subscribe("comments", comments.append)

    assert router.dispatch(task_event(id="t1", project_id="A")) == 2
    assert router.dispatch(task_event(id="t2", project_id="B")) == 1
    assert len(all_tasks) == 2
    assert [e.new["id"] for e in project_a] == ["t1"]
    assert comments == []


def test_delete_matches_on_old_row():
    router = RealtimeRouter(FakeTransport())
    received = []
    router.subscribe("tasks", received.append, filter="project_id=eq.A")
    router.dispatch(task_event("DELETE", id="t1", project_id="A"))
    assert len(received) == 1


def test_filter_compares_string_values():
    router = RealtimeRouter(FakeTransport())
    received = []
    router.subscribe("tasks", received.append, filter="position=eq.3")
    router.dispatch(task_event(id="t1", position=3))
    assert len(received) == 1


def test_failing_handler_does_not_block_others():
    router = RealtimeRouter(FakeTransport())
    received = []

    def broken(event):
        raise RuntimeError("boom")

    router.subscribe("tasks", broken)
    router.subscribe("tasks", received.append)
    assert router.dispatch(task_event(id="t1")) == 2
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe_keeps_stream_open():
    transport = FakeTransport()
    router = RealtimeRouter(transport)
    received = []
    unsubscribe = router.subscribe("tasks", received.append)
    await router.connect("u1")

    unsubscribe()
    unsubscribe()
    assert router.dispatch(task_event(id="t1")) == 0
    assert transport.calls == [("start", "u1")]


# ---------------------------------------------------------------------------
# Identity binding
# ---------------------------------------------------------------------------

class StaticProvider:
    async def get_user(self, access_token):
        return {"id": "u1"}

    async def get_profile(self, access_token):
        return {"id": "u1"}

    async def sign_out(self, access_token):
        return None


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_stream_follows_auth_lifecycle():
    transport = FakeTransport()
    router = RealtimeRouter(transport)
    store = IdentityStore(StaticProvider(), MemorySessionCache())
    bind_identity(router, store)

    store.handle_auth_change(AuthEvent.SIGNED_IN, Session(access_token="a", user={"id": "u1"}))
    await settle()
    assert router.user_id == "u1"

    store.handle_auth_change(AuthEvent.USER_UPDATED, Session(access_token="b", user={"id": "u2"}))
    await settle()
    assert router.user_id == "u2"

    store.handle_auth_change(AuthEvent.SIGNED_OUT)
    await settle()
    assert router.user_id is None
    assert transport.calls == [("start", "u1"), ("stop", None), ("start", "u2"), ("stop", None)]


# ---------------------------------------------------------------------------
# Redis stream
# ---------------------------------------------------------------------------

async def wait_for(predicate, timeout: float = 3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


@pytest.mark.asyncio
async def test_redis_stream_delivers_events(redis):
    stream = RedisChangeStream(redis)
    router = RealtimeRouter(stream)
    received = []
    router.subscribe("tasks", received.append)
    await router.connect("u1")
    assert router.connected is True

    await redis.publish(stream.channel("u1"), "not json")
    await redis.publish(
        stream.channel("u1"),
        json.dumps({"table": "tasks", "eventType": "INSERT", "new": {"id": "t1"}, "old": {}}),
    )
    assert await wait_for(lambda: len(received) == 1)
    assert received[0].new == {"id": "t1"}

    await router.disconnect()


@pytest.mark.asyncio
async def test_commit_publishes_to_project_members(client, redis):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])

    pubsub = redis.pubsub()
    await pubsub.subscribe(user_channel(owner["id"]))
    await create_task(client, owner["token"], project["id"], "Realtime")

    messages = []
    for _ in range(20):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            messages.append(json.loads(message["data"]))
    await pubsub.unsubscribe()
    await pubsub.aclose()

    inserts = [m for m in messages if m["table"] == "tasks" and m["eventType"] == "INSERT"]
    assert len(inserts) == 1
    assert inserts[0]["new"]["title"] == "Realtime"
    assert inserts[0]["new"]["project_id"] == project["id"]
    assert inserts[0]["commit_timestamp"]


async def drain(pubsub, rounds: int = 20) -> list[dict]:
    messages = []
    for _ in range(rounds):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            messages.append(json.loads(message["data"]))
    await pubsub.unsubscribe()
    await pubsub.aclose()
    return messages


@pytest.mark.asyncio
async def test_project_delete_reaches_former_members(client, redis):
    project, owner, users = await project_with_members(client, bob="member")
    bob = users["bob"]

    pubsub = redis.pubsub()
    await pubsub.subscribe(user_channel(bob["id"]))
    resp = await client.delete(f"{API}/projects/{project['id']}", headers=auth(owner["token"]))
    assert resp.status_code == 204

    messages = await drain(pubsub)
    deletes = {(m["table"], m["eventType"]) for m in messages}
    assert ("projects", "DELETE") in deletes
    (project_event,) = [m for m in messages if m["table"] == "projects"]
    assert project_event["old"]["id"] == project["id"]

    member_rows = [m["old"] for m in messages if m["table"] == "project_members"]
    assert {row["user_id"] for row in member_rows} == {owner["id"], bob["id"]}
    assert all(m["eventType"] == "DELETE" for m in messages if m["table"] == "project_members")
