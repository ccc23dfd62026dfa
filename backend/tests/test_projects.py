"""
Project, profile and activity endpoint tests.
"""

import pytest

from helpers import API, auth, create_project, create_task, move_task, project_with_members, register


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_profile_update(client):
    alice = await register(client, "alice@example.com")
    resp = await client.patch(
        f"{API}/profile",
        json={"full_name": "Alice Owner", "timezone": "Europe/Berlin"},
        headers=auth(alice["token"]),
    )
    assert resp.status_code == 200, resp.text

    resp = await client.get(f"{API}/profile", headers=auth(alice["token"]))
    body = resp.json()
    assert body["full_name"] == "Alice Owner"
    assert body["timezone"] == "Europe/Berlin"
    assert body["display_name"] == "Alice Owner"


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_creator_is_owner_with_default_workflow(client):
    alice = await register(client, "alice@example.com")
    project = await create_project(client, alice["token"])
    assert [s["id"] for s in project["workflow_stages"]] == ["todo", "in_progress", "review", "done"]
    assert project["requires_approval"] is False

    resp = await client.get(f"{API}/projects/{project['id']}/members", headers=auth(alice["token"]))
    (member,) = resp.json()["data"]
    assert member["user_id"] == alice["id"]
    assert member["role"] == "owner"


@pytest.mark.asyncio
async def test_project_list_is_scoped_to_membership(client):
    alice = await register(client, "alice@example.com")
    eve = await register(client, "eve@example.com")
    await create_project(client, alice["token"], "Alpha")
    await create_project(client, eve["token"], "Eve's")

    resp = await client.get(f"{API}/projects", headers=auth(alice["token"]))
    assert [p["name"] for p in resp.json()["data"]] == ["Alpha"]


@pytest.mark.asyncio
async def test_only_owner_deletes_project(client):
    project, owner, users = await project_with_members(client, ada="admin")
    await create_task(client, owner["token"], project["id"])

    resp = await client.delete(f"{API}/projects/{project['id']}", headers=auth(users["ada"]["token"]))
    assert resp.status_code == 403

    resp = await client.delete(f"{API}/projects/{project['id']}", headers=auth(owner["token"]))
    assert resp.status_code == 204

    resp = await client.get(f"{API}/projects/{project['id']}", headers=auth(owner["token"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_member_cannot_update_settings(client):
    project, owner, users = await project_with_members(client, bob="member")
    resp = await client.patch(
        f"{API}/projects/{project['id']}", json={"name": "Renamed"}, headers=auth(users["bob"]["token"])
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_ROLE"


# ---------------------------------------------------------------------------
# Task deletion and activity
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_task_delete_needs_admin(client):
    project, owner, users = await project_with_members(client, bob="member")
    task = await create_task(client, users["bob"]["token"], project["id"])

    resp = await client.delete(f"{API}/tasks", params={"id": task["id"]}, headers=auth(users["bob"]["token"]))
    assert resp.status_code == 403

    resp = await client.delete(f"{API}/tasks", params={"id": task["id"]}, headers=auth(owner["token"]))
    assert resp.status_code == 204
    resp = await client.get(f"{API}/tasks/{task['id']}", headers=auth(owner["token"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_activity_records_task_lifecycle(client):
    alice = await register(client, "alice@example.com")
    project = await create_project(client, alice["token"])
    task = await create_task(client, alice["token"], project["id"], "Ship it")
    await move_task(client, alice["token"], task["id"], "review")
    await client.delete(f"{API}/tasks", params={"id": task["id"]}, headers=auth(alice["token"]))

    resp = await client.get(f"{API}/projects/{project['id']}/activity", headers=auth(alice["token"]))
    assert resp.status_code == 200, resp.text
    actions = {entry["action"] for entry in resp.json()["data"]}
    assert {"task_created", "task_moved", "task_deleted"} <= actions


@pytest.mark.asyncio
async def test_activity_hidden_from_outsiders(client):
    alice = await register(client, "alice@example.com")
    eve = await register(client, "eve@example.com")
    project = await create_project(client, alice["token"])
    resp = await client.get(f"{API}/projects/{project['id']}/activity", headers=auth(eve["token"]))
    assert resp.status_code == 404
