"""
Task board tests: stages, positions, approval and move notifications.
"""

import uuid

import pytest
from sqlalchemy import func, select

from app.models.notification import AttentionItem, AttentionPriority, AttentionType
from app.models.project import Project
from app.models.task import Task
from app.models.user import User
from app.services.fanout_service import FanoutService
from helpers import (
    API,
    auth,
    create_project,
    create_task,
    move_task,
    notifications,
    project_with_members,
    register,
)


def of_type(items: list[dict], kind: str) -> list[dict]:
    return [item for item in items if item["type"] == kind]


async def get_project(client, token: str, project_id: str) -> dict:
    resp = await client.get(f"{API}/projects/{project_id}", headers=auth(token))
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Creation and positions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_positions_append_within_stage(client):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])

    first = await create_task(client, owner["token"], project["id"], "One")
    second = await create_task(client, owner["token"], project["id"], "Two")
    other = await create_task(client, owner["token"], project["id"], "Three", stage_id="review")

    assert first["position"] == 0
    assert second["position"] == 1
    assert other["position"] == 0
    assert first["stage_id"] == "todo"
    assert first["status"] == "todo"


@pytest.mark.asyncio
async def test_unknown_stage_on_create_falls_back_to_first(client):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])
    task = await create_task(client, owner["token"], project["id"], stage_id="nowhere")
    assert task["stage_id"] == "todo"


@pytest.mark.asyncio
async def test_viewer_cannot_create_task(client):
    project, owner, users = await project_with_members(client, vic="viewer")
    resp = await client.post(
        f"{API}/tasks",
        json={"project_id": project["id"], "title": "Nope"},
        headers=auth(users["vic"]["token"]),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_ROLE"


@pytest.mark.asyncio
async def test_custom_workflow(client):
    owner = await register(client, "alice@example.com")
    project = await create_project(
        client,
        owner["token"],
        workflow_stages=[
            {"id": "backlog", "name": "Backlog"},
            {"id": "shipped", "name": "Shipped"},
        ],
    )
    task = await create_task(client, owner["token"], project["id"])
    assert task["stage_id"] == "backlog"

    resp = await move_task(client, owner["token"], task["id"], "shipped")
    assert resp.status_code == 200
    assert resp.json()["status"] == "done"
    assert resp.json()["approval_status"] == "approved"


# ---------------------------------------------------------------------------
# Stage integrity
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_move_to_unknown_stage_rejected(client):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])
    task = await create_task(client, owner["token"], project["id"])

    resp = await move_task(client, owner["token"], task["id"], "archived")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_STAGE"

    resp = await client.get(f"{API}/tasks/{task['id']}", headers=auth(owner["token"]))
    assert resp.json()["stage_id"] == "todo"


@pytest.mark.asyncio
async def test_cannot_remove_stage_that_holds_tasks(client, db_session):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])
    await create_task(client, owner["token"], project["id"], stage_id="review")

    resp = await client.patch(
        f"{API}/projects/{project['id']}",
        json={"workflow_stages": [{"id": "todo", "name": "To Do"}, {"id": "done", "name": "Done"}]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "STAGE_IN_USE"

    stored = (await db_session.execute(select(Project))).scalar_one()
    stage_ids = {stage["id"] for stage in stored.workflow_stages}
    tasks = (await db_session.execute(select(Task))).scalars().all()
    assert all(task.stage_id in stage_ids for task in tasks)


@pytest.mark.asyncio
async def test_empty_workflow_rejected(client):
    owner = await register(client, "alice@example.com")
    resp = await client.post(
        f"{API}/projects", json={"name": "Empty", "workflow_stages": []}, headers=auth(owner["token"])
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Approval and completion counts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_completion_counts_only_approved_done_tasks(client):
    project, owner, users = await project_with_members(client, bob="member")
    await client.patch(
        f"{API}/projects/{project['id']}", json={"requires_approval": True}, headers=auth(owner["token"])
    )
    pending = await create_task(client, owner["token"], project["id"], "Pending")
    approved = await create_task(client, owner["token"], project["id"], "Approved")
    await create_task(client, owner["token"], project["id"], "Open")

    resp = await move_task(client, users["bob"]["token"], pending["id"], "done")
    assert resp.json()["approval_status"] == "pending"
    await move_task(client, users["bob"]["token"], approved["id"], "done")

    resp = await client.post(f"{API}/tasks/{approved['id']}/approve", headers=auth(users["bob"]["token"]))
    assert resp.status_code == 403

    resp = await client.post(f"{API}/tasks/{approved['id']}/approve", headers=auth(owner["token"]))
    assert resp.status_code == 200, resp.text
    assert resp.json()["approval_status"] == "approved"
    assert resp.json()["completed_at"] is not None

    stats = await get_project(client, owner["token"], project["id"])
    assert stats["tasks_count"] == 3
    assert stats["completed_tasks_count"] == 1
    assert stats["pending_approval_count"] == 1


@pytest.mark.asyncio
async def test_reject_returns_task_and_notifies_creator(client):
    project, owner, users = await project_with_members(client, bob="member")
    await client.patch(
        f"{API}/projects/{project['id']}", json={"requires_approval": True}, headers=auth(owner["token"])
    )
    task = await create_task(client, users["bob"]["token"], project["id"], "Polish")
    await move_task(client, users["bob"]["token"], task["id"], "done")

    resp = await client.post(
        f"{API}/tasks/{task['id']}/reject",
        json={"reason": "Needs tests", "return_stage_id": "in_progress"},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["stage_id"] == "in_progress"
    assert body["approval_status"] == "rejected"
    assert body["rejection_reason"] == "Needs tests"

    (note,) = of_type(await notifications(client, users["bob"]["token"]), "task_rejected")
    assert note["data"]["reason"] == "Needs tests"

    stats = await get_project(client, owner["token"], project["id"])
    assert stats["completed_tasks_count"] == 0


@pytest.mark.asyncio
async def test_leaving_done_clears_approval(client):
    owner = await register(client, "alice@example.com")
    project = await create_project(client, owner["token"])
    task = await create_task(client, owner["token"], project["id"])

    resp = await move_task(client, owner["token"], task["id"], "done")
    assert resp.json()["approval_status"] == "approved"
    assert (await get_project(client, owner["token"], project["id"]))["completed_tasks_count"] == 1

    resp = await move_task(client, owner["token"], task["id"], "review")
    assert resp.json()["approval_status"] == "none"
    assert resp.json()["completed_at"] is None
    assert (await get_project(client, owner["token"], project["id"]))["completed_tasks_count"] == 0


# ---------------------------------------------------------------------------
# Move notifications
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_move_by_member_notifies_owner_once(client):
    project, owner, users = await project_with_members(client, dan="member")
    dan = users["dan"]
    task = await create_task(client, owner["token"], project["id"], "Deploy")

    resp = await move_task(client, dan["token"], task["id"], "review")
    assert resp.status_code == 200, resp.text

    (note,) = of_type(await notifications(client, owner["token"]), "task_moved")
    data = note["data"]
    assert data["moved_by_role"] == "Member"
    assert data["old_stage_name"] == "To Do"
    assert data["new_stage_name"] == "Review"
    assert data["moved_by"] == dan["id"]
    assert of_type(await notifications(client, dan["token"]), "task_moved") == []


@pytest.mark.asyncio
async def test_move_by_owner_notifies_nobody(client):
    project, owner, users = await project_with_members(client, dan="member")
    task = await create_task(client, owner["token"], project["id"])
    await move_task(client, owner["token"], task["id"], "in_progress")

    assert of_type(await notifications(client, owner["token"]), "task_moved") == []
    assert of_type(await notifications(client, users["dan"]["token"]), "task_moved") == []


@pytest.mark.asyncio
async def test_same_stage_update_is_not_a_move(client):
    project, owner, users = await project_with_members(client, dan="member")
    task = await create_task(client, owner["token"], project["id"])
    resp = await move_task(client, users["dan"]["token"], task["id"], "todo")
    assert resp.status_code == 200
    assert of_type(await notifications(client, owner["token"]), "task_moved") == []


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_only_new_assignees_notified(client):
    project, owner, users = await project_with_members(client, bob="member", carol="member")
    bob, carol = users["bob"], users["carol"]
    task = await create_task(client, owner["token"], project["id"], assignee_ids=[bob["id"]])

    resp = await client.patch(
        f"{API}/tasks",
        json={"id": task["id"], "assignee_ids": [bob["id"], carol["id"], owner["id"]]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 200, resp.text
    assert sorted(resp.json()["assignee_ids"]) == sorted([bob["id"], carol["id"], owner["id"]])

    assert len(of_type(await notifications(client, bob["token"]), "task_assigned")) == 1
    assert len(of_type(await notifications(client, carol["token"]), "task_assigned")) == 1
    assert of_type(await notifications(client, owner["token"]), "task_assigned") == []


@pytest.mark.asyncio
async def test_non_member_cannot_be_assigned(client):
    owner = await register(client, "alice@example.com")
    outsider = await register(client, "eve@example.com")
    project = await create_project(client, owner["token"])
    resp = await client.post(
        f"{API}/tasks",
        json={"project_id": project["id"], "title": "X", "assignee_ids": [outsider["id"]]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_ASSIGNEE"


# ---------------------------------------------------------------------------
# Attention item dedup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_duplicate_attention_item_is_ignored(client, db_session):
    owner = await register(client, "alice@example.com")
    user_id = uuid.UUID(owner["id"])
    assert (await db_session.execute(select(User).where(User.id == user_id))).scalar_one()

    fanout = FanoutService(db_session)
    fields = dict(
        user_id=user_id,
        attention_type=AttentionType.assignment,
        priority=AttentionPriority.normal,
        title="You were assigned",
        dedup_key="assignment:abc",
    )
    first = await fanout.insert_attention_item(**fields)
    second = await fanout.insert_attention_item(**fields)
    await db_session.commit()

    assert first is not None
    assert second is None
    count = await db_session.execute(
        select(func.count()).select_from(AttentionItem).where(AttentionItem.dedup_key == "assignment:abc")
    )
    assert count.scalar_one() == 1
