"""
Request helpers shared by the API tests.
"""

import httpx

API = "/api/v1"


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

async def register(
    client: httpx.AsyncClient,
    email: str,
    password: str = "password123",
    full_name: str | None = None,
) -> dict:
    """Register and return {"token", "id", "email"}."""
    payload = {"email": email, "password": password}
    if full_name:
        payload["full_name"] = full_name
    resp = await client.post(f"{API}/auth/register", json=payload)
    assert resp.status_code == 201, f"Register failed: {resp.text}"
    token = resp.json()["access_token"]

    me = await client.get(f"{API}/auth/me", headers=auth(token))
    assert me.status_code == 200, f"Me failed: {me.text}"
    return {"token": token, "id": me.json()["id"], "email": email}


async def login(client: httpx.AsyncClient, email: str, password: str = "password123") -> str:
    resp = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return resp.json()["access_token"]


# ---------------------------------------------------------------------------
# Projects and members
# ---------------------------------------------------------------------------

async def create_project(
    client: httpx.AsyncClient, token: str, name: str = "Launch", **fields
) -> dict:
    resp = await client.post(f"{API}/projects", json={"name": name, **fields}, headers=auth(token))
    assert resp.status_code == 201, f"Create project failed: {resp.text}"
    return resp.json()


async def add_member(
    client: httpx.AsyncClient, token: str, project_id: str, email: str, role: str = "member"
) -> dict:
    resp = await client.post(
        f"{API}/projects/{project_id}/members",
        json={"email": email, "role": role},
        headers=auth(token),
    )
    assert resp.status_code == 201, f"Add member failed: {resp.text}"
    return resp.json()


async def change_role(
    client: httpx.AsyncClient, token: str, project_id: str, user_id: str, role: str
) -> httpx.Response:
    return await client.patch(
        f"{API}/projects/{project_id}/members",
        json={"user_id": user_id, "role": role},
        headers=auth(token),
    )


async def member_roles(client: httpx.AsyncClient, token: str, project_id: str) -> dict[str, str]:
    resp = await client.get(f"{API}/projects/{project_id}/members", headers=auth(token))
    assert resp.status_code == 200, f"List members failed: {resp.text}"
    return {m["user_id"]: m["role"] for m in resp.json()["data"]}


async def project_with_members(client: httpx.AsyncClient, **roles: str) -> tuple[dict, dict, dict]:
    """
    Owner "alice" plus one registered user per keyword, added with that role.

    Returns (project, owner, users-by-name).
    """
    owner = await register(client, "alice@example.com", full_name="Alice Owner")
    project = await create_project(client, owner["token"])
    users = {}
    for name, role in roles.items():
        user = await register(client, f"{name}@example.com")
        await add_member(client, owner["token"], project["id"], user["email"], role)
        users[name] = user
    return project, owner, users


# ---------------------------------------------------------------------------
# Tasks and comments
# ---------------------------------------------------------------------------

async def create_task(
    client: httpx.AsyncClient, token: str, project_id: str, title: str = "Write docs", **fields
) -> dict:
    resp = await client.post(
        f"{API}/tasks",
        json={"project_id": project_id, "title": title, **fields},
        headers=auth(token),
    )
    assert resp.status_code == 201, f"Create task failed: {resp.text}"
    return resp.json()


async def move_task(
    client: httpx.AsyncClient, token: str, task_id: str, stage_id: str
) -> httpx.Response:
    return await client.patch(
        f"{API}/tasks", json={"id": task_id, "stage_id": stage_id}, headers=auth(token)
    )


async def post_comment(client: httpx.AsyncClient, token: str, task_id: str, content: str) -> dict:
    resp = await client.post(
        f"{API}/comments", json={"task_id": task_id, "content": content}, headers=auth(token)
    )
    assert resp.status_code == 201, f"Create comment failed: {resp.text}"
    return resp.json()


async def edit_comment(client: httpx.AsyncClient, token: str, comment_id: str, content: str) -> dict:
    resp = await client.patch(
        f"{API}/comments", json={"id": comment_id, "content": content}, headers=auth(token)
    )
    assert resp.status_code == 200, f"Edit comment failed: {resp.text}"
    return resp.json()


async def notifications(client: httpx.AsyncClient, token: str) -> list[dict]:
    resp = await client.get(f"{API}/notifications", headers=auth(token))
    assert resp.status_code == 200, f"List notifications failed: {resp.text}"
    return resp.json()["data"]


async def inbox(client: httpx.AsyncClient, token: str) -> list[dict]:
    resp = await client.get(f"{API}/inbox", headers=auth(token))
    assert resp.status_code == 200, f"List inbox failed: {resp.text}"
    return resp.json()["items"]
