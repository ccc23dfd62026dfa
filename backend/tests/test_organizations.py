"""
Organization tests: slugs, membership, announcements and org-scoped projects.
"""

import pytest

from app.services.organization_service import slugify
from helpers import API, add_member, auth, create_project, member_roles, notifications, register


async def create_org(client, token: str, name: str = "Acme Corp") -> dict:
    resp = await client.post(f"{API}/organizations", json={"name": name}, headers=auth(token))
    assert resp.status_code == 201, f"Create org failed: {resp.text}"
    return resp.json()


async def add_org_member(client, token: str, org_id: str, email: str, role: str = "member"):
    return await client.post(
        f"{API}/organizations/{org_id}/members",
        json={"email": email, "role": role},
        headers=auth(token),
    )


# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "name, slug",
    [
        ("Acme Corp", "acme-corp"),
        ("  Hello,   World!  ", "hello-world"),
        ("a -- b", "a-b"),
        ("Ünïcode Team", "ncode-team"),
        ("x" * 80, "x" * 50),
    ],
)
def test_slugify(name, slug):
    assert slugify(name) == slug


@pytest.mark.asyncio
async def test_slug_collisions_get_suffix(client):
    owner = await register(client, "alice@example.com")
    first = await create_org(client, owner["token"])
    second = await create_org(client, owner["token"])
    third = await create_org(client, owner["token"])
    assert [first["slug"], second["slug"], third["slug"]] == ["acme-corp", "acme-corp-1", "acme-corp-2"]
    assert first["role"] == "owner"


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_org_member_must_have_account(client):
    owner = await register(client, "alice@example.com")
    org = await create_org(client, owner["token"])
    resp = await add_org_member(client, owner["token"], org["id"], "ghost@example.com")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_org_sole_owner_protected(client):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    org = await create_org(client, owner["token"])
    resp = await add_org_member(client, owner["token"], org["id"], bob["email"], "admin")
    assert resp.status_code == 201

    resp = await client.delete(
        f"{API}/organizations/{org['id']}/members",
        params={"user_id": owner["id"]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "LAST_OWNER"

    resp = await client.patch(
        f"{API}/organizations/{org['id']}/members",
        json={"user_id": owner["id"], "role": "viewer"},
        headers=auth(bob["token"]),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "OWNER_PROTECTED"


@pytest.mark.asyncio
async def test_org_ownership_transfer(client):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    org = await create_org(client, owner["token"])
    await add_org_member(client, owner["token"], org["id"], bob["email"])

    resp = await client.patch(
        f"{API}/organizations/{org['id']}/members",
        json={"user_id": bob["id"], "role": "owner"},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 200, resp.text

    resp = await client.get(f"{API}/organizations/{org['id']}/members", headers=auth(bob["token"]))
    roles = {m["user_id"]: m["role"] for m in resp.json()["data"]}
    assert roles == {owner["id"]: "admin", bob["id"]: "owner"}


@pytest.mark.asyncio
async def test_non_member_cannot_see_org(client):
    owner = await register(client, "alice@example.com")
    eve = await register(client, "eve@example.com")
    org = await create_org(client, owner["token"])

    resp = await client.get(f"{API}/organizations/{org['id']}", headers=auth(eve["token"]))
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "ORGANIZATION_NOT_FOUND"


# ---------------------------------------------------------------------------
# Org-scoped projects
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_project_in_org_requires_membership(client):
    owner = await register(client, "alice@example.com")
    eve = await register(client, "eve@example.com")
    org = await create_org(client, owner["token"])

    resp = await client.post(
        f"{API}/projects",
        json={"name": "Sneaky", "organization_id": org["id"]},
        headers=auth(eve["token"]),
    )
    assert resp.status_code == 404

    project = await create_project(client, owner["token"], organization_id=org["id"])
    resp = await client.get(
        f"{API}/projects", params={"organization_id": org["id"]}, headers=auth(owner["token"])
    )
    assert [p["id"] for p in resp.json()["data"]] == [project["id"]]


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_announcement_notifies_other_members(client, enqueued):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    carol = await register(client, "carol@example.com")
    org = await create_org(client, owner["token"])
    await add_org_member(client, owner["token"], org["id"], bob["email"], "admin")
    await add_org_member(client, owner["token"], org["id"], carol["email"])

    resp = await client.put(
        f"{API}/organizations/{org['id']}/slack",
        json={"webhook_url": "https://hooks.slack.com/services/T/B/X", "notify_on_announcement": True},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 200, resp.text

    resp = await client.post(
        f"{API}/organizations/{org['id']}/announcements",
        json={"title": "Offsite", "content": "Friday at noon"},
        headers=auth(bob["token"]),
    )
    assert resp.status_code == 201, resp.text

    for user in (owner, carol):
        (note,) = [n for n in await notifications(client, user["token"]) if n["type"] == "new_announcement"]
        assert note["data"]["organization_id"] == org["id"]
        assert note["project_id"] is None
    assert await notifications(client, bob["token"]) == []

    posted = [args for args, _ in enqueued.named("post_slack_message") if args[2] == "announcement"]
    assert len(posted) == 1

    resp = await client.get(f"{API}/organizations/{org['id']}/announcements", headers=auth(carol["token"]))
    assert [a["title"] for a in resp.json()["data"]] == ["Offsite"]


@pytest.mark.asyncio
async def test_member_cannot_post_announcement(client):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    org = await create_org(client, owner["token"])
    await add_org_member(client, owner["token"], org["id"], bob["email"])

    resp = await client.post(
        f"{API}/organizations/{org['id']}/announcements",
        json={"title": "Hi", "content": "Hello"},
        headers=auth(bob["token"]),
    )
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Project members must belong to the organization
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_outsider_cannot_join_org_project(client):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    org = await create_org(client, owner["token"])
    project = await create_project(client, owner["token"], organization_id=org["id"])

    resp = await client.post(
        f"{API}/projects/{project['id']}/members",
        json={"email": bob["email"], "role": "member"},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "NOT_ORG_MEMBER"
    assert bob["id"] not in await member_roles(client, owner["token"], project["id"])

    await add_org_member(client, owner["token"], org["id"], bob["email"])
    added = await add_member(client, owner["token"], project["id"], bob["email"])
    assert added["status"] == "added"


@pytest.mark.asyncio
async def test_invitation_to_org_project_needs_org_membership(client):
    owner = await register(client, "alice@example.com")
    org = await create_org(client, owner["token"])
    project = await create_project(client, owner["token"], organization_id=org["id"])
    invited = await add_member(client, owner["token"], project["id"], "dan@example.com")
    assert invited["status"] == "invited"

    dan = await register(client, "dan@example.com")
    resp = await client.post(
        f"{API}/invitations/accept",
        json={"invitation_id": invited["invitation_id"]},
        headers=auth(dan["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "NOT_ORG_MEMBER"
    assert dan["id"] not in await member_roles(client, owner["token"], project["id"])

    await add_org_member(client, owner["token"], org["id"], dan["email"])
    resp = await client.post(
        f"{API}/invitations/accept",
        json={"invitation_id": invited["invitation_id"]},
        headers=auth(dan["token"]),
    )
    assert resp.status_code == 200, resp.text
    assert (await member_roles(client, owner["token"], project["id"]))[dan["id"]] == "member"


@pytest.mark.asyncio
async def test_leaving_org_drops_its_project_memberships(client):
    owner = await register(client, "alice@example.com")
    bob = await register(client, "bob@example.com")
    org = await create_org(client, owner["token"])
    project = await create_project(client, owner["token"], organization_id=org["id"])
    elsewhere = await create_project(client, owner["token"], name="Personal")
    await add_org_member(client, owner["token"], org["id"], bob["email"])
    await add_member(client, owner["token"], project["id"], bob["email"])
    await add_member(client, owner["token"], elsewhere["id"], bob["email"])

    resp = await client.get(f"{API}/projects/{project['id']}", headers=auth(bob["token"]))
    assert resp.status_code == 200

    resp = await client.delete(
        f"{API}/organizations/{org['id']}/members",
        params={"user_id": bob["id"]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 204, resp.text

    resp = await client.get(f"{API}/projects/{project['id']}", headers=auth(bob["token"]))
    assert resp.status_code == 404
    assert bob["id"] not in await member_roles(client, owner["token"], project["id"])

    resp = await client.get(f"{API}/projects/{elsewhere['id']}", headers=auth(bob["token"]))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_last_project_owner_cannot_leave_org(client):
    owner = await register(client, "alice@example.com")
    carol = await register(client, "carol@example.com")
    org = await create_org(client, owner["token"])
    await add_org_member(client, owner["token"], org["id"], carol["email"], "admin")
    project = await create_project(client, carol["token"], organization_id=org["id"])

    resp = await client.delete(
        f"{API}/organizations/{org['id']}/members",
        params={"user_id": carol["id"]},
        headers=auth(owner["token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "LAST_OWNER"
    assert (await member_roles(client, carol["token"], project["id"]))[carol["id"]] == "owner"
