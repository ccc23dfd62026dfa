"""
Policy table tests.

`authorize()` is pure, so these run without a database.
"""

import itertools
import uuid

import pytest

from app.core.authz import (
    INVITABLE_ROLES,
    Action,
    ResourceContext,
    authorize,
    role_level,
)
from app.models.member import MemberRole

CALLER = uuid.uuid4()
TARGET = uuid.uuid4()
PROJECT = uuid.uuid4()

ROLES = list(MemberRole)


def project(**kwargs) -> ResourceContext:
    return ResourceContext.project(PROJECT, **kwargs)


# ---------------------------------------------------------------------------
# Minimum roles
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "action, minimum",
    [
        (Action.READ, MemberRole.viewer),
        (Action.CREATE_TASK, MemberRole.member),
        (Action.EDIT_TASK, MemberRole.member),
        (Action.DELETE_TASK, MemberRole.admin),
        (Action.APPROVE_TASK, MemberRole.admin),
        (Action.CREATE_COMMENT, MemberRole.member),
        (Action.UPDATE_SETTINGS, MemberRole.admin),
        (Action.CONFIGURE_INTEGRATIONS, MemberRole.admin),
        (Action.POST_ANNOUNCEMENT, MemberRole.admin),
        (Action.DELETE, MemberRole.owner),
    ],
)
def test_minimum_role(action, minimum):
    for role in ROLES:
        decision = authorize(CALLER, role, action, project())
        assert decision.allowed == (role_level(role) >= role_level(minimum)), (action, role)
        if not decision.allowed:
            assert decision.code == "INSUFFICIENT_ROLE"
            assert decision.status_code == 403


def test_non_member_read_is_hidden():
    decision = authorize(CALLER, None, Action.READ, project())
    assert not decision.allowed
    assert decision.status_code == 404
    assert decision.code == "PROJECT_NOT_FOUND"


def test_non_member_write_is_forbidden():
    decision = authorize(CALLER, None, Action.CREATE_TASK, project())
    assert decision.status_code == 403
    assert decision.code == "NOT_A_MEMBER"

    org = ResourceContext.organization(uuid.uuid4())
    assert authorize(CALLER, None, Action.READ, org).code == "ORGANIZATION_NOT_FOUND"


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

def test_only_author_edits_comment():
    assert authorize(CALLER, MemberRole.member, Action.EDIT_COMMENT, project(author_id=CALLER)).allowed
    denied = authorize(CALLER, MemberRole.owner, Action.EDIT_COMMENT, project(author_id=TARGET))
    assert denied.code == "NOT_COMMENT_AUTHOR"


def test_comment_delete_author_or_admin():
    assert authorize(CALLER, MemberRole.member, Action.DELETE_COMMENT, project(author_id=CALLER)).allowed
    assert authorize(CALLER, MemberRole.admin, Action.DELETE_COMMENT, project(author_id=TARGET)).allowed
    assert not authorize(
        CALLER, MemberRole.member, Action.DELETE_COMMENT, project(author_id=TARGET)
    ).allowed


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

def test_invitable_roles_exclude_owner():
    assert MemberRole.owner not in INVITABLE_ROLES


def test_admin_cannot_invite_admin():
    decision = authorize(CALLER, MemberRole.admin, Action.INVITE_MEMBER, project(new_role=MemberRole.admin))
    assert decision.code == "ROLE_TOO_HIGH"
    assert authorize(
        CALLER, MemberRole.admin, Action.INVITE_MEMBER, project(new_role=MemberRole.member)
    ).allowed
    assert authorize(
        CALLER, MemberRole.owner, Action.INVITE_MEMBER, project(new_role=MemberRole.admin)
    ).allowed


# ---------------------------------------------------------------------------
# Role changes
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "caller_role, target_role, new_role",
    list(itertools.product(ROLES, ROLES, ROLES)),
)
def test_role_change_requires_strictly_higher_caller(caller_role, target_role, new_role):
    """Outside owner-on-owner, a change needs caller > target and caller > new role."""
    decision = authorize(
        CALLER,
        caller_role,
        Action.CHANGE_MEMBER_ROLE,
        project(target_user_id=TARGET, target_role=target_role, new_role=new_role, owner_count=2),
    )
    if decision.allowed and caller_role != MemberRole.owner:
        assert role_level(caller_role) > role_level(target_role)
        assert role_level(caller_role) > role_level(new_role)
    if caller_role == MemberRole.admin and new_role == MemberRole.owner:
        assert not decision.allowed


def test_admin_cannot_assign_owner():
    decision = authorize(
        CALLER,
        MemberRole.admin,
        Action.CHANGE_MEMBER_ROLE,
        project(target_user_id=TARGET, target_role=MemberRole.member, new_role=MemberRole.owner),
    )
    assert decision.code == "ROLE_TOO_HIGH"
    assert "equal to or higher than your own" in decision.reason


def test_admin_cannot_touch_owner():
    decision = authorize(
        CALLER,
        MemberRole.admin,
        Action.CHANGE_MEMBER_ROLE,
        project(target_user_id=TARGET, target_role=MemberRole.owner, new_role=MemberRole.viewer),
    )
    assert decision.code == "OWNER_PROTECTED"


def test_owner_cannot_demote_last_owner():
    decision = authorize(
        CALLER,
        MemberRole.owner,
        Action.CHANGE_MEMBER_ROLE,
        project(target_user_id=CALLER, target_role=MemberRole.owner, new_role=MemberRole.admin, owner_count=1),
    )
    assert decision.code == "LAST_OWNER"
    assert decision.status_code == 400

    assert authorize(
        CALLER,
        MemberRole.owner,
        Action.CHANGE_MEMBER_ROLE,
        project(target_user_id=TARGET, target_role=MemberRole.owner, new_role=MemberRole.admin, owner_count=2),
    ).allowed


def test_transfer_to_self_rejected():
    decision = authorize(CALLER, MemberRole.owner, Action.TRANSFER_OWNERSHIP, project(target_user_id=CALLER))
    assert decision.code == "INVALID_TRANSFER"
    assert not authorize(
        CALLER, MemberRole.admin, Action.TRANSFER_OWNERSHIP, project(target_user_id=TARGET)
    ).allowed


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("caller_role", ROLES)
def test_last_owner_can_never_be_removed(caller_role):
    decision = authorize(
        CALLER,
        caller_role,
        Action.REMOVE_MEMBER,
        project(target_user_id=TARGET, target_role=MemberRole.owner, owner_count=1),
    )
    assert decision.code == "LAST_OWNER"


def test_sole_owner_cannot_leave():
    decision = authorize(
        CALLER,
        MemberRole.owner,
        Action.REMOVE_MEMBER,
        project(target_user_id=CALLER, target_role=MemberRole.owner, owner_count=1),
    )
    assert decision.code == "LAST_OWNER"


def test_any_member_can_leave():
    assert authorize(
        CALLER,
        MemberRole.viewer,
        Action.REMOVE_MEMBER,
        project(target_user_id=CALLER, target_role=MemberRole.viewer),
    ).allowed


def test_member_cannot_remove_others():
    decision = authorize(
        CALLER,
        MemberRole.member,
        Action.REMOVE_MEMBER,
        project(target_user_id=TARGET, target_role=MemberRole.viewer),
    )
    assert decision.code == "INSUFFICIENT_ROLE"


def test_admin_cannot_remove_admin():
    decision = authorize(
        CALLER,
        MemberRole.admin,
        Action.REMOVE_MEMBER,
        project(target_user_id=TARGET, target_role=MemberRole.admin),
    )
    assert decision.code == "ROLE_TOO_HIGH"
    assert authorize(
        CALLER,
        MemberRole.owner,
        Action.REMOVE_MEMBER,
        project(target_user_id=TARGET, target_role=MemberRole.admin),
    ).allowed
