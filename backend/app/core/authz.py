"""
Authorization engine.

A single policy table decides who may do what on a project or organization.
`authorize()` is pure: it takes the caller's role and a description of the
resource and returns a Decision. `AuthorizationService` resolves roles from
the membership tables (cached in Redis) and turns denials into HTTP errors.
Handlers call `require()` and never compare roles themselves.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Callable
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.member import MemberRole, OrganizationMember, ProjectMember

logger = logging.getLogger(__name__)

ROLE_LEVELS: dict[MemberRole, int] = {
    MemberRole.viewer: 1,
    MemberRole.member: 2,
    MemberRole.admin: 3,
    MemberRole.owner: 4,
}

# Roles that may be handed out through an invitation
INVITABLE_ROLES = frozenset({MemberRole.viewer, MemberRole.member, MemberRole.admin})


def role_level(role: MemberRole | None) -> int:
    return ROLE_LEVELS[role] if role is not None else 0


class Action(str, enum.Enum):
    READ = "read"
    CREATE_TASK = "create_task"
    EDIT_TASK = "edit_task"
    DELETE_TASK = "delete_task"
    APPROVE_TASK = "approve_task"
    CREATE_COMMENT = "create_comment"
    EDIT_COMMENT = "edit_comment"
    DELETE_COMMENT = "delete_comment"
    INVITE_MEMBER = "invite_member"
    CHANGE_MEMBER_ROLE = "change_member_role"
    TRANSFER_OWNERSHIP = "transfer_ownership"
    REMOVE_MEMBER = "remove_member"
    UPDATE_SETTINGS = "update_settings"
    DELETE = "delete"
    CONFIGURE_INTEGRATIONS = "configure_integrations"
    POST_ANNOUNCEMENT = "post_announcement"


class ResourceKind(str, enum.Enum):
    project = "project"
    organization = "organization"


@dataclass(frozen=True)
class ResourceContext:
    """What is being acted on. Only the fields an action's rule needs are required."""

    kind: ResourceKind
    id: UUID
    author_id: UUID | None = None
    target_user_id: UUID | None = None
    target_role: MemberRole | None = None
    new_role: MemberRole | None = None
    owner_count: int | None = None

    @classmethod
    def project(cls, project_id: UUID, **kwargs: object) -> ResourceContext:
        return cls(kind=ResourceKind.project, id=project_id, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def organization(cls, organization_id: UUID, **kwargs: object) -> ResourceContext:
        return cls(kind=ResourceKind.organization, id=organization_id, **kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    code: str | None = None
    reason: str | None = None
    status_code: int = status.HTTP_403_FORBIDDEN

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(
        cls, code: str, reason: str, status_code: int = status.HTTP_403_FORBIDDEN
    ) -> Decision:
        return cls(allowed=False, code=code, reason=reason, status_code=status_code)


Rule = Callable[[UUID, MemberRole, ResourceContext], Decision]


# ---------------------------------------------------------------------------
# Extra rules
# ---------------------------------------------------------------------------

def _last_owner() -> Decision:
    return Decision.deny(
        "LAST_OWNER",
        "Cannot remove the last owner. Transfer ownership first.",
        status.HTTP_400_BAD_REQUEST,
    )


def _must_be_author(caller_id: UUID, role: MemberRole, ctx: ResourceContext) -> Decision:
    if ctx.author_id != caller_id:
        return Decision.deny("NOT_COMMENT_AUTHOR", "You can only edit your own comments")
    return Decision.allow()


def _below_own_role(caller_id: UUID, role: MemberRole, ctx: ResourceContext) -> Decision:
    if ctx.new_role is not None and role_level(ctx.new_role) >= role_level(role):
        return Decision.deny(
            "ROLE_TOO_HIGH", "You cannot invite someone with a role equal to or higher than your own"
        )
    return Decision.allow()


def _change_role(caller_id: UUID, role: MemberRole, ctx: ResourceContext) -> Decision:
    if role != MemberRole.owner:
        if ctx.target_role == MemberRole.owner:
            return Decision.deny("OWNER_PROTECTED", "Only owners can modify other owners")
        if role_level(ctx.new_role) >= role_level(role):
            return Decision.deny(
                "ROLE_TOO_HIGH", "You cannot assign a role equal to or higher than your own"
            )
        if role_level(ctx.target_role) >= role_level(role):
            return Decision.deny(
                "ROLE_TOO_HIGH",
                "You cannot change the role of a member at or above your own role",
            )
        return Decision.allow()

    demoting_owner = ctx.target_role == MemberRole.owner and ctx.new_role != MemberRole.owner
    if demoting_owner and (ctx.owner_count or 0) <= 1:
        return _last_owner()
    return Decision.allow()


def _transfer(caller_id: UUID, role: MemberRole, ctx: ResourceContext) -> Decision:
    if ctx.target_user_id == caller_id:
        return Decision.deny(
            "INVALID_TRANSFER", "You already own this resource", status.HTTP_400_BAD_REQUEST
        )
    return Decision.allow()


def _remove(caller_id: UUID, role: MemberRole, ctx: ResourceContext) -> Decision:
    if ctx.target_role == MemberRole.owner and (ctx.owner_count or 0) <= 1:
        return _last_owner()
    if ctx.target_user_id == caller_id:
        return Decision.allow()
    if role_level(role) < ROLE_LEVELS[MemberRole.admin]:
        return _insufficient(MemberRole.admin)
    if role != MemberRole.owner and role_level(ctx.target_role) >= role_level(role):
        return Decision.deny(
            "ROLE_TOO_HIGH", "You cannot remove a member with a role equal to or higher than your own"
        )
    return Decision.allow()


def _insufficient(required: MemberRole) -> Decision:
    return Decision.deny("INSUFFICIENT_ROLE", f"Required role: {required.value} or higher")


# ---------------------------------------------------------------------------
# Policy table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Policy:
    min_role: MemberRole
    rule: Rule | None = None
    # Authors may act on their own content regardless of min_role
    author_override: bool = False
    # Rule decides on its own, min_role is not pre-checked
    rule_checks_role: bool = False


POLICY: dict[Action, Policy] = {
    Action.READ: Policy(MemberRole.viewer),
    Action.CREATE_TASK: Policy(MemberRole.member),
    Action.EDIT_TASK: Policy(MemberRole.member),
    Action.DELETE_TASK: Policy(MemberRole.admin),
    Action.APPROVE_TASK: Policy(MemberRole.admin),
    Action.CREATE_COMMENT: Policy(MemberRole.member),
    Action.EDIT_COMMENT: Policy(MemberRole.member, rule=_must_be_author),
    Action.DELETE_COMMENT: Policy(MemberRole.admin, author_override=True),
    Action.INVITE_MEMBER: Policy(MemberRole.admin, rule=_below_own_role),
    Action.CHANGE_MEMBER_ROLE: Policy(MemberRole.admin, rule=_change_role),
    Action.TRANSFER_OWNERSHIP: Policy(MemberRole.owner, rule=_transfer),
    Action.REMOVE_MEMBER: Policy(MemberRole.admin, rule=_remove, rule_checks_role=True),
    Action.UPDATE_SETTINGS: Policy(MemberRole.admin),
    Action.DELETE: Policy(MemberRole.owner),
    Action.CONFIGURE_INTEGRATIONS: Policy(MemberRole.admin),
    Action.POST_ANNOUNCEMENT: Policy(MemberRole.admin),
}


def authorize(
    caller_id: UUID,
    caller_role: MemberRole | None,
    action: Action,
    resource: ResourceContext,
) -> Decision:
    """
    Evaluate one action against the policy table.

    Non-members are denied with 404 on reads (existence stays hidden) and
    403 on everything else.
    """
    if caller_role is None:
        if action == Action.READ:
            return Decision.deny(
                f"{resource.kind.value.upper()}_NOT_FOUND",
                f"{resource.kind.value.capitalize()} not found",
                status.HTTP_404_NOT_FOUND,
            )
        return Decision.deny(
            "NOT_A_MEMBER", f"You are not a member of this {resource.kind.value}"
        )

    policy = POLICY[action]

    if policy.author_override and resource.author_id == caller_id:
        return Decision.allow()

    if not policy.rule_checks_role and role_level(caller_role) < role_level(policy.min_role):
        return _insufficient(policy.min_role)

    if policy.rule is not None:
        return policy.rule(caller_id, caller_role, resource)
    return Decision.allow()


def raise_for_decision(decision: Decision) -> None:
    if not decision.allowed:
        raise HTTPException(
            status_code=decision.status_code,
            detail={"code": decision.code, "message": decision.reason},
        )


# ---------------------------------------------------------------------------
# Role lookups
# ---------------------------------------------------------------------------

def role_cache_key(kind: ResourceKind, resource_id: UUID, user_id: UUID) -> str:
    """Redis key for a cached role. Format: role:{kind}:{resource_id}:{user_id}"""
    return f"role:{kind.value}:{resource_id}:{user_id}"


_NO_ROLE = "none"


class AuthorizationService:
    """Resolves membership roles and enforces the policy table."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis

    async def get_role(
        self, kind: ResourceKind, resource_id: UUID, user_id: UUID
    ) -> MemberRole | None:
        """Cached (resource, user) -> role lookup. Falls back to the database on Redis errors."""
        key = role_cache_key(kind, resource_id, user_id)
        try:
            cached = await self.redis.get(key)
        except RedisError as exc:
            logger.warning("Role cache read failed for %s: %s", key, exc)
            cached = None

        if cached is not None:
            return None if cached == _NO_ROLE else MemberRole(cached)

        role = await self._load_role(kind, resource_id, user_id)
        try:
            await self.redis.setex(
                key,
                settings.ROLE_CACHE_TTL_SECONDS,
                role.value if role is not None else _NO_ROLE,
            )
        except RedisError as exc:
            logger.warning("Role cache write failed for %s: %s", key, exc)
        return role

    async def get_project_role(self, project_id: UUID, user_id: UUID) -> MemberRole | None:
        return await self.get_role(ResourceKind.project, project_id, user_id)

    async def get_organization_role(
        self, organization_id: UUID, user_id: UUID
    ) -> MemberRole | None:
        return await self.get_role(ResourceKind.organization, organization_id, user_id)

    async def invalidate(self, kind: ResourceKind, resource_id: UUID, *user_ids: UUID) -> None:
        keys = [role_cache_key(kind, resource_id, uid) for uid in user_ids]
        if not keys:
            return
        try:
            await self.redis.delete(*keys)
        except RedisError as exc:
            logger.warning("Role cache invalidation failed for %s: %s", keys, exc)

    async def require_organization_member(
        self, organization_id: UUID | None, user_id: UUID
    ) -> None:
        """Members of an organization's project must belong to that organization."""
        if organization_id is None:
            return
        if await self.get_organization_role(organization_id, user_id) is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "NOT_ORG_MEMBER",
                    "message": "User must be a member of the project's organization",
                },
            )

    async def count_owners(self, kind: ResourceKind, resource_id: UUID) -> int:
        model, column = self._membership(kind)
        result = await self.db.execute(
            select(func.count(model.id)).where(
                column == resource_id,
                model.role == MemberRole.owner,
            )
        )
        return result.scalar_one()

    async def require(
        self, user_id: UUID, action: Action, resource: ResourceContext
    ) -> MemberRole:
        """
        Raise HTTPException unless `user_id` may perform `action` on `resource`.

        Returns the caller's role. Owner counts are loaded on demand for the
        member actions that need them.
        """
        role = await self.get_role(resource.kind, resource.id, user_id)

        if (
            role is not None
            and resource.owner_count is None
            and action in (Action.CHANGE_MEMBER_ROLE, Action.REMOVE_MEMBER)
            and resource.target_role == MemberRole.owner
        ):
            resource = replace(
                resource, owner_count=await self.count_owners(resource.kind, resource.id)
            )

        decision = authorize(user_id, role, action, resource)
        if not decision.allowed:
            logger.info(
                "Denied %s on %s %s for user_id=%s: %s",
                action.value,
                resource.kind.value,
                resource.id,
                user_id,
                decision.code,
            )
        raise_for_decision(decision)
        return role  # type: ignore[return-value]

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _membership(kind: ResourceKind):
        if kind == ResourceKind.project:
            return ProjectMember, ProjectMember.project_id
        return OrganizationMember, OrganizationMember.organization_id

    async def _load_role(
        self, kind: ResourceKind, resource_id: UUID, user_id: UUID
    ) -> MemberRole | None:
        model, column = self._membership(kind)
        result = await self.db.execute(
            select(model.role).where(column == resource_id, model.user_id == user_id)
        )
        return result.scalar_one_or_none()
