"""
@mention parsing and resolution.

Text -> handles -> project member ids. The pure functions here are shared by
the create and edit paths; edits only act on `mention_delta(old, new)`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.member import ProjectMember
from app.models.user import User

logger = logging.getLogger(__name__)

# A handle must start the text or follow whitespace, so emails do not match
MENTION_PATTERN = re.compile(r"(?:(?<=\s)|^)@([a-zA-Z0-9_.-]+)")

_WHITESPACE = re.compile(r"\s+")
_HANDLE_STRIP = re.compile(r"[^a-z0-9._-]")


@dataclass(frozen=True)
class MentionCandidate:
    """A project member as seen by the resolver."""

    user_id: UUID
    email: str
    full_name: str | None = None


@dataclass(frozen=True)
class ResolvedMention:
    handle: str
    user_id: UUID


def extract_handles(text: str | None) -> list[str]:
    """Lowercased handles in first-occurrence order, deduplicated."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in MENTION_PATTERN.finditer(text):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def candidate_handles(candidate: MentionCandidate) -> set[str]:
    """Handles a member answers to: email local part and normalized full name."""
    handles = {candidate.email.split("@", 1)[0].lower()}
    if candidate.full_name:
        name = _WHITESPACE.sub(".", candidate.full_name.strip().lower())
        name = _HANDLE_STRIP.sub("", name)
        if name:
            handles.add(name)
    return handles


def resolve_handles(
    handles: Iterable[str],
    members: Sequence[MentionCandidate],
    author_id: UUID | None = None,
) -> list[ResolvedMention]:
    """
    Match handles against members; unknown handles are dropped.

    The first member whose candidate set contains a handle wins. The author
    and repeated users are removed.
    """
    indexed = [(member, candidate_handles(member)) for member in members]
    resolved: list[ResolvedMention] = []
    seen_users: set[UUID] = set()

    for handle in handles:
        match = next((member for member, names in indexed if handle in names), None)
        if match is None:
            logger.debug("Mention @%s did not match any project member", handle)
            continue
        if match.user_id == author_id or match.user_id in seen_users:
            continue
        seen_users.add(match.user_id)
        resolved.append(ResolvedMention(handle=handle, user_id=match.user_id))

    return resolved


def mention_delta(old_text: str | None, new_text: str | None) -> list[str]:
    """Handles present in `new_text` but not in `old_text`, in order."""
    old = set(extract_handles(old_text))
    return [handle for handle in extract_handles(new_text) if handle not in old]


def mention_context(text: str, handle: str, radius: int = 50) -> str:
    """Snippet of text around the first occurrence of @handle."""
    index = text.lower().find(f"@{handle}")
    if index < 0:
        return text[: radius * 2]
    start = max(index - radius, 0)
    end = min(index + len(handle) + 1 + radius, len(text))
    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


class MentionResolver:
    """Resolves handles in text against the members of one project."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def load_candidates(self, project_id: UUID) -> list[MentionCandidate]:
        result = await self.db.execute(
            select(User.id, User.email, User.full_name)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .where(ProjectMember.project_id == project_id)
            .order_by(ProjectMember.joined_at)
        )
        return [
            MentionCandidate(user_id=row.id, email=row.email, full_name=row.full_name)
            for row in result.all()
        ]

    async def resolve(
        self,
        handles: list[str],
        project_id: UUID,
        author_id: UUID | None,
    ) -> list[ResolvedMention]:
        """Never raises: a failed lookup yields no mentions."""
        if not handles:
            return []
        try:
            members = await self.load_candidates(project_id)
        except Exception:
            logger.exception("Failed to load mention candidates for project_id=%s", project_id)
            return []
        return resolve_handles(handles, members, author_id)
