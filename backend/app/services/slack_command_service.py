"""
Slack slash-command handling.

`/teamboard <command>` arrives as a signed form post. The Slack channel is
mapped to a project through the project integration's channel_id; all
replies are ephemeral.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.slack import context_block, ephemeral_response, header_block, section_block
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.project import Project
from app.models.slack_integration import ProjectSlackIntegration
from app.models.task import Task, TaskPriority, TaskStatus
from app.services.slack_service import SlackBridge
from app.services.task_service import next_task_position

logger = logging.getLogger(__name__)

LIST_LIMIT = 10

STATUS_EMOJI = {
    TaskStatus.todo: "⬜",
    TaskStatus.in_progress: "🔄",
    TaskStatus.done: "✅",
}

STATUS_COMMANDS = {
    "todo": TaskStatus.todo,
    "doing": TaskStatus.in_progress,
    "done": TaskStatus.done,
}

CREATE_COMMANDS = frozenset({"create", "add", "new"})
LIST_COMMANDS = frozenset({"list", "tasks"})

HELP_TEXT = "\n".join(
    [
        "*Teamboard commands*",
        "`/teamboard create <title>` Create a task in the first stage",
        "`/teamboard list` Show the 10 latest tasks",
        "`/teamboard todo` | `doing` | `done` Show tasks with that status",
        "`/teamboard help` Show this message",
    ]
)


class SlackCommandService:
    """Executes slash commands against the project mapped to a channel."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.bridge = SlackBridge(db)

    async def handle(self, form: dict[str, str]) -> dict[str, Any]:
        channel_id = form.get("channel_id", "")
        text = (form.get("text") or "").strip()
        command, _, argument = text.partition(" ")
        command = command.lower()
        argument = argument.strip()

        logger.info(
            "Slack command: command=%r channel_id=%s user_id=%s",
            command,
            channel_id,
            form.get("user_id"),
        )

        if command in ("", "help"):
            return ephemeral_response(HELP_TEXT)

        project = await self._project_for_channel(channel_id)
        if project is None:
            return ephemeral_response(
                "This channel is not connected to any Teamboard project. "
                "Connect it from the project's Slack settings."
            )

        if command in CREATE_COMMANDS:
            return await self._create(project, argument, form.get("user_name"))
        if command in LIST_COMMANDS:
            return await self._list(project, None)
        if command in STATUS_COMMANDS:
            return await self._list(project, STATUS_COMMANDS[command])
        return ephemeral_response(f"Unknown command `{command}`.\n\n{HELP_TEXT}")

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------

    async def _create(
        self, project: Project, title: str, slack_user: str | None
    ) -> dict[str, Any]:
        if not title:
            return ephemeral_response("Usage: `/teamboard create <title>`")

        stage_id = project.first_stage_id
        task = Task(
            project_id=project.id,
            title=title[:500],
            stage_id=stage_id,
            status=project.status_for_stage(stage_id),
            priority=TaskPriority.none,
            position=await next_task_position(self.db, project.id, stage_id),
        )
        self.db.add(task)
        await self.db.flush()
        self.db.add(
            ActivityLog(
                project_id=project.id,
                task_id=task.id,
                user_id=None,
                action=ActivityAction.task_created.value,
                details={"title": task.title, "source": "slack", "slack_user": slack_user},
            )
        )
        await self.db.commit()
        logger.info("Task created from Slack: task_id=%s project_id=%s", task.id, project.id)

        await self.bridge.task_created(project, task, None)
        return ephemeral_response(
            f"Created *{task.title}* in {project.name}",
            [
                section_block(f"✅ Created *{task.title}*"),
                context_block(f"{project.name} · {project.stage_name(stage_id)}"),
            ],
        )

    async def _list(self, project: Project, task_status: TaskStatus | None) -> dict[str, Any]:
        stmt = select(Task).where(Task.project_id == project.id)
        if task_status is not None:
            stmt = stmt.where(Task.status == task_status)
        stmt = stmt.order_by(Task.created_at.desc()).limit(LIST_LIMIT)
        tasks = (await self.db.execute(stmt)).scalars().all()

        heading = project.name if task_status is None else f"{project.name} · {task_status.value}"
        if not tasks:
            return ephemeral_response(f"No tasks found in {heading}.")

        lines = [
            f"{STATUS_EMOJI.get(task.status, '•')} {task.title}  _{project.stage_name(task.stage_id)}_"
            for task in tasks
        ]
        return ephemeral_response(
            f"{len(tasks)} task(s) in {heading}",
            [header_block(heading), section_block("\n".join(lines))],
        )

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _project_for_channel(self, channel_id: str) -> Project | None:
        if not channel_id:
            return None
        result = await self.db.execute(
            select(Project)
            .join(ProjectSlackIntegration, ProjectSlackIntegration.project_id == Project.id)
            .where(ProjectSlackIntegration.channel_id == channel_id)
            .limit(1)
        )
        return result.scalar_one_or_none()
