"""
Worklog — Task Registry Adapter.

Read accessor over the external task list. It is the single owner of the
answer to "does this status count as finished?", which differs per team:
the creative pipeline ends at "approved", the web pipeline at "completed",
and both still carry the legacy "done" status.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from src.data.models import Task
    from src.ports.task_registry_port import TaskRegistryPort

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: dict[str, frozenset[str]] = {
    "creative": frozenset({"approved", "done"}),
    "web": frozenset({"completed", "done"}),
}

# Tasks whose team is missing or unknown
DEFAULT_TERMINAL_STATUSES = frozenset({"approved", "completed", "done"})

# Status written back when a task is completed from a daily report
COMPLETION_STATUS: dict[str, str] = {
    "creative": "approved",
    "web": "completed",
}
DEFAULT_COMPLETION_STATUS = "done"
REOPEN_STATUS = "in_progress"


class TaskRegistry:
    """Team-aware, read-only view over a TaskRegistryPort."""

    def __init__(
        self,
        source: TaskRegistryPort,
        terminal_overrides: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self._source = source
        self._terminal = dict(TERMINAL_STATUSES)
        for team, statuses in (terminal_overrides or {}).items():
            self._terminal[team.lower()] = frozenset(s.lower() for s in statuses)

    def terminal_statuses(self, team: str) -> frozenset[str]:
        return self._terminal.get((team or "").lower(), DEFAULT_TERMINAL_STATUSES)

    def is_terminal(self, task: Task) -> bool:
        return (task.status or "").lower() in self.terminal_statuses(task.team)

    def completion_status(self, team: str) -> str:
        return COMPLETION_STATUS.get((team or "").lower(), DEFAULT_COMPLETION_STATUS)

    async def tasks_due_on(self, user_id: str, day: date) -> list[Task]:
        tasks = await self._source.list_tasks(user_id, due_on=day)
        # Providers filter server-side; guard against loose date matching.
        return [t for t in tasks if t.due_date == day and t.assignee_id == user_id]

    async def open_tasks_due_before(self, user_id: str, day: date) -> list[Task]:
        """Overdue work: unfinished tasks whose due date is earlier than `day`."""
        tasks = await self._source.list_tasks(user_id, due_before=day)
        return [
            t for t in tasks
            if t.due_date is not None
            and t.due_date < day
            and t.assignee_id == user_id
            and not self.is_terminal(t)
        ]

    async def resolve(self, task_ids: Iterable[str]) -> dict[str, Task]:
        """Fetch tasks by id. Ids the registry no longer knows are simply absent."""
        ids = set(task_ids)
        if not ids:
            return {}
        tasks = await self._source.get_tasks(ids)
        found = {t.id: t for t in tasks}
        missing = ids - found.keys()
        if missing:
            logger.warning("Dangling task ids (not in registry): %s", sorted(missing))
        return found
