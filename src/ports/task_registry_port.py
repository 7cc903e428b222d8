"""Task registry port — abstract interface over the external task list.

Core modules depend on these protocols, never on a specific provider.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol

from src.data.models import Task


class TaskRegistryError(Exception):
    """Raised when any task registry provider operation fails."""


class TaskRegistryPort(Protocol):
    """Read-only access to tasks."""

    async def list_tasks(
        self,
        assignee_id: str,
        due_on: date | None = None,
        due_before: date | None = None,
    ) -> list[Task]: ...

    async def get_tasks(self, task_ids: Iterable[str]) -> list[Task]: ...


class TaskStatusWriter(Protocol):
    """Optional write-back of a task's workflow status."""

    async def set_status(self, task_id: str, status: str) -> None: ...
