"""SQLite task registry adapter — implements TaskRegistryPort over TaskDB.

TaskDB is synchronous, so every call is wrapped with asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date
from typing import Iterable

from src.data.db import TaskDB
from src.data.models import Task
from src.ports.task_registry_port import TaskRegistryError

logger = logging.getLogger(__name__)


class SQLiteTaskRegistry:
    """Local-table implementation of TaskRegistryPort and TaskStatusWriter."""

    def __init__(self, task_db: TaskDB | None = None) -> None:
        self._db = task_db or TaskDB()

    async def list_tasks(
        self,
        assignee_id: str,
        due_on: date | None = None,
        due_before: date | None = None,
    ) -> list[Task]:
        try:
            return await asyncio.to_thread(
                self._db.list_tasks, assignee_id, due_on, due_before,
            )
        except sqlite3.Error as exc:
            raise TaskRegistryError(f"Failed to list tasks for {assignee_id}: {exc}") from exc

    async def get_tasks(self, task_ids: Iterable[str]) -> list[Task]:
        ids = sorted(set(task_ids))
        try:
            return await asyncio.to_thread(self._db.get_tasks, ids)
        except sqlite3.Error as exc:
            raise TaskRegistryError(f"Failed to fetch tasks: {exc}") from exc

    async def set_status(self, task_id: str, status: str) -> None:
        try:
            updated = await asyncio.to_thread(self._db.set_status, task_id, status)
        except sqlite3.Error as exc:
            raise TaskRegistryError(f"Failed to update task {task_id}: {exc}") from exc
        if updated:
            logger.info("Task %s status set to '%s'", task_id, status)
        else:
            logger.warning("Task %s not found; status '%s' not written", task_id, status)
