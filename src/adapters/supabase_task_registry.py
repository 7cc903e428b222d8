"""Supabase task registry adapter — implements TaskRegistryPort over PostgREST.

The agency's task board lives in a hosted Postgres exposed through
Supabase's REST endpoint (/rest/v1/tasks). All Supabase-specific logic
lives here. Core modules never import this directly; they depend on the
TaskRegistryPort protocol.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

import httpx

from src.data.models import Task
from src.ports.task_registry_port import TaskRegistryError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10
_TASK_COLUMNS = "id,title,assignee_id,due_date,status,team,client_id"


def _row_to_task(row: dict) -> Task:
    due = row.get("due_date")
    return Task(
        id=str(row["id"]),
        title=row.get("title") or "",
        assignee_id=str(row.get("assignee_id") or ""),
        due_date=date.fromisoformat(due[:10]) if due else None,
        status=row.get("status") or "",
        team=row.get("team") or "",
        client_id=row.get("client_id"),
    )


class SupabaseTaskRegistry:
    """Supabase (PostgREST) implementation of TaskRegistryPort and TaskStatusWriter."""

    def __init__(self, url: str, api_key: str) -> None:
        self._endpoint = url.rstrip("/") + "/rest/v1/tasks"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }

    async def _select(self, params: dict) -> list[dict]:
        query = {"select": _TASK_COLUMNS, **params}
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.get(self._endpoint, params=query, headers=self._headers)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TaskRegistryError(f"Supabase task query failed: {exc}") from exc

    async def list_tasks(
        self,
        assignee_id: str,
        due_on: date | None = None,
        due_before: date | None = None,
    ) -> list[Task]:
        params = {"assignee_id": f"eq.{assignee_id}", "order": "due_date.asc"}
        if due_on is not None:
            params["due_date"] = f"eq.{due_on.isoformat()}"
        elif due_before is not None:
            params["due_date"] = f"lt.{due_before.isoformat()}"
        rows = await self._select(params)
        return [_row_to_task(r) for r in rows]

    async def get_tasks(self, task_ids: Iterable[str]) -> list[Task]:
        ids = sorted(set(task_ids))
        if not ids:
            return []
        rows = await self._select({"id": f"in.({','.join(ids)})"})
        return [_row_to_task(r) for r in rows]

    async def set_status(self, task_id: str, status: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.patch(
                    self._endpoint,
                    params={"id": f"eq.{task_id}"},
                    json={"status": status},
                    headers={**self._headers, "Prefer": "return=minimal"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TaskRegistryError(f"Supabase status update for {task_id} failed: {exc}") from exc
        logger.info("Task %s status set to '%s'", task_id, status)
