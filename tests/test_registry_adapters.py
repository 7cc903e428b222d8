"""Tests for the task registry adapters and factory.

The Supabase adapter is exercised with a mocked httpx.AsyncClient.
"""

import sqlite3

import httpx
import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

from src.adapters.sqlite_task_registry import SQLiteTaskRegistry
from src.adapters.supabase_task_registry import SupabaseTaskRegistry
from src.data.models import Task
from src.ports.task_registry_port import TaskRegistryError

D1 = date(2024, 3, 1)


def _mock_client(json_data=None, error=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = json_data if json_data is not None else []
    mock_resp.raise_for_status = MagicMock(side_effect=error)

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.get = AsyncMock(return_value=mock_resp)
    mock_client.patch = AsyncMock(return_value=mock_resp)
    return mock_client


class TestSupabaseTaskRegistry:
    @pytest.mark.asyncio
    async def test_list_tasks_builds_postgrest_query(self):
        rows = [{
            "id": 42, "title": "Banner", "assignee_id": "u1",
            "due_date": "2024-03-01T00:00:00+00:00", "status": "review",
            "team": "creative", "client_id": "c9",
        }]
        client = _mock_client(rows)

        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            registry = SupabaseTaskRegistry("https://x.supabase.co/", "key")
            tasks = await registry.list_tasks("u1", due_on=D1)

        assert tasks == [Task(
            id="42", title="Banner", assignee_id="u1", due_date=D1,
            status="review", team="creative", client_id="c9",
        )]
        url = client.get.call_args.args[0]
        params = client.get.call_args.kwargs["params"]
        headers = client.get.call_args.kwargs["headers"]
        assert url == "https://x.supabase.co/rest/v1/tasks"
        assert params["assignee_id"] == "eq.u1"
        assert params["due_date"] == "eq.2024-03-01"
        assert headers["Authorization"] == "Bearer key"

    @pytest.mark.asyncio
    async def test_list_tasks_due_before_uses_lt_filter(self):
        client = _mock_client([])
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            await SupabaseTaskRegistry("https://x", "k").list_tasks("u1", due_before=D1)
        assert client.get.call_args.kwargs["params"]["due_date"] == "lt.2024-03-01"

    @pytest.mark.asyncio
    async def test_get_tasks_uses_in_filter(self):
        client = _mock_client([])
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            await SupabaseTaskRegistry("https://x", "k").get_tasks(["b", "a", "a"])
        assert client.get.call_args.kwargs["params"]["id"] == "in.(a,b)"

    @pytest.mark.asyncio
    async def test_get_tasks_empty_makes_no_request(self):
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient") as mock_cls:
            assert await SupabaseTaskRegistry("https://x", "k").get_tasks([]) == []
        mock_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_due_date_maps_to_none(self):
        client = _mock_client([{"id": "t1", "assignee_id": "u1", "due_date": None, "status": "todo"}])
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            tasks = await SupabaseTaskRegistry("https://x", "k").list_tasks("u1")
        assert tasks[0].due_date is None
        assert tasks[0].team == ""

    @pytest.mark.asyncio
    async def test_http_error_becomes_registry_error(self):
        error = httpx.HTTPStatusError("boom", request=MagicMock(), response=MagicMock())
        client = _mock_client(error=error)
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            with pytest.raises(TaskRegistryError):
                await SupabaseTaskRegistry("https://x", "k").list_tasks("u1")

    @pytest.mark.asyncio
    async def test_set_status_patches_single_row(self):
        client = _mock_client()
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            await SupabaseTaskRegistry("https://x", "k").set_status("t1", "approved")
        kwargs = client.patch.call_args.kwargs
        assert kwargs["params"] == {"id": "eq.t1"}
        assert kwargs["json"] == {"status": "approved"}
        assert kwargs["headers"]["Prefer"] == "return=minimal"

    @pytest.mark.asyncio
    async def test_set_status_transport_error(self):
        client = _mock_client()
        client.patch = AsyncMock(side_effect=httpx.ConnectError("offline"))
        with patch("src.adapters.supabase_task_registry.httpx.AsyncClient", return_value=client):
            with pytest.raises(TaskRegistryError):
                await SupabaseTaskRegistry("https://x", "k").set_status("t1", "done")


class TestSQLiteTaskRegistry:
    @pytest.mark.asyncio
    async def test_list_and_get(self, task_db):
        task_db.add_task(Task(id="t1", assignee_id="u1", due_date=D1, status="todo"))
        registry = SQLiteTaskRegistry(task_db)
        assert [t.id for t in await registry.list_tasks("u1", due_on=D1)] == ["t1"]
        assert [t.id for t in await registry.get_tasks(["t1", "t1"])] == ["t1"]

    @pytest.mark.asyncio
    async def test_set_status_writes_through(self, task_db):
        task_db.add_task(Task(id="t1", assignee_id="u1", due_date=D1, status="todo"))
        registry = SQLiteTaskRegistry(task_db)
        await registry.set_status("t1", "done")
        await registry.set_status("missing", "done")
        assert task_db.get_task("t1").status == "done"

    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_registry_error(self):
        db = MagicMock()
        db.list_tasks.side_effect = sqlite3.OperationalError("disk I/O error")
        with pytest.raises(TaskRegistryError):
            await SQLiteTaskRegistry(db).list_tasks("u1")


class TestRegistryFactory:
    def test_sqlite_provider(self, tmp_db_path):
        from src.adapters.registry_factory import create_task_registry

        with patch("src.adapters.registry_factory.settings") as mock_settings:
            mock_settings.TASK_REGISTRY_PROVIDER = "sqlite"
            adapter = create_task_registry(db_path=tmp_db_path)
        assert isinstance(adapter, SQLiteTaskRegistry)

    def test_supabase_provider(self):
        from src.adapters.registry_factory import create_task_registry

        with patch("src.adapters.registry_factory.settings") as mock_settings:
            mock_settings.TASK_REGISTRY_PROVIDER = "Supabase"
            mock_settings.SUPABASE_URL = "https://x.supabase.co"
            mock_settings.SUPABASE_KEY = "key"
            adapter = create_task_registry()
        assert isinstance(adapter, SupabaseTaskRegistry)

    def test_unknown_provider_raises(self):
        from src.adapters.registry_factory import create_task_registry

        with patch("src.adapters.registry_factory.settings") as mock_settings:
            mock_settings.TASK_REGISTRY_PROVIDER = "jira"
            with pytest.raises(ValueError, match="jira"):
                create_task_registry()
