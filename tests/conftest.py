"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides temp-file SQLite stores plus a coordinator on a fixed clock.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("MEMBER_IDS", "12345=member-a")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TASK_REGISTRY_PROVIDER", "sqlite")
os.environ.setdefault("TIMEZONE", "Asia/Kolkata")

import pytest
from datetime import date

# Wednesday; its week starts Monday 2024-03-04
TODAY = date(2024, 3, 6)
USER = "member-a"


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_worklog.db")


@pytest.fixture
def ledger_db(tmp_db_path):
    """Return a LedgerDB instance backed by a temp file."""
    from src.data.db import LedgerDB
    return LedgerDB(db_path=tmp_db_path)


@pytest.fixture
def rollover_db(tmp_db_path):
    """Return a RolloverDB instance backed by a temp file."""
    from src.data.db import RolloverDB
    return RolloverDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskDB instance backed by a temp file."""
    from src.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def task_source(task_db):
    from src.adapters.sqlite_task_registry import SQLiteTaskRegistry
    return SQLiteTaskRegistry(task_db)


@pytest.fixture
def registry(task_source):
    from src.core.task_registry import TaskRegistry
    return TaskRegistry(task_source)


@pytest.fixture
def add_task(task_db):
    """Insert a registry task: add_task("t1", due=date(...), status="todo")."""
    from src.data.models import Task

    def _add(task_id, due=TODAY, status="todo", team="web", assignee=USER, title=""):
        return task_db.add_task(Task(
            id=task_id,
            assignee_id=assignee,
            due_date=due,
            status=status,
            team=team,
            title=title or f"Task {task_id}",
        ))

    return _add


@pytest.fixture
def make_coordinator(ledger_db, registry, rollover_db, task_source):
    """Build a coordinator whose clock is fixed at `today`."""
    from src.core.day_view import DayViewCoordinator

    def _make(today=TODAY, status_writer=None, **kwargs):
        return DayViewCoordinator(
            ledger_db,
            registry,
            rollover_db=rollover_db,
            status_writer=status_writer,
            clock=lambda: today,
            **kwargs,
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()
