"""Task registry adapter factory — creates the right adapter based on config."""

from __future__ import annotations

from src.config import settings
from src.ports.task_registry_port import TaskRegistryPort


def create_task_registry(db_path: str | None = None) -> TaskRegistryPort:
    """Return the task registry adapter matching TASK_REGISTRY_PROVIDER.

    Args:
        db_path: SQLite file for the "sqlite" provider. Defaults to DATABASE_PATH.
    """
    provider = settings.TASK_REGISTRY_PROVIDER.lower()

    if provider == "sqlite":
        from src.adapters.sqlite_task_registry import SQLiteTaskRegistry
        from src.data.db import TaskDB

        return SQLiteTaskRegistry(TaskDB(db_path=db_path))

    if provider == "supabase":
        from src.adapters.supabase_task_registry import SupabaseTaskRegistry

        return SupabaseTaskRegistry(settings.SUPABASE_URL, settings.SUPABASE_KEY)

    raise ValueError(f"Unknown TASK_REGISTRY_PROVIDER: {provider!r}")
