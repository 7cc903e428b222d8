"""
Worklog — SQLite storage.

Day ledgers, rollover bookkeeping, and the local task table all live in
one SQLite file. sqlite3 is synchronous, so the async-facing stores run
each call through asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Iterable

from src.data.models import DayLedger, RolloverRun, Task
from src.ports.ledger_port import LedgerStoreError

logger = logging.getLogger(__name__)

_STATE_ASSIGNED = "assigned"
_STATE_COMPLETED = "completed"
_STATE_ROLLED_OVER = "rolled_over"


class _SQLiteDB:
    """Shared connection handling for the SQLite-backed stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class LedgerDB(_SQLiteDB):
    """SQLite implementation of LedgerStore."""

    def _init_db(self) -> None:
        """Create the ledger tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS day_ledgers (
                    user_id        TEXT    NOT NULL,
                    day            TEXT    NOT NULL,
                    check_in_time  TEXT,
                    check_out_time TEXT,
                    is_absent      INTEGER,
                    created_at     TEXT    NOT NULL,
                    updated_at     TEXT    NOT NULL,
                    PRIMARY KEY (user_id, day)
                )
            """)
            # One row per id per ledger: the primary key keeps the
            # assigned / completed / rolled_over sets disjoint.
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_tasks (
                    user_id TEXT NOT NULL,
                    day     TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    state   TEXT NOT NULL
                        CHECK (state IN ('assigned', 'completed', 'rolled_over')),
                    PRIMARY KEY (user_id, day, task_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_tasks_task "
                "ON ledger_tasks (user_id, task_id, state)"
            )
        logger.debug("Ledger tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Async surface (LedgerStore)
    # ------------------------------------------------------------------

    async def get(self, user_id: str, day: date) -> DayLedger:
        """Return the ledger for (user_id, day), or an empty one."""
        return await asyncio.to_thread(self._get_sync, user_id, day)

    async def put(self, ledger: DayLedger) -> DayLedger:
        """Overwrite the ledger stored under (user_id, day)."""
        return await asyncio.to_thread(self._put_sync, ledger)

    async def list_ledgers(
        self,
        user_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DayLedger]:
        """Return persisted ledgers, oldest first, filtered by user and range."""
        return await asyncio.to_thread(self._list_sync, user_id, start, end)

    async def find_completions(
        self, user_id: str, task_ids: Iterable[str]
    ) -> dict[str, date]:
        """Map each task id that was completed on any day to its earliest such day."""
        ids = sorted(set(task_ids))
        if not ids:
            return {}
        return await asyncio.to_thread(self._find_completions_sync, user_id, ids)

    async def remove_task_everywhere(self, task_id: str) -> int:
        """Drop a task from every open / carried-over set. Completed rows stay."""
        return await asyncio.to_thread(self._remove_task_sync, task_id)

    # ------------------------------------------------------------------
    # Sync implementation
    # ------------------------------------------------------------------

    @staticmethod
    def _build_ledger(row: sqlite3.Row, task_rows: list[sqlite3.Row]) -> DayLedger:
        ledger = DayLedger(
            user_id=row["user_id"],
            day=date.fromisoformat(row["day"]),
            check_in_time=row["check_in_time"],
            check_out_time=row["check_out_time"],
            is_absent=None if row["is_absent"] is None else bool(row["is_absent"]),
            updated_at=row["updated_at"],
        )
        for t in task_rows:
            if t["state"] == _STATE_ASSIGNED:
                ledger.assigned_task_ids.add(t["task_id"])
            elif t["state"] == _STATE_COMPLETED:
                ledger.completed_task_ids.add(t["task_id"])
            else:
                ledger.rolled_over_task_ids.add(t["task_id"])
        return ledger

    def _get_sync(self, user_id: str, day: date) -> DayLedger:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM day_ledgers WHERE user_id = ? AND day = ?",
                    (user_id, day.isoformat()),
                ).fetchone()
                if row is None:
                    return DayLedger(user_id=user_id, day=day)
                task_rows = conn.execute(
                    "SELECT task_id, state FROM ledger_tasks WHERE user_id = ? AND day = ?",
                    (user_id, day.isoformat()),
                ).fetchall()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to read ledger {user_id}/{day}: {exc}") from exc
        return self._build_ledger(row, task_rows)

    def _put_sync(self, ledger: DayLedger) -> DayLedger:
        a, c, r = ledger.assigned_task_ids, ledger.completed_task_ids, ledger.rolled_over_task_ids
        if (a & c) or (a & r) or (c & r):
            raise ValueError(
                f"Ledger {ledger.user_id}/{ledger.day} has a task id in more than one set"
            )

        now = datetime.now().isoformat()
        key = (ledger.user_id, ledger.day.isoformat())
        rows = (
            [(*key, tid, _STATE_ASSIGNED) for tid in sorted(a)]
            + [(*key, tid, _STATE_COMPLETED) for tid in sorted(c)]
            + [(*key, tid, _STATE_ROLLED_OVER) for tid in sorted(r)]
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO day_ledgers
                        (user_id, day, check_in_time, check_out_time,
                         is_absent, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, day) DO UPDATE SET
                        check_in_time  = excluded.check_in_time,
                        check_out_time = excluded.check_out_time,
                        is_absent      = excluded.is_absent,
                        updated_at     = excluded.updated_at
                    """,
                    (
                        *key, ledger.check_in_time, ledger.check_out_time,
                        None if ledger.is_absent is None else int(ledger.is_absent), now, now,
                    ),
                )
                conn.execute(
                    "DELETE FROM ledger_tasks WHERE user_id = ? AND day = ?", key,
                )
                conn.executemany(
                    "INSERT INTO ledger_tasks (user_id, day, task_id, state) VALUES (?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as exc:
            raise LedgerStoreError(
                f"Failed to write ledger {ledger.user_id}/{ledger.day}: {exc}"
            ) from exc

        stored = ledger.copy()
        stored.updated_at = now
        logger.debug(
            "Ledger %s/%s written: %d assigned, %d completed, %d carried",
            ledger.user_id, ledger.day, len(a), len(c), len(r),
        )
        return stored

    def _list_sync(
        self, user_id: str | None, start: date | None, end: date | None,
    ) -> list[DayLedger]:
        conditions: list[str] = []
        params: list = []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if start is not None:
            conditions.append("day >= ?")
            params.append(start.isoformat())
        if end is not None:
            conditions.append("day <= ?")
            params.append(end.isoformat())
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM day_ledgers" + where + " ORDER BY day, user_id", params,
                ).fetchall()
                task_rows = conn.execute(
                    "SELECT user_id, day, task_id, state FROM ledger_tasks" + where, params,
                ).fetchall()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to list ledgers: {exc}") from exc

        by_key: dict[tuple[str, str], list[sqlite3.Row]] = {}
        for t in task_rows:
            by_key.setdefault((t["user_id"], t["day"]), []).append(t)
        return [
            self._build_ledger(row, by_key.get((row["user_id"], row["day"]), []))
            for row in rows
        ]

    def _find_completions_sync(self, user_id: str, ids: list[str]) -> dict[str, date]:
        placeholders = ", ".join("?" for _ in ids)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT task_id, MIN(day) AS first_day FROM ledger_tasks
                    WHERE user_id = ? AND state = 'completed'
                      AND task_id IN ({placeholders})
                    GROUP BY task_id
                    """,
                    (user_id, *ids),
                ).fetchall()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to look up completions: {exc}") from exc
        return {r["task_id"]: date.fromisoformat(r["first_day"]) for r in rows}

    def _remove_task_sync(self, task_id: str) -> int:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM ledger_tasks WHERE task_id = ? AND state != 'completed'",
                    (task_id,),
                )
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to remove task {task_id}: {exc}") from exc
        if cursor.rowcount:
            logger.info("Task %s removed from %d ledger(s)", task_id, cursor.rowcount)
        return cursor.rowcount


class RolloverDB(_SQLiteDB):
    """Per-user rollover watermark and the scheduled-run log."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_rollover (
                    user_id            TEXT PRIMARY KEY,
                    last_rollover_date TEXT NOT NULL,
                    updated_at         TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rollover_logs (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_date TEXT    NOT NULL,
                    success_count  INTEGER NOT NULL DEFAULT 0,
                    error_count    INTEGER NOT NULL DEFAULT 0,
                    executed_at    TEXT    NOT NULL
                )
            """)
        logger.debug("Rollover tables initialized at %s", self._db_path)

    async def get_watermark(self, user_id: str) -> date | None:
        """Last day the chain was confirmed through for this user."""
        return await asyncio.to_thread(self._get_watermark_sync, user_id)

    async def advance_watermark(self, user_id: str, day: date) -> date:
        """Move the watermark forward to `day`; never moves it backwards."""
        return await asyncio.to_thread(self._advance_watermark_sync, user_id, day)

    async def log_run(self, run: RolloverRun) -> RolloverRun:
        return await asyncio.to_thread(self._log_run_sync, run)

    async def last_run(self) -> RolloverRun | None:
        return await asyncio.to_thread(self._last_run_sync)

    def _get_watermark_sync(self, user_id: str) -> date | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT last_rollover_date FROM user_rollover WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to read rollover state: {exc}") from exc
        if row is None:
            return None
        return date.fromisoformat(row["last_rollover_date"])

    def _advance_watermark_sync(self, user_id: str, day: date) -> date:
        now = datetime.now().isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_rollover (user_id, last_rollover_date, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (user_id) DO UPDATE SET
                        last_rollover_date = MAX(last_rollover_date, excluded.last_rollover_date),
                        updated_at = excluded.updated_at
                    """,
                    (user_id, day.isoformat(), now),
                )
                row = conn.execute(
                    "SELECT last_rollover_date FROM user_rollover WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to write rollover state: {exc}") from exc
        return date.fromisoformat(row["last_rollover_date"])

    def _log_run_sync(self, run: RolloverRun) -> RolloverRun:
        executed_at = run.executed_at or datetime.now().isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO rollover_logs
                        (execution_date, success_count, error_count, executed_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        run.execution_date.isoformat(), run.success_count,
                        run.error_count, executed_at,
                    ),
                )
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to log rollover run: {exc}") from exc
        logger.info(
            "Rollover run logged for %s: %d ok, %d failed",
            run.execution_date, run.success_count, run.error_count,
        )
        return RolloverRun(
            execution_date=run.execution_date,
            success_count=run.success_count,
            error_count=run.error_count,
            executed_at=executed_at,
        )

    def _last_run_sync(self) -> RolloverRun | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM rollover_logs ORDER BY executed_at DESC, id DESC LIMIT 1"
                ).fetchone()
        except sqlite3.Error as exc:
            raise LedgerStoreError(f"Failed to read rollover log: {exc}") from exc
        if row is None:
            return None
        return RolloverRun(
            execution_date=date.fromisoformat(row["execution_date"]),
            success_count=row["success_count"],
            error_count=row["error_count"],
            executed_at=row["executed_at"],
        )


class TaskDB(_SQLiteDB):
    """Local task table, used when the task registry provider is "sqlite"."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id          TEXT PRIMARY KEY,
                    title       TEXT NOT NULL DEFAULT '',
                    assignee_id TEXT NOT NULL,
                    due_date    TEXT,
                    status      TEXT NOT NULL,
                    team        TEXT NOT NULL DEFAULT '',
                    client_id   TEXT
                )
            """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            assignee_id=row["assignee_id"],
            due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
            status=row["status"],
            team=row["team"],
            client_id=row["client_id"],
        )

    def add_task(self, task: Task) -> Task:
        """Insert or replace a task."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO tasks
                    (id, title, assignee_id, due_date, status, team, client_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, task.title, task.assignee_id,
                    task.due_date.isoformat() if task.due_date else None,
                    task.status, task.team, task.client_id,
                ),
            )
        logger.info("Task stored: %s '%s' due %s", task.id, task.title, task.due_date)
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self,
        assignee_id: str,
        due_on: date | None = None,
        due_before: date | None = None,
    ) -> list[Task]:
        query = "SELECT * FROM tasks WHERE assignee_id = ?"
        params: list = [assignee_id]
        if due_on is not None:
            query += " AND due_date = ?"
            params.append(due_on.isoformat())
        if due_before is not None:
            query += " AND due_date < ?"
            params.append(due_before.isoformat())
        query += " ORDER BY due_date, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_tasks(self, task_ids: list[str]) -> list[Task]:
        if not task_ids:
            return []
        placeholders = ", ".join("?" for _ in task_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE id IN ({placeholders})", task_ids,
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def set_status(self, task_id: str, status: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = ? WHERE id = ?", (status, task_id),
            )
        return cursor.rowcount > 0

    def delete_task(self, task_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task %s deleted", task_id)
        return deleted
