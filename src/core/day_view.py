"""
Worklog — Day View Coordinator.

The only consumer of the store, registry, reconciler, rollover chain and
lock gate. Each call runs its steps in order (roll the chain up to the
day, reconcile the day, read the ledger) and returns plain result objects;
renderers never hold ledger copies of their own.

The steps are separate awaits, not a transaction. Every step is
idempotent, so a call that fails half-way can be retried as-is. Calls for
the same member are serialized within this process; nothing guards
against a second process editing the same member.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable

from src.core import lock_gate
from src.core.calendar_days import (
    ONE_DAY,
    DayPhase,
    classify,
    is_sunday,
    today_in,
    week_start,
)
from src.core.lock_gate import Rejection
from src.core.reconciler import Reconciler
from src.core.rollover import RolloverChainProcessor, RolloverReport
from src.core.task_registry import REOPEN_STATUS

if TYPE_CHECKING:
    from src.core.task_registry import TaskRegistry
    from src.data.db import RolloverDB
    from src.data.models import DayLedger, Task
    from src.ports.ledger_port import LedgerStore
    from src.ports.task_registry_port import TaskStatusWriter

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ResultKind(Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


@dataclass
class MutationResult:
    kind: ResultKind
    ledger: DayLedger
    rejection: Rejection | None = None

    @property
    def ok(self) -> bool:
        return self.kind is not ResultKind.REJECTED


@dataclass
class DayView:
    """A ledger plus the registry tasks behind its ids, ready to render."""

    user_id: str
    day: date
    today: date
    phase: DayPhase
    ledger: DayLedger
    is_absent: bool
    assigned: list[Task] = field(default_factory=list)
    completed: list[Task] = field(default_factory=list)
    carried_over: list[Task] = field(default_factory=list)
    missing_task_ids: list[str] = field(default_factory=list)

    @property
    def can_complete(self) -> bool:
        return self.phase is DayPhase.PRESENT and not self.is_absent


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class DayViewCoordinator:
    """Orchestrates rollover, reconciliation and gated ledger mutations."""

    def __init__(
        self,
        store: LedgerStore,
        registry: TaskRegistry,
        *,
        rollover_db: RolloverDB | None = None,
        status_writer: TaskStatusWriter | None = None,
        clock: Callable[[], date] | None = None,
        week_start_weekday: int = 0,
        max_lookback_days: int = 30,
        across_days_horizon_days: int = 14,
        sunday_default_absent: bool = False,
    ) -> None:
        self._store = store
        self._registry = registry
        self._rollover_db = rollover_db
        self._status_writer = status_writer
        self._clock = clock or _default_clock
        self._week_start_weekday = week_start_weekday
        self._max_lookback = timedelta(days=max_lookback_days)
        self._across_days_horizon = timedelta(days=across_days_horizon_days)
        self._sunday_default_absent = sunday_default_absent

        self.reconciler = Reconciler(store, registry)
        self.chain = RolloverChainProcessor(store)

        self._active_days: dict[str, date] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def today(self) -> date:
        return self._clock()

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    @property
    def rollover_db(self) -> RolloverDB | None:
        return self._rollover_db

    def active_day(self, user_id: str) -> date | None:
        """The day whose card this member has open, if any."""
        return self._active_days.get(user_id)

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    def is_absent(self, ledger: DayLedger) -> bool:
        if ledger.is_absent is not None:
            return ledger.is_absent
        return self._sunday_default_absent and is_sunday(ledger.day)

    async def _chain_floor(self, user_id: str, target: date) -> date:
        """First source day of the chain ending at `target`.

        The target's week start, lowered to an older watermark or to the
        due date of the oldest unfinished overdue task, but never further
        back than the lookback window.
        """
        floor = week_start(target, self._week_start_weekday)
        older = []
        if self._rollover_db is not None:
            watermark = await self._rollover_db.get_watermark(user_id)
            if watermark is not None and watermark < floor:
                older.append(watermark)

        overdue = await self._registry.open_tasks_due_before(user_id, floor)
        if overdue:
            completions = await self._store.find_completions(user_id, [t.id for t in overdue])
            pending = [t.due_date for t in overdue if t.id not in completions]
            if pending:
                older.append(min(pending))

        if not older:
            return floor
        return min(floor, max(min(older), target - self._max_lookback))

    # ------------------------------------------------------------------
    # Rollover
    # ------------------------------------------------------------------

    async def roll_through(self, user_id: str, day: date) -> RolloverReport:
        """Run the chain from the member's floor up to `day` (never past today).

        Every source day is seeded with the tasks due on it before its open
        tasks are carried forward. The floor day also takes any unfinished
        task due before it.
        """
        target = min(day, self.today())
        floor = await self._chain_floor(user_id, target)

        async def _seed(member: str, source_day: date) -> list[str]:
            return await self.reconciler.seed_due_tasks(
                member, source_day, include_overdue=source_day == floor,
            )

        report = await self.chain.roll_forward(user_id, floor, target, before_step=_seed)
        if self._rollover_db is not None:
            await self._rollover_db.advance_watermark(user_id, target)
        if report.total_moved:
            logger.info(
                "Rollover for %s through %s: %d task(s) carried over %d day(s)",
                user_id, target, report.total_moved, report.days_processed,
            )
        return report

    async def rollover_member(self, user_id: str, day: date) -> RolloverReport:
        """Bring a member's ledgers up to `day` without opening it."""
        async with self._lock_for(user_id):
            return await self.roll_through(user_id, day)

    async def move_unfinished_tasks_to_next_day(
        self, user_id: str, from_day: date, to_day: date,
    ) -> list[str]:
        """Single chain step, exposed for manual repair."""
        async with self._lock_for(user_id):
            return await self.chain.move_unfinished_to_next_day(user_id, from_day, to_day)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def open_day(self, user_id: str, day: date) -> DayView:
        """Roll, reconcile and load a day; it becomes the member's open card.

        The chain only runs up to today. A future day's card therefore lists
        work assigned or due on it, but not today's unfinished tasks; those
        are carried over once that day arrives.
        """
        async with self._lock_for(user_id):
            await self.roll_through(user_id, day)
            await self.reconciler.reconcile(user_id, day)
            ledger = await self._store.get(user_id, day)
            view = await self._build_view(ledger)
            self._active_days[user_id] = day
        return view

    async def get_daily_report(self, user_id: str, day: date) -> DayLedger:
        """Read a ledger as stored. Triggers no rollover, reconciliation or write."""
        return await self._store.get(user_id, day)

    async def _build_view(self, ledger: DayLedger) -> DayView:
        ids = ledger.assigned_task_ids | ledger.completed_task_ids | ledger.rolled_over_task_ids
        tasks = await self._registry.resolve(ids)

        def _pick(task_ids: set[str]) -> list[Task]:
            return sorted(
                (tasks[t] for t in task_ids if t in tasks),
                key=lambda t: (t.due_date or date.max, t.title, t.id),
            )

        today = self.today()
        return DayView(
            user_id=ledger.user_id,
            day=ledger.day,
            today=today,
            phase=classify(ledger.day, today),
            ledger=ledger,
            is_absent=self.is_absent(ledger),
            assigned=_pick(ledger.assigned_task_ids),
            completed=_pick(ledger.completed_task_ids),
            carried_over=_pick(ledger.rolled_over_task_ids),
            missing_task_ids=sorted(ids - tasks.keys()),
        )

    # ------------------------------------------------------------------
    # Task toggles
    # ------------------------------------------------------------------

    async def toggle_task(
        self, user_id: str, day: date, task_id: str, wants_completed: bool,
    ) -> MutationResult:
        async with self._lock_for(user_id):
            return await self._toggle(user_id, day, task_id, wants_completed)

    async def move_task_to_completed(self, user_id: str, day: date, task_id: str) -> MutationResult:
        return await self.toggle_task(user_id, day, task_id, True)

    async def move_task_to_assigned(self, user_id: str, day: date, task_id: str) -> MutationResult:
        return await self.toggle_task(user_id, day, task_id, False)

    async def _toggle(
        self, user_id: str, day: date, task_id: str, wants_completed: bool,
    ) -> MutationResult:
        today = self.today()
        ledger = await self._store.get(user_id, day)
        absent = self.is_absent(ledger)

        if wants_completed:
            decision = lock_gate.check_complete(day, today, self.active_day(user_id), absent)
        else:
            decision = lock_gate.check_uncomplete(day, today, absent)
        if not decision.allowed:
            return MutationResult(ResultKind.REJECTED, ledger, decision.rejection)

        changed = ledger.complete(task_id) if wants_completed else ledger.reopen(task_id)
        if changed:
            await self._store.put(ledger)
            logger.info(
                "Task %s %s on %s/%s",
                task_id, "completed" if wants_completed else "reopened", user_id, day,
            )
        await self._write_back_status(task_id, wants_completed)

        result = await self.reconciler.reconcile(user_id, day)
        kind = ResultKind.APPLIED if changed else ResultKind.UNCHANGED
        return MutationResult(kind, result.ledger)

    async def _write_back_status(self, task_id: str, completed: bool) -> None:
        """Keep the registry's status in line with a daily-report toggle."""
        if self._status_writer is None:
            return
        task = (await self._registry.resolve([task_id])).get(task_id)
        if task is None:
            return
        terminal = self._registry.is_terminal(task)
        if completed and not terminal:
            await self._status_writer.set_status(task_id, self._registry.completion_status(task.team))
        elif not completed and terminal:
            await self._status_writer.set_status(task_id, REOPEN_STATUS)

    async def move_task_to_completed_across_days(
        self, user_id: str, viewed_day: date, task_id: str, task_due_date: date,
    ) -> MutationResult:
        """Complete a task from a later day's card and clear it from later days."""
        async with self._lock_for(user_id):
            result = await self._toggle(user_id, viewed_day, task_id, True)
            if not result.ok:
                return result

            cleared = 0
            for ledger in await self._store.list_ledgers(user_id, start=viewed_day + ONE_DAY):
                if task_id in ledger.assigned_task_ids or task_id in ledger.rolled_over_task_ids:
                    ledger.assigned_task_ids.discard(task_id)
                    ledger.rolled_over_task_ids.discard(task_id)
                    await self._store.put(ledger)
                    cleared += 1
            logger.info(
                "Task %s (due %s) completed on %s; cleared from %d later day(s)",
                task_id, task_due_date, viewed_day, cleared,
            )
        return result

    async def move_task_to_assigned_across_days(
        self, user_id: str, viewed_day: date, task_id: str, task_due_date: date,
    ) -> MutationResult:
        """Un-complete a task and re-open it on existing later ledgers."""
        async with self._lock_for(user_id):
            result = await self._toggle(user_id, viewed_day, task_id, False)
            if not result.ok:
                return result

            start = max(viewed_day + ONE_DAY, task_due_date)
            end = viewed_day + self._across_days_horizon
            reopened = 0
            for ledger in await self._store.list_ledgers(user_id, start=start, end=end):
                if ledger.assign(task_id):
                    await self._store.put(ledger)
                    reopened += 1
            logger.info(
                "Task %s reopened on %s and %d later day(s)", task_id, viewed_day, reopened,
            )
        return result

    async def assign_task_to_specific_day(
        self, user_id: str, day: date, task_id: str,
    ) -> MutationResult:
        """Manual override: open a task on a day regardless of its due date."""
        async with self._lock_for(user_id):
            ledger = await self._store.get(user_id, day)
            decision = lock_gate.check_assign(day, self.today())
            if not decision.allowed:
                return MutationResult(ResultKind.REJECTED, ledger, decision.rejection)

            if not ledger.assign(task_id):
                if task_id in ledger.completed_task_ids:
                    logger.info("Task %s already completed on %s/%s", task_id, user_id, day)
                return MutationResult(ResultKind.UNCHANGED, ledger)

            ledger = await self._store.put(ledger)
            logger.info("Manually assigned task %s to %s on %s", task_id, user_id, day)
        return MutationResult(ResultKind.APPLIED, ledger)

    # ------------------------------------------------------------------
    # Attendance fields
    # ------------------------------------------------------------------

    async def mark_absent(self, user_id: str, day: date, is_absent: bool) -> MutationResult:
        async with self._lock_for(user_id):
            ledger = await self._store.get(user_id, day)
            decision = lock_gate.check_attendance(day, self.today())
            if not decision.allowed:
                return MutationResult(ResultKind.REJECTED, ledger, decision.rejection)

            ledger.is_absent = is_absent
            if is_absent:
                ledger.check_in_time = None
                ledger.check_out_time = None
            ledger = await self._store.put(ledger)
            logger.info("%s marked %s on %s", user_id, "absent" if is_absent else "present", day)
        return MutationResult(ResultKind.APPLIED, ledger)

    async def update_check_in_out(
        self,
        user_id: str,
        day: date,
        check_in: str | None = None,
        check_out: str | None = None,
    ) -> MutationResult:
        """Set check-in and/or check-out ("HH:MM"). None leaves a field as is."""
        for value in (check_in, check_out):
            if value is not None and not _TIME_RE.match(value):
                raise ValueError(f"Invalid time {value!r}; expected HH:MM")

        async with self._lock_for(user_id):
            ledger = await self._store.get(user_id, day)
            decision = lock_gate.check_attendance(day, self.today())
            if not decision.allowed:
                return MutationResult(ResultKind.REJECTED, ledger, decision.rejection)

            if check_in is not None:
                ledger.check_in_time = check_in
            if check_out is not None:
                ledger.check_out_time = check_out
            ledger = await self._store.put(ledger)
            logger.info(
                "Attendance for %s on %s: in=%s out=%s",
                user_id, day, ledger.check_in_time, ledger.check_out_time,
            )
        return MutationResult(ResultKind.APPLIED, ledger)

    # ------------------------------------------------------------------
    # Registry housekeeping
    # ------------------------------------------------------------------

    async def remove_task_everywhere(self, task_id: str) -> int:
        """Forget a deleted task in every open / carried-over set."""
        return await self._store.remove_task_everywhere(task_id)


def _default_clock() -> date:
    from src.config import settings

    return today_in(settings.TIMEZONE)


def build_coordinator(db_path: str | None = None) -> DayViewCoordinator:
    """Wire a coordinator from settings: SQLite ledgers + configured registry."""
    from src.adapters.registry_factory import create_task_registry
    from src.config import settings
    from src.core.task_registry import TaskRegistry
    from src.data.db import LedgerDB, RolloverDB

    source = create_task_registry(db_path=db_path)
    return DayViewCoordinator(
        LedgerDB(db_path=db_path),
        TaskRegistry(source, terminal_overrides=settings.TERMINAL_STATUSES),
        rollover_db=RolloverDB(db_path=db_path),
        status_writer=source if settings.SYNC_TASK_STATUS else None,
        week_start_weekday=settings.WEEK_START_WEEKDAY,
        max_lookback_days=settings.ROLLOVER_MAX_LOOKBACK_DAYS,
        across_days_horizon_days=settings.ACROSS_DAYS_HORIZON_DAYS,
        sunday_default_absent=settings.SUNDAY_DEFAULT_ABSENT,
    )
