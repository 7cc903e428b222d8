"""
Worklog — Reconciler.

Merges task registry facts into one day's ledger:

- tasks due that day and still open in the registry are added to the
  assigned set, unless the member already completed them on some day or
  they were already carried forward out of this day;
- open or carried ids the member already completed on an earlier day are
  dropped, so finished work never shows up again on a later card;
- any assigned task the registry now reports as finished is moved to the
  completed set;
- every other id already in the ledger (carried in from earlier days,
  manually assigned, or no longer in the registry) is left where it is.

Overdue tasks are never pulled in by `reconcile`: carrying them forward is
the rollover chain's job. Every step is idempotent, so a failed run can
simply be retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from src.core.calendar_days import ONE_DAY

if TYPE_CHECKING:
    from src.core.task_registry import TaskRegistry
    from src.data.models import DayLedger
    from src.ports.ledger_port import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    ledger: DayLedger
    added: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.completed or self.pruned)


class Reconciler:
    def __init__(self, store: LedgerStore, registry: TaskRegistry) -> None:
        self._store = store
        self._registry = registry

    async def _seed(self, ledger: DayLedger, include_overdue: bool = False) -> list[str]:
        """Add open tasks due on the ledger's day. Mutates `ledger` in place.

        With `include_overdue`, open tasks due on any earlier day are added
        too.
        """
        if include_overdue:
            due = await self._registry.open_tasks_due_before(
                ledger.user_id, ledger.day + ONE_DAY,
            )
        else:
            due = await self._registry.tasks_due_on(ledger.user_id, ledger.day)
        candidates = [
            t.id for t in due
            if not self._registry.is_terminal(t)
            and t.id not in ledger.completed_task_ids
            and t.id not in ledger.rolled_over_task_ids
            and t.id not in ledger.assigned_task_ids
        ]
        if not candidates:
            return []

        finished_elsewhere = await self._store.find_completions(ledger.user_id, candidates)
        added = []
        for task_id in candidates:
            if task_id in finished_elsewhere:
                continue
            if ledger.assign(task_id):
                added.append(task_id)
        return added

    async def seed_due_tasks(
        self, user_id: str, day: date, include_overdue: bool = False,
    ) -> list[str]:
        """Add open tasks due on `day` without touching anything else.

        Used while walking the rollover chain, so tasks whose due day was
        never opened still get carried forward. The chain's first day is
        seeded with `include_overdue` so work due before it is not lost.
        """
        ledger = await self._store.get(user_id, day)
        added = await self._seed(ledger, include_overdue)
        if added:
            await self._store.put(ledger)
            logger.info("Seeded %d due task(s) into %s/%s", len(added), user_id, day)
        return added

    async def _prune_finished_earlier(self, ledger: DayLedger) -> list[str]:
        """Drop open / carried ids completed on a day before the ledger's."""
        watch = ledger.assigned_task_ids | ledger.rolled_over_task_ids
        if not watch:
            return []
        completions = await self._store.find_completions(ledger.user_id, watch)
        pruned = sorted(tid for tid, d in completions.items() if d < ledger.day)
        for task_id in pruned:
            ledger.assigned_task_ids.discard(task_id)
            ledger.rolled_over_task_ids.discard(task_id)
        return pruned

    async def reconcile(self, user_id: str, day: date) -> ReconcileResult:
        ledger = await self._store.get(user_id, day)
        added = await self._seed(ledger)
        pruned = await self._prune_finished_earlier(ledger)

        completed = []
        if ledger.assigned_task_ids:
            tasks = await self._registry.resolve(ledger.assigned_task_ids)
            for task_id in sorted(ledger.assigned_task_ids):
                task = tasks.get(task_id)
                if task is not None and self._registry.is_terminal(task):
                    ledger.complete(task_id)
                    completed.append(task_id)

        result = ReconcileResult(ledger=ledger, added=added, completed=completed, pruned=pruned)
        if result.changed or not ledger.persisted:
            result.ledger = await self._store.put(ledger)

        if result.changed:
            logger.info(
                "Reconciled %s/%s: +%d assigned, %d moved to completed, %d finished earlier",
                user_id, day, len(added), len(completed), len(pruned),
            )
        else:
            logger.debug("Reconciled %s/%s: no changes", user_id, day)
        return result
