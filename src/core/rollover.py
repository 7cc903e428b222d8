"""
Worklog — Rollover Chain Processor.

Carries unfinished tasks forward one day at a time. Day N+1 can only be
filled once day N is final, so the chain always runs strictly in date
order, one awaited step after another, and is never parallelized across
days.

Each step is a union into the next day plus a move out of the previous
one, written in that order: a crash between the two writes leaves the id
on both days, and re-running the step finishes the move. Re-running a
whole range is therefore safe and changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Awaitable, Callable

from src.core.calendar_days import ONE_DAY, rollover_chain

if TYPE_CHECKING:
    from src.ports.ledger_port import LedgerStore

logger = logging.getLogger(__name__)

# Called with (user_id, day) before a day's unfinished tasks are carried out
DayHook = Callable[[str, date], Awaitable[object]]


@dataclass
class RolloverReport:
    user_id: str
    from_day: date
    to_day: date
    days_processed: int = 0
    moved: dict[date, list[str]] = field(default_factory=dict)

    @property
    def total_moved(self) -> int:
        return sum(len(ids) for ids in self.moved.values())


class RolloverChainProcessor:
    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    async def move_unfinished_to_next_day(
        self, user_id: str, from_day: date, to_day: date,
    ) -> list[str]:
        """Single chain step: carry from_day's open tasks into to_day.

        Tasks already completed on some day before to_day are not carried,
        and are pruned from to_day if an earlier run put them there.
        Returns the ids newly added to to_day.
        """
        if to_day <= from_day:
            raise ValueError(f"Rollover must move forward: {from_day} -> {to_day}")

        prev = await self._store.get(user_id, from_day)
        nxt = await self._store.get(user_id, to_day)
        unfinished = prev.unfinished()

        watch = unfinished | nxt.assigned_task_ids | nxt.rolled_over_task_ids
        completions = await self._store.find_completions(user_id, watch) if watch else {}
        finished_before = {tid for tid, d in completions.items() if d < to_day}

        added = []
        for task_id in sorted(unfinished - finished_before):
            if nxt.assign(task_id):
                added.append(task_id)

        pruned = (nxt.assigned_task_ids | nxt.rolled_over_task_ids) & finished_before
        for task_id in pruned:
            nxt.assigned_task_ids.discard(task_id)
            nxt.rolled_over_task_ids.discard(task_id)

        if added or pruned:
            await self._store.put(nxt)

        if unfinished:
            for task_id in unfinished:
                prev.carry_out(task_id)
            await self._store.put(prev)
            logger.info(
                "Rolled over %d task(s) from %s to %s for user %s",
                len(unfinished), from_day, to_day, user_id,
            )
        if pruned:
            logger.info(
                "Pruned %d already-completed task(s) from %s/%s",
                len(pruned), user_id, to_day,
            )
        return added

    async def roll_forward(
        self,
        user_id: str,
        from_day: date,
        to_day: date,
        before_step: DayHook | None = None,
    ) -> RolloverReport:
        """Walk every day in (from_day, to_day], carrying open tasks forward.

        Args:
            before_step: Optional hook run on each source day just before its
                open tasks are carried out (the coordinator uses it to seed
                tasks due that day).
        """
        report = RolloverReport(user_id=user_id, from_day=from_day, to_day=to_day)
        for day in rollover_chain(from_day, to_day):
            prev = day - ONE_DAY
            if before_step is not None:
                await before_step(user_id, prev)
            added = await self.move_unfinished_to_next_day(user_id, prev, day)
            if added:
                report.moved[day] = added
            report.days_processed += 1

        logger.debug(
            "Rollover chain %s -> %s for %s: %d day(s), %d task(s) added",
            from_day, to_day, user_id, report.days_processed, report.total_moved,
        )
        return report
