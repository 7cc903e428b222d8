"""
Worklog — Data Models.

A DayLedger is the per-user, per-calendar-day record of which tasks were
open and which were finished. Tasks themselves belong to the external
task registry and are read-only here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass
class DayLedger:
    """Assigned / completed / carried-over task ids for one (user, day).

    The three id sets are pairwise disjoint: a task is open, finished, or
    was carried forward out of this day, never more than one of those.
    """

    user_id: str
    day: date
    assigned_task_ids: set[str] = field(default_factory=set)
    completed_task_ids: set[str] = field(default_factory=set)
    rolled_over_task_ids: set[str] = field(default_factory=set)
    check_in_time: str | None = None     # "HH:MM"
    check_out_time: str | None = None    # "HH:MM"
    is_absent: bool | None = None        # None until explicitly marked
    updated_at: str = ""                 # empty until first persisted

    @property
    def persisted(self) -> bool:
        return bool(self.updated_at)

    def assign(self, task_id: str) -> bool:
        """Open a task on this day. No-op (False) if already finished here."""
        if task_id in self.completed_task_ids:
            return False
        changed = task_id not in self.assigned_task_ids
        self.assigned_task_ids.add(task_id)
        self.rolled_over_task_ids.discard(task_id)
        return changed

    def complete(self, task_id: str) -> bool:
        changed = task_id not in self.completed_task_ids
        self.assigned_task_ids.discard(task_id)
        self.rolled_over_task_ids.discard(task_id)
        self.completed_task_ids.add(task_id)
        return changed

    def reopen(self, task_id: str) -> bool:
        """Move a task from completed (or nowhere) back to assigned."""
        changed = task_id not in self.assigned_task_ids
        self.completed_task_ids.discard(task_id)
        self.rolled_over_task_ids.discard(task_id)
        self.assigned_task_ids.add(task_id)
        return changed

    def carry_out(self, task_id: str) -> None:
        """Record that an unfinished task left this day for the next one."""
        self.assigned_task_ids.discard(task_id)
        self.rolled_over_task_ids.add(task_id)

    def unfinished(self) -> set[str]:
        return self.assigned_task_ids - self.completed_task_ids

    def copy(self) -> DayLedger:
        return DayLedger(
            user_id=self.user_id,
            day=self.day,
            assigned_task_ids=set(self.assigned_task_ids),
            completed_task_ids=set(self.completed_task_ids),
            rolled_over_task_ids=set(self.rolled_over_task_ids),
            check_in_time=self.check_in_time,
            check_out_time=self.check_out_time,
            is_absent=self.is_absent,
            updated_at=self.updated_at,
        )


@dataclass
class Task:
    """A task as reported by the task registry."""

    id: str
    assignee_id: str
    due_date: date | None
    status: str
    team: str = ""                # "creative" | "web"
    title: str = ""
    client_id: str | None = None


@dataclass
class RolloverRun:
    """One execution of the scheduled all-members rollover."""

    execution_date: date
    success_count: int = 0
    error_count: int = 0
    executed_at: str = ""
