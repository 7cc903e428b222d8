"""
Worklog — Temporal Lock Gate.

Decides whether a ledger mutation is allowed, given the target day, the
trusted "today", and which day the member currently has open. Rejections
are ordinary, user-facing outcomes: they come back as values, not
exceptions.

Completion:   FUTURE -> FutureDateNotCompletable
              target or open day is not today -> MustViewTodayToComplete
              absent day -> AbsentDayReadOnly
Un-complete:  PAST -> PastDateImmutable; absent day -> AbsentDayReadOnly
Assign, check-in/out, absence toggle: PAST -> PastDateImmutable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from src.core.calendar_days import DayPhase, classify, format_day

logger = logging.getLogger(__name__)


class LockReason(Enum):
    FUTURE_DATE_NOT_COMPLETABLE = "FutureDateNotCompletable"
    MUST_VIEW_TODAY_TO_COMPLETE = "MustViewTodayToComplete"
    PAST_DATE_IMMUTABLE = "PastDateImmutable"
    ABSENT_DAY_READ_ONLY = "AbsentDayReadOnly"


class Mutation(Enum):
    COMPLETE = "complete"
    UNCOMPLETE = "uncomplete"
    ASSIGN = "assign"
    ATTENDANCE = "attendance"


@dataclass(frozen=True)
class Rejection:
    """Why a mutation was refused, with the dates needed to explain it."""

    reason: LockReason
    mutation: Mutation
    target_date: str
    today: str
    active_date: str | None = None

    @property
    def code(self) -> str:
        return self.reason.value

    @property
    def message(self) -> str:
        if self.reason is LockReason.FUTURE_DATE_NOT_COMPLETABLE:
            return (
                f"Tasks on {self.target_date} can't be completed yet; "
                f"today is {self.today}."
            )
        if self.reason is LockReason.MUST_VIEW_TODAY_TO_COMPLETE:
            viewing = self.active_date or "no day"
            return (
                f"Open today's card ({self.today}) to complete tasks; "
                f"you are viewing {viewing}."
            )
        if self.reason is LockReason.PAST_DATE_IMMUTABLE:
            return f"{self.target_date} has passed and is read-only."
        return f"{self.target_date} is marked absent; tasks can't be changed."


@dataclass(frozen=True)
class LockDecision:
    allowed: bool
    phase: DayPhase
    rejection: Rejection | None = None


def _reject(
    reason: LockReason,
    mutation: Mutation,
    target: date,
    today: date,
    active: date | None = None,
) -> LockDecision:
    rejection = Rejection(
        reason=reason,
        mutation=mutation,
        target_date=format_day(target),
        today=format_day(today),
        active_date=format_day(active) if active else None,
    )
    logger.warning(
        "Lock gate rejected %s on %s (today %s): %s",
        mutation.value, rejection.target_date, rejection.today, reason.value,
    )
    return LockDecision(allowed=False, phase=classify(target, today), rejection=rejection)


def check_complete(
    target: date, today: date, active: date | None, is_absent: bool = False,
) -> LockDecision:
    """Completing is only possible on today's ledger, with today's card open."""
    phase = classify(target, today)
    if phase is DayPhase.FUTURE:
        return _reject(LockReason.FUTURE_DATE_NOT_COMPLETABLE, Mutation.COMPLETE, target, today, active)
    if phase is not DayPhase.PRESENT or active != today:
        return _reject(LockReason.MUST_VIEW_TODAY_TO_COMPLETE, Mutation.COMPLETE, target, today, active)
    if is_absent:
        return _reject(LockReason.ABSENT_DAY_READ_ONLY, Mutation.COMPLETE, target, today, active)
    return LockDecision(allowed=True, phase=phase)


def check_uncomplete(target: date, today: date, is_absent: bool = False) -> LockDecision:
    phase = classify(target, today)
    if phase is DayPhase.PAST:
        return _reject(LockReason.PAST_DATE_IMMUTABLE, Mutation.UNCOMPLETE, target, today)
    if is_absent:
        return _reject(LockReason.ABSENT_DAY_READ_ONLY, Mutation.UNCOMPLETE, target, today)
    return LockDecision(allowed=True, phase=phase)


def check_assign(target: date, today: date) -> LockDecision:
    phase = classify(target, today)
    if phase is DayPhase.PAST:
        return _reject(LockReason.PAST_DATE_IMMUTABLE, Mutation.ASSIGN, target, today)
    return LockDecision(allowed=True, phase=phase)


def check_attendance(target: date, today: date) -> LockDecision:
    """Check-in/out edits and absence toggles."""
    phase = classify(target, today)
    if phase is DayPhase.PAST:
        return _reject(LockReason.PAST_DATE_IMMUTABLE, Mutation.ATTENDANCE, target, today)
    return LockDecision(allowed=True, phase=phase)
