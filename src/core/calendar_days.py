"""
Worklog — Calendar helpers.

Days are `datetime.date` values everywhere inside the engine; ISO strings
only appear at the edges (storage, HTTP, chat commands). "Today" is always
computed in the configured timezone, never from the host's local clock.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator
from zoneinfo import ZoneInfo

ONE_DAY = timedelta(days=1)


class DayPhase(Enum):
    PAST = "past"
    PRESENT = "present"
    FUTURE = "future"


def parse_day(value: str | date) -> date:
    """Parse "YYYY-MM-DD" (a date passes through). Raises ValueError.

    A full ISO timestamp is accepted and cut to its date; any other
    trailing text is an error.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if "T" in text:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def format_day(day: date) -> str:
    return day.isoformat()


def today_in(tz_name: str) -> date:
    """Current calendar date in the given IANA zone."""
    return datetime.now(ZoneInfo(tz_name)).date()


def classify(day: date, today: date) -> DayPhase:
    if day < today:
        return DayPhase.PAST
    if day > today:
        return DayPhase.FUTURE
    return DayPhase.PRESENT


def week_start(day: date, first_weekday: int = 0) -> date:
    """First day of the week containing `day` (0 = Monday)."""
    offset = (day.weekday() - first_weekday) % 7
    return day - timedelta(days=offset)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive, ascending."""
    d = start
    while d <= end:
        yield d
        d += ONE_DAY


def rollover_chain(floor: date, target: date) -> list[date]:
    """Days whose ledgers receive carried tasks: (floor, target], ascending."""
    if target <= floor:
        return []
    return list(iter_days(floor + ONE_DAY, target))


def is_sunday(day: date) -> bool:
    return day.weekday() == 6
