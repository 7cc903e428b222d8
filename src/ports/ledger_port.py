"""Ledger port — abstract interface for per-user, per-day ledger storage.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol

from src.data.models import DayLedger


class LedgerStoreError(Exception):
    """Raised when any ledger persistence operation fails."""


class LedgerStore(Protocol):
    """Key-value style storage keyed by (user_id, day). No business rules."""

    async def get(self, user_id: str, day: date) -> DayLedger: ...

    async def put(self, ledger: DayLedger) -> DayLedger: ...

    async def list_ledgers(
        self,
        user_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DayLedger]: ...

    async def find_completions(
        self, user_id: str, task_ids: Iterable[str]
    ) -> dict[str, date]: ...

    async def remove_task_everywhere(self, task_id: str) -> int: ...
