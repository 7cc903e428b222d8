"""
Worklog — Scheduled Rollover.

A daily job that brings every member's ledgers up to today, so the chain
has already run by the time anyone opens their card.

Members are processed concurrently (bounded); each member's own chain
stays strictly sequential inside the coordinator. One member's failure is
logged and counted, and never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Iterable

from src.data.models import RolloverRun

if TYPE_CHECKING:
    from src.core.day_view import DayViewCoordinator
    from src.data.db import RolloverDB

logger = logging.getLogger(__name__)

MAX_CONCURRENT_MEMBERS = 5


async def run_scheduled_rollover(
    coordinator: DayViewCoordinator,
    member_ids: Iterable[str],
    today: date | None = None,
    rollover_db: RolloverDB | None = None,
) -> RolloverRun:
    """Roll every member through `today` and record the run.

    Args:
        coordinator: Coordinator whose chain (and watermark) is used.
        member_ids: Ledger user ids to process. Duplicates are ignored.
        today: Run date. Defaults to the coordinator's today.
        rollover_db: Where the run summary is appended. Defaults to the
            coordinator's rollover store; skipped if neither is set.
    """
    run_date = today or coordinator.today()
    rollover_db = rollover_db or coordinator.rollover_db
    members = sorted(set(member_ids))
    semaphore = asyncio.Semaphore(MAX_CONCURRENT_MEMBERS)

    async def _roll(user_id: str) -> bool:
        async with semaphore:
            try:
                report = await coordinator.rollover_member(user_id, run_date)
            except Exception as exc:
                logger.error("Scheduled rollover failed for %s: %s", user_id, exc)
                return False
            logger.debug(
                "Scheduled rollover for %s: %d task(s) moved",
                user_id, report.total_moved,
            )
            return True

    outcomes = await asyncio.gather(*(_roll(uid) for uid in members))

    run = RolloverRun(
        execution_date=run_date,
        success_count=sum(1 for ok in outcomes if ok),
        error_count=sum(1 for ok in outcomes if not ok),
        executed_at=datetime.now(timezone.utc).isoformat(),
    )
    if rollover_db is not None:
        run = await rollover_db.log_run(run)

    logger.info(
        "Scheduled rollover for %s: %d succeeded, %d failed",
        run_date, run.success_count, run.error_count,
    )
    return run


async def last_rollover_run(rollover_db: RolloverDB) -> RolloverRun | None:
    """Latest recorded scheduled run, or None if none has run yet."""
    return await rollover_db.last_run()
