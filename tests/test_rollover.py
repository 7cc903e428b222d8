"""Tests for src.core.rollover — the day-by-day carry-forward chain."""

import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock, call

from src.core.reconciler import Reconciler
from src.core.rollover import RolloverChainProcessor
from src.data.models import DayLedger
from src.ports.ledger_port import LedgerStoreError

USER = "member-a"
D1 = date(2024, 3, 1)
D2 = date(2024, 3, 2)
D3 = date(2024, 3, 3)
D4 = date(2024, 3, 4)
D5 = date(2024, 3, 5)


@pytest.fixture
def chain(ledger_db):
    return RolloverChainProcessor(ledger_db)


async def _snapshot(ledger_db):
    """Everything stored, without write timestamps."""
    return [
        (lg.user_id, lg.day, lg.assigned_task_ids, lg.completed_task_ids, lg.rolled_over_task_ids)
        for lg in await ledger_db.list_ledgers()
    ]


class TestSingleStep:
    @pytest.mark.asyncio
    async def test_moves_open_tasks_forward(self, chain, ledger_db):
        await ledger_db.put(DayLedger(
            user_id=USER, day=D1, assigned_task_ids={"a", "b"}, completed_task_ids={"c"},
        ))
        added = await chain.move_unfinished_to_next_day(USER, D1, D2)

        assert added == ["a", "b"]
        prev = await ledger_db.get(USER, D1)
        nxt = await ledger_db.get(USER, D2)
        assert prev.assigned_task_ids == set()
        assert prev.rolled_over_task_ids == {"a", "b"}
        assert prev.completed_task_ids == {"c"}
        assert nxt.assigned_task_ids == {"a", "b"}

    @pytest.mark.asyncio
    async def test_union_keeps_existing_ids(self, chain, ledger_db):
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"a"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D2, assigned_task_ids={"a", "x"}))
        added = await chain.move_unfinished_to_next_day(USER, D1, D2)
        assert added == []
        assert (await ledger_db.get(USER, D2)).assigned_task_ids == {"a", "x"}

    @pytest.mark.asyncio
    async def test_task_completed_on_target_day_is_not_reopened(self, chain, ledger_db):
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"a"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D2, completed_task_ids={"a"}))
        await chain.move_unfinished_to_next_day(USER, D1, D2)
        nxt = await ledger_db.get(USER, D2)
        assert nxt.assigned_task_ids == set()
        assert nxt.completed_task_ids == {"a"}

    @pytest.mark.asyncio
    async def test_must_move_forward(self, chain):
        with pytest.raises(ValueError):
            await chain.move_unfinished_to_next_day(USER, D2, D2)
        with pytest.raises(ValueError):
            await chain.move_unfinished_to_next_day(USER, D2, D1)

    @pytest.mark.asyncio
    async def test_nothing_open_writes_nothing(self, chain, ledger_db):
        assert await chain.move_unfinished_to_next_day(USER, D1, D2) == []
        assert await ledger_db.list_ledgers() == []

    @pytest.mark.asyncio
    async def test_interrupted_step_is_finished_by_rerun(self, chain, ledger_db, monkeypatch):
        """Next day written, previous day write lost: re-running completes the move."""
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"a"}))
        real_put = ledger_db.put
        failures = []

        async def flaky_put(ledger):
            if ledger.day == D1 and not failures:
                failures.append(ledger.day)
                raise LedgerStoreError("write lost")
            return await real_put(ledger)

        monkeypatch.setattr(ledger_db, "put", flaky_put)

        with pytest.raises(LedgerStoreError):
            await chain.move_unfinished_to_next_day(USER, D1, D2)
        assert (await ledger_db.get(USER, D2)).assigned_task_ids == {"a"}
        assert (await ledger_db.get(USER, D1)).assigned_task_ids == {"a"}

        await chain.move_unfinished_to_next_day(USER, D1, D2)

        prev = await ledger_db.get(USER, D1)
        assert prev.assigned_task_ids == set()
        assert prev.rolled_over_task_ids == {"a"}
        assert (await ledger_db.get(USER, D2)).assigned_task_ids == {"a"}


class TestRollForward:
    @pytest.mark.asyncio
    async def test_open_task_reaches_target(self, chain, ledger_db):
        """One task due 2024-03-01, never completed, rolled to 2024-03-03."""
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"t1"}))

        report = await chain.roll_forward(USER, D1, D3)

        assert (await ledger_db.get(USER, D3)).assigned_task_ids == {"t1"}
        assert (await ledger_db.get(USER, D1)).assigned_task_ids == set()
        assert (await ledger_db.get(USER, D2)).assigned_task_ids == set()
        assert report.days_processed == 2
        assert report.moved == {D2: ["t1"], D3: ["t1"]}
        assert report.total_moved == 2

    @pytest.mark.asyncio
    async def test_task_completed_mid_chain_stays_completed(self, chain, ledger_db):
        """Completed on 2024-03-02, then rolled to 2024-03-05."""
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"t1"}))
        await chain.roll_forward(USER, D1, D2)
        mid = await ledger_db.get(USER, D2)
        mid.complete("t1")
        await ledger_db.put(mid)

        await chain.roll_forward(USER, D1, D5)

        for day in (D3, D4, D5):
            assert "t1" not in (await ledger_db.get(USER, day)).assigned_task_ids
        assert (await ledger_db.get(USER, D2)).completed_task_ids == {"t1"}

    @pytest.mark.asyncio
    async def test_idempotent(self, chain, ledger_db):
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"a", "b"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D2, assigned_task_ids={"c"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D3, completed_task_ids={"b"}))

        await chain.roll_forward(USER, D1, D5)
        once = await _snapshot(ledger_db)
        report = await chain.roll_forward(USER, D1, D5)
        twice = await _snapshot(ledger_db)

        assert once == twice
        assert report.total_moved == 0
        assert (await ledger_db.get(USER, D5)).assigned_task_ids == {"a", "c"}

    @pytest.mark.asyncio
    async def test_stale_copy_of_completed_task_is_pruned(self, chain, ledger_db):
        await ledger_db.put(DayLedger(user_id=USER, day=D2, completed_task_ids={"t1"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D3, assigned_task_ids={"t1", "t2"}))

        await chain.roll_forward(USER, D2, D4)

        assert (await ledger_db.get(USER, D3)).assigned_task_ids == set()
        assert (await ledger_db.get(USER, D4)).assigned_task_ids == {"t2"}

    @pytest.mark.asyncio
    async def test_before_step_runs_on_each_source_day(self, chain):
        hook = AsyncMock()
        await chain.roll_forward(USER, D1, D3, before_step=hook)
        assert hook.await_args_list == [call(USER, D1), call(USER, D2)]

    @pytest.mark.asyncio
    async def test_empty_range(self, chain):
        report = await chain.roll_forward(USER, D3, D3)
        assert report.days_processed == 0

    @pytest.mark.asyncio
    async def test_invariant_after_chain(self, chain, ledger_db):
        await ledger_db.put(DayLedger(user_id=USER, day=D1, assigned_task_ids={"a", "b", "c"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D2, completed_task_ids={"a"}))
        await ledger_db.put(DayLedger(user_id=USER, day=D4, completed_task_ids={"b"}))

        await chain.roll_forward(USER, D1, D5)

        for ledger in await ledger_db.list_ledgers(USER):
            a, c, r = ledger.assigned_task_ids, ledger.completed_task_ids, ledger.rolled_over_task_ids
            assert a & c == set()
            assert a & r == set()
            assert c & r == set()
        assert (await ledger_db.get(USER, D5)).assigned_task_ids == {"c"}


class TestOrderingWithReconciliation:
    @pytest.mark.asyncio
    async def test_reconcile_without_chain_misses_carried_task(
        self, chain, ledger_db, registry, add_task,
    ):
        add_task("t1", due=D1)
        reconciler = Reconciler(ledger_db, registry)
        await reconciler.reconcile(USER, D1)

        skipped = await reconciler.reconcile(USER, D3)
        assert "t1" not in skipped.ledger.assigned_task_ids

        await chain.roll_forward(USER, D1, D3)
        rolled = await reconciler.reconcile(USER, D3)
        assert "t1" in rolled.ledger.assigned_task_ids

    @pytest.mark.asyncio
    async def test_completed_task_never_returns_on_later_days(
        self, chain, ledger_db, registry, add_task,
    ):
        """Due date moved to a later day after the task was already completed."""
        reconciler = Reconciler(ledger_db, registry)
        add_task("t1", due=D1)
        await reconciler.reconcile(USER, D1)
        done = await ledger_db.get(USER, D1)
        done.complete("t1")
        await ledger_db.put(done)

        add_task("t1", due=D4)
        for day in (D2, D3, D4, D5):
            await chain.roll_forward(USER, day - timedelta(days=1), day)
            result = await reconciler.reconcile(USER, day)
            assert "t1" not in result.ledger.assigned_task_ids
