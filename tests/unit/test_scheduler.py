"""
Unit tests for the monitor scheduler.

Tests cover:
- At most one task per (user, symbol), with supersession
- Idempotent cancel / cancel_all
- Self-deregistration only while still registered
- A task stopping its own user
- Per-user bookkeeping dropped once a user has no tasks
"""

import asyncio

import pytest

from tradewatch.trading.scheduler import MonitorScheduler


async def forever(log: list, name: str) -> None:
    log.append(f"{name}:start")
    try:
        await asyncio.Event().wait()
    finally:
        log.append(f"{name}:stop")


@pytest.fixture
def scheduler() -> MonitorScheduler:
    return MonitorScheduler()


@pytest.mark.unit
class TestMonitorScheduler:
    @pytest.mark.asyncio
    async def test_start_registers_task(self, scheduler):
        log: list[str] = []
        task = await scheduler.start(1, "BTC_USDT", lambda: forever(log, "a"))
        await asyncio.sleep(0)

        assert scheduler.is_active(1, "BTC_USDT")
        assert scheduler.get_task(1, "BTC_USDT") is task
        assert scheduler.active_symbols(1) == ["BTC_USDT"]
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_start_supersedes_previous(self, scheduler):
        log: list[str] = []
        first = await scheduler.start(1, "BTC_USDT", lambda: forever(log, "a"))
        await asyncio.sleep(0)
        second = await scheduler.start(1, "BTC_USDT", lambda: forever(log, "b"))
        await asyncio.sleep(0)

        assert first.cancelled()
        assert scheduler.get_task(1, "BTC_USDT") is second
        # The old task fully stopped before the new one started
        assert log == ["a:start", "a:stop", "b:start"]
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_starts_leave_one_task(self, scheduler):
        log: list[str] = []
        await asyncio.gather(
            *(scheduler.start(1, "BTC_USDT", lambda i=i: forever(log, str(i))) for i in range(5))
        )
        await asyncio.sleep(0)

        assert scheduler.active_symbols(1) == ["BTC_USDT"]
        assert sum(1 for entry in log if entry.endswith(":start")) - sum(
            1 for entry in log if entry.endswith(":stop")
        ) == 1
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, scheduler):
        log: list[str] = []
        task = await scheduler.start(1, "BTC_USDT", lambda: forever(log, "a"))
        await asyncio.sleep(0)

        assert await scheduler.cancel(1, "BTC_USDT")
        assert task.cancelled()
        assert not await scheduler.cancel(1, "BTC_USDT")
        assert not await scheduler.cancel(9, "ETH_USDT")
        assert not scheduler.is_active(1, "BTC_USDT")

    @pytest.mark.asyncio
    async def test_cancel_all_only_touches_one_user(self, scheduler):
        log: list[str] = []
        await scheduler.start(1, "BTC_USDT", lambda: forever(log, "1b"))
        await scheduler.start(1, "ETH_USDT", lambda: forever(log, "1e"))
        other = await scheduler.start(2, "BTC_USDT", lambda: forever(log, "2b"))
        await asyncio.sleep(0)

        cancelled = await scheduler.cancel_all(1)

        assert cancelled == ["BTC_USDT", "ETH_USDT"]
        assert scheduler.active_symbols(1) == []
        assert not other.done()
        assert await scheduler.cancel_all(1) == []
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_finished_task_deregisters(self, scheduler):
        async def quick():
            return None

        task = await scheduler.start(1, "BTC_USDT", quick)
        await task
        await asyncio.sleep(0)

        assert scheduler.get_task(1, "BTC_USDT") is None

    @pytest.mark.asyncio
    async def test_crashed_task_deregisters(self, scheduler):
        async def boom():
            raise RuntimeError("boom")

        task = await scheduler.start(1, "BTC_USDT", boom)
        await asyncio.wait({task})
        await asyncio.sleep(0)

        assert scheduler.get_task(1, "BTC_USDT") is None

    @pytest.mark.asyncio
    async def test_task_can_cancel_its_own_user(self, scheduler):
        log: list[str] = []
        await scheduler.start(1, "ETH_USDT", lambda: forever(log, "eth"))
        await asyncio.sleep(0)

        async def stopper():
            await scheduler.cancel_all(1)
            log.append("stopper:returned")

        task = await scheduler.start(1, "BTC_USDT", stopper)
        await asyncio.wait_for(task, timeout=1)

        assert "eth:stop" in log
        assert "stopper:returned" in log
        assert scheduler.active_symbols(1) == []

    @pytest.mark.asyncio
    async def test_task_can_replace_itself(self, scheduler):
        log: list[str] = []

        async def handoff():
            await scheduler.start(1, "BTC_USDT", lambda: forever(log, "next"))
            log.append("handoff:returned")

        first = await scheduler.start(1, "BTC_USDT", handoff)
        await asyncio.wait_for(first, timeout=1)
        await asyncio.sleep(0)

        assert not first.cancelled()
        assert scheduler.is_active(1, "BTC_USDT")
        assert scheduler.get_task(1, "BTC_USDT") is not first
        assert log == ["handoff:returned", "next:start"]
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_idle_users_leave_no_bookkeeping(self, scheduler):
        async def quick():
            return None

        log: list[str] = []
        for user_id in range(1, 6):
            task = await scheduler.start(user_id, "BTC_USDT", quick)
            await task
        await scheduler.start(6, "BTC_USDT", lambda: forever(log, "a"))
        await scheduler.cancel(6, "BTC_USDT")
        await scheduler.start(7, "ETH_USDT", lambda: forever(log, "b"))
        await scheduler.cancel_all(7)
        await asyncio.sleep(0)

        assert scheduler._tasks == {}
        assert scheduler._locks == {}
        assert scheduler._lock_users == {}
