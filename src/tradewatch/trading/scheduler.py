"""
Monitor task registry for tradewatch.

Keeps at most one live ``asyncio.Task`` per (user, symbol). Starting a task
for a key that already has one cancels the old task and waits for it to finish
before the new one is registered, so the two never overlap. Registry updates
for one user are serialized by a per-user lock; users never block each other.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import partial

from tradewatch.monitoring.metrics import ACTIVE_MONITORS
from tradewatch.utils import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[], Awaitable[None]]


class MonitorScheduler:
    """
    Owns every running monitor / rebuy-watch task.

    Example:
        ```python
        scheduler = MonitorScheduler()
        await scheduler.start(1, "BTC_USDT", lambda: monitor(1, "BTC_USDT"))
        await scheduler.cancel(1, "BTC_USDT")
        ```
    """

    def __init__(self):
        self._tasks: dict[int, dict[str, asyncio.Task]] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: int) -> AsyncIterator[None]:
        # The lock is dropped once nobody holds or waits for it
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    def _prune(self, user_id: int) -> None:
        tasks = self._tasks.get(user_id)
        if tasks is not None and not tasks:
            del self._tasks[user_id]

    async def start(self, user_id: int, symbol: str, factory: TaskFactory) -> asyncio.Task:
        """
        Run ``factory()`` as the monitor for (user_id, symbol).

        Any task already registered for the key is cancelled and awaited first.

        Args:
            user_id: Owner
            symbol: Instrument key
            factory: Zero-argument callable returning the coroutine to run

        Returns:
            The newly registered task
        """
        async with self._user_lock(user_id):
            previous = self._tasks.get(user_id, {}).pop(symbol, None)
            if previous is not None:
                logger.info("monitor_superseded", user_id=user_id, symbol=symbol)
                await self._stop(previous)

            task = asyncio.create_task(factory(), name=f"monitor:{user_id}:{symbol}")
            self._tasks.setdefault(user_id, {})[symbol] = task
            ACTIVE_MONITORS.inc()
            task.add_done_callback(partial(self._on_done, user_id, symbol))
            logger.debug("monitor_registered", user_id=user_id, symbol=symbol)
            return task

    async def cancel(self, user_id: int, symbol: str) -> bool:
        """
        Cancel and deregister the task for (user_id, symbol).

        Returns:
            True if a task was registered, False if this was a no-op
        """
        async with self._user_lock(user_id):
            task = self._tasks.get(user_id, {}).pop(symbol, None)
            self._prune(user_id)
            if task is None:
                return False
            await self._stop(task)
            logger.info("monitor_cancelled", user_id=user_id, symbol=symbol)
            return True

    async def cancel_all(self, user_id: int) -> list[str]:
        """
        Cancel and deregister every task of ``user_id``.

        Returns:
            Symbols whose tasks were cancelled
        """
        async with self._user_lock(user_id):
            tasks = self._tasks.pop(user_id, {})
            for task in tasks.values():
                await self._stop(task)
            if tasks:
                logger.info("monitors_cancelled", user_id=user_id, symbols=sorted(tasks))
            return sorted(tasks)

    async def shutdown(self) -> None:
        """Cancel every task for every user."""
        for user_id in list(self._tasks):
            await self.cancel_all(user_id)

    def active_symbols(self, user_id: int) -> list[str]:
        return sorted(
            symbol
            for symbol, task in self._tasks.get(user_id, {}).items()
            if not task.done()
        )

    def is_active(self, user_id: int, symbol: str) -> bool:
        task = self._tasks.get(user_id, {}).get(symbol)
        return task is not None and not task.done()

    def get_task(self, user_id: int, symbol: str) -> asyncio.Task | None:
        return self._tasks.get(user_id, {}).get(symbol)

    async def _stop(self, task: asyncio.Task) -> None:
        # A task deregistering itself (e.g. a monitor that stops its own user)
        # is only detached; it returns on its own.
        if task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    def _on_done(self, user_id: int, symbol: str, task: asyncio.Task) -> None:
        ACTIVE_MONITORS.dec()
        tasks = self._tasks.get(user_id)
        if tasks is not None and tasks.get(symbol) is task:
            del tasks[symbol]
            self._prune(user_id)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "monitor_crashed",
                user_id=user_id,
                symbol=symbol,
                error=str(exc),
                exc_info=exc,
            )
