"""
Shared pytest fixtures for the tradewatch test suite.

This module provides fixtures for:
- A scripted price feed (per-symbol price sequences, injectable failures)
- A recording order executor
- In-memory credential, balance and trending collaborators
- Fast thresholds so monitor / rebuy loops finish in milliseconds
- A wired TradeOrchestrator
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from tradewatch.trading import (
    ExchangeCredentials,
    SymbolUnavailable,
    TradeOrchestrator,
    TradingThresholds,
)
from tradewatch.trading.providers import StaticCredentialProvider

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Fakes
# ============================================================================


class ScriptedPriceFeed:
    """
    Returns scripted prices per symbol.

    Each call pops the next item; the last item repeats once the script is
    exhausted. Exception instances in the script are raised instead.
    """

    def __init__(self):
        self._scripts: dict[str, deque] = {}
        self._last: dict[str, object] = {}
        self.calls: dict[str, int] = defaultdict(int)

    def script(self, symbol: str, *items) -> None:
        self._scripts[symbol] = deque(items)

    def current(self, symbol: str) -> float:
        value = self._last.get(symbol)
        if isinstance(value, (int, float)):
            return float(value)
        queue = self._scripts.get(symbol)
        return float(queue[0]) if queue else 0.0

    async def get_last_price(self, symbol: str) -> float:
        self.calls[symbol] += 1
        queue = self._scripts.get(symbol)
        if queue is None:
            raise SymbolUnavailable(f"No ticker data available for symbol: {symbol}")
        if len(queue) > 1:
            value = queue.popleft()
        elif queue:
            value = queue[0]
        else:
            raise SymbolUnavailable(f"No ticker data available for symbol: {symbol}")
        if isinstance(value, Exception):
            raise value
        self._last[symbol] = value
        return float(value)


class RecordingExecutor:
    """
    Records every order; ``fail_next`` makes the next order raise.

    With ``delay`` set, ``in_flight`` counts orders still waiting to fill.
    """

    def __init__(self, price_feed: ScriptedPriceFeed):
        self.price_feed = price_feed
        self.buys: list[tuple[str, str, float]] = []
        self.sells: list[tuple[str, str, float]] = []
        self._failures: deque[Exception] = deque()
        self.delay = 0.0
        self.in_flight = 0

    async def _fill_delay(self) -> None:
        if not self.delay:
            return
        self.in_flight += 1
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    def fail_next(self, error: Exception) -> None:
        self._failures.append(error)

    async def market_buy(self, credentials, symbol: str, notional: float) -> float:
        await self._fill_delay()
        if self._failures:
            raise self._failures.popleft()
        self.buys.append((credentials.api_key, symbol, notional))
        price = self.price_feed.current(symbol)
        return notional / price if price else 0.0

    async def market_sell(self, credentials, symbol: str, quantity: float) -> None:
        await self._fill_delay()
        if self._failures:
            raise self._failures.popleft()
        self.sells.append((credentials.api_key, symbol, quantity))


class InMemoryBalances:
    def __init__(self, default: float = 1000.0):
        self.default = default
        self.balances: dict[int, float] = {}

    async def get_available_balance(self, user_id: int, currency: str) -> float:
        return self.balances.get(user_id, self.default)


class FixedTrending:
    def __init__(self, symbol: str | None = None, error: Exception | None = None):
        self.symbol = symbol
        self.error = error
        self.calls = 0

    async def top_trending_today(self) -> str | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.symbol


class ManualClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def wait_until(predicate: Callable[[], object], timeout: float = 2.0) -> None:
    """Poll ``predicate`` (sync or async) until truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.005)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fast_thresholds() -> TradingThresholds:
    """Default ratios with intervals shrunk to milliseconds."""
    return TradingThresholds(
        monitor_interval_seconds=0.01,
        skyrocket_interval_seconds=0.01,
        skyrocket_duration_seconds=0.04,
        cooldown_seconds=0.01,
        rebuy_interval_seconds=0.01,
        reference_reset_seconds=0.05,
        rebuy_watch_timeout_seconds=0.2,
    )


@pytest.fixture
def price_feed() -> ScriptedPriceFeed:
    return ScriptedPriceFeed()


@pytest.fixture
def executor(price_feed) -> RecordingExecutor:
    return RecordingExecutor(price_feed)


@pytest.fixture
def balances() -> InMemoryBalances:
    return InMemoryBalances()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider(
        {
            1: ExchangeCredentials(api_key="key-1", api_secret="secret-1", api_memo="memo-1"),
            2: ExchangeCredentials(api_key="key-2", api_secret="secret-2"),
        }
    )


@pytest.fixture
def trending() -> FixedTrending:
    return FixedTrending()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime.now(UTC))


@pytest.fixture
def wait_for() -> Callable:
    """Async poller: ``await wait_for(predicate, timeout=2.0)``."""
    return wait_until


@pytest_asyncio.fixture
async def orchestrator(price_feed, executor, credentials, balances, trending, fast_thresholds, clock):
    orch = TradeOrchestrator(
        price_feed=price_feed,
        executor=executor,
        credentials=credentials,
        balances=balances,
        trending=trending,
        thresholds=fast_thresholds,
        clock=clock,
    )
    yield orch
    await orch.shutdown()

