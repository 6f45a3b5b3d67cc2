"""
Integration tests for the trade orchestrator.

Drives full buy / monitor / sell / rebuy lifecycles against scripted prices
with millisecond intervals.

Tests cover:
- Public operations and their validation
- Stop-loss, take-profit, skyrocket and target-reached flows
- Rebuy watch, trending fallback and expiry
- Monitor supersession, stop_trade and failure bookkeeping
"""

import asyncio

import pytest
from ccxt.base.errors import ExchangeError as CcxtExchangeError

from tradewatch.trading import (
    CredentialsMissing,
    ExchangeRejected,
    InsufficientBalance,
    NetworkError,
    Position,
    SellResult,
    SymbolPhase,
    SymbolUnavailable,
    TradeOrchestrator,
    TradeResult,
    ValidationError,
)

BTC = "BTC_USDT"
ETH = "ETH_USDT"


async def phase(orchestrator: TradeOrchestrator, symbol: str, user_id: int = 1):
    return (await orchestrator.get_status(user_id)).phases.get(symbol)


async def has_open(orchestrator: TradeOrchestrator, symbol: str, user_id: int = 1) -> bool:
    return await orchestrator.store.get_open_position(user_id, symbol) is not None


# =============================================================================
# Starting trades
# =============================================================================


@pytest.mark.integration
class TestStartTrade:
    @pytest.mark.asyncio
    async def test_records_position_and_starts_monitor(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)

        result = await orchestrator.start_trade(1, "btc/usdt", 100.0, 20.0, 20.0)

        assert result.symbol == BTC
        assert result.quantity == pytest.approx(1.0)
        assert result.entry_price == 100.0
        assert executor.buys == [("key-1", BTC, 100.0)]
        status = await orchestrator.get_status(1)
        assert status.active_monitors == (BTC,)
        assert status.phases[BTC] is SymbolPhase.HOLDING
        assert await orchestrator.get_profit_target(1) == 20.0
        assert await orchestrator.get_accumulated_profit(1) == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "symbol, notional, rebuy_pct, target",
        [
            ("", 100.0, 20.0, 20.0),
            ("BTCUSDT", 100.0, 20.0, 20.0),
            ("BTC_USDT!", 100.0, 20.0, 20.0),
            (BTC, 0.0, 20.0, 20.0),
            (BTC, -5.0, 20.0, 20.0),
            (BTC, 100.0, 0.0, 20.0),
            (BTC, 100.0, 100.5, 20.0),
            (BTC, 100.0, 20.0, 0.0),
        ],
    )
    async def test_validation(self, orchestrator, price_feed, executor, symbol, notional, rebuy_pct, target):
        price_feed.script(BTC, 100.0)

        with pytest.raises(ValidationError):
            await orchestrator.start_trade(1, symbol, notional, rebuy_pct, target)

        assert executor.buys == []
        assert orchestrator.scheduler.active_symbols(1) == []

    @pytest.mark.asyncio
    async def test_missing_credentials(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)

        with pytest.raises(CredentialsMissing, match="API keys not found for user 9"):
            await orchestrator.start_trade(9, BTC, 100.0, 20.0, 20.0)

        assert executor.buys == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, orchestrator, price_feed, executor, balances):
        price_feed.script(BTC, 100.0)
        balances.balances[1] = 50.0

        with pytest.raises(InsufficientBalance) as exc_info:
            await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        assert exc_info.value.requested == 100.0
        assert exc_info.value.available == 50.0
        assert executor.buys == []
        assert not await has_open(orchestrator, BTC)

    @pytest.mark.asyncio
    async def test_failed_order_records_nothing(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)
        executor.fail_next(ExchangeRejected("market closed"))

        with pytest.raises(ExchangeRejected):
            await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        assert not await has_open(orchestrator, BTC)
        assert orchestrator.scheduler.active_symbols(1) == []
        assert await orchestrator.get_profit_target(1) == 0.0

    @pytest.mark.asyncio
    async def test_price_unavailable(self, orchestrator, executor):
        with pytest.raises(SymbolUnavailable):
            await orchestrator.start_trade(1, "DOGE_USDT", 100.0, 20.0, 20.0)

        assert executor.buys == []


# =============================================================================
# Monitor flows
# =============================================================================


@pytest.mark.integration
class TestMonitor:
    @pytest.mark.asyncio
    async def test_stop_loss_then_cooldown(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: executor.sells)

        assert executor.sells == [("key-1", BTC, pytest.approx(1.0))]
        await wait_for(lambda: orchestrator.get_accumulated_profit(1))
        assert await orchestrator.get_accumulated_profit(1) == pytest.approx(-0.5)
        await wait_for(
            lambda: _in_phase(orchestrator, BTC, SymbolPhase.COOLDOWN, SymbolPhase.REBUY_WATCHING)
        )
        position = await orchestrator.store.get_position(1, BTC)
        assert position.sold
        assert position.quantity == 0.0

    @pytest.mark.asyncio
    async def test_small_moves_hold(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.7, 100.3, 100.0)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: price_feed.calls[BTC] >= 6)

        assert executor.sells == []
        assert await has_open(orchestrator, BTC)

    @pytest.mark.asyncio
    async def test_take_profit(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 102.0)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: executor.sells)

        await wait_for(lambda: orchestrator.get_accumulated_profit(1))
        assert await orchestrator.get_accumulated_profit(1) == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_skyrocket_spike_is_contained(self, orchestrator, price_feed, executor, wait_for):
        # The spike opens a skyrocket watch; the pullback neither reaches the
        # skyrocket target nor trips take-profit, so the position is held.
        price_feed.script(BTC, 100.0, 106.0, 100.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: price_feed.calls[BTC] >= 9)

        assert executor.sells == []
        assert await has_open(orchestrator, BTC)
        assert await phase(orchestrator, BTC) is SymbolPhase.HOLDING
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_skyrocket_target_sells_then_rebuys(self, orchestrator, price_feed, executor, wait_for):
        # Skyrocket sell at 110, then the usual cooldown and rebuy watch: the
        # reference is 110 and 110.4 is a rise
        price_feed.script(BTC, 100.0, 106.0, 110.0, 110.0, 110.4)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: len(executor.buys) == 2)
        await wait_for(lambda: has_open(orchestrator, BTC))

        assert executor.sells == [("key-1", BTC, pytest.approx(1.0))]
        assert await orchestrator.get_accumulated_profit(1) == pytest.approx(10.0)
        assert executor.buys[-1] == ("key-1", BTC, pytest.approx(200.0))
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_target_reached_stops_everything(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(ETH, 50.0)
        price_feed.script(BTC, 100.0, 102.0)

        await orchestrator.start_trade(1, ETH, 100.0, 20.0, 1.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 1.0)
        await wait_for(lambda: executor.sells)
        await wait_for(lambda: not orchestrator.scheduler.active_symbols(1))

        status = await orchestrator.get_status(1)
        assert status.accumulated_profit == 0.0
        assert all(p.sold and p.quantity == 0.0 for p in status.positions)
        assert set(status.phases.values()) == {SymbolPhase.NO_POSITION}
        assert executor.sells[0][1] == BTC

    @pytest.mark.asyncio
    async def test_target_reached_with_unrealized_profit(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 100.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 0.5)
        await wait_for(lambda: executor.sells)
        await wait_for(lambda: not orchestrator.scheduler.active_symbols(1))

        assert await phase(orchestrator, BTC) is SymbolPhase.NO_POSITION

    @pytest.mark.asyncio
    async def test_dust_is_discarded_without_order(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0)

        await orchestrator.start_trade(1, BTC, 0.5, 20.0, 20.0)
        await wait_for(lambda: not orchestrator.scheduler.is_active(1, BTC))

        assert executor.sells == []
        assert not await has_open(orchestrator, BTC)
        assert await phase(orchestrator, BTC) is SymbolPhase.NO_POSITION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NetworkError("timeout"), RuntimeError("feed crashed")])
    async def test_failures_mark_symbol_degraded(self, orchestrator, price_feed, wait_for, error):
        price_feed.script(BTC, 100.0, error)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        async def degraded():
            return (await orchestrator.get_status(1)).degraded_symbols == (BTC,)

        await wait_for(degraded)
        assert orchestrator.scheduler.is_active(1, BTC)
        assert await has_open(orchestrator, BTC)

        price_feed.script(BTC, 100.0)

        async def recovered():
            return (await orchestrator.get_status(1)).degraded_symbols == ()

        await wait_for(recovered)

    @pytest.mark.asyncio
    async def test_day_rollover_resets_profit(self, orchestrator, price_feed, clock, wait_for):
        price_feed.script(ETH, 50.0)
        price_feed.script(BTC, 100.0, 102.0)

        await orchestrator.start_trade(1, ETH, 100.0, 20.0, 20.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        async def profit_is(value):
            return await orchestrator.get_accumulated_profit(1) == pytest.approx(value)

        await wait_for(lambda: profit_is(2.0))

        clock.advance(hours=24)

        await wait_for(lambda: profit_is(0.0))
        assert (await orchestrator.get_status(1)).day_start == clock.now
        assert await orchestrator.get_profit_target(1) == 20.0


async def _in_phase(orchestrator, symbol, *phases) -> bool:
    return await phase(orchestrator, symbol) in phases


# =============================================================================
# Rebuy watch
# =============================================================================


@pytest.mark.integration
class TestRebuy:
    @pytest.mark.asyncio
    async def test_rise_rebuys_and_replaces_position(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5, 99.5, 99.8)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: len(executor.buys) == 2)
        await wait_for(lambda: has_open(orchestrator, BTC))

        assert executor.buys[-1] == ("key-1", BTC, pytest.approx(200.0))
        position = await orchestrator.store.get_open_position(1, BTC)
        assert position.entry_price == 99.8
        assert position.quantity == pytest.approx(200.0 / 99.8)
        assert position.rebuy_percentage == 20.0
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_dip_rebuys(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5, 99.5, 94.0)

        await orchestrator.start_trade(1, BTC, 100.0, 50.0, 20.0)
        await wait_for(lambda: len(executor.buys) == 2)

        assert executor.buys[-1] == ("key-1", BTC, pytest.approx(500.0))

    @pytest.mark.asyncio
    async def test_fallback_to_trending_symbol(self, orchestrator, price_feed, executor, trending, wait_for):
        trending.symbol = "eth/usdt"
        price_feed.script(ETH, 50.0)
        price_feed.script(BTC, 100.0, 99.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: has_open(orchestrator, ETH))

        assert executor.buys[-1] == ("key-1", ETH, pytest.approx(200.0))
        await wait_for(lambda: _in_phase(orchestrator, BTC, SymbolPhase.NO_POSITION))
        await wait_for(lambda: orchestrator.scheduler.active_symbols(1) == [ETH])

    @pytest.mark.asyncio
    async def test_fallback_to_same_symbol_keeps_monitoring(self, orchestrator, price_feed, executor, trending, wait_for):
        trending.symbol = BTC
        price_feed.script(BTC, 100.0, 99.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: len(executor.buys) == 2)
        await wait_for(lambda: has_open(orchestrator, BTC))

        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "top_symbol, error",
        [(None, None), (None, NetworkError("down")), ("DOGE_USDT", None)],
    )
    async def test_watch_expires_without_candidate(
        self, orchestrator, price_feed, executor, trending, wait_for, top_symbol, error
    ):
        trending.symbol = top_symbol
        trending.error = error
        price_feed.script(BTC, 100.0, 99.5)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: not orchestrator.scheduler.active_symbols(1))

        assert trending.calls >= 1
        assert len(executor.buys) == 1
        assert await phase(orchestrator, BTC) is SymbolPhase.NO_POSITION

    @pytest.mark.asyncio
    async def test_watch_expires_without_provider(
        self, price_feed, executor, credentials, balances, fast_thresholds, clock, wait_for
    ):
        orchestrator = TradeOrchestrator(
            price_feed=price_feed,
            executor=executor,
            credentials=credentials,
            balances=balances,
            thresholds=fast_thresholds,
            clock=clock,
        )
        price_feed.script(BTC, 100.0, 99.5)
        try:
            await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
            await wait_for(lambda: not orchestrator.scheduler.active_symbols(1))

            assert await phase(orchestrator, BTC) is SymbolPhase.NO_POSITION
        finally:
            await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_no_balance_skips_rebuy(self, orchestrator, price_feed, executor, balances, wait_for):
        price_feed.script(BTC, 100.0, 99.5, 99.5, 99.8)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        balances.balances[1] = 0.0
        await wait_for(lambda: price_feed.calls[BTC] >= 6)

        assert len(executor.buys) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [CcxtExchangeError("maintenance"), RuntimeError("feed crashed")])
    async def test_unexpected_feed_errors_keep_watch_alive(
        self, orchestrator, price_feed, executor, wait_for, error
    ):
        # The reference poll and the next two fail; 99.5 then becomes the
        # reference and 99.8 is a rise
        price_feed.script(BTC, 100.0, 99.5, error, error, error, 99.5, 99.8)

        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: len(executor.buys) == 2)

        assert executor.buys[-1] == ("key-1", BTC, pytest.approx(200.0))
        assert orchestrator.scheduler.is_active(1, BTC)


# =============================================================================
# Manual operations
# =============================================================================


@pytest.mark.integration
class TestManualOperations:
    @pytest.mark.asyncio
    async def test_sell_now(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0, 101.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        result = await orchestrator.sell_now(1, BTC)

        assert result.symbol == BTC
        assert result.quantity == pytest.approx(1.0)
        assert result.realized_profit == pytest.approx(result.sell_price - 100.0)
        assert executor.sells == [("key-1", BTC, pytest.approx(1.0))]
        assert not await has_open(orchestrator, BTC)
        # A rebuy watch takes over the symbol
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_sell_now_without_position(self, orchestrator, executor):
        assert await orchestrator.sell_now(1, BTC) is None
        assert executor.sells == []

    @pytest.mark.asyncio
    async def test_sell_now_during_rebuy_watch_keeps_watch(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await wait_for(lambda: _in_phase(orchestrator, BTC, SymbolPhase.REBUY_WATCHING))
        watch = orchestrator.scheduler.get_task(1, BTC)

        assert await orchestrator.sell_now(1, BTC) is None

        assert len(executor.sells) == 1
        assert orchestrator.scheduler.get_task(1, BTC) is watch
        assert not watch.done()

    @pytest.mark.asyncio
    async def test_sell_now_while_monitor_sell_in_flight(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        executor.delay = 0.05
        await wait_for(lambda: executor.in_flight)

        # The monitor's stop-loss fills first; there is nothing left to sell
        assert await orchestrator.sell_now(1, BTC) is None

        assert len(executor.sells) == 1
        assert await orchestrator.get_accumulated_profit(1) == pytest.approx(-0.5)
        assert orchestrator.scheduler.is_active(1, BTC)
        assert await phase(orchestrator, BTC) in (
            SymbolPhase.SOLD,
            SymbolPhase.COOLDOWN,
            SymbolPhase.REBUY_WATCHING,
        )

    @pytest.mark.asyncio
    async def test_sell_now_uses_last_recorded_price(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 101.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)

        async def recorded():
            return await orchestrator.store.last_price(1, BTC) == 101.0

        await wait_for(recorded)
        price_feed.script(BTC, NetworkError("down"))

        result = await orchestrator.sell_now(1, BTC)

        assert result.sell_price == 101.0
        assert result.realized_profit == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_sell_now_without_any_price_resumes_monitor(self, orchestrator, executor, clock):
        await orchestrator.store.open_position(
            1,
            Position(
                symbol=BTC,
                entry_price=100.0,
                entry_timestamp=clock.now,
                quantity=1.0,
                rebuy_percentage=20.0,
            ),
        )

        with pytest.raises(SymbolUnavailable):
            await orchestrator.sell_now(1, BTC)

        assert executor.sells == []
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_failed_sell_keeps_position(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        executor.fail_next(ExchangeRejected("rejected"))

        with pytest.raises(ExchangeRejected):
            await orchestrator.sell_now(1, BTC)

        assert await has_open(orchestrator, BTC)
        assert orchestrator.scheduler.is_active(1, BTC)

    @pytest.mark.asyncio
    async def test_sell_now_reaching_target_stops_trade(self, orchestrator, price_feed, clock):
        price_feed.script(BTC, 101.0)
        await orchestrator.store.begin_trading_day(1, 1.0, clock.now)
        await orchestrator.store.open_position(
            1,
            Position(
                symbol=BTC,
                entry_price=100.0,
                entry_timestamp=clock.now,
                quantity=1.0,
                rebuy_percentage=20.0,
            ),
        )

        result = await orchestrator.sell_now(1, BTC)

        assert result.accumulated_profit == pytest.approx(1.0)
        assert orchestrator.scheduler.active_symbols(1) == []
        assert await orchestrator.get_accumulated_profit(1) == 0.0

    @pytest.mark.asyncio
    async def test_buy_now_supersedes_monitor(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)
        await orchestrator.start_trade(1, BTC, 100.0, 30.0, 20.0)
        first = orchestrator.scheduler.get_task(1, BTC)

        result = await orchestrator.buy_now(1, BTC, 50.0)

        assert result.quantity == pytest.approx(0.5)
        assert first.cancelled()
        assert orchestrator.scheduler.active_symbols(1) == [BTC]
        position = await orchestrator.store.get_open_position(1, BTC)
        assert position.quantity == pytest.approx(1.5)
        assert position.rebuy_percentage == 30.0
        assert await orchestrator.get_profit_target(1) == 20.0

    @pytest.mark.asyncio
    async def test_buy_now_defaults_rebuy_percentage(self, orchestrator, price_feed):
        price_feed.script(ETH, 50.0)

        await orchestrator.buy_now(1, ETH, 100.0)

        position = await orchestrator.store.get_open_position(1, ETH)
        assert position.rebuy_percentage == 100.0

    @pytest.mark.asyncio
    async def test_concurrent_buys_leave_one_monitor(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)
        executor.delay = 0.005

        await asyncio.gather(*(orchestrator.buy_now(1, BTC, 10.0) for _ in range(4)))

        assert orchestrator.scheduler.active_symbols(1) == [BTC]
        position = await orchestrator.store.get_open_position(1, BTC)
        assert position.quantity == pytest.approx(0.4)


# =============================================================================
# Stopping
# =============================================================================


@pytest.mark.integration
class TestStopTrade:
    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, orchestrator, price_feed):
        price_feed.script(BTC, 100.0)
        price_feed.script(ETH, 50.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await orchestrator.start_trade(1, ETH, 100.0, 20.0, 20.0)

        await orchestrator.stop_trade(1)
        await orchestrator.stop_trade(1)

        status = await orchestrator.get_status(1)
        assert status.active_monitors == ()
        assert all(p.sold and p.quantity == 0.0 for p in status.positions)
        assert status.accumulated_profit == 0.0

    @pytest.mark.asyncio
    async def test_stop_while_sell_in_flight(self, orchestrator, price_feed, executor, wait_for):
        price_feed.script(BTC, 100.0, 99.5)
        price_feed.script(ETH, 50.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await orchestrator.start_trade(1, ETH, 100.0, 20.0, 20.0)
        executor.delay = 0.05
        await wait_for(lambda: executor.in_flight)

        await orchestrator.stop_trade(1)

        # The in-flight order filled and was recorded before the reset
        assert [s[1] for s in executor.sells] == [BTC]
        await asyncio.sleep(0.1)

        status = await orchestrator.get_status(1)
        assert status.accumulated_profit == 0.0
        assert status.active_monitors == ()
        assert all(p.sold and p.quantity == 0.0 for p in status.positions)
        assert set(status.phases.values()) == {SymbolPhase.NO_POSITION}
        assert len(executor.buys) == 2
        assert len(executor.sells) == 1

    @pytest.mark.asyncio
    async def test_stop_unknown_user(self, orchestrator):
        await orchestrator.stop_trade(42)

        assert (await orchestrator.get_status(42)).positions == ()

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, orchestrator, price_feed, executor):
        price_feed.script(BTC, 100.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await orchestrator.start_trade(2, BTC, 200.0, 20.0, 20.0)

        await orchestrator.stop_trade(1)

        assert orchestrator.scheduler.active_symbols(2) == [BTC]
        position = await orchestrator.store.get_open_position(2, BTC)
        assert position.quantity == pytest.approx(2.0)
        assert ("key-2", BTC, 200.0) in executor.buys

    @pytest.mark.asyncio
    async def test_status_of_unknown_user(self, orchestrator):
        status = await orchestrator.get_status(7)

        assert status.user_id == 7
        assert status.day_start is None
        assert status.to_dict()["positions"] == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_every_user(self, orchestrator, price_feed):
        price_feed.script(BTC, 100.0)
        await orchestrator.start_trade(1, BTC, 100.0, 20.0, 20.0)
        await orchestrator.start_trade(2, BTC, 100.0, 20.0, 20.0)

        await orchestrator.shutdown()

        assert orchestrator.scheduler.active_symbols(1) == []
        assert orchestrator.scheduler.active_symbols(2) == []
        # Positions survive a shutdown
        assert await has_open(orchestrator, BTC, user_id=2)


def test_results_to_dict():
    assert TradeResult(BTC, 1.0, 100.0).to_dict() == {
        "symbol": BTC,
        "quantity": 1.0,
        "entry_price": 100.0,
    }
    assert SellResult(BTC, 1.0, 101.0, 1.0, 1.0).to_dict()["sell_price"] == 101.0
