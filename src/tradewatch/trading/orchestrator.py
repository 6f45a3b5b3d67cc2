"""
Trade Orchestrator for tradewatch.

Public trading operations plus the per-(user, symbol) lifecycle that runs in
the background:

    monitor -> [skyrocket watch] -> sell -> cooldown -> rebuy watch
            -> rebuy (monitor again) | trending fallback | expire

The whole lifecycle of one key runs inside a single task owned by the
``MonitorScheduler``, so cancelling that task stops every nested loop.

Price fetches and orders run outside the store's user lock. An order and the
state commit that follows it are shielded from cancellation as one unit: a
cancel that arrives mid-order is honoured only after the fill is recorded, so
the store never loses track of coins that were actually bought or sold.

Example Usage:
    ```python
    orchestrator = TradeOrchestrator(
        price_feed=feed,
        executor=executor,
        credentials=credential_provider,
        balances=balance_provider,
        trending=trending_provider,
    )
    result = await orchestrator.start_trade(1, "BTC_USDT", 100.0, 20.0, 20.0)
    status = await orchestrator.get_status(1)
    await orchestrator.stop_trade(1)
    ```
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from functools import partial
from typing import TypeVar

from tradewatch.config import constants
from tradewatch.monitoring.metrics import (
    ORDER_LATENCY,
    MetricsManager,
    get_metrics_manager,
    measure_latency,
)
from tradewatch.trading.decision_engine import (
    DecisionEngine,
    RebuyAction,
    SellAction,
    TradingThresholds,
)
from tradewatch.trading.errors import (
    InsufficientBalance,
    TradingError,
    TransientError,
    ValidationError,
)
from tradewatch.trading.interfaces import (
    BalanceProvider,
    CredentialProvider,
    ExchangeCredentials,
    OrderExecutor,
    PriceFeed,
    TrendingSymbolProvider,
)
from tradewatch.trading.scheduler import MonitorScheduler
from tradewatch.trading.state_store import (
    ClosedPosition,
    Position,
    StatusSnapshot,
    SymbolPhase,
    TradeStateStore,
)
from tradewatch.utils import add_context, get_logger, is_valid_symbol, normalize_symbol

logger = get_logger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]

MANUAL_SELL = "MANUAL"
SKYROCKET_SELL = "SKYROCKET_TARGET"
TRENDING_REBUY = "TRENDING_FALLBACK"


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TradeResult:
    """Outcome of a successful buy."""

    symbol: str
    quantity: float
    entry_price: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SellResult:
    """Outcome of a successful manual sell."""

    symbol: str
    quantity: float
    sell_price: float
    realized_profit: float
    accumulated_profit: float

    def to_dict(self) -> dict:
        return asdict(self)


async def _shielded(coro: Awaitable[T]) -> T:
    """
    Await ``coro`` so that cancelling the caller does not interrupt it.

    If the caller is cancelled, ``coro`` is still driven to completion before
    the cancellation propagates.
    """
    inner = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(inner)
    except asyncio.CancelledError:
        await asyncio.wait({inner})
        if not inner.cancelled() and inner.exception() is not None:
            logger.error(
                "order_commit_failed_during_cancel",
                error=str(inner.exception()),
                exc_info=inner.exception(),
            )
        raise


# =============================================================================
# Orchestrator
# =============================================================================


class TradeOrchestrator:
    """
    Public entry point of the trading core.

    Composes the price feed, order executor, credential / balance providers,
    the state store, the monitor scheduler and the decision engine.
    """

    def __init__(
        self,
        price_feed: PriceFeed,
        executor: OrderExecutor,
        credentials: CredentialProvider,
        balances: BalanceProvider,
        trending: TrendingSymbolProvider | None = None,
        thresholds: TradingThresholds | None = None,
        store: TradeStateStore | None = None,
        scheduler: MonitorScheduler | None = None,
        clock: Clock | None = None,
        quote: str = constants.DEFAULT_QUOTE_CURRENCY,
        metrics: MetricsManager | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            price_feed: Latest-price source
            executor: Market order placement
            credentials: Per-user exchange credentials
            balances: Per-user available balance lookup
            trending: Top-gainer source for the rebuy fallback (optional)
            thresholds: Trigger ratios and intervals (defaults if omitted)
            store: Shared state store (a fresh one if omitted)
            scheduler: Monitor task registry (a fresh one if omitted)
            clock: Returns the current UTC time
            quote: Currency balances are checked in
            metrics: Prometheus helpers (process-wide manager if omitted)
        """
        self.engine = DecisionEngine(thresholds)
        self.thresholds = self.engine.thresholds
        self.price_feed = price_feed
        self.executor = executor
        self.credentials = credentials
        self.balances = balances
        self.trending = trending
        self.store = store or TradeStateStore(self.thresholds.failure_warning_threshold)
        self.scheduler = scheduler or MonitorScheduler()
        self.quote = quote.upper()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.metrics = metrics or get_metrics_manager()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def start_trade(
        self,
        user_id: int,
        symbol: str,
        notional: float,
        rebuy_percentage: float,
        profit_target: float,
    ) -> TradeResult:
        """
        Buy ``notional`` of ``symbol``, set the day's profit target and start
        monitoring.

        Args:
            user_id: Trading user
            symbol: Instrument, ``BASE_QUOTE``
            notional: Quote amount to spend
            rebuy_percentage: Share of balance redeployed on rebuy, in (0, 100]
            profit_target: Realised profit goal for the trading day

        Returns:
            TradeResult with the recorded quantity and entry price

        Raises:
            ValidationError: Bad symbol, amount, percentage or target
            CredentialsMissing: No API keys for the user
            InsufficientBalance: Notional exceeds available balance
            TradingError: Price fetch or order failed; nothing was recorded
        """
        symbol = self._validate_symbol(symbol)
        self._validate_notional(notional)
        if not 0 < rebuy_percentage <= 100:
            raise ValidationError(
                f"Rebuy percentage must be in (0, 100], got {rebuy_percentage}"
            )
        if profit_target <= 0:
            raise ValidationError(f"Profit target must be positive, got {profit_target}")

        credentials = await self.credentials.get_credentials(user_id)
        await self._check_balance(user_id, notional)

        await self.scheduler.cancel(user_id, symbol)
        try:
            result = await self._buy(user_id, credentials, symbol, notional, rebuy_percentage)
        except Exception:
            await self._resume_monitor(user_id, symbol)
            raise

        await self.store.begin_trading_day(user_id, profit_target, self._clock())
        await self._start_monitor(user_id, symbol)
        logger.info(
            "trade_started",
            user_id=user_id,
            symbol=symbol,
            quantity=result.quantity,
            entry_price=result.entry_price,
            rebuy_percentage=rebuy_percentage,
            profit_target=profit_target,
        )
        return result

    async def buy_now(self, user_id: int, symbol: str, notional: float) -> TradeResult:
        """
        Buy without touching the day's profit bookkeeping.

        The symbol keeps its existing rebuy percentage, or gets the default.
        """
        symbol = self._validate_symbol(symbol)
        self._validate_notional(notional)

        credentials = await self.credentials.get_credentials(user_id)
        await self._check_balance(user_id, notional)

        rebuy_percentage = await self.store.rebuy_percentage(user_id, symbol)
        if rebuy_percentage is None:
            rebuy_percentage = constants.DEFAULT_REBUY_PERCENTAGE

        await self.scheduler.cancel(user_id, symbol)
        try:
            result = await self._buy(user_id, credentials, symbol, notional, rebuy_percentage)
        except Exception:
            await self._resume_monitor(user_id, symbol)
            raise

        await self._start_monitor(user_id, symbol)
        logger.info(
            "buy_now_completed",
            user_id=user_id,
            symbol=symbol,
            quantity=result.quantity,
            entry_price=result.entry_price,
        )
        return result

    async def sell_now(self, user_id: int, symbol: str) -> SellResult | None:
        """
        Sell the whole open position immediately, then watch for a rebuy.

        Returns None (with a warning) when there is nothing to sell. On a
        failed sell the monitor is restarted and the error re-raised.
        """
        symbol = self._validate_symbol(symbol)
        credentials = await self.credentials.get_credentials(user_id)

        if await self.store.get_open_position(user_id, symbol) is None:
            logger.warning("sell_without_position", user_id=user_id, symbol=symbol)
            return None

        await self.scheduler.cancel(user_id, symbol)
        position = await self.store.get_open_position(user_id, symbol)
        if position is None:
            # The monitor sold it while being cancelled
            logger.warning("sell_without_position", user_id=user_id, symbol=symbol)
            await self._resume_rebuy_watch(user_id, symbol)
            return None

        try:
            price = await self._sell_price(user_id, symbol)
            closed = await _shielded(self._submit_sell(user_id, credentials, position, price))
        except Exception:
            await self._resume_monitor(user_id, symbol)
            raise

        if closed is None:
            return None

        self.metrics.record_sell(MANUAL_SELL, closed.realized_profit)
        logger.info(
            "position_sold",
            user_id=user_id,
            symbol=symbol,
            reason=MANUAL_SELL,
            sell_price=price,
            realized_profit=closed.realized_profit,
        )
        if closed.target_reached:
            await self._target_reached(user_id, symbol)
        else:
            await self.scheduler.start(
                user_id, symbol, partial(self._lifecycle, user_id, symbol, rebuy_first=True)
            )

        return SellResult(
            symbol=symbol,
            quantity=closed.position.quantity,
            sell_price=price,
            realized_profit=closed.realized_profit,
            accumulated_profit=closed.accumulated_profit,
        )

    async def stop_trade(self, user_id: int) -> None:
        """
        Cancel every monitor and rebuy watch of the user, mark all positions
        sold and restart the trading day. Safe to call repeatedly.
        """
        cancelled = await self.scheduler.cancel_all(user_id)
        was_open = await self.store.reset_user(user_id, self._clock())
        logger.info(
            "trade_stopped",
            user_id=user_id,
            cancelled_monitors=cancelled,
            closed_positions=was_open,
        )

    async def get_status(self, user_id: int) -> StatusSnapshot:
        return await self.store.snapshot(user_id, self.scheduler.active_symbols(user_id))

    async def get_accumulated_profit(self, user_id: int) -> float:
        accumulated, _ = await self.store.profit_state(user_id)
        return accumulated

    async def get_profit_target(self, user_id: int) -> float:
        _, target = await self.store.profit_state(user_id)
        return target

    async def shutdown(self) -> None:
        """Cancel every background task of every user."""
        await self.scheduler.shutdown()
        logger.info("orchestrator_shutdown")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_symbol(symbol: str) -> str:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValidationError("Symbol is required")
        normalized = normalize_symbol(symbol)
        if not is_valid_symbol(normalized):
            raise ValidationError(f"Invalid symbol format: {symbol}")
        return normalized

    @staticmethod
    def _validate_notional(notional: float) -> None:
        if not isinstance(notional, (int, float)) or notional <= 0:
            raise ValidationError(f"Amount must be positive, got {notional}")

    async def _check_balance(self, user_id: int, notional: float) -> None:
        available = await self.balances.get_available_balance(user_id, self.quote)
        if notional > available:
            logger.warning(
                "insufficient_balance",
                user_id=user_id,
                requested=notional,
                available=available,
            )
            raise InsufficientBalance(notional, available, self.quote)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def _buy(
        self,
        user_id: int,
        credentials: ExchangeCredentials,
        symbol: str,
        notional: float,
        rebuy_percentage: float,
        expected_epoch: int | None = None,
        price: float | None = None,
    ) -> TradeResult:
        if price is None:
            price = await self.price_feed.get_last_price(symbol)
        position = Position(
            symbol=symbol,
            entry_price=price,
            entry_timestamp=self._clock(),
            quantity=notional / price,
            rebuy_percentage=rebuy_percentage,
        )
        stored = await _shielded(
            self._submit_buy(user_id, credentials, position, notional, expected_epoch)
        )
        if stored is None:
            raise TradingError(f"Position slot for {symbol} moved on during buy")
        return TradeResult(symbol=symbol, quantity=position.quantity, entry_price=price)

    async def _submit_buy(
        self,
        user_id: int,
        credentials: ExchangeCredentials,
        position: Position,
        notional: float,
        expected_epoch: int | None,
    ) -> Position | None:
        filled = await self._place(
            "buy", position.symbol, self.executor.market_buy(credentials, position.symbol, notional)
        )
        logger.debug(
            "buy_filled",
            user_id=user_id,
            symbol=position.symbol,
            reported_quantity=filled,
            recorded_quantity=position.quantity,
        )
        stored = await self.store.open_position(user_id, position, expected_epoch)
        if stored is None:
            logger.error(
                "bought_without_commit",
                user_id=user_id,
                symbol=position.symbol,
                quantity=position.quantity,
            )
        return stored

    async def _submit_sell(
        self,
        user_id: int,
        credentials: ExchangeCredentials,
        position: Position,
        price: float,
    ) -> ClosedPosition | None:
        await self._place(
            "sell",
            position.symbol,
            self.executor.market_sell(credentials, position.symbol, position.quantity),
        )
        closed = await self.store.close_position(user_id, position.symbol, position.epoch, price)
        if closed is None:
            logger.error(
                "sold_without_commit",
                user_id=user_id,
                symbol=position.symbol,
                quantity=position.quantity,
            )
        return closed

    async def _place(self, side: str, symbol: str, order: Awaitable[T]) -> T:
        try:
            async with measure_latency(ORDER_LATENCY, {"side": side}):
                result = await order
        except Exception:
            self.metrics.record_order(symbol, side, "failed")
            raise
        self.metrics.record_order(symbol, side, "filled")
        return result

    async def _sell_price(self, user_id: int, symbol: str) -> float:
        """Current price, or the last one a monitor saw if the feed is down."""
        try:
            price = await self.price_feed.get_last_price(symbol)
        except TransientError as e:
            fallback = await self.store.last_price(user_id, symbol)
            if fallback is None:
                raise
            logger.warning(
                "using_last_recorded_price",
                user_id=user_id,
                symbol=symbol,
                price=fallback,
                error=str(e),
            )
            return fallback
        await self.store.record_price(user_id, symbol, price)
        return price

    async def _sell_position(
        self, user_id: int, position: Position, price: float, reason: str
    ) -> ClosedPosition | None:
        """Sell from inside a monitor. Order failures are logged, not raised."""
        symbol = position.symbol
        try:
            credentials = await self.credentials.get_credentials(user_id)
            closed = await _shielded(self._submit_sell(user_id, credentials, position, price))
        except TradingError as e:
            logger.error("sell_failed", reason=reason, price=price, error=str(e))
            await self._record_failure(user_id, symbol)
            return None

        if closed is not None:
            self.metrics.record_sell(reason, closed.realized_profit)
            logger.info(
                "position_sold",
                reason=reason,
                sell_price=price,
                realized_profit=closed.realized_profit,
                accumulated_profit=closed.accumulated_profit,
            )
        return closed

    async def _target_reached(self, user_id: int, symbol: str) -> None:
        self.metrics.record_target_reached()
        accumulated, target = await self.store.profit_state(user_id)
        logger.info(
            "profit_target_reached",
            user_id=user_id,
            symbol=symbol,
            accumulated_profit=accumulated,
            profit_target=target,
        )
        await self.stop_trade(user_id)

    # -------------------------------------------------------------------------
    # Background lifecycle
    # -------------------------------------------------------------------------

    async def _start_monitor(self, user_id: int, symbol: str) -> None:
        await self.scheduler.start(user_id, symbol, partial(self._lifecycle, user_id, symbol))

    async def _resume_monitor(self, user_id: int, symbol: str) -> None:
        if await self.store.get_open_position(user_id, symbol) is not None:
            logger.info("monitor_resumed", user_id=user_id, symbol=symbol)
            await self._start_monitor(user_id, symbol)

    async def _resume_rebuy_watch(self, user_id: int, symbol: str) -> None:
        """Pick up after a monitor that sold and was cancelled before chaining on."""
        phase = await self.store.get_phase(user_id, symbol)
        if phase is SymbolPhase.SOLD:
            accumulated, target = await self.store.profit_state(user_id)
            if target > 0 and accumulated >= target:
                await self._target_reached(user_id, symbol)
                return
        if phase in (SymbolPhase.SOLD, SymbolPhase.COOLDOWN, SymbolPhase.REBUY_WATCHING):
            logger.info("rebuy_watch_resumed", user_id=user_id, symbol=symbol)
            await self.scheduler.start(
                user_id, symbol, partial(self._lifecycle, user_id, symbol, rebuy_first=True)
            )

    async def _lifecycle(self, user_id: int, symbol: str, rebuy_first: bool = False) -> None:
        with add_context(user_id=user_id, symbol=symbol):
            if not rebuy_first and not await self._monitor_position(user_id, symbol):
                return
            while await self._cooldown_and_rebuy(user_id, symbol):
                if not await self._monitor_position(user_id, symbol):
                    return

    async def _poll_price(self, user_id: int, symbol: str) -> float | None:
        try:
            price = await self.price_feed.get_last_price(symbol)
        except Exception as e:
            if isinstance(e, TransientError):
                logger.warning("price_fetch_failed", price_symbol=symbol, error=str(e))
            else:
                logger.error("price_fetch_failed", price_symbol=symbol, error=str(e), exc_info=True)
            self.metrics.record_price_failure(type(e).__name__)
            await self._record_failure(user_id, symbol)
            return None
        await self.store.record_price(user_id, symbol, price)
        return price

    async def _record_failure(self, user_id: int, symbol: str) -> None:
        failures = await self.store.record_failure(user_id, symbol)
        if failures == self.thresholds.failure_warning_threshold:
            self.metrics.record_degraded()
            logger.warning("monitor_degraded", failed_symbol=symbol, consecutive_failures=failures)

    async def _monitor_position(self, user_id: int, symbol: str) -> bool:
        """
        Standard monitor for the open position.

        Returns:
            True when the position was sold and a rebuy watch should follow,
            False when monitoring simply ends
        """
        t = self.thresholds
        position = await self.store.get_open_position(user_id, symbol)
        if position is None:
            logger.warning("monitor_without_position")
            await self.store.set_phase(user_id, symbol, SymbolPhase.NO_POSITION)
            return False

        epoch = position.epoch
        skyrocket_done = False
        logger.info("monitor_started", epoch=epoch, entry_price=position.entry_price)

        while True:
            await asyncio.sleep(t.monitor_interval_seconds)
            try:
                position = await self.store.get_open_position(user_id, symbol, epoch)
                if position is None:
                    logger.info("monitor_position_closed", epoch=epoch)
                    return False

                price = await self._poll_price(user_id, symbol)
                if price is None:
                    continue

                now = self._clock()
                await self.store.roll_day_if_needed(user_id, now, self.engine.is_new_day)

                if self.engine.is_dust(position, price):
                    if await self.store.discard_dust(user_id, symbol, epoch):
                        logger.info("dust_position_discarded", value=position.quantity * price)
                    return False

                accumulated, target = await self.store.profit_state(user_id)
                decision = self.engine.evaluate(
                    position, price, now, accumulated, target, allow_skyrocket=not skyrocket_done
                )
                logger.debug("monitor_tick", **decision.to_dict())

                if decision.action is SellAction.HOLD:
                    continue

                if decision.action is SellAction.WATCH_SKYROCKET:
                    skyrocket_done = True
                    closed = await self._watch_skyrocket(user_id, symbol, epoch)
                else:
                    closed = await self._sell_position(user_id, position, price, decision.action.value)
                if closed is None:
                    continue
                if decision.action is SellAction.SELL_TARGET_REACHED or closed.target_reached:
                    await self._target_reached(user_id, symbol)
                    return False
                return True
            except Exception as e:
                logger.error("monitor_iteration_failed", error=str(e), exc_info=True)

    async def _watch_skyrocket(
        self, user_id: int, symbol: str, epoch: int
    ) -> ClosedPosition | None:
        """
        Bounded watch for the higher skyrocket target.

        Returns:
            The closed position when it sold here. None when the window lapsed
            or the position went away; the monitor loop sorts those out.
        """
        t = self.thresholds
        polls = max(1, int(t.skyrocket_duration_seconds // t.skyrocket_interval_seconds))
        await self.store.set_phase(user_id, symbol, SymbolPhase.SKYROCKET_WATCH, epoch)
        logger.info("skyrocket_watch_started", polls=polls)

        for _ in range(polls):
            await asyncio.sleep(t.skyrocket_interval_seconds)
            try:
                position = await self.store.get_open_position(user_id, symbol, epoch)
                if position is None:
                    return None
                price = await self._poll_price(user_id, symbol)
                if price is None or not self.engine.evaluate_skyrocket(position, price):
                    continue
                closed = await self._sell_position(user_id, position, price, SKYROCKET_SELL)
                if closed is not None:
                    return closed
            except Exception as e:
                logger.error("skyrocket_iteration_failed", error=str(e), exc_info=True)

        await self.store.set_phase(user_id, symbol, SymbolPhase.HOLDING, epoch)
        logger.info("skyrocket_watch_expired")
        return None

    async def _cooldown_and_rebuy(self, user_id: int, symbol: str) -> bool:
        """
        Cooldown, then rebuy watch for a sold symbol.

        Returns:
            True when ``symbol`` was bought again and should be monitored
        """
        sold = await self.store.get_position(user_id, symbol)
        if sold is None or not sold.sold:
            return False
        epoch = sold.epoch

        await self.store.set_phase(user_id, symbol, SymbolPhase.COOLDOWN, epoch)
        logger.info("cooldown_started", seconds=self.thresholds.cooldown_seconds)
        await asyncio.sleep(self.thresholds.cooldown_seconds)

        return await self._watch_for_rebuy(user_id, symbol, epoch, sold.rebuy_percentage)

    async def _watch_for_rebuy(
        self, user_id: int, symbol: str, epoch: int, rebuy_percentage: float
    ) -> bool:
        t = self.thresholds
        await self.store.set_phase(user_id, symbol, SymbolPhase.REBUY_WATCHING, epoch)
        reference = await self._poll_price(user_id, symbol)
        logger.info("rebuy_watch_started", reference_price=reference)

        elapsed = 0.0
        since_reset = 0.0
        while elapsed < t.rebuy_watch_timeout_seconds:
            await asyncio.sleep(t.rebuy_interval_seconds)
            elapsed += t.rebuy_interval_seconds
            since_reset += t.rebuy_interval_seconds
            try:
                price = await self._poll_price(user_id, symbol)
                if price is None:
                    continue
                if reference is None:
                    reference, since_reset = price, 0.0
                    continue

                action = self.engine.evaluate_rebuy(reference, price)
                if action is not RebuyAction.WAIT:
                    logger.info("rebuy_triggered", reason=action.value, reference_price=reference, price=price)
                    if await self._redeploy(
                        user_id, symbol, price, rebuy_percentage, epoch, action.value
                    ):
                        return True
                elif since_reset >= t.reference_reset_seconds:
                    logger.debug("rebuy_reference_reset", previous=reference, reference_price=price)
                    reference, since_reset = price, 0.0
            except Exception as e:
                logger.error("rebuy_iteration_failed", error=str(e), exc_info=True)

        return await self._fallback_to_trending(user_id, symbol, rebuy_percentage, epoch)

    async def _redeploy(
        self,
        user_id: int,
        symbol: str,
        price: float,
        rebuy_percentage: float,
        expected_epoch: int | None,
        trigger: str,
    ) -> bool:
        """Spend ``rebuy_percentage`` of the quote balance on ``symbol``."""
        try:
            credentials = await self.credentials.get_credentials(user_id)
            balance = await self.balances.get_available_balance(user_id, self.quote)
        except Exception as e:
            logger.error(
                "rebuy_failed",
                rebuy_symbol=symbol,
                error=str(e),
                exc_info=not isinstance(e, TradingError),
            )
            await self._record_failure(user_id, symbol)
            return False

        amount = balance * rebuy_percentage / 100
        if amount <= 0:
            logger.warning("rebuy_skipped_no_balance", rebuy_symbol=symbol, balance=balance)
            return False

        try:
            result = await self._buy(
                user_id,
                credentials,
                symbol,
                amount,
                rebuy_percentage,
                expected_epoch=expected_epoch,
                price=price,
            )
        except Exception as e:
            logger.error(
                "rebuy_failed",
                rebuy_symbol=symbol,
                amount=amount,
                error=str(e),
                exc_info=not isinstance(e, TradingError),
            )
            await self._record_failure(user_id, symbol)
            return False

        self.metrics.record_rebuy(trigger)
        logger.info(
            "rebuy_completed",
            rebuy_symbol=symbol,
            amount=amount,
            quantity=result.quantity,
            entry_price=result.entry_price,
        )
        return True

    async def _fallback_to_trending(
        self, user_id: int, symbol: str, rebuy_percentage: float, epoch: int
    ) -> bool:
        """
        Redeploy into the day's top gainer after a fruitless rebuy watch.

        Returns:
            True only when the top gainer is ``symbol`` itself and it was bought
        """
        trending = None
        if self.trending is not None:
            try:
                trending = await self.trending.top_trending_today()
            except Exception as e:
                logger.error("trending_lookup_failed", error=str(e), exc_info=True)

        price = None
        if trending:
            trending = normalize_symbol(trending)
            price = await self._poll_price(user_id, trending)

        if price is None:
            await self.store.set_phase(user_id, symbol, SymbolPhase.NO_POSITION, epoch)
            logger.info("rebuy_watch_expired")
            return False

        logger.info("trending_fallback", trending_symbol=trending)
        if trending == symbol:
            if await self._redeploy(
                user_id, symbol, price, rebuy_percentage, epoch, TRENDING_REBUY
            ):
                return True
        elif await self._redeploy(
            user_id, trending, price, rebuy_percentage, None, TRENDING_REBUY
        ):
            await self._start_monitor(user_id, trending)

        await self.store.set_phase(user_id, symbol, SymbolPhase.NO_POSITION, epoch)
        return False
