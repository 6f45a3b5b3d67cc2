"""
Sell / Rebuy Decision Engine for tradewatch.

Pure evaluation logic: given a position, the latest price and the user's
profit bookkeeping, decide what the monitor loop should do next. No I/O, no
clocks, no shared state, so every rule is testable in isolation.

Sell rules, first match wins:
1. Stop-loss: price dropped more than ``stop_loss_pct`` below entry.
2. Skyrocket: within ``skyrocket_window_seconds`` of entry and up at least
   ``skyrocket_trigger_pct``; the caller enters a bounded skyrocket watch
   instead of selling.
3. Take-profit: price rose at least ``take_profit_pct`` above entry.
4. Target reached: realised + unrealised profit meets the day's target
   (a target of 0 means none has been set).
5. Hold.

The skyrocket check sits ahead of take-profit: any early spike above the
skyrocket trigger also clears the (lower) take-profit ratio and would
otherwise never be deferred.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from tradewatch.config import constants
from tradewatch.utils import get_logger

if TYPE_CHECKING:
    from tradewatch.config.settings import TradingSettings
    from tradewatch.trading.state_store import Position

logger = get_logger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class TradingThresholds:
    """
    Every trigger ratio and interval used by the engine and the monitor loops.

    Attributes:
        stop_loss_pct: Drop from entry that forces a sell (strict >)
        take_profit_pct: Gain over entry that takes profit
        skyrocket_trigger_pct: Early gain that opens a skyrocket watch
        skyrocket_target_pct: Gain that sells during a skyrocket watch
        skyrocket_window_seconds: Max position age for the skyrocket trigger
        monitor_interval_seconds: Standard monitor poll interval
        skyrocket_interval_seconds: Skyrocket watch poll interval
        skyrocket_duration_seconds: Skyrocket watch lifetime
        cooldown_seconds: Idle time after a sell before rebuy watching
        rebuy_interval_seconds: Rebuy watch poll interval
        reference_reset_seconds: Rebuy reference price lifetime
        rebuy_watch_timeout_seconds: Time before the trending fallback
        rebuy_rise_pct: Rise over reference that triggers a rebuy
        rebuy_dip_pct: Drop under reference that triggers a rebuy
        min_position_value: Dust threshold in quote currency
        failure_warning_threshold: Consecutive failures before degraded state
        day_length_seconds: Accumulated-profit rollover period
    """

    stop_loss_pct: float = constants.STOP_LOSS_PCT
    take_profit_pct: float = constants.TAKE_PROFIT_PCT
    skyrocket_trigger_pct: float = constants.SKYROCKET_TRIGGER_PCT
    skyrocket_target_pct: float = constants.SKYROCKET_TARGET_PCT
    skyrocket_window_seconds: float = constants.SKYROCKET_WINDOW_SECONDS
    monitor_interval_seconds: float = constants.MONITOR_INTERVAL_SECONDS
    skyrocket_interval_seconds: float = constants.SKYROCKET_INTERVAL_SECONDS
    skyrocket_duration_seconds: float = constants.SKYROCKET_DURATION_SECONDS
    cooldown_seconds: float = constants.COOLDOWN_SECONDS
    rebuy_interval_seconds: float = constants.REBUY_INTERVAL_SECONDS
    reference_reset_seconds: float = constants.REFERENCE_RESET_SECONDS
    rebuy_watch_timeout_seconds: float = constants.REBUY_WATCH_TIMEOUT_SECONDS
    rebuy_rise_pct: float = constants.REBUY_RISE_PCT
    rebuy_dip_pct: float = constants.REBUY_DIP_PCT
    min_position_value: float = constants.MIN_POSITION_VALUE
    failure_warning_threshold: int = constants.FAILURE_WARNING_THRESHOLD
    day_length_seconds: float = constants.DAY_LENGTH_SECONDS

    @classmethod
    def from_settings(cls, settings: "TradingSettings") -> "TradingThresholds":
        """Build thresholds from the ``TRADING_*`` environment settings."""
        values = settings.model_dump()
        return cls(**{k: values[k] for k in cls.__dataclass_fields__ if k in values})

    def with_overrides(self, **overrides: float) -> "TradingThresholds":
        return replace(self, **overrides)

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Decisions
# =============================================================================


class SellAction(str, Enum):
    """Outcome of one standard-monitor evaluation."""

    HOLD = "HOLD"
    SELL_STOP_LOSS = "SELL_STOP_LOSS"
    SELL_PROFIT = "SELL_PROFIT"
    SELL_TARGET_REACHED = "SELL_TARGET_REACHED"
    WATCH_SKYROCKET = "WATCH_SKYROCKET"

    @property
    def is_sell(self) -> bool:
        return self in (
            SellAction.SELL_STOP_LOSS,
            SellAction.SELL_PROFIT,
            SellAction.SELL_TARGET_REACHED,
        )


class RebuyAction(str, Enum):
    """Outcome of one rebuy-watch evaluation."""

    WAIT = "WAIT"
    REBUY_ON_RISE = "REBUY_ON_RISE"
    REBUY_ON_DIP = "REBUY_ON_DIP"


@dataclass(frozen=True)
class MonitorDecision:
    """
    Evaluation result with the ratios that produced it.

    Attributes:
        action: What the monitor should do
        price: Price the decision was made at
        price_drop: (entry - price) / entry
        profit_ratio: (price - entry) / entry
        unrealized_profit: (price - entry) * quantity in quote currency
        position_age_seconds: Seconds since entry
    """

    action: SellAction
    price: float
    price_drop: float
    profit_ratio: float
    unrealized_profit: float
    position_age_seconds: float

    def to_dict(self) -> dict:
        data = asdict(self)
        data["action"] = self.action.value
        return data


# =============================================================================
# Engine
# =============================================================================


def unrealized_profit(position: "Position", price: float) -> float:
    """Profit in quote currency if ``position`` were sold at ``price``."""
    return (price - position.entry_price) * position.quantity


class DecisionEngine:
    """
    Stateless sell/rebuy rule evaluator.

    Example:
        ```python
        engine = DecisionEngine(TradingThresholds())
        decision = engine.evaluate(position, 99.5, now, 0.0, 20.0)
        assert decision.action is SellAction.SELL_STOP_LOSS
        ```
    """

    def __init__(self, thresholds: TradingThresholds | None = None):
        self.thresholds = thresholds or TradingThresholds()

    def evaluate(
        self,
        position: "Position",
        current_price: float,
        now: datetime,
        accumulated_profit: float,
        profit_target: float,
        allow_skyrocket: bool = True,
    ) -> MonitorDecision:
        """
        Decide the standard-monitor action for one poll.

        Args:
            position: Open position being monitored
            current_price: Latest traded price
            now: Evaluation time (timezone-aware)
            accumulated_profit: Realised profit since the day started
            profit_target: The user's profit goal for the day
            allow_skyrocket: False once this acquisition already had its
                skyrocket watch

        Returns:
            MonitorDecision carrying the action and the computed ratios

        Raises:
            ValueError: If the entry price is not positive
        """
        t = self.thresholds
        entry = position.entry_price
        if entry <= 0:
            raise ValueError(f"Invalid entry price for {position.symbol}: {entry}")

        price_drop = (entry - current_price) / entry
        profit_ratio = (current_price - entry) / entry
        pnl = unrealized_profit(position, current_price)
        age = (now - position.entry_timestamp).total_seconds()

        if price_drop > t.stop_loss_pct:
            action = SellAction.SELL_STOP_LOSS
        elif (
            allow_skyrocket
            and age <= t.skyrocket_window_seconds
            and profit_ratio >= t.skyrocket_trigger_pct
        ):
            action = SellAction.WATCH_SKYROCKET
        elif profit_ratio >= t.take_profit_pct:
            action = SellAction.SELL_PROFIT
        elif profit_target > 0 and accumulated_profit + pnl >= profit_target:
            action = SellAction.SELL_TARGET_REACHED
        else:
            action = SellAction.HOLD

        return MonitorDecision(
            action=action,
            price=current_price,
            price_drop=price_drop,
            profit_ratio=profit_ratio,
            unrealized_profit=pnl,
            position_age_seconds=age,
        )

    def evaluate_skyrocket(self, position: "Position", current_price: float) -> bool:
        """True when a skyrocket watch should sell at ``current_price``."""
        entry = position.entry_price
        if entry <= 0:
            return False
        return (current_price - entry) / entry >= self.thresholds.skyrocket_target_pct

    def evaluate_rebuy(self, reference_price: float, current_price: float) -> RebuyAction:
        """
        Decide whether a rebuy watch should re-enter.

        A rise of ``rebuy_rise_pct`` over the reference is checked first; a
        dip of ``rebuy_dip_pct`` below it is treated as a buy-the-dip signal.
        """
        if reference_price <= 0:
            return RebuyAction.WAIT
        increase = (current_price - reference_price) / reference_price
        drop = (reference_price - current_price) / reference_price
        if increase >= self.thresholds.rebuy_rise_pct:
            return RebuyAction.REBUY_ON_RISE
        if drop >= self.thresholds.rebuy_dip_pct:
            return RebuyAction.REBUY_ON_DIP
        return RebuyAction.WAIT

    def is_dust(self, position: "Position", current_price: float) -> bool:
        """True when the position is worth less than ``min_position_value``."""
        return position.quantity * current_price < self.thresholds.min_position_value

    def is_new_day(self, day_start: datetime, now: datetime) -> bool:
        return (now - day_start).total_seconds() >= self.thresholds.day_length_seconds


def create_decision_engine(settings: "TradingSettings | None" = None) -> DecisionEngine:
    """
    Create a decision engine from settings (or defaults).

    Returns:
        DecisionEngine instance ready for evaluation
    """
    thresholds = (
        TradingThresholds.from_settings(settings) if settings is not None else TradingThresholds()
    )
    logger.debug("decision_engine_created", **thresholds.to_dict())
    return DecisionEngine(thresholds)
