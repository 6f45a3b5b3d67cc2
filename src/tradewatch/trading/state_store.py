"""
In-memory trade state for tradewatch.

``TradeStateStore`` is the single owner of every user's positions and profit
bookkeeping. Callers never get a reference to live state: every method takes
the user's lock, applies one transition and returns copies.

Each (user, symbol) slot carries an ``epoch`` that is bumped whenever a new
acquisition is recorded or the user is reset. Background tasks capture the
epoch they were started for and pass it back when committing, so a superseded
or cancelled task cannot overwrite a newer position.

State is process-local and lost on restart.
"""

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from tradewatch.utils import get_logger

logger = get_logger(__name__)


class SymbolPhase(str, Enum):
    """Where a (user, symbol) pair is in its buy / sell / rebuy cycle."""

    NO_POSITION = "NO_POSITION"
    HOLDING = "HOLDING"
    SKYROCKET_WATCH = "SKYROCKET_WATCH"
    COOLDOWN = "COOLDOWN"
    REBUY_WATCHING = "REBUY_WATCHING"
    SOLD = "SOLD"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class Position:
    """
    One acquisition of a symbol.

    Attributes:
        symbol: Instrument in BASE_QUOTE form
        entry_price: Price at acquisition
        entry_timestamp: Acquisition time (UTC)
        quantity: Base quantity currently held (0 once sold)
        rebuy_percentage: Share of balance redeployed on rebuy, in (0, 100]
        sold: Terminal flag for this acquisition
        epoch: Store-assigned acquisition counter for the (user, symbol) slot
    """

    symbol: str
    entry_price: float
    entry_timestamp: datetime
    quantity: float
    rebuy_percentage: float
    sold: bool = False
    epoch: int = 0

    def durable_record(self, user_id: int) -> dict:
        """Minimal record a collaborator would persist for crash recovery."""
        return {
            "user_id": user_id,
            "symbol": self.symbol,
            "entry_price": self.entry_price,
            "entry_timestamp": self.entry_timestamp.isoformat(),
            "quantity": self.quantity,
            "rebuy_percentage": self.rebuy_percentage,
        }

    def to_dict(self) -> dict:
        data = asdict(self)
        data["entry_timestamp"] = self.entry_timestamp.isoformat()
        return data


@dataclass
class UserTradeState:
    """Everything the core tracks for one user."""

    user_id: int
    day_start: datetime
    positions: dict[str, Position] = field(default_factory=dict)
    profit_target: float = 0.0
    accumulated_profit: float = 0.0
    epochs: dict[str, int] = field(default_factory=dict)
    phases: dict[str, SymbolPhase] = field(default_factory=dict)
    last_prices: dict[str, float] = field(default_factory=dict)
    consecutive_failures: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ClosedPosition:
    """Result of committing a sell."""

    position: Position
    sell_price: float
    realized_profit: float
    accumulated_profit: float
    profit_target: float

    @property
    def target_reached(self) -> bool:
        return self.profit_target > 0 and self.accumulated_profit >= self.profit_target


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time view of a user's trading state."""

    user_id: int
    positions: tuple[Position, ...]
    profit_target: float
    accumulated_profit: float
    day_start: datetime | None
    active_monitors: tuple[str, ...]
    phases: dict[str, SymbolPhase]
    degraded_symbols: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "positions": [p.to_dict() for p in self.positions],
            "profit_target": self.profit_target,
            "accumulated_profit": self.accumulated_profit,
            "day_start": self.day_start.isoformat() if self.day_start else None,
            "active_monitors": list(self.active_monitors),
            "phases": {s: p.value for s, p in self.phases.items()},
            "degraded_symbols": list(self.degraded_symbols),
        }


# =============================================================================
# Store
# =============================================================================


class TradeStateStore:
    """
    Per-user partitioned state with one ``asyncio.Lock`` per user.

    Different users never contend; one user's transitions are serialized.
    """

    def __init__(self, failure_warning_threshold: int = 3):
        self._states: dict[int, UserTradeState] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._failure_warning_threshold = failure_warning_threshold

    def _lock(self, user_id: int) -> asyncio.Lock:
        # setdefault does not yield to the loop, so two tasks cannot race here
        return self._locks.setdefault(user_id, asyncio.Lock())

    def _state(self, user_id: int) -> UserTradeState:
        state = self._states.get(user_id)
        if state is None:
            state = UserTradeState(user_id=user_id, day_start=datetime.now(UTC))
            self._states[user_id] = state
            logger.debug("user_state_created", user_id=user_id)
        return state

    def has_user(self, user_id: int) -> bool:
        return user_id in self._states

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    async def open_position(
        self,
        user_id: int,
        position: Position,
        expected_epoch: int | None = None,
    ) -> Position | None:
        """
        Record a new acquisition for ``position.symbol``.

        An existing unsold position for the symbol is folded in: quantities
        add up and the entry price becomes the quantity-weighted average.

        Args:
            user_id: Owner
            position: Freshly bought position (epoch is assigned here)
            expected_epoch: When given, commit only if the slot is still at
                this epoch (used by rebuy watches)

        Returns:
            Copy of the stored position, or None if the slot moved on
        """
        async with self._lock(user_id):
            state = self._state(user_id)
            symbol = position.symbol
            current_epoch = state.epochs.get(symbol, 0)
            if expected_epoch is not None and expected_epoch != current_epoch:
                logger.warning(
                    "stale_open_rejected",
                    user_id=user_id,
                    symbol=symbol,
                    expected_epoch=expected_epoch,
                    current_epoch=current_epoch,
                )
                return None

            new = replace(position, sold=False, epoch=current_epoch + 1)
            previous = state.positions.get(symbol)
            if previous is not None and not previous.sold and previous.quantity > 0:
                total = previous.quantity + new.quantity
                new.entry_price = (
                    previous.entry_price * previous.quantity + new.entry_price * new.quantity
                ) / total
                new.quantity = total
                logger.info(
                    "position_increased",
                    user_id=user_id,
                    symbol=symbol,
                    entry_price=new.entry_price,
                    quantity=total,
                )

            state.positions[symbol] = new
            state.epochs[symbol] = new.epoch
            state.phases[symbol] = SymbolPhase.HOLDING
            state.consecutive_failures.pop(symbol, None)
            return replace(new)

    async def get_position(self, user_id: int, symbol: str) -> Position | None:
        async with self._lock(user_id):
            state = self._states.get(user_id)
            if state is None or symbol not in state.positions:
                return None
            return replace(state.positions[symbol])

    async def get_open_position(
        self, user_id: int, symbol: str, epoch: int | None = None
    ) -> Position | None:
        """Unsold position for the symbol, optionally only at ``epoch``."""
        position = await self.get_position(user_id, symbol)
        if position is None or position.sold:
            return None
        if epoch is not None and position.epoch != epoch:
            return None
        return position

    async def close_position(
        self, user_id: int, symbol: str, epoch: int, sell_price: float
    ) -> ClosedPosition | None:
        """
        Mark the acquisition at ``epoch`` sold and realise its profit.

        Realised profit is ``(sell_price - entry_price) * quantity`` rounded to
        cents and added to the user's accumulated profit.

        Returns:
            ClosedPosition, or None if the slot is no longer at ``epoch`` or
            already sold
        """
        async with self._lock(user_id):
            state = self._states.get(user_id)
            position = state.positions.get(symbol) if state else None
            if position is None or position.sold or position.epoch != epoch:
                logger.warning(
                    "stale_close_rejected",
                    user_id=user_id,
                    symbol=symbol,
                    epoch=epoch,
                )
                return None

            before = replace(position)
            realized = round((sell_price - position.entry_price) * position.quantity, 2)
            state.accumulated_profit = round(state.accumulated_profit + realized, 2)
            position.sold = True
            position.quantity = 0.0
            state.phases[symbol] = SymbolPhase.SOLD

            logger.info(
                "position_closed",
                user_id=user_id,
                symbol=symbol,
                sell_price=sell_price,
                realized_profit=realized,
                accumulated_profit=state.accumulated_profit,
            )
            return ClosedPosition(
                position=before,
                sell_price=sell_price,
                realized_profit=realized,
                accumulated_profit=state.accumulated_profit,
                profit_target=state.profit_target,
            )

    async def discard_dust(self, user_id: int, symbol: str, epoch: int) -> bool:
        """Mark a worthless remainder sold without realising profit."""
        async with self._lock(user_id):
            state = self._states.get(user_id)
            position = state.positions.get(symbol) if state else None
            if position is None or position.sold or position.epoch != epoch:
                return False
            position.sold = True
            position.quantity = 0.0
            state.phases[symbol] = SymbolPhase.NO_POSITION
            return True

    async def rebuy_percentage(self, user_id: int, symbol: str) -> float | None:
        position = await self.get_position(user_id, symbol)
        return position.rebuy_percentage if position else None

    # -------------------------------------------------------------------------
    # Profit bookkeeping
    # -------------------------------------------------------------------------

    async def begin_trading_day(self, user_id: int, profit_target: float, now: datetime) -> None:
        async with self._lock(user_id):
            state = self._state(user_id)
            state.profit_target = profit_target
            state.accumulated_profit = 0.0
            state.day_start = now

    async def roll_day_if_needed(
        self, user_id: int, now: datetime, is_new_day: Callable[[datetime, datetime], bool]
    ) -> bool:
        """Reset accumulated profit once ``is_new_day(day_start, now)`` holds."""
        async with self._lock(user_id):
            state = self._states.get(user_id)
            if state is None:
                return False
            if not is_new_day(state.day_start, now):
                return False
            logger.info(
                "trading_day_rolled_over",
                user_id=user_id,
                previous_profit=state.accumulated_profit,
            )
            state.accumulated_profit = 0.0
            state.day_start = now
            return True

    async def profit_state(self, user_id: int) -> tuple[float, float]:
        """(accumulated_profit, profit_target)."""
        async with self._lock(user_id):
            state = self._states.get(user_id)
            if state is None:
                return 0.0, 0.0
            return state.accumulated_profit, state.profit_target

    # -------------------------------------------------------------------------
    # Monitor bookkeeping
    # -------------------------------------------------------------------------

    async def set_phase(
        self, user_id: int, symbol: str, phase: SymbolPhase, epoch: int | None = None
    ) -> bool:
        async with self._lock(user_id):
            state = self._state(user_id)
            if epoch is not None and state.epochs.get(symbol, 0) != epoch:
                return False
            state.phases[symbol] = phase
            return True

    async def get_phase(self, user_id: int, symbol: str) -> SymbolPhase | None:
        async with self._lock(user_id):
            state = self._states.get(user_id)
            return state.phases.get(symbol) if state else None

    async def record_price(self, user_id: int, symbol: str, price: float) -> None:
        """Remember the last observed price and clear the failure streak."""
        async with self._lock(user_id):
            state = self._state(user_id)
            state.last_prices[symbol] = price
            state.consecutive_failures.pop(symbol, None)

    async def last_price(self, user_id: int, symbol: str) -> float | None:
        async with self._lock(user_id):
            state = self._states.get(user_id)
            return state.last_prices.get(symbol) if state else None

    async def record_failure(self, user_id: int, symbol: str) -> int:
        async with self._lock(user_id):
            state = self._state(user_id)
            count = state.consecutive_failures.get(symbol, 0) + 1
            state.consecutive_failures[symbol] = count
            return count

    # -------------------------------------------------------------------------
    # Reset / snapshot
    # -------------------------------------------------------------------------

    async def reset_user(self, user_id: int, now: datetime) -> list[str]:
        """
        Mark every position sold with zero quantity and restart the day.

        Returns:
            Symbols whose positions were still open
        """
        async with self._lock(user_id):
            state = self._state(user_id)
            was_open = []
            for symbol, position in state.positions.items():
                if not position.sold:
                    was_open.append(symbol)
                position.sold = True
                position.quantity = 0.0
                state.epochs[symbol] = state.epochs.get(symbol, 0) + 1
                state.phases[symbol] = SymbolPhase.NO_POSITION
            state.accumulated_profit = 0.0
            state.day_start = now
            state.consecutive_failures.clear()
            return was_open

    async def snapshot(
        self, user_id: int, active_monitors: list[str] | tuple[str, ...] = ()
    ) -> StatusSnapshot:
        async with self._lock(user_id):
            state = self._states.get(user_id)
            if state is None:
                return StatusSnapshot(
                    user_id=user_id,
                    positions=(),
                    profit_target=0.0,
                    accumulated_profit=0.0,
                    day_start=None,
                    active_monitors=tuple(active_monitors),
                    phases={},
                    degraded_symbols=(),
                )
            degraded = tuple(
                sorted(
                    s
                    for s, n in state.consecutive_failures.items()
                    if n >= self._failure_warning_threshold
                )
            )
            return StatusSnapshot(
                user_id=user_id,
                positions=tuple(replace(p) for p in state.positions.values()),
                profit_target=state.profit_target,
                accumulated_profit=state.accumulated_profit,
                day_start=state.day_start,
                active_monitors=tuple(active_monitors),
                phases=dict(state.phases),
                degraded_symbols=degraded,
            )
