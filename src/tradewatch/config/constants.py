"""
Trading Thresholds and Intervals for tradewatch.

This module defines the default sell/rebuy thresholds and polling intervals
used by the decision engine and the monitor loops. They are defaults only:
every value can be overridden through ``TradingSettings`` (environment) or by
passing a custom ``TradingThresholds`` to the orchestrator.

All constants are immutable (Final) to prevent accidental modification during runtime.
"""

from typing import Final


# =============================================================================
# Sell Triggers
# =============================================================================

STOP_LOSS_PCT: Final[float] = 0.004
"""
Price drop from entry that triggers an immediate stop-loss sell (0.4%).
Strictly greater-than comparison.
"""

TAKE_PROFIT_PCT: Final[float] = 0.02
"""
Gain over entry that triggers a profit-taking sell (2%).
"""

SKYROCKET_TRIGGER_PCT: Final[float] = 0.05
"""
Early gain that defers the sell into a skyrocket watch (5%).
Only considered while the position is younger than SKYROCKET_WINDOW_SECONDS.
"""

SKYROCKET_TARGET_PCT: Final[float] = 0.10
"""
Gain that closes the position during a skyrocket watch (10%).
"""

SKYROCKET_WINDOW_SECONDS: Final[float] = 60.0
"""
Maximum position age for the skyrocket trigger to apply.
"""


# =============================================================================
# Polling Intervals
# =============================================================================

MONITOR_INTERVAL_SECONDS: Final[float] = 10.0
"""
Poll interval of the standard position monitor.
"""

SKYROCKET_INTERVAL_SECONDS: Final[float] = 60.0
"""
Poll interval inside the skyrocket watch.
"""

SKYROCKET_DURATION_SECONDS: Final[float] = 240.0
"""
Total lifetime of a skyrocket watch before control returns to the monitor.
"""


# =============================================================================
# Rebuy Watch
# =============================================================================

COOLDOWN_SECONDS: Final[float] = 180.0
"""
Idle period after any sell before the rebuy watch starts polling.
"""

REBUY_INTERVAL_SECONDS: Final[float] = 20.0
"""
Poll interval of the rebuy watch.
"""

REFERENCE_RESET_SECONDS: Final[float] = 210.0
"""
Age after which the rebuy reference price is replaced by the current price.
"""

REBUY_WATCH_TIMEOUT_SECONDS: Final[float] = 3600.0
"""
Time without a rebuy after which the trending-symbol fallback is used.
"""

REBUY_RISE_PCT: Final[float] = 0.002
"""
Rise over the reference price that triggers a rebuy (0.2%).
"""

REBUY_DIP_PCT: Final[float] = 0.05
"""
Drop under the reference price that triggers a buy-the-dip rebuy (5%).
"""


# =============================================================================
# Housekeeping
# =============================================================================

MIN_POSITION_VALUE: Final[float] = 1.0
"""
Positions worth less than this (in quote currency) are treated as dust and
closed without an order.
"""

FAILURE_WARNING_THRESHOLD: Final[int] = 3
"""
Consecutive failed polls before a monitor is reported as degraded.
"""

DAY_LENGTH_SECONDS: Final[float] = 24 * 60 * 60
"""
Length of a trading day for accumulated-profit rollover.
"""

DEFAULT_REBUY_PERCENTAGE: Final[float] = 100.0
"""
Rebuy percentage used by buy-now when the symbol has none recorded.
"""

DEFAULT_QUOTE_CURRENCY: Final[str] = "USDT"
"""
Quote currency used for balance checks and trending-symbol selection.
"""
