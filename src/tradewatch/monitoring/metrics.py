"""
Prometheus metrics for tradewatch.

Counters and gauges for orders, sells, rebuys, monitor tasks and price feed
health, exposed over HTTP by ``MetricsManager.start_server``.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
import time

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

# Custom registry so tests and embedding apps never collide with the default one
REGISTRY = CollectorRegistry()


# =============================================================================
# System Info
# =============================================================================

SYSTEM_INFO = Info(
    "tradewatch_system",
    "tradewatch system information",
    registry=REGISTRY,
)

PROCESS_UPTIME = Gauge(
    "tradewatch_uptime_seconds",
    "Process uptime in seconds",
    registry=REGISTRY,
)


# =============================================================================
# Trading Metrics
# =============================================================================

ORDERS_TOTAL = Counter(
    "tradewatch_orders_total",
    "Market orders submitted",
    ["symbol", "side", "status"],
    registry=REGISTRY,
)

ORDER_LATENCY = Histogram(
    "tradewatch_order_latency_seconds",
    "Order execution latency in seconds",
    ["side"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

SELLS_TOTAL = Counter(
    "tradewatch_sells_total",
    "Positions sold, by trigger",
    ["reason"],
    registry=REGISTRY,
)

TRADE_PNL = Histogram(
    "tradewatch_trade_pnl",
    "Realised profit per sell in quote currency",
    buckets=(-50, -10, -5, -1, 0, 1, 5, 10, 50),
    registry=REGISTRY,
)

REBUYS_TOTAL = Counter(
    "tradewatch_rebuys_total",
    "Rebuys after a sell, by trigger",
    ["trigger"],
    registry=REGISTRY,
)

TARGETS_REACHED = Counter(
    "tradewatch_profit_targets_reached_total",
    "Times a user's daily profit target stopped trading",
    registry=REGISTRY,
)


# =============================================================================
# Monitor Metrics
# =============================================================================

ACTIVE_MONITORS = Gauge(
    "tradewatch_active_monitors",
    "Live monitor / rebuy-watch tasks",
    registry=REGISTRY,
)

PRICE_FETCH_FAILURES = Counter(
    "tradewatch_price_fetch_failures_total",
    "Failed price polls, by error kind",
    ["error"],
    registry=REGISTRY,
)

DEGRADED_MONITORS = Counter(
    "tradewatch_degraded_monitors_total",
    "Monitors that hit the consecutive failure threshold",
    registry=REGISTRY,
)


# =============================================================================
# Metrics Manager
# =============================================================================


class MetricsManager:
    """
    Centralized metrics management for tradewatch.

    Provides helper methods for common metric operations and
    manages the Prometheus HTTP server.
    """

    def __init__(self, port: int = 8000):
        """
        Initialize the metrics manager.

        Args:
            port: Port for Prometheus metrics endpoint
        """
        self.port = port
        self._start_time = datetime.now(UTC)
        self._server_started = False

        SYSTEM_INFO.info({"version": "0.1.0", "mode": "paper"})

    def start_server(self, mode: str = "paper") -> None:
        """
        Start the Prometheus metrics HTTP server.

        Args:
            mode: Trading mode (paper/live)
        """
        if self._server_started:
            return

        SYSTEM_INFO.info({"version": "0.1.0", "mode": mode})
        start_http_server(self.port, registry=REGISTRY)
        self._server_started = True

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus exposition format."""
        return generate_latest(REGISTRY)

    def update_uptime(self) -> None:
        uptime = (datetime.now(UTC) - self._start_time).total_seconds()
        PROCESS_UPTIME.set(uptime)

    def record_order(self, symbol: str, side: str, status: str) -> None:
        ORDERS_TOTAL.labels(symbol=symbol, side=side, status=status).inc()

    def record_sell(self, reason: str, pnl: float) -> None:
        SELLS_TOTAL.labels(reason=reason).inc()
        TRADE_PNL.observe(pnl)

    def record_rebuy(self, trigger: str) -> None:
        REBUYS_TOTAL.labels(trigger=trigger).inc()

    def record_target_reached(self) -> None:
        TARGETS_REACHED.inc()

    def record_price_failure(self, error: str) -> None:
        PRICE_FETCH_FAILURES.labels(error=error).inc()

    def record_degraded(self) -> None:
        DEGRADED_MONITORS.inc()


# =============================================================================
# Context Managers
# =============================================================================


@asynccontextmanager
async def measure_latency(histogram: Histogram, labels: dict):
    """
    Context manager to measure operation latency.

    Usage:
        async with measure_latency(ORDER_LATENCY, {"side": "buy"}):
            await executor.market_buy(credentials, "BTC_USDT", 100.0)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


# =============================================================================
# Singleton Instance
# =============================================================================

_metrics_manager: MetricsManager | None = None


def get_metrics_manager(port: int = 8000) -> MetricsManager:
    """
    Get or create the singleton MetricsManager instance.

    Args:
        port: Port for Prometheus metrics endpoint

    Returns:
        MetricsManager singleton instance
    """
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager(port=port)
    return _metrics_manager
