"""
Monitoring module for tradewatch.

Provides Prometheus metrics collection.
"""

from .metrics import (
    ACTIVE_MONITORS,
    DEGRADED_MONITORS,
    ORDER_LATENCY,
    ORDERS_TOTAL,
    PRICE_FETCH_FAILURES,
    PROCESS_UPTIME,
    REBUYS_TOTAL,
    REGISTRY,
    SELLS_TOTAL,
    TARGETS_REACHED,
    TRADE_PNL,
    MetricsManager,
    get_metrics_manager,
    measure_latency,
)

__all__ = [
    # Registry
    "REGISTRY",
    # Manager
    "MetricsManager",
    "get_metrics_manager",
    "measure_latency",
    # Trading
    "ORDERS_TOTAL",
    "ORDER_LATENCY",
    "SELLS_TOTAL",
    "TRADE_PNL",
    "REBUYS_TOTAL",
    "TARGETS_REACHED",
    # Monitors
    "ACTIVE_MONITORS",
    "PRICE_FETCH_FAILURES",
    "DEGRADED_MONITORS",
    # System
    "PROCESS_UPTIME",
]
