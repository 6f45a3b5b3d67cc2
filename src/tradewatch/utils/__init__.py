"""
Utility modules for tradewatch.

This package provides common utilities: structured logging and symbol
format helpers.
"""

from .logger import (
    LogConfig,
    add_context,
    clear_context,
    get_logger,
    set_log_level,
    setup_logging,
)
from .symbols import (
    base_currency,
    from_ccxt_symbol,
    is_valid_symbol,
    normalize_symbol,
    quote_currency,
    to_ccxt_symbol,
)

__all__ = [
    "LogConfig",
    "setup_logging",
    "get_logger",
    "add_context",
    "set_log_level",
    "clear_context",
    "normalize_symbol",
    "is_valid_symbol",
    "to_ccxt_symbol",
    "from_ccxt_symbol",
    "base_currency",
    "quote_currency",
]
