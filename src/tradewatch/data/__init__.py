"""
Market data layer for tradewatch.

ccxt-backed exchange access, the price feed polled by monitors and the
top-gainer lookup used by the rebuy fallback.
"""

from .fetcher import CcxtPriceFeed, ExchangeClient, Ticker
from .trending import CcxtTrendingProvider

__all__ = [
    "ExchangeClient",
    "Ticker",
    "CcxtPriceFeed",
    "CcxtTrendingProvider",
]
