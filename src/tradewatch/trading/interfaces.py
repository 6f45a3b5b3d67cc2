"""
Collaborator interfaces consumed by the trading core.

The orchestrator only ever talks to these protocols; concrete implementations
live in ``tradewatch.data`` (ccxt-backed) and ``tradewatch.trading.executor`` /
``tradewatch.trading.providers``. Credentials are passed per call so no
implementation needs a long-lived, user-scoped client.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ExchangeCredentials:
    """User-scoped exchange API credentials."""

    api_key: str
    api_secret: str = field(repr=False)
    api_memo: str = field(default="", repr=False)

    def is_complete(self) -> bool:
        return bool(self.api_key and self.api_secret)


@runtime_checkable
class PriceFeed(Protocol):
    async def get_last_price(self, symbol: str) -> float:
        """Latest traded price. Raises SymbolUnavailable or InvalidPriceData."""
        ...


@runtime_checkable
class OrderExecutor(Protocol):
    async def market_buy(
        self, credentials: ExchangeCredentials, symbol: str, notional: float
    ) -> float:
        """Spend ``notional`` quote currency; returns filled base quantity."""
        ...

    async def market_sell(
        self, credentials: ExchangeCredentials, symbol: str, quantity: float
    ) -> None:
        """Sell ``quantity`` base currency."""
        ...


@runtime_checkable
class CredentialProvider(Protocol):
    async def get_credentials(self, user_id: int) -> ExchangeCredentials:
        """Raises CredentialsMissing when the user has none."""
        ...


@runtime_checkable
class BalanceProvider(Protocol):
    async def get_available_balance(self, user_id: int, currency: str) -> float:
        ...


@runtime_checkable
class TrendingSymbolProvider(Protocol):
    async def top_trending_today(self) -> str | None:
        """Symbol (``BASE_QUOTE``) of the day's top gainer, or None."""
        ...
