"""
Price Data Fetcher Module for tradewatch.

Async ccxt wrapper for spot market data plus the ``PriceFeed`` implementation
the trading core polls.

Example Usage:
    ```python
    from tradewatch.data.fetcher import ExchangeClient, CcxtPriceFeed

    async with ExchangeClient("bitmart") as client:
        ticker = await client.fetch_ticker("BTC_USDT")
        feed = CcxtPriceFeed(client)
        price = await feed.get_last_price("BTC_USDT")
    ```
"""

import asyncio
from dataclasses import asdict, dataclass
import math
from typing import Optional

import ccxt.async_support as ccxt
from ccxt.base.errors import (
    AuthenticationError,
    BadSymbol,
    ExchangeError,
    ExchangeNotAvailable,
    NetworkError as CcxtNetworkError,
)

from tradewatch.trading.errors import (
    CredentialsMissing,
    ExchangeRejected,
    InvalidPriceData,
    NetworkError,
    SymbolUnavailable,
)
from tradewatch.utils import from_ccxt_symbol, get_logger, to_ccxt_symbol

logger = get_logger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class Ticker:
    """
    Ticker information for a trading pair.

    Attributes:
        symbol: Trading pair symbol (e.g., "BTC_USDT")
        last: Last traded price
        bid: Best bid price
        ask: Best ask price
        percentage: 24-hour change in percent
        quote_volume: 24-hour volume in quote currency
        timestamp: Unix timestamp in milliseconds
    """
    symbol: str
    last: float
    bid: float
    ask: float
    percentage: float
    quote_volume: float
    timestamp: int

    @classmethod
    def from_ccxt(cls, symbol: str, data: dict) -> "Ticker":
        """
        Create Ticker from CCXT dictionary format.

        Missing numeric fields become 0.0 (NaN for ``last`` so callers can
        tell "no trade" from a zero price).
        """
        def num(key: str, default: float = 0.0) -> float:
            value = data.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except (TypeError, ValueError):
                return default

        return cls(
            symbol=from_ccxt_symbol(symbol),
            last=num("last", math.nan),
            bid=num("bid"),
            ask=num("ask"),
            percentage=num("percentage"),
            quote_volume=num("quoteVolume"),
            timestamp=int(data.get("timestamp") or 0),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return asdict(self)


# =============================================================================
# Exchange Client
# =============================================================================


class ExchangeClient:
    """
    Async ccxt spot exchange wrapper.

    Public market data needs no credentials. Order placement builds one of
    these per call from the user's keys (see ``LiveOrderExecutor``).

    Example:
        ```python
        async with ExchangeClient("bitmart", api_key, api_secret, api_memo) as client:
            ticker = await client.fetch_ticker("BTC_USDT")
        ```
    """

    def __init__(
        self,
        exchange_id: str,
        api_key: str = "",
        api_secret: str = "",
        api_memo: str = "",
        testnet: bool = False,
        max_concurrent_requests: int = 10,
    ):
        """
        Initialize exchange client.

        Args:
            exchange_id: Exchange identifier (e.g., "bitmart", "binance")
            api_key: API key for authentication
            api_secret: API secret for authentication
            api_memo: API memo / uid (BitMart)
            testnet: Whether to use the sandbox environment
            max_concurrent_requests: Concurrent request cap for this client
        """
        self.exchange_id = exchange_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_memo = api_memo
        self.testnet = testnet
        self.exchange: Optional[ccxt.Exchange] = None
        self._connected = False
        self._rate_limiter = asyncio.Semaphore(max_concurrent_requests)

        logger.debug("exchange_client_initialized", exchange=exchange_id, testnet=testnet)

    async def __aenter__(self) -> "ExchangeClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Create the ccxt exchange instance and load markets.

        Raises:
            ValueError: Unknown exchange id
            CredentialsMissing: Exchange rejected the API keys
            NetworkError: Exchange unreachable while loading markets
            ExchangeRejected: Any other exchange-side failure
        """
        if self._connected:
            logger.warning("exchange_already_connected", exchange=self.exchange_id)
            return

        exchange_class = getattr(ccxt, self.exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"Unknown exchange: {self.exchange_id}")

        config = {
            "enableRateLimit": True,
            "options": {"defaultType": "spot"},
        }
        if self.api_key:
            config["apiKey"] = self.api_key
            config["secret"] = self.api_secret
        if self.api_memo:
            config["uid"] = self.api_memo

        self.exchange = exchange_class(config)
        if self.testnet:
            self.exchange.set_sandbox_mode(True)

        try:
            await self.exchange.load_markets()
        except AuthenticationError as e:
            await self.exchange.close()
            raise CredentialsMissing(f"Exchange rejected credentials: {e}") from e
        except (CcxtNetworkError, ExchangeNotAvailable) as e:
            await self.exchange.close()
            logger.error("exchange_connection_failed", exchange=self.exchange_id, error=str(e))
            raise NetworkError(str(e)) from e
        except ExchangeError as e:
            await self.exchange.close()
            logger.error("exchange_connection_failed", exchange=self.exchange_id, error=str(e))
            raise ExchangeRejected(str(e)) from e

        self._connected = True
        logger.info(
            "exchange_connected",
            exchange=self.exchange_id,
            testnet=self.testnet,
            markets_loaded=len(self.exchange.markets),
        )

    async def close(self) -> None:
        """
        Close exchange connection and cleanup resources.
        """
        if self.exchange and self._connected:
            await self.exchange.close()
            self._connected = False
            logger.debug("exchange_closed", exchange=self.exchange_id)

    def _require_connection(self) -> ccxt.Exchange:
        if not self._connected or not self.exchange:
            raise ValueError("Exchange not connected. Call connect() first.")
        return self.exchange

    async def fetch_ticker(self, symbol: str) -> Ticker:
        """
        Fetch current ticker information.

        Args:
            symbol: Trading pair symbol (``BTC_USDT`` or ``BTC/USDT``)

        Returns:
            Ticker instance with current market data

        Raises:
            SymbolUnavailable: Market unknown to, or ticker refused by, the exchange
            NetworkError: Request failed in transit
        """
        exchange = self._require_connection()
        ccxt_symbol = to_ccxt_symbol(symbol)
        if exchange.markets and ccxt_symbol not in exchange.markets:
            raise SymbolUnavailable(f"No market for symbol: {symbol}")

        try:
            async with self._rate_limiter:
                data = await exchange.fetch_ticker(ccxt_symbol)
        except BadSymbol as e:
            raise SymbolUnavailable(f"No ticker data available for symbol: {symbol}") from e
        except (CcxtNetworkError, ExchangeNotAvailable) as e:
            logger.warning("ticker_fetch_failed", exchange=self.exchange_id, symbol=symbol, error=str(e))
            raise NetworkError(str(e)) from e
        except ExchangeError as e:
            logger.warning("ticker_fetch_failed", exchange=self.exchange_id, symbol=symbol, error=str(e))
            raise SymbolUnavailable(f"Exchange refused ticker for {symbol}: {e}") from e

        ticker = Ticker.from_ccxt(ccxt_symbol, data)
        logger.debug("ticker_fetched", exchange=self.exchange_id, symbol=ticker.symbol, last=ticker.last)
        return ticker

    async def fetch_tickers(self) -> list[Ticker]:
        """Fetch tickers for every spot market of the exchange."""
        exchange = self._require_connection()
        try:
            async with self._rate_limiter:
                data = await exchange.fetch_tickers()
        except (CcxtNetworkError, ExchangeNotAvailable) as e:
            logger.warning("tickers_fetch_failed", exchange=self.exchange_id, error=str(e))
            raise NetworkError(str(e)) from e
        except ExchangeError as e:
            logger.warning("tickers_fetch_failed", exchange=self.exchange_id, error=str(e))
            raise ExchangeRejected(str(e)) from e
        return [Ticker.from_ccxt(symbol, raw) for symbol, raw in data.items()]

    async def fetch_free_balance(self, currency: str) -> float:
        """Free (available) balance of ``currency``. Requires credentials."""
        exchange = self._require_connection()
        try:
            async with self._rate_limiter:
                balance = await exchange.fetch_balance()
        except AuthenticationError as e:
            raise CredentialsMissing(f"Exchange rejected credentials: {e}") from e
        except (CcxtNetworkError, ExchangeNotAvailable) as e:
            raise NetworkError(str(e)) from e
        except ExchangeError as e:
            raise ExchangeRejected(str(e)) from e
        return float((balance.get(currency.upper()) or {}).get("free") or 0.0)


# =============================================================================
# Price Feed
# =============================================================================


class CcxtPriceFeed:
    """
    ``PriceFeed`` over a connected public ``ExchangeClient``.

    Raises ``InvalidPriceData`` for missing, non-numeric or non-positive
    prices and ``SymbolUnavailable`` for unknown markets.
    """

    def __init__(self, client: ExchangeClient):
        self.client = client

    async def get_last_price(self, symbol: str) -> float:
        ticker = await self.client.fetch_ticker(symbol)
        price = ticker.last
        if not math.isfinite(price) or price <= 0:
            logger.error("invalid_last_price", symbol=symbol, last=price)
            raise InvalidPriceData(f"Invalid last price value for symbol: {symbol}")
        return price
