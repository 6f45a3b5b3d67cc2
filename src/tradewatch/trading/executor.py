"""
Order Execution Module for tradewatch.

Spot market orders for the trading core, in two flavours:

- ``PaperOrderExecutor``: simulated fills against the public ticker with fees
  and slippage, tracking a quote balance per user. Its wallets back
  ``PaperBalanceProvider``.
- ``LiveOrderExecutor``: real orders through ccxt. A short-lived exchange
  client is built from the caller's credentials for every order; no
  user-scoped client outlives a call.

Market buys are sized in quote currency (notional), market sells in base
quantity. Neither executor retries: a failed order raises one of the
``tradewatch.trading.errors`` kinds and the caller decides what to do.

Example Usage:
    ```python
    from tradewatch.trading.executor import PaperOrderExecutor

    executor = PaperOrderExecutor(price_feed, initial_balance=1000.0)
    qty = await executor.market_buy(credentials, "BTC_USDT", 100.0)
    await executor.market_sell(credentials, "BTC_USDT", qty)
    ```
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
import uuid

from ccxt.base.errors import (
    AuthenticationError,
    ExchangeError,
    InsufficientFunds as CcxtInsufficientFunds,
    InvalidOrder,
    NetworkError as CcxtNetworkError,
)

from tradewatch.data.fetcher import ExchangeClient
from tradewatch.trading.errors import (
    CredentialsMissing,
    ExchangeRejected,
    InsufficientFunds,
    NetworkError,
    ValidationError,
)
from tradewatch.trading.interfaces import ExchangeCredentials, PriceFeed
from tradewatch.utils import base_currency, get_logger, quote_currency, to_ccxt_symbol

logger = get_logger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class Order:
    """
    Order representation with status tracking.

    Attributes:
        id: Unique order identifier
        symbol: Trading pair symbol (e.g., "BTC_USDT")
        side: Order side (buy/sell)
        amount: Quote notional for buys, base quantity for sells
        status: Current order status
        filled_price: Actual execution price (optional)
        filled_amount: Base quantity filled (optional)
        fee: Trading fee paid in quote currency (optional)
        timestamp: Order creation timestamp
        exchange_order_id: Exchange-specific order ID (optional)
        error_message: Error message if order failed (optional)
    """

    id: str
    symbol: str
    side: Literal["buy", "sell"]
    amount: float
    status: Literal["pending", "filled", "failed"] = "pending"
    filled_price: float | None = None
    filled_amount: float | None = None
    fee: float | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    exchange_order_id: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        """Convert order to dictionary representation."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def _validate_amount(side: str, amount: float) -> None:
    if not isinstance(amount, (int, float)) or amount <= 0:
        raise ValidationError(f"Invalid amount provided for {side} order: {amount}")


# =============================================================================
# Paper Trading Implementation
# =============================================================================


class PaperOrderExecutor:
    """
    Simulated spot execution for paper trading and tests.

    Each user gets ``initial_balance`` of the quote currency on first use.
    Fills happen at the feed price adjusted by ``slippage`` and charged
    ``taker_fee``.
    """

    def __init__(
        self,
        price_feed: PriceFeed,
        initial_balance: float = 1000.0,
        taker_fee: float = 0.001,
        slippage: float = 0.0005,
        quote: str = "USDT",
    ):
        """
        Initialize paper executor.

        Args:
            price_feed: Source of fill prices
            initial_balance: Starting quote balance per user
            taker_fee: Fee rate charged on every fill (default: 0.1%)
            slippage: Price adjustment against the trader (default: 0.05%)
            quote: Currency seeded with ``initial_balance``
        """
        self.price_feed = price_feed
        self.initial_balance = initial_balance
        self.taker_fee = taker_fee
        self.slippage = slippage
        self.quote = quote.upper()
        self._wallets: dict[str, dict[str, float]] = {}
        self.order_history: list[Order] = []

        logger.info(
            "paper_executor_initialized",
            initial_balance=initial_balance,
            taker_fee=taker_fee,
        )

    def _wallet(self, credentials: ExchangeCredentials) -> dict[str, float]:
        return self._wallets.setdefault(credentials.api_key, {})

    def _quote_balance(self, wallet: dict[str, float], currency: str) -> float:
        if currency not in wallet:
            wallet[currency] = self.initial_balance
        return wallet[currency]

    def get_balance(self, credentials: ExchangeCredentials, currency: str) -> float:
        """Free balance of ``currency`` in the wallet behind ``credentials``."""
        wallet = self._wallet(credentials)
        currency = currency.upper()
        if currency == self.quote:
            return self._quote_balance(wallet, currency)
        return wallet.get(currency, 0.0)

    async def market_buy(
        self, credentials: ExchangeCredentials, symbol: str, notional: float
    ) -> float:
        _validate_amount("buy", notional)
        order = Order(id=str(uuid.uuid4()), symbol=symbol, side="buy", amount=notional)
        wallet = self._wallet(credentials)
        quote = quote_currency(symbol)
        balance = self._quote_balance(wallet, quote)

        if notional > balance:
            order.status = "failed"
            order.error_message = "Insufficient balance"
            self.order_history.append(order)
            logger.warning(
                "paper_order_failed_insufficient_balance",
                order_id=order.id,
                required=notional,
                available=balance,
            )
            raise InsufficientFunds(f"Paper balance {balance} {quote} below {notional}")

        price = await self.price_feed.get_last_price(symbol)
        exec_price = price * (1 + self.slippage)
        fee = notional * self.taker_fee
        quantity = (notional - fee) / exec_price

        wallet[quote] = balance - notional
        base = base_currency(symbol)
        wallet[base] = wallet.get(base, 0.0) + quantity

        order.status = "filled"
        order.filled_price = exec_price
        order.filled_amount = quantity
        order.fee = fee
        self.order_history.append(order)

        logger.info(
            "paper_order_filled",
            order_id=order.id,
            symbol=symbol,
            side="buy",
            filled_price=exec_price,
            filled_amount=quantity,
            fee=fee,
        )
        return quantity

    async def market_sell(
        self, credentials: ExchangeCredentials, symbol: str, quantity: float
    ) -> None:
        _validate_amount("sell", quantity)
        order = Order(id=str(uuid.uuid4()), symbol=symbol, side="sell", amount=quantity)
        wallet = self._wallet(credentials)
        base = base_currency(symbol)
        held = wallet.get(base, 0.0)

        # Recorded quantities are notional / price and ignore fees; sell what is there.
        to_sell = min(quantity, held)
        if to_sell <= 0:
            order.status = "failed"
            order.error_message = f"No {base} available"
            self.order_history.append(order)
            raise InsufficientFunds(f"No {base} available to sell")

        price = await self.price_feed.get_last_price(symbol)
        exec_price = price * (1 - self.slippage)
        proceeds = to_sell * exec_price
        fee = proceeds * self.taker_fee

        quote = quote_currency(symbol)
        wallet[base] = held - to_sell
        wallet[quote] = self._quote_balance(wallet, quote) + proceeds - fee

        order.status = "filled"
        order.filled_price = exec_price
        order.filled_amount = to_sell
        order.fee = fee
        self.order_history.append(order)

        logger.info(
            "paper_order_filled",
            order_id=order.id,
            symbol=symbol,
            side="sell",
            filled_price=exec_price,
            filled_amount=to_sell,
            fee=fee,
        )


# =============================================================================
# Live Order Execution
# =============================================================================


ClientFactory = Callable[[ExchangeCredentials], ExchangeClient]


class LiveOrderExecutor:
    """
    Real spot market orders via ccxt.

    Example:
        ```python
        executor = LiveOrderExecutor(exchange_id="bitmart")
        qty = await executor.market_buy(credentials, "BTC_USDT", 50.0)
        ```
    """

    def __init__(
        self,
        exchange_id: str = "bitmart",
        testnet: bool = False,
        client_factory: ClientFactory | None = None,
    ):
        """
        Initialize live executor.

        Args:
            exchange_id: ccxt exchange identifier
            testnet: Use the exchange sandbox
            client_factory: Override for building per-call clients (tests)
        """
        self.exchange_id = exchange_id
        self.testnet = testnet
        self._client_factory = client_factory or self._default_client

        logger.info("live_executor_initialized", exchange=exchange_id, testnet=testnet)

    def _default_client(self, credentials: ExchangeCredentials) -> ExchangeClient:
        return ExchangeClient(
            exchange_id=self.exchange_id,
            api_key=credentials.api_key,
            api_secret=credentials.api_secret,
            api_memo=credentials.api_memo,
            testnet=self.testnet,
        )

    async def market_buy(
        self, credentials: ExchangeCredentials, symbol: str, notional: float
    ) -> float:
        _validate_amount("buy", notional)
        order = Order(id=str(uuid.uuid4()), symbol=symbol, side="buy", amount=notional)
        logger.info("placing_market_order", order_id=order.id, symbol=symbol, side="buy", notional=notional)

        async with self._client_factory(credentials) as client:
            result = await self._submit(
                order,
                client.exchange.create_market_buy_order_with_cost,
                to_ccxt_symbol(symbol),
                notional,
            )
        return float(result.get("filled") or 0.0)

    async def market_sell(
        self, credentials: ExchangeCredentials, symbol: str, quantity: float
    ) -> None:
        _validate_amount("sell", quantity)
        order = Order(id=str(uuid.uuid4()), symbol=symbol, side="sell", amount=quantity)
        logger.info("placing_market_order", order_id=order.id, symbol=symbol, side="sell", quantity=quantity)

        async with self._client_factory(credentials) as client:
            ccxt_symbol = to_ccxt_symbol(symbol)
            amount = quantity
            market = client.exchange.markets.get(ccxt_symbol) if client.exchange.markets else None
            if market:
                amount = float(client.exchange.amount_to_precision(ccxt_symbol, quantity))
                min_amount = (market.get("limits", {}).get("amount", {}) or {}).get("min")
                if min_amount and amount < min_amount:
                    raise ExchangeRejected(
                        f"Sell amount {amount} below exchange minimum {min_amount} for {symbol}"
                    )
            await self._submit(order, client.exchange.create_market_sell_order, ccxt_symbol, amount)

    async def _submit(self, order: Order, create: Callable, *args: Any) -> dict:
        """Place one order and translate ccxt failures into trading errors."""
        try:
            result = await create(*args)
        except CcxtInsufficientFunds as e:
            self._fail(order, e)
            raise InsufficientFunds(str(e)) from e
        except AuthenticationError as e:
            self._fail(order, e)
            raise CredentialsMissing(f"Exchange rejected credentials: {e}") from e
        except CcxtNetworkError as e:
            self._fail(order, e)
            raise NetworkError(str(e)) from e
        except (InvalidOrder, ExchangeError) as e:
            self._fail(order, e)
            raise ExchangeRejected(str(e)) from e

        if not isinstance(result, dict):
            self._fail(order, "Invalid order response received from exchange")
            raise ExchangeRejected("Invalid order response received from exchange")

        order.exchange_order_id = result.get("id")
        order.status = "filled"
        order.filled_price = float(result["average"]) if result.get("average") else None
        order.filled_amount = float(result.get("filled") or 0.0)
        fee = result.get("fee") or {}
        order.fee = float(fee.get("cost") or 0.0)

        logger.info(
            "order_executed",
            order_id=order.id,
            exchange_order_id=order.exchange_order_id,
            symbol=order.symbol,
            side=order.side,
            filled_price=order.filled_price,
            filled_amount=order.filled_amount,
        )
        return result

    @staticmethod
    def _fail(order: Order, error: Exception | str) -> None:
        order.status = "failed"
        order.error_message = str(error)
        logger.error(
            "order_execution_failed",
            order_id=order.id,
            symbol=order.symbol,
            side=order.side,
            error=str(error),
        )
