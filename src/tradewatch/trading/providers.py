"""
Credential and balance collaborators.

In-memory implementations for the paper runner and tests, plus a ccxt-backed
balance lookup that builds a short-lived client from the user's credentials.
"""

from collections.abc import Mapping

from tradewatch.data.fetcher import ExchangeClient
from tradewatch.trading.errors import CredentialsMissing
from tradewatch.trading.executor import PaperOrderExecutor
from tradewatch.trading.interfaces import CredentialProvider, ExchangeCredentials
from tradewatch.utils import get_logger

logger = get_logger(__name__)


class StaticCredentialProvider:
    """Credentials held in memory, keyed by user id."""

    def __init__(self, credentials: Mapping[int, ExchangeCredentials] | None = None):
        self._credentials: dict[int, ExchangeCredentials] = dict(credentials or {})

    def set_credentials(self, user_id: int, credentials: ExchangeCredentials) -> None:
        self._credentials[user_id] = credentials

    def remove_credentials(self, user_id: int) -> None:
        self._credentials.pop(user_id, None)

    async def get_credentials(self, user_id: int) -> ExchangeCredentials:
        credentials = self._credentials.get(user_id)
        if credentials is None or not credentials.is_complete():
            logger.warning("credentials_missing", user_id=user_id)
            raise CredentialsMissing(f"API keys not found for user {user_id}")
        return credentials


class PaperBalanceProvider:
    """Reads balances from the wallets of a ``PaperOrderExecutor``."""

    def __init__(self, executor: PaperOrderExecutor, credentials: CredentialProvider):
        self.executor = executor
        self.credentials = credentials

    async def get_available_balance(self, user_id: int, currency: str) -> float:
        creds = await self.credentials.get_credentials(user_id)
        return self.executor.get_balance(creds, currency)


class ExchangeBalanceProvider:
    """
    Free balance straight from the exchange.

    A client is built and closed for every lookup; no user-scoped connection
    is kept around.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        exchange_id: str = "bitmart",
        testnet: bool = False,
    ):
        self.credentials = credentials
        self.exchange_id = exchange_id
        self.testnet = testnet

    async def get_available_balance(self, user_id: int, currency: str) -> float:
        creds = await self.credentials.get_credentials(user_id)
        async with ExchangeClient(
            exchange_id=self.exchange_id,
            api_key=creds.api_key,
            api_secret=creds.api_secret,
            api_memo=creds.api_memo,
            testnet=self.testnet,
        ) as client:
            balance = await client.fetch_free_balance(currency)
        logger.debug("balance_fetched", user_id=user_id, currency=currency, balance=balance)
        return balance
