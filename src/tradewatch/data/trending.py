"""
Top-gainer lookup used by the rebuy watch fallback.

Picks the spot market with the highest 24h percentage change among pairs
quoted in the configured currency, ignoring thinly traded pairs and leveraged
tokens.
"""

from tradewatch.data.fetcher import ExchangeClient, Ticker
from tradewatch.utils import get_logger, quote_currency

logger = get_logger(__name__)

# Leveraged / index tokens whose moves say nothing about the underlying coin
EXCLUDED_SUFFIXES = ("3L", "3S", "5L", "5S", "UP", "DOWN", "BULL", "BEAR")


class CcxtTrendingProvider:
    """``TrendingSymbolProvider`` ranking tickers by 24h percentage change."""

    def __init__(
        self,
        client: ExchangeClient,
        quote: str = "USDT",
        min_quote_volume: float = 100_000.0,
    ):
        self.client = client
        self.quote = quote.upper()
        self.min_quote_volume = min_quote_volume

    def _eligible(self, ticker: Ticker) -> bool:
        if "_" not in ticker.symbol or quote_currency(ticker.symbol) != self.quote:
            return False
        base = ticker.symbol.split("_", 1)[0]
        if base.endswith(EXCLUDED_SUFFIXES):
            return False
        return ticker.last > 0 and ticker.quote_volume >= self.min_quote_volume

    def rank(self, tickers: list[Ticker]) -> list[Ticker]:
        """Eligible tickers, best 24h gainer first."""
        eligible = [t for t in tickers if self._eligible(t)]
        return sorted(eligible, key=lambda t: t.percentage, reverse=True)

    async def top_trending_today(self) -> str | None:
        ranked = self.rank(await self.client.fetch_tickers())
        if not ranked:
            logger.warning("no_trending_symbol", quote=self.quote)
            return None
        top = ranked[0]
        logger.info("trending_symbol_selected", symbol=top.symbol, change_pct=top.percentage)
        return top.symbol
