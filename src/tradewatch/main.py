"""
tradewatch - spot trade monitor

Main entry point. Starts one user's trade on one symbol and keeps its monitor,
skyrocket watch and rebuy watch running until interrupted.

Paper mode (default, ``TRADING_PAPER_TRADING=true``) simulates fills against
the exchange's public ticker; live mode places real orders with the
``EXCHANGE_*`` credentials.

    python -m tradewatch.main --symbol BTC_USDT --amount 100 --rebuy-pct 20 --profit-target 20
"""

import argparse
import asyncio
import signal
import sys
from typing import NoReturn

from tradewatch.config import Settings, get_settings
from tradewatch.data import CcxtPriceFeed, CcxtTrendingProvider, ExchangeClient
from tradewatch.monitoring import get_metrics_manager
from tradewatch.trading import ExchangeCredentials, TradeOrchestrator, TradingError, TradingThresholds
from tradewatch.trading.executor import LiveOrderExecutor, PaperOrderExecutor
from tradewatch.trading.providers import (
    ExchangeBalanceProvider,
    PaperBalanceProvider,
    StaticCredentialProvider,
)
from tradewatch.utils import LogConfig, get_logger, setup_logging

STATUS_LOG_INTERVAL_SECONDS = 60

# Global shutdown flag
shutdown_event = asyncio.Event()


def setup_signal_handlers() -> None:
    """Setup graceful shutdown handlers for SIGINT and SIGTERM."""

    def signal_handler(signum: int, frame: object) -> None:
        logger = get_logger(__name__)
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tradewatch",
        description="Buy a spot position and monitor it for sell / rebuy decisions.",
    )
    parser.add_argument("--symbol", required=True, help="Pair in BASE_QUOTE form, e.g. BTC_USDT")
    parser.add_argument("--amount", type=float, required=True, help="Quote amount to spend")
    parser.add_argument(
        "--rebuy-pct",
        type=float,
        default=100.0,
        help="Percent of balance redeployed on rebuy (default: 100)",
    )
    parser.add_argument(
        "--profit-target", type=float, required=True, help="Realised profit goal for the day"
    )
    parser.add_argument("--user-id", type=int, default=1, help="User id (default: 1)")
    return parser.parse_args(argv)


def build_orchestrator(settings: Settings, client: ExchangeClient, user_id: int) -> TradeOrchestrator:
    """
    Wire the orchestrator for paper or live trading.

    Args:
        settings: Application settings
        client: Connected public exchange client
        user_id: The single user this process trades for
    """
    logger = get_logger(__name__)
    exchange = settings.exchange
    trading = settings.trading

    price_feed = CcxtPriceFeed(client)
    credentials = StaticCredentialProvider()

    if trading.paper_trading:
        credentials.set_credentials(
            user_id, ExchangeCredentials(api_key=f"paper-{user_id}", api_secret="paper")
        )
        executor = PaperOrderExecutor(
            price_feed,
            initial_balance=trading.initial_balance,
            quote=trading.quote_currency,
        )
        balances = PaperBalanceProvider(executor, credentials)
    else:
        credentials.set_credentials(
            user_id,
            ExchangeCredentials(
                api_key=exchange.api_key.get_secret_value(),
                api_secret=exchange.api_secret.get_secret_value(),
                api_memo=exchange.api_memo.get_secret_value(),
            ),
        )
        executor = LiveOrderExecutor(exchange_id=exchange.exchange_id, testnet=exchange.testnet)
        balances = ExchangeBalanceProvider(
            credentials, exchange_id=exchange.exchange_id, testnet=exchange.testnet
        )

    logger.info("orchestrator_configured", paper_mode=trading.paper_trading)
    return TradeOrchestrator(
        price_feed=price_feed,
        executor=executor,
        credentials=credentials,
        balances=balances,
        trending=CcxtTrendingProvider(client, quote=trading.quote_currency),
        thresholds=TradingThresholds.from_settings(trading),
        quote=trading.quote_currency,
    )


async def run(args: argparse.Namespace) -> int:
    """
    Start the trade and block until shutdown.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    settings = get_settings()
    logger = get_logger(__name__)

    client = ExchangeClient(exchange_id=settings.exchange.exchange_id, testnet=settings.exchange.testnet)
    orchestrator: TradeOrchestrator | None = None
    try:
        await client.connect()
        if settings.metrics.enabled:
            metrics = get_metrics_manager(settings.metrics.port)
            metrics.start_server(mode="paper" if settings.trading.paper_trading else "live")
            logger.info("metrics_server_started", port=settings.metrics.port)
        orchestrator = build_orchestrator(settings, client, args.user_id)

        result = await orchestrator.start_trade(
            args.user_id, args.symbol, args.amount, args.rebuy_pct, args.profit_target
        )
        logger.info("initial_buy", **result.to_dict())

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=STATUS_LOG_INTERVAL_SECONDS)
            except TimeoutError:
                status = await orchestrator.get_status(args.user_id)
                get_metrics_manager().update_uptime()
                logger.info("status", **status.to_dict())
        return 0

    except TradingError as e:
        logger.error("trade_rejected", error=str(e), error_type=type(e).__name__)
        return 2
    except Exception as e:
        logger.critical("fatal_error", error=str(e), exc_info=True)
        return 1
    finally:
        if orchestrator is not None:
            await orchestrator.shutdown()
        await client.close()
        logger.info("tradewatch_stopped")


async def async_main(args: argparse.Namespace) -> int:
    settings = get_settings()

    setup_logging(
        LogConfig(
            level=settings.logging.level,
            format=settings.logging.format,
            file_path=settings.logging.file_path,
        )
    )
    logger = get_logger(__name__)
    logger.info(
        "tradewatch_starting",
        version="0.1.0",
        exchange=settings.exchange.exchange_id,
        paper_mode=settings.trading.paper_trading,
        symbol=args.symbol,
    )

    setup_signal_handlers()
    return await run(args)


def main() -> NoReturn:
    """
    Main entry point.

    This function is called when running via the ``tradewatch`` console script.
    """
    args = parse_args()
    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
