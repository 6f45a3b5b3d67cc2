"""
Trading module for tradewatch.

Provides the per-(user, symbol) monitor / sell / rebuy core: decision engine,
state store, monitor scheduler and the orchestrator composing them.

Order executors (``tradewatch.trading.executor``) and credential / balance
providers (``tradewatch.trading.providers``) depend on the ccxt data layer and
are imported from their modules directly.
"""

from .decision_engine import (
    DecisionEngine,
    MonitorDecision,
    RebuyAction,
    SellAction,
    TradingThresholds,
    create_decision_engine,
)
from .errors import (
    CredentialsMissing,
    ExchangeRejected,
    InsufficientBalance,
    InsufficientFunds,
    InvalidPriceData,
    NetworkError,
    SymbolUnavailable,
    TradingError,
    TransientError,
    ValidationError,
)
from .interfaces import (
    BalanceProvider,
    CredentialProvider,
    ExchangeCredentials,
    OrderExecutor,
    PriceFeed,
    TrendingSymbolProvider,
)
from .orchestrator import SellResult, TradeOrchestrator, TradeResult
from .scheduler import MonitorScheduler
from .state_store import (
    ClosedPosition,
    Position,
    StatusSnapshot,
    SymbolPhase,
    TradeStateStore,
    UserTradeState,
)

__all__ = [
    # Decision Engine
    "DecisionEngine",
    "TradingThresholds",
    "SellAction",
    "RebuyAction",
    "MonitorDecision",
    "create_decision_engine",
    # Errors
    "TradingError",
    "ValidationError",
    "CredentialsMissing",
    "InsufficientBalance",
    "InsufficientFunds",
    "TransientError",
    "SymbolUnavailable",
    "InvalidPriceData",
    "NetworkError",
    "ExchangeRejected",
    # Interfaces
    "ExchangeCredentials",
    "PriceFeed",
    "OrderExecutor",
    "CredentialProvider",
    "BalanceProvider",
    "TrendingSymbolProvider",
    # State / scheduling
    "Position",
    "UserTradeState",
    "ClosedPosition",
    "StatusSnapshot",
    "SymbolPhase",
    "TradeStateStore",
    "MonitorScheduler",
    # Orchestration
    "TradeOrchestrator",
    "TradeResult",
    "SellResult",
]
