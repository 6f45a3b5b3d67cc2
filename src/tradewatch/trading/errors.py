"""
Error taxonomy for the trading core.

Every public orchestrator operation either succeeds or raises one of these.
``TransientError`` subclasses are the kinds a monitor loop logs and survives;
everything else is surfaced to the caller as-is.
"""


class TradingError(Exception):
    """Base class for all trading errors."""


class ValidationError(TradingError):
    """Rejected input (bad symbol, non-positive amount, rebuy % out of range...)."""


class CredentialsMissing(TradingError):
    """The user has no (or incomplete) exchange credentials."""


class InsufficientBalance(TradingError):
    """Requested notional exceeds the locally known available balance."""

    def __init__(self, requested: float, available: float, currency: str = "USDT"):
        self.requested = requested
        self.available = available
        self.currency = currency
        super().__init__(
            f"Requested amount ({requested} {currency}) exceeds "
            f"available balance ({available} {currency})"
        )


class TransientError(TradingError):
    """External failure that may succeed on the next poll."""


class SymbolUnavailable(TransientError):
    """The price feed does not know the symbol or has no ticker for it."""


class InvalidPriceData(TransientError):
    """The price feed returned a missing, non-numeric or non-positive price."""


class NetworkError(TransientError):
    """Exchange unreachable, timed out or rate limited."""


class ExchangeRejected(TradingError):
    """The exchange refused the order or request."""


class InsufficientFunds(ExchangeRejected):
    """The exchange refused the order for lack of funds."""
