"""Symbol format helpers.

Users and the orchestrator speak ``BASE_QUOTE`` (``BTC_USDT``); ccxt speaks
``BASE/QUOTE``.
"""

import re

_SYMBOL_RE = re.compile(r"^[A-Z0-9]+_[A-Z0-9]+$")


def normalize_symbol(symbol: str) -> str:
    """Upper-case and convert ``btc/usdt`` or ``btc_usdt`` to ``BTC_USDT``."""
    return symbol.strip().replace("/", "_").upper()


def is_valid_symbol(symbol: str) -> bool:
    return bool(_SYMBOL_RE.match(symbol))


def to_ccxt_symbol(symbol: str) -> str:
    return normalize_symbol(symbol).replace("_", "/", 1)


def from_ccxt_symbol(symbol: str) -> str:
    # ccxt may append a settle currency (``BTC/USDT:USDT``) for derivatives
    return normalize_symbol(symbol.split(":", 1)[0])


def base_currency(symbol: str) -> str:
    return normalize_symbol(symbol).split("_", 1)[0]


def quote_currency(symbol: str) -> str:
    return normalize_symbol(symbol).split("_", 1)[1]
