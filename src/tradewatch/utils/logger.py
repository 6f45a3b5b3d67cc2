"""
Structured logging for tradewatch.

Wraps structlog with console (pretty) or JSON rendering, an optional JSON file
sink, masking of credential fields, and task-local context so that concurrent
monitors for different users never leak each other's ``user_id``/``symbol``.

Example Usage:
    ```python
    from tradewatch.utils.logger import setup_logging, get_logger, add_context, LogConfig

    setup_logging(LogConfig(level="INFO", format="pretty"))
    logger = get_logger(__name__)

    logger.info("trade_started", symbol="BTC_USDT", notional=100.0)

    with add_context(user_id=1, symbol="BTC_USDT"):
        logger.info("poll")  # carries user_id and symbol
    ```
"""

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor

SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "api_secret",
        "apisecret",
        "api_memo",
        "secret",
        "memo",
        "uid",
        "password",
        "token",
        "credentials",
    }
)


@dataclass
class LogConfig:
    """Configuration for the logging system.

    Attributes:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format - "json" for production, "pretty" for development
        file_path: Optional path to log file. If None, only logs to console
        include_timestamp: Whether to include timestamps in logs
        console_output: Whether to output to console (default: True)
        max_string_length: Maximum length for string values before truncation
        environment: Environment name (dev, staging, prod)
        app_version: Application version string
    """

    level: str = "INFO"
    format: Literal["json", "pretty"] = "pretty"
    file_path: str | None = None
    include_timestamp: bool = True
    console_output: bool = True
    max_string_length: int = 1000
    environment: str = "dev"
    app_version: str = "0.1.0"


def add_app_info(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level information to log entries."""
    event_dict["app"] = "tradewatch"
    event_dict["environment"] = getattr(add_app_info, "environment", "unknown")
    event_dict["version"] = getattr(add_app_info, "version", "unknown")
    return event_dict


def filter_sensitive(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask API keys, secrets and memos anywhere in the event.

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Updated event dictionary with masked sensitive data
    """

    def mask_value(value: Any) -> Any:
        if isinstance(value, str):
            if len(value) <= 4:
                return "***"
            return f"{value[:2]}***{value[-2:]}"
        return "***"

    def recursive_mask(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: mask_value(value)
                if str(key).lower() in SENSITIVE_KEYS
                else recursive_mask(value)
                for key, value in data.items()
            }
        if isinstance(data, (list, tuple)):
            return type(data)(recursive_mask(item) for item in data)
        return data

    return recursive_mask(event_dict)  # type: ignore[return-value]


def truncate_strings(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate long string values to prevent log bloat."""
    max_length = getattr(truncate_strings, "max_length", 1000)

    def truncate_value(value: Any) -> Any:
        if isinstance(value, str) and len(value) > max_length:
            return f"{value[:max_length]}... [truncated]"
        if isinstance(value, dict):
            return {k: truncate_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(truncate_value(item) for item in value)
        return value

    return {key: truncate_value(value) for key, value in event_dict.items()}


def _base_processors(config: LogConfig) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_app_info,
        filter_sensitive,
        truncate_strings,
    ]
    if config.include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors.append(structlog.processors.StackInfoRenderer())
    processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging(config: LogConfig) -> None:
    """Setup the logging system with the given configuration.

    Args:
        config: LogConfig instance with logging configuration
    """
    add_app_info.environment = config.environment
    add_app_info.version = config.app_version
    truncate_strings.max_length = config.max_string_length

    level = getattr(logging, config.level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout if config.console_output else None,
        level=level,
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)

    processors = _base_processors(config)
    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if config.file_path:
        file_path = Path(config.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Receives the same rendered lines as the console.
        file_handler = logging.FileHandler(file_path)
        file_handler.setLevel(level)
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for the given name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)


@contextmanager
def add_context(**kwargs: Any):
    """Bind key-value pairs to every log entry made within the block.

    Context is stored in ``contextvars``, so each asyncio task sees only the
    context it bound itself.

    Example:
        ```python
        with add_context(user_id=7, symbol="ETH_USDT"):
            logger.info("order_placed", side="buy")
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def set_log_level(level: str) -> None:
    """Change the logging level at runtime."""
    logging.getLogger().setLevel(getattr(logging, level.upper()))


def clear_context() -> None:
    """Clear all contextual variables bound in the current context."""
    structlog.contextvars.clear_contextvars()
