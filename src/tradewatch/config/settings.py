"""
Configuration settings for tradewatch.

Uses pydantic-settings for environment variable management with nested models
for different configuration domains.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import constants


class ExchangeSettings(BaseSettings):
    """Exchange API configuration settings."""

    exchange_id: str = Field(default="bitmart", description="CCXT exchange identifier")
    api_key: SecretStr = Field(default=SecretStr(""), description="Exchange API key")
    api_secret: SecretStr = Field(default=SecretStr(""), description="Exchange API secret")
    api_memo: SecretStr = Field(
        default=SecretStr(""), description="Exchange API memo / uid (BitMart)"
    )
    testnet: bool = Field(default=False, description="Use sandbox environment")

    model_config = SettingsConfigDict(
        env_prefix="EXCHANGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class TradingSettings(BaseSettings):
    """Trading configuration settings.

    Threshold fields mirror ``TradingThresholds`` so every trigger and
    interval can be tuned from the environment.
    """

    quote_currency: str = Field(
        default=constants.DEFAULT_QUOTE_CURRENCY, description="Quote currency for balances"
    )
    paper_trading: bool = Field(default=True, description="Enable paper trading mode")
    initial_balance: float = Field(
        default=1000.0, description="Initial quote balance for paper trading"
    )

    stop_loss_pct: float = Field(default=constants.STOP_LOSS_PCT)
    take_profit_pct: float = Field(default=constants.TAKE_PROFIT_PCT)
    skyrocket_trigger_pct: float = Field(default=constants.SKYROCKET_TRIGGER_PCT)
    skyrocket_target_pct: float = Field(default=constants.SKYROCKET_TARGET_PCT)
    skyrocket_window_seconds: float = Field(default=constants.SKYROCKET_WINDOW_SECONDS)
    monitor_interval_seconds: float = Field(default=constants.MONITOR_INTERVAL_SECONDS)
    skyrocket_interval_seconds: float = Field(default=constants.SKYROCKET_INTERVAL_SECONDS)
    skyrocket_duration_seconds: float = Field(default=constants.SKYROCKET_DURATION_SECONDS)
    cooldown_seconds: float = Field(default=constants.COOLDOWN_SECONDS)
    rebuy_interval_seconds: float = Field(default=constants.REBUY_INTERVAL_SECONDS)
    reference_reset_seconds: float = Field(default=constants.REFERENCE_RESET_SECONDS)
    rebuy_watch_timeout_seconds: float = Field(
        default=constants.REBUY_WATCH_TIMEOUT_SECONDS
    )
    rebuy_rise_pct: float = Field(default=constants.REBUY_RISE_PCT)
    rebuy_dip_pct: float = Field(default=constants.REBUY_DIP_PCT)
    min_position_value: float = Field(default=constants.MIN_POSITION_VALUE)
    failure_warning_threshold: int = Field(default=constants.FAILURE_WARNING_THRESHOLD)

    @field_validator("quote_currency")
    @classmethod
    def _upper_quote(cls, v: str) -> str:
        return v.strip().upper()

    model_config = SettingsConfigDict(
        env_prefix="TRADING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "pretty"] = Field(
        default="pretty", description="Console output format"
    )
    file_path: Optional[str] = Field(
        default=None, description="Optional log file path"
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class MetricsSettings(BaseSettings):
    """Prometheus metrics endpoint settings."""

    enabled: bool = Field(default=False, description="Serve metrics over HTTP")
    port: int = Field(default=8000, description="Metrics HTTP port")

    model_config = SettingsConfigDict(
        env_prefix="METRICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """
    Main settings class combining all configuration domains.

    Loads configuration from environment variables and .env file.
    """

    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)
    trading: TradingSettings = Field(default_factory=TradingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance (singleton pattern).

    Returns:
        Singleton Settings instance
    """
    return Settings()
