"""
Unit tests for configuration settings.
"""

from pydantic import ValidationError
import pytest

from tradewatch.config import Settings, get_settings
from tradewatch.config import constants
from tradewatch.config.settings import ExchangeSettings, LoggingSettings, TradingSettings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.unit
class TestTradingSettings:
    def test_defaults_match_constants(self):
        settings = TradingSettings()

        assert settings.stop_loss_pct == constants.STOP_LOSS_PCT
        assert settings.cooldown_seconds == constants.COOLDOWN_SECONDS
        assert settings.quote_currency == "USDT"
        assert settings.paper_trading is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TRADING_STOP_LOSS_PCT", "0.01")
        monkeypatch.setenv("TRADING_PAPER_TRADING", "false")

        settings = TradingSettings()

        assert settings.stop_loss_pct == 0.01
        assert settings.paper_trading is False

    def test_quote_currency_is_upper_cased(self):
        assert TradingSettings(quote_currency=" usdc ").quote_currency == "USDC"


@pytest.mark.unit
class TestExchangeSettings:
    def test_secrets_are_hidden(self, monkeypatch):
        monkeypatch.setenv("EXCHANGE_API_KEY", "my-key")

        settings = ExchangeSettings()

        assert settings.api_key.get_secret_value() == "my-key"
        assert "my-key" not in repr(settings)
        assert settings.exchange_id == "bitmart"


@pytest.mark.unit
class TestLoggingSettings:
    def test_format_must_be_known(self):
        with pytest.raises(ValidationError):
            LoggingSettings(format="xml")

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")

        assert LoggingSettings().format == "json"


@pytest.mark.unit
class TestGetSettings:
    def test_nested_sections(self, monkeypatch):
        monkeypatch.setenv("TRADING_MONITOR_INTERVAL_SECONDS", "2.5")

        settings = Settings()

        assert settings.trading.monitor_interval_seconds == 2.5
        assert settings.logging.level == "INFO"

    def test_is_cached(self):
        assert get_settings() is get_settings()

    def test_cache_clear_reloads(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        get_settings.cache_clear()

        second = get_settings()

        assert second is not first
        assert second.logging.level == "DEBUG"
