"""Tests for settings and logging configuration."""

import logging

import pytest
from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter

from scribe_crm.core.config import Settings
from scribe_crm.core.logging import configure_logging


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.GEMINI_MODEL == "gemini-2.5-flash-lite"
        assert settings.SALESFORCE_API_VERSION == "v59.0"
        assert settings.TOKEN_REFRESH_WINDOW_SECONDS == 300
        assert settings.TOKEN_SWEEP_WINDOW_SECONDS == 600
        assert settings.AI_RATE_LIMIT_DEFAULT_DELAY_SECONDS == 35
        assert settings.AI_RATE_LIMIT_MAX_DELAY_SECONDS == 60

    def test_url_trailing_slash_stripped(self) -> None:
        settings = Settings(_env_file=None, HUBSPOT_API_BASE_URL="https://api.hubapi.com/")
        assert settings.HUBSPOT_API_BASE_URL == "https://api.hubapi.com"

    def test_non_http_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, SALESFORCE_LOGIN_URL="login.salesforce.com")

    def test_configured_flags(self, settings: Settings) -> None:
        assert settings.gemini_configured is True
        assert settings.hubspot_configured is True
        assert settings.salesforce_configured is True

        bare = Settings(_env_file=None, HUBSPOT_CLIENT_ID="id-only")
        assert bare.hubspot_configured is False

    def test_validate_startup_lists_missing_secrets(self) -> None:
        settings = Settings(_env_file=None, GEMINI_API_KEY="key")
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            settings.validate_startup()


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_format(self) -> None:
        configure_logging(Settings(_env_file=None, LOG_FORMAT="json", LOG_LEVEL="debug"))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_text_format(self) -> None:
        configure_logging(Settings(_env_file=None, LOG_FORMAT="text"))
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
