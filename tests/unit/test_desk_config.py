"""
============================================================================
Evaluation Desk v1.0.0
Unit Tests: Desk Configuration
============================================================================

Reliability Level: L6 Critical
Input Constraints: monkeypatched environment
Side Effects: None

Tests:
- Defaults when optional variables are absent
- Typed parsing of numeric and boolean variables
- Fail-closed validation (CFG-001)
- Singleton caching and reset

============================================================================
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

import services.desk_config as desk_config_module
from services.desk_config import (
    DEFAULT_BROKER_API_URL,
    DEFAULT_EVALUATION_WINDOW_DAYS,
    DeskConfig,
    DeskConfigurationError,
    get_desk_config,
    reset_desk_config,
)


ALL_VARIABLES = [
    "BROKER_API_URL", "BROKER_USERNAME", "BROKER_PASSWORD", "BROKER_ENVIRONMENT_ID",
    "BROKER_REQUEST_TIMEOUT_SECONDS", "BROKER_TOKEN_SAFETY_MARGIN_SECONDS",
    "BROKER_WS_URL", "BROKER_WS_TOKEN", "BROKER_WS_KEEPALIVE_SECONDS",
    "BROKER_WS_RECONNECT_SECONDS", "HUBLA_WEBHOOK_SECRET", "API_KEY",
    "CLIENT_PORTAL_URL", "EVALUATION_WINDOW_DAYS", "SMTP_HOST", "SMTP_PORT",
    "SMTP_USER", "SMTP_PASS", "SMTP_SECURE", "EMAIL_FROM",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Empty desk environment; .env loading disabled."""
    for name in ALL_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(desk_config_module, "load_dotenv", lambda *args, **kwargs: False)
    reset_desk_config()
    yield monkeypatch
    reset_desk_config()


@pytest.fixture
def valid_env(clean_env):
    clean_env.setenv("BROKER_USERNAME", "desk")
    clean_env.setenv("BROKER_PASSWORD", "secret")
    clean_env.setenv("HUBLA_WEBHOOK_SECRET", "hook")
    clean_env.setenv("API_KEY", "key")
    return clean_env


class TestFromEnv:
    """Parsing and defaults."""

    def test_defaults(self, clean_env):
        config = DeskConfig.from_env()

        assert config.broker.api_url == DEFAULT_BROKER_API_URL
        assert config.broker.request_timeout_seconds == 30.0
        assert config.broker.token_safety_margin_seconds == 300
        assert config.evaluation_window_days == DEFAULT_EVALUATION_WINDOW_DAYS
        assert not config.realtime.enabled
        assert not config.mail.enabled
        assert config.mail.port == 587

    def test_typed_values(self, clean_env):
        clean_env.setenv("BROKER_REQUEST_TIMEOUT_SECONDS", "12.5")
        clean_env.setenv("EVALUATION_WINDOW_DAYS", "30")
        clean_env.setenv("SMTP_HOST", "smtp.example.com")
        clean_env.setenv("SMTP_PORT", "465")
        clean_env.setenv("SMTP_SECURE", "true")
        clean_env.setenv("BROKER_WS_URL", "wss://rt.example.com")
        clean_env.setenv("BROKER_WS_TOKEN", "tok")

        config = DeskConfig.from_env()

        assert config.broker.request_timeout_seconds == 12.5
        assert config.evaluation_window_days == 30
        assert config.mail.enabled
        assert config.mail.port == 465
        assert config.mail.secure is True
        assert config.realtime.enabled

    def test_non_numeric_value(self, clean_env):
        clean_env.setenv("SMTP_PORT", "smtp")

        with pytest.raises(DeskConfigurationError) as exc_info:
            DeskConfig.from_env()

        assert exc_info.value.error_code == "CFG-001"


class TestValidate:
    """Fail closed on missing secrets."""

    def test_valid(self, valid_env):
        DeskConfig.from_env().validate()

    @pytest.mark.parametrize("missing", [
        "BROKER_USERNAME", "BROKER_PASSWORD", "HUBLA_WEBHOOK_SECRET", "API_KEY",
    ])
    def test_missing_required(self, valid_env, missing):
        valid_env.delenv(missing)

        with pytest.raises(DeskConfigurationError) as exc_info:
            DeskConfig.from_env().validate()

        assert exc_info.value.error_code == "CFG-001"

    def test_non_positive_window(self, valid_env):
        valid_env.setenv("EVALUATION_WINDOW_DAYS", "0")

        with pytest.raises(DeskConfigurationError):
            DeskConfig.from_env().validate()


class TestSingleton:
    def test_cached_until_reset(self, valid_env):
        first = get_desk_config()
        assert get_desk_config() is first

        reset_desk_config()
        assert get_desk_config() is not first

    def test_invalid_config_not_cached(self, clean_env):
        with pytest.raises(DeskConfigurationError):
            get_desk_config()
        assert get_desk_config(validate=False) is not None
