"""
============================================================================
Evaluation Desk v1.0.0
Desk Configuration - Environment Driven Settings
============================================================================

Reliability Level: L6 Critical
Input Constraints: Environment variables (optionally loaded from .env)
Side Effects: Reads from environment, logs configuration summary

This module provides configuration management for the evaluation desk:
- Environment variable parsing with type safety
- Default values for optional configuration
- Validation of required configuration
- Fail-closed behavior on missing broker credentials (CFG-001)

ENVIRONMENT VARIABLES:
    - BROKER_API_URL / BROKER_USERNAME / BROKER_PASSWORD: Nelogica REST API
    - BROKER_ENVIRONMENT_ID: Environment used for risk profile listing
    - BROKER_REQUEST_TIMEOUT_SECONDS: Cap on every broker call (default: 30)
    - BROKER_TOKEN_SAFETY_MARGIN_SECONDS: Token renewal margin (default: 300)
    - BROKER_WS_URL / BROKER_WS_TOKEN: Realtime session endpoint
    - BROKER_WS_KEEPALIVE_SECONDS / BROKER_WS_RECONNECT_SECONDS
    - HUBLA_WEBHOOK_SECRET: Shared secret of the payment webhook
    - API_KEY: Bearer key of the registration portal and operator API
    - CLIENT_PORTAL_URL: Base URL of the registration portal
    - EVALUATION_WINDOW_DAYS: Evaluation length (default: 60)
    - SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS / SMTP_SECURE / EMAIL_FROM

ERROR CODES:
    - CFG-001: Required configuration missing or invalid

============================================================================
"""

from typing import Optional, List
from dataclasses import dataclass, field
import logging
import os

from dotenv import load_dotenv

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class DeskConfigErrorCode:
    """Configuration error codes for audit logging."""
    CONFIG_MISSING = "CFG-001"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_BROKER_API_URL = "https://api-manager.nelogica.com.br/"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS = 300

# Server closes idle sockets after 60 seconds
DEFAULT_WS_KEEPALIVE_SECONDS = 55.0
DEFAULT_WS_RECONNECT_SECONDS = 5.0

DEFAULT_CLIENT_PORTAL_URL = "https://portal.tradershouse.com.br/"
DEFAULT_EVALUATION_WINDOW_DAYS = 60

DEFAULT_SMTP_PORT = 587
DEFAULT_EMAIL_FROM = "contato@tradershouse.com.br"


# =============================================================================
# Configuration Exception
# =============================================================================

class DeskConfigurationError(Exception):
    """
    Raised when desk configuration is invalid or missing.

    Reliability Level: L6 Critical
    """

    def __init__(self, message: str, error_code: str = DeskConfigErrorCode.CONFIG_MISSING):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Parsing Helpers
# =============================================================================

def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise DeskConfigurationError(f"{name} must be numeric, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise DeskConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Configuration Sections
# =============================================================================

@dataclass
class BrokerConfig:
    """Nelogica REST API access."""
    api_url: str = DEFAULT_BROKER_API_URL
    username: str = ""
    password: str = ""
    environment_id: str = ""
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    token_safety_margin_seconds: int = DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS


@dataclass
class RealtimeConfig:
    """Nelogica realtime (websocket) session."""
    url: str = ""
    token: str = ""
    keepalive_seconds: float = DEFAULT_WS_KEEPALIVE_SECONDS
    reconnect_seconds: float = DEFAULT_WS_RECONNECT_SECONDS

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.token)


@dataclass
class WebhookConfig:
    """Inbound payment webhook and portal integration."""
    hubla_secret: str = ""
    api_key: str = ""
    client_portal_url: str = DEFAULT_CLIENT_PORTAL_URL


@dataclass
class MailConfig:
    """SMTP delivery of registration links."""
    host: str = ""
    port: int = DEFAULT_SMTP_PORT
    user: str = ""
    password: str = ""
    secure: bool = False
    sender: str = DEFAULT_EMAIL_FROM

    @property
    def enabled(self) -> bool:
        return bool(self.host)


# =============================================================================
# DeskConfig Class
# =============================================================================

@dataclass
class DeskConfig:
    """
    Evaluation desk configuration.

    ============================================================================
    CONFIGURATION SECTIONS:
    ============================================================================
    - broker: Nelogica REST credentials and call limits
    - realtime: Optional websocket session
    - webhook: Payment webhook secret, API key and portal URL
    - mail: SMTP settings (mail disabled when host is empty)
    - evaluation_window_days: Length of an evaluation (default: 60)
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: Broker credentials must be present
    Side Effects: Logs configuration on load (never secrets)
    """

    broker: BrokerConfig = field(default_factory=BrokerConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    evaluation_window_days: int = DEFAULT_EVALUATION_WINDOW_DAYS

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            DeskConfigurationError: If required configuration is missing
        """
        errors: List[str] = []

        if not self.broker.api_url:
            errors.append("BROKER_API_URL is empty")
        if not self.broker.username or not self.broker.password:
            errors.append("BROKER_USERNAME and BROKER_PASSWORD are required")
        if self.broker.request_timeout_seconds <= 0:
            errors.append(
                f"BROKER_REQUEST_TIMEOUT_SECONDS must be positive, "
                f"got {self.broker.request_timeout_seconds}"
            )
        if self.broker.token_safety_margin_seconds < 0:
            errors.append("BROKER_TOKEN_SAFETY_MARGIN_SECONDS must not be negative")
        if self.evaluation_window_days <= 0:
            errors.append(
                f"EVALUATION_WINDOW_DAYS must be positive, got {self.evaluation_window_days}"
            )
        if not self.webhook.hubla_secret:
            errors.append("HUBLA_WEBHOOK_SECRET is required")
        if not self.webhook.api_key:
            errors.append("API_KEY is required")

        if errors:
            message = "; ".join(errors)
            logger.error(f"[{DeskConfigErrorCode.CONFIG_MISSING}] Invalid configuration | {message}")
            raise DeskConfigurationError(message)

    @classmethod
    def from_env(cls) -> "DeskConfig":
        """
        Build configuration from environment variables.

        Reliability Level: L6 Critical
        Side Effects: Loads .env, reads from environment
        """
        load_dotenv()

        config = cls(
            broker=BrokerConfig(
                api_url=_env_str("BROKER_API_URL", DEFAULT_BROKER_API_URL),
                username=_env_str("BROKER_USERNAME"),
                password=_env_str("BROKER_PASSWORD"),
                environment_id=_env_str("BROKER_ENVIRONMENT_ID"),
                request_timeout_seconds=_env_float(
                    "BROKER_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS
                ),
                token_safety_margin_seconds=_env_int(
                    "BROKER_TOKEN_SAFETY_MARGIN_SECONDS", DEFAULT_TOKEN_SAFETY_MARGIN_SECONDS
                ),
            ),
            realtime=RealtimeConfig(
                url=_env_str("BROKER_WS_URL"),
                token=_env_str("BROKER_WS_TOKEN"),
                keepalive_seconds=_env_float(
                    "BROKER_WS_KEEPALIVE_SECONDS", DEFAULT_WS_KEEPALIVE_SECONDS
                ),
                reconnect_seconds=_env_float(
                    "BROKER_WS_RECONNECT_SECONDS", DEFAULT_WS_RECONNECT_SECONDS
                ),
            ),
            webhook=WebhookConfig(
                hubla_secret=_env_str("HUBLA_WEBHOOK_SECRET"),
                api_key=_env_str("API_KEY"),
                client_portal_url=_env_str("CLIENT_PORTAL_URL", DEFAULT_CLIENT_PORTAL_URL)
                or DEFAULT_CLIENT_PORTAL_URL,
            ),
            mail=MailConfig(
                host=_env_str("SMTP_HOST"),
                port=_env_int("SMTP_PORT", DEFAULT_SMTP_PORT),
                user=_env_str("SMTP_USER"),
                password=_env_str("SMTP_PASS"),
                secure=_env_bool("SMTP_SECURE", False),
                sender=_env_str("EMAIL_FROM", DEFAULT_EMAIL_FROM) or DEFAULT_EMAIL_FROM,
            ),
            evaluation_window_days=_env_int(
                "EVALUATION_WINDOW_DAYS", DEFAULT_EVALUATION_WINDOW_DAYS
            ),
        )

        logger.info(
            f"[DESK-CONFIG] Configuration loaded | "
            f"broker_url={config.broker.api_url} | "
            f"broker_timeout={config.broker.request_timeout_seconds}s | "
            f"realtime_enabled={config.realtime.enabled} | "
            f"mail_enabled={config.mail.enabled} | "
            f"evaluation_window_days={config.evaluation_window_days}"
        )
        return config


# =============================================================================
# Singleton Access
# =============================================================================

_desk_config: Optional[DeskConfig] = None


def get_desk_config(validate: bool = True) -> DeskConfig:
    """
    Get the process-wide configuration, loading it on first use.

    Raises:
        DeskConfigurationError: If validate is True and config is incomplete
    """
    global _desk_config
    if _desk_config is None:
        config = DeskConfig.from_env()
        if validate:
            config.validate()
        _desk_config = config
    return _desk_config


def reset_desk_config() -> None:
    """Drop the cached configuration (tests)."""
    global _desk_config
    _desk_config = None


__all__ = [
    "DeskConfigErrorCode",
    "DeskConfigurationError",
    "BrokerConfig",
    "RealtimeConfig",
    "WebhookConfig",
    "MailConfig",
    "DeskConfig",
    "get_desk_config",
    "reset_desk_config",
]
