# ============================================================================
# Evaluation Desk v1.0.0
# Authentication & Security Module
# ============================================================================

from app.auth.security import (
    verify_webhook_token,
    verify_api_key,
    require_api_key,
    WebhookAuthError,
    ApiKeyError,
)

__all__ = [
    "verify_webhook_token",
    "verify_api_key",
    "require_api_key",
    "WebhookAuthError",
    "ApiKeyError",
]
