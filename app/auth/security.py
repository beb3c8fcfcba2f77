"""
============================================================================
Evaluation Desk v1.0.0
Security Module - Webhook Token & API Key Verification
============================================================================

Reliability Level: L6 Critical
Input Constraints: Header values as received, configured secrets
Side Effects: None (pure verification)

MANDATE:
- Payment webhooks MUST carry the shared secret in x-hubla-token
- Portal and operator calls MUST carry "Authorization: Bearer <API_KEY>"
- Timing-safe comparison for every secret
- No silent failures - explicit error codes

ERROR CODES:
    - HOOK-001: Webhook token missing or mismatched
    - AUTH-001: API key missing or mismatched

============================================================================
"""

import hmac
from datetime import datetime, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from services.desk_config import get_desk_config


# ============================================================================
# CONSTANTS
# ============================================================================

WEBHOOK_TOKEN_HEADER = "x-hubla-token"
SANDBOX_HEADER = "x-hubla-sandbox"
BEARER_PREFIX = "Bearer "


# ============================================================================
# EXCEPTIONS
# ============================================================================

class WebhookAuthError(Exception):
    """
    Raised when the webhook shared secret does not match.

    Error Codes:
        HOOK-001: Missing header, unconfigured secret or mismatch
    """

    def __init__(self, message: str, error_code: str = "HOOK-001"):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class ApiKeyError(Exception):
    """
    Raised when a Bearer API key is missing or wrong.

    Error Codes:
        AUTH-001: Missing header, malformed header or mismatch
    """

    def __init__(self, message: str, error_code: str = "AUTH-001"):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


def _secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


# ============================================================================
# WEBHOOK TOKEN
# ============================================================================

def verify_webhook_token(provided_token: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify the shared secret sent by the payment provider.

    Reliability Level: L6 Critical
    Input Constraints:
        - provided_token: Value of the x-hubla-token header
        - secret: Configured HUBLA_WEBHOOK_SECRET
    Side Effects: None

    Returns:
        bool: True if the token matches

    Raises:
        WebhookAuthError: HOOK-001 on any mismatch
    """
    if not secret:
        raise WebhookAuthError("Webhook secret is not configured")
    if not provided_token:
        raise WebhookAuthError(f"Missing {WEBHOOK_TOKEN_HEADER} header")
    if not _secrets_match(provided_token, secret):
        raise WebhookAuthError("Webhook token mismatch")
    return True


def is_sandbox(header_value: Optional[str]) -> bool:
    return (header_value or "").strip().lower() == "true"


# ============================================================================
# API KEY
# ============================================================================

def verify_api_key(authorization: Optional[str], api_key: Optional[str]) -> bool:
    """
    Verify an "Authorization: Bearer <key>" header.

    Raises:
        ApiKeyError: AUTH-001 on any mismatch
    """
    if not api_key:
        raise ApiKeyError("API key is not configured")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise ApiKeyError("Missing Bearer authorization header")
    provided = authorization[len(BEARER_PREFIX):].strip()
    if not _secrets_match(provided, api_key):
        raise ApiKeyError("API key mismatch")
    return True


async def require_api_key(authorization: Optional[str] = Header(None)) -> None:
    """
    FastAPI dependency guarding portal and operator routes.

    Raises:
        HTTPException: 401 with AUTH-001 detail
    """
    try:
        verify_api_key(authorization, get_desk_config().webhook.api_key)
    except ApiKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": e.error_code,
                "message": "Não autorizado",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


__all__ = [
    "WEBHOOK_TOKEN_HEADER",
    "SANDBOX_HEADER",
    "WebhookAuthError",
    "ApiKeyError",
    "verify_webhook_token",
    "is_sandbox",
    "verify_api_key",
    "require_api_key",
]
