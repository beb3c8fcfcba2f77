"""
============================================================================
Evaluation Desk v1.0.0
API Errors - Domain Error to HTTP Response Mapping
============================================================================

Reliability Level: STANDARD
Input Constraints: Exceptions carrying error_code and message
Side Effects: None

STATUS MAPPING:
    HOOK-001, AUTH-001                    → 401
    HOOK-002, REG-001, REG-003            → 400
    DB-002, REG-002                       → 404
    EVAL-001, EVAL-003, EVAL-005, DB-001,
    DB-003                                → 409
    EVAL-002                              → 422
    BRK-*                                 → 502

============================================================================
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi.responses import JSONResponse

from app.auth.security import ApiKeyError, WebhookAuthError
from app.broker.nelogica_client import BrokerClientError
from app.database.repositories import (
    DuplicateActiveEvaluationError,
    RecordNotFoundError,
    StaleRecordError,
)
from services.broker_service import AlreadyProvisionedError, NotProvisionedError
from services.evaluation_state_machine import InvalidTransitionError
from services.payment_webhook import WebhookPayloadError
from services.plan_catalog import UnknownPlanError
from services.registration_service import RegistrationError, RegistrationErrorCode

logger = logging.getLogger(__name__)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 400,
    details: Optional[dict] = None
) -> JSONResponse:
    """
    Create standardized error response.

    Returns:
        JSONResponse: {error_code, message, timestamp[, details]}
    """
    content = {
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    if details:
        content["details"] = details

    return JSONResponse(status_code=status_code, content=content)


_STATUS_BY_TYPE = (
    (WebhookAuthError, 401),
    (ApiKeyError, 401),
    (WebhookPayloadError, 400),
    (RecordNotFoundError, 404),
    (NotProvisionedError, 409),
    (AlreadyProvisionedError, 409),
    (InvalidTransitionError, 409),
    (StaleRecordError, 409),
    (DuplicateActiveEvaluationError, 409),
    (UnknownPlanError, 422),
    (BrokerClientError, 502),
)


def status_for(error: Exception) -> int:
    if isinstance(error, RegistrationError):
        if error.error_code == RegistrationErrorCode.PAYMENT_NOT_FOUND:
            return 404
        return 400
    for error_type, status_code in _STATUS_BY_TYPE:
        if isinstance(error, error_type):
            return status_code
    return 500


def domain_error_response(error: Exception) -> JSONResponse:
    """Translate a domain exception into its JSON error response."""
    status_code = status_for(error)
    error_code = getattr(error, "error_code", "DESK-500")
    message = getattr(error, "message", None) or str(error)
    details = None
    if isinstance(error, WebhookPayloadError) and error.details:
        details = {"validation_errors": error.details}
    if status_code >= 500:
        logger.error(f"[{error_code}] Request failed | status={status_code} | error={message}")
    else:
        logger.info(f"[{error_code}] Request rejected | status={status_code} | error={message}")
    return create_error_response(error_code, message, status_code=status_code, details=details)


DOMAIN_ERRORS = (
    WebhookAuthError,
    ApiKeyError,
    WebhookPayloadError,
    RegistrationError,
    RecordNotFoundError,
    NotProvisionedError,
    AlreadyProvisionedError,
    InvalidTransitionError,
    StaleRecordError,
    DuplicateActiveEvaluationError,
    UnknownPlanError,
    BrokerClientError,
)


__all__ = [
    "create_error_response",
    "domain_error_response",
    "status_for",
    "DOMAIN_ERRORS",
]
