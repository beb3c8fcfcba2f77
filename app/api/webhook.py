"""
============================================================================
Evaluation Desk v1.0.0
Webhook API - Hubla Payment Ingestion
============================================================================

Reliability Level: L6 Critical
Input Constraints:
    - x-hubla-token header equal to HUBLA_WEBHOOK_SECRET
    - JSON body of a Hubla notification
Side Effects:
    - Inserts the payment (once per invoice id)
    - Sends the registration e-mail on first sight

RESPONSES:
    200 processed / duplicate → {message, paymentId, registrationUrl, sandbox}
    200 ignored               → {message, type}
    401 HOOK-001              → bad or missing token
    400 HOOK-002 / EVAL-002   → unparseable payload or unknown product

Ignored events answer 200 so the provider does not retry them.

============================================================================
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from app.api.dependencies import get_webhook_handler
from app.api.errors import create_error_response, domain_error_response
from app.auth.security import WebhookAuthError, is_sandbox
from app.observability.metrics import record_webhook_event
from services.payment_webhook import PaymentWebhookHandler, WebhookPayloadError
from services.plan_catalog import UnknownPlanError

logger = logging.getLogger(__name__)


# ============================================================================
# ROUTER
# ============================================================================

router = APIRouter()


# ============================================================================
# WEBHOOK ENDPOINT
# ============================================================================

@router.post(
    "/hubla",
    summary="Receive Hubla payment notification",
    response_model=dict,
    responses={
        200: {
            "description": "Payment recorded (or event ignored)",
            "content": {
                "application/json": {
                    "example": {
                        "message": "Pagamento processado com sucesso",
                        "paymentId": "inv_123",
                        "registrationUrl": "https://portal.example.com/registration/inv_123",
                        "sandbox": False
                    }
                }
            }
        },
        400: {"description": "Invalid payload or unknown product (HOOK-002, EVAL-002)"},
        401: {"description": "Webhook token rejected (HOOK-001)"},
    }
)
async def receive_hubla_webhook(
    request: Request,
    handler: PaymentWebhookHandler = Depends(get_webhook_handler),
    x_hubla_token: Optional[str] = Header(None, alias="x-hubla-token"),
    x_hubla_sandbox: Optional[str] = Header(None, alias="x-hubla-sandbox")
):
    # Raw bytes: the token is checked before anything is parsed
    raw_body = await request.body()

    try:
        result = await handler.handle(raw_body, x_hubla_token)
    except WebhookAuthError as e:
        logger.warning(f"[{e.error_code}] Webhook rejected | reason={e.message}")
        record_webhook_event("unauthorized")
        return domain_error_response(e)
    except WebhookPayloadError as e:
        record_webhook_event("invalid")
        return domain_error_response(e)
    except UnknownPlanError as e:
        logger.error(f"[{e.error_code}] Webhook product has no plan | product={e.plan}")
        record_webhook_event("invalid")
        return create_error_response(e.error_code, e.message, status_code=400)

    return result.to_response(sandbox=is_sandbox(x_hubla_sandbox))
