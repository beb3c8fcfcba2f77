"""
============================================================================
Evaluation Desk v1.0.0
Payment Webhook Handler - Hubla Payment Ingestion
============================================================================

Reliability Level: L6 Critical
Input Constraints: Raw request bytes and the x-hubla-token header value
Side Effects:
    - Inserts one payments row per invoice id (at most once)
    - Sends the registration e-mail on first sight of an invoice

FLOW:
1. Verify the shared token (before parsing anything)
2. Parse JSON
3. Ignore every event type except invoice.payment_succeeded
4. Validate the payload shape
5. Ignore invoices that are not paid and order-bump (-offer-) invoices
6. Extract the canonical payment (plan, platform, document)
7. Insert unless the invoice id is known (idempotent)
8. First time only: build the registration URL and send the e-mail
   (a mail failure is logged and never fails the webhook)

ERROR CODES:
    - HOOK-001: Token missing or mismatched (raised by app.auth.security)
    - HOOK-002: Payload is not JSON or lacks required fields
    - EVAL-002: Product name has no plan (raised by services.plan_catalog)

============================================================================
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.auth.security import verify_webhook_token
from app.database.models import PaymentRecord
from app.database.repositories import PaymentRepository
from app.observability.metrics import record_webhook_event
from app.schemas.payment_webhook import (
    PAID_STATUS,
    PAYMENT_SUCCEEDED_EVENT,
    HublaWebhookPayload,
)
from services.notification_service import NotificationError, RegistrationMailer
from services.plan_catalog import PLATFORM_LABEL, extract_plan_code

logger = logging.getLogger(__name__)


# Sandbox purchases may arrive without a document
SENTINEL_DOCUMENT = "00000000000"

MESSAGE_PROCESSED = "Pagamento processado com sucesso"
MESSAGE_IGNORED_EVENT = "Evento ignorado"
MESSAGE_IGNORED_STATUS = "Fatura não paga ignorada"
MESSAGE_IGNORED_OFFER = "Order bump ignorado"


class WebhookErrorCode:
    INVALID_PAYLOAD = "HOOK-002"


class WebhookPayloadError(Exception):
    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.error_code = WebhookErrorCode.INVALID_PAYLOAD
        self.message = message
        self.details = details or []
        super().__init__(f"[{self.error_code}] {message}")


class WebhookOutcome:
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class WebhookResult:
    outcome: str
    message: str
    payment_id: Optional[str] = None
    registration_url: Optional[str] = None
    payment: Optional[PaymentRecord] = None
    event_type: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.outcome == WebhookOutcome.PROCESSED

    def to_response(self, sandbox: bool = False) -> Dict[str, Any]:
        if self.outcome == WebhookOutcome.IGNORED:
            return {"message": self.message, "type": self.event_type}
        return {
            "message": self.message,
            "paymentId": self.payment_id,
            "registrationUrl": self.registration_url,
            "sandbox": sandbox,
        }


def normalize_document(raw: Optional[str]) -> str:
    digits = re.sub(r"\D", "", raw or "")
    return digits or SENTINEL_DOCUMENT


def build_registration_url(portal_url: str, payment_id: str) -> str:
    return f"{portal_url.rstrip('/')}/registration/{payment_id}"


def extract_payment_fields(payload: HublaWebhookPayload) -> Dict[str, Any]:
    """
    Map a validated notification to PaymentRecord columns.

    Raises:
        UnknownPlanError: If the product name has no catalog plan
    """
    event = payload.event
    invoice = event.invoice
    return {
        "payment_id": invoice.id,
        "subscription_id": invoice.subscription_id,
        "payer_id": invoice.payer_id,
        "platform": PLATFORM_LABEL,
        "plan": extract_plan_code(event.product.name),
        "amount_cents": invoice.amount.total_cents,
        "customer_name": event.user.full_name,
        "customer_email": event.user.email.strip(),
        "customer_phone": event.user.phone,
        "customer_document": normalize_document(event.user.document),
        "sale_date": invoice.sale_date,
        "payment_method": invoice.payment_method,
    }


class PaymentWebhookHandler:
    """
    Authenticates, filters and persists one payment notification.

    A handler is bound to one database session (one request).
    """

    def __init__(
        self,
        payments: PaymentRepository,
        secret: str,
        portal_url: str,
        mailer: Optional[RegistrationMailer] = None
    ):
        self.payments = payments
        self.secret = secret
        self.portal_url = portal_url
        self.mailer = mailer

    async def handle(self, raw_body: bytes, token_header: Optional[str]) -> WebhookResult:
        """
        Process one delivery.

        Raises:
            WebhookAuthError: HOOK-001
            WebhookPayloadError: HOOK-002
            UnknownPlanError: EVAL-002
        """
        verify_webhook_token(token_header, self.secret)

        data = self._decode(raw_body)
        event_type = data.get("type")
        if event_type != PAYMENT_SUCCEEDED_EVENT:
            return self._ignored(MESSAGE_IGNORED_EVENT, event_type)

        try:
            payload = HublaWebhookPayload.model_validate(data)
        except ValidationError as e:
            details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.warning(
                f"[{WebhookErrorCode.INVALID_PAYLOAD}] Payload validation failed | "
                f"errors={len(details)}"
            )
            raise WebhookPayloadError("Payload validation failed", details)

        invoice = payload.event.invoice
        if invoice.status != PAID_STATUS:
            return self._ignored(MESSAGE_IGNORED_STATUS, event_type, invoice.id)
        if invoice.is_offer:
            return self._ignored(MESSAGE_IGNORED_OFFER, event_type, invoice.id)

        fields = extract_payment_fields(payload)
        payment, created = self.payments.create_if_absent(**fields)
        registration_url = build_registration_url(self.portal_url, payment.payment_id)

        if not created:
            logger.info(
                f"[HOOK] Payment already recorded | payment_id={payment.payment_id} | "
                f"status={payment.status}"
            )
            record_webhook_event(WebhookOutcome.DUPLICATE)
            return WebhookResult(
                outcome=WebhookOutcome.DUPLICATE,
                message=MESSAGE_PROCESSED,
                payment_id=payment.payment_id,
                registration_url=registration_url,
                payment=payment,
                event_type=event_type,
            )

        logger.info(
            f"[HOOK] Payment recorded | payment_id={payment.payment_id} | "
            f"plan={payment.plan} | amount_cents={payment.amount_cents}"
        )
        record_webhook_event(WebhookOutcome.PROCESSED)
        await self._notify(payment, registration_url)

        return WebhookResult(
            outcome=WebhookOutcome.PROCESSED,
            message=MESSAGE_PROCESSED,
            payment_id=payment.payment_id,
            registration_url=registration_url,
            payment=payment,
            event_type=event_type,
        )

    def _decode(self, raw_body: bytes) -> Dict[str, Any]:
        try:
            data = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"[{WebhookErrorCode.INVALID_PAYLOAD}] Body is not JSON | error={e}")
            raise WebhookPayloadError("Invalid JSON payload")
        if not isinstance(data, dict):
            raise WebhookPayloadError("Payload must be a JSON object")
        return data

    def _ignored(
        self,
        message: str,
        event_type: Optional[str],
        invoice_id: Optional[str] = None
    ) -> WebhookResult:
        logger.info(f"[HOOK] Delivery ignored | reason={message} | type={event_type} | invoice={invoice_id}")
        record_webhook_event(WebhookOutcome.IGNORED)
        return WebhookResult(
            outcome=WebhookOutcome.IGNORED,
            message=message,
            payment_id=invoice_id,
            event_type=event_type,
        )

    async def _notify(self, payment: PaymentRecord, registration_url: str) -> None:
        if self.mailer is None:
            return
        try:
            await self.mailer.send_registration_link(
                payment.customer_name, payment.customer_email, registration_url
            )
        except NotificationError as e:
            # Payment is already stored; the link can be resent manually
            logger.error(
                f"[{e.error_code}] Registration e-mail not delivered | "
                f"payment_id={payment.payment_id}"
            )
        except Exception as e:
            logger.exception(
                f"[MAIL-001] Registration e-mail failed unexpectedly | "
                f"payment_id={payment.payment_id} | error={e}"
            )


__all__ = [
    "SENTINEL_DOCUMENT",
    "WebhookErrorCode",
    "WebhookPayloadError",
    "WebhookOutcome",
    "WebhookResult",
    "PaymentWebhookHandler",
    "normalize_document",
    "build_registration_url",
    "extract_payment_fields",
]
