"""
============================================================================
Evaluation Desk v1.0.0
Unit Tests: Payment Webhook Handler
============================================================================

Reliability Level: L6 Critical
Input Constraints: In-memory SQLite, recording mailer
Side Effects: None

Tests:
- Token verified before anything is parsed (HOOK-001)
- Non-payment events, unpaid invoices and order bumps are ignored
- Invalid JSON / missing fields are HOOK-002
- First delivery stores the payment and mails the registration link
- Repeated deliveries store nothing new and send no mail
- Mail failures never fail the webhook

============================================================================
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.auth.security import WebhookAuthError
from app.database.models import Base, PaymentStatus
from app.database.repositories import PaymentRepository
from app.database.session import enable_sqlite_foreign_keys
from services.desk_config import MailConfig
from services.notification_service import NotificationError, RegistrationMailer
from services.payment_webhook import (
    MESSAGE_IGNORED_EVENT,
    MESSAGE_IGNORED_OFFER,
    MESSAGE_PROCESSED,
    SENTINEL_DOCUMENT,
    PaymentWebhookHandler,
    WebhookOutcome,
    WebhookPayloadError,
    build_registration_url,
    normalize_document,
)
from services.plan_catalog import PLATFORM_LABEL, UnknownPlanError


SECRET = "hubla-secret"
PORTAL = "https://portal.example.com/"


def hubla_payload(
    invoice_id: str = "inv-100",
    product: str = "Trader 25K - Black Arrow",
    status: str = "paid",
    event_type: str = "invoice.payment_succeeded",
    document: Optional[str] = "529.982.247-25",
) -> Dict[str, Any]:
    return {
        "type": event_type,
        "version": "2.0.0",
        "event": {
            "product": {"id": "prod-1", "name": product},
            "invoice": {
                "id": invoice_id,
                "subscriptionId": "sub-1",
                "payerId": "payer-1",
                "status": status,
                "amount": {"totalCents": 29700},
                "saleDate": "2024-05-10T12:00:00Z",
                "paymentMethod": "pix",
            },
            "user": {
                "id": "user-1",
                "firstName": "Ana",
                "lastName": "Costa",
                "email": " ana@example.com ",
                "phone": "+5511988887777",
                "document": document,
            },
        },
    }


def encode(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


class RecordingMailer:
    def __init__(self, error: Optional[Exception] = None):
        self.sent: List[tuple] = []
        self.error = error

    async def send_registration_link(self, name, email, url) -> bool:
        self.sent.append((name, email, url))
        if self.error is not None:
            raise self.error
        return True


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    session = Session(engine, expire_on_commit=False, autoflush=False)
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def handler(db, mailer) -> PaymentWebhookHandler:
    return PaymentWebhookHandler(PaymentRepository(db), SECRET, PORTAL, mailer=mailer)


class TestAuthentication:
    """HOOK-001 precedes parsing."""

    @pytest.mark.asyncio
    async def test_missing_token(self, handler):
        with pytest.raises(WebhookAuthError) as exc_info:
            await handler.handle(encode(hubla_payload()), None)
        assert exc_info.value.error_code == "HOOK-001"

    @pytest.mark.asyncio
    async def test_wrong_token_before_parsing(self, handler, db):
        with pytest.raises(WebhookAuthError):
            await handler.handle(b"not json at all", "wrong")
        assert PaymentRepository(db).count() == 0

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects(self, db):
        handler = PaymentWebhookHandler(PaymentRepository(db), "", PORTAL)
        with pytest.raises(WebhookAuthError):
            await handler.handle(encode(hubla_payload()), "")


class TestFiltering:
    """Deliveries that are acknowledged but not stored."""

    @pytest.mark.asyncio
    async def test_other_event_type(self, handler, db, mailer):
        result = await handler.handle(
            encode({"type": "subscription.activated", "event": {}}), SECRET
        )

        assert result.outcome == WebhookOutcome.IGNORED
        assert result.to_response() == {
            "message": MESSAGE_IGNORED_EVENT,
            "type": "subscription.activated",
        }
        assert PaymentRepository(db).count() == 0
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_unpaid_invoice(self, handler, db):
        result = await handler.handle(encode(hubla_payload(status="pending")), SECRET)

        assert result.outcome == WebhookOutcome.IGNORED
        assert PaymentRepository(db).count() == 0

    @pytest.mark.asyncio
    async def test_order_bump(self, handler, db, mailer):
        result = await handler.handle(
            encode(hubla_payload(invoice_id="inv-100-offer-2")), SECRET
        )

        assert result.outcome == WebhookOutcome.IGNORED
        assert result.message == MESSAGE_IGNORED_OFFER
        assert PaymentRepository(db).count() == 0
        assert mailer.sent == []


class TestInvalidPayloads:
    """HOOK-002 and EVAL-002."""

    @pytest.mark.asyncio
    async def test_invalid_json(self, handler):
        with pytest.raises(WebhookPayloadError) as exc_info:
            await handler.handle(b"{broken", SECRET)
        assert exc_info.value.error_code == "HOOK-002"

    @pytest.mark.asyncio
    async def test_json_array(self, handler):
        with pytest.raises(WebhookPayloadError):
            await handler.handle(b"[1, 2]", SECRET)

    @pytest.mark.asyncio
    async def test_missing_invoice(self, handler):
        payload = hubla_payload()
        del payload["event"]["invoice"]

        with pytest.raises(WebhookPayloadError) as exc_info:
            await handler.handle(encode(payload), SECRET)

        assert any("invoice" in detail for detail in exc_info.value.details)

    @pytest.mark.asyncio
    async def test_unknown_product(self, handler, db):
        with pytest.raises(UnknownPlanError):
            await handler.handle(encode(hubla_payload(product="Mentoria VIP")), SECRET)
        assert PaymentRepository(db).count() == 0


class TestProcessing:
    """Storage and notification."""

    @pytest.mark.asyncio
    async def test_first_delivery(self, handler, db, mailer):
        result = await handler.handle(encode(hubla_payload()), SECRET)

        assert result.outcome == WebhookOutcome.PROCESSED
        assert result.created
        assert result.registration_url == "https://portal.example.com/registration/inv-100"

        payment = PaymentRepository(db).find_by_payment_id("inv-100")
        assert payment.status == PaymentStatus.RECEIVED
        assert payment.plan == "FX - 25K"
        assert payment.platform == PLATFORM_LABEL
        assert payment.amount_cents == 29700
        assert payment.customer_name == "Ana Costa"
        assert payment.customer_email == "ana@example.com"
        assert payment.customer_document == "52998224725"

        assert mailer.sent == [("Ana Costa", "ana@example.com", result.registration_url)]

    @pytest.mark.asyncio
    async def test_response_shape(self, handler):
        result = await handler.handle(encode(hubla_payload()), SECRET)

        assert result.to_response(sandbox=True) == {
            "message": MESSAGE_PROCESSED,
            "paymentId": "inv-100",
            "registrationUrl": "https://portal.example.com/registration/inv-100",
            "sandbox": True,
        }

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, handler, db, mailer):
        await handler.handle(encode(hubla_payload()), SECRET)
        again = await handler.handle(encode(hubla_payload()), SECRET)

        assert again.outcome == WebhookOutcome.DUPLICATE
        assert again.message == MESSAGE_PROCESSED
        assert PaymentRepository(db).count() == 1
        assert len(mailer.sent) == 1

    @pytest.mark.asyncio
    async def test_missing_document_uses_sentinel(self, handler, db):
        await handler.handle(encode(hubla_payload(document=None)), SECRET)

        payment = PaymentRepository(db).find_by_payment_id("inv-100")
        assert payment.customer_document == SENTINEL_DOCUMENT

    @pytest.mark.asyncio
    async def test_mail_failure_is_swallowed(self, db):
        mailer = RecordingMailer(error=NotificationError("smtp down"))
        handler = PaymentWebhookHandler(PaymentRepository(db), SECRET, PORTAL, mailer=mailer)

        result = await handler.handle(encode(hubla_payload()), SECRET)

        assert result.outcome == WebhookOutcome.PROCESSED
        assert PaymentRepository(db).count() == 1

    @pytest.mark.asyncio
    async def test_unexpected_mail_error_is_swallowed(self, db):
        mailer = RecordingMailer(error=RuntimeError("template missing"))
        handler = PaymentWebhookHandler(PaymentRepository(db), SECRET, PORTAL, mailer=mailer)

        result = await handler.handle(encode(hubla_payload()), SECRET)

        assert result.outcome == WebhookOutcome.PROCESSED
        assert PaymentRepository(db).count() == 1

    @pytest.mark.asyncio
    async def test_header_breaking_email_still_processed(self, db):
        connections = []

        def smtp_factory(*args, **kwargs):
            connections.append(args)
            raise ConnectionRefusedError("unreachable")

        mailer = RegistrationMailer(MailConfig(host="smtp.example.com"), smtp_factory=smtp_factory)
        handler = PaymentWebhookHandler(PaymentRepository(db), SECRET, PORTAL, mailer=mailer)
        payload = hubla_payload()
        payload["event"]["user"]["email"] = "ana@example.com\r\nBcc: spam@example.com"

        result = await handler.handle(encode(payload), SECRET)

        assert result.outcome == WebhookOutcome.PROCESSED
        assert PaymentRepository(db).count() == 1
        assert connections == []

    @pytest.mark.asyncio
    async def test_without_mailer(self, db):
        handler = PaymentWebhookHandler(PaymentRepository(db), SECRET, PORTAL)

        result = await handler.handle(encode(hubla_payload()), SECRET)

        assert result.created


class TestHelpers:
    def test_normalize_document(self):
        assert normalize_document("529.982.247-25") == "52998224725"
        assert normalize_document("") == SENTINEL_DOCUMENT

    def test_registration_url_strips_slash(self):
        assert build_registration_url("https://p.com/", "abc") == "https://p.com/registration/abc"
        assert build_registration_url("https://p.com", "abc") == "https://p.com/registration/abc"
