"""
============================================================================
Evaluation Desk v1.0.0
Payment Webhook Schema - Pydantic Models for Hubla Notifications
============================================================================

Reliability Level: L6 Critical
Input Constraints: JSON body posted by the payment provider
Side Effects: None (pure validation)

Only the fields the desk consumes are declared; unknown fields are kept
so that provider additions never break parsing.

============================================================================
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


PAYMENT_SUCCEEDED_EVENT = "invoice.payment_succeeded"
PAID_STATUS = "paid"
OFFER_MARKER = "-offer-"


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class HublaProduct(_ProviderModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)


class HublaAmount(_ProviderModel):
    total_cents: int = Field(0, alias="totalCents")
    subtotal_cents: Optional[int] = Field(None, alias="subtotalCents")
    discount_cents: Optional[int] = Field(None, alias="discountCents")


class HublaInvoice(_ProviderModel):
    id: str = Field(min_length=1)
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    payer_id: Optional[str] = Field(None, alias="payerId")
    status: str
    amount: HublaAmount = Field(default_factory=HublaAmount)
    sale_date: Optional[datetime] = Field(None, alias="saleDate")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")

    @property
    def is_offer(self) -> bool:
        """Order-bump line items carry '-offer-' in the invoice id."""
        return OFFER_MARKER in self.id


class HublaUser(_ProviderModel):
    id: Optional[str] = None
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    email: str = Field(min_length=3)
    phone: Optional[str] = None
    document: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class HublaEvent(_ProviderModel):
    product: HublaProduct
    invoice: HublaInvoice
    user: HublaUser


class HublaWebhookPayload(_ProviderModel):
    """
    Envelope of a Hubla notification.

    Example:
        {"type": "invoice.payment_succeeded", "version": "2.0.0",
         "event": {"product": {...}, "invoice": {...}, "user": {...}}}
    """
    type: str
    version: Optional[str] = None
    event: HublaEvent


__all__ = [
    "PAYMENT_SUCCEEDED_EVENT",
    "PAID_STATUS",
    "OFFER_MARKER",
    "HublaProduct",
    "HublaAmount",
    "HublaInvoice",
    "HublaUser",
    "HublaEvent",
    "HublaWebhookPayload",
]
