"""
============================================================================
Evaluation Desk v1.0.0
Client Schemas - Registration, Evaluation and Contact Payloads
============================================================================

Reliability Level: L5 Standard
Input Constraints: camelCase JSON (portal convention); snake_case accepted
Side Effects: None (pure validation)

============================================================================
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.database.models import ContactStatus
from services.evaluation_state_machine import EvaluationStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# REQUESTS
# ============================================================================

class RegistrationRequest(CamelModel):
    """Body of POST /registration/process."""
    payment_id: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    plan: str = Field(min_length=1)
    start_date: Optional[datetime] = None
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    cpf: str
    phone: str = Field(min_length=1)
    birth_date: date
    address: Optional[str] = None
    zip_code: Optional[str] = None
    observation: Optional[str] = None

    @field_validator("name", "email")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class FinishEvaluationRequest(CamelModel):
    """Body of POST /evaluations/{id}/finish."""
    status: str

    @field_validator("status")
    @classmethod
    def final_decision(cls, value: str) -> str:
        allowed = (EvaluationStatus.APPROVED.value, EvaluationStatus.REJECTED.value)
        if value not in allowed:
            raise ValueError(f"status must be one of {allowed}")
        return value


class ContactRequest(CamelModel):
    """Body of POST /evaluations/{id}/contacts."""
    status: ContactStatus
    date: datetime
    notes: Optional[str] = None


# ============================================================================
# RESPONSES
# ============================================================================

class ContactOut(CamelModel):
    id: int
    client_id: str
    status: str
    date: datetime
    notes: Optional[str] = None
    created_at: datetime


class ClientOut(CamelModel):
    id: str
    name: str
    cpf: str
    email: str
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    address: Optional[str] = None
    zip_code: Optional[str] = None
    platform: str
    plan: str
    observation: Optional[str] = None
    trader_status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    cancellation_date: Optional[datetime] = None
    broker_customer_id: Optional[str] = None
    broker_subscription_id: Optional[str] = None
    broker_license_id: Optional[str] = None
    broker_account: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class ReprovedClientOut(ClientOut):
    contacts: List[ContactOut] = Field(default_factory=list)


class PaymentDataOut(CamelModel):
    """Payment summary returned to the registration portal."""
    id: str
    platform: str
    plan: str
    customer_email: str
    customer_name: str
    customer_document: str


class ClientIdentityOut(CamelModel):
    """Identity fields used by the portal to pre-fill a returning client."""
    id: str
    name: str
    email: str
    cpf: str
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    address: Optional[str] = None
    zip_code: Optional[str] = None


__all__ = [
    "CamelModel",
    "RegistrationRequest",
    "FinishEvaluationRequest",
    "ContactRequest",
    "ContactOut",
    "ClientOut",
    "ReprovedClientOut",
    "PaymentDataOut",
    "ClientIdentityOut",
]
