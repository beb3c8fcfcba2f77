"""
============================================================================
Evaluation Desk v1.0.0
Database Models - Clients, Contacts and Payments
============================================================================

Reliability Level: L6 Critical
Input Constraints: CPF stored normalized (11 digits)
Side Effects: None (declarations only)

TABLES:
    clients   - evaluation subjects with broker linkage and lifecycle dates
    contacts  - append-only outreach log for rejected clients
    payments  - canonical payment events keyed by the provider invoice id

INVARIANTS:
    - clients.broker_account and clients.broker_license_id are both set or
      both NULL (ck_clients_broker_linkage)
    - payments.payment_id is globally unique (uq_payments_payment_id)
    - clients.version increases by one on every status/linkage write

============================================================================
"""

import uuid
from enum import Enum
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from services.evaluation_state_machine import EvaluationStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class PaymentStatus:
    """Payment lifecycle: received -> completed."""
    RECEIVED = "received"
    COMPLETED = "completed"


class ContactStatus(str, Enum):
    """Outcome of an outreach to a rejected client."""
    NO_CONTACT = "Sem contato"
    CONTACTED = "Contatado"
    NOT_INTERESTED = "Não Interessado"
    CONVERTED = "Convertido"


class Base(DeclarativeBase):
    pass


# ============================================================================
# CLIENT
# ============================================================================

class ClientRecord(Base):
    """A trader evaluation subject."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # Identity
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[str] = mapped_column(String(11), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    birth_date: Mapped[Optional[date]] = mapped_column(Date)
    address: Mapped[Optional[str]] = mapped_column(String(255))
    zip_code: Mapped[Optional[str]] = mapped_column(String(16))

    # Program
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    plan: Mapped[str] = mapped_column(String(32), nullable=False)
    observation: Mapped[Optional[str]] = mapped_column(Text)

    # Lifecycle
    trader_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=EvaluationStatus.WAITING.value, index=True
    )
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Broker linkage (populated after provisioning)
    broker_customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    broker_subscription_id: Mapped[Optional[str]] = mapped_column(String(64))
    broker_license_id: Mapped[Optional[str]] = mapped_column(String(64))
    broker_account: Mapped[Optional[str]] = mapped_column(String(64))

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    contacts: Mapped[List["ContactRecord"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: ContactRecord.date.desc(),
    )

    __table_args__ = (
        CheckConstraint(
            "(broker_account IS NULL AND broker_license_id IS NULL) OR "
            "(broker_account IS NOT NULL AND broker_license_id IS NOT NULL)",
            name="ck_clients_broker_linkage",
        ),
    )

    @property
    def is_provisioned(self) -> bool:
        return bool(self.broker_license_id and self.broker_account)

    def __repr__(self) -> str:
        return f"<ClientRecord id={self.id} status={self.trader_status} v{self.version}>"


# ============================================================================
# CONTACT
# ============================================================================

class ContactRecord(Base):
    """Operator outreach entry. Never updated after insert."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    client: Mapped["ClientRecord"] = relationship(back_populates="contacts")


# ============================================================================
# PAYMENT
# ============================================================================

class PaymentRecord(Base):
    """Canonical record of one provider payment."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    payment_id: Mapped[str] = mapped_column(String(128), nullable=False)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(128))
    payer_id: Mapped[Optional[str]] = mapped_column(String(128))

    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    plan: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(32))
    customer_document: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PaymentStatus.RECEIVED
    )
    sale_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_method: Mapped[Optional[str]] = mapped_column(String(32))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_payments_payment_id"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord payment_id={self.payment_id} status={self.status}>"


__all__ = [
    "Base",
    "PaymentStatus",
    "ContactStatus",
    "ClientRecord",
    "ContactRecord",
    "PaymentRecord",
    "utc_now",
]
