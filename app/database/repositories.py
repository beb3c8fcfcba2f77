"""
============================================================================
Evaluation Desk v1.0.0
Repositories - Store Operations for Clients, Payments and Contacts
============================================================================

Reliability Level: L6 Critical
Input Constraints: Caller owns the SQLAlchemy Session
Side Effects: Database reads and writes, one commit per operation

OPERATIONS:
    create / update (version checked) / find-by-unique-key /
    find-many-with-filter / transactional batch insert

ERROR CODES:
    - DB-001: Stale write (client version changed since it was read)
    - DB-002: Record not found
    - DB-003: CPF already has an active evaluation

============================================================================
"""

import re
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.database.models import (
    ClientRecord,
    ContactRecord,
    PaymentRecord,
    PaymentStatus,
    utc_now,
)
from services.evaluation_state_machine import EvaluationStatus

logger = logging.getLogger(__name__)


# ============================================================================
# Error Codes & Exceptions
# ============================================================================

class StoreErrorCode:
    STALE_RECORD = "DB-001"
    NOT_FOUND = "DB-002"
    DUPLICATE_ACTIVE = "DB-003"


class StoreError(Exception):
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class StaleRecordError(StoreError):
    """Client was modified by someone else since it was read."""

    def __init__(self, client_id: str, expected_version: int):
        self.client_id = client_id
        self.expected_version = expected_version
        super().__init__(
            StoreErrorCode.STALE_RECORD,
            f"Client {client_id} changed since version {expected_version}; reload and retry",
        )


class RecordNotFoundError(StoreError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(StoreErrorCode.NOT_FOUND, f"{kind} {key} not found")


class DuplicateActiveEvaluationError(StoreError):
    def __init__(self, cpf: str, client_id: str):
        self.cpf = cpf
        self.client_id = client_id
        super().__init__(
            StoreErrorCode.DUPLICATE_ACTIVE,
            f"CPF {cpf} already has an active evaluation (client {client_id})",
        )


# Statuses during which a CPF may not be registered again
ACTIVE_STATUSES = (EvaluationStatus.WAITING.value, EvaluationStatus.IN_PROGRESS.value)

CPF_LENGTH = 11


def normalize_cpf(raw: str) -> str:
    """
    Strip formatting from a CPF.

    Raises:
        ValueError: If the result is not exactly 11 digits
    """
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) != CPF_LENGTH:
        raise ValueError(f"CPF must have {CPF_LENGTH} digits, got {len(digits)}")
    return digits


# ============================================================================
# Client Repository
# ============================================================================

class ClientRepository:
    """Store operations for ClientRecord."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str) -> ClientRecord:
        client = self.db.get(ClientRecord, client_id)
        if client is None:
            raise RecordNotFoundError("Client", client_id)
        return client

    def find_active_by_cpf(self, cpf: str) -> Optional[ClientRecord]:
        stmt = (
            select(ClientRecord)
            .where(ClientRecord.cpf == cpf, ClientRecord.trader_status.in_(ACTIVE_STATUSES))
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def _build(self, fields: Dict[str, Any]) -> ClientRecord:
        values = dict(fields)
        values["cpf"] = normalize_cpf(values.get("cpf", ""))
        values.setdefault("trader_status", EvaluationStatus.WAITING.value)
        active = self.find_active_by_cpf(values["cpf"])
        if active is not None:
            raise DuplicateActiveEvaluationError(values["cpf"], active.id)
        return ClientRecord(**values)

    def create(self, commit: bool = True, **fields: Any) -> ClientRecord:
        """
        Insert a client (status WAITING unless given).

        Raises:
            ValueError: If the CPF is malformed
            DuplicateActiveEvaluationError: If the CPF has an active evaluation
        """
        client = self._build(fields)
        self.db.add(client)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        logger.info(
            f"[DESK-STORE] Client created | client_id={client.id} | plan={client.plan}"
        )
        return client

    def bulk_create(self, rows: Iterable[Dict[str, Any]]) -> List[ClientRecord]:
        """Insert many clients in one transaction; any failure rolls back all."""
        created: List[ClientRecord] = []
        try:
            for row in rows:
                client = self._build(row)
                self.db.add(client)
                self.db.flush()
                created.append(client)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"[DESK-STORE] Batch insert committed | count={len(created)}")
        return created

    def update(self, client_id: str, expected_version: int, **values: Any) -> ClientRecord:
        """
        Write fields only if the client is still at expected_version.

        Raises:
            StaleRecordError: If the version moved on
            RecordNotFoundError: If the client does not exist
        """
        values["version"] = expected_version + 1
        values["updated_at"] = utc_now()
        stmt = (
            update(ClientRecord)
            .where(ClientRecord.id == client_id, ClientRecord.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self.db.rollback()
            if self.db.get(ClientRecord, client_id) is None:
                raise RecordNotFoundError("Client", client_id)
            logger.warning(
                f"[{StoreErrorCode.STALE_RECORD}] Stale client write | "
                f"client_id={client_id} | expected_version={expected_version}"
            )
            raise StaleRecordError(client_id, expected_version)
        self.db.commit()
        client = self.get(client_id)
        self.db.refresh(client)
        return client

    def delete(self, client_id: str) -> None:
        """Hard delete; contacts go with the client."""
        client = self.get(client_id)
        self.db.delete(client)
        self.db.commit()
        logger.info(f"[DESK-STORE] Client deleted | client_id={client_id}")

    def find_many(
        self,
        status: Optional[str] = None,
        order_by: Any = None,
        with_contacts: bool = False,
        limit: Optional[int] = None
    ) -> List[ClientRecord]:
        stmt = select(ClientRecord)
        if status is not None:
            stmt = stmt.where(ClientRecord.trader_status == status)
        if with_contacts:
            stmt = stmt.options(selectinload(ClientRecord.contacts))
        stmt = stmt.order_by(order_by if order_by is not None else ClientRecord.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt).all())

    def find_by_email_or_cpf(
        self,
        email: Optional[str] = None,
        cpf: Optional[str] = None
    ) -> List[ClientRecord]:
        """All clients matching either key, newest first."""
        conditions = []
        if email:
            conditions.append(ClientRecord.email == email.strip())
        if cpf:
            digits = re.sub(r"\D", "", cpf)
            if digits:
                conditions.append(ClientRecord.cpf == digits)
        if not conditions:
            return []
        stmt = select(ClientRecord).where(or_(*conditions)).order_by(ClientRecord.created_at.desc())
        return list(self.db.scalars(stmt).all())

    def count(self, statuses: Optional[Iterable[str]] = None) -> int:
        stmt = select(func.count(ClientRecord.id))
        if statuses is not None:
            stmt = stmt.where(ClientRecord.trader_status.in_(list(statuses)))
        return int(self.db.scalar(stmt) or 0)

    def count_by_plan(self, statuses: Optional[Iterable[str]] = None) -> Dict[str, int]:
        stmt = select(ClientRecord.plan, func.count(ClientRecord.id)).group_by(ClientRecord.plan)
        if statuses is not None:
            stmt = stmt.where(ClientRecord.trader_status.in_(list(statuses)))
        return {plan: int(total) for plan, total in self.db.execute(stmt).all()}

    def count_started_between(self, start: datetime, end: datetime) -> int:
        stmt = select(func.count(ClientRecord.id)).where(
            ClientRecord.start_date >= start, ClientRecord.start_date <= end
        )
        return int(self.db.scalar(stmt) or 0)


# ============================================================================
# Payment Repository
# ============================================================================

class PaymentRepository:
    """Store operations for PaymentRecord."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_payment_id(
        self,
        payment_id: str,
        status: Optional[str] = None
    ) -> Optional[PaymentRecord]:
        stmt = select(PaymentRecord).where(PaymentRecord.payment_id == payment_id)
        if status is not None:
            stmt = stmt.where(PaymentRecord.status == status)
        return self.db.scalars(stmt).first()

    def count(self) -> int:
        return int(self.db.scalar(select(func.count(PaymentRecord.id))) or 0)

    def create_if_absent(self, **values: Any) -> Tuple[PaymentRecord, bool]:
        """
        Insert a payment unless its payment_id is already stored.

        Returns:
            (record, created). A concurrent insert of the same id loses the
            unique constraint race and returns the stored record.
        """
        payment_id = values["payment_id"]
        existing = self.find_by_payment_id(payment_id)
        if existing is not None:
            return existing, False

        values.setdefault("status", PaymentStatus.RECEIVED)
        payment = PaymentRecord(**values)
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_by_payment_id(payment_id)
            if existing is None:
                raise
            logger.info(
                f"[DESK-STORE] Concurrent payment insert resolved | payment_id={payment_id}"
            )
            return existing, False
        return payment, True

    def mark_completed(self, payment: PaymentRecord, commit: bool = True) -> bool:
        """
        Move a received payment to completed.

        Returns:
            False if the payment was no longer received (already consumed)
        """
        stmt = (
            update(PaymentRecord)
            .where(
                PaymentRecord.id == payment.id,
                PaymentRecord.status == PaymentStatus.RECEIVED,
            )
            .values(status=PaymentStatus.COMPLETED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            logger.warning(
                f"[DESK-STORE] Payment already consumed | payment_id={payment.payment_id}"
            )
            return False
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        self.db.refresh(payment)
        return True


# ============================================================================
# Contact Repository
# ============================================================================

class ContactRepository:
    """Append-only outreach log."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        client_id: str,
        status: str,
        date: datetime,
        notes: Optional[str] = None
    ) -> ContactRecord:
        if self.db.get(ClientRecord, client_id) is None:
            raise RecordNotFoundError("Client", client_id)
        contact = ContactRecord(client_id=client_id, status=status, date=date, notes=notes)
        self.db.add(contact)
        self.db.commit()
        return contact

    def history(self, client_id: str) -> List[ContactRecord]:
        stmt = (
            select(ContactRecord)
            .where(ContactRecord.client_id == client_id)
            .order_by(ContactRecord.date.desc(), ContactRecord.id.desc())
        )
        return list(self.db.scalars(stmt).all())


__all__ = [
    "StoreErrorCode",
    "StoreError",
    "StaleRecordError",
    "RecordNotFoundError",
    "DuplicateActiveEvaluationError",
    "ACTIVE_STATUSES",
    "normalize_cpf",
    "ClientRepository",
    "PaymentRepository",
    "ContactRepository",
]
