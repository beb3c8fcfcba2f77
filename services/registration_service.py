"""
============================================================================
Evaluation Desk v1.0.0
Registration Service - Portal Registration of Paid Customers
============================================================================

Reliability Level: L6 Critical
Input Constraints: Payment must be in status "received" to be consumed
Side Effects: Creates clients, completes payments (one transaction)

FLOW:
    webhook stores payment (received)
        → portal validates the payment id
        → portal submits the registration form
        → client created in WAITING + payment completed (atomic)

ERROR CODES:
    - REG-001: Required query parameter missing
    - REG-002: Payment not found or already consumed
    - REG-003: Registration data rejected (malformed CPF)

============================================================================
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.database.models import ClientRecord, PaymentRecord, PaymentStatus
from app.database.repositories import ClientRepository, PaymentRepository
from app.schemas.client import RegistrationRequest
from services.evaluation_state_machine import EvaluationStatus
from services.plan_catalog import UnknownPlanError, is_known_plan

logger = logging.getLogger(__name__)


class RegistrationErrorCode:
    MISSING_PARAMETER = "REG-001"
    PAYMENT_NOT_FOUND = "REG-002"
    INVALID_REGISTRATION = "REG-003"


class RegistrationError(Exception):
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class RegistrationService:
    """Portal-facing registration operations over one database session."""

    def __init__(self, db: Session):
        self.db = db
        self.clients = ClientRepository(db)
        self.payments = PaymentRepository(db)

    def validate_payment(self, payment_id: Optional[str]) -> PaymentRecord:
        """
        Return the payment if it can still be registered.

        Raises:
            RegistrationError: REG-001 if no id given, REG-002 if the payment
                is unknown or already completed
        """
        if not payment_id or not payment_id.strip():
            raise RegistrationError(
                RegistrationErrorCode.MISSING_PARAMETER, "ID do pagamento não fornecido"
            )
        payment = self.payments.find_by_payment_id(
            payment_id.strip(), status=PaymentStatus.RECEIVED
        )
        if payment is None:
            logger.info(f"[REG] Payment not registrable | payment_id={payment_id}")
            raise RegistrationError(
                RegistrationErrorCode.PAYMENT_NOT_FOUND,
                "Pagamento não encontrado ou já processado",
            )
        return payment

    def process_registration(self, request: RegistrationRequest) -> ClientRecord:
        """
        Create the WAITING client and consume the payment atomically.

        Raises:
            RegistrationError: REG-002 / REG-003
            UnknownPlanError: If the plan is not in the catalog
            DuplicateActiveEvaluationError: If the CPF is already being evaluated
        """
        payment = self.validate_payment(request.payment_id)
        if not is_known_plan(request.plan):
            raise UnknownPlanError(request.plan)

        try:
            client = self.clients.create(
                commit=False,
                name=request.name,
                email=request.email,
                cpf=request.cpf,
                phone=request.phone,
                birth_date=request.birth_date,
                address=request.address,
                zip_code=request.zip_code,
                platform=request.platform,
                plan=request.plan,
                observation=request.observation,
                start_date=request.start_date,
                trader_status=EvaluationStatus.WAITING.value,
            )
            if not self.payments.mark_completed(payment, commit=False):
                raise RegistrationError(
                    RegistrationErrorCode.PAYMENT_NOT_FOUND,
                    "Pagamento não encontrado ou já processado",
                )
            self.db.commit()
        except ValueError as e:
            self.db.rollback()
            raise RegistrationError(RegistrationErrorCode.INVALID_REGISTRATION, str(e))
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"[REG] Registration processed | payment_id={payment.payment_id} | "
            f"client_id={client.id} | plan={client.plan}"
        )
        return client

    def check_client(
        self,
        email: Optional[str] = None,
        document: Optional[str] = None
    ) -> Optional[ClientRecord]:
        """Most recent client matching the e-mail or CPF, if any."""
        matches = self._find(email, document)
        return matches[0] if matches else None

    def client_evaluations(
        self,
        email: Optional[str] = None,
        cpf: Optional[str] = None
    ) -> List[ClientRecord]:
        """Every evaluation of a person, newest first."""
        return self._find(email, cpf)

    def _find(self, email: Optional[str], cpf: Optional[str]) -> List[ClientRecord]:
        if not email and not cpf:
            raise RegistrationError(
                RegistrationErrorCode.MISSING_PARAMETER, "Email ou CPF são necessários"
            )
        return self.clients.find_by_email_or_cpf(email=email, cpf=cpf)


__all__ = [
    "RegistrationErrorCode",
    "RegistrationError",
    "RegistrationService",
]
