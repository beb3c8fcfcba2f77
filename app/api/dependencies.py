"""
============================================================================
Evaluation Desk v1.0.0
API Dependencies - Per-request Service Construction
============================================================================

Reliability Level: STANDARD
Input Constraints: Process singletons built by the app lifespan
Side Effects: None

Request-scoped services wrap the request's database session; the broker
service and the mailer are process singletons owned by app.main.

============================================================================
"""

import logging
from datetime import datetime, timezone

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.repositories import ClientRepository, PaymentRepository
from app.database.session import get_db
from services.broker_service import BrokerService
from services.desk_config import get_desk_config
from services.evaluation_queries import EvaluationQueries
from services.notification_service import RegistrationMailer
from services.payment_webhook import PaymentWebhookHandler
from services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


def get_mailer() -> RegistrationMailer:
    """Global mailer, or one built from configuration before startup."""
    from app.main import get_registration_mailer

    mailer = get_registration_mailer()
    if mailer is not None:
        return mailer
    return RegistrationMailer(get_desk_config().mail)


def get_broker_service() -> BrokerService:
    """
    Global broker service created by the lifespan.

    Raises:
        HTTPException: 503 if the application has not started
    """
    from app.main import get_broker_service as get_global_broker_service

    service = get_global_broker_service()
    if service is None:
        logger.error("[BRK-SVC] Broker service requested before startup")
        raise HTTPException(
            status_code=503,
            detail={
                "error_code": "BRK-SVC-503",
                "message": "Broker service not initialized",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
    return service


def get_webhook_handler(
    db: Session = Depends(get_db),
    mailer: RegistrationMailer = Depends(get_mailer),
) -> PaymentWebhookHandler:
    config = get_desk_config()
    return PaymentWebhookHandler(
        payments=PaymentRepository(db),
        secret=config.webhook.hubla_secret,
        portal_url=config.webhook.client_portal_url,
        mailer=mailer,
    )


def get_registration_service(db: Session = Depends(get_db)) -> RegistrationService:
    return RegistrationService(db)


def get_evaluation_queries(db: Session = Depends(get_db)) -> EvaluationQueries:
    return EvaluationQueries(db)


def get_client_repository(db: Session = Depends(get_db)) -> ClientRepository:
    return ClientRepository(db)
