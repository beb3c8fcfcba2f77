# ============================================================================
# Evaluation Desk v1.0.0
# Pydantic Schemas - Data Validation Layer
# ============================================================================

from app.schemas.payment_webhook import HublaWebhookPayload
from app.schemas.client import (
    RegistrationRequest,
    FinishEvaluationRequest,
    ContactRequest,
    ClientOut,
    ReprovedClientOut,
)

__all__ = [
    "HublaWebhookPayload",
    "RegistrationRequest",
    "FinishEvaluationRequest",
    "ContactRequest",
    "ClientOut",
    "ReprovedClientOut",
]
