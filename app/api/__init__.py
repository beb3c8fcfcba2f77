# ============================================================================
# Evaluation Desk v1.0.0
# API Routes Module
# ============================================================================

from app.api.webhook import router as webhook_router
from app.api.registration import router as registration_router
from app.api.evaluations import router as evaluations_router

__all__ = ["webhook_router", "registration_router", "evaluations_router"]
