"""
============================================================================
Evaluation Desk v1.0.0
Observability Module - Prometheus Metrics
============================================================================
"""

from app.observability.metrics import (
    WEBHOOK_EVENTS,
    BROKER_CALLS,
    EVALUATION_TRANSITIONS,
    record_webhook_event,
    record_broker_call,
    record_evaluation_transition,
)

__all__ = [
    "WEBHOOK_EVENTS",
    "BROKER_CALLS",
    "EVALUATION_TRANSITIONS",
    "record_webhook_event",
    "record_broker_call",
    "record_evaluation_transition",
]
