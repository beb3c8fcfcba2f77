"""
============================================================================
Evaluation Desk v1.0.0
Prometheus Metrics - Desk Observability
============================================================================

Reliability Level: STANDARD
Input Constraints: Label values are short strings
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- desk_webhook_events_total: Payment webhook outcomes
- desk_broker_calls_total: Nelogica API calls by operation and outcome
- desk_evaluation_transitions_total: Evaluation status changes

Recording functions never raise; a failed update is logged and dropped.

============================================================================
"""

import logging

from prometheus_client import Counter

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

WEBHOOK_EVENTS = Counter(
    "desk_webhook_events_total",
    "Payment webhook deliveries by outcome",
    ["outcome"]
)

BROKER_CALLS = Counter(
    "desk_broker_calls_total",
    "Nelogica API calls by operation and outcome",
    ["operation", "outcome"]
)

EVALUATION_TRANSITIONS = Counter(
    "desk_evaluation_transitions_total",
    "Evaluation status transitions",
    ["from_status", "to_status"]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_webhook_event(outcome: str) -> None:
    """
    Record one webhook delivery.

    Args:
        outcome: processed, duplicate, ignored, unauthorized or invalid
    """
    try:
        WEBHOOK_EVENTS.labels(outcome=outcome).inc()
        logger.debug("Metric: webhook_event | outcome=%s", outcome)
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record webhook_event metric | error=%s",
            str(e)
        )


def record_broker_call(operation: str, outcome: str) -> None:
    """Record one broker API call (outcome: success or failure)."""
    try:
        BROKER_CALLS.labels(operation=operation, outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record broker_call metric | error=%s",
            str(e)
        )


def record_evaluation_transition(from_status: str, to_status: str) -> None:
    try:
        EVALUATION_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()
        logger.debug(
            "Metric: evaluation_transition | from=%s | to=%s",
            from_status, to_status
        )
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record evaluation_transition metric | error=%s",
            str(e)
        )


__all__ = [
    "WEBHOOK_EVENTS",
    "BROKER_CALLS",
    "EVALUATION_TRANSITIONS",
    "record_webhook_event",
    "record_broker_call",
    "record_evaluation_transition",
]
