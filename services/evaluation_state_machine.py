"""
============================================================================
Evaluation Desk v1.0.0
Evaluation Lifecycle State Machine
============================================================================

Reliability Level: L6 Critical
Traceability: Every rejected transition is logged with the client id

EVALUATION LIFECYCLE:
    WAITING → IN_PROGRESS (startEvaluation, risk profile applied remotely)
    IN_PROGRESS → APPROVED (finishEvaluation "Aprovado", account removed)
    IN_PROGRESS → REJECTED (finishEvaluation "Reprovado", account removed)

    Terminal States: APPROVED, REJECTED (re-evaluation is a new client record)

ERROR CODES:
    - EVAL-003: Invalid state transition attempted

============================================================================
"""

from typing import Optional, Dict, List, Tuple, Union
from enum import Enum
import logging

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class EvaluationStateErrorCode:
    """State machine error codes for audit logging."""
    INVALID_TRANSITION = "EVAL-003"


# =============================================================================
# Enums
# =============================================================================

class EvaluationStatus(str, Enum):
    """
    Client.trader_status values.

    Values are the labels stored and displayed by the desk.
    """
    WAITING = "Aguardando Inicio"
    IN_PROGRESS = "Em Curso"
    APPROVED = "Aprovado"
    REJECTED = "Reprovado"


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed (EVAL-003)."""

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.error_code = EvaluationStateErrorCode.INVALID_TRANSITION
        self.current = current
        self.target = target
        self.message = message or f"Cannot move evaluation from {current!r} to {target!r}"
        super().__init__(f"[{self.error_code}] {self.message}")


# =============================================================================
# VALID_TRANSITIONS Constant
# =============================================================================

VALID_TRANSITIONS: Dict[EvaluationStatus, List[EvaluationStatus]] = {
    EvaluationStatus.WAITING: [EvaluationStatus.IN_PROGRESS],
    EvaluationStatus.IN_PROGRESS: [EvaluationStatus.APPROVED, EvaluationStatus.REJECTED],
    EvaluationStatus.APPROVED: [],  # Terminal
    EvaluationStatus.REJECTED: [],  # Terminal
}

TERMINAL_STATES: List[EvaluationStatus] = [
    EvaluationStatus.APPROVED,
    EvaluationStatus.REJECTED,
]

# Decisions accepted by finish_evaluation
FINAL_DECISIONS: List[EvaluationStatus] = list(TERMINAL_STATES)


# =============================================================================
# Helpers
# =============================================================================

StatusLike = Union[EvaluationStatus, str]


def coerce_status(value: StatusLike) -> EvaluationStatus:
    """
    Accept an EvaluationStatus, its stored label or its member name.

    Raises:
        ValueError: If the value names no status
    """
    if isinstance(value, EvaluationStatus):
        return value
    try:
        return EvaluationStatus(value)
    except ValueError:
        try:
            return EvaluationStatus[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown evaluation status: {value!r}")


def validate_transition(
    current_status: StatusLike,
    target_status: StatusLike,
    client_id: Optional[str] = None
) -> Tuple[bool, Optional[str]]:
    """
    Check a status change against VALID_TRANSITIONS.

    Returns:
        (True, None) if allowed, (False, "EVAL-003") otherwise

    Side Effects: Logs EVAL-003 on invalid transitions
    """
    try:
        current = coerce_status(current_status)
        target = coerce_status(target_status)
    except ValueError as e:
        logger.error(
            f"[{EvaluationStateErrorCode.INVALID_TRANSITION}] {e} | client_id={client_id}"
        )
        return (False, EvaluationStateErrorCode.INVALID_TRANSITION)

    valid_targets = VALID_TRANSITIONS.get(current, [])
    if target not in valid_targets:
        valid_str = "/".join(s.value for s in valid_targets) or "NONE (terminal state)"
        logger.error(
            f"[{EvaluationStateErrorCode.INVALID_TRANSITION}] "
            f"Invalid evaluation transition: {current.value} → {target.value} | "
            f"valid={valid_str} | client_id={client_id}"
        )
        return (False, EvaluationStateErrorCode.INVALID_TRANSITION)

    logger.debug(
        f"[EVAL-STATE] Transition validated: {current.value} → {target.value} | "
        f"client_id={client_id}"
    )
    return (True, None)


def require_transition(
    current_status: StatusLike,
    target_status: StatusLike,
    client_id: Optional[str] = None
) -> EvaluationStatus:
    """
    Like validate_transition, but raises.

    Returns:
        The target status as an EvaluationStatus

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    is_valid, _error_code = validate_transition(current_status, target_status, client_id)
    if not is_valid:
        raise InvalidTransitionError(str(_label(current_status)), str(_label(target_status)))
    return coerce_status(target_status)


def status_from_decision(decision: StatusLike) -> EvaluationStatus:
    """
    Map a finish decision ("Aprovado"/"Reprovado") to a terminal status.

    Raises:
        InvalidTransitionError: For anything other than APPROVED or REJECTED
    """
    try:
        status = coerce_status(decision)
    except ValueError:
        status = None
    if status not in FINAL_DECISIONS:
        raise InvalidTransitionError(
            EvaluationStatus.IN_PROGRESS.value,
            str(_label(decision)),
            f"Evaluation can only finish as Aprovado or Reprovado, got {_label(decision)!r}",
        )
    return status


def get_valid_transitions(status: StatusLike) -> List[EvaluationStatus]:
    return list(VALID_TRANSITIONS.get(coerce_status(status), []))


def is_terminal_state(status: StatusLike) -> bool:
    return coerce_status(status) in TERMINAL_STATES


def _label(value: StatusLike) -> str:
    return value.value if isinstance(value, EvaluationStatus) else str(value)


__all__ = [
    "EvaluationStateErrorCode",
    "EvaluationStatus",
    "InvalidTransitionError",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "FINAL_DECISIONS",
    "coerce_status",
    "validate_transition",
    "require_transition",
    "status_from_decision",
    "get_valid_transitions",
    "is_terminal_state",
]
