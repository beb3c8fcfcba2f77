"""
============================================================================
Evaluation Desk v1.0.0
Plan Catalog - Plan Labels, Risk Profiles and Product Names
============================================================================

Reliability Level: L6 Critical
Input Constraints: Plan labels of the form "FX - <N>K"
Side Effects: None (pure lookups)

The catalog is a closed table. A plan that is not listed is a configuration
gap and fails loudly (EVAL-002); it is never mapped to a default profile.

PRODUCT NAME MAPPING:
    "Trader 25K - Black Arrow" -> "FX - 25K"
    The first "-" delimited segment must read "Trader <N>K" and the derived
    label must be in the catalog.

ERROR CODES:
    - EVAL-002: Unknown plan or unrecognised product name

============================================================================
"""

import re
import logging
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class PlanErrorCode:
    UNKNOWN_PLAN = "EVAL-002"


class UnknownPlanError(Exception):
    """Raised when a plan label or product name has no catalog entry."""

    def __init__(self, plan: str, message: str = ""):
        self.error_code = PlanErrorCode.UNKNOWN_PLAN
        self.plan = plan
        self.message = message or f"Plan {plan!r} has no risk profile mapping"
        super().__init__(f"[{self.error_code}] {self.message}")


# =============================================================================
# Constants
# =============================================================================

# Fixed platform label for purchases coming through the payment webhook
PLATFORM_LABEL = "Black Arrow Pro"

PLAN_PREFIX = "FX"

# Plan label -> broker risk profile id
PLAN_PROFILES: Dict[str, str] = {
    "FX - 5K": "5631e4fb-aa99-404c-b45a-9dd7915de825",
    "FX - 10K": "b4495f41-6f09-4c3b-b34c-0bc8d85f2f8f",
    "FX - 25K": "581f1d7d-b5b5-4c0e-82cf-3f4fd9834bb3",
    "FX - 50K": "e762b216-e00a-4004-9c71-64019ff01997",
    "FX - 100K": "ad7a0f90-210b-4f78-82aa-eebe58401d28",
    "FX - 150K": "392705c5-8306-4e64-bd7a-4028b6ff40f1",
}

PLAN_LABELS: List[str] = list(PLAN_PROFILES.keys())

_PRODUCT_PATTERN = re.compile(r"^Trader\s+(\d+)\s*K$", re.IGNORECASE)


# =============================================================================
# Lookups
# =============================================================================

def resolve_profile_id(plan: str) -> str:
    """
    Map a plan label to its broker risk profile id.

    Raises:
        UnknownPlanError: If the plan is not in PLAN_PROFILES
    """
    profile_id = PLAN_PROFILES.get((plan or "").strip())
    if profile_id is None:
        logger.error(f"[{PlanErrorCode.UNKNOWN_PLAN}] No risk profile for plan | plan={plan}")
        raise UnknownPlanError(plan)
    return profile_id


def is_known_plan(plan: str) -> bool:
    return (plan or "").strip() in PLAN_PROFILES


def extract_plan_code(product_name: str) -> str:
    """
    Derive the plan label from a payment provider product name.

    Args:
        product_name: e.g. "Trader 25K - Black Arrow"

    Returns:
        str: Catalog label, e.g. "FX - 25K"

    Raises:
        UnknownPlanError: If the name does not follow "Trader <N>K" or the
            size has no catalog entry
    """
    head = (product_name or "").split("-")[0].strip()
    match = _PRODUCT_PATTERN.match(head)
    if match is None:
        raise UnknownPlanError(
            product_name,
            f"Product name {product_name!r} does not match 'Trader <N>K'",
        )
    plan = f"{PLAN_PREFIX} - {int(match.group(1))}K"
    if plan not in PLAN_PROFILES:
        raise UnknownPlanError(
            plan,
            f"Product {product_name!r} maps to {plan!r}, which is not in the catalog",
        )
    return plan


def split_name(full_name: str) -> Tuple[str, str]:
    """
    Split a client name into (first, last) for the broker.

    The first whitespace token is the first name; the rest is the last name.
    A single-token name repeats the first name as last name.
    """
    parts = (full_name or "").split()
    if not parts:
        raise ValueError("Client name is empty")
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last


def account_name(client_name: str, plan: str) -> str:
    """Broker account display name: first 20 characters of the name plus plan."""
    return f"{client_name[:20]} - {plan}"


__all__ = [
    "PlanErrorCode",
    "UnknownPlanError",
    "PLATFORM_LABEL",
    "PLAN_PROFILES",
    "PLAN_LABELS",
    "resolve_profile_id",
    "is_known_plan",
    "extract_plan_code",
    "split_name",
    "account_name",
]
