"""
============================================================================
Evaluation Desk v1.0.0
Evaluation Queries - Operator Lists, Contact Log and Dashboard Figures
============================================================================

Reliability Level: L5 Standard
Input Constraints: One database session per instance
Side Effects: Reads; add_contact inserts one contacts row

============================================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.database.models import ClientRecord, ContactRecord, ContactStatus
from app.database.repositories import ClientRepository, ContactRepository
from services.evaluation_state_machine import EvaluationStatus

logger = logging.getLogger(__name__)

RECENT_CLIENTS_LIMIT = 5
MONTHS_IN_CHART = 6

MONTH_LABELS = (
    "jan", "fev", "mar", "abr", "mai", "jun",
    "jul", "ago", "set", "out", "nov", "dez",
)


def format_rate(numerator: int, denominator: int) -> str:
    """Percentage with one decimal; "0.0" when there is nothing to divide."""
    if denominator <= 0:
        return "0.0"
    return f"{numerator / denominator * 100:.1f}"


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        next_start = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(microseconds=1)


def previous_months(now: datetime, count: int) -> List[Tuple[int, int]]:
    """(year, month) pairs, oldest first, ending with the month of now."""
    year, month = now.year, now.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


class EvaluationQueries:
    """Read models behind the operator screens."""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clients = ClientRepository(db)
        self.contacts = ContactRepository(db)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def awaiting(self) -> List[ClientRecord]:
        return self.clients.find_many(
            status=EvaluationStatus.WAITING.value,
            order_by=ClientRecord.created_at.desc(),
        )

    def in_progress(self) -> List[ClientRecord]:
        return self.clients.find_many(
            status=EvaluationStatus.IN_PROGRESS.value,
            order_by=ClientRecord.start_date.asc(),
        )

    def reproved(self) -> List[ClientRecord]:
        """Rejected clients with their contact history loaded."""
        return self.clients.find_many(
            status=EvaluationStatus.REJECTED.value,
            order_by=ClientRecord.cancellation_date.desc(),
            with_contacts=True,
        )

    # ------------------------------------------------------------------
    # Contact log
    # ------------------------------------------------------------------

    def add_contact(
        self,
        client_id: str,
        status: ContactStatus,
        date: datetime,
        notes: Optional[str] = None
    ) -> ContactRecord:
        """
        Append an outreach entry.

        Raises:
            RecordNotFoundError: If the client does not exist
        """
        contact = self.contacts.add(
            client_id=client_id,
            status=ContactStatus(status).value,
            date=date,
            notes=notes,
        )
        logger.info(
            f"[DESK-CONTACT] Contact logged | client_id={client_id} | status={contact.status}"
        )
        return contact

    def contact_history(self, client_id: str) -> List[ContactRecord]:
        self.clients.get(client_id)
        return self.contacts.history(client_id)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard_stats(self) -> Dict[str, Any]:
        approved = EvaluationStatus.APPROVED.value
        finished = [approved, EvaluationStatus.REJECTED.value]

        completed_clients = self.clients.count(finished)
        approved_clients = self.clients.count([approved])

        finished_by_plan = self.clients.count_by_plan(finished)
        approved_by_plan = self.clients.count_by_plan([approved])
        plan_rates = sorted(
            (
                (plan, approved_by_plan.get(plan, 0) / total * 100 if total else 0.0)
                for plan, total in finished_by_plan.items()
            ),
            key=lambda item: item[1],
            reverse=True,
        )

        return {
            "totalClients": self.clients.count(),
            "awaitingClients": self.clients.count([EvaluationStatus.WAITING.value]),
            "inEvaluationClients": self.clients.count([EvaluationStatus.IN_PROGRESS.value]),
            "completedClients": completed_clients,
            "approvalRate": format_rate(approved_clients, completed_clients),
            "planApprovalRates": [
                {"plan": plan, "rate": f"{rate:.1f}"} for plan, rate in plan_rates
            ],
        }

    def clients_by_plan(self) -> List[Dict[str, Any]]:
        return [
            {"plan": plan, "total": total}
            for plan, total in sorted(self.clients.count_by_plan().items())
        ]

    def evaluations_by_month(self) -> List[Dict[str, Any]]:
        """Evaluations started per calendar month (UTC), last six months."""
        result = []
        for year, month in previous_months(self._clock(), MONTHS_IN_CHART):
            start, end = month_bounds(year, month)
            result.append({
                "month": MONTH_LABELS[month - 1],
                "year": year,
                "total": self.clients.count_started_between(start, end),
            })
        return result

    def recent_clients(self, limit: int = RECENT_CLIENTS_LIMIT) -> List[ClientRecord]:
        return self.clients.find_many(limit=limit)


__all__ = [
    "EvaluationQueries",
    "format_rate",
    "month_bounds",
    "previous_months",
]
