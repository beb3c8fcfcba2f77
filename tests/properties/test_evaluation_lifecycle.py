"""
============================================================================
Evaluation Desk v1.0.0
Property-Based Tests: Evaluation Lifecycle
============================================================================

Reliability Level: L6 Critical

Properties tested:
- Property 1: validate_transition accepts exactly the VALID_TRANSITIONS edges
- Property 2: finish_evaluation sets end_date and cancellation_date to the
  same instant, for any decision and any clock
- Property 3: start_evaluation sets end_date = start_date + window
- Property 4: "Trader <N>K" product names map to "FX - <N>K" iff the plan
  is in the catalog

============================================================================
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.database.models import Base
from app.database.repositories import ClientRepository
from services.broker_service import BrokerService
from services.evaluation_state_machine import (
    EvaluationStatus,
    VALID_TRANSITIONS,
    validate_transition,
)
from services.plan_catalog import PLAN_PROFILES, UnknownPlanError, extract_plan_code


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

status_strategy = st.sampled_from(list(EvaluationStatus))

decision_strategy = st.sampled_from([EvaluationStatus.APPROVED.value, EvaluationStatus.REJECTED.value])

instant_strategy = st.datetimes(
    min_value=datetime(2020, 1, 1),
    max_value=datetime(2035, 12, 31),
).map(lambda dt: dt.replace(microsecond=0, tzinfo=timezone.utc))

window_strategy = st.integers(min_value=1, max_value=365)

size_strategy = st.integers(min_value=1, max_value=1000)


# =============================================================================
# HELPERS
# =============================================================================

class AcceptingApi:
    """Broker fake that accepts every call."""

    def __init__(self):
        self.calls: List[str] = []

    async def set_account_risk(self, *args):
        self.calls.append("set_account_risk")

    async def remove_account(self, *args):
        self.calls.append("remove_account")


def with_client(status: EvaluationStatus, callback):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    db = Session(engine, expire_on_commit=False, autoflush=False)
    try:
        store = ClientRepository(db)
        client = store.create(
            name="Prop Trader",
            email="prop@example.com",
            cpf="52998224725",
            platform="Black Arrow Pro",
            plan="FX - 25K",
        )
        client = store.update(
            client.id,
            client.version,
            trader_status=status.value,
            broker_customer_id="CUS",
            broker_subscription_id="SUB",
            broker_license_id="LIC",
            broker_account="ACC",
        )
        return asyncio.run(callback(client, store))
    finally:
        db.close()
        engine.dispose()


def as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# =============================================================================
# PROPERTY 1: Transition table
# =============================================================================

class TestTransitionTable:
    """
    Property 1: *For any* pair of statuses, validate_transition SHALL accept
    the pair iff it is an edge of VALID_TRANSITIONS.
    """

    @settings(max_examples=100)
    @given(current=status_strategy, target=status_strategy)
    def test_matches_table(self, current, target):
        is_valid, error_code = validate_transition(current, target)

        expected = target in VALID_TRANSITIONS[current]
        assert is_valid == expected
        assert (error_code is None) == expected


# =============================================================================
# PROPERTY 2 & 3: Lifecycle dates
# =============================================================================

class TestLifecycleDates:
    """
    Property 2: finish sets equal end and cancellation dates
    Property 3: start sets end_date = start_date + window
    """

    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(decision=decision_strategy, now=instant_strategy)
    def test_finish_dates_equal(self, decision, now):
        service = BrokerService(AcceptingApi(), clock=lambda: now)

        async def finish(client, store):
            return await service.finish_evaluation(client, decision, store)

        updated = with_client(EvaluationStatus.IN_PROGRESS, finish)

        assert updated.trader_status == decision
        assert as_utc(updated.end_date) == now
        assert as_utc(updated.cancellation_date) == now

    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(now=instant_strategy, window=window_strategy)
    def test_start_window(self, now, window):
        service = BrokerService(AcceptingApi(), evaluation_window_days=window, clock=lambda: now)

        async def start(client, store):
            return await service.start_evaluation(client, store)

        updated = with_client(EvaluationStatus.WAITING, start)

        assert updated.trader_status == EvaluationStatus.IN_PROGRESS.value
        assert as_utc(updated.start_date) == now
        assert as_utc(updated.end_date) - as_utc(updated.start_date) == timedelta(days=window)


# =============================================================================
# PROPERTY 4: Product name mapping
# =============================================================================

class TestProductNames:
    """
    Property 4: *For any* size N, "Trader <N>K - ..." SHALL map to
    "FX - <N>K" when that plan is in the catalog and raise EVAL-002 otherwise.
    """

    @settings(max_examples=100)
    @given(size=size_strategy, suffix=st.sampled_from(["Black Arrow", "Black Arrow Pro", "Promo"]))
    def test_catalog_membership(self, size, suffix):
        plan = f"FX - {size}K"
        product = f"Trader {size}K - {suffix}"

        if plan in PLAN_PROFILES:
            assert extract_plan_code(product) == plan
        else:
            with pytest.raises(UnknownPlanError) as exc_info:
                extract_plan_code(product)
            assert exc_info.value.error_code == "EVAL-002"
