"""
============================================================================
Evaluation Desk v1.0.0
Unit Tests: Plan Catalog
============================================================================

Reliability Level: L6 Critical

Tests:
- Plan label → risk profile lookup (EVAL-002 on unknown plans)
- Product name → plan label extraction
- Name splitting and account naming for the broker

============================================================================
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.plan_catalog import (
    PLAN_PROFILES,
    UnknownPlanError,
    account_name,
    extract_plan_code,
    is_known_plan,
    resolve_profile_id,
    split_name,
)


class TestResolveProfile:
    """Closed plan table."""

    @pytest.mark.parametrize("plan", sorted(PLAN_PROFILES))
    def test_every_listed_plan_resolves(self, plan):
        assert resolve_profile_id(plan) == PLAN_PROFILES[plan]

    def test_surrounding_whitespace_ignored(self):
        assert resolve_profile_id("  FX - 50K ") == PLAN_PROFILES["FX - 50K"]

    @pytest.mark.parametrize("plan", ["FX - 7K", "fx - 5k", "", None])
    def test_unknown_plan_raises(self, plan):
        with pytest.raises(UnknownPlanError) as exc_info:
            resolve_profile_id(plan)
        assert exc_info.value.error_code == "EVAL-002"

    def test_is_known_plan(self):
        assert is_known_plan("FX - 100K")
        assert not is_known_plan("FX - 200K")


class TestExtractPlanCode:
    """Provider product names."""

    @pytest.mark.parametrize("product,plan", [
        ("Trader 25K - Black Arrow", "FX - 25K"),
        ("Trader 5K", "FX - 5K"),
        ("trader 150k - Black Arrow Pro", "FX - 150K"),
        ("Trader 010K - Black Arrow", "FX - 10K"),
    ])
    def test_known_products(self, product, plan):
        assert extract_plan_code(product) == plan

    def test_size_not_in_catalog(self):
        with pytest.raises(UnknownPlanError) as exc_info:
            extract_plan_code("Trader 30K - Black Arrow")
        assert exc_info.value.plan == "FX - 30K"

    @pytest.mark.parametrize("product", [
        "Mentoria Black Arrow",
        "Trader - 25K",
        "Trader 25 - Black Arrow",
        "",
    ])
    def test_unrecognised_names(self, product):
        with pytest.raises(UnknownPlanError):
            extract_plan_code(product)


class TestNames:
    def test_split_first_and_rest(self):
        assert split_name("Maria da Silva Souza") == ("Maria", "da Silva Souza")

    def test_single_token_repeats(self):
        assert split_name("Cher") == ("Cher", "Cher")

    def test_empty_name_raises(self):
        with pytest.raises(ValueError):
            split_name("   ")

    def test_account_name_truncates_client_name(self):
        assert account_name("Maximiliano Albuquerque Neto", "FX - 5K") == (
            "Maximiliano Albuquer - FX - 5K"
        )
