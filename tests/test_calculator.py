"""Tests for the shared returns and withdrawal arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from zaron.calculator import (
    GraduatedPenaltyTier,
    InvestmentSnapshot,
    ManagementFeePolicy,
    calculate_withdrawal_quote,
    current_holding_year,
    parse_fee_policy,
    parse_penalty_tiers,
    penalty_percentage_for,
    project_returns,
    projection_to_dict,
    quote_to_dict,
    resolve_penalty_percentage,
    to_decimal,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
TIERS = parse_penalty_tiers(
    [
        {"year": 1, "penalty_percentage": 8},
        {"year": 2, "penalty_percentage": 5},
        {"year": 3, "penalty_percentage": 3},
    ]
)
ONGOING_FEE = ManagementFeePolicy(percentage=Decimal("1"), deduction_type="ongoing")


def _snapshot(**overrides) -> InvestmentSnapshot:
    values = {
        "principal": Decimal("200000"),
        "invested_at": NOW - timedelta(days=822),
        "rental_yield_earned": Decimal("18000"),
        "penalty_rate": Decimal("0"),
        "penalty_tiers": tuple(TIERS),
    }
    values.update(overrides)
    return InvestmentSnapshot(**values)


def test_early_withdrawal_in_third_year_uses_matching_tier():
    quote = calculate_withdrawal_quote(_snapshot(), ONGOING_FEE, now=NOW)

    assert quote.holding_year == 3
    assert quote.penalty_percentage_applied == Decimal("3")
    assert quote.penalty_amount == Decimal("6000")
    assert quote.total_amount == Decimal("218000")
    assert quote.management_fee_amount == Decimal("2180")
    assert quote.net_withdrawal_amount == Decimal("209820")
    assert quote.is_payable


def test_matured_withdrawal_is_penalty_free():
    quote = calculate_withdrawal_quote(_snapshot(is_after_maturity=True), ONGOING_FEE, now=NOW)

    assert quote.penalty_amount == 0
    assert quote.penalty_percentage_applied == 0
    assert quote.net_withdrawal_amount == Decimal("215820")


def test_flat_rate_applies_when_no_tier_matches_the_year():
    tiers = parse_penalty_tiers([{"year": 1, "penalty_percentage": 10}, {"year": 2, "penalty_percentage": 5}])

    assert resolve_penalty_percentage(3, tiers, 2) == Decimal("2")
    assert resolve_penalty_percentage(2, tiers, 2) == Decimal("5")
    assert resolve_penalty_percentage(3, [], None) == 0


def test_penalty_scales_with_principal_and_percentage():
    single = calculate_withdrawal_quote(_snapshot(), None, now=NOW)
    double = calculate_withdrawal_quote(_snapshot(principal=Decimal("400000")), None, now=NOW)
    doubled_rate = calculate_withdrawal_quote(
        _snapshot(penalty_tiers=(GraduatedPenaltyTier(year=3, penalty_percentage=Decimal("6")),)),
        None,
        now=NOW,
    )

    assert double.penalty_amount == single.penalty_amount * 2
    assert doubled_rate.penalty_amount == single.penalty_amount * 2


def test_upfront_fee_is_not_charged_again_on_withdrawal():
    policy = ManagementFeePolicy(percentage=Decimal("25"), deduction_type="upfront")

    quote = calculate_withdrawal_quote(_snapshot(), policy, now=NOW)

    assert quote.management_fee_amount == 0
    assert quote.net_withdrawal_amount == Decimal("212000")


def test_net_amount_is_reported_unclamped_when_charges_exceed_value():
    policy = ManagementFeePolicy(percentage=Decimal("100"), deduction_type="ongoing")

    quote = calculate_withdrawal_quote(_snapshot(), policy, now=NOW)

    assert quote.net_withdrawal_amount == Decimal("-6000")
    assert not quote.is_payable


def test_holding_year_boundaries_floor_partial_years():
    start = NOW - timedelta(days=365)

    assert current_holding_year(start, NOW) == 1
    assert current_holding_year(NOW - timedelta(days=366), NOW) == 2
    assert current_holding_year(NOW + timedelta(days=3), NOW) == 1
    assert penalty_percentage_for(start, NOW, TIERS) == Decimal("8")


def test_malformed_tiers_and_fee_data_are_treated_as_absent():
    tiers = parse_penalty_tiers(
        [
            {"year": "two", "penalty_percentage": 5},
            {"year": 0, "penalty_percentage": 5},
            {"year": 1, "penalty_percentage": 150},
            {"year": 2, "penaltyPercentage": "4"},
            {"year": 2, "penalty_percentage": 9},
            "junk",
        ]
    )

    assert tiers == [GraduatedPenaltyTier(year=2, penalty_percentage=Decimal("4"))]
    assert parse_penalty_tiers("not a list") == []
    assert parse_fee_policy({"percentage": "abc"}) is None
    assert parse_fee_policy({"percentage": 1, "deduction_type": "monthly"}) is None
    assert parse_fee_policy(None) is None
    assert to_decimal("nan") == 0
    assert to_decimal(None, default=Decimal("7")) == Decimal("7")


def test_quote_is_idempotent_for_the_same_moment():
    first = quote_to_dict(calculate_withdrawal_quote(_snapshot(), ONGOING_FEE, now=NOW))
    second = quote_to_dict(calculate_withdrawal_quote(_snapshot(), ONGOING_FEE, now=NOW))

    assert first == second


def test_projection_is_linear_in_holding_years():
    projection = project_returns(10, "1000", 8, 5, 5, 10)

    assert projection.investment_amount == Decimal("10000")
    assert projection.annual_rental_income == Decimal("800")
    assert projection.annual_appreciation == Decimal("500")
    assert projection.total_annual_return == Decimal("1300")
    assert projection.projected_value_at(5) == Decimal("16500")
    assert projection.locking_period.projected_value == Decimal("16500")
    assert projection.at_maturity.projected_value == Decimal("23000")


def test_projection_estimates_early_withdrawal_penalty():
    inside_lock_in = project_returns(10, 1000, 8, 5, 5, 10, TIERS, flat_penalty_rate=5, withdrawal_year=2)
    after_tiers = project_returns(10, 1000, 8, 5, 5, 10, TIERS, flat_penalty_rate=5, withdrawal_year=4)
    after_lock_in = project_returns(10, 1000, 8, 5, 5, 10, TIERS, flat_penalty_rate=5, withdrawal_year=6)

    assert inside_lock_in.early_withdrawal.penalty_amount == Decimal("500")
    assert inside_lock_in.early_withdrawal.amount_after_penalty == Decimal("9500")
    assert after_tiers.early_withdrawal.penalty_percentage == Decimal("5")
    assert not after_lock_in.early_withdrawal.applies
    assert after_lock_in.early_withdrawal.penalty_amount == 0


def test_projection_serializes_rounded_figures():
    data = projection_to_dict(project_returns(3, "333.333", 7, 0, 3, 7))

    assert data["investment_amount"] == 1000.0
    assert data["returns"]["annual_rental_income"] == 70.0
    assert data["returns"]["locking_period"]["projected_value"] == 1210.0
    assert data["early_withdrawal"]["withdrawal_year"] == 1


@pytest.mark.parametrize("units", [0, -2, 1.5, True, "3"])
def test_projection_requires_positive_whole_units(units):
    with pytest.raises(ValueError):
        project_returns(units, 1000, 8, 5, 5, 10)


@pytest.mark.parametrize("principal", [Decimal("0"), None])
def test_zero_or_missing_principal_yields_zero_amounts(principal):
    snapshot = _snapshot(
        principal=principal,
        rental_yield_earned=Decimal("0"),
        penalty_rate=Decimal("5"),
        penalty_tiers=(),
    )

    quote = calculate_withdrawal_quote(snapshot, ONGOING_FEE, now=NOW)

    assert quote.penalty_percentage_applied == Decimal("5")
    assert quote.penalty_amount == 0
    assert quote.management_fee_amount == 0
    assert quote.net_withdrawal_amount == 0
    assert quote.is_payable
