"""Returns and early-withdrawal arithmetic shared by the API and its client.

Everything in this module is a pure function of its arguments: no database
access, no clock reads and no rounding. Callers pass ``now`` explicitly and
round only when presenting values.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Sequence

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DAYS_PER_YEAR = Decimal("365.25")
SECONDS_PER_DAY = Decimal("86400")

UPFRONT = "upfront"
ONGOING = "ongoing"
DEDUCTION_TYPES = (UPFRONT, ONGOING)


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce API/DB values to ``Decimal``, falling back to ``default``.

    Missing, blank, non-finite or unparsable values never raise.
    """

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError):
            return default
    if not amount.is_finite():
        return default
    return amount


def percent_of(base: Decimal, percentage: Decimal) -> Decimal:
    """Return ``percentage`` percent of ``base``; a zero base yields zero."""

    if not base or not percentage:
        return ZERO
    return base * percentage / HUNDRED


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to be UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class GraduatedPenaltyTier:
    """Early-withdrawal penalty charged during one year of holding."""

    year: int
    penalty_percentage: Decimal

    def to_dict(self) -> dict[str, object]:
        return {"year": self.year, "penalty_percentage": float(self.penalty_percentage)}


@dataclass(frozen=True)
class ManagementFeePolicy:
    """How much management fee applies and when it is taken."""

    percentage: Decimal
    deduction_type: str = ONGOING

    @property
    def is_upfront(self) -> bool:
        return self.deduction_type == UPFRONT

    def to_dict(self) -> dict[str, object]:
        return {"percentage": float(self.percentage), "deduction_type": self.deduction_type}


def parse_penalty_tiers(raw: Any) -> list[GraduatedPenaltyTier]:
    """Build a clean, year-ordered tier list from loosely typed input.

    Entries may use ``penalty_percentage`` or the JSON-API ``penaltyPercentage``
    key. Malformed entries are dropped; for repeated years the first wins.
    """

    if not raw or isinstance(raw, (str, bytes, Mapping)):
        return []

    tiers: dict[int, GraduatedPenaltyTier] = {}
    for entry in raw:
        if isinstance(entry, GraduatedPenaltyTier):
            tiers.setdefault(entry.year, entry)
            continue
        if not isinstance(entry, Mapping):
            continue

        year_value = entry.get("year")
        if isinstance(year_value, bool):
            continue
        try:
            year = int(year_value)
        except (TypeError, ValueError):
            continue
        if year < 1 or year != to_decimal(year_value, default=Decimal(-1)):
            continue

        raw_percentage = entry.get("penalty_percentage", entry.get("penaltyPercentage"))
        percentage = to_decimal(raw_percentage, default=Decimal(-1))
        if not ZERO <= percentage <= HUNDRED:
            continue

        tiers.setdefault(year, GraduatedPenaltyTier(year=year, penalty_percentage=percentage))

    return [tiers[year] for year in sorted(tiers)]


def parse_fee_policy(raw: Any) -> Optional[ManagementFeePolicy]:
    """Return a fee policy, or ``None`` (no fee) when the input is unusable."""

    if isinstance(raw, ManagementFeePolicy):
        return raw
    if not isinstance(raw, Mapping):
        return None

    percentage = to_decimal(raw.get("percentage"), default=Decimal(-1))
    if percentage < ZERO:
        return None

    deduction_type = raw.get("deduction_type", raw.get("deductionType", ONGOING))
    if not isinstance(deduction_type, str) or deduction_type.lower() not in DEDUCTION_TYPES:
        return None
    return ManagementFeePolicy(percentage=percentage, deduction_type=deduction_type.lower())


def elapsed_years(start: datetime, now: datetime) -> Decimal:
    """Return fractional years between two moments, never negative."""

    seconds = Decimal(str((as_utc(now) - as_utc(start)).total_seconds()))
    if seconds <= ZERO:
        return ZERO
    return seconds / SECONDS_PER_DAY / DAYS_PER_YEAR


def current_holding_year(invested_at: datetime, now: datetime) -> int:
    """Return the 1-based year of holding that ``now`` falls in.

    Year 1 covers the first 365.25 days, year 2 the next, and so on. Partial
    years are floored.
    """

    return math.floor(elapsed_years(invested_at, now)) + 1


def resolve_penalty_percentage(
    current_year: int,
    tiers: Iterable[GraduatedPenaltyTier],
    flat_rate: Any = None,
    *,
    is_after_maturity: bool = False,
) -> Decimal:
    """Return the penalty percentage for a holding year.

    A matching tier wins, otherwise the flat rate applies. Matured
    investments are never penalised.
    """

    if is_after_maturity:
        return ZERO
    for tier in tiers:
        if tier.year == current_year:
            return tier.penalty_percentage
    return max(to_decimal(flat_rate), ZERO)


def penalty_percentage_for(
    invested_at: datetime,
    now: datetime,
    tiers: Iterable[GraduatedPenaltyTier],
    flat_rate: Any = None,
    *,
    is_after_maturity: bool = False,
) -> Decimal:
    """Resolve the penalty for an investment held since ``invested_at``."""

    return resolve_penalty_percentage(
        current_holding_year(invested_at, now),
        tiers,
        flat_rate,
        is_after_maturity=is_after_maturity,
    )


def accrue_linear(principal: Any, rate_percent: Any, years: Any) -> Decimal:
    """Return simple (non-compounding) accrual of a yearly percentage."""

    years = to_decimal(years)
    if years <= ZERO:
        return ZERO
    return percent_of(to_decimal(principal), to_decimal(rate_percent)) * years


@dataclass(frozen=True)
class InvestmentSnapshot:
    """Point-in-time state of a holding, as read from storage or the API."""

    principal: Decimal
    invested_at: datetime
    maturity_date: Optional[datetime] = None
    rental_yield_earned: Decimal = ZERO
    appreciation_value: Decimal = ZERO
    is_after_maturity: bool = False
    penalty_rate: Optional[Decimal] = None
    penalty_tiers: Sequence[GraduatedPenaltyTier] = field(default_factory=tuple)


@dataclass(frozen=True)
class WithdrawalQuote:
    """What an investor would receive by withdrawing right now."""

    principal: Decimal
    rental_yield_earned: Decimal
    penalty_amount: Decimal
    penalty_percentage_applied: Decimal
    management_fee_amount: Decimal
    net_withdrawal_amount: Decimal
    holding_year: int

    @property
    def total_amount(self) -> Decimal:
        return self.principal + self.rental_yield_earned

    @property
    def is_payable(self) -> bool:
        return self.net_withdrawal_amount >= ZERO


def calculate_withdrawal_quote(
    snapshot: InvestmentSnapshot,
    fee_policy: Optional[ManagementFeePolicy] = None,
    *,
    now: datetime,
) -> WithdrawalQuote:
    """Quote an early or matured withdrawal of a single investment.

    The penalty is charged on principal only. An ongoing management fee is
    charged on principal plus earned yield; an upfront fee was already taken
    at purchase and contributes nothing here. The net amount is not clamped.
    """

    principal = to_decimal(snapshot.principal)
    rental_yield_earned = to_decimal(snapshot.rental_yield_earned)
    holding_year = current_holding_year(snapshot.invested_at, now)

    penalty_percentage = resolve_penalty_percentage(
        holding_year,
        snapshot.penalty_tiers,
        snapshot.penalty_rate,
        is_after_maturity=snapshot.is_after_maturity,
    )
    penalty_amount = percent_of(principal, penalty_percentage)

    total_amount = principal + rental_yield_earned
    if fee_policy is None or fee_policy.is_upfront:
        management_fee_amount = ZERO
    else:
        management_fee_amount = percent_of(total_amount, to_decimal(fee_policy.percentage))

    return WithdrawalQuote(
        principal=principal,
        rental_yield_earned=rental_yield_earned,
        penalty_amount=penalty_amount,
        penalty_percentage_applied=penalty_percentage,
        management_fee_amount=management_fee_amount,
        net_withdrawal_amount=principal + rental_yield_earned - penalty_amount - management_fee_amount,
        holding_year=holding_year,
    )


@dataclass(frozen=True)
class HorizonProjection:
    """Projected position after holding for a number of years."""

    years: Decimal
    rental_yield: Decimal
    appreciation: Decimal
    total_return: Decimal
    projected_value: Decimal


@dataclass(frozen=True)
class EarlyWithdrawalEstimate:
    """Penalty a prospective investor would pay for leaving early."""

    withdrawal_year: int
    locking_period_years: Decimal
    applies: bool
    penalty_percentage: Decimal
    penalty_amount: Decimal
    amount_after_penalty: Decimal


@dataclass(frozen=True)
class ReturnsProjection:
    """Linear projection of a hypothetical purchase of property units."""

    units: int
    price_per_share: Decimal
    investment_amount: Decimal
    rental_yield_rate: Decimal
    appreciation_rate: Decimal
    annual_rental_income: Decimal
    annual_appreciation: Decimal
    total_annual_return: Decimal
    locking_period: HorizonProjection
    at_maturity: HorizonProjection
    early_withdrawal: EarlyWithdrawalEstimate
    penalty_tiers: Sequence[GraduatedPenaltyTier] = field(default_factory=tuple)

    def projected_value_at(self, years: Any) -> Decimal:
        return self.investment_amount + self.total_annual_return * to_decimal(years)


def _horizon(
    investment_amount: Decimal,
    annual_rental_income: Decimal,
    annual_appreciation: Decimal,
    years: Decimal,
) -> HorizonProjection:
    rental_yield = annual_rental_income * years
    appreciation = annual_appreciation * years
    total_return = rental_yield + appreciation
    return HorizonProjection(
        years=years,
        rental_yield=rental_yield,
        appreciation=appreciation,
        total_return=total_return,
        projected_value=investment_amount + total_return,
    )


def project_returns(
    units: int,
    price_per_share: Any,
    rental_yield_rate: Any,
    appreciation_rate: Any,
    locking_period_years: Any,
    bond_maturity_years: Any,
    penalty_tiers: Any = None,
    *,
    flat_penalty_rate: Any = None,
    withdrawal_year: int = 1,
) -> ReturnsProjection:
    """Project returns for buying ``units`` at ``price_per_share``.

    The projection is linear: ``value(years) = amount + annual_return * years``.
    The early-withdrawal estimate assumes the investor leaves during holding
    year ``withdrawal_year``; it is penalty free once that year is past the
    locking period.
    """

    if isinstance(units, bool) or not isinstance(units, int) or units < 1:
        raise ValueError("At least one unit is required.")
    if isinstance(withdrawal_year, bool) or not isinstance(withdrawal_year, int) or withdrawal_year < 1:
        raise ValueError("Withdrawal year must be a whole number of at least 1.")

    tiers = parse_penalty_tiers(penalty_tiers)
    price = max(to_decimal(price_per_share), ZERO)
    rental_rate = to_decimal(rental_yield_rate)
    appreciation = to_decimal(appreciation_rate)
    locking_years = max(to_decimal(locking_period_years), ZERO)
    maturity_years = max(to_decimal(bond_maturity_years), ZERO)

    investment_amount = Decimal(units) * price
    annual_rental_income = percent_of(investment_amount, rental_rate)
    annual_appreciation = percent_of(investment_amount, appreciation)

    applies = withdrawal_year <= locking_years
    penalty_percentage = (
        resolve_penalty_percentage(withdrawal_year, tiers, flat_penalty_rate) if applies else ZERO
    )
    penalty_amount = percent_of(investment_amount, penalty_percentage)

    return ReturnsProjection(
        units=units,
        price_per_share=price,
        investment_amount=investment_amount,
        rental_yield_rate=rental_rate,
        appreciation_rate=appreciation,
        annual_rental_income=annual_rental_income,
        annual_appreciation=annual_appreciation,
        total_annual_return=annual_rental_income + annual_appreciation,
        locking_period=_horizon(
            investment_amount, annual_rental_income, annual_appreciation, locking_years
        ),
        at_maturity=_horizon(
            investment_amount, annual_rental_income, annual_appreciation, maturity_years
        ),
        early_withdrawal=EarlyWithdrawalEstimate(
            withdrawal_year=withdrawal_year,
            locking_period_years=locking_years,
            applies=applies,
            penalty_percentage=penalty_percentage,
            penalty_amount=penalty_amount,
            amount_after_penalty=investment_amount - penalty_amount,
        ),
        penalty_tiers=tuple(tiers),
    )


def as_number(value: Decimal | float | int) -> float:
    """Round to cents for JSON output; arithmetic stays unrounded."""

    if isinstance(value, Decimal):
        return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return float(value)


def quote_to_dict(quote: WithdrawalQuote) -> dict[str, object]:
    """Serialize a withdrawal quote using the API field names."""

    return {
        "principal": as_number(quote.principal),
        "rental_yield_earned": as_number(quote.rental_yield_earned),
        "total_amount": as_number(quote.total_amount),
        "holding_year": quote.holding_year,
        "penalty_percentage_applied": as_number(quote.penalty_percentage_applied),
        "penalty_amount": as_number(quote.penalty_amount),
        "management_fee_amount": as_number(quote.management_fee_amount),
        "net_withdrawal_amount": as_number(quote.net_withdrawal_amount),
        "is_payable": quote.is_payable,
    }


def _horizon_to_dict(horizon: HorizonProjection) -> dict[str, object]:
    return {
        "years": as_number(horizon.years),
        "rental_yield": as_number(horizon.rental_yield),
        "appreciation": as_number(horizon.appreciation),
        "total_return": as_number(horizon.total_return),
        "projected_value": as_number(horizon.projected_value),
    }


def projection_to_dict(projection: ReturnsProjection) -> dict[str, object]:
    """Serialize a projection in the shape returned by ``/calculate-returns``."""

    early = projection.early_withdrawal
    return {
        "investment_amount": as_number(projection.investment_amount),
        "units": projection.units,
        "price_per_share": as_number(projection.price_per_share),
        "settings": {
            "rental_yield_rate": as_number(projection.rental_yield_rate),
            "appreciation_rate": as_number(projection.appreciation_rate),
            "locking_period_years": as_number(projection.locking_period.years),
            "bond_maturity_years": as_number(projection.at_maturity.years),
            "graduated_penalties": [tier.to_dict() for tier in projection.penalty_tiers],
        },
        "returns": {
            "annual_rental_income": as_number(projection.annual_rental_income),
            "annual_appreciation": as_number(projection.annual_appreciation),
            "total_annual_return": as_number(projection.total_annual_return),
            "locking_period": _horizon_to_dict(projection.locking_period),
            "at_maturity": _horizon_to_dict(projection.at_maturity),
        },
        "early_withdrawal": {
            "withdrawal_year": early.withdrawal_year,
            "locking_period_years": as_number(early.locking_period_years),
            "applies": early.applies,
            "penalty_percentage": as_number(early.penalty_percentage),
            "penalty_amount": as_number(early.penalty_amount),
            "amount_after_penalty": as_number(early.amount_after_penalty),
        },
    }
