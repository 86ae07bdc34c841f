"""Investment terms, holdings and withdrawals backed by the database."""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from ..accounts.models import Investor, WalletTransaction
from ..accounts.services import AccountError, quantize_amount, record_wallet_entry
from ..calculator import (
    DEDUCTION_TYPES,
    ZERO,
    GraduatedPenaltyTier,
    InvestmentSnapshot,
    ManagementFeePolicy,
    ReturnsProjection,
    WithdrawalQuote,
    accrue_linear,
    as_number,
    as_utc,
    calculate_withdrawal_quote,
    elapsed_years,
    parse_penalty_tiers,
    percent_of,
    project_returns,
    to_decimal,
)
from ..extensions import db
from ..settings.services import convert_to_active_timezone
from .models import Investment, InvestmentSettings, PenaltyTier, Property

DEFAULT_PENALTY_TIERS: tuple[tuple[int, Decimal], ...] = (
    (1, Decimal("8.000")),
    (2, Decimal("5.000")),
    (3, Decimal("3.000")),
)

PROPERTY_STATUSES = ("upcoming", "open", "funded")


class InvestmentError(ValueError):
    """Raised when an investment request breaks a business rule."""


class WithdrawalRejected(InvestmentError):
    """Raised when a withdrawal cannot be paid out."""


@dataclass(frozen=True)
class Terms:
    """Fully resolved investment terms for a property or request."""

    rental_yield_rate: Decimal
    appreciation_rate: Decimal
    locking_period_years: int
    bond_maturity_years: int
    early_withdrawal_penalty_percentage: Decimal
    fee_policy: ManagementFeePolicy
    penalty_tiers: tuple[GraduatedPenaltyTier, ...]


def _naive_utc(moment: datetime) -> datetime:
    """Convert a moment to the naive UTC form stored in the database."""

    return as_utc(moment).replace(tzinfo=None)


def add_years(moment: datetime, years: int) -> datetime:
    """Shift a moment by whole calendar years, clamping 29 February."""

    year = moment.year + years
    day = min(moment.day, calendar.monthrange(year, moment.month)[1])
    return moment.replace(year=year, day=day)


def tiers_from_rows(rows: Iterable[PenaltyTier]) -> tuple[GraduatedPenaltyTier, ...]:
    return tuple(
        parse_penalty_tiers(
            [{"year": row.year, "penalty_percentage": row.penalty_percentage} for row in rows]
        )
    )


def _replace_tiers(owner: Property | InvestmentSettings, tiers: Iterable[GraduatedPenaltyTier]) -> None:
    owner.penalty_tiers.clear()
    db.session.flush()
    for tier in tiers:
        owner.penalty_tiers.append(
            PenaltyTier(year=tier.year, penalty_percentage=tier.penalty_percentage)
        )


# ---------------------------------------------------------------------------
# Investment settings
# ---------------------------------------------------------------------------


def ensure_investment_defaults() -> InvestmentSettings:
    """Create the default investment terms on first use."""

    settings = InvestmentSettings.query.first()
    if settings:
        return settings

    settings = InvestmentSettings()
    for year, percentage in DEFAULT_PENALTY_TIERS:
        settings.penalty_tiers.append(PenaltyTier(year=year, penalty_percentage=percentage))
    db.session.add(settings)
    db.session.commit()
    return settings


def _require_decimal(
    payload: Mapping[str, Any], key: str, *, minimum: Decimal = ZERO, maximum: Decimal | None = None
) -> Decimal | None:
    if key not in payload or payload[key] in (None, ""):
        return None
    value = to_decimal(payload[key], default=Decimal("-1"))
    if value < minimum or (maximum is not None and value > maximum):
        label = key.replace("_", " ")
        if maximum is None:
            raise InvestmentError(f"The {label} must be at least {minimum}.")
        raise InvestmentError(f"The {label} must be between {minimum} and {maximum}.")
    return value


def _require_int(payload: Mapping[str, Any], key: str, *, minimum: int = 1) -> int | None:
    if key not in payload or payload[key] in (None, ""):
        return None
    raw = payload[key]
    if isinstance(raw, bool):
        raise InvestmentError(f"The {key.replace('_', ' ')} must be a whole number.")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvestmentError(f"The {key.replace('_', ' ')} must be a whole number.") from exc
    if value != to_decimal(raw, default=Decimal(value + 1)):
        raise InvestmentError(f"The {key.replace('_', ' ')} must be a whole number.")
    if value < minimum:
        raise InvestmentError(f"The {key.replace('_', ' ')} must be at least {minimum}.")
    return value


def _require_deduction(payload: Mapping[str, Any], key: str) -> str | None:
    if key not in payload or payload[key] in (None, ""):
        return None
    value = str(payload[key]).strip().lower()
    if value not in DEDUCTION_TYPES:
        raise InvestmentError("Management fees are deducted either upfront or ongoing.")
    return value


def _require_tiers(payload: Mapping[str, Any], key: str) -> list[GraduatedPenaltyTier] | None:
    if key not in payload or payload[key] is None:
        return None
    raw = payload[key]
    if not isinstance(raw, list):
        raise InvestmentError("Graduated penalties must be a list of yearly tiers.")
    tiers = parse_penalty_tiers(raw)
    if len(tiers) != len(raw):
        raise InvestmentError(
            "Each graduated penalty needs a unique year of at least 1 and a percentage between 0 and 100."
        )
    return tiers


def _parse_terms_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate the term fields shared by settings and property payloads."""

    hundred = Decimal("100")
    terms = {
        "rental_yield_rate": _require_decimal(payload, "rental_yield_rate", maximum=hundred),
        "appreciation_rate": _require_decimal(payload, "appreciation_rate", maximum=hundred),
        "locking_period_years": _require_int(payload, "locking_period_years", minimum=0),
        "bond_maturity_years": _require_int(payload, "bond_maturity_years"),
        "early_withdrawal_penalty_percentage": _require_decimal(
            payload, "early_withdrawal_penalty_percentage", maximum=hundred
        ),
        "management_fee_percentage": _require_decimal(
            payload, "management_fee_percentage", maximum=hundred
        ),
        "management_fee_deduction": _require_deduction(payload, "management_fee_deduction"),
        "graduated_penalties": _require_tiers(payload, "graduated_penalties"),
    }
    return {key: value for key, value in terms.items() if value is not None}


def update_investment_settings(payload: Mapping[str, Any]) -> InvestmentSettings:
    """Apply a partial update to the default investment terms."""

    settings = ensure_investment_defaults()
    changes = _parse_terms_payload(payload)

    field_map = {
        "rental_yield_rate": "rental_yield_percentage",
        "appreciation_rate": "appreciation_rate_percentage",
        "locking_period_years": "locking_period_years",
        "bond_maturity_years": "bond_maturity_years",
        "early_withdrawal_penalty_percentage": "early_withdrawal_penalty_percentage",
        "management_fee_percentage": "management_fee_percentage",
        "management_fee_deduction": "management_fee_deduction",
    }
    for key, attribute in field_map.items():
        if key in changes:
            setattr(settings, attribute, changes[key])

    if settings.bond_maturity_years < settings.locking_period_years:
        db.session.rollback()
        raise InvestmentError("Bond maturity cannot be shorter than the locking period.")

    if "graduated_penalties" in changes:
        _replace_tiers(settings, changes["graduated_penalties"])

    db.session.add(settings)
    db.session.commit()
    return settings


def settings_terms(settings: InvestmentSettings) -> Terms:
    return Terms(
        rental_yield_rate=to_decimal(settings.rental_yield_percentage),
        appreciation_rate=to_decimal(settings.appreciation_rate_percentage),
        locking_period_years=settings.locking_period_years,
        bond_maturity_years=settings.bond_maturity_years,
        early_withdrawal_penalty_percentage=to_decimal(settings.early_withdrawal_penalty_percentage),
        fee_policy=ManagementFeePolicy(
            percentage=to_decimal(settings.management_fee_percentage),
            deduction_type=settings.management_fee_deduction,
        ),
        penalty_tiers=tiers_from_rows(settings.penalty_tiers),
    )


def serialize_terms(terms: Terms) -> dict[str, object]:
    return {
        "rental_yield_rate": as_number(terms.rental_yield_rate),
        "appreciation_rate": as_number(terms.appreciation_rate),
        "locking_period_years": terms.locking_period_years,
        "bond_maturity_years": terms.bond_maturity_years,
        "early_withdrawal_penalty_percentage": as_number(terms.early_withdrawal_penalty_percentage),
        "management_fee": terms.fee_policy.to_dict(),
        "graduated_penalties": [tier.to_dict() for tier in terms.penalty_tiers],
    }


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def property_terms(asset: Property) -> Terms:
    return Terms(
        rental_yield_rate=to_decimal(asset.rental_yield_rate),
        appreciation_rate=to_decimal(asset.appreciation_rate),
        locking_period_years=asset.locking_period_years,
        bond_maturity_years=asset.bond_maturity_years,
        early_withdrawal_penalty_percentage=to_decimal(asset.early_withdrawal_penalty_percentage),
        fee_policy=ManagementFeePolicy(
            percentage=to_decimal(asset.management_fee_percentage),
            deduction_type=asset.management_fee_deduction,
        ),
        penalty_tiers=tiers_from_rows(asset.penalty_tiers),
    )


def create_property(payload: Mapping[str, Any]) -> Property:
    """List a new property; missing terms come from the investment settings."""

    title = (payload.get("title") or "").strip()
    location = (payload.get("location") or "").strip()
    if not title:
        raise InvestmentError("A property title is required.")
    if not location:
        raise InvestmentError("A property location is required.")

    price = _require_decimal(payload, "price_per_share", minimum=Decimal("0.01"))
    if price is None:
        raise InvestmentError("Provide a price per unit.")
    total_shares = _require_int(payload, "total_shares")
    if total_shares is None:
        raise InvestmentError("Provide the number of units on offer.")

    status = (payload.get("status") or "open").strip().lower()
    if status not in PROPERTY_STATUSES:
        raise InvestmentError("Property status must be upcoming, open or funded.")

    defaults = settings_terms(ensure_investment_defaults())
    terms = _parse_terms_payload(payload)
    locking = terms.get("locking_period_years", defaults.locking_period_years)
    maturity = terms.get("bond_maturity_years", defaults.bond_maturity_years)
    if maturity < locking:
        raise InvestmentError("Bond maturity cannot be shorter than the locking period.")

    asset = Property(
        title=title,
        description=(payload.get("description") or "").strip() or None,
        location=location,
        property_type=(payload.get("property_type") or "residential").strip().lower(),
        status=status,
        price_per_share=quantize_amount(price),
        total_shares=total_shares,
        available_shares=total_shares,
        rental_yield_rate=terms.get("rental_yield_rate", defaults.rental_yield_rate),
        appreciation_rate=terms.get("appreciation_rate", defaults.appreciation_rate),
        locking_period_years=locking,
        bond_maturity_years=maturity,
        early_withdrawal_penalty_percentage=terms.get(
            "early_withdrawal_penalty_percentage", defaults.early_withdrawal_penalty_percentage
        ),
        management_fee_percentage=terms.get(
            "management_fee_percentage", defaults.fee_policy.percentage
        ),
        management_fee_deduction=terms.get(
            "management_fee_deduction", defaults.fee_policy.deduction_type
        ),
    )
    for tier in terms.get("graduated_penalties", defaults.penalty_tiers):
        asset.penalty_tiers.append(PenaltyTier(year=tier.year, penalty_percentage=tier.penalty_percentage))

    db.session.add(asset)
    db.session.commit()
    return asset


def fetch_properties(*, status: str | None = None) -> list[Property]:
    query = Property.query.order_by(Property.created_at.asc(), Property.id.asc())
    if status:
        query = query.filter_by(status=status)
    return list(query.all())


def find_property(property_id: Any) -> Optional[Property]:
    try:
        return db.session.get(Property, int(property_id))
    except (TypeError, ValueError):
        return None


def serialize_property(asset: Property) -> dict[str, object]:
    return {
        "id": asset.id,
        "title": asset.title,
        "description": asset.description,
        "location": asset.location,
        "property_type": asset.property_type,
        "status": asset.status,
        "financials": {
            "price_per_share": as_number(asset.price_per_share),
            "total_shares": asset.total_shares,
            "available_shares": asset.available_shares,
            "funded_percentage": as_number(
                Decimal(asset.total_shares - asset.available_shares)
                * Decimal("100")
                / Decimal(asset.total_shares)
            )
            if asset.total_shares
            else 0.0,
        },
        "investment_terms": serialize_terms(property_terms(asset)),
    }


# ---------------------------------------------------------------------------
# Holdings
# ---------------------------------------------------------------------------


def fee_policy_for(investment: Investment) -> ManagementFeePolicy:
    return ManagementFeePolicy(
        percentage=to_decimal(investment.management_fee_percentage),
        deduction_type=investment.management_fee_deduction,
    )


def lock_in_ends_at(investment: Investment) -> datetime:
    return add_years(investment.invested_at, investment.locking_period_years)


def is_after_maturity(investment: Investment, now: datetime) -> bool:
    """Return True once the penalty-free point of the holding is reached."""

    return as_utc(now) >= as_utc(lock_in_ends_at(investment))


def accrued_returns(investment: Investment, now: datetime) -> tuple[Decimal, Decimal]:
    """Return rental yield earned and appreciation to date, capped at bond maturity."""

    horizon = as_utc(min(as_utc(now), as_utc(investment.maturity_date)))
    years = elapsed_years(investment.invested_at, horizon)
    principal = to_decimal(investment.principal)
    return (
        accrue_linear(principal, investment.rental_yield_rate, years),
        accrue_linear(principal, investment.appreciation_rate, years),
    )


def snapshot_for(investment: Investment, now: datetime) -> InvestmentSnapshot:
    """Build the calculator view of a stored investment at ``now``."""

    rental_yield_earned, appreciation_value = accrued_returns(investment, now)
    return InvestmentSnapshot(
        principal=to_decimal(investment.principal),
        invested_at=investment.invested_at,
        maturity_date=investment.maturity_date,
        rental_yield_earned=rental_yield_earned,
        appreciation_value=appreciation_value,
        is_after_maturity=is_after_maturity(investment, now),
        penalty_rate=to_decimal(investment.penalty_rate),
        penalty_tiers=tuple(parse_penalty_tiers(investment.penalty_tiers)),
    )


def quote_withdrawal(investment: Investment, now: datetime) -> WithdrawalQuote:
    """Quote the payout an investor would receive by withdrawing at ``now``."""

    return calculate_withdrawal_quote(
        snapshot_for(investment, now), fee_policy_for(investment), now=now
    )


def find_investment(investor: Investor, investment_id: Any) -> Optional[Investment]:
    try:
        investment = db.session.get(Investment, int(investment_id))
    except (TypeError, ValueError):
        return None
    if investment is None or investment.investor_id != investor.id:
        return None
    return investment


def fetch_investments(investor: Investor, *, status: str | None = None) -> list[Investment]:
    query = Investment.query.filter_by(investor_id=investor.id)
    if status:
        query = query.filter_by(status=status)
    return list(query.order_by(Investment.invested_at.desc(), Investment.id.desc()).all())


def create_investment(investor: Investor, asset: Property, units: Any, now: datetime) -> Investment:
    """Buy ``units`` of a property from the investor's wallet."""

    if not investor.can_invest:
        raise InvestmentError("Complete identity verification (KYC) before investing.")
    if asset.status != "open":
        raise InvestmentError("This property is not open for investment.")

    try:
        unit_count = _require_int({"units": units}, "units")
    except InvestmentError as exc:
        raise InvestmentError("Choose at least one whole unit.") from exc
    if unit_count is None:
        raise InvestmentError("Choose at least one whole unit.")
    if unit_count > asset.available_shares:
        raise InvestmentError(f"Only {asset.available_shares} units are available.")

    terms = property_terms(asset)
    gross_amount = quantize_amount(Decimal(unit_count) * to_decimal(asset.price_per_share))
    upfront_fee = (
        quantize_amount(percent_of(gross_amount, terms.fee_policy.percentage))
        if terms.fee_policy.is_upfront
        else Decimal("0.00")
    )
    invested_at = _naive_utc(now)

    investment = Investment(
        investor=investor,
        asset=asset,
        units=unit_count,
        gross_amount=gross_amount,
        principal=gross_amount - upfront_fee,
        upfront_fee_amount=upfront_fee,
        rental_yield_rate=terms.rental_yield_rate,
        appreciation_rate=terms.appreciation_rate,
        penalty_rate=terms.early_withdrawal_penalty_percentage,
        penalty_tiers=[
            {"year": tier.year, "penalty_percentage": str(tier.penalty_percentage)}
            for tier in terms.penalty_tiers
        ],
        management_fee_percentage=terms.fee_policy.percentage,
        management_fee_deduction=terms.fee_policy.deduction_type,
        locking_period_years=terms.locking_period_years,
        invested_at=invested_at,
        maturity_date=add_years(invested_at, terms.bond_maturity_years),
        status="active",
    )
    db.session.add(investment)

    try:
        db.session.flush()
        record_wallet_entry(
            investor,
            entry_type="investment",
            direction="debit",
            amount=gross_amount,
            fee=upfront_fee,
            description=f"Purchased {unit_count} units of {asset.title}",
            investment_id=investment.id,
        )
    except AccountError as exc:
        db.session.rollback()
        raise InvestmentError(str(exc)) from exc

    asset.available_shares -= unit_count
    if asset.available_shares == 0:
        asset.status = "funded"
    db.session.add(asset)
    db.session.commit()
    return investment


def withdraw_investment(investment: Investment, now: datetime) -> tuple[WithdrawalQuote, WalletTransaction]:
    """Pay out an active investment to the investor's wallet.

    Withdrawals whose penalty and fees exceed principal plus earned yield are
    rejected rather than clamped.
    """

    if investment.status != "active":
        raise WithdrawalRejected("Only active investments can be withdrawn.")

    quote = quote_withdrawal(investment, now)
    if not quote.is_payable:
        raise WithdrawalRejected(
            "Penalties and fees exceed the amount available for withdrawal."
        )

    payout = quantize_amount(quote.net_withdrawal_amount)
    charges = quantize_amount(quote.penalty_amount + quote.management_fee_amount)
    description = (
        f"Early withdrawal with {as_number(quote.penalty_percentage_applied):g}% penalty"
        if quote.penalty_amount > ZERO
        else "Withdrawal after lock-in period"
    )

    investment.status = "withdrawn"
    investment.exit_date = _naive_utc(now)
    investment.withdrawn_amount = payout
    asset = investment.asset
    asset.available_shares += investment.units
    if asset.status == "funded":
        asset.status = "open"

    entry = record_wallet_entry(
        investment.investor,
        entry_type="withdrawal",
        direction="credit",
        amount=payout,
        fee=charges,
        description=description,
        investment_id=investment.id,
    )
    db.session.add(investment)
    db.session.add(asset)
    db.session.commit()
    return quote, entry


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return convert_to_active_timezone(value).isoformat(timespec="seconds")


def serialize_investment(investment: Investment, now: datetime) -> dict[str, object]:
    """Describe a holding with its returns accrued up to ``now``."""

    active = investment.status == "active"
    horizon = now if active else investment.exit_date
    rental_yield_earned, appreciation_value = accrued_returns(investment, horizon)
    principal = to_decimal(investment.principal)
    fee_policy = fee_policy_for(investment)
    asset = investment.asset

    return {
        "id": investment.id,
        "property": {"id": asset.id, "title": asset.title, "location": asset.location},
        "units": investment.units,
        "amount": as_number(investment.gross_amount),
        "principal": as_number(principal),
        "management_fee": {
            **fee_policy.to_dict(),
            "fee_amount": as_number(investment.upfront_fee_amount),
            "net_investment": as_number(principal),
        },
        "rental_yield_rate": as_number(to_decimal(investment.rental_yield_rate)),
        "appreciation_rate": as_number(to_decimal(investment.appreciation_rate)),
        "penalty_rate": as_number(to_decimal(investment.penalty_rate)),
        "graduated_penalties": [
            tier.to_dict() for tier in parse_penalty_tiers(investment.penalty_tiers)
        ],
        "invested_at": _isoformat(investment.invested_at),
        "lock_in_ends_at": _isoformat(lock_in_ends_at(investment)),
        "maturity_date": _isoformat(investment.maturity_date),
        "is_after_maturity": is_after_maturity(investment, horizon),
        "rental_yield_earned": as_number(rental_yield_earned),
        "appreciation_value": as_number(appreciation_value),
        "current_value": as_number(principal + rental_yield_earned + appreciation_value),
        "status": investment.status,
        "exit_date": _isoformat(investment.exit_date),
        "withdrawn_amount": as_number(investment.withdrawn_amount)
        if investment.withdrawn_amount is not None
        else None,
    }


def build_portfolio(investor: Investor, now: datetime) -> dict[str, object]:
    """Summarise every holding of an investor."""

    investments = fetch_investments(investor)
    totals = {
        "total_invested": ZERO,
        "rental_yield_earned": ZERO,
        "appreciation_value": ZERO,
    }
    active_count = 0
    for investment in investments:
        if investment.status != "active":
            continue
        active_count += 1
        rental_yield_earned, appreciation_value = accrued_returns(investment, now)
        totals["total_invested"] += to_decimal(investment.principal)
        totals["rental_yield_earned"] += rental_yield_earned
        totals["appreciation_value"] += appreciation_value

    current_value = sum(totals.values(), ZERO)
    return {
        "summary": {
            "total_invested": as_number(totals["total_invested"]),
            "rental_yield_earned": as_number(totals["rental_yield_earned"]),
            "appreciation_value": as_number(totals["appreciation_value"]),
            "current_value": as_number(current_value),
            "active_investments": active_count,
            "withdrawn_investments": len(investments) - active_count,
            "wallet_balance": as_number(investor.wallet_balance),
        },
        "investments": [serialize_investment(investment, now) for investment in investments],
    }


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def projection_from_payload(payload: Mapping[str, Any]) -> ReturnsProjection:
    """Project returns for a request; explicit fields beat property terms and defaults."""

    units = _require_int(payload, "units")
    if units is None:
        raise InvestmentError("Choose at least one whole unit.")
    withdrawal_year = _require_int(payload, "withdrawal_year") or 1

    asset = None
    if payload.get("property_id") not in (None, ""):
        asset = find_property(payload.get("property_id"))
        if asset is None:
            raise LookupError("Property not found.")

    terms = property_terms(asset) if asset else settings_terms(ensure_investment_defaults())
    overrides = _parse_terms_payload(payload)

    price = _require_decimal(payload, "price_per_share", minimum=Decimal("0.01"))
    if price is None:
        if asset is None:
            raise InvestmentError("Provide a price per unit or a property.")
        price = to_decimal(asset.price_per_share)

    return project_returns(
        units,
        price,
        overrides.get("rental_yield_rate", terms.rental_yield_rate),
        overrides.get("appreciation_rate", terms.appreciation_rate),
        overrides.get("locking_period_years", terms.locking_period_years),
        overrides.get("bond_maturity_years", terms.bond_maturity_years),
        overrides.get("graduated_penalties", terms.penalty_tiers),
        flat_penalty_rate=overrides.get(
            "early_withdrawal_penalty_percentage", terms.early_withdrawal_penalty_percentage
        ),
        withdrawal_year=withdrawal_year,
    )
