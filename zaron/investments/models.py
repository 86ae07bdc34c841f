"""Database models for properties, investment terms and holdings."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint

from ..extensions import db


class InvestmentSettings(db.Model):
    """Portal-wide default terms applied to new properties."""

    id: int = db.Column(db.Integer, primary_key=True)
    rental_yield_percentage: Decimal = db.Column(
        db.Numeric(6, 3), nullable=False, default=Decimal("8.000")
    )
    appreciation_rate_percentage: Decimal = db.Column(
        db.Numeric(6, 3), nullable=False, default=Decimal("5.000")
    )
    locking_period_years: int = db.Column(db.Integer, nullable=False, default=5)
    bond_maturity_years: int = db.Column(db.Integer, nullable=False, default=10)
    early_withdrawal_penalty_percentage: Decimal = db.Column(
        db.Numeric(6, 3), nullable=False, default=Decimal("5.000")
    )
    management_fee_percentage: Decimal = db.Column(
        db.Numeric(6, 3), nullable=False, default=Decimal("1.000")
    )
    management_fee_deduction: str = db.Column(db.String(16), nullable=False, default="ongoing")
    created_at: datetime = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at: datetime = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    penalty_tiers = db.relationship(
        "PenaltyTier",
        order_by="PenaltyTier.year",
        cascade="all, delete-orphan",
    )


class Property(db.Model):
    """A property whose units are offered to investors."""

    __table_args__ = (
        CheckConstraint("available_shares >= 0", name="ck_property_available_positive"),
        CheckConstraint(
            "status IN ('upcoming', 'open', 'funded')", name="ck_property_status"
        ),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    title: str = db.Column(db.String(200), nullable=False)
    description: Optional[str] = db.Column(db.Text)
    location: str = db.Column(db.String(200), nullable=False)
    property_type: str = db.Column(db.String(64), nullable=False, default="residential")
    status: str = db.Column(db.String(16), nullable=False, default="open")
    price_per_share: Decimal = db.Column(db.Numeric(14, 2), nullable=False)
    total_shares: int = db.Column(db.Integer, nullable=False)
    available_shares: int = db.Column(db.Integer, nullable=False)
    rental_yield_rate: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    appreciation_rate: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    locking_period_years: int = db.Column(db.Integer, nullable=False)
    bond_maturity_years: int = db.Column(db.Integer, nullable=False)
    early_withdrawal_penalty_percentage: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    management_fee_percentage: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    management_fee_deduction: str = db.Column(db.String(16), nullable=False)
    created_at: datetime = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    penalty_tiers = db.relationship(
        "PenaltyTier",
        order_by="PenaltyTier.year",
        cascade="all, delete-orphan",
    )


class PenaltyTier(db.Model):
    """Graduated early-withdrawal penalty for one year of holding.

    Rows belong either to a property or to the default investment settings.
    """

    __table_args__ = (
        CheckConstraint("year >= 1", name="ck_penalty_tier_year"),
        CheckConstraint(
            "penalty_percentage >= 0 AND penalty_percentage <= 100",
            name="ck_penalty_tier_percentage",
        ),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    property_id: Optional[int] = db.Column(db.Integer, db.ForeignKey("property.id"), index=True)
    settings_id: Optional[int] = db.Column(
        db.Integer, db.ForeignKey("investment_settings.id"), index=True
    )
    year: int = db.Column(db.Integer, nullable=False)
    penalty_percentage: Decimal = db.Column(db.Numeric(6, 3), nullable=False)


class Investment(db.Model):
    """Units of a property held by an investor, with the terms agreed at purchase."""

    __table_args__ = (
        CheckConstraint("units >= 1", name="ck_investment_units_positive"),
        CheckConstraint("status IN ('active', 'withdrawn')", name="ck_investment_status"),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    investor_id: int = db.Column(db.Integer, db.ForeignKey("investor.id"), nullable=False, index=True)
    property_id: int = db.Column(db.Integer, db.ForeignKey("property.id"), nullable=False)
    units: int = db.Column(db.Integer, nullable=False)
    gross_amount: Decimal = db.Column(db.Numeric(14, 2), nullable=False)
    principal: Decimal = db.Column(db.Numeric(14, 2), nullable=False)
    upfront_fee_amount: Decimal = db.Column(
        db.Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    rental_yield_rate: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    appreciation_rate: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    penalty_rate: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    penalty_tiers: list = db.Column(db.JSON, nullable=False, default=list)
    management_fee_percentage: Decimal = db.Column(db.Numeric(6, 3), nullable=False)
    management_fee_deduction: str = db.Column(db.String(16), nullable=False)
    locking_period_years: int = db.Column(db.Integer, nullable=False)
    invested_at: datetime = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    maturity_date: datetime = db.Column(db.DateTime, nullable=False)
    status: str = db.Column(db.String(16), nullable=False, default="active")
    exit_date: Optional[datetime] = db.Column(db.DateTime)
    withdrawn_amount: Optional[Decimal] = db.Column(db.Numeric(14, 2))

    investor = db.relationship("Investor", backref="investments")
    asset = db.relationship("Property", backref="investments")
