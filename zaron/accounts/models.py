"""Database models for investors and their wallets."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint

from ..extensions import db

KYC_STATUSES = ("not_submitted", "submitted", "under_review", "approved", "rejected")
KYC_INVESTABLE = frozenset({"submitted", "under_review", "approved"})


class Investor(db.Model):
    """A registered investor with a cash wallet."""

    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_investor_wallet_positive"),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(120), nullable=False)
    email: str = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash: str = db.Column(db.String(255), nullable=False)
    phone: Optional[str] = db.Column(db.String(32))
    nationality: Optional[str] = db.Column(db.String(64))
    kyc_status: str = db.Column(db.String(32), nullable=False, default="not_submitted")
    wallet_balance: Decimal = db.Column(
        db.Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    api_token: Optional[str] = db.Column(db.String(64), unique=True, index=True)
    created_at: datetime = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at: datetime = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    @property
    def can_invest(self) -> bool:
        return self.kyc_status in KYC_INVESTABLE

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Investor {self.email} kyc={self.kyc_status}>"


class WalletTransaction(db.Model):
    """Ledger entry for money moving in or out of an investor wallet."""

    __table_args__ = (
        CheckConstraint("direction IN ('credit', 'debit')", name="ck_wallet_direction"),
        CheckConstraint(
            "type IN ('deposit', 'investment', 'withdrawal')", name="ck_wallet_type"
        ),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    investor_id: int = db.Column(db.Integer, db.ForeignKey("investor.id"), nullable=False)
    investment_id: Optional[int] = db.Column(db.Integer, db.ForeignKey("investment.id"))
    type: str = db.Column(db.String(16), nullable=False)
    direction: str = db.Column(db.String(16), nullable=False)
    amount: Decimal = db.Column(db.Numeric(14, 2), nullable=False)
    fee: Decimal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    description: str = db.Column(db.Text, nullable=False)
    status: str = db.Column(db.String(16), nullable=False, default="completed")
    created_at: datetime = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    investor = db.relationship("Investor", backref="transactions")
