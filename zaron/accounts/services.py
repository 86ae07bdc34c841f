"""Helper utilities for investor accounts and wallets."""
from __future__ import annotations

import re
import secrets
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

from ..calculator import as_number
from ..extensions import db
from ..settings.services import convert_to_active_timezone
from .models import KYC_STATUSES, Investor, WalletTransaction

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8
ZERO = Decimal("0.00")

# Allowed investor-driven KYC transitions; review outcomes come from the back office.
KYC_TRANSITIONS: dict[str, frozenset[str]] = {
    "not_submitted": frozenset({"submitted"}),
    "rejected": frozenset({"submitted"}),
    "submitted": frozenset({"under_review"}),
    "under_review": frozenset({"approved", "rejected"}),
    "approved": frozenset(),
}


class AccountError(ValueError):
    """Raised when an account operation cannot be completed."""


def quantize_amount(value: Decimal | float | str) -> Decimal:
    """Normalize values to two decimal places."""

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError) as exc:
            raise ValueError("Invalid numeric value") from exc
    if not amount.is_finite():
        raise ValueError("Invalid numeric value")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_currency(value: Decimal | float | int, currency: str = "SAR") -> str:
    """Return a display string such as ``SAR 1,250.00``."""

    return f"{currency} {quantize_amount(Decimal(str(value))):,.2f}"


def issue_token(investor: Investor) -> str:
    """Rotate and return the investor's API token."""

    investor.api_token = secrets.token_hex(32)
    db.session.add(investor)
    return investor.api_token


def register_investor(*, name: str, email: str, password: str, phone: str | None = None) -> Investor:
    """Create a new investor account and issue its first token."""

    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise AccountError("A name is required.")
    if not EMAIL_PATTERN.match(email):
        raise AccountError("Enter a valid email address.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise AccountError(f"Passwords need at least {MIN_PASSWORD_LENGTH} characters.")
    if Investor.query.filter_by(email=email).first():
        raise AccountError("An account with this email already exists.")

    investor = Investor(
        name=name,
        email=email,
        phone=(phone or "").strip() or None,
        password_hash=generate_password_hash(password),
        kyc_status="not_submitted",
        wallet_balance=ZERO,
    )
    db.session.add(investor)
    issue_token(investor)
    db.session.commit()
    return investor


def authenticate(email: str, password: str) -> Investor:
    """Return the investor for valid credentials with a fresh token."""

    investor = Investor.query.filter_by(email=(email or "").strip().lower()).first()
    if not investor or not check_password_hash(investor.password_hash, password or ""):
        raise AccountError("Email or password is incorrect.")
    issue_token(investor)
    db.session.commit()
    return investor


def revoke_token(investor: Investor) -> None:
    """Sign the investor out of every client."""

    investor.api_token = None
    db.session.add(investor)
    db.session.commit()


def update_kyc_status(investor: Investor, status: str) -> Investor:
    """Move the investor's KYC status along an allowed transition."""

    if status not in KYC_STATUSES:
        raise AccountError(f"Unknown KYC status '{status}'.")
    allowed = KYC_TRANSITIONS.get(investor.kyc_status, frozenset())
    if status not in allowed:
        raise AccountError(
            f"KYC status cannot change from {investor.kyc_status} to {status}."
        )
    investor.kyc_status = status
    db.session.add(investor)
    db.session.commit()
    return investor


def record_wallet_entry(
    investor: Investor,
    *,
    entry_type: str,
    direction: str,
    amount: Decimal,
    description: str,
    fee: Decimal = ZERO,
    investment_id: int | None = None,
) -> WalletTransaction:
    """Adjust the wallet balance and add the matching ledger row.

    The caller owns the transaction and is responsible for committing.
    """

    amount = quantize_amount(amount)
    if amount < ZERO:
        raise ValueError("Wallet amounts cannot be negative.")
    if direction == "debit":
        if amount > investor.wallet_balance:
            raise AccountError("Insufficient wallet balance.")
        investor.wallet_balance = quantize_amount(investor.wallet_balance - amount)
    elif direction == "credit":
        investor.wallet_balance = quantize_amount(investor.wallet_balance + amount)
    else:
        raise ValueError(f"Unsupported direction '{direction}'")

    entry = WalletTransaction(
        investor=investor,
        investment_id=investment_id,
        type=entry_type,
        direction=direction,
        amount=amount,
        fee=quantize_amount(fee),
        description=description,
    )
    db.session.add(investor)
    db.session.add(entry)
    return entry


def deposit(investor: Investor, amount: Any) -> WalletTransaction:
    """Top up an investor wallet."""

    try:
        value = quantize_amount(amount)
    except ValueError as exc:
        raise AccountError("Enter a valid deposit amount.") from exc
    if value <= ZERO:
        raise AccountError("Deposits must be greater than zero.")

    entry = record_wallet_entry(
        investor,
        entry_type="deposit",
        direction="credit",
        amount=value,
        description="Wallet recharge",
    )
    db.session.commit()
    return entry


def serialize_investor(investor: Investor) -> dict[str, object]:
    """Public profile fields returned to the signed-in investor."""

    return {
        "id": investor.id,
        "name": investor.name,
        "email": investor.email,
        "phone": investor.phone,
        "kyc_status": investor.kyc_status,
        "can_invest": investor.can_invest,
        "wallet_balance": as_number(investor.wallet_balance),
    }


def serialize_transaction(entry: WalletTransaction) -> dict[str, object]:
    return {
        "id": entry.id,
        "type": entry.type,
        "direction": entry.direction,
        "amount": as_number(entry.amount),
        "fee": as_number(entry.fee),
        "description": entry.description,
        "status": entry.status,
        "investment_id": entry.investment_id,
        "created_at": convert_to_active_timezone(entry.created_at).isoformat(timespec="seconds"),
    }


def recent_transactions(investor: Investor, limit: int = 20) -> list[WalletTransaction]:
    return (
        WalletTransaction.query.filter_by(investor_id=investor.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )
