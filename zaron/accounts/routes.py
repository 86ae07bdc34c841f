"""Routes for investor sign-in, KYC status and the wallet."""
from __future__ import annotations

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..logging_service import log_manager
from . import bp
from .models import Investor
from .services import (
    AccountError,
    authenticate,
    deposit,
    format_currency,
    recent_transactions,
    register_investor,
    revoke_token,
    serialize_investor,
    serialize_transaction,
    update_kyc_status,
)
from .session import admin_required, current_investor, login_required


def _json_response(payload: dict[str, object], *, status: int = 200):
    """Return a JSON response with a consistent structure."""

    response = jsonify(payload)
    response.status_code = status
    return response


def _json_error(message: str, *, status: int = 400):
    """Return a JSON error payload with the supplied status."""

    return _json_response({"success": False, "message": message}, status=status)


def _database_error(action: str, exc: SQLAlchemyError):
    db.session.rollback()
    log_manager.record(
        component="Auth" if action.startswith(("auth", "kyc")) else "Wallet",
        action=action,
        level="error",
        result="error",
        title="Account update failed",
        user_summary="The account change could not be saved. Try again shortly.",
        technical_details=f"accounts.{action} raised {exc.__class__.__name__}: {exc}",
    )
    return _json_error("Unable to save your changes right now. Please try again shortly.", status=500)


@bp.route("/auth/register", methods=["POST"])
def api_register():
    """Create an investor account and return its session credential."""

    payload = request.get_json(silent=True) or {}
    try:
        investor = register_investor(
            name=payload.get("name", ""),
            email=payload.get("email", ""),
            password=payload.get("password", ""),
            phone=payload.get("phone"),
        )
    except AccountError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("auth-register", exc)

    log_manager.record(
        component="Auth",
        action="register",
        title="Investor registered",
        user_summary=f"Created an investor account for {investor.email}.",
        technical_details="accounts.register stored a new investor and issued a token.",
        investor_id=investor.id,
    )
    return _json_response(
        {"success": True, "token": investor.api_token, "user": serialize_investor(investor)},
        status=201,
    )


@bp.route("/auth/login", methods=["POST"])
def api_login():
    """Exchange email and password for a fresh API token."""

    payload = request.get_json(silent=True) or {}
    try:
        investor = authenticate(payload.get("email", ""), payload.get("password", ""))
    except AccountError as exc:
        log_manager.record(
            component="Auth",
            action="login",
            level="warn",
            result="warn",
            title="Sign-in rejected",
            user_summary="A sign-in attempt used unknown credentials.",
            technical_details="accounts.login rejected credentials for the supplied email.",
        )
        return _json_error(str(exc), status=401)
    except SQLAlchemyError as exc:
        return _database_error("auth-login", exc)

    log_manager.record(
        component="Auth",
        action="login",
        title="Investor signed in",
        user_summary=f"{investor.name} signed in.",
        technical_details="accounts.login rotated the investor API token.",
        investor_id=investor.id,
    )
    return jsonify({"success": True, "token": investor.api_token, "user": serialize_investor(investor)})


@bp.route("/auth/logout", methods=["POST"])
@login_required
def api_logout():
    """Revoke the caller's token."""

    investor = current_investor()
    revoke_token(investor)
    log_manager.record(
        component="Auth",
        action="logout",
        title="Investor signed out",
        user_summary=f"{investor.name} signed out.",
        technical_details="accounts.logout cleared the investor API token.",
        investor_id=investor.id,
    )
    return jsonify({"success": True, "message": "Signed out."})


@bp.route("/investors/me")
@login_required
def api_profile():
    """Return the signed-in investor profile."""

    return jsonify({"success": True, "user": serialize_investor(current_investor())})


@bp.route("/investors/me/kyc", methods=["PATCH"])
@login_required
def api_submit_kyc():
    """Mark the investor's KYC documents as submitted for review."""

    payload = request.get_json(silent=True) or {}
    status = (payload.get("status") or "").strip().lower()
    if status != "submitted":
        return _json_error("Investors can only submit KYC for review.")

    investor = current_investor()
    try:
        update_kyc_status(investor, status)
    except AccountError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("kyc-submit", exc)

    log_manager.record(
        component="Auth",
        action="kyc-submit",
        title="KYC submitted",
        user_summary="Identity verification documents were submitted for review.",
        technical_details=f"accounts.kyc moved investor {investor.id} to submitted.",
    )
    return jsonify({"success": True, "user": serialize_investor(investor)})


@bp.route("/investors/<int:investor_id>/kyc", methods=["PATCH"])
@admin_required
def api_review_kyc(investor_id: int):
    """Record a back-office KYC review outcome for an investor."""

    investor = db.session.get(Investor, investor_id)
    if investor is None:
        return _json_error("Investor not found.", status=404)

    payload = request.get_json(silent=True) or {}
    status = (payload.get("status") or "").strip().lower()
    previous = investor.kyc_status
    try:
        update_kyc_status(investor, status)
    except AccountError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("kyc-review", exc)

    log_manager.record(
        component="Auth",
        action="kyc-review",
        title="KYC status changed",
        user_summary=f"KYC for {investor.email} moved from {previous} to {status}.",
        technical_details=f"accounts.kyc_review moved investor {investor.id} to {status}.",
        investor_id=investor.id,
    )
    return jsonify({"success": True, "user": serialize_investor(investor)})


@bp.route("/wallet")
@login_required
def api_wallet():
    """Return the wallet balance and recent ledger entries."""

    investor = current_investor()
    limit = request.args.get("limit", type=int) or 20
    return jsonify(
        {
            "success": True,
            "balance": serialize_investor(investor)["wallet_balance"],
            "transactions": [
                serialize_transaction(entry) for entry in recent_transactions(investor, limit)
            ],
        }
    )


@bp.route("/wallet/deposit", methods=["POST"])
@login_required
def api_wallet_deposit():
    """Add funds to the signed-in investor's wallet."""

    investor = current_investor()
    payload = request.get_json(silent=True) or {}
    try:
        entry = deposit(investor, payload.get("amount"))
    except AccountError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("wallet-deposit", exc)

    amount_display = format_currency(entry.amount)
    log_manager.record(
        component="Wallet",
        action="deposit",
        title="Wallet recharged",
        user_summary=f"Added {amount_display} to the wallet.",
        technical_details=f"accounts.deposit credited transaction {entry.id}.",
    )
    return _json_response(
        {
            "success": True,
            "message": f"Added {amount_display} to your wallet.",
            "balance": serialize_investor(investor)["wallet_balance"],
            "transaction": serialize_transaction(entry),
        },
        status=201,
    )
