"""Routes for properties, holdings, withdrawals and returns projections."""
from __future__ import annotations

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from ..accounts.services import format_currency, serialize_investor, serialize_transaction
from ..accounts.session import admin_required, current_investor, login_required
from ..calculator import as_number, projection_to_dict, quote_to_dict
from ..extensions import db
from ..logging_service import log_manager
from ..settings.services import current_datetime
from . import bp
from .services import (
    InvestmentError,
    WithdrawalRejected,
    build_portfolio,
    create_investment,
    create_property,
    ensure_investment_defaults,
    fetch_investments,
    fetch_properties,
    find_investment,
    find_property,
    projection_from_payload,
    quote_withdrawal,
    serialize_investment,
    serialize_property,
    serialize_terms,
    settings_terms,
    snapshot_for,
    update_investment_settings,
    withdraw_investment,
)


def _json_response(payload: dict[str, object], *, status: int = 200):
    """Return a JSON response with a consistent structure."""

    response = jsonify(payload)
    response.status_code = status
    return response


def _json_error(message: str, *, status: int = 400):
    """Return a JSON error payload with the supplied status."""

    return _json_response({"success": False, "message": message}, status=status)


def _database_error(component: str, action: str, exc: SQLAlchemyError):
    """Roll back, log and report a failed database write."""

    db.session.rollback()
    log_manager.record(
        component=component,
        action=action,
        level="error",
        result="error",
        title=f"{component} update failed",
        user_summary="The request could not be saved. Nothing was changed.",
        technical_details=f"investments.{action} raised {exc.__class__.__name__}: {exc}",
    )
    return _json_error("Unable to complete the request right now. Please try again shortly.", status=500)


@bp.route("/investment-settings", methods=["GET"])
def api_investment_settings():
    """Expose the default investment terms."""

    settings = ensure_investment_defaults()
    return jsonify({"success": True, "settings": serialize_terms(settings_terms(settings))})


@bp.route("/investment-settings", methods=["PATCH"])
@admin_required
def api_update_investment_settings():
    """Change the default terms applied to new properties."""

    payload = request.get_json(silent=True) or {}
    try:
        settings = update_investment_settings(payload)
    except InvestmentError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("Settings", "update-investment-settings", exc)

    log_manager.record(
        component="Settings",
        action="update-investment-settings",
        title="Investment terms updated",
        user_summary="Default investment terms were changed for new properties.",
        technical_details=f"investments.settings updated fields {sorted(payload)}.",
    )
    return jsonify({"success": True, "settings": serialize_terms(settings_terms(settings))})


@bp.route("/properties", methods=["GET"])
def api_properties():
    """List properties, optionally filtered by status."""

    status = (request.args.get("status") or "").strip().lower() or None
    return jsonify(
        {"success": True, "data": [serialize_property(asset) for asset in fetch_properties(status=status)]}
    )


@bp.route("/properties", methods=["POST"])
@admin_required
def api_create_property():
    """List a new property for investment."""

    payload = request.get_json(silent=True) or {}
    try:
        asset = create_property(payload)
    except InvestmentError as exc:
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("Properties", "create-property", exc)

    log_manager.record(
        component="Properties",
        action="create",
        title="Property listed",
        user_summary=f"Listed {asset.title} with {asset.total_shares} units.",
        technical_details=f"investments.create_property stored property {asset.id}.",
    )
    return _json_response({"success": True, "data": serialize_property(asset)}, status=201)


@bp.route("/properties/<property_id>")
def api_property_detail(property_id: str):
    """Return a single property with its investment terms."""

    asset = find_property(property_id)
    if asset is None:
        return _json_error("Property not found.", status=404)
    return jsonify({"success": True, "data": serialize_property(asset)})


@bp.route("/investments", methods=["POST"])
@login_required
def api_invest():
    """Buy units of a property with wallet funds."""

    investor = current_investor()
    payload = request.get_json(silent=True) or {}
    asset = find_property(payload.get("property_id"))
    if asset is None:
        return _json_error("Property not found.", status=404)

    now = current_datetime()
    try:
        investment = create_investment(investor, asset, payload.get("units"), now)
    except InvestmentError as exc:
        log_manager.record(
            component="Investments",
            action="invest",
            level="warn",
            result="warn",
            title="Investment declined",
            user_summary=str(exc),
            technical_details=f"investments.create rejected purchase of property {asset.id}.",
        )
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("Investments", "invest", exc)

    amount_display = format_currency(investment.gross_amount)
    log_manager.record(
        component="Investments",
        action="invest",
        title="Investment placed",
        user_summary=f"Invested {amount_display} in {asset.title}.",
        technical_details=(
            f"investments.create stored investment {investment.id} for {investment.units} units."
        ),
    )
    return _json_response(
        {
            "success": True,
            "message": f"Invested {amount_display} in {asset.title}.",
            "data": serialize_investment(investment, now),
            "wallet_balance": serialize_investor(investor)["wallet_balance"],
        },
        status=201,
    )


@bp.route("/investments/my")
@login_required
def api_my_investments():
    """List the signed-in investor's holdings."""

    status = (request.args.get("status") or "").strip().lower() or None
    now = current_datetime()
    investments = fetch_investments(current_investor(), status=status)
    return jsonify(
        {"success": True, "data": [serialize_investment(investment, now) for investment in investments]}
    )


@bp.route("/portfolio")
@login_required
def api_portfolio():
    """Return portfolio totals and holdings."""

    return jsonify({"success": True, "data": build_portfolio(current_investor(), current_datetime())})


@bp.route("/investments/<investment_id>/returns")
@login_required
def api_investment_returns(investment_id: str):
    """Quote what withdrawing this investment right now would pay out."""

    investment = find_investment(current_investor(), investment_id)
    if investment is None:
        return _json_error("Investment not found.", status=404)

    now = current_datetime()
    if investment.status != "active":
        return jsonify(
            {"success": True, "data": {"investment": serialize_investment(investment, now), "withdrawal": None}}
        )

    snapshot = snapshot_for(investment, now)
    quote = quote_withdrawal(investment, now)
    return jsonify(
        {
            "success": True,
            "data": {
                "investment": serialize_investment(investment, now),
                "withdrawal": quote_to_dict(quote),
                "appreciation_value": as_number(snapshot.appreciation_value),
                "is_after_maturity": snapshot.is_after_maturity,
            },
        }
    )


@bp.route("/investments/<investment_id>/withdraw", methods=["POST"])
@login_required
def api_withdraw(investment_id: str):
    """Withdraw an investment into the wallet."""

    investor = current_investor()
    investment = find_investment(investor, investment_id)
    if investment is None:
        return _json_error("Investment not found.", status=404)

    now = current_datetime()
    try:
        quote, entry = withdraw_investment(investment, now)
    except WithdrawalRejected as exc:
        log_manager.record(
            component="Investments",
            action="withdraw",
            level="warn",
            result="warn",
            title="Withdrawal rejected",
            user_summary=str(exc),
            technical_details=f"investments.withdraw refused investment {investment.id}.",
        )
        return _json_error(str(exc))
    except SQLAlchemyError as exc:
        return _database_error("Investments", "withdraw", exc)

    amount_display = format_currency(entry.amount)
    log_manager.record(
        component="Investments",
        action="withdraw",
        title="Investment withdrawn",
        user_summary=f"Withdrew {amount_display} from {investment.asset.title}.",
        technical_details=(
            f"investments.withdraw paid investment {investment.id} in holding year "
            f"{quote.holding_year} with penalty {quote.penalty_percentage_applied}%."
        ),
    )
    return jsonify(
        {
            "success": True,
            "message": f"Successfully withdrew {amount_display}.",
            "data": {
                "investment": serialize_investment(investment, now),
                "withdrawal_details": quote_to_dict(quote),
                "transaction": serialize_transaction(entry),
                "wallet_balance": serialize_investor(investor)["wallet_balance"],
            },
        }
    )


@bp.route("/calculate-returns", methods=["POST"])
def api_calculate_returns():
    """Project returns for a prospective purchase of property units."""

    payload = request.get_json(silent=True) or {}
    try:
        projection = projection_from_payload(payload)
    except LookupError as exc:
        return _json_error(str(exc), status=404)
    except ValueError as exc:
        return _json_error(str(exc))

    log_manager.record(
        component="Calculator",
        action="calculate-returns",
        title="Returns projected",
        user_summary=(
            f"Projected returns for {projection.units} units "
            f"({format_currency(projection.investment_amount)})."
        ),
        technical_details=f"investments.calculate_returns property={payload.get('property_id')}",
    )
    return jsonify({"success": True, "source": "server", **projection_to_dict(projection)})
