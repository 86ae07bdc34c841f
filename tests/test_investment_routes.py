"""Tests for the property, investment and returns API routes."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from zaron.extensions import db
from zaron.investments.models import Investment
from zaron.investments.services import add_years


def _invest(client, headers, property_id, units=10):
    response = client.post(
        "/api/investments", json={"property_id": property_id, "units": units}, headers=headers
    )
    assert response.status_code == 201
    return response.get_json()["data"]


def _backdate(app, investment_id, days):
    with app.app_context():
        investment = db.session.get(Investment, investment_id)
        investment.invested_at = datetime.utcnow() - timedelta(days=days)
        investment.maturity_date = add_years(investment.invested_at, 10)
        db.session.commit()


def test_property_listing_requires_admin_key(client):
    response = client.post("/api/properties", json={"title": "Tower", "location": "Jeddah"})

    assert response.status_code == 403
    assert response.get_json()["message"] == "Administrator access required."


def test_property_defaults_come_from_investment_settings(client, admin_headers):
    response = client.post(
        "/api/properties",
        json={"title": "Corniche Lofts", "location": "Jeddah", "price_per_share": 500, "total_shares": 40},
        headers=admin_headers,
    )

    assert response.status_code == 201
    terms = response.get_json()["data"]["investment_terms"]
    assert terms["rental_yield_rate"] == 8.0
    assert terms["locking_period_years"] == 5
    assert terms["management_fee"] == {"percentage": 1.0, "deduction_type": "ongoing"}
    assert [tier["year"] for tier in terms["graduated_penalties"]] == [1, 2, 3]


def test_property_rejects_maturity_shorter_than_lock_in(client, admin_headers):
    response = client.post(
        "/api/properties",
        json={
            "title": "Short Bond",
            "location": "Dammam",
            "price_per_share": 100,
            "total_shares": 10,
            "locking_period_years": 6,
            "bond_maturity_years": 3,
        },
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert "Bond maturity" in response.get_json()["message"]


def test_investing_requires_sign_in(client, property_id):
    response = client.post("/api/investments", json={"property_id": property_id, "units": 1})

    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_investing_requires_submitted_kyc(client, property_id):
    token = client.post(
        "/api/auth/register",
        json={"name": "Omar", "email": "omar@example.com", "password": "password123"},
    ).get_json()["token"]
    headers = {"Authorization": f"Bearer {token}"}
    client.post("/api/wallet/deposit", json={"amount": 5000}, headers=headers)

    response = client.post(
        "/api/investments", json={"property_id": property_id, "units": 1}, headers=headers
    )

    assert response.status_code == 400
    assert "KYC" in response.get_json()["message"]


def test_investment_debits_wallet_and_reserves_units(client, investor_headers, property_id):
    data = _invest(client, investor_headers, property_id, units=10)

    assert data["amount"] == 10000.0
    assert data["principal"] == 10000.0
    assert data["status"] == "active"
    assert data["is_after_maturity"] is False

    wallet = client.get("/api/wallet", headers=investor_headers).get_json()
    assert wallet["balance"] == 40000.0
    assert wallet["transactions"][0]["type"] == "investment"

    asset = client.get(f"/api/properties/{property_id}").get_json()["data"]
    assert asset["financials"]["available_shares"] == 90
    assert asset["financials"]["funded_percentage"] == 10.0


def test_investment_rejects_more_units_than_available(client, investor_headers, property_id):
    response = client.post(
        "/api/investments", json={"property_id": property_id, "units": 101}, headers=investor_headers
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "Only 100 units are available."


def test_investment_rejects_insufficient_wallet_balance(client, investor_headers, admin_headers):
    expensive = client.post(
        "/api/properties",
        json={"title": "Palm Villa", "location": "Dubai", "price_per_share": 60000, "total_shares": 5},
        headers=admin_headers,
    ).get_json()["data"]["id"]

    response = client.post(
        "/api/investments", json={"property_id": expensive, "units": 1}, headers=investor_headers
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "Insufficient wallet balance."
    wallet = client.get("/api/wallet", headers=investor_headers).get_json()
    assert wallet["balance"] == 50000.0


def test_upfront_fee_is_taken_from_principal(client, investor_headers, admin_headers):
    upfront = client.post(
        "/api/properties",
        json={
            "title": "Marina Suites",
            "location": "Dubai",
            "price_per_share": 1000,
            "total_shares": 50,
            "management_fee_percentage": 2,
            "management_fee_deduction": "upfront",
        },
        headers=admin_headers,
    ).get_json()["data"]["id"]

    data = _invest(client, investor_headers, upfront, units=5)

    assert data["amount"] == 5000.0
    assert data["principal"] == 4900.0
    assert data["management_fee"]["fee_amount"] == 100.0


def test_returns_quote_for_a_fresh_investment_uses_first_year_tier(client, investor_headers, property_id):
    investment = _invest(client, investor_headers, property_id)

    response = client.get(f"/api/investments/{investment['id']}/returns", headers=investor_headers)

    assert response.status_code == 200
    withdrawal = response.get_json()["data"]["withdrawal"]
    assert withdrawal["holding_year"] == 1
    assert withdrawal["penalty_percentage_applied"] == 8.0
    assert withdrawal["penalty_amount"] == 800.0
    assert withdrawal["management_fee_amount"] == pytest.approx(100.0, abs=0.01)
    assert withdrawal["net_withdrawal_amount"] == pytest.approx(9100.0, abs=0.05)


def test_returns_quote_after_two_years_uses_third_year_tier(app, client, investor_headers, property_id):
    investment = _invest(client, investor_headers, property_id)
    _backdate(app, investment["id"], days=822)

    withdrawal = client.get(
        f"/api/investments/{investment['id']}/returns", headers=investor_headers
    ).get_json()["data"]["withdrawal"]

    assert withdrawal["holding_year"] == 3
    assert withdrawal["penalty_amount"] == 300.0
    assert withdrawal["rental_yield_earned"] == pytest.approx(1800.41, abs=0.1)
    expected = (
        withdrawal["principal"]
        + withdrawal["rental_yield_earned"]
        - withdrawal["penalty_amount"]
        - withdrawal["management_fee_amount"]
    )
    assert withdrawal["net_withdrawal_amount"] == pytest.approx(expected, abs=0.02)


def test_withdraw_after_lock_in_credits_wallet_without_penalty(app, client, investor_headers, property_id):
    investment = _invest(client, investor_headers, property_id)
    _backdate(app, investment["id"], days=6 * 366)

    response = client.post(f"/api/investments/{investment['id']}/withdraw", headers=investor_headers)

    assert response.status_code == 200
    data = response.get_json()["data"]
    details = data["withdrawal_details"]
    assert details["penalty_amount"] == 0.0
    assert data["investment"]["status"] == "withdrawn"
    assert data["transaction"]["direction"] == "credit"
    assert data["wallet_balance"] == pytest.approx(40000.0 + details["net_withdrawal_amount"], abs=0.01)

    asset = client.get(f"/api/properties/{property_id}").get_json()["data"]
    assert asset["financials"]["available_shares"] == 100


def test_withdrawing_twice_is_rejected(client, investor_headers, property_id):
    investment = _invest(client, investor_headers, property_id)
    first = client.post(f"/api/investments/{investment['id']}/withdraw", headers=investor_headers)
    second = client.post(f"/api/investments/{investment['id']}/withdraw", headers=investor_headers)

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.get_json()["message"] == "Only active investments can be withdrawn."

    returns = client.get(f"/api/investments/{investment['id']}/returns", headers=investor_headers)
    assert returns.get_json()["data"]["withdrawal"] is None


def test_investments_are_private_to_their_owner(client, investor_headers, property_id):
    investment = _invest(client, investor_headers, property_id)
    token = client.post(
        "/api/auth/register",
        json={"name": "Lina", "email": "lina@example.com", "password": "password123"},
    ).get_json()["token"]

    response = client.get(
        f"/api/investments/{investment['id']}/returns",
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 404


def test_portfolio_summarises_active_holdings(client, investor_headers, property_id):
    _invest(client, investor_headers, property_id, units=10)
    withdrawn = _invest(client, investor_headers, property_id, units=5)
    client.post(f"/api/investments/{withdrawn['id']}/withdraw", headers=investor_headers)

    summary = client.get("/api/portfolio", headers=investor_headers).get_json()["data"]["summary"]
    holdings = client.get("/api/investments/my?status=active", headers=investor_headers).get_json()["data"]

    assert summary["total_invested"] == 10000.0
    assert summary["active_investments"] == 1
    assert summary["withdrawn_investments"] == 1
    assert len(holdings) == 1


def test_calculate_returns_uses_property_terms(client, property_id):
    response = client.post(
        "/api/calculate-returns", json={"property_id": property_id, "units": 10, "withdrawal_year": 2}
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["source"] == "server"
    assert data["investment_amount"] == 10000.0
    assert data["returns"]["total_annual_return"] == 1300.0
    assert data["returns"]["locking_period"]["projected_value"] == 16500.0
    assert data["early_withdrawal"]["penalty_amount"] == 500.0


def test_calculate_returns_accepts_explicit_terms_without_property(client):
    response = client.post(
        "/api/calculate-returns",
        json={"units": 4, "price_per_share": 250, "rental_yield_rate": 10, "appreciation_rate": 0},
    )

    data = response.get_json()
    assert data["investment_amount"] == 1000.0
    assert data["returns"]["annual_rental_income"] == 100.0


@pytest.mark.parametrize(
    "payload, status",
    [
        ({"property_id": 999, "units": 1}, 404),
        ({"units": 0, "price_per_share": 100}, 400),
        ({"units": 2}, 400),
    ],
)
def test_calculate_returns_rejects_bad_requests(client, payload, status):
    response = client.post("/api/calculate-returns", json=payload)

    assert response.status_code == status
    assert response.get_json()["success"] is False


def test_investment_settings_update_applies_to_new_properties(client, admin_headers):
    response = client.patch(
        "/api/investment-settings",
        json={"rental_yield_rate": 9.5, "graduated_penalties": [{"year": 1, "penalty_percentage": 6}]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    settings = response.get_json()["settings"]
    assert settings["rental_yield_rate"] == 9.5
    assert settings["graduated_penalties"] == [{"year": 1, "penalty_percentage": 6.0}]

    asset = client.post(
        "/api/properties",
        json={"title": "Diplomatic Quarter", "location": "Riyadh", "price_per_share": 100, "total_shares": 10},
        headers=admin_headers,
    ).get_json()["data"]
    assert asset["investment_terms"]["rental_yield_rate"] == 9.5


def test_investment_settings_rejects_invalid_tiers(client, admin_headers):
    response = client.patch(
        "/api/investment-settings",
        json={"graduated_penalties": [{"year": 0, "penalty_percentage": 6}]},
        headers=admin_headers,
    )

    assert response.status_code == 400
