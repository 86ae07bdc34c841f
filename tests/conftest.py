from __future__ import annotations

from pathlib import Path
import sys

import pytest
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from zaron import create_app
from zaron.config import Config
from zaron.extensions import db

ADMIN_KEY = "test-admin-key"


class TestingConfig(Config):
    """Configuration tuned for isolated unit tests."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    DEFAULT_TIMEZONE = "UTC"
    ADMIN_API_KEY = ADMIN_KEY


@pytest.fixture()
def app():
    """Create a Flask app instance backed by an in-memory database."""

    application = create_app(TestingConfig)
    yield application
    with application.app_context():
        db.drop_all()
        db.session.remove()


@pytest.fixture()
def client(app):
    """Provide a Flask test client for request assertions."""

    return app.test_client()


@pytest.fixture()
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture()
def investor_headers(client):
    """Register a KYC-submitted investor holding SAR 50,000 and return auth headers."""

    response = client.post(
        "/api/auth/register",
        json={"name": "Noura Saleh", "email": "noura@example.com", "password": "s3cure-pass"},
    )
    headers = {"Authorization": f"Bearer {response.get_json()['token']}"}
    client.patch("/api/investors/me/kyc", json={"status": "submitted"}, headers=headers)
    client.post("/api/wallet/deposit", json={"amount": "50000"}, headers=headers)
    return headers


@pytest.fixture()
def property_id(client, admin_headers):
    """List an open property priced at SAR 1,000 per unit with explicit terms."""

    response = client.post(
        "/api/properties",
        json={
            "title": "Al Olaya Residences",
            "location": "Riyadh",
            "price_per_share": "1000",
            "total_shares": 100,
            "rental_yield_rate": 8,
            "appreciation_rate": 5,
            "locking_period_years": 5,
            "bond_maturity_years": 10,
            "early_withdrawal_penalty_percentage": 5,
            "management_fee_percentage": 1,
            "management_fee_deduction": "ongoing",
            "graduated_penalties": [
                {"year": 1, "penalty_percentage": 8},
                {"year": 2, "penalty_percentage": 5},
                {"year": 3, "penalty_percentage": 3},
            ],
        },
        headers=admin_headers,
    )
    return response.get_json()["data"]["id"]
