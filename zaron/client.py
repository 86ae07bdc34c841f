"""HTTP client for the portal API with an offline returns estimate.

The client keeps its sign-in credential in a pluggable ``CredentialStore``
and reuses :mod:`zaron.calculator` whenever the server cannot produce an
estimate, so both sides always agree on the arithmetic.
"""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

import requests

from .calculator import (
    InvestmentSnapshot,
    ManagementFeePolicy,
    as_utc,
    calculate_withdrawal_quote,
    parse_fee_policy,
    parse_penalty_tiers,
    project_returns,
    projection_to_dict,
    quote_to_dict,
    to_decimal,
)


class PortalError(RuntimeError):
    """Raised when the portal API rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CredentialStore(Protocol):
    """Where the signed-in token and user profile are kept between runs."""

    def get(self) -> Optional[dict[str, Any]]: ...

    def set(self, credential: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    """Keep the credential for the lifetime of the process."""

    def __init__(self, credential: Optional[dict[str, Any]] = None) -> None:
        self._credential = dict(credential) if credential else None

    def get(self) -> Optional[dict[str, Any]]:
        return dict(self._credential) if self._credential else None

    def set(self, credential: dict[str, Any]) -> None:
        self._credential = dict(credential)

    def clear(self) -> None:
        self._credential = None


class FileCredentialStore:
    """Persist the credential as a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get(self) -> Optional[dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            # an unreadable file is treated as signed out
            return None
        if not isinstance(data, dict) or not data.get("token"):
            return None
        return data

    def set(self, credential: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(credential), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def snapshot_from_payload(payload: Mapping[str, Any], now: datetime) -> InvestmentSnapshot:
    """Build a calculator snapshot of an API investment as of ``now``.

    When the payload carries ``lock_in_ends_at`` the matured flag is
    recomputed for ``now`` instead of trusting the value fetched earlier.
    """

    invested_at = _parse_timestamp(payload.get("invested_at"))
    if invested_at is None:
        raise ValueError("The investment has no usable investment date.")

    lock_in_ends_at = _parse_timestamp(payload.get("lock_in_ends_at"))
    if lock_in_ends_at is not None:
        after_maturity = as_utc(now) >= as_utc(lock_in_ends_at)
    else:
        after_maturity = bool(payload.get("is_after_maturity"))

    return InvestmentSnapshot(
        principal=to_decimal(payload.get("principal", payload.get("amount"))),
        invested_at=invested_at,
        maturity_date=_parse_timestamp(payload.get("maturity_date")),
        rental_yield_earned=to_decimal(payload.get("rental_yield_earned")),
        appreciation_value=to_decimal(payload.get("appreciation_value")),
        is_after_maturity=after_maturity,
        penalty_rate=to_decimal(payload.get("penalty_rate")),
        penalty_tiers=tuple(parse_penalty_tiers(payload.get("graduated_penalties"))),
    )


def estimate_withdrawal(
    investment: Mapping[str, Any],
    now: datetime,
    fee_policy: Optional[ManagementFeePolicy] = None,
) -> dict[str, object]:
    """Quote a withdrawal locally from an investment payload.

    The fee policy defaults to the ``management_fee`` block of the payload;
    missing or malformed fee data means no fee.
    """

    if fee_policy is None:
        fee_policy = parse_fee_policy(investment.get("management_fee"))
    quote = calculate_withdrawal_quote(snapshot_from_payload(investment, now), fee_policy, now=now)
    return {**quote_to_dict(quote), "source": "local"}


class PortalClient:
    """Thin wrapper over the portal REST API."""

    def __init__(
        self,
        base_url: str,
        store: Optional[CredentialStore] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store = store or MemoryCredentialStore()
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def user(self) -> Optional[dict[str, Any]]:
        credential = self.store.get()
        return credential.get("user") if credential else None

    @property
    def is_authenticated(self) -> bool:
        return self.store.get() is not None

    def _headers(self) -> dict[str, str]:
        credential = self.store.get()
        if not credential:
            return {}
        return {"Authorization": f"Bearer {credential['token']}"}

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs,
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PortalError(
                f"Unexpected response from {path} ({response.status_code}).",
                response.status_code,
            ) from exc

        if response.status_code == 401:
            self.store.clear()
        if not response.ok or not payload.get("success", False):
            raise PortalError(payload.get("message") or "Request failed.", response.status_code)
        return payload

    def login(self, email: str, password: str) -> dict[str, Any]:
        """Sign in and persist the returned credential."""

        payload = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.store.set({"token": payload["token"], "user": payload["user"]})
        return payload["user"]

    def logout(self) -> None:
        """Revoke the token on the server when possible and forget it locally."""

        try:
            if self.is_authenticated:
                self._request("POST", "/auth/logout")
        except (PortalError, requests.RequestException):
            pass
        finally:
            self.store.clear()

    def my_investments(self) -> list[dict[str, Any]]:
        return self._request("GET", "/investments/my")["data"]

    def portfolio(self) -> dict[str, Any]:
        return self._request("GET", "/portfolio")["data"]

    def investment_returns(self, investment_id: int | str) -> dict[str, Any]:
        return self._request("GET", f"/investments/{investment_id}/returns")["data"]

    def withdraw(self, investment_id: int | str) -> dict[str, Any]:
        return self._request("POST", f"/investments/{investment_id}/withdraw")["data"]

    def withdrawal_quote(self, investment: Mapping[str, Any], now: datetime) -> dict[str, object]:
        """Ask the server for a withdrawal quote, estimating locally if unreachable."""

        try:
            withdrawal = self.investment_returns(investment["id"])["withdrawal"]
        except requests.RequestException:
            return estimate_withdrawal(investment, now)
        if withdrawal is None:
            raise PortalError("Only active investments can be withdrawn.")
        return {**withdrawal, "source": "server"}

    def calculate_returns(
        self,
        units: int,
        *,
        property_id: int | str | None = None,
        terms: Optional[Mapping[str, Any]] = None,
        withdrawal_year: int = 1,
    ) -> dict[str, Any]:
        """Project returns for buying ``units``.

        ``terms`` carries the property figures already on screen
        (``price_per_share``, rates, periods, ``graduated_penalties`` and
        ``early_withdrawal_penalty_percentage``). They are sent to the server
        and reused for the local estimate when the server is unreachable or
        failing. Requests the server rejects as invalid are not estimated.
        """

        terms = dict(terms or {})
        body: dict[str, Any] = {**terms, "units": units, "withdrawal_year": withdrawal_year}
        if property_id is not None:
            body["property_id"] = property_id

        try:
            return self._request("POST", "/calculate-returns", json=body)
        except requests.RequestException:
            if "price_per_share" not in terms:
                raise
        except PortalError as exc:
            if exc.status_code is None or exc.status_code < 500 or "price_per_share" not in terms:
                raise

        projection = project_returns(
            units,
            terms.get("price_per_share"),
            terms.get("rental_yield_rate"),
            terms.get("appreciation_rate"),
            terms.get("locking_period_years"),
            terms.get("bond_maturity_years"),
            terms.get("graduated_penalties"),
            flat_penalty_rate=terms.get("early_withdrawal_penalty_percentage"),
            withdrawal_year=withdrawal_year,
        )
        return {"success": True, "source": "local", **projection_to_dict(projection)}
