"""Per-request investor session resolved from a bearer token."""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional

from flask import current_app, g, jsonify, request

from .models import Investor


@dataclass
class RequestSession:
    """Who is calling, made available to handlers as ``g.session``."""

    investor: Optional[Investor] = None
    token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.investor is not None


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_session() -> RequestSession:
    """Resolve the bearer token of the current request into a session."""

    token = _bearer_token()
    investor = Investor.query.filter_by(api_token=token).first() if token else None
    session = RequestSession(investor=investor, token=token if investor else None)
    g.session = session
    return session


def login_required(view: Callable) -> Callable:
    """Reject the request with 401 unless a valid bearer token is supplied."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        session = load_session()
        if not session.is_authenticated:
            response = jsonify({"success": False, "message": "Sign in to continue."})
            response.status_code = 401
            return response
        return view(*args, **kwargs)

    return wrapper


def current_investor() -> Investor:
    """Return the signed-in investor of a ``login_required`` view."""

    return g.session.investor


def admin_required(view: Callable) -> Callable:
    """Allow back-office calls carrying the configured ``X-Admin-Key``."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_KEY")
        supplied = request.headers.get("X-Admin-Key", "")
        if not expected or not hmac.compare_digest(str(expected).encode(), supplied.encode()):
            response = jsonify({"success": False, "message": "Administrator access required."})
            response.status_code = 403
            return response
        return view(*args, **kwargs)

    return wrapper
