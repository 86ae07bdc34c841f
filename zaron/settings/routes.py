"""HTTP routes for managing global portal settings."""
from __future__ import annotations

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from ..accounts.session import admin_required
from ..extensions import db
from ..logging_service import log_manager
from . import bp
from .services import (
    describe_timezone,
    get_app_settings,
    get_timezone_options,
    set_timezone,
)


def _json_error(message: str, *, status: int = 400):
    response = jsonify({"success": False, "message": message})
    response.status_code = status
    return response


def _timezone_payload() -> dict[str, object]:
    settings = get_app_settings()
    return {
        "success": True,
        "timezone": settings.timezone,
        "label": describe_timezone(settings.timezone),
        "options": [option.to_dict() for option in get_timezone_options()],
    }


@bp.route("/api/timezone", methods=["GET"])
def timezone_preferences():
    """Expose the portal timezone and the selectable options."""

    return jsonify(_timezone_payload())


@bp.route("/api/timezone", methods=["PATCH"])
@admin_required
def update_timezone_preferences():
    """Change the portal timezone used for every displayed timestamp."""

    payload = request.get_json(silent=True) or {}
    requested_timezone = (payload.get("timezone") or "").strip()

    try:
        settings = set_timezone(requested_timezone)
    except ValueError:
        return _json_error("Select a timezone from the list before saving.")
    except SQLAlchemyError as exc:
        db.session.rollback()
        log_manager.record(
            component="Settings",
            action="update-timezone",
            level="error",
            result="error",
            title="Timezone update failed",
            user_summary="The portal could not save the new timezone. Try again shortly.",
            technical_details=(
                "settings.set_timezone raised"
                f" {exc.__class__.__name__}: {exc}"
            ),
        )
        return _json_error(
            "We were unable to update the timezone. Try again shortly.", status=500
        )

    timezone_label = describe_timezone(settings.timezone)
    log_manager.record(
        component="Settings",
        action="update-timezone",
        level="info",
        result="success",
        title="Timezone updated",
        user_summary=f"Portal timezone changed to {timezone_label}.",
        technical_details=f"settings.set_timezone persisted timezone={settings.timezone}",
    )

    payload = _timezone_payload()
    payload["message"] = f"Timezone updated to {timezone_label}."
    return jsonify(payload)
