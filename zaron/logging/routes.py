"""Routes for reading the structured audit log."""
from __future__ import annotations

from flask import jsonify, request

from ..accounts.session import admin_required
from ..logging_service import log_manager
from . import bp


@bp.route("/feed")
@admin_required
def feed():
    """Return filtered logs as JSON data."""
    logs = log_manager.fetch_logs(
        level=request.args.get("level"),
        component=request.args.get("component"),
        investor_id=request.args.get("investor_id", type=int),
        search=request.args.get("search"),
        limit=request.args.get("limit", type=int) or 50,
    )
    return jsonify(
        {
            "success": True,
            "logs": logs,
            "latest": log_manager.latest_timestamp(),
            "levels": log_manager.available_levels,
            "components": log_manager.available_components,
        }
    )
