"""Blueprint for global portal settings.

Routes are attached by the application factory because the settings services
are imported by the logging layer before any blueprint is registered.
"""
from __future__ import annotations

from flask import Blueprint

bp = Blueprint("settings", __name__)
