"""Properties, holdings and returns calculation blueprint."""
from flask import Blueprint

bp = Blueprint("investments", __name__)

from . import routes  # noqa: E402,F401
