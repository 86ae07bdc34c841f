"""Application factory for the Zaron investor portal."""
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db
from .logging_service import log_manager


def create_app(config_class: type[Config] = Config) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)
    log_manager.init_app(app)

    from .accounts import models as _account_models  # noqa: F401
    from .investments import models as _investment_models  # noqa: F401

    with app.app_context():
        db.create_all()

    from .accounts import bp as accounts_bp
    from .investments import bp as investments_bp
    from .settings import bp as settings_bp
    from .settings import routes as _settings_routes  # noqa: F401
    from .logging import bp as logging_bp

    app.register_blueprint(accounts_bp, url_prefix="/api")
    app.register_blueprint(investments_bp, url_prefix="/api")
    app.register_blueprint(settings_bp, url_prefix="/settings")
    app.register_blueprint(logging_bp, url_prefix="/logs")

    for component in (
        "Auth",
        "Wallet",
        "Properties",
        "Investments",
        "Calculator",
        "Settings",
        "Logging",
    ):
        log_manager.register_component(component)

    return app
