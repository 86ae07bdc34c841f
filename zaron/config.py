"""Configuration settings for the Zaron investor portal."""
from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    """Base configuration class."""

    SECRET_KEY = os.environ.get("ZARON_SECRET_KEY", "zaron-dev-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "ZARON_DATABASE_URI", f"sqlite:///{BASE_DIR / 'zaron.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ENVIRONMENT = os.environ.get("ZARON_ENV", "development")
    LOG_RETENTION = int(os.environ.get("ZARON_LOG_RETENTION", 200))
    DEFAULT_TIMEZONE = os.environ.get("ZARON_TIMEZONE", "Asia/Riyadh")
    CURRENCY = os.environ.get("ZARON_CURRENCY", "SAR")
    ADMIN_API_KEY = os.environ.get("ZARON_ADMIN_KEY")
