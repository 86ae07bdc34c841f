"""Utility functions for managing global portal settings."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

from ..extensions import db
from .models import AppSettings

AVAILABLE_TIMEZONES: tuple[tuple[str, str], ...] = (
    ("UTC", "Coordinated Universal Time"),
    ("Asia/Riyadh", "Arabia Standard Time"),
    ("Asia/Dubai", "Gulf Standard Time"),
    ("Asia/Qatar", "Arabia Standard Time — Doha"),
    ("Africa/Cairo", "Eastern European Time — Cairo"),
    ("Europe/London", "Greenwich Mean Time"),
    ("Europe/Berlin", "Central European Time"),
    ("Asia/Kolkata", "India Standard Time"),
    ("America/New_York", "Eastern Time — US & Canada"),
)

_timezone_cache: dict[str, ZoneInfo] = {}


@dataclass(frozen=True)
class TimezoneOption:
    """Simple representation of a selectable timezone."""

    value: str
    label: str
    offset: str

    def to_dict(self) -> dict[str, str]:
        return {"value": self.value, "label": self.label, "offset": self.offset}


def _resolve_zoneinfo(name: str) -> ZoneInfo:
    """Return a ZoneInfo instance for the provided timezone name."""

    zone = _timezone_cache.get(name)
    if zone:
        return zone
    try:
        zone = ZoneInfo(name)
    except ZoneInfoNotFoundError:
        zone = ZoneInfo("UTC")
    _timezone_cache[name] = zone
    return zone


def is_supported_timezone(value: str | None) -> bool:
    """Return True when the value is one of the curated timezones."""

    return value in {choice[0] for choice in AVAILABLE_TIMEZONES}


def _default_timezone() -> str:
    configured = current_app.config.get("DEFAULT_TIMEZONE") if has_app_context() else None
    return configured if is_supported_timezone(configured) else "UTC"


def ensure_app_settings() -> AppSettings:
    """Create application settings with defaults when missing."""

    settings = AppSettings.query.first()
    if settings and settings.timezone:
        return settings

    if not settings:
        settings = AppSettings(timezone=_default_timezone())
    else:
        settings.timezone = _default_timezone()
    db.session.add(settings)
    db.session.commit()
    return settings


def get_app_settings() -> AppSettings:
    """Return the persisted application settings."""

    return ensure_app_settings()


def get_active_timezone() -> ZoneInfo:
    """Return the ZoneInfo instance for the active timezone."""

    return _resolve_zoneinfo(ensure_app_settings().timezone or "UTC")


def set_timezone(choice: str) -> AppSettings:
    """Persist a new timezone selection for the portal."""

    if not is_supported_timezone(choice):
        raise ValueError(f"Unsupported timezone '{choice}'")

    settings = ensure_app_settings()
    settings.timezone = choice
    db.session.add(settings)
    db.session.commit()
    return settings


def _format_offset(delta: timedelta | None) -> str:
    """Return a printable UTC offset string."""

    if delta is None:
        return "UTC±00:00"
    minutes = int(delta.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hours, remainder = divmod(abs(minutes), 60)
    return f"UTC{sign}{hours:02d}:{remainder:02d}"


def get_timezone_options() -> list[TimezoneOption]:
    """Return curated timezone options for the settings API."""

    now_utc = datetime.now(timezone.utc)
    return [
        TimezoneOption(
            value=value,
            label=label,
            offset=_format_offset(now_utc.astimezone(_resolve_zoneinfo(value)).utcoffset()),
        )
        for value, label in AVAILABLE_TIMEZONES
    ]


def describe_timezone(name: str | None) -> str:
    """Return a friendly label for the selected timezone."""

    name = name or "UTC"
    label = dict(AVAILABLE_TIMEZONES).get(name, name)
    now_utc = datetime.now(timezone.utc)
    offset = _format_offset(now_utc.astimezone(_resolve_zoneinfo(name)).utcoffset())
    return f"{label} ({offset})"


def convert_to_active_timezone(value: datetime) -> datetime:
    """Convert a naive UTC datetime to the configured timezone."""

    if not isinstance(value, datetime):
        raise TypeError("Datetime objects are required for timezone conversion")

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_active_timezone())


def current_datetime() -> datetime:
    """Return the current moment localized to the active timezone."""

    return datetime.now(get_active_timezone())
