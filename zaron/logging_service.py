"""Structured audit logging for the Zaron portal."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from flask import current_app, g, has_request_context

from .extensions import db
from .models import SystemLog
from .settings.services import convert_to_active_timezone


@dataclass(frozen=True)
class LogRecord:
    """Structured representation of a log message."""

    component: str
    action: str
    level: str
    result: str
    title: str
    user_summary: str
    technical_details: str
    correlation_id: str
    investor_id: Optional[int]
    environment: str


def _session_investor_id() -> Optional[int]:
    """Return the signed-in investor for the active request, if any."""

    if not has_request_context():
        return None
    session = g.get("session")
    if session is None or session.investor is None:
        return None
    return session.investor.id


class LogManager:
    """Persist and query audit records for portal actions."""

    def __init__(self) -> None:
        self.app = None
        self.available_levels = ["info", "warn", "error"]
        self.available_components: list[str] = []

    def init_app(self, app) -> None:
        """Attach the log manager to the Flask app."""
        self.app = app

    def _config(self):
        return (self.app or current_app).config

    def register_component(self, component: str) -> None:
        """Explicitly register a component name."""
        if component not in self.available_components:
            self.available_components.append(component)
            self.available_components.sort()

    def record(
        self,
        *,
        component: str,
        action: str,
        level: str = "info",
        result: str = "success",
        title: str,
        user_summary: str,
        technical_details: str,
        correlation_id: Optional[str] = None,
        investor_id: Optional[int] = None,
    ) -> LogRecord:
        """Persist a new log record and commit it immediately."""
        if level not in self.available_levels:
            raise ValueError(f"Unsupported level '{level}'")

        self.register_component(component)
        environment = self._config().get("ENVIRONMENT", "development")
        correlation = correlation_id or str(uuid4())
        if investor_id is None:
            investor_id = _session_investor_id()

        entry = SystemLog(
            component=component,
            action=action,
            level=level,
            result=result,
            title=title,
            user_summary=user_summary,
            technical_details=technical_details,
            correlation_id=correlation,
            investor_id=investor_id,
            environment=environment,
        )
        db.session.add(entry)
        self._trim_logs(self._config().get("LOG_RETENTION", 200))
        db.session.commit()

        return LogRecord(
            component=component,
            action=action,
            level=level,
            result=result,
            title=title,
            user_summary=user_summary,
            technical_details=technical_details,
            correlation_id=correlation,
            investor_id=investor_id,
            environment=environment,
        )

    def _trim_logs(self, retention: int) -> None:
        """Keep the number of stored logs under the configured retention."""
        total = SystemLog.query.count()
        if total <= retention:
            return
        excess = total - retention
        oldest_ids = [
            entry.id
            for entry in SystemLog.query.order_by(SystemLog.timestamp).limit(excess)
        ]
        if oldest_ids:
            SystemLog.query.filter(SystemLog.id.in_(oldest_ids)).delete(synchronize_session=False)

    def fetch_logs(
        self,
        *,
        level: Optional[str] = None,
        component: Optional[str] = None,
        investor_id: Optional[int] = None,
        search: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, object]]:
        """Retrieve structured logs with optional filtering."""
        query = SystemLog.query.order_by(SystemLog.timestamp.desc(), SystemLog.id.desc())
        if level and level in self.available_levels:
            query = query.filter_by(level=level)
        if component:
            query = query.filter_by(component=component)
        if investor_id is not None:
            query = query.filter_by(investor_id=investor_id)
        if search:
            like_pattern = f"%{search}%"
            query = query.filter(
                (SystemLog.title.ilike(like_pattern))
                | (SystemLog.user_summary.ilike(like_pattern))
                | (SystemLog.technical_details.ilike(like_pattern))
                | (SystemLog.correlation_id.ilike(like_pattern))
            )
        return [record.serialize() for record in query.limit(limit).all()]

    def latest_timestamp(self) -> Optional[str]:
        """Return ISO formatted timestamp of the most recent log entry."""
        record = SystemLog.query.order_by(SystemLog.timestamp.desc()).first()
        if not record:
            return None
        return convert_to_active_timezone(record.timestamp).isoformat(timespec="seconds")


log_manager = LogManager()
