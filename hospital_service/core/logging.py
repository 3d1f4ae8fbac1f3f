"""Logging setup and the audit trail for consent and access decisions.

Audit lines go to the "audit" logger. Each record carries its fields
(action, actor, entity, outcome, reason) as attributes, so the structured
formatter can emit them as separate keys in production.
"""

import logging
import sys
from typing import Any

from hospital_service.core.config import settings

AUDIT_FIELDS = ("action", "actor", "entity", "outcome", "reason")

DEV_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


class StructuredFormatter(logging.Formatter):
    """key=value formatter; audit fields become their own keys."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in AUDIT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                fields[name] = value

        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{key}={value}" for key, value in fields.items())


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger for the API process or the expiry task.

    Args:
        level: Overrides settings.log_level (e.g., "DEBUG" from a CLI flag)
    """
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(DEV_FORMAT) if settings.is_dev else StructuredFormatter()
    )
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class AuditLogger:
    """Audit trail for applied and rejected state changes."""

    def __init__(self, name: str = "audit") -> None:
        self.logger = logging.getLogger(name)

    def log(
        self,
        action: str,
        actor_type: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a state change that was applied."""
        self._emit(
            logging.INFO,
            action=action,
            actor=f"{actor_type}:{actor_id}",
            entity=f"{entity_type}:{entity_id}",
            outcome="applied",
            detail=metadata or {},
        )

    def conflict(
        self,
        action: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        reason: str,
    ) -> None:
        """Record a rejected state change (duplicate request, wrong status, quota)."""
        self._emit(
            logging.WARNING,
            action=action,
            actor=actor_id,
            entity=f"{entity_type}:{entity_id}",
            outcome="rejected",
            reason=reason,
        )

    def _emit(self, level: int, detail: Any = None, **fields: str) -> None:
        message = " ".join(f"{key}={value}" for key, value in fields.items())
        if detail is not None:
            message = f"{message} metadata={detail}"
        self.logger.log(level, f"AUDIT: {message}", extra=fields)


audit_logger = AuditLogger()
