"""Tests for log formatting and the audit logger."""

import logging

import pytest

from hospital_service.core.logging import AuditLogger, StructuredFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="audit",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="AUDIT: consent.respond",
        args=None,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Tests for the key=value production formatter."""

    def test_audit_fields_become_keys(self) -> None:
        record = make_record(
            action="consent.respond",
            actor="patient-1",
            entity="consent:c-1",
            outcome="rejected",
            reason="not_pending",
        )

        line = StructuredFormatter().format(record)

        assert "level=WARNING" in line
        assert "logger=audit" in line
        assert "action=consent.respond" in line
        assert "entity=consent:c-1" in line
        assert "outcome=rejected" in line
        assert line.endswith("reason=not_pending")

    def test_plain_record_has_no_audit_keys(self) -> None:
        line = StructuredFormatter().format(make_record())

        assert "message=AUDIT: consent.respond" in line
        assert "outcome=" not in line
        assert "reason=" not in line


class TestAuditLogger:
    """Tests for applied and rejected audit entries."""

    def test_applied_change(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="audit"):
            AuditLogger().log(
                action="consent.granted",
                actor_type="patient",
                actor_id="patient-1",
                entity_type="consent",
                entity_id="c-1",
                metadata={"status": "granted"},
            )

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.actor == "patient:patient-1"
        assert record.entity == "consent:c-1"
        assert record.outcome == "applied"
        assert "metadata={'status': 'granted'}" in record.getMessage()

    def test_rejected_change(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="audit"):
            AuditLogger().conflict(
                action="consent.revoke",
                actor_id="patient-1",
                entity_type="consent",
                entity_id="c-1",
                reason="not_granted",
            )

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.outcome == "rejected"
        assert record.reason == "not_granted"
        assert record.getMessage().startswith("AUDIT: action=consent.revoke")


class TestSetupLogging:
    """Tests for root logger configuration."""

    def test_level_override(self, restore_root_logger) -> None:
        setup_logging("debug")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_root_logger) -> None:
        setup_logging("chatty")

        assert restore_root_logger.level == logging.INFO
