"""Scheduled tasks for the hospital service.

This package contains jobs triggered externally (cron, systemd timers):
- Consent expiry sweep
"""

from hospital_service.tasks.consent_expiry import run_consent_expiry_task

__all__ = [
    "run_consent_expiry_task",
]
