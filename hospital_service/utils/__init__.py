"""Utility functions."""

from hospital_service.utils.time import as_utc, utc_now

__all__ = ["as_utc", "utc_now"]
