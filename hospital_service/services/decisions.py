"""Structured access decisions.

Policy denials are values, not exceptions: every check returns an
AccessDecision carrying a reason code so callers can surface it to the
requester and write it to the audit trail.
"""

from dataclasses import dataclass
from enum import Enum


class DenialReason(str, Enum):
    """Reason code attached to an access decision."""

    NONE = "none"
    CONSENT_REQUIRED = "consent_required"
    USER_INACTIVE = "user_inactive"
    OUTSIDE_ALLOWED_HOURS = "outside_allowed_hours"
    ROLE_INSUFFICIENT = "role_insufficient"
    DOCUMENT_TYPE_NOT_ALLOWED = "document_type_not_allowed"
    DAILY_QUOTA_EXCEEDED = "daily_quota_exceeded"
    EMERGENCY_NOT_PERMITTED = "emergency_not_permitted"
    TENANT_LIMIT_EXCEEDED = "tenant_limit_exceeded"
    TENANT_NOT_FOUND = "tenant_not_found"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a permission check.

    Attributes:
        granted: Whether the action may proceed
        reason: Denial code, NONE when granted
        message: Human-readable explanation
    """

    granted: bool
    reason: DenialReason = DenialReason.NONE
    message: str = ""

    @classmethod
    def allow(cls, message: str = "Access granted") -> "AccessDecision":
        return cls(granted=True, reason=DenialReason.NONE, message=message)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> "AccessDecision":
        return cls(granted=False, reason=reason, message=message)
