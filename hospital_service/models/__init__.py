"""Database models for the hospital service."""

from hospital_service.models.access_log import AccessLog, AccessType
from hospital_service.models.consent import (
    ActorType,
    Consent,
    ConsentAction,
    ConsentHistory,
    ConsentScope,
    ConsentStatus,
    ConsentType,
)
from hospital_service.models.hospital_user import HospitalUser, UserRole, UserStatus
from hospital_service.models.tenant import (
    Tenant,
    TenantLimit,
    TenantResource,
    TenantStatus,
    TenantTier,
)

__all__ = [
    # Consent
    "Consent",
    "ConsentHistory",
    "ConsentType",
    "ConsentScope",
    "ConsentStatus",
    "ConsentAction",
    "ActorType",
    # Staff
    "HospitalUser",
    "UserRole",
    "UserStatus",
    # Tenant
    "Tenant",
    "TenantLimit",
    "TenantTier",
    "TenantStatus",
    "TenantResource",
    # Audit
    "AccessLog",
    "AccessType",
]
