"""Pydantic schemas for request/response validation."""

from hospital_service.schemas.access import (
    AccessCheckRequest,
    AccessLogFilter,
    AccessLogRead,
    GateDecisionRead,
)
from hospital_service.schemas.consent import (
    ConsentCheckRead,
    ConsentCreate,
    ConsentDecision,
    ConsentHistoryRead,
    ConsentRead,
    ConsentRespond,
    ConsentRevoke,
)
from hospital_service.schemas.rbac import (
    AccessDecisionRead,
    PermissionCheckRequest,
    RolePermissionRead,
)
from hospital_service.schemas.tenant import (
    LimitCheckRead,
    TenantSuspend,
    TenantUpgrade,
    TenantUsageRead,
)

__all__ = [
    # Consent
    "ConsentCreate",
    "ConsentDecision",
    "ConsentRespond",
    "ConsentRevoke",
    "ConsentRead",
    "ConsentHistoryRead",
    "ConsentCheckRead",
    # RBAC
    "PermissionCheckRequest",
    "AccessDecisionRead",
    "RolePermissionRead",
    # Tenant
    "LimitCheckRead",
    "TenantUsageRead",
    "TenantUpgrade",
    "TenantSuspend",
    # Access gate
    "AccessCheckRequest",
    "GateDecisionRead",
    "AccessLogRead",
    "AccessLogFilter",
]
