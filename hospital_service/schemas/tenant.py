"""Pydantic schemas for tenant quota operations."""

from datetime import datetime

from pydantic import BaseModel, Field

from hospital_service.models.tenant import TenantResource, TenantStatus, TenantTier


class LimitCheckRead(BaseModel):
    """Schema for one resource's quota state."""

    resource: TenantResource
    can_proceed: bool
    used: int
    limit: int
    remaining: int

    model_config = {"from_attributes": True}


class TenantUsageRead(BaseModel):
    """Schema for a tenant's usage across all quota resources."""

    tenant_id: str
    tier: TenantTier
    status: TenantStatus
    limits: list[LimitCheckRead]
    features: list[str]
    last_updated: datetime


class TenantUpgrade(BaseModel):
    """Schema for a tier upgrade request."""

    tier: TenantTier


class TenantSuspend(BaseModel):
    """Schema for suspending a tenant."""

    reason: str = Field(..., min_length=1, max_length=2000)
