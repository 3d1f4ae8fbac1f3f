"""Pydantic schemas for access gate decisions and the access log."""

from datetime import datetime

from pydantic import BaseModel, Field

from hospital_service.models.access_log import AccessType
from hospital_service.services.decisions import DenialReason


class AccessCheckRequest(BaseModel):
    """Schema for asking the gate whether the caller may touch a patient resource."""

    patient_id: str = Field(..., min_length=1, max_length=64)
    resource: str = Field(default="documents", max_length=50)
    action: str = Field(default="read", max_length=30)
    access_type: AccessType = AccessType.VIEW
    resource_id: str | None = Field(default=None, max_length=64)
    document_type: str | None = Field(default=None, max_length=100)
    emergency: bool = False


class GateDecisionRead(BaseModel):
    """Schema for an access gate decision."""

    granted: bool
    reason: DenialReason
    message: str
    consent_id: str | None = None
    access_log_id: str | None = None

    model_config = {"from_attributes": True}


class AccessLogRead(BaseModel):
    """Schema for reading an access log entry."""

    id: str
    accessor_id: str
    hospital_id: str
    patient_id: str
    resource: str
    resource_id: str | None = None
    action: str
    access_type: AccessType
    granted: bool
    reason: str
    message: str | None = None
    consent_id: str | None = None
    emergency: bool
    occurred_at: datetime

    model_config = {"from_attributes": True}


class AccessLogFilter(BaseModel):
    """Schema for filtering access log queries."""

    patient_id: str | None = None
    accessor_id: str | None = None
    hospital_id: str | None = None
    resource_id: str | None = None
    granted: bool | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
