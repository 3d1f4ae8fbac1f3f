"""Pydantic schemas for consent operations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from hospital_service.models.consent import (
    ActorType,
    ConsentAction,
    ConsentScope,
    ConsentStatus,
    ConsentType,
)


class ConsentDecision(str, Enum):
    """Patient's answer to a consent request."""

    GRANTED = "granted"
    DENIED = "denied"


class ConsentCreate(BaseModel):
    """Schema for a hospital requesting consent from a patient."""

    patient_id: str = Field(..., min_length=1, max_length=64)
    consent_type: ConsentType
    scope: ConsentScope = ConsentScope.ALL_DOCUMENTS
    purpose: str = Field(..., min_length=1)
    data_types: list[str] = Field(default_factory=list)
    duration_days: int | None = Field(
        default=None,
        gt=0,
        description="Days until the request/grant expires (default 30)",
    )
    document_ids: list[str] = Field(default_factory=list)
    document_types: list[str] = Field(default_factory=list)
    time_period_start: datetime | None = None
    time_period_end: datetime | None = None
    emergency_access: bool = False

    @model_validator(mode="after")
    def check_scope_targets(self) -> "ConsentCreate":
        if self.scope == ConsentScope.SINGLE_DOCUMENT and not self.document_ids:
            raise ValueError("single_document scope requires document_ids")
        if self.scope == ConsentScope.DOCUMENT_TYPE and not self.document_types:
            raise ValueError("document_type scope requires document_types")
        if self.scope == ConsentScope.TIME_BOUNDED:
            if not self.time_period_start or not self.time_period_end:
                raise ValueError("time_bounded scope requires a time period")
            if self.time_period_end < self.time_period_start:
                raise ValueError("time_period_end must not precede time_period_start")
        return self


class ConsentRespond(BaseModel):
    """Schema for the patient's response to a pending consent."""

    decision: ConsentDecision
    signature: str | None = None
    notes: str | None = Field(default=None, max_length=2000)


class ConsentRevoke(BaseModel):
    """Schema for revoking a granted consent."""

    reason: str | None = Field(default=None, max_length=2000)


class ConsentRead(BaseModel):
    """Schema for reading a consent record."""

    id: str
    patient_id: str
    hospital_id: str
    tenant_id: str | None
    consent_type: ConsentType
    scope: ConsentScope
    status: ConsentStatus
    purpose: str
    data_types: list[str]
    duration_days: int
    emergency_access: bool
    document_ids: list[str]
    document_types: list[str]
    requested_by: str
    requested_at: datetime
    responded_at: datetime | None = None
    granted_at: datetime | None = None
    denied_at: datetime | None = None
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    access_count: int = 0

    model_config = {"from_attributes": True}


class ConsentHistoryRead(BaseModel):
    """Schema for a consent history entry."""

    id: str
    consent_id: str
    action: ConsentAction
    actor_id: str
    actor_type: ActorType
    previous_status: ConsentStatus | None = None
    reason: str | None = None
    occurred_at: datetime

    model_config = {"from_attributes": True}


class ConsentCheckRead(BaseModel):
    """Schema for a consent check result."""

    has_consent: bool
    consent: ConsentRead | None = None
