"""Pydantic schemas for permission checks."""

from pydantic import BaseModel, Field

from hospital_service.services.decisions import DenialReason


class PermissionCheckRequest(BaseModel):
    """Schema for checking a (resource, action) pair for the caller."""

    resource: str = Field(..., min_length=1, max_length=50)
    action: str = Field(..., min_length=1, max_length=30)
    document_type: str | None = None
    patient_id: str | None = None


class AccessDecisionRead(BaseModel):
    """Schema for a permission decision."""

    granted: bool
    reason: DenialReason
    message: str

    model_config = {"from_attributes": True}


class RolePermissionRead(BaseModel):
    """Schema for one resource entry of a user's effective permissions."""

    resource: str
    actions: list[str]
