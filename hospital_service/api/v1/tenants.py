"""Tenant quota endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from hospital_service.api.deps import (
    CurrentStaff,
    DbSession,
    RequestClock,
    StaffPrincipal,
    require_permission,
)
from hospital_service.models.tenant import TenantResource
from hospital_service.schemas.tenant import (
    LimitCheckRead,
    TenantSuspend,
    TenantUpgrade,
    TenantUsageRead,
)
from hospital_service.services.tenant import (
    TenantNotFoundError,
    TenantService,
    TenantUsage,
    TierDowngradeError,
)

router = APIRouter(prefix="/tenants", tags=["tenants"])

TenantAdmin = Annotated[StaffPrincipal, Depends(require_permission("settings", "write"))]


def _ensure_own_tenant(staff: StaffPrincipal, tenant_id: str) -> None:
    if staff.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this tenant",
        )


def _usage_response(usage: TenantUsage) -> TenantUsageRead:
    return TenantUsageRead(
        tenant_id=usage.tenant_id,
        tier=usage.tier,
        status=usage.status,
        limits=[LimitCheckRead.model_validate(check) for check in usage.limits],
        features=usage.features,
        last_updated=usage.last_updated,
    )


@router.get("/{tenant_id}/usage", response_model=TenantUsageRead)
async def get_usage(
    tenant_id: str,
    staff: CurrentStaff,
    session: DbSession,
    clock: RequestClock,
) -> TenantUsageRead:
    """Get quota usage for every resource of the caller's tenant."""
    _ensure_own_tenant(staff, tenant_id)
    service = TenantService(session, clock=clock)

    try:
        usage = await service.get_usage(tenant_id)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return _usage_response(usage)


@router.get("/{tenant_id}/limits/{resource}", response_model=LimitCheckRead)
async def check_limit(
    tenant_id: str,
    resource: TenantResource,
    staff: CurrentStaff,
    session: DbSession,
) -> LimitCheckRead:
    """Check whether one more unit of a resource may be consumed."""
    _ensure_own_tenant(staff, tenant_id)
    service = TenantService(session)

    try:
        check = await service.check_limit(tenant_id, resource)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return LimitCheckRead.model_validate(check)


@router.post("/{tenant_id}/upgrade", response_model=TenantUsageRead)
async def upgrade_tier(
    tenant_id: str,
    body: TenantUpgrade,
    staff: TenantAdmin,
    session: DbSession,
    clock: RequestClock,
) -> TenantUsageRead:
    """Move the tenant to a strictly higher tier."""
    _ensure_own_tenant(staff, tenant_id)
    service = TenantService(session, clock=clock)

    try:
        await service.upgrade_tier(tenant_id, body.tier, upgraded_by=staff.user_id)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TierDowngradeError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return _usage_response(await service.get_usage(tenant_id))


@router.post("/{tenant_id}/suspend", response_model=TenantUsageRead)
async def suspend_tenant(
    tenant_id: str,
    body: TenantSuspend,
    staff: TenantAdmin,
    session: DbSession,
    clock: RequestClock,
) -> TenantUsageRead:
    """Suspend the tenant; it can no longer consume quota."""
    _ensure_own_tenant(staff, tenant_id)
    service = TenantService(session, clock=clock)

    try:
        await service.suspend_tenant(tenant_id, suspended_by=staff.user_id, reason=body.reason)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return _usage_response(await service.get_usage(tenant_id))
