"""Access gate endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from hospital_service.api.deps import (
    CurrentStaff,
    DbSession,
    RequestClock,
    StaffPrincipal,
    get_client_ip,
    require_permission,
)
from hospital_service.models.access_log import AccessLog
from hospital_service.schemas.access import (
    AccessCheckRequest,
    AccessLogFilter,
    AccessLogRead,
    GateDecisionRead,
)
from hospital_service.services.access_gate import AccessGate
from hospital_service.services.tenant import TenantNotFoundError

router = APIRouter(prefix="/access", tags=["access"])


@router.post("/check", response_model=GateDecisionRead)
async def check_access(
    body: AccessCheckRequest,
    staff: CurrentStaff,
    session: DbSession,
    clock: RequestClock,
    request: Request,
) -> GateDecisionRead:
    """Run the access gate for the calling staff member.

    Denials are returned as decisions with a reason code, not as errors.
    Every call writes one access log entry.
    """
    gate = AccessGate(session, clock=clock)

    try:
        decision = await gate.evaluate(
            accessor_id=staff.user_id,
            hospital_id=staff.hospital_id,
            patient_id=body.patient_id,
            resource=body.resource,
            action=body.action,
            access_type=body.access_type,
            resource_id=body.resource_id,
            document_type=body.document_type,
            emergency=body.emergency,
            tenant_id=staff.tenant_id,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return GateDecisionRead.model_validate(decision)


@router.get("/logs", response_model=list[AccessLogRead])
async def get_access_logs(
    session: DbSession,
    staff: Annotated[StaffPrincipal, Depends(require_permission("audit", "read"))],
    patient_id: str | None = None,
    accessor_id: str | None = None,
    resource_id: str | None = None,
    granted: bool | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> list[AccessLog]:
    """Query the caller's hospital access log, newest first."""
    gate = AccessGate(session)
    return await gate.get_access_logs(
        AccessLogFilter(
            patient_id=patient_id,
            accessor_id=accessor_id,
            hospital_id=staff.hospital_id,
            resource_id=resource_id,
            granted=granted,
            limit=limit,
            offset=offset,
        )
    )
