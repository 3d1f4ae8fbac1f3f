"""Permission inspection endpoints for the calling staff member."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from hospital_service.api.deps import CurrentStaff, DbSession, RequestClock
from hospital_service.models.hospital_user import UserRole
from hospital_service.schemas.rbac import (
    AccessDecisionRead,
    PermissionCheckRequest,
    RolePermissionRead,
)
from hospital_service.services.rbac import (
    HospitalUserNotFoundError,
    PermissionContext,
    RBACService,
)

router = APIRouter(prefix="/permissions", tags=["permissions"])


class UserPermissionsResponse(BaseModel):
    """Effective permissions of the caller."""

    role: UserRole
    permissions: list[RolePermissionRead]
    custom_permissions: list[str]


@router.get("/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    staff: CurrentStaff,
    session: DbSession,
) -> UserPermissionsResponse:
    """List the caller's role permissions and custom grants."""
    rbac = RBACService(session)

    try:
        effective = await rbac.get_user_permissions(staff.user_id, staff.hospital_id)
    except HospitalUserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return UserPermissionsResponse(
        role=effective.role,
        permissions=[
            RolePermissionRead(resource=entry.resource, actions=sorted(entry.actions))
            for entry in effective.permissions
        ],
        custom_permissions=effective.custom_permissions,
    )


@router.post("/check", response_model=AccessDecisionRead)
async def check_permission(
    body: PermissionCheckRequest,
    staff: CurrentStaff,
    session: DbSession,
    clock: RequestClock,
) -> AccessDecisionRead:
    """Evaluate one (resource, action) pair for the caller without auditing it."""
    rbac = RBACService(session, clock=clock)
    decision = await rbac.check_permission(
        staff.user_id,
        staff.hospital_id,
        body.resource,
        body.action,
        PermissionContext(document_type=body.document_type, patient_id=body.patient_id),
    )
    return AccessDecisionRead.model_validate(decision)
