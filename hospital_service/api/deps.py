"""FastAPI dependency injection utilities."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.core.security import decode_access_token
from hospital_service.db.session import get_db
from hospital_service.services.events import EventPublisher, get_event_publisher
from hospital_service.services.rbac import AuthorizationError, RBACService
from hospital_service.utils.time import Clock, utc_now

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class StaffPrincipal:
    """Hospital staff member identified by a bearer token."""

    user_id: str
    hospital_id: str
    tenant_id: str | None = None


@dataclass(frozen=True)
class PatientPrincipal:
    """Patient identified by a bearer token."""

    patient_id: str


def get_clock() -> Clock:
    """Clock used for every "now" comparison in a request."""
    return utc_now


def get_publisher() -> EventPublisher:
    """Sink for consent lifecycle events."""
    return get_event_publisher()


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


def _require_token(token: dict | None) -> dict:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


async def get_current_staff(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> StaffPrincipal:
    """Get the current authenticated staff member.

    The account itself (status, role, restrictions) is checked by the
    RBAC service on every decision, not here.

    Raises:
        HTTPException: If not authenticated or not a staff token
    """
    token = _require_token(token)

    if token.get("actor_type") != "staff":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff authentication required",
        )

    if not token.get("hospital_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not bound to a hospital",
        )

    return StaffPrincipal(
        user_id=token["sub"],
        hospital_id=token["hospital_id"],
        tenant_id=token.get("tenant_id"),
    )


async def get_current_patient(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> PatientPrincipal:
    """Get the current authenticated patient.

    Raises:
        HTTPException: If not authenticated or not a patient token
    """
    token = _require_token(token)

    if token.get("actor_type") != "patient":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient authentication required",
        )

    return PatientPrincipal(patient_id=token["sub"])


def require_permission(resource: str, action: str):
    """Create a dependency that requires one catalog permission.

    Usage:
        @router.get("/", dependencies=[Depends(require_permission("audit", "read"))])

    Returns:
        Dependency function yielding the authorized staff principal
    """

    async def permission_checker(
        staff: Annotated[StaffPrincipal, Depends(get_current_staff)],
        session: Annotated[AsyncSession, Depends(get_db)],
        clock: Annotated[Clock, Depends(get_clock)],
    ) -> StaffPrincipal:
        rbac = RBACService(session, clock=clock)
        try:
            await rbac.authorize(staff.user_id, staff.hospital_id, resource, action)
        except AuthorizationError as e:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": e.decision.message,
                    "reason": e.decision.reason.value,
                },
            )
        return staff

    return permission_checker


def get_client_ip(request: Request) -> str | None:
    """Extract client IP from request.

    Args:
        request: FastAPI request

    Returns:
        Client IP address or None
    """
    # Check for forwarded header (when behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


# Type aliases for cleaner dependency injection
CurrentStaff = Annotated[StaffPrincipal, Depends(get_current_staff)]
CurrentPatient = Annotated[PatientPrincipal, Depends(get_current_patient)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
RequestClock = Annotated[Clock, Depends(get_clock)]
Publisher = Annotated[EventPublisher, Depends(get_publisher)]
