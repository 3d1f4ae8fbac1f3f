"""Consent endpoints for hospital staff and patients."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from hospital_service.api.deps import (
    CurrentPatient,
    DbSession,
    Publisher,
    RequestClock,
    StaffPrincipal,
    get_client_ip,
    require_permission,
)
from hospital_service.models.consent import Consent, ConsentHistory, ConsentStatus, ConsentType
from hospital_service.schemas.consent import (
    ConsentCheckRead,
    ConsentCreate,
    ConsentHistoryRead,
    ConsentRead,
    ConsentRespond,
    ConsentRevoke,
)
from hospital_service.services.consent import (
    ConsentError,
    ConsentExpiredError,
    ConsentNotFoundError,
    ConsentNotGrantedError,
    ConsentNotPendingError,
    ConsentPermissionError,
    ConsentService,
    DuplicateConsentRequestError,
    InvalidConsentRequestError,
)

router = APIRouter(prefix="/consents", tags=["consents"])

# Any linked staff member may request and read consents
StaffReader = Depends(require_permission("patients", "read"))


def _http_error(e: ConsentError) -> HTTPException:
    if isinstance(e, ConsentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ConsentPermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, InvalidConsentRequestError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(
        e,
        (
            DuplicateConsentRequestError,
            ConsentNotPendingError,
            ConsentNotGrantedError,
            ConsentExpiredError,
        ),
    ):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("", response_model=ConsentRead, status_code=status.HTTP_201_CREATED)
async def request_consent(
    body: ConsentCreate,
    session: DbSession,
    clock: RequestClock,
    publisher: Publisher,
    staff: StaffPrincipal = StaffReader,
) -> Consent:
    """Request consent from a patient on behalf of the caller's hospital."""
    service = ConsentService(session, publisher=publisher, clock=clock)

    try:
        return await service.request_consent(
            patient_id=body.patient_id,
            hospital_id=staff.hospital_id,
            consent_type=body.consent_type,
            scope=body.scope,
            purpose=body.purpose,
            data_types=body.data_types,
            duration_days=body.duration_days,
            requested_by=staff.user_id,
            tenant_id=staff.tenant_id,
            document_ids=body.document_ids,
            document_types=body.document_types,
            time_period_start=body.time_period_start,
            time_period_end=body.time_period_end,
            emergency_access=body.emergency_access,
        )
    except ConsentError as e:
        raise _http_error(e)


@router.get("/check", response_model=ConsentCheckRead)
async def check_consent(
    patient_id: str,
    consent_type: ConsentType,
    session: DbSession,
    clock: RequestClock,
    document_id: str | None = None,
    document_type: str | None = None,
    staff: StaffPrincipal = StaffReader,
) -> ConsentCheckRead:
    """Check whether the patient has an active consent covering the target."""
    service = ConsentService(session, clock=clock)
    check = await service.check_consent(
        patient_id,
        staff.hospital_id,
        consent_type,
        document_id=document_id,
        document_type=document_type,
    )
    return ConsentCheckRead(
        has_consent=check.has_consent,
        consent=ConsentRead.model_validate(check.consent) if check.consent else None,
    )


@router.get("/patient/me", response_model=list[ConsentRead])
async def list_my_consents(
    patient: CurrentPatient,
    session: DbSession,
    consent_status: ConsentStatus | None = None,
) -> list[Consent]:
    """List the calling patient's consents, newest first."""
    service = ConsentService(session)
    return await service.get_patient_consents(patient.patient_id, status=consent_status)


@router.get("/{consent_id}", response_model=ConsentRead)
async def get_consent(
    consent_id: str,
    session: DbSession,
    staff: StaffPrincipal = StaffReader,
) -> Consent:
    """Get a consent requested by the caller's hospital."""
    service = ConsentService(session)

    try:
        return await service.get_consent(consent_id, hospital_id=staff.hospital_id)
    except ConsentError as e:
        raise _http_error(e)


@router.get("/{consent_id}/history", response_model=list[ConsentHistoryRead])
async def get_consent_history(
    consent_id: str,
    session: DbSession,
    staff: StaffPrincipal = StaffReader,
) -> list[ConsentHistory]:
    """Get the history of a consent requested by the caller's hospital."""
    service = ConsentService(session)

    try:
        await service.get_consent(consent_id, hospital_id=staff.hospital_id)
        return await service.get_consent_history(consent_id)
    except ConsentError as e:
        raise _http_error(e)


@router.post("/{consent_id}/respond", response_model=ConsentRead)
async def respond_to_consent(
    consent_id: str,
    body: ConsentRespond,
    patient: CurrentPatient,
    session: DbSession,
    clock: RequestClock,
    publisher: Publisher,
    request: Request,
) -> Consent:
    """Grant or deny a pending consent request."""
    service = ConsentService(session, publisher=publisher, clock=clock)

    try:
        return await service.respond_to_consent(
            consent_id,
            body.decision,
            patient.patient_id,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            signature=body.signature,
            notes=body.notes,
        )
    except ConsentError as e:
        raise _http_error(e)


@router.post("/{consent_id}/revoke", response_model=ConsentRead)
async def revoke_consent(
    consent_id: str,
    body: ConsentRevoke,
    patient: CurrentPatient,
    session: DbSession,
    clock: RequestClock,
    publisher: Publisher,
) -> Consent:
    """Revoke a granted consent."""
    service = ConsentService(session, publisher=publisher, clock=clock)

    try:
        return await service.revoke_consent(consent_id, patient.patient_id, reason=body.reason)
    except ConsentError as e:
        raise _http_error(e)
