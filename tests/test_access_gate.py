"""Tests for the access gate combining consent, RBAC and tenant quota."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from hospital_service.models.access_log import AccessLog, AccessType
from hospital_service.models.consent import Consent, ConsentScope, ConsentType
from hospital_service.models.hospital_user import UserRole
from hospital_service.models.tenant import TenantLimit, TenantResource
from hospital_service.schemas.access import AccessLogFilter
from hospital_service.schemas.consent import ConsentDecision
from hospital_service.services.access_gate import (
    AccessDeniedError,
    AccessGate,
    consent_type_for,
)
from hospital_service.services.decisions import DenialReason
from hospital_service.services.tenant import TenantError, TenantNotFoundError, TenantService
from hospital_service.utils.time import as_utc
from tests.helpers import HOSPITAL_ID, OTHER_HOSPITAL_ID, PATIENT_ID, WEEKDAY_NIGHT


@pytest.fixture
def gate(async_session, consent_service, clock) -> AccessGate:
    return AccessGate(async_session, consent_service=consent_service, clock=clock)


async def grant_consent(
    consent_service,
    consent_type: ConsentType = ConsentType.VIEW_RECORDS,
    scope: ConsentScope = ConsentScope.ALL_DOCUMENTS,
    **fields,
) -> Consent:
    consent = await consent_service.request_consent(
        PATIENT_ID,
        HOSPITAL_ID,
        consent_type,
        scope,
        "Care coordination",
        requested_by="staff-1",
        **fields,
    )
    return await consent_service.respond_to_consent(
        consent.id, ConsentDecision.GRANTED, PATIENT_ID
    )


async def log_count(session) -> int:
    return await session.scalar(select(func.count()).select_from(AccessLog))


class TestConsentTypeMapping:
    """Tests for mapping an access to the consent purpose it needs."""

    @pytest.mark.parametrize(
        "action,access_type,emergency,expected",
        [
            ("read", AccessType.VIEW, False, ConsentType.VIEW_RECORDS),
            ("read", AccessType.DOWNLOAD, False, ConsentType.VIEW_RECORDS),
            ("write", AccessType.VIEW, False, ConsentType.UPLOAD_RECORDS),
            ("read", AccessType.UPLOAD, False, ConsentType.UPLOAD_RECORDS),
            ("share", AccessType.VIEW, False, ConsentType.SHARE_DATA),
            ("read", AccessType.SHARE, False, ConsentType.SHARE_DATA),
            ("write", AccessType.UPLOAD, True, ConsentType.EMERGENCY_ACCESS),
        ],
    )
    def test_mapping(self, action, access_type, emergency, expected) -> None:
        assert consent_type_for(action, access_type, emergency) == expected


class TestReadAccess:
    """Tests for the consent then RBAC read path."""

    async def test_consent_then_role_then_hours(
        self, gate, consent_service, nurse, billing_clerk, clock, async_session
    ) -> None:
        denied = await gate.evaluate(nurse.id, HOSPITAL_ID, PATIENT_ID)

        assert denied.granted is False
        assert denied.reason == DenialReason.CONSENT_REQUIRED
        assert denied.consent_id is None

        consent = await grant_consent(consent_service)

        granted = await gate.evaluate(nurse.id, HOSPITAL_ID, PATIENT_ID)

        assert granted.granted is True
        assert granted.reason == DenialReason.NONE
        assert granted.consent_id == consent.id

        clock.set(WEEKDAY_NIGHT)
        after_hours = await gate.evaluate(billing_clerk.id, HOSPITAL_ID, PATIENT_ID)

        assert after_hours.granted is False
        assert after_hours.reason == DenialReason.OUTSIDE_ALLOWED_HOURS
        assert after_hours.consent_id == consent.id

        assert await log_count(async_session) == 3

    async def test_every_decision_is_logged(
        self, gate, consent_service, nurse, async_session
    ) -> None:
        denied = await gate.evaluate(
            nurse.id, HOSPITAL_ID, PATIENT_ID, resource_id="doc-1", ip_address="198.51.100.4"
        )
        await grant_consent(consent_service)
        granted = await gate.evaluate(nurse.id, HOSPITAL_ID, PATIENT_ID, resource_id="doc-1")

        logs = await gate.get_access_logs(AccessLogFilter(patient_id=PATIENT_ID))
        by_id = {entry.id: entry for entry in logs}

        assert len(logs) == 2
        assert by_id[denied.access_log_id].granted is False
        assert by_id[denied.access_log_id].reason == DenialReason.CONSENT_REQUIRED.value
        assert by_id[denied.access_log_id].ip_address == "198.51.100.4"
        assert by_id[granted.access_log_id].granted is True
        assert by_id[granted.access_log_id].consent_id == granted.consent_id
        assert by_id[granted.access_log_id].access_type == AccessType.VIEW.value

    async def test_granted_access_counted_on_consent(
        self, gate, consent_service, doctor, clock
    ) -> None:
        consent = await grant_consent(consent_service)
        clock.advance(minutes=10)

        await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID)
        await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID)

        reloaded = await consent_service.get_consent(consent.id)
        assert reloaded.access_count == 2
        assert as_utc(reloaded.last_accessed_at) == clock()

    async def test_denied_access_not_counted_on_consent(
        self, gate, consent_service, billing_clerk, clock
    ) -> None:
        consent = await grant_consent(consent_service)
        clock.set(WEEKDAY_NIGHT)

        await gate.evaluate(billing_clerk.id, HOSPITAL_ID, PATIENT_ID)

        reloaded = await consent_service.get_consent(consent.id)
        assert reloaded.access_count == 0

    async def test_role_without_permission(self, gate, consent_service, make_user) -> None:
        await grant_consent(consent_service)
        receptionist = await make_user(UserRole.RECEPTIONIST)

        decision = await gate.evaluate(
            receptionist.id, HOSPITAL_ID, PATIENT_ID, resource="medical_records"
        )

        assert decision.reason == DenialReason.ROLE_INSUFFICIENT

    async def test_user_from_other_hospital(self, gate, consent_service, make_user) -> None:
        await grant_consent(consent_service)
        outsider = await make_user(UserRole.DOCTOR, hospital_id=OTHER_HOSPITAL_ID)

        decision = await gate.evaluate(outsider.id, HOSPITAL_ID, PATIENT_ID)

        assert decision.granted is False
        assert decision.reason == DenialReason.USER_INACTIVE

    async def test_revoked_consent_stops_access(self, gate, consent_service, doctor) -> None:
        consent = await grant_consent(consent_service)
        assert (await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID)).granted is True

        await consent_service.revoke_consent(consent.id, PATIENT_ID)

        decision = await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID)
        assert decision.reason == DenialReason.CONSENT_REQUIRED

    async def test_document_type_consent(self, gate, consent_service, doctor) -> None:
        await grant_consent(
            consent_service,
            scope=ConsentScope.DOCUMENT_TYPE,
            document_types=["lab_report"],
        )

        lab = await gate.evaluate(
            doctor.id, HOSPITAL_ID, PATIENT_ID, resource_id="doc-1", document_type="lab_report"
        )
        imaging = await gate.evaluate(
            doctor.id, HOSPITAL_ID, PATIENT_ID, resource_id="doc-2", document_type="imaging"
        )

        assert lab.granted is True
        assert imaging.reason == DenialReason.CONSENT_REQUIRED

    async def test_user_document_type_allow_list(
        self, gate, consent_service, make_user
    ) -> None:
        await grant_consent(consent_service)
        technician = await make_user(
            UserRole.LAB_TECHNICIAN, allowed_document_types=["lab_report"]
        )

        lab = await gate.evaluate(
            technician.id, HOSPITAL_ID, PATIENT_ID, document_type="lab_report"
        )
        imaging = await gate.evaluate(
            technician.id, HOSPITAL_ID, PATIENT_ID, document_type="imaging"
        )

        assert lab.granted is True
        assert imaging.reason == DenialReason.DOCUMENT_TYPE_NOT_ALLOWED


class TestWriteAccess:
    """Tests for uploads, which also consume tenant quota."""

    async def test_write_requires_upload_consent(self, gate, consent_service, nurse) -> None:
        await grant_consent(consent_service)

        decision = await gate.evaluate(
            nurse.id, HOSPITAL_ID, PATIENT_ID, action="write", access_type=AccessType.UPLOAD
        )

        assert decision.reason == DenialReason.CONSENT_REQUIRED

    async def test_write_reserves_tenant_quota(
        self, gate, consent_service, nurse, tenant, async_session, clock
    ) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)

        decision = await gate.evaluate(
            nurse.id,
            HOSPITAL_ID,
            PATIENT_ID,
            action="write",
            access_type=AccessType.UPLOAD,
            tenant_id=tenant.id,
        )

        assert decision.granted is True
        check = await TenantService(async_session, clock=clock).check_limit(
            tenant.id, TenantResource.DOCUMENTS
        )
        assert check.used == 1

    async def test_write_at_tenant_limit_denied(
        self, gate, consent_service, nurse, tenant, async_session, clock
    ) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        await async_session.execute(
            update(TenantLimit)
            .where(TenantLimit.tenant_id == tenant.id)
            .where(TenantLimit.resource == TenantResource.DOCUMENTS.value)
            .values({TenantLimit.limit: 1, TenantLimit.used: 1})
        )
        await async_session.commit()

        decision = await gate.evaluate(
            nurse.id,
            HOSPITAL_ID,
            PATIENT_ID,
            action="write",
            access_type=AccessType.UPLOAD,
            tenant_id=tenant.id,
        )

        assert decision.granted is False
        assert decision.reason == DenialReason.TENANT_LIMIT_EXCEEDED
        check = await TenantService(async_session, clock=clock).check_limit(
            tenant.id, TenantResource.DOCUMENTS
        )
        assert check.used == 1

        logs = await gate.get_access_logs(AccessLogFilter(granted=False))
        assert [entry.reason for entry in logs] == [DenialReason.TENANT_LIMIT_EXCEEDED.value]

    async def test_write_for_suspended_tenant_denied(
        self, gate, consent_service, nurse, tenant, async_session, clock
    ) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        await TenantService(async_session, clock=clock).suspend_tenant(
            tenant.id, "admin-1", "Unpaid invoice"
        )

        decision = await gate.evaluate(
            nurse.id,
            HOSPITAL_ID,
            PATIENT_ID,
            action="write",
            access_type=AccessType.UPLOAD,
            tenant_id=tenant.id,
        )

        assert decision.reason == DenialReason.TENANT_LIMIT_EXCEEDED

    async def test_write_for_unknown_tenant_is_logged_then_raised(
        self, gate, consent_service, nurse, async_session
    ) -> None:
        consent = await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        consent_id, nurse_id = consent.id, nurse.id

        with pytest.raises(TenantNotFoundError):
            await gate.evaluate(
                nurse_id,
                HOSPITAL_ID,
                PATIENT_ID,
                action="write",
                access_type=AccessType.UPLOAD,
                tenant_id="no-such-tenant",
            )

        assert await log_count(async_session) == 1
        logs = await gate.get_access_logs(AccessLogFilter(accessor_id=nurse_id))
        assert logs[0].granted is False
        assert logs[0].reason == DenialReason.TENANT_NOT_FOUND.value
        assert logs[0].tenant_id == "no-such-tenant"

        reloaded = await consent_service.get_consent(consent_id)
        assert reloaded.access_count == 0

    async def test_write_for_tenant_without_document_limit_is_logged_then_raised(
        self, gate, consent_service, nurse, tenant, async_session
    ) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        tenant_id, nurse_id = tenant.id, nurse.id
        await async_session.execute(
            delete(TenantLimit)
            .where(TenantLimit.tenant_id == tenant_id)
            .where(TenantLimit.resource == TenantResource.DOCUMENTS.value)
        )
        await async_session.commit()

        with pytest.raises(TenantError):
            await gate.evaluate(
                nurse_id,
                HOSPITAL_ID,
                PATIENT_ID,
                action="write",
                access_type=AccessType.UPLOAD,
                tenant_id=tenant_id,
            )

        logs = await gate.get_access_logs(AccessLogFilter(accessor_id=nurse_id))
        assert [(entry.granted, entry.reason) for entry in logs] == [
            (False, DenialReason.TENANT_LIMIT_EXCEEDED.value)
        ]

    async def test_reads_do_not_consume_quota(
        self, gate, consent_service, nurse, tenant, async_session, clock
    ) -> None:
        await grant_consent(consent_service)

        await gate.evaluate(nurse.id, HOSPITAL_ID, PATIENT_ID, tenant_id=tenant.id)

        check = await TenantService(async_session, clock=clock).check_limit(
            tenant.id, TenantResource.DOCUMENTS
        )
        assert check.used == 0

    async def test_daily_write_quota(self, gate, consent_service, make_user) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        doctor = await make_user(UserRole.DOCTOR, max_documents_per_day=2)

        outcomes = [
            await gate.evaluate(
                doctor.id, HOSPITAL_ID, PATIENT_ID, action="write", access_type=AccessType.UPLOAD
            )
            for _ in range(3)
        ]

        assert [d.granted for d in outcomes] == [True, True, False]
        assert outcomes[-1].reason == DenialReason.DAILY_QUOTA_EXCEEDED

    async def test_daily_quota_resets_next_day(
        self, gate, consent_service, make_user, clock
    ) -> None:
        await grant_consent(consent_service, consent_type=ConsentType.UPLOAD_RECORDS)
        doctor = await make_user(UserRole.DOCTOR, max_documents_per_day=1)

        first = await gate.evaluate(
            doctor.id, HOSPITAL_ID, PATIENT_ID, action="write", access_type=AccessType.UPLOAD
        )
        clock.advance(days=1)
        next_day = await gate.evaluate(
            doctor.id, HOSPITAL_ID, PATIENT_ID, action="write", access_type=AccessType.UPLOAD
        )

        assert first.granted is True
        assert next_day.granted is True


class TestEmergencyAccess:
    """Tests for the emergency path."""

    async def test_emergency_role_with_emergency_consent(
        self, gate, consent_service, doctor, async_session
    ) -> None:
        consent = await grant_consent(
            consent_service, consent_type=ConsentType.EMERGENCY_ACCESS, emergency_access=True
        )

        decision = await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID, emergency=True)

        assert decision.granted is True
        assert decision.consent_id == consent.id
        entry = await async_session.get(AccessLog, decision.access_log_id)
        assert entry.emergency is True

    async def test_non_emergency_role_denied(
        self, gate, consent_service, billing_clerk
    ) -> None:
        await grant_consent(
            consent_service, consent_type=ConsentType.EMERGENCY_ACCESS, emergency_access=True
        )

        decision = await gate.evaluate(billing_clerk.id, HOSPITAL_ID, PATIENT_ID, emergency=True)

        assert decision.reason == DenialReason.EMERGENCY_NOT_PERMITTED
        assert decision.consent_id is None

    async def test_emergency_needs_emergency_consent(
        self, gate, consent_service, nurse
    ) -> None:
        await grant_consent(consent_service)

        decision = await gate.evaluate(nurse.id, HOSPITAL_ID, PATIENT_ID, emergency=True)

        assert decision.reason == DenialReason.CONSENT_REQUIRED


class TestEnforce:
    """Tests for enforce() and failure propagation."""

    async def test_enforce_raises_on_denial(self, gate, doctor) -> None:
        with pytest.raises(AccessDeniedError) as exc_info:
            await gate.enforce(doctor.id, HOSPITAL_ID, PATIENT_ID)

        assert exc_info.value.decision.reason == DenialReason.CONSENT_REQUIRED

    async def test_enforce_returns_grant(self, gate, consent_service, doctor) -> None:
        await grant_consent(consent_service)

        decision = await gate.enforce(doctor.id, HOSPITAL_ID, PATIENT_ID)

        assert decision.granted is True
        assert decision.access_log_id is not None

    async def test_database_errors_propagate(
        self, gate, consent_service, doctor, async_session, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            consent_service,
            "check_consent",
            AsyncMock(side_effect=SQLAlchemyError("connection lost")),
        )

        with pytest.raises(SQLAlchemyError):
            await gate.evaluate(doctor.id, HOSPITAL_ID, PATIENT_ID)

        assert await log_count(async_session) == 0
