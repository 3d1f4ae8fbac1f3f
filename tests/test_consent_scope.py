"""Tests for consent scope coverage and consent checks."""

from datetime import timedelta

import pytest

from hospital_service.models.consent import Consent, ConsentScope, ConsentType
from hospital_service.schemas.consent import ConsentDecision
from hospital_service.services.consent import ConsentTarget, consent_covers
from tests.helpers import (
    HOSPITAL_ID,
    OTHER_HOSPITAL_ID,
    OTHER_PATIENT_ID,
    PATIENT_ID,
    WEEKDAY_MORNING,
)

NOW = WEEKDAY_MORNING

PATIENT_LEVEL = ConsentTarget()
LISTED_DOCUMENT = ConsentTarget(document_id="doc-1", document_type="lab_report")
UNLISTED_DOCUMENT = ConsentTarget(document_id="doc-9", document_type="imaging")
TYPE_ONLY = ConsentTarget(document_type="lab_report")


def make_consent(scope: ConsentScope, **fields) -> Consent:
    return Consent(
        scope=scope.value,
        document_ids=fields.get("document_ids", ["doc-1"]),
        document_types=fields.get("document_types", ["lab_report"]),
        time_period_start=fields.get("time_period_start"),
        time_period_end=fields.get("time_period_end"),
    )


class TestConsentCovers:
    """Each scope against each kind of target."""

    @pytest.mark.parametrize(
        "scope,target,expected",
        [
            (ConsentScope.ALL_DOCUMENTS, PATIENT_LEVEL, True),
            (ConsentScope.ALL_DOCUMENTS, LISTED_DOCUMENT, True),
            (ConsentScope.ALL_DOCUMENTS, UNLISTED_DOCUMENT, True),
            (ConsentScope.ONGOING, PATIENT_LEVEL, True),
            (ConsentScope.ONGOING, UNLISTED_DOCUMENT, True),
            (ConsentScope.SINGLE_DOCUMENT, LISTED_DOCUMENT, True),
            (ConsentScope.SINGLE_DOCUMENT, UNLISTED_DOCUMENT, False),
            (ConsentScope.SINGLE_DOCUMENT, TYPE_ONLY, False),
            (ConsentScope.SINGLE_DOCUMENT, PATIENT_LEVEL, False),
            (ConsentScope.DOCUMENT_TYPE, LISTED_DOCUMENT, True),
            (ConsentScope.DOCUMENT_TYPE, TYPE_ONLY, True),
            (ConsentScope.DOCUMENT_TYPE, UNLISTED_DOCUMENT, False),
            (ConsentScope.DOCUMENT_TYPE, PATIENT_LEVEL, False),
        ],
    )
    def test_scope_coverage(self, scope, target, expected) -> None:
        assert consent_covers(make_consent(scope), target, NOW) is expected

    @pytest.mark.parametrize(
        "start,end,expected",
        [
            (NOW - timedelta(days=1), NOW + timedelta(days=1), True),
            (NOW, NOW, True),
            (NOW + timedelta(seconds=1), NOW + timedelta(days=1), False),
            (NOW - timedelta(days=2), NOW - timedelta(seconds=1), False),
        ],
    )
    def test_time_bounded_window(self, start, end, expected) -> None:
        consent = make_consent(
            ConsentScope.TIME_BOUNDED, time_period_start=start, time_period_end=end
        )

        for target in (PATIENT_LEVEL, LISTED_DOCUMENT, UNLISTED_DOCUMENT):
            assert consent_covers(consent, target, NOW) is expected

    def test_time_bounded_without_period(self) -> None:
        consent = make_consent(ConsentScope.TIME_BOUNDED)
        assert consent_covers(consent, PATIENT_LEVEL, NOW) is False

    def test_naive_period_treated_as_utc(self) -> None:
        consent = make_consent(
            ConsentScope.TIME_BOUNDED,
            time_period_start=(NOW - timedelta(hours=1)).replace(tzinfo=None),
            time_period_end=(NOW + timedelta(hours=1)).replace(tzinfo=None),
        )
        assert consent_covers(consent, PATIENT_LEVEL, NOW) is True


class TestCheckConsent:
    """Tests for ConsentService.check_consent against stored consents."""

    async def grant(self, consent_service, **overrides) -> Consent:
        values = {
            "patient_id": PATIENT_ID,
            "hospital_id": HOSPITAL_ID,
            "consent_type": ConsentType.VIEW_RECORDS,
            "scope": ConsentScope.ALL_DOCUMENTS,
            "purpose": "Ongoing care",
            "requested_by": "staff-1",
        }
        values.update(overrides)
        consent = await consent_service.request_consent(**values)
        return await consent_service.respond_to_consent(
            consent.id, ConsentDecision.GRANTED, consent.patient_id
        )

    async def test_granted_consent_found(self, consent_service) -> None:
        consent = await self.grant(consent_service)

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )

        assert check.has_consent is True
        assert check.consent.id == consent.id

    async def test_no_consent(self, consent_service) -> None:
        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )

        assert check.has_consent is False
        assert check.consent is None

    async def test_pending_consent_not_counted(self, consent_service) -> None:
        await consent_service.request_consent(
            PATIENT_ID,
            HOSPITAL_ID,
            ConsentType.VIEW_RECORDS,
            ConsentScope.ALL_DOCUMENTS,
            "Ongoing care",
            requested_by="staff-1",
        )

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )
        assert check.has_consent is False

    async def test_denied_consent_not_counted(self, consent_service) -> None:
        consent = await consent_service.request_consent(
            PATIENT_ID,
            HOSPITAL_ID,
            ConsentType.VIEW_RECORDS,
            ConsentScope.ALL_DOCUMENTS,
            "Ongoing care",
            requested_by="staff-1",
        )
        await consent_service.respond_to_consent(consent.id, ConsentDecision.DENIED, PATIENT_ID)

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )
        assert check.has_consent is False

    async def test_revoked_consent_not_counted(self, consent_service) -> None:
        consent = await self.grant(consent_service)
        await consent_service.revoke_consent(consent.id, PATIENT_ID)

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )
        assert check.has_consent is False

    async def test_expired_but_unswept_consent_not_counted(self, consent_service, clock) -> None:
        await self.grant(consent_service, duration_days=1)
        clock.advance(days=1)

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )
        assert check.has_consent is False

    @pytest.mark.parametrize(
        "patient_id,hospital_id,consent_type",
        [
            (OTHER_PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS),
            (PATIENT_ID, OTHER_HOSPITAL_ID, ConsentType.VIEW_RECORDS),
            (PATIENT_ID, HOSPITAL_ID, ConsentType.UPLOAD_RECORDS),
        ],
    )
    async def test_consent_is_specific_to_patient_hospital_and_type(
        self, patient_id, hospital_id, consent_type, consent_service
    ) -> None:
        await self.grant(consent_service)

        check = await consent_service.check_consent(patient_id, hospital_id, consent_type)
        assert check.has_consent is False

    async def test_single_document_scope(self, consent_service) -> None:
        await self.grant(
            consent_service,
            scope=ConsentScope.SINGLE_DOCUMENT,
            document_ids=["doc-1"],
        )

        listed = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS, document_id="doc-1"
        )
        unlisted = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS, document_id="doc-2"
        )

        assert listed.has_consent is True
        assert unlisted.has_consent is False

    async def test_document_type_scope(self, consent_service) -> None:
        await self.grant(
            consent_service,
            scope=ConsentScope.DOCUMENT_TYPE,
            document_types=["lab_report", "prescription"],
        )

        lab = await consent_service.check_consent(
            PATIENT_ID,
            HOSPITAL_ID,
            ConsentType.VIEW_RECORDS,
            document_id="doc-7",
            document_type="lab_report",
        )
        imaging = await consent_service.check_consent(
            PATIENT_ID,
            HOSPITAL_ID,
            ConsentType.VIEW_RECORDS,
            document_id="doc-8",
            document_type="imaging",
        )

        assert lab.has_consent is True
        assert imaging.has_consent is False

    async def test_time_bounded_scope_follows_clock(self, consent_service, clock) -> None:
        await self.grant(
            consent_service,
            scope=ConsentScope.TIME_BOUNDED,
            time_period_start=NOW,
            time_period_end=NOW + timedelta(days=2),
        )

        inside = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )
        clock.advance(days=3)
        outside = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS
        )

        assert inside.has_consent is True
        assert outside.has_consent is False

    async def test_narrow_consent_does_not_hide_broad_one(self, consent_service) -> None:
        broad = await self.grant(consent_service)
        narrow = await self.grant(
            consent_service,
            hospital_id=OTHER_HOSPITAL_ID,
            scope=ConsentScope.SINGLE_DOCUMENT,
            document_ids=["doc-1"],
        )

        check = await consent_service.check_consent(
            PATIENT_ID, HOSPITAL_ID, ConsentType.VIEW_RECORDS, document_id="doc-5"
        )
        other = await consent_service.check_consent(
            PATIENT_ID, OTHER_HOSPITAL_ID, ConsentType.VIEW_RECORDS, document_id="doc-5"
        )

        assert check.consent.id == broad.id
        assert other.has_consent is False
        assert narrow.id != broad.id
