"""Consent lifecycle service.

Handles the consent workflow between hospitals and patients:
request -> grant/deny -> revoke/expire. Every transition is a conditional
UPDATE keyed on the expected prior status, so a patient response racing a
revocation or the expiry sweep can only ever land one terminal state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.core.config import settings
from hospital_service.core.logging import audit_logger
from hospital_service.models.consent import (
    ACTIVE_STATUSES,
    ActorType,
    Consent,
    ConsentAction,
    ConsentHistory,
    ConsentScope,
    ConsentStatus,
    ConsentType,
)
from hospital_service.schemas.consent import ConsentDecision
from hospital_service.services.events import (
    ConsentEvent,
    EventPublisher,
    get_event_publisher,
    publish_safely,
)
from hospital_service.utils.time import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)


class ConsentError(Exception):
    """Base exception for consent operations."""
    pass


class ConsentNotFoundError(ConsentError):
    """Raised when a consent id does not exist."""
    pass


class InvalidConsentRequestError(ConsentError):
    """Raised when a consent request is malformed."""
    pass


class DuplicateConsentRequestError(ConsentError):
    """Raised when an active consent already exists for the same purpose."""
    pass


class ConsentNotPendingError(ConsentError):
    """Raised when responding to a consent that is no longer pending."""
    pass


class ConsentNotGrantedError(ConsentError):
    """Raised when revoking a consent that is not granted."""
    pass


class ConsentExpiredError(ConsentError):
    """Raised when responding to a consent whose request has expired."""
    pass


class ConsentPermissionError(ConsentError):
    """Raised when a patient acts on another patient's consent."""
    pass


@dataclass(frozen=True)
class ConsentTarget:
    """What a consent check is asked about.

    Both fields empty means a patient-level check (e.g., timeline access).
    """

    document_id: str | None = None
    document_type: str | None = None


@dataclass(frozen=True)
class ConsentCheck:
    """Result of a consent check."""

    has_consent: bool
    consent: Consent | None = None


def consent_covers(consent: Consent, target: ConsentTarget, now: datetime) -> bool:
    """Check whether a granted consent's scope covers the target.

    - all_documents / ongoing: any target
    - single_document: only documents listed on the consent
    - document_type: only documents whose category is listed on the consent
    - time_bounded: any target while now is inside the consent's period
    """
    scope = ConsentScope(consent.scope)

    if scope in (ConsentScope.ALL_DOCUMENTS, ConsentScope.ONGOING):
        return True

    if scope == ConsentScope.SINGLE_DOCUMENT:
        return target.document_id is not None and target.document_id in (
            consent.document_ids or []
        )

    if scope == ConsentScope.DOCUMENT_TYPE:
        return target.document_type is not None and target.document_type in (
            consent.document_types or []
        )

    if scope == ConsentScope.TIME_BOUNDED:
        start = as_utc(consent.time_period_start)
        end = as_utc(consent.time_period_end)
        if start is None or end is None:
            return False
        return start <= now <= end

    return False


class ConsentService:
    """Service for managing patient consent to hospital access."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.session = session
        self.publisher = publisher or get_event_publisher()
        self.clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def request_consent(
        self,
        patient_id: str,
        hospital_id: str,
        consent_type: ConsentType,
        scope: ConsentScope,
        purpose: str,
        data_types: list[str] | None = None,
        duration_days: int | None = None,
        *,
        requested_by: str,
        tenant_id: str | None = None,
        document_ids: list[str] | None = None,
        document_types: list[str] | None = None,
        time_period_start: datetime | None = None,
        time_period_end: datetime | None = None,
        emergency_access: bool = False,
    ) -> Consent:
        """Create a pending consent request.

        Raises:
            InvalidConsentRequestError: If duration or scope targets are invalid
            DuplicateConsentRequestError: If a pending or granted, unexpired
                consent already exists for (patient, hospital, type)
        """
        if duration_days is not None and duration_days <= 0:
            raise InvalidConsentRequestError("Consent duration must be a positive number of days")
        self._validate_scope_targets(
            ConsentScope(scope), document_ids, document_types, time_period_start, time_period_end
        )

        now = self.clock()

        existing = await self._find_active(patient_id, hospital_id, ConsentType(consent_type), now)
        if existing:
            audit_logger.conflict(
                action="consent.request",
                actor_id=requested_by,
                entity_type="consent",
                entity_id=existing.id,
                reason="duplicate_request",
            )
            raise DuplicateConsentRequestError(
                f"Active consent request already exists for patient {patient_id}"
            )

        stale_ids = await self._expire_stale(
            patient_id, hospital_id, ConsentType(consent_type), now
        )
        duration = duration_days or settings.consent_default_duration_days

        consent = Consent(
            patient_id=patient_id,
            hospital_id=hospital_id,
            tenant_id=tenant_id,
            consent_type=ConsentType(consent_type).value,
            scope=ConsentScope(scope).value,
            status=ConsentStatus.PENDING.value,
            requested_by=requested_by,
            purpose=purpose,
            data_types=list(data_types or []),
            duration_days=duration,
            emergency_access=emergency_access,
            document_ids=list(document_ids or []),
            document_types=list(document_types or []),
            time_period_start=time_period_start,
            time_period_end=time_period_end,
            requested_at=now,
            expires_at=now + timedelta(days=duration),
        )
        self.session.add(consent)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # A concurrent request for the same triple committed first
            await self.session.rollback()
            audit_logger.conflict(
                action="consent.request",
                actor_id=requested_by,
                entity_type="patient",
                entity_id=patient_id,
                reason="duplicate_request",
            )
            raise DuplicateConsentRequestError(
                f"Active consent request already exists for patient {patient_id}"
            ) from e

        self._record(
            consent_id=consent.id,
            action=ConsentAction.CREATED,
            actor_id=requested_by,
            actor_type=ActorType.HOSPITAL,
            occurred_at=now,
            reason=purpose,
        )

        await self.session.commit()
        await self.session.refresh(consent)

        self._audit(consent, ConsentAction.CREATED, "hospital", requested_by)
        await self._announce_expired(stale_ids)
        await publish_safely(
            self.publisher,
            ConsentEvent.REQUESTED,
            self._event_payload(consent, data_types=consent.data_types),
        )

        logger.info(f"Consent request created: {consent.id}")
        return consent

    async def respond_to_consent(
        self,
        consent_id: str,
        decision: ConsentDecision,
        responder_id: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        signature: str | None = None,
        notes: str | None = None,
    ) -> Consent:
        """Record the patient's grant or denial of a pending consent.

        Raises:
            ConsentNotFoundError: If the consent does not exist
            ConsentPermissionError: If the responder is not the consent's patient
            ConsentNotPendingError: If the consent already left pending
            ConsentExpiredError: If the request expired (it is moved to expired)
        """
        consent = await self.get_consent(consent_id)
        decision = ConsentDecision(decision)

        if responder_id != consent.patient_id:
            raise ConsentPermissionError("Only the patient can respond to this consent")

        if ConsentStatus(consent.status) != ConsentStatus.PENDING:
            self._conflict(consent_id, "consent.respond", responder_id, "not_pending")
            raise ConsentNotPendingError("Consent request is not pending")

        now = self.clock()
        expires_at = as_utc(consent.expires_at)
        if expires_at is not None and expires_at <= now:
            if await self._expire_one(consent.id, ConsentStatus.PENDING, now):
                await self.session.refresh(consent)
                self._audit(consent, ConsentAction.EXPIRED, "system", "system")
                await publish_safely(
                    self.publisher, ConsentEvent.EXPIRED, self._event_payload(consent)
                )
            self._conflict(consent_id, "consent.respond", responder_id, "expired")
            raise ConsentExpiredError("Consent request has expired")

        granted = decision == ConsentDecision.GRANTED
        values: dict[str, Any] = {
            "status": (ConsentStatus.GRANTED if granted else ConsentStatus.DENIED).value,
            "responded_at": now,
            "response_ip_address": ip_address,
            "response_user_agent": user_agent,
            "response_signature": signature,
            "response_notes": notes,
        }
        if granted:
            values.update(granted_at=now, granted_by=responder_id)
        else:
            values.update(denied_at=now, denied_by=responder_id)

        changed = await self._transition(consent.id, ConsentStatus.PENDING, values)
        if not changed:
            await self.session.rollback()
            self._conflict(consent_id, "consent.respond", responder_id, "not_pending")
            raise ConsentNotPendingError("Consent request is not pending")

        action = ConsentAction.GRANTED if granted else ConsentAction.DENIED
        self._record(
            consent_id=consent.id,
            action=action,
            actor_id=responder_id,
            actor_type=ActorType.PATIENT,
            occurred_at=now,
            previous_status=ConsentStatus.PENDING,
            reason=notes or f"Consent {action.value} by patient",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await self.session.commit()
        await self.session.refresh(consent)

        self._audit(consent, action, "patient", responder_id)
        if granted:
            await publish_safely(
                self.publisher,
                ConsentEvent.GRANTED,
                self._event_payload(consent, document_ids=consent.document_ids),
            )
        else:
            await publish_safely(
                self.publisher, ConsentEvent.DENIED, self._event_payload(consent)
            )

        logger.info(f"Consent response recorded: {consent.id} - {decision.value}")
        return consent

    async def revoke_consent(
        self,
        consent_id: str,
        actor_id: str,
        reason: str | None = None,
        actor_type: ActorType = ActorType.PATIENT,
    ) -> Consent:
        """Revoke a granted consent.

        Raises:
            ConsentNotFoundError: If the consent does not exist
            ConsentPermissionError: If a patient revokes another patient's consent
            ConsentNotGrantedError: If the consent is not currently granted
        """
        consent = await self.get_consent(consent_id)
        actor_type = ActorType(actor_type)

        if actor_type == ActorType.PATIENT and actor_id != consent.patient_id:
            raise ConsentPermissionError("Only the patient can revoke this consent")

        if ConsentStatus(consent.status) != ConsentStatus.GRANTED:
            self._conflict(consent_id, "consent.revoke", actor_id, "not_granted")
            raise ConsentNotGrantedError("Only granted consents can be revoked")

        now = self.clock()
        changed = await self._transition(
            consent.id,
            ConsentStatus.GRANTED,
            {
                "status": ConsentStatus.REVOKED.value,
                "revoked_at": now,
                "revoked_by": actor_id,
                "revocation_reason": reason,
            },
        )
        if not changed:
            await self.session.rollback()
            self._conflict(consent_id, "consent.revoke", actor_id, "not_granted")
            raise ConsentNotGrantedError("Only granted consents can be revoked")

        self._record(
            consent_id=consent.id,
            action=ConsentAction.REVOKED,
            actor_id=actor_id,
            actor_type=actor_type,
            occurred_at=now,
            previous_status=ConsentStatus.GRANTED,
            reason=reason or "Consent revoked by patient",
        )
        await self.session.commit()
        await self.session.refresh(consent)

        self._audit(consent, ConsentAction.REVOKED, actor_type.value, actor_id)
        await publish_safely(
            self.publisher,
            ConsentEvent.REVOKED,
            self._event_payload(consent, reason=reason),
        )

        logger.info(f"Consent revoked: {consent.id}")
        return consent

    async def expire_consents(self) -> int:
        """Move every pending/granted consent past its expiry to expired.

        Safe to run concurrently with itself and with patient responses:
        each row is moved by a conditional update and history is written
        only by the run whose update changed the row.

        Returns:
            Number of consents this run expired
        """
        now = self.clock()
        expired_ids: list[str] = []

        while True:
            result = await self.session.execute(
                select(Consent.id, Consent.status)
                .where(Consent.status.in_([s.value for s in ACTIVE_STATUSES]))
                .where(Consent.expires_at.is_not(None))
                .where(Consent.expires_at <= now)
                .order_by(Consent.expires_at)
                .limit(settings.consent_expiry_batch_size)
            )
            candidates = result.all()
            if not candidates:
                break

            for consent_id, status in candidates:
                if await self._expire_one(consent_id, ConsentStatus(status), now, commit=False):
                    expired_ids.append(consent_id)

            await self.session.commit()

        await self._announce_expired(expired_ids)

        if expired_ids:
            logger.info(f"Expired {len(expired_ids)} consents")
        return len(expired_ids)

    async def record_access(self, consent_id: str) -> None:
        """Count one granted access against a consent.

        The increment is done in SQL and committed with the caller's
        next commit (the access gate's audit write).
        """
        await self.session.execute(
            update(Consent)
            .where(Consent.id == consent_id)
            .values(
                access_count=Consent.access_count + 1,
                last_accessed_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def check_consent(
        self,
        patient_id: str,
        hospital_id: str,
        consent_type: ConsentType,
        document_id: str | None = None,
        document_type: str | None = None,
    ) -> ConsentCheck:
        """Check for a granted, unexpired consent whose scope covers the target.

        Args:
            patient_id: Patient whose data is requested
            hospital_id: Hospital requesting access
            consent_type: Purpose of the access
            document_id: Target document, for document-level checks
            document_type: Target document category, for document-level checks

        Returns:
            ConsentCheck with the covering consent, if any
        """
        now = self.clock()
        result = await self.session.execute(
            select(Consent)
            .where(Consent.patient_id == patient_id)
            .where(Consent.hospital_id == hospital_id)
            .where(Consent.consent_type == ConsentType(consent_type).value)
            .where(Consent.status == ConsentStatus.GRANTED.value)
            .where(or_(Consent.expires_at.is_(None), Consent.expires_at > now))
            .order_by(Consent.granted_at.desc())
            .execution_options(populate_existing=True)
        )
        target = ConsentTarget(document_id=document_id, document_type=document_type)

        for consent in result.scalars().all():
            if consent_covers(consent, target, now):
                return ConsentCheck(has_consent=True, consent=consent)

        return ConsentCheck(has_consent=False)

    async def get_consent(self, consent_id: str, hospital_id: str | None = None) -> Consent:
        """Get consent by ID, optionally scoped to a hospital.

        Raises:
            ConsentNotFoundError: If no such consent exists
        """
        query = (
            select(Consent)
            .where(Consent.id == consent_id)
            .execution_options(populate_existing=True)
        )
        if hospital_id:
            query = query.where(Consent.hospital_id == hospital_id)

        result = await self.session.execute(query)
        consent = result.scalar_one_or_none()

        if not consent:
            raise ConsentNotFoundError(f"Consent not found: {consent_id}")

        return consent

    async def get_patient_consents(
        self,
        patient_id: str,
        hospital_id: str | None = None,
        status: ConsentStatus | None = None,
    ) -> list[Consent]:
        """List a patient's consents, newest first."""
        query = select(Consent).where(Consent.patient_id == patient_id)
        if hospital_id:
            query = query.where(Consent.hospital_id == hospital_id)
        if status:
            query = query.where(Consent.status == ConsentStatus(status).value)

        result = await self.session.execute(query.order_by(Consent.requested_at.desc()))
        return list(result.scalars().all())

    async def get_hospital_consents(
        self,
        hospital_id: str,
        status: ConsentStatus | None = None,
        patient_id: str | None = None,
    ) -> list[Consent]:
        """List consents requested by a hospital, newest first."""
        query = select(Consent).where(Consent.hospital_id == hospital_id)
        if status:
            query = query.where(Consent.status == ConsentStatus(status).value)
        if patient_id:
            query = query.where(Consent.patient_id == patient_id)

        result = await self.session.execute(query.order_by(Consent.requested_at.desc()))
        return list(result.scalars().all())

    async def get_consent_history(self, consent_id: str) -> list[ConsentHistory]:
        """Get the consent's history in the order it happened.

        Raises:
            ConsentNotFoundError: If no such consent exists
        """
        await self.get_consent(consent_id)

        result = await self.session.execute(
            select(ConsentHistory)
            .where(ConsentHistory.consent_id == consent_id)
            .order_by(ConsentHistory.occurred_at.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _find_active(
        self,
        patient_id: str,
        hospital_id: str,
        consent_type: ConsentType,
        now: datetime,
    ) -> Consent | None:
        result = await self.session.execute(
            select(Consent)
            .where(Consent.patient_id == patient_id)
            .where(Consent.hospital_id == hospital_id)
            .where(Consent.consent_type == consent_type.value)
            .where(Consent.status.in_([s.value for s in ACTIVE_STATUSES]))
            .where(or_(Consent.expires_at.is_(None), Consent.expires_at > now))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _transition(
        self,
        consent_id: str,
        expected: ConsentStatus,
        values: dict[str, Any],
        extra_criteria: tuple = (),
    ) -> bool:
        """Apply values only if the consent is still in the expected status."""
        statement = (
            update(Consent)
            .where(Consent.id == consent_id)
            .where(Consent.status == expected.value)
        )
        for criterion in extra_criteria:
            statement = statement.where(criterion)

        result = await self.session.execute(
            statement.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _expire_one(
        self,
        consent_id: str,
        expected: ConsentStatus,
        now: datetime,
        commit: bool = True,
    ) -> bool:
        changed = await self._transition(
            consent_id,
            expected,
            {"status": ConsentStatus.EXPIRED.value, "expired_at": now},
            extra_criteria=(Consent.expires_at <= now,),
        )
        if changed:
            self._record(
                consent_id=consent_id,
                action=ConsentAction.EXPIRED,
                actor_id="system",
                actor_type=ActorType.SYSTEM,
                occurred_at=now,
                previous_status=expected,
                reason="Consent automatically expired",
            )
        if commit:
            await self.session.commit()
        return changed

    async def _expire_stale(
        self,
        patient_id: str,
        hospital_id: str,
        consent_type: ConsentType,
        now: datetime,
    ) -> list[str]:
        """Expire active consents for the triple whose time has passed.

        The sweep may not have reached them yet, and they would otherwise
        collide with the new request on the active-request unique index.
        Changes are left for the caller to commit.
        """
        result = await self.session.execute(
            select(Consent.id, Consent.status)
            .where(Consent.patient_id == patient_id)
            .where(Consent.hospital_id == hospital_id)
            .where(Consent.consent_type == consent_type.value)
            .where(Consent.status.in_([s.value for s in ACTIVE_STATUSES]))
            .where(Consent.expires_at <= now)
        )
        expired_ids = []
        for consent_id, status in result.all():
            if await self._expire_one(consent_id, ConsentStatus(status), now, commit=False):
                expired_ids.append(consent_id)
        return expired_ids

    async def _announce_expired(self, consent_ids: list[str]) -> None:
        for consent_id in consent_ids:
            consent = await self.get_consent(consent_id)
            self._audit(consent, ConsentAction.EXPIRED, "system", "system")
            await publish_safely(
                self.publisher, ConsentEvent.EXPIRED, self._event_payload(consent)
            )

    def _record(
        self,
        consent_id: str,
        action: ConsentAction,
        actor_id: str,
        actor_type: ActorType,
        occurred_at: datetime,
        previous_status: ConsentStatus | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.session.add(
            ConsentHistory(
                consent_id=consent_id,
                action=action.value,
                actor_id=actor_id,
                actor_type=actor_type.value,
                previous_status=previous_status.value if previous_status else None,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
                occurred_at=occurred_at,
            )
        )

    @staticmethod
    def _validate_scope_targets(
        scope: ConsentScope,
        document_ids: list[str] | None,
        document_types: list[str] | None,
        time_period_start: datetime | None,
        time_period_end: datetime | None,
    ) -> None:
        if scope == ConsentScope.SINGLE_DOCUMENT and not document_ids:
            raise InvalidConsentRequestError("single_document scope requires document ids")
        if scope == ConsentScope.DOCUMENT_TYPE and not document_types:
            raise InvalidConsentRequestError("document_type scope requires document types")
        if scope == ConsentScope.TIME_BOUNDED:
            if time_period_start is None or time_period_end is None:
                raise InvalidConsentRequestError("time_bounded scope requires a time period")
            if as_utc(time_period_end) < as_utc(time_period_start):
                raise InvalidConsentRequestError("Time period end precedes its start")

    @staticmethod
    def _event_payload(consent: Consent, **extra: Any) -> dict[str, Any]:
        payload = {
            "consent_id": consent.id,
            "patient_id": consent.patient_id,
            "hospital_id": consent.hospital_id,
            "consent_type": ConsentType(consent.consent_type).value,
            "scope": ConsentScope(consent.scope).value,
        }
        payload.update(extra)
        return payload

    @staticmethod
    def _audit(consent: Consent, action: ConsentAction, actor_type: str, actor_id: str) -> None:
        audit_logger.log(
            action=f"consent.{action.value}",
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type="consent",
            entity_id=consent.id,
            metadata={
                "patient_id": consent.patient_id,
                "hospital_id": consent.hospital_id,
                "status": ConsentStatus(consent.status).value,
            },
        )

    @staticmethod
    def _conflict(consent_id: str, action: str, actor_id: str, reason: str) -> None:
        audit_logger.conflict(
            action=action,
            actor_id=actor_id,
            entity_type="consent",
            entity_id=consent_id,
            reason=reason,
        )
