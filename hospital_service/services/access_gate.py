"""Access gate for patient resources.

Resource-owning services (documents, timeline events) call the gate
before touching patient data. The gate runs, in order:

    1. consent check (emergency requests also need an emergency role)
    2. RBAC check
    3. tenant document quota reservation, for writes only

and writes exactly one access log entry for the outcome, granted or not.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.models.access_log import AccessLog, AccessType
from hospital_service.models.consent import ConsentType
from hospital_service.models.tenant import TenantResource
from hospital_service.schemas.access import AccessLogFilter
from hospital_service.services.audit import AccessLogService, write_access_log
from hospital_service.services.consent import ConsentService
from hospital_service.services.decisions import AccessDecision, DenialReason
from hospital_service.services.rbac import PermissionContext, RBACService
from hospital_service.services.tenant import (
    LimitExceededError,
    TenantError,
    TenantNotFoundError,
    TenantService,
    TenantSuspendedError,
)
from hospital_service.utils.time import Clock, utc_now

logger = logging.getLogger(__name__)

WRITE_ACTIONS = frozenset({"write", "upload"})


def consent_type_for(action: str, access_type: AccessType, emergency: bool = False) -> ConsentType:
    """Map a requested access to the consent purpose that must cover it."""
    if emergency:
        return ConsentType.EMERGENCY_ACCESS
    if action in WRITE_ACTIONS or access_type == AccessType.UPLOAD:
        return ConsentType.UPLOAD_RECORDS
    if action == "share" or access_type == AccessType.SHARE:
        return ConsentType.SHARE_DATA
    return ConsentType.VIEW_RECORDS


@dataclass(frozen=True)
class GateDecision:
    """Gate outcome returned to the calling resource service.

    Attributes:
        granted: Whether the operation may proceed
        reason: Denial code, NONE when granted
        message: Human-readable explanation
        consent_id: Consent that covered the access, if any
        access_log_id: Audit entry written for this decision
    """

    granted: bool
    reason: DenialReason
    message: str
    consent_id: str | None = None
    access_log_id: str | None = None


class AccessDeniedError(Exception):
    """Raised by AccessGate.enforce() when the gate denies access."""

    def __init__(self, decision: GateDecision) -> None:
        self.decision = decision
        super().__init__(decision.message)


class AccessGate:
    """Combines consent, RBAC and tenant quota into one audited decision."""

    def __init__(
        self,
        session: AsyncSession,
        consent_service: ConsentService | None = None,
        rbac_service: RBACService | None = None,
        tenant_service: TenantService | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.session = session
        self.clock = clock
        self.consents = consent_service or ConsentService(session, clock=clock)
        self.rbac = rbac_service or RBACService(session, clock=clock)
        self.tenants = tenant_service or TenantService(session, clock=clock)

    async def evaluate(
        self,
        accessor_id: str,
        hospital_id: str,
        patient_id: str,
        resource: str = "documents",
        action: str = "read",
        access_type: AccessType = AccessType.VIEW,
        resource_id: str | None = None,
        document_type: str | None = None,
        emergency: bool = False,
        tenant_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> GateDecision:
        """Decide whether a staff member may perform an operation on patient data.

        Args:
            accessor_id: Hospital user attempting the access
            hospital_id: Hospital the user acts for
            patient_id: Patient whose data is touched
            resource: Resource name checked against the role catalog
            action: Catalog action (e.g., "read", "write")
            access_type: Kind of access recorded in the audit trail
            resource_id: Target document or event id
            document_type: Target document category
            emergency: Use the emergency path
            tenant_id: Tenant charged for write operations
            ip_address: Client IP address
            user_agent: Client user agent string

        Returns:
            GateDecision with the id of the audit entry written for it

        Raises:
            TenantError: If a write names an unknown tenant or one without a
                documents limit (the denial is logged first)
        """
        access_type = AccessType(access_type)
        decision, consent_id = await self._decide(
            accessor_id=accessor_id,
            hospital_id=hospital_id,
            patient_id=patient_id,
            resource=resource,
            action=action,
            access_type=access_type,
            resource_id=resource_id,
            document_type=document_type,
            emergency=emergency,
        )

        failure = None
        if decision.granted and action in WRITE_ACTIONS and tenant_id:
            decision, failure = await self._reserve_quota(tenant_id)

        if decision.granted and consent_id:
            await self.consents.record_access(consent_id)

        entry = await write_access_log(
            self.session,
            accessor_id=accessor_id,
            hospital_id=hospital_id,
            tenant_id=tenant_id,
            patient_id=patient_id,
            resource=resource,
            resource_id=resource_id,
            action=action,
            access_type=access_type,
            decision=decision,
            consent_id=consent_id,
            emergency=emergency,
            ip_address=ip_address,
            user_agent=user_agent,
            occurred_at=self.clock(),
        )

        if not decision.granted:
            logger.info(
                f"Access denied: accessor={accessor_id} patient={patient_id} "
                f"{resource}:{action} reason={decision.reason.value}"
            )

        if failure is not None:
            raise failure

        return GateDecision(
            granted=decision.granted,
            reason=decision.reason,
            message=decision.message,
            consent_id=consent_id,
            access_log_id=entry.id,
        )

    async def enforce(self, *args, **kwargs) -> GateDecision:
        """Evaluate and raise on denial.

        Raises:
            AccessDeniedError: If the gate denies access
        """
        decision = await self.evaluate(*args, **kwargs)
        if not decision.granted:
            raise AccessDeniedError(decision)
        return decision

    async def get_access_logs(self, filters: AccessLogFilter) -> list[AccessLog]:
        return await AccessLogService(self.session).get_logs(filters)

    async def _decide(
        self,
        accessor_id: str,
        hospital_id: str,
        patient_id: str,
        resource: str,
        action: str,
        access_type: AccessType,
        resource_id: str | None,
        document_type: str | None,
        emergency: bool,
    ) -> tuple[AccessDecision, str | None]:
        if emergency:
            allowed = await self.rbac.can_perform_emergency_access(accessor_id, hospital_id)
            if not allowed.granted:
                return allowed, None

        consent_type = consent_type_for(action, access_type, emergency)
        check = await self.consents.check_consent(
            patient_id,
            hospital_id,
            consent_type,
            document_id=resource_id,
            document_type=document_type,
        )
        if not check.has_consent:
            return (
                AccessDecision.deny(
                    DenialReason.CONSENT_REQUIRED,
                    f"No active {consent_type.value} consent from patient",
                ),
                None,
            )
        consent_id = check.consent.id

        permission = await self.rbac.check_permission(
            accessor_id,
            hospital_id,
            resource,
            action,
            PermissionContext(
                document_type=document_type,
                patient_id=patient_id,
                document_id=resource_id,
            ),
        )
        if not permission.granted:
            return permission, consent_id

        return AccessDecision.allow(), consent_id

    async def _reserve_quota(self, tenant_id: str) -> tuple[AccessDecision, TenantError | None]:
        """Charge one document to the tenant.

        An unknown tenant or a tenant without a documents limit is denied, and
        the error is handed back so it can be raised once the denial is logged.
        """
        try:
            await self.tenants.increment_usage(tenant_id, TenantResource.DOCUMENTS)
        except (LimitExceededError, TenantSuspendedError) as e:
            return AccessDecision.deny(DenialReason.TENANT_LIMIT_EXCEEDED, str(e)), None
        except TenantNotFoundError as e:
            return AccessDecision.deny(DenialReason.TENANT_NOT_FOUND, str(e)), e
        except TenantError as e:
            return AccessDecision.deny(DenialReason.TENANT_LIMIT_EXCEEDED, str(e)), e
        return AccessDecision.allow(), None
