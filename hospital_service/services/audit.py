"""Access log service for the append-only audit trail."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.core.logging import audit_logger
from hospital_service.models.access_log import AccessLog, AccessType
from hospital_service.schemas.access import AccessLogFilter
from hospital_service.services.decisions import AccessDecision


async def write_access_log(
    session: AsyncSession,
    accessor_id: str,
    hospital_id: str,
    patient_id: str,
    resource: str,
    action: str,
    access_type: AccessType,
    decision: AccessDecision,
    occurred_at: datetime,
    tenant_id: str | None = None,
    resource_id: str | None = None,
    consent_id: str | None = None,
    emergency: bool = False,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AccessLog:
    """Write one access decision to the audit trail.

    Called for every gated access regardless of outcome. Rows are
    append-only and cannot be modified or deleted.

    Args:
        session: Database session
        accessor_id: Hospital user attempting the access
        hospital_id: Hospital the accessor acts for
        patient_id: Patient whose data is touched
        resource: Resource name (e.g., "documents", "timeline")
        action: Action attempted (e.g., "read", "write")
        access_type: Kind of access (view, download, verify, share, upload)
        decision: Final decision, granted or denied
        occurred_at: Decision time from the service clock
        tenant_id: Tenant owning the hospital
        resource_id: Document or event id, when the access targets one
        consent_id: Consent that satisfied the check, if any
        emergency: Whether the emergency path was used
        ip_address: Client IP address
        user_agent: Client user agent string

    Returns:
        Created AccessLog instance
    """
    entry = AccessLog(
        accessor_id=accessor_id,
        hospital_id=hospital_id,
        tenant_id=tenant_id,
        patient_id=patient_id,
        resource=resource,
        resource_id=resource_id,
        action=action,
        access_type=AccessType(access_type).value,
        granted=decision.granted,
        reason=decision.reason.value,
        message=decision.message,
        consent_id=consent_id,
        emergency=emergency,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=occurred_at,
    )

    session.add(entry)
    await session.commit()
    await session.refresh(entry)

    audit_logger.log(
        action=f"access.{action}",
        actor_type="staff",
        actor_id=accessor_id,
        entity_type=resource,
        entity_id=resource_id or patient_id,
        metadata={
            "granted": decision.granted,
            "reason": decision.reason.value,
            "consent_id": consent_id,
            "emergency": emergency,
        },
    )

    return entry


class AccessLogService:
    """Service for querying the access log.

    Note: This service only provides read operations.
    Entries are created via write_access_log().
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_logs(self, filters: AccessLogFilter) -> list[AccessLog]:
        """Query access log entries with optional filters, newest first."""
        query = select(AccessLog).order_by(AccessLog.occurred_at.desc())

        if filters.patient_id:
            query = query.where(AccessLog.patient_id == filters.patient_id)
        if filters.accessor_id:
            query = query.where(AccessLog.accessor_id == filters.accessor_id)
        if filters.hospital_id:
            query = query.where(AccessLog.hospital_id == filters.hospital_id)
        if filters.resource_id:
            query = query.where(AccessLog.resource_id == filters.resource_id)
        if filters.granted is not None:
            query = query.where(AccessLog.granted == filters.granted)

        query = query.offset(filters.offset).limit(filters.limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_granted_actions(
        self,
        accessor_id: str,
        hospital_id: str,
        resource: str,
        action: str,
        since: datetime,
    ) -> int:
        """Count granted accesses of one kind by a user since a point in time.

        Used for the per-user daily document quota.
        """
        result = await self.session.execute(
            select(func.count(AccessLog.id))
            .where(AccessLog.accessor_id == accessor_id)
            .where(AccessLog.hospital_id == hospital_id)
            .where(AccessLog.resource == resource)
            .where(AccessLog.action == action)
            .where(AccessLog.granted.is_(True))
            .where(AccessLog.occurred_at >= since)
        )
        return result.scalar_one()
