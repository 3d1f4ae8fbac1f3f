"""Tenant quota service.

Tracks per-tenant resource counters against tier limits. The only write
path for a counter is a single conditional UPDATE
(used = used + n WHERE used + n <= limit), so concurrent increments can
never push a counter past its limit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.core.logging import audit_logger
from hospital_service.models.tenant import (
    Tenant,
    TenantLimit,
    TenantResource,
    TenantStatus,
    TenantTier,
)
from hospital_service.utils.time import Clock, utc_now

logger = logging.getLogger(__name__)

GB = 1024 * 1024 * 1024

TIER_LIMITS: dict[TenantTier, dict[TenantResource, int]] = {
    TenantTier.BASIC: {
        TenantResource.HOSPITALS: 1,
        TenantResource.USERS: 10,
        TenantResource.DOCUMENTS: 1_000,
        TenantResource.STORAGE: 10 * GB,
        TenantResource.API_CALLS: 10_000,
    },
    TenantTier.PROFESSIONAL: {
        TenantResource.HOSPITALS: 5,
        TenantResource.USERS: 100,
        TenantResource.DOCUMENTS: 10_000,
        TenantResource.STORAGE: 100 * GB,
        TenantResource.API_CALLS: 100_000,
    },
    TenantTier.ENTERPRISE: {
        TenantResource.HOSPITALS: 50,
        TenantResource.USERS: 1_000,
        TenantResource.DOCUMENTS: 100_000,
        TenantResource.STORAGE: 1024 * GB,
        TenantResource.API_CALLS: 1_000_000,
    },
    TenantTier.CUSTOM: {
        TenantResource.HOSPITALS: 1_000,
        TenantResource.USERS: 10_000,
        TenantResource.DOCUMENTS: 1_000_000,
        TenantResource.STORAGE: 10 * 1024 * GB,
        TenantResource.API_CALLS: 10_000_000,
    },
}

TIER_FEATURES: dict[TenantTier, list[str]] = {
    TenantTier.BASIC: [
        "basic_hospital_management",
        "patient_linking",
        "document_upload",
        "basic_reporting",
        "email_support",
    ],
    TenantTier.PROFESSIONAL: [
        "advanced_hospital_management",
        "patient_linking",
        "document_upload",
        "advanced_reporting",
        "analytics_dashboard",
        "api_access",
        "sso_integration",
        "mfa_support",
        "email_phone_support",
    ],
    TenantTier.ENTERPRISE: [
        "enterprise_hospital_management",
        "patient_linking",
        "document_upload",
        "advanced_reporting",
        "analytics_dashboard",
        "api_access",
        "sso_integration",
        "ldap_integration",
        "mfa_support",
        "custom_branding",
        "audit_logging",
        "disaster_recovery",
        "dedicated_support",
        "custom_integrations",
    ],
    TenantTier.CUSTOM: [
        "unlimited_hospitals",
        "unlimited_users",
        "unlimited_documents",
        "custom_features",
        "dedicated_infrastructure",
        "white_label_solution",
        "custom_sla",
        "24x7_support",
    ],
}

_TIER_ORDER = [
    TenantTier.BASIC,
    TenantTier.PROFESSIONAL,
    TenantTier.ENTERPRISE,
    TenantTier.CUSTOM,
]

# Tenants in these states may not consume quota
BLOCKED_STATUSES = (TenantStatus.SUSPENDED, TenantStatus.EXPIRED)


def tier_level(tier: TenantTier) -> int:
    """Ordinal of a tier: basic=1 ... custom=4."""
    return _TIER_ORDER.index(TenantTier(tier)) + 1


def tier_flags(tier: TenantTier) -> dict[str, bool]:
    """Feature flags for a tier; every flag is non-decreasing with tier level."""
    level = tier_level(tier)
    return {
        "enable_sso": level >= tier_level(TenantTier.PROFESSIONAL),
        "enable_mfa": level >= tier_level(TenantTier.PROFESSIONAL),
        "enable_advanced_analytics": level >= tier_level(TenantTier.PROFESSIONAL),
        "enable_custom_branding": level >= tier_level(TenantTier.ENTERPRISE),
    }


class TenantError(Exception):
    """Base exception for tenant operations."""
    pass


class TenantNotFoundError(TenantError):
    """Raised when a tenant id does not exist."""
    pass


class LimitExceededError(TenantError):
    """Raised when an increment would push usage past the limit."""

    def __init__(self, resource: TenantResource, used: int, limit: int, requested: int) -> None:
        self.resource = resource
        self.used = used
        self.limit = limit
        self.requested = requested
        super().__init__(
            f"Tenant limit exceeded for {resource.value}: "
            f"{used} used + {requested} requested > {limit}"
        )


class TierDowngradeError(TenantError):
    """Raised when a tier change is not a strict upgrade."""
    pass


class TenantSuspendedError(TenantError):
    """Raised when a suspended or expired tenant tries to consume quota."""
    pass


@dataclass(frozen=True)
class LimitCheck:
    """Quota state of one tenant resource."""

    resource: TenantResource
    can_proceed: bool
    used: int
    limit: int
    remaining: int


@dataclass(frozen=True)
class TenantUsage:
    """Usage across all quota resources of a tenant."""

    tenant_id: str
    tier: TenantTier
    status: TenantStatus
    limits: list[LimitCheck]
    features: list[str]
    last_updated: datetime


class TenantService:
    """Service for tenant tiers and quota counters."""

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        self.session = session
        self.clock = clock

    async def create_tenant(
        self,
        name: str,
        domain: str,
        owner_email: str,
        tier: TenantTier = TenantTier.BASIC,
    ) -> Tenant:
        """Get the owner's tenant, creating it if needed.

        An existing tenant with the same owner email or domain is returned
        as is. New tenants start pending with limits seeded from the tier.
        """
        result = await self.session.execute(
            select(Tenant).where(or_(Tenant.owner_email == owner_email, Tenant.domain == domain))
        )
        existing = result.scalars().first()
        if existing:
            return existing

        tier = TenantTier(tier)
        tenant = Tenant(
            name=name,
            domain=domain,
            owner_email=owner_email,
            tier=tier.value,
            status=TenantStatus.PENDING.value,
            **tier_flags(tier),
        )
        self.session.add(tenant)
        await self.session.flush()

        for resource, limit in TIER_LIMITS[tier].items():
            self.session.add(
                TenantLimit(tenant_id=tenant.id, resource=resource.value, used=0, limit=limit)
            )

        await self.session.commit()
        tenant = await self.get_tenant(tenant.id)

        logger.info(f"Tenant created: {tenant.id} ({tier.value})")
        return tenant

    async def get_tenant(self, tenant_id: str) -> Tenant:
        """Get tenant by ID.

        Raises:
            TenantNotFoundError: If no such tenant exists
        """
        result = await self.session.execute(
            select(Tenant)
            .where(Tenant.id == tenant_id)
            .execution_options(populate_existing=True)
        )
        tenant = result.scalar_one_or_none()

        if not tenant:
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}")

        return tenant

    async def activate_tenant(self, tenant_id: str) -> Tenant:
        """Move a pending or suspended tenant to active."""
        tenant = await self.get_tenant(tenant_id)

        if TenantStatus(tenant.status) == TenantStatus.EXPIRED:
            raise TenantSuspendedError("Expired tenants cannot be reactivated")

        tenant.status = TenantStatus.ACTIVE.value
        tenant.suspended_at = None
        tenant.suspended_by = None
        tenant.suspension_reason = None
        await self.session.commit()

        logger.info(f"Tenant activated: {tenant_id}")
        return await self.get_tenant(tenant_id)

    async def check_limit(self, tenant_id: str, resource: TenantResource) -> LimitCheck:
        """Read the quota state of one resource.

        Raises:
            TenantNotFoundError: If no such tenant exists
        """
        tenant = await self.get_tenant(tenant_id)
        row = await self._limit_row(tenant_id, TenantResource(resource))
        return self._to_check(row, blocked=TenantStatus(tenant.status) in BLOCKED_STATUSES)

    async def increment_usage(
        self,
        tenant_id: str,
        resource: TenantResource,
        by: int = 1,
    ) -> LimitCheck:
        """Atomically consume quota.

        Args:
            tenant_id: Tenant ID
            resource: Quota resource to consume
            by: Units to consume (positive)

        Returns:
            Quota state after the increment

        Raises:
            TenantNotFoundError: If no such tenant exists
            TenantSuspendedError: If the tenant is suspended or expired
            LimitExceededError: If used + by would exceed the limit
        """
        if by < 1:
            raise TenantError("Usage increment must be positive")

        resource = TenantResource(resource)

        result = await self.session.execute(
            update(TenantLimit)
            .where(TenantLimit.tenant_id == tenant_id)
            .where(TenantLimit.resource == resource.value)
            .where(TenantLimit.used + by <= TenantLimit.limit)
            .where(
                TenantLimit.tenant_id.in_(
                    select(Tenant.id).where(
                        Tenant.status.not_in([s.value for s in BLOCKED_STATUSES])
                    )
                )
            )
            .values(used=TenantLimit.used + by)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await self.session.rollback()
            tenant = await self.get_tenant(tenant_id)
            if TenantStatus(tenant.status) in BLOCKED_STATUSES:
                raise TenantSuspendedError(f"Tenant is {TenantStatus(tenant.status).value}")

            row = await self._limit_row(tenant_id, resource)
            audit_logger.conflict(
                action="tenant.increment_usage",
                actor_id="system",
                entity_type="tenant",
                entity_id=tenant_id,
                reason=f"limit_exceeded:{resource.value}",
            )
            raise LimitExceededError(resource, row.used, row.limit, by)

        await self.session.commit()

        row = await self._limit_row(tenant_id, resource)
        return self._to_check(row)

    async def upgrade_tier(
        self,
        tenant_id: str,
        new_tier: TenantTier,
        upgraded_by: str,
    ) -> Tenant:
        """Move a tenant to a strictly higher tier.

        Limits are raised to the new tier's table and never lowered;
        feature flags are recomputed from the new tier.

        Raises:
            TenantNotFoundError: If no such tenant exists
            TierDowngradeError: If new_tier is not above the current tier
        """
        new_tier = TenantTier(new_tier)
        tenant = await self.get_tenant(tenant_id)
        current_tier = TenantTier(tenant.tier)

        if tier_level(new_tier) <= tier_level(current_tier):
            raise TierDowngradeError(
                f"Cannot move from {current_tier.value} to {new_tier.value}"
            )

        now = self.clock()
        result = await self.session.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .where(Tenant.tier == current_tier.value)
            .values(
                tier=new_tier.value,
                tier_upgraded_at=now,
                tier_upgraded_by=upgraded_by,
                **tier_flags(new_tier),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise TierDowngradeError("Tenant tier changed concurrently; retry the upgrade")

        for resource, limit in TIER_LIMITS[new_tier].items():
            await self.session.execute(
                update(TenantLimit)
                .where(TenantLimit.tenant_id == tenant_id)
                .where(TenantLimit.resource == resource.value)
                .values(
                    {
                        TenantLimit.limit: case(
                            (TenantLimit.limit < limit, limit), else_=TenantLimit.limit
                        )
                    }
                )
                .execution_options(synchronize_session=False)
            )

        await self.session.commit()

        audit_logger.log(
            action="tenant.upgrade_tier",
            actor_type="staff",
            actor_id=upgraded_by,
            entity_type="tenant",
            entity_id=tenant_id,
            metadata={"from": current_tier.value, "to": new_tier.value},
        )
        logger.info(f"Tenant tier upgraded: {tenant_id} {current_tier.value} -> {new_tier.value}")

        return await self.get_tenant(tenant_id)

    async def get_usage(self, tenant_id: str) -> TenantUsage:
        """Get quota state for every resource of the tenant."""
        tenant = await self.get_tenant(tenant_id)
        blocked = TenantStatus(tenant.status) in BLOCKED_STATUSES

        result = await self.session.execute(
            select(TenantLimit)
            .where(TenantLimit.tenant_id == tenant_id)
            .order_by(TenantLimit.resource)
            .execution_options(populate_existing=True)
        )

        tier = TenantTier(tenant.tier)
        return TenantUsage(
            tenant_id=tenant.id,
            tier=tier,
            status=TenantStatus(tenant.status),
            limits=[self._to_check(row, blocked=blocked) for row in result.scalars().all()],
            features=list(TIER_FEATURES[tier]),
            last_updated=self.clock(),
        )

    async def suspend_tenant(self, tenant_id: str, suspended_by: str, reason: str) -> Tenant:
        """Suspend a tenant; suspended tenants cannot consume quota."""
        tenant = await self.get_tenant(tenant_id)

        tenant.status = TenantStatus.SUSPENDED.value
        tenant.suspended_at = self.clock()
        tenant.suspended_by = suspended_by
        tenant.suspension_reason = reason
        await self.session.commit()

        audit_logger.log(
            action="tenant.suspend",
            actor_type="staff",
            actor_id=suspended_by,
            entity_type="tenant",
            entity_id=tenant_id,
            metadata={"reason": reason},
        )
        logger.info(f"Tenant suspended: {tenant_id}")

        return await self.get_tenant(tenant_id)

    async def _limit_row(self, tenant_id: str, resource: TenantResource) -> TenantLimit:
        result = await self.session.execute(
            select(TenantLimit)
            .where(TenantLimit.tenant_id == tenant_id)
            .where(TenantLimit.resource == resource.value)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise TenantError(f"No {resource.value} limit configured for tenant {tenant_id}")
        return row

    @staticmethod
    def _to_check(row: TenantLimit, blocked: bool = False) -> LimitCheck:
        return LimitCheck(
            resource=TenantResource(row.resource),
            can_proceed=not blocked and row.used < row.limit,
            used=row.used,
            limit=row.limit,
            remaining=row.remaining,
        )
