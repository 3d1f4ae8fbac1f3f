"""Tenant and tenant quota models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hospital_service.db.base import Base, TimestampMixin


class TenantTier(str, Enum):
    """Subscription tier, ordered basic < professional < enterprise < custom."""

    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    CUSTOM = "custom"


class TenantStatus(str, Enum):
    """Tenant lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class TenantResource(str, Enum):
    """Quota-tracked resources."""

    HOSPITALS = "hospitals"
    USERS = "users"
    DOCUMENTS = "documents"
    STORAGE = "storage"
    API_CALLS = "api_calls"


class Tenant(Base, TimestampMixin):
    """Billing/organizational boundary owning one or more hospitals."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    domain: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    owner_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    tier: Mapped[TenantTier] = mapped_column(
        String(20),
        nullable=False,
        default=TenantTier.BASIC,
    )
    status: Mapped[TenantStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TenantStatus.PENDING,
    )

    # Feature flags derived from the tier
    enable_sso: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_mfa: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_custom_branding: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    enable_advanced_analytics: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    enable_audit_logging: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    data_retention_days: Mapped[int] = mapped_column(
        Integer,
        default=2555,  # 7 years
        nullable=False,
    )

    tier_upgraded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    tier_upgraded_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    suspended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    suspended_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    suspension_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    limits: Mapped[list["TenantLimit"]] = relationship(
        "TenantLimit",
        back_populates="tenant",
        lazy="selectin",
        order_by="TenantLimit.resource",
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.domain} ({self.tier}) status={self.status}>"


class TenantLimit(Base):
    """Usage counter for one resource of one tenant.

    Invariant: used <= limit after every successful increment. The
    counter is only moved by a conditional UPDATE in the tenant service.
    """

    __tablename__ = "tenant_limits"
    __table_args__ = (
        UniqueConstraint("tenant_id", "resource", name="uq_tenant_limits_tenant_resource"),
    )

    tenant_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource: Mapped[TenantResource] = mapped_column(
        String(30),
        nullable=False,
    )
    used: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )
    limit: Mapped[int] = mapped_column(
        "usage_limit",
        BigInteger,
        nullable=False,
    )

    tenant: Mapped["Tenant"] = relationship(
        "Tenant",
        back_populates="limits",
    )

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def __repr__(self) -> str:
        return f"<TenantLimit {self.resource} {self.used}/{self.limit}>"
