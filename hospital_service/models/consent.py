"""Consent and consent history models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hospital_service.db.base import Base, TimestampMixin


class ConsentType(str, Enum):
    """Purpose a consent is granted for."""

    VIEW_RECORDS = "view_records"
    UPLOAD_RECORDS = "upload_records"
    SHARE_DATA = "share_data"
    EMERGENCY_ACCESS = "emergency_access"


class ConsentScope(str, Enum):
    """Breadth of a consent grant."""

    SINGLE_DOCUMENT = "single_document"
    DOCUMENT_TYPE = "document_type"
    ALL_DOCUMENTS = "all_documents"
    TIME_BOUNDED = "time_bounded"
    ONGOING = "ongoing"


class ConsentStatus(str, Enum):
    """Consent lifecycle state.

    pending -> granted | denied | expired
    granted -> revoked | expired
    denied, revoked, expired are terminal.
    """

    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


# Statuses that block a new request for the same (patient, hospital, type)
ACTIVE_STATUSES = frozenset({ConsentStatus.PENDING, ConsentStatus.GRANTED})
ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'granted')"

TERMINAL_STATUSES = frozenset(
    {ConsentStatus.DENIED, ConsentStatus.EXPIRED, ConsentStatus.REVOKED}
)


class ConsentAction(str, Enum):
    """Action recorded in consent history."""

    CREATED = "created"
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ActorType(str, Enum):
    """Type of actor performing a consent action."""

    PATIENT = "patient"
    HOSPITAL = "hospital"
    SYSTEM = "system"


class Consent(Base, TimestampMixin):
    """A patient's scoped, time-bounded permission for one hospital.

    Records are never deleted. Status only changes through the consent
    service, which conditions every transition on the current status.
    """

    __tablename__ = "consents"
    __table_args__ = (
        Index(
            "uq_consents_active_request",
            "patient_id",
            "hospital_id",
            "consent_type",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
        ),
    )

    patient_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    hospital_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    consent_type: Mapped[ConsentType] = mapped_column(
        String(50),
        nullable=False,
    )
    scope: Mapped[ConsentScope] = mapped_column(
        String(50),
        nullable=False,
        default=ConsentScope.ALL_DOCUMENTS,
    )
    status: Mapped[ConsentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ConsentStatus.PENDING,
        index=True,
    )

    # Hospital request
    requested_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    purpose: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    data_types: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    duration_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    emergency_access: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Scope targets
    document_ids: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    document_types: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    time_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    time_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Lifecycle timestamps
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    granted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    denied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    expired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Decision actors
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    denied_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Patient response metadata
    response_ip_address: Mapped[str | None] = mapped_column(
        String(45),  # Supports IPv6
        nullable=True,
    )
    response_user_agent: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    response_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Usage tracking, bumped by the access gate on every granted access
    access_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    history: Mapped[list["ConsentHistory"]] = relationship(
        "ConsentHistory",
        back_populates="consent",
        order_by="ConsentHistory.occurred_at",
        lazy="noload",
    )

    def __repr__(self) -> str:
        return (
            f"<Consent {self.id[:8]}... {self.consent_type} "
            f"patient={self.patient_id} status={self.status}>"
        )


class ConsentHistory(Base):
    """Append-only log of consent actions.

    IMPORTANT: rows are written once by the consent service and never
    updated or deleted.
    """

    __tablename__ = "consent_history"

    consent_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("consents.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[ConsentAction] = mapped_column(
        String(20),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    actor_type: Mapped[ActorType] = mapped_column(
        String(20),
        nullable=False,
    )
    previous_status: Mapped[ConsentStatus | None] = mapped_column(
        String(20),
        nullable=True,
    )
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )
    user_agent: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    consent: Mapped["Consent"] = relationship(
        "Consent",
        back_populates="history",
    )

    def __repr__(self) -> str:
        return f"<ConsentHistory {self.action} consent={self.consent_id[:8]}...>"
