"""Append-only access log for every gated access decision."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hospital_service.db.base import Base


class AccessType(str, Enum):
    """Kind of access attempted on a patient resource."""

    VIEW = "view"
    DOWNLOAD = "download"
    VERIFY = "verify"
    SHARE = "share"
    UPLOAD = "upload"


class AccessLog(Base):
    """Audit record of one access decision, granted or denied.

    IMPORTANT: This model intentionally has no update or delete
    operations. All rows are immutable once created.
    """

    __tablename__ = "access_logs"

    # Subject
    accessor_id: Mapped[str] = mapped_column(
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
    )

    # Object
    patient_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    resource: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    resource_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    access_type: Mapped[AccessType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Decision
    granted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    consent_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    emergency: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Request context
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

    def __repr__(self) -> str:
        outcome = "granted" if self.granted else f"denied:{self.reason}"
        return (
            f"<AccessLog {self.action}:{self.resource} by {self.accessor_id} "
            f"patient={self.patient_id} {outcome}>"
        )
