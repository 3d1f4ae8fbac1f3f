"""Hospital staff user model (the subject of authorization decisions)."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from hospital_service.db.base import Base, TimestampMixin


class UserRole(str, Enum):
    """Hospital staff roles for RBAC."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    BILLING_CLERK = "billing_clerk"
    LAB_TECHNICIAN = "lab_technician"
    RADIOLOGIST = "radiologist"
    PHARMACIST = "pharmacist"
    RECEPTIONIST = "receptionist"
    VIEWER = "viewer"


class UserStatus(str, Enum):
    """Account status. Only ACTIVE users pass authorization."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"


class HospitalUser(Base, TimestampMixin):
    """Staff member of a hospital.

    Carries a single role, optional custom permission strings
    ("resource:action" or "resource:*") and a per-user access-control
    block that can only narrow what the role allows.
    """

    __tablename__ = "hospital_users"

    hospital_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        String(50),
        nullable=False,
        default=UserRole.VIEWER,
        index=True,
    )
    status: Mapped[UserStatus] = mapped_column(
        String(30),
        nullable=False,
        default=UserStatus.PENDING_VERIFICATION,
    )
    department: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    # Extra grants on top of the role ("resource:action" / "resource:*")
    permissions: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Access-control block
    allowed_document_types: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    max_documents_per_day: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    assigned_patients: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    assigned_departments: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    # [{"start": "HH:MM", "end": "HH:MM"}, ...]; empty means no per-user window
    restricted_hours: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    suspended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    suspension_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    @property
    def full_name(self) -> str:
        """Return user's full name."""
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<HospitalUser {self.email} ({self.role}) hospital={self.hospital_id}>"
