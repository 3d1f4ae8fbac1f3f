"""Consent, hospital user, tenant and access log tables.

Revision ID: 001
Revises:
Create Date: 2024-10-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the consent-gated access schema."""

    # Tenants
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("enable_sso", sa.Boolean(), nullable=False, default=False),
        sa.Column("enable_mfa", sa.Boolean(), nullable=False, default=False),
        sa.Column("enable_custom_branding", sa.Boolean(), nullable=False, default=False),
        sa.Column("enable_advanced_analytics", sa.Boolean(), nullable=False, default=False),
        sa.Column("enable_audit_logging", sa.Boolean(), nullable=False, default=True),
        sa.Column("data_retention_days", sa.Integer(), nullable=False, default=2555),
        sa.Column("tier_upgraded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tier_upgraded_by", sa.String(64), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_by", sa.String(64), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("domain", name="uq_tenants_domain"),
    )
    op.create_index("ix_tenants_owner_email", "tenants", ["owner_email"])

    # Tenant quota counters; used <= usage_limit is enforced by conditional UPDATE
    op.create_table(
        "tenant_limits",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("resource", sa.String(30), nullable=False),
        sa.Column("used", sa.BigInteger(), nullable=False, default=0),
        sa.Column("usage_limit", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.id"],
            name="fk_tenant_limits_tenant_id_tenants",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_tenant_limits"),
        sa.UniqueConstraint(
            "tenant_id", "resource", name="uq_tenant_limits_tenant_resource"
        ),
    )
    op.create_index("ix_tenant_limits_tenant_id", "tenant_limits", ["tenant_id"])

    # Hospital staff (authorization subjects)
    op.create_table(
        "hospital_users",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("hospital_id", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("department", sa.String(100), nullable=True),
        sa.Column("permissions", postgresql.JSON(), nullable=False),
        sa.Column("allowed_document_types", postgresql.JSON(), nullable=False),
        sa.Column("max_documents_per_day", sa.Integer(), nullable=True),
        sa.Column("assigned_patients", postgresql.JSON(), nullable=False),
        sa.Column("assigned_departments", postgresql.JSON(), nullable=False),
        sa.Column("restricted_hours", postgresql.JSON(), nullable=False),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_hospital_users"),
    )
    op.create_index("ix_hospital_users_hospital_id", "hospital_users", ["hospital_id"])
    op.create_index("ix_hospital_users_tenant_id", "hospital_users", ["tenant_id"])
    op.create_index("ix_hospital_users_email", "hospital_users", ["email"])
    op.create_index("ix_hospital_users_role", "hospital_users", ["role"])

    # Consents
    op.create_table(
        "consents",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("patient_id", sa.String(64), nullable=False),
        sa.Column("hospital_id", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("consent_type", sa.String(50), nullable=False),
        sa.Column("scope", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("requested_by", sa.String(64), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("data_types", postgresql.JSON(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("emergency_access", sa.Boolean(), nullable=False, default=False),
        sa.Column("document_ids", postgresql.JSON(), nullable=False),
        sa.Column("document_types", postgresql.JSON(), nullable=False),
        sa.Column("time_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("denied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("granted_by", sa.String(64), nullable=True),
        sa.Column("denied_by", sa.String(64), nullable=True),
        sa.Column("revoked_by", sa.String(64), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("response_ip_address", sa.String(45), nullable=True),
        sa.Column("response_user_agent", sa.String(500), nullable=True),
        sa.Column("response_signature", sa.Text(), nullable=True),
        sa.Column("response_notes", sa.Text(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, default=0),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_consents"),
    )
    op.create_index("ix_consents_patient_id", "consents", ["patient_id"])
    op.create_index("ix_consents_hospital_id", "consents", ["hospital_id"])
    op.create_index("ix_consents_tenant_id", "consents", ["tenant_id"])
    op.create_index("ix_consents_status", "consents", ["status"])
    op.create_index("ix_consents_expires_at", "consents", ["expires_at"])
    op.create_index(
        "uq_consents_active_request",
        "consents",
        ["patient_id", "hospital_id", "consent_type"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'granted')"),
    )

    # Consent history (append-only)
    op.create_table(
        "consent_history",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("consent_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("previous_status", sa.String(20), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["consent_id"], ["consents.id"], name="fk_consent_history_consent_id_consents"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_consent_history"),
    )
    op.create_index("ix_consent_history_consent_id", "consent_history", ["consent_id"])
    op.create_index("ix_consent_history_occurred_at", "consent_history", ["occurred_at"])

    # Access log (append-only)
    op.create_table(
        "access_logs",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("accessor_id", sa.String(64), nullable=False),
        sa.Column("hospital_id", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("patient_id", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("access_type", sa.String(20), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("consent_id", sa.String(64), nullable=True),
        sa.Column("emergency", sa.Boolean(), nullable=False, default=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_access_logs"),
    )
    op.create_index("ix_access_logs_accessor_id", "access_logs", ["accessor_id"])
    op.create_index("ix_access_logs_hospital_id", "access_logs", ["hospital_id"])
    op.create_index("ix_access_logs_patient_id", "access_logs", ["patient_id"])
    op.create_index("ix_access_logs_resource_id", "access_logs", ["resource_id"])
    op.create_index("ix_access_logs_occurred_at", "access_logs", ["occurred_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("access_logs")
    op.drop_table("consent_history")
    op.drop_table("consents")
    op.drop_table("hospital_users")
    op.drop_table("tenant_limits")
    op.drop_table("tenants")
