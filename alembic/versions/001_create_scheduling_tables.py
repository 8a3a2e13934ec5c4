"""Create appointments, provider lock and accounts read-model tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create scheduling tables."""
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default=sa.text("'patient'")),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )

    op.create_table(
        "appointments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        # Parties
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("seeker_id", postgresql.UUID(as_uuid=True), nullable=False),
        # Temporal extent
        sa.Column("start_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        # Status and classification
        sa.Column("status", sa.Text(), nullable=False, server_default="scheduled"),
        sa.Column("appointment_type", sa.Text(), nullable=False, server_default="consultation"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_emergency", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        # Lineage
        sa.Column(
            "rescheduled_from_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("appointments.id"),
            nullable=True,
        ),
        sa.Column("reschedule_reason", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.Text(), nullable=True),
        # Cancellation metadata
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancelled_by_role", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Completion metadata
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("prescription", sa.Text(), nullable=True),
        sa.Column("clinical_notes", sa.Text(), nullable=True),
        sa.Column("follow_up_required", sa.Boolean(), nullable=True),
        sa.Column("follow_up_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Archive flag
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("archived_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Audit
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', "
            "'cancelled', 'missed', 'rescheduled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
        sa.CheckConstraint(
            "rescheduled_from_id IS NULL OR rescheduled_from_id <> id",
            name="appointments_lineage_check",
        ),
        sa.UniqueConstraint(
            "seeker_id",
            "idempotency_key",
            name="uq_appointments_seeker_idempotency",
        ),
    )

    op.create_index(
        "idx_appointments_provider_start",
        "appointments",
        ["provider_id", "start_at"],
    )
    op.create_index("idx_appointments_seeker_id", "appointments", ["seeker_id"])
    op.create_index("idx_appointments_status", "appointments", ["status"])

    # Per-provider serialization point for bookings
    op.create_table(
        "provider_schedule_locks",
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )


def downgrade() -> None:
    """Drop scheduling tables."""
    op.drop_table("provider_schedule_locks")
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_seeker_id", table_name="appointments")
    op.drop_index("idx_appointments_provider_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("accounts")
