"""Appointment tables using SQLAlchemy Core."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
    text,
)

# Metadata for all tables
metadata = MetaData()


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite drops tzinfo on the way back; this restores it so comparisons
    against aware datetimes keep working on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True),
    # Parties (owned by the account subsystem)
    Column("provider_id", Uuid, nullable=False),
    Column("seeker_id", Uuid, nullable=False),
    # Temporal extent; the end instant is derived, never stored
    Column("start_at", UTCDateTime, nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="scheduled"),
    Column("appointment_type", Text, nullable=False, server_default="consultation"),
    Column("reason", Text, nullable=False),
    Column("notes", Text, nullable=True),
    Column("is_emergency", Boolean, nullable=False, server_default=text("false")),
    # Lineage
    Column("rescheduled_from_id", Uuid, ForeignKey("appointments.id"), nullable=True),
    Column("reschedule_reason", Text, nullable=True),
    # Client retry protection, unique per seeker
    Column("idempotency_key", Text, nullable=True),
    # Cancellation metadata
    Column("cancelled_by", Uuid, nullable=True),
    Column("cancelled_by_role", Text, nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_at", UTCDateTime, nullable=True),
    # Completion metadata
    Column("diagnosis", Text, nullable=True),
    Column("prescription", Text, nullable=True),
    Column("clinical_notes", Text, nullable=True),
    Column("follow_up_required", Boolean, nullable=True),
    Column("follow_up_date", UTCDateTime, nullable=True),
    Column("completed_at", UTCDateTime, nullable=True),
    # Archive flag, independent of status (healthcare compliance)
    Column("is_archived", Boolean, nullable=False, server_default=text("false")),
    Column("archived_at", UTCDateTime, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', "
        "'cancelled', 'missed', 'rescheduled')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
    CheckConstraint(
        "rescheduled_from_id IS NULL OR rescheduled_from_id <> id",
        name="appointments_lineage_check",
    ),
    UniqueConstraint("seeker_id", "idempotency_key", name="uq_appointments_seeker_idempotency"),
    Index("idx_appointments_provider_start", "provider_id", "start_at"),
    Index("idx_appointments_seeker_id", "seeker_id"),
    Index("idx_appointments_status", "status"),
)

# One row per provider; writing it serializes bookings for that provider
provider_schedule_locks = Table(
    "provider_schedule_locks",
    metadata,
    Column("provider_id", Uuid, primary_key=True),
    Column("version", Integer, nullable=False, server_default=text("0")),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
)
