"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from careslot.core.intervals import as_utc, end_of


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"
    RESCHEDULED = "rescheduled"


class AppointmentType(str, Enum):
    """Appointment type enumeration. Informational only."""

    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    ROUTINE_CHECKUP = "routine_checkup"
    SPECIALIST = "specialist"
    TELEMEDICINE = "telemedicine"


class ActorRole(str, Enum):
    """Role of the party triggering an operation."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Authenticated principal on whose behalf an operation runs."""

    id: UUID | None = None
    role: ActorRole

    model_config = {"frozen": True}


def _utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment."""

    provider_id: UUID
    seeker_id: UUID
    start_at: datetime
    duration_minutes: int = Field(default=30, ge=1, le=24 * 60)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason: str = Field(..., min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=2000)
    is_emergency: bool = False
    idempotency_key: str | None = Field(None, min_length=1, max_length=128)

    @field_validator("start_at")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Store instants as UTC."""
        return as_utc(v)


class AppointmentUpdate(BaseModel):
    """Schema for updating non-status fields of an appointment."""

    appointment_type: AppointmentType | None = None
    reason: str | None = Field(None, min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=2000)


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new start time."""

    new_start_at: datetime
    reason: str | None = Field(None, max_length=500)

    @field_validator("new_start_at")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Store instants as UTC."""
        return as_utc(v)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentComplete(BaseModel):
    """Clinical fields recorded when an appointment is completed."""

    diagnosis: str | None = Field(None, max_length=1000)
    prescription: str | None = Field(None, max_length=1000)
    clinical_notes: str | None = Field(None, max_length=2000)
    follow_up_required: bool = False
    follow_up_date: datetime | None = None

    @field_validator("follow_up_date")
    @classmethod
    def normalize_follow_up(cls, v: datetime | None) -> datetime | None:
        return _utc(v)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    provider_id: UUID
    seeker_id: UUID
    start_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    appointment_type: AppointmentType
    reason: str
    notes: str | None = None
    is_emergency: bool
    rescheduled_from_id: UUID | None = None
    reschedule_reason: str | None = None
    idempotency_key: str | None = None
    cancelled_by: UUID | None = None
    cancelled_by_role: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    diagnosis: str | None = None
    prescription: str | None = None
    clinical_notes: str | None = None
    follow_up_required: bool | None = None
    follow_up_date: datetime | None = None
    completed_at: datetime | None = None
    is_archived: bool = False
    archived_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def end_at(self) -> datetime:
        """Derived end instant; never stored."""
        return end_of(self.start_at, self.duration_minutes)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    provider_id: UUID | None = None
    seeker_id: UUID | None = None
    status: AppointmentStatus | None = None
    appointment_type: AppointmentType | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    include_archived: bool = False
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

    @field_validator("from_date", "to_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return _utc(v)


class StatisticsFilters(BaseModel):
    """Schema for statistics filtering."""

    provider_id: UUID | None = None
    seeker_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None

    @field_validator("from_date", "to_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return _utc(v)


class AppointmentStatistics(BaseModel):
    """Aggregate counts over a filtered set of appointments."""

    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    emergency_count: int
    completion_rate: float
    cancellation_rate: float


class BulkOperation(str, Enum):
    """Operations supported by the bulk endpoint."""

    CANCEL = "cancel"
    COMPLETE = "complete"


class BulkItem(BaseModel):
    """One appointment in a bulk request."""

    id: UUID
    reason: str | None = Field(None, max_length=500)
    completion: AppointmentComplete | None = None


class BulkUpdateRequest(BaseModel):
    """Schema for a bulk cancel/complete request."""

    operation: BulkOperation
    items: list[BulkItem] = Field(..., min_length=1, max_length=100)


class BulkFailure(BaseModel):
    """Per-item failure in a bulk request."""

    id: UUID
    kind: str
    reason: str


class BulkUpdateResult(BaseModel):
    """Outcome of a bulk request."""

    successful: list[AppointmentResponse]
    failed: list[BulkFailure]


class AppointmentRescheduleResult(BaseModel):
    """Both records touched by a reschedule."""

    original: AppointmentResponse
    replacement: AppointmentResponse
