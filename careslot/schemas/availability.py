"""Availability schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from careslot.schemas.appointments import AppointmentStatus


class BusyInterval(BaseModel):
    """An interval held by an occupying appointment."""

    appointment_id: UUID
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus


class FreeSlot(BaseModel):
    """A bookable slot inside the working-hours template."""

    start_at: datetime
    end_at: datetime


class AvailabilityResponse(BaseModel):
    """Snapshot of a provider's schedule over a date range.

    The view may be stale as soon as it is returned; bookings re-check
    conflicts inside their own transaction.
    """

    provider_id: UUID
    from_date: datetime
    to_date: datetime
    busy: list[BusyInterval]
    free_slots: list[FreeSlot] | None = None


class SlotCheckResponse(BaseModel):
    """Result of a single-slot availability check."""

    provider_id: UUID
    start_at: datetime
    end_at: datetime
    available: bool
