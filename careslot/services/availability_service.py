"""Read-only projection of a provider's schedule."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog

from careslot.core.exceptions import BadRequestError
from careslot.core.intervals import Interval, end_of
from careslot.core.policy import SchedulingPolicy, utcnow
from careslot.repositories.appointment_repository import UnitOfWork
from careslot.schemas.appointments import AppointmentStatus
from careslot.schemas.availability import (
    AvailabilityResponse,
    BusyInterval,
    FreeSlot,
    SlotCheckResponse,
)

logger = structlog.get_logger(__name__)


class AvailabilityService:
    """Answers "when is this provider busy / free" without taking locks.

    Results may be stale by the time the caller acts on them. Create and
    reschedule always re-check conflicts inside their own transaction.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        policy: SchedulingPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow = uow
        self.policy = policy or SchedulingPolicy.from_settings()
        self.clock = clock

    async def get_availability(
        self,
        provider_id: UUID,
        from_date: datetime,
        to_date: datetime,
        include_free_slots: bool = False,
        slot_minutes: int | None = None,
    ) -> AvailabilityResponse:
        """
        List a provider's busy intervals and, optionally, free slots.

        Args:
            provider_id: Provider to inspect
            from_date: Start of the range (inclusive)
            to_date: End of the range (exclusive)
            include_free_slots: Walk the working-hours template for free slots
            slot_minutes: Length of each free slot; defaults to the slot step

        Returns:
            Busy intervals sorted by start, plus free slots when requested
        """
        if to_date <= from_date:
            raise BadRequestError("to_date must be after from_date")
        if to_date - from_date > self.policy.max_availability_range:
            raise BadRequestError(
                f"Date range may not exceed {self.policy.max_availability_range.days} days"
            )

        async with self.uow.reader() as repo:
            rows = await repo.list_occupying_for_provider(provider_id, from_date, to_date)

        window = Interval(from_date, to_date)
        busy = [
            BusyInterval(
                appointment_id=row["id"],
                start_at=row["start_at"],
                end_at=end_of(row["start_at"], row["duration_minutes"]),
                status=AppointmentStatus(row["status"]),
            )
            for row in rows
            if Interval.from_duration(row["start_at"], row["duration_minutes"]).overlaps(window)
        ]
        busy.sort(key=lambda b: b.start_at)

        free_slots = None
        if include_free_slots:
            length = slot_minutes or self.policy.slot_step_minutes
            if length <= 0:
                raise BadRequestError("slot_minutes must be positive")
            taken = [Interval(b.start_at, b.end_at) for b in busy]
            free_slots = [
                FreeSlot(start_at=slot.start, end_at=slot.end)
                for slot in self._template_slots(from_date, to_date, length)
                if not any(slot.overlaps(t) for t in taken)
            ]

        logger.debug(
            "availability_computed",
            provider_id=str(provider_id),
            busy=len(busy),
            free=len(free_slots) if free_slots is not None else None,
        )
        return AvailabilityResponse(
            provider_id=provider_id,
            from_date=from_date,
            to_date=to_date,
            busy=busy,
            free_slots=free_slots,
        )

    async def is_slot_available(
        self,
        provider_id: UUID,
        start_at: datetime,
        duration_minutes: int,
    ) -> SlotCheckResponse:
        """Check one interval against the provider's occupying appointments."""
        async with self.uow.reader() as repo:
            conflicts = await repo.find_conflicts(provider_id, start_at, duration_minutes)

        return SlotCheckResponse(
            provider_id=provider_id,
            start_at=start_at,
            end_at=end_of(start_at, duration_minutes),
            available=not conflicts and start_at > self.clock(),
        )

    def _template_slots(self, from_date: datetime, to_date: datetime, length: int) -> list[Interval]:
        """Step through working hours of each working day inside the range."""
        now = self.clock()
        step = timedelta(minutes=self.policy.slot_step_minutes)
        slots = []

        day = from_date.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        while day < to_date:
            if day.isoweekday() in self.policy.working_days:
                cursor = day + timedelta(hours=self.policy.working_hours_start)
                close = day + timedelta(hours=self.policy.working_hours_end)
                while end_of(cursor, length) <= close:
                    slot = Interval.from_duration(cursor, length)
                    if slot.start >= from_date and slot.end <= to_date and slot.start > now:
                        slots.append(slot)
                    cursor += step
            day += timedelta(days=1)

        return slots
