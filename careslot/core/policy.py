"""Scheduling policy: time-based guards applied around the state machine."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from careslot.config import Settings, settings
from careslot.core.exceptions import BadRequestError, LockoutWindowError, PastDateError
from careslot.core.intervals import end_of


@dataclass(frozen=True)
class SchedulingPolicy:
    """Tunable rules for booking, cancelling and rescheduling."""

    cancellation_lockout: timedelta = timedelta(hours=2)
    reschedule_lockout: timedelta = timedelta(hours=4)
    min_duration_minutes: int = 15
    max_duration_minutes: int = 240
    duration_step_minutes: int = 15
    working_hours_start: int = 8
    working_hours_end: int = 18
    working_days: frozenset[int] = field(default_factory=lambda: frozenset({1, 2, 3, 4, 5}))
    slot_step_minutes: int = 30
    enforce_working_hours: bool = False
    max_availability_range: timedelta = timedelta(days=31)
    missed_grace: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SchedulingPolicy":
        return cls(
            cancellation_lockout=timedelta(minutes=config.cancellation_lockout_minutes),
            reschedule_lockout=timedelta(minutes=config.reschedule_lockout_minutes),
            min_duration_minutes=config.min_duration_minutes,
            max_duration_minutes=config.max_duration_minutes,
            duration_step_minutes=config.duration_step_minutes,
            working_hours_start=config.working_hours_start,
            working_hours_end=config.working_hours_end,
            working_days=config.working_days,
            slot_step_minutes=config.slot_step_minutes,
            enforce_working_hours=config.enforce_working_hours,
            max_availability_range=timedelta(days=config.max_availability_range_days),
            missed_grace=timedelta(minutes=config.missed_grace_minutes),
        )

    def validate_duration(self, duration_minutes: int) -> None:
        if not self.min_duration_minutes <= duration_minutes <= self.max_duration_minutes:
            raise BadRequestError(
                f"Duration must be between {self.min_duration_minutes} "
                f"and {self.max_duration_minutes} minutes"
            )
        if duration_minutes % self.duration_step_minutes:
            raise BadRequestError(
                f"Duration must be in increments of {self.duration_step_minutes} minutes"
            )

    def ensure_future(self, start_at: datetime, now: datetime) -> None:
        if start_at <= now:
            raise PastDateError()

    def ensure_outside_lockout(
        self,
        start_at: datetime,
        now: datetime,
        window: timedelta,
        action: str,
    ) -> None:
        """Refuse an action once ``now`` is within ``window`` of the start."""
        if start_at - now < window:
            minutes = int(window.total_seconds() // 60)
            raise LockoutWindowError(
                f"Appointments cannot be {action} less than {minutes} minutes before they start"
            )

    def ensure_cancellable(self, start_at: datetime, now: datetime) -> None:
        self.ensure_outside_lockout(start_at, now, self.cancellation_lockout, "cancelled")

    def ensure_reschedulable(self, start_at: datetime, now: datetime) -> None:
        self.ensure_outside_lockout(start_at, now, self.reschedule_lockout, "rescheduled")

    def is_within_working_hours(self, start_at: datetime, duration_minutes: int) -> bool:
        """Check an interval against the weekly working-hours template (UTC)."""
        start = start_at.astimezone(UTC)
        end = end_of(start, duration_minutes)
        if start.isoweekday() not in self.working_days:
            return False
        day_open = start.replace(hour=self.working_hours_start, minute=0, second=0, microsecond=0)
        day_close = start.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(
            hours=self.working_hours_end
        )
        return day_open <= start and end <= day_close

    def ensure_working_hours(self, start_at: datetime, duration_minutes: int) -> None:
        """Optional hook; a no-op unless working-hours enforcement is on."""
        if self.enforce_working_hours and not self.is_within_working_hours(
            start_at, duration_minutes
        ):
            raise BadRequestError(
                f"Appointments are only available between {self.working_hours_start}:00 "
                f"and {self.working_hours_end}:00 on working days"
            )


def utcnow() -> datetime:
    return datetime.now(UTC)
