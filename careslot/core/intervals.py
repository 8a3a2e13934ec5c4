"""Half-open time interval arithmetic.

An appointment occupies ``[start, start + duration)``. Two appointments
conflict only if they share an instant, so one ending at 10:30 and another
starting at 10:30 never overlap.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def end_of(start: datetime, duration_minutes: int) -> datetime:
    """Return the exclusive end instant of an interval."""
    return start + timedelta(minutes=duration_minutes)


def overlaps(
    start_a: datetime,
    duration_a: int,
    start_b: datetime,
    duration_b: int,
) -> bool:
    """
    Check whether two intervals share any instant.

    Args:
        start_a: Start of the first interval
        duration_a: Length of the first interval in minutes
        start_b: Start of the second interval
        duration_b: Length of the second interval in minutes

    Returns:
        True if ``[start_a, end_a)`` and ``[start_b, end_b)`` intersect
    """
    if duration_a <= 0 or duration_b <= 0:
        return False
    return start_a < end_of(start_b, duration_b) and start_b < end_of(start_a, duration_a)


@dataclass(frozen=True)
class Interval:
    """A concrete ``[start, end)`` span."""

    start: datetime
    end: datetime

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "Interval":
        return cls(start=start, end=end_of(start, duration_minutes))

    def overlaps(self, other: "Interval") -> bool:
        if self.end <= self.start or other.end <= other.start:
            return False
        return self.start < other.end and other.start < self.end
