"""Tests for half-open interval arithmetic."""

from datetime import UTC, datetime, timedelta, timezone

from careslot.core.intervals import Interval, as_utc, end_of, overlaps

TEN = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)


def test_back_to_back_intervals_do_not_overlap():
    """An interval ending at 10:30 does not touch one starting at 10:30."""
    assert not overlaps(TEN, 30, TEN + timedelta(minutes=30), 30)
    assert not overlaps(TEN + timedelta(minutes=30), 30, TEN, 30)


def test_partial_overlap():
    assert overlaps(TEN, 30, TEN + timedelta(minutes=15), 30)
    assert overlaps(TEN + timedelta(minutes=15), 30, TEN, 30)


def test_containment_overlaps():
    assert overlaps(TEN, 120, TEN + timedelta(minutes=30), 15)
    assert overlaps(TEN + timedelta(minutes=30), 15, TEN, 120)


def test_identical_intervals_overlap():
    assert overlaps(TEN, 30, TEN, 30)


def test_zero_or_negative_duration_never_overlaps():
    assert not overlaps(TEN, 0, TEN, 30)
    assert not overlaps(TEN, 30, TEN + timedelta(minutes=10), 0)
    assert not overlaps(TEN, -15, TEN, 30)


def test_disjoint_intervals():
    assert not overlaps(TEN, 30, TEN + timedelta(hours=2), 30)


def test_end_of():
    assert end_of(TEN, 45) == datetime(2025, 3, 1, 10, 45, tzinfo=UTC)


def test_as_utc_normalizes_offsets_and_naive_values():
    plus_two = timezone(timedelta(hours=2))
    assert as_utc(datetime(2025, 3, 1, 12, 0, tzinfo=plus_two)) == TEN
    assert as_utc(datetime(2025, 3, 1, 12, 0, tzinfo=plus_two)).tzinfo == UTC
    assert as_utc(datetime(2025, 3, 1, 10, 0)) == TEN


def test_interval_object():
    first = Interval.from_duration(TEN, 30)
    second = Interval.from_duration(TEN + timedelta(minutes=30), 30)

    assert not first.overlaps(second)
    assert first.overlaps(Interval.from_duration(TEN + timedelta(minutes=29), 1))
    assert first.end == TEN + timedelta(minutes=30)


def test_empty_interval_overlaps_nothing():
    empty = Interval(TEN, TEN)
    assert not empty.overlaps(Interval.from_duration(TEN - timedelta(minutes=5), 30))
