"""Tests for provider availability queries."""

from datetime import UTC, datetime, timedelta

import pytest

from careslot.core.exceptions import BadRequestError
from careslot.schemas.appointments import Actor, ActorRole, AppointmentCancel, AppointmentCreate


def monday(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 3, 3, hour, minute, tzinfo=UTC)


async def book(service, parties, start_at, duration_minutes=30, seeker="patient_a"):
    return await service.create_appointment(
        AppointmentCreate(
            provider_id=parties["doctor"],
            seeker_id=parties[seeker],
            start_at=start_at,
            duration_minutes=duration_minutes,
            reason="Checkup",
        )
    )


@pytest.mark.asyncio
async def test_busy_intervals_sorted(service, availability, parties):
    await book(service, parties, monday(14))
    await book(service, parties, monday(9), duration_minutes=60, seeker="patient_b")

    result = await availability.get_availability(parties["doctor"], monday(0), monday(23))

    assert [(b.start_at, b.end_at) for b in result.busy] == [
        (monday(9), monday(10)),
        (monday(14), monday(14, 30)),
    ]
    assert result.free_slots is None


@pytest.mark.asyncio
async def test_cancelled_appointments_are_not_busy(service, availability, parties):
    appointment = await book(service, parties, monday(9))
    await service.cancel_appointment(
        appointment.id, Actor(role=ActorRole.ADMIN), AppointmentCancel()
    )

    result = await availability.get_availability(parties["doctor"], monday(0), monday(23))
    assert result.busy == []


@pytest.mark.asyncio
async def test_interval_straddling_range_start_is_busy(service, availability, parties):
    await book(service, parties, monday(9), duration_minutes=120)

    result = await availability.get_availability(parties["doctor"], monday(10), monday(12))
    assert len(result.busy) == 1

    # Ends exactly where the range begins
    result = await availability.get_availability(parties["doctor"], monday(11), monday(12))
    assert result.busy == []


@pytest.mark.asyncio
async def test_free_slots_skip_busy_intervals(service, availability, parties):
    await book(service, parties, monday(10))
    await book(service, parties, monday(10, 30), seeker="patient_b")

    result = await availability.get_availability(
        parties["doctor"], monday(8), monday(12), include_free_slots=True
    )

    assert [slot.start_at for slot in result.free_slots] == [
        monday(8),
        monday(8, 30),
        monday(9),
        monday(9, 30),
        monday(11),
        monday(11, 30),
    ]


@pytest.mark.asyncio
async def test_free_slots_follow_working_template(availability, parties):
    saturday = datetime(2025, 3, 1, tzinfo=UTC)

    weekend = await availability.get_availability(
        parties["doctor"], saturday, saturday + timedelta(days=2), include_free_slots=True
    )
    assert weekend.free_slots == []

    day = await availability.get_availability(
        parties["doctor"], monday(0), monday(0) + timedelta(days=1), include_free_slots=True
    )
    assert day.free_slots[0].start_at == monday(8)
    assert day.free_slots[-1].end_at == monday(18)
    assert len(day.free_slots) == 20


@pytest.mark.asyncio
async def test_free_slots_with_custom_length(service, availability, parties):
    await book(service, parties, monday(9))

    result = await availability.get_availability(
        parties["doctor"], monday(8), monday(11), include_free_slots=True, slot_minutes=60
    )

    assert [slot.start_at for slot in result.free_slots] == [monday(8), monday(9, 30), monday(10)]


@pytest.mark.asyncio
async def test_free_slots_exclude_the_past(availability, parties, clock):
    clock.now = monday(12, 10)

    result = await availability.get_availability(
        parties["doctor"], monday(8), monday(14), include_free_slots=True
    )

    assert [slot.start_at for slot in result.free_slots] == [
        monday(12, 30),
        monday(13),
        monday(13, 30),
    ]


@pytest.mark.asyncio
async def test_invalid_range(availability, parties):
    with pytest.raises(BadRequestError):
        await availability.get_availability(parties["doctor"], monday(12), monday(8))

    with pytest.raises(BadRequestError):
        await availability.get_availability(
            parties["doctor"], monday(0), monday(0) + timedelta(days=60)
        )


@pytest.mark.asyncio
async def test_is_slot_available(service, availability, parties, clock):
    await book(service, parties, monday(10))

    taken = await availability.is_slot_available(parties["doctor"], monday(10, 15), 30)
    assert taken.available is False

    adjacent = await availability.is_slot_available(parties["doctor"], monday(10, 30), 30)
    assert adjacent.available is True
    assert adjacent.end_at == monday(11)

    past = await availability.is_slot_available(parties["doctor"], clock.now - timedelta(hours=1), 30)
    assert past.available is False
