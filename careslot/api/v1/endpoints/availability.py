"""Provider availability endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from careslot.core.intervals import as_utc
from careslot.dependencies import Availability, CurrentActor
from careslot.schemas.availability import AvailabilityResponse, SlotCheckResponse

router = APIRouter()


@router.get(
    "/providers/{provider_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Provider availability",
)
async def get_availability(
    provider_id: UUID,
    current_actor: CurrentActor,
    service: Availability,
    from_date: datetime = Query(...),
    to_date: datetime = Query(...),
    include_free_slots: bool = Query(False),
    slot_minutes: int | None = Query(None, ge=5, le=240),
) -> AvailabilityResponse:
    """
    Busy intervals and optional free slots for a provider.

    The result is advisory; booking re-checks conflicts atomically.
    """
    return await service.get_availability(
        provider_id,
        as_utc(from_date),
        as_utc(to_date),
        include_free_slots=include_free_slots,
        slot_minutes=slot_minutes,
    )


@router.get(
    "/providers/{provider_id}/availability/check",
    response_model=SlotCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Check a single slot",
)
async def check_slot(
    provider_id: UUID,
    current_actor: CurrentActor,
    service: Availability,
    start_at: datetime = Query(...),
    duration_minutes: int = Query(30, ge=1, le=240),
) -> SlotCheckResponse:
    """Whether the provider is free for one interval right now."""
    return await service.is_slot_available(provider_id, as_utc(start_at), duration_minutes)
