"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from careslot.core.exceptions import InvalidRoleError
from careslot.dependencies import Appointments, CurrentActor
from careslot.schemas.appointments import (
    ActorRole,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentRescheduleResult,
    AppointmentResponse,
    AppointmentStatistics,
    AppointmentStatus,
    AppointmentType,
    AppointmentUpdate,
    BulkUpdateRequest,
    BulkUpdateResult,
    StatisticsFilters,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Book an appointment with a provider.

    Patients may only book for themselves and doctors only on their own
    schedule.
    """
    if current_actor.role == ActorRole.PATIENT and current_actor.id != data.seeker_id:
        raise InvalidRoleError("Patients can only book appointments for themselves")
    if current_actor.role == ActorRole.DOCTOR and current_actor.id != data.provider_id:
        raise InvalidRoleError("Doctors can only book on their own schedule")

    return await service.create_appointment(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    current_actor: CurrentActor,
    service: Appointments,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    appointment_type: AppointmentType | None = Query(None),
    provider_id: UUID | None = Query(None),
    seeker_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    include_archived: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Patients see their own bookings and doctors their own schedule.
    """
    if current_actor.role == ActorRole.PATIENT:
        seeker_id = current_actor.id
    elif current_actor.role == ActorRole.DOCTOR:
        provider_id = current_actor.id

    filters = AppointmentFilters(
        provider_id=provider_id,
        seeker_id=seeker_id,
        status=status_filter,
        appointment_type=appointment_type,
        from_date=from_date,
        to_date=to_date,
        include_archived=include_archived,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters)


@router.get(
    "/statistics",
    response_model=AppointmentStatistics,
    status_code=status.HTTP_200_OK,
    summary="Appointment statistics",
)
async def get_statistics(
    current_actor: CurrentActor,
    service: Appointments,
    provider_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
) -> AppointmentStatistics:
    """Aggregate counts by status and type."""
    seeker_id = None
    if current_actor.role == ActorRole.PATIENT:
        seeker_id = current_actor.id
    elif current_actor.role == ActorRole.DOCTOR:
        provider_id = current_actor.id

    filters = StatisticsFilters(
        provider_id=provider_id,
        seeker_id=seeker_id,
        from_date=from_date,
        to_date=to_date,
    )
    return await service.get_statistics(filters)


@router.post(
    "/bulk",
    response_model=BulkUpdateResult,
    status_code=status.HTTP_200_OK,
    summary="Bulk cancel or complete",
)
async def bulk_update(
    data: BulkUpdateRequest,
    current_actor: CurrentActor,
    service: Appointments,
) -> BulkUpdateResult:
    """Cancel or complete several appointments, reporting per-item outcomes."""
    return await service.bulk_update(current_actor, data)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    return await service.get_appointment(appointment_id)


@router.get(
    "/{appointment_id}/lineage",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Get reschedule history",
)
async def get_lineage(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> list[AppointmentResponse]:
    """Return the chain of bookings this appointment was rescheduled from, oldest first."""
    return await service.get_lineage(appointment_id)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment details",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Update reason, notes or type of a live appointment."""
    return await service.update_appointment(appointment_id, current_actor, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Cancel an appointment outside the cancellation lockout window."""
    return await service.cancel_appointment(appointment_id, current_actor, data)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentRescheduleResult,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentRescheduleResult:
    """Move an appointment; returns the superseded original and its replacement."""
    return await service.reschedule_appointment(appointment_id, current_actor, data)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    data: AppointmentComplete,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """Record clinical outcome. Assigned provider only."""
    return await service.complete_appointment(appointment_id, current_actor, data)


@router.post(
    "/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.confirm_appointment(appointment_id, current_actor)


@router.post(
    "/{appointment_id}/start",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Start appointment",
)
async def start_appointment(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.start_appointment(appointment_id, current_actor)


@router.post(
    "/{appointment_id}/missed",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark appointment as missed",
)
async def mark_missed(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    return await service.mark_missed(appointment_id, current_actor)
