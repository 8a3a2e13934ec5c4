"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careslot.core.policy import SchedulingPolicy
from careslot.database import AsyncSessionLocal
from careslot.repositories.appointment_repository import UnitOfWork
from careslot.schemas.appointments import Actor, ActorRole
from careslot.services.account_service import SqlAccountResolver
from careslot.services.appointment_service import AppointmentService
from careslot.services.availability_service import AvailabilityService
from careslot.services.notification_service import NotificationDispatcher

# Process-wide dispatcher so in-flight notifications can be drained on shutdown
notification_dispatcher = NotificationDispatcher()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the configured database."""
    return AsyncSessionLocal


def get_dispatcher() -> NotificationDispatcher:
    return notification_dispatcher


@lru_cache
def get_scheduling_policy() -> SchedulingPolicy:
    """Scheduling policy built once from settings."""
    return SchedulingPolicy.from_settings()


async def get_current_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """
    Build the calling principal from gateway headers.

    Authentication happens upstream; the gateway forwards the verified
    account id and role.

    Raises:
        HTTPException: If the headers are missing or malformed
    """
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )

    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid caller role",
        )

    actor_id = None
    if x_actor_id:
        try:
            actor_id = UUID(x_actor_id)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid caller ID format",
            )

    if actor_id is None and role in (ActorRole.PATIENT, ActorRole.DOCTOR):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )

    return Actor(id=actor_id, role=role)


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
Policy = Annotated[SchedulingPolicy, Depends(get_scheduling_policy)]


def get_appointment_service(
    session_factory: SessionFactory,
    dispatcher: Dispatcher,
    policy: Policy,
) -> AppointmentService:
    return AppointmentService(
        UnitOfWork(session_factory),
        SqlAccountResolver(session_factory),
        dispatcher,
        policy=policy,
    )


def get_availability_service(
    session_factory: SessionFactory,
    policy: Policy,
) -> AvailabilityService:
    return AvailabilityService(UnitOfWork(session_factory), policy=policy)


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
Availability = Annotated[AvailabilityService, Depends(get_availability_service)]
