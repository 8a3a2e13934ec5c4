"""Best-effort dispatch of appointment events to the notification subsystem."""

import asyncio
from enum import Enum
from typing import Protocol

import structlog

from careslot.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)


class AppointmentEvent(str, Enum):
    """Events emitted after a scheduling write commits."""

    CREATED = "appointment.created"
    CONFIRMED = "appointment.confirmed"
    STARTED = "appointment.started"
    RESCHEDULED = "appointment.rescheduled"
    CANCELLED = "appointment.cancelled"
    COMPLETED = "appointment.completed"
    MISSED = "appointment.missed"


class Notifier(Protocol):
    """Delivery channel owned by the notification subsystem."""

    async def notify(self, event: AppointmentEvent, appointment: AppointmentResponse) -> None: ...


class LoggingNotifier:
    """Notifier that only records events. Default when no channel is wired."""

    async def notify(self, event: AppointmentEvent, appointment: AppointmentResponse) -> None:
        logger.info(
            "appointment_event",
            notification_event=event.value,
            appointment_id=str(appointment.id),
            provider_id=str(appointment.provider_id),
            seeker_id=str(appointment.seeker_id),
            status=appointment.status.value,
        )


class NotificationDispatcher:
    """Fire-and-forget wrapper around a notifier.

    Delivery runs as a background task after the write has committed. A
    failing or slow notifier is logged and never reaches the caller.
    """

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or LoggingNotifier()
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, event: AppointmentEvent, appointment: AppointmentResponse) -> None:
        task = asyncio.create_task(self._deliver(event, appointment))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AppointmentEvent, appointment: AppointmentResponse) -> None:
        try:
            await self.notifier.notify(event, appointment)
        except Exception as e:
            logger.warning(
                "notification_dispatch_failed",
                notification_event=event.value,
                appointment_id=str(appointment.id),
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
