"""Appointment service: the booking transaction coordinator.

Every write runs inside one :meth:`UnitOfWork.transaction` so that the
conflict check and the writes it authorizes commit together. Bookings for
the same provider are serialized by the provider lock row taken as the
first write of the transaction.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError

from careslot.core.exceptions import (
    AppException,
    BadRequestError,
    InvalidTransitionError,
    NotFoundError,
    SlotConflictError,
)
from careslot.core.policy import SchedulingPolicy, utcnow
from careslot.core.state_machine import (
    REPLACEMENT_STATUS,
    AppointmentAction,
    initial_status,
    transition,
)
from careslot.repositories.appointment_repository import AppointmentRepository, UnitOfWork
from careslot.schemas.appointments import (
    Actor,
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
    AppointmentUpdate,
    BulkFailure,
    BulkOperation,
    BulkUpdateRequest,
    BulkUpdateResult,
    StatisticsFilters,
)
from careslot.services.account_service import AccountResolver, require_account
from careslot.services.notification_service import AppointmentEvent, NotificationDispatcher

logger = structlog.get_logger(__name__)


def _is_party(actor: Actor, row: dict) -> bool:
    if actor.role == ActorRole.PATIENT:
        return actor.id is not None and actor.id == row["seeker_id"]
    if actor.role == ActorRole.DOCTOR:
        return actor.id is not None and actor.id == row["provider_id"]
    return False


def _to_response(row: dict) -> AppointmentResponse:
    return AppointmentResponse.model_validate(row)


class AppointmentService:
    """Service for booking and advancing appointments."""

    def __init__(
        self,
        uow: UnitOfWork,
        accounts: AccountResolver,
        dispatcher: NotificationDispatcher,
        policy: SchedulingPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize service with its collaborators."""
        self.uow = uow
        self.accounts = accounts
        self.dispatcher = dispatcher
        self.policy = policy or SchedulingPolicy.from_settings()
        self.clock = clock

    async def create_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new appointment.

        The conflict check and the insert run in one transaction behind the
        provider lock, so two overlapping requests cannot both succeed.

        Args:
            data: Appointment creation data

        Returns:
            Created appointment, or the stored one when ``idempotency_key``
            matches an earlier booking by the same seeker

        Raises:
            NotFoundError: If provider or seeker does not exist
            InvalidRoleError: If provider or seeker has the wrong role
            PastDateError: If the start is not in the future
            SlotConflictError: If the provider is already booked
            BadRequestError: If ``idempotency_key`` belongs to a different booking
        """
        self.policy.validate_duration(data.duration_minutes)
        now = self.clock()
        self.policy.ensure_future(data.start_at, now)
        self.policy.ensure_working_hours(data.start_at, data.duration_minutes)

        await require_account(self.accounts, data.provider_id, ActorRole.DOCTOR, "provider")
        await require_account(self.accounts, data.seeker_id, ActorRole.PATIENT, "patient")

        try:
            row, replayed = await self._book(data, now)
        except IntegrityError as e:
            # The key is unique per seeker while the lock is per provider, so
            # a concurrent booking elsewhere can claim the key first
            if not data.idempotency_key:
                raise
            logger.info(
                "appointment_idempotency_key_taken",
                seeker_id=str(data.seeker_id),
                provider_id=str(data.provider_id),
            )
            raise BadRequestError(
                "Idempotency key was already used for a different booking"
            ) from e

        appointment = _to_response(row)

        if replayed:
            logger.info("appointment_create_replayed", appointment_id=str(appointment.id))
            return appointment

        logger.info(
            "appointment_created",
            appointment_id=str(appointment.id),
            provider_id=str(appointment.provider_id),
            status=appointment.status.value,
        )
        self.dispatcher.dispatch(AppointmentEvent.CREATED, appointment)
        return appointment

    async def _book(self, data: AppointmentCreate, now: datetime) -> tuple[dict, bool]:
        """Run the locked check-and-insert. Returns the row and whether it was a replay."""
        replayed = False
        async with self.uow.transaction() as repo:
            await repo.lock_provider(data.provider_id, now)

            existing = None
            if data.idempotency_key:
                existing = await repo.get_by_idempotency_key(data.seeker_id, data.idempotency_key)

            if existing is not None:
                if (
                    existing["provider_id"] != data.provider_id
                    or existing["start_at"] != data.start_at
                    or existing["duration_minutes"] != data.duration_minutes
                ):
                    raise BadRequestError(
                        "Idempotency key was already used for a different booking"
                    )
                row = existing
                replayed = True
            else:
                conflicts = await repo.find_conflicts(
                    data.provider_id,
                    data.start_at,
                    data.duration_minutes,
                )
                if conflicts:
                    logger.info(
                        "appointment_slot_conflict",
                        provider_id=str(data.provider_id),
                        start_at=data.start_at.isoformat(),
                        conflicting_ids=[str(c["id"]) for c in conflicts],
                    )
                    raise SlotConflictError()

                row = await repo.insert(
                    {
                        "id": uuid4(),
                        "provider_id": data.provider_id,
                        "seeker_id": data.seeker_id,
                        "start_at": data.start_at,
                        "duration_minutes": data.duration_minutes,
                        "status": initial_status(data.is_emergency).value,
                        "appointment_type": data.appointment_type.value,
                        "reason": data.reason,
                        "notes": data.notes,
                        "is_emergency": data.is_emergency,
                        "idempotency_key": data.idempotency_key,
                        "created_at": now,
                        "updated_at": now,
                    }
                )

        return row, replayed

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundError: If appointment not found
        """
        async with self.uow.reader() as repo:
            row = await repo.get(appointment_id)

        if not row:
            raise NotFoundError("Appointment not found")

        return _to_response(row)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        async with self.uow.reader() as repo:
            total, rows = await repo.search(filters)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[_to_response(row) for row in rows],
        )

    async def update_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: AppointmentUpdate,
    ) -> AppointmentResponse:
        """
        Update non-status fields of a live appointment.

        Raises:
            NotFoundError: If appointment not found
            InvalidTransitionError: If the appointment is terminal or the
                caller may not edit it
        """
        update_values: dict[str, Any] = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                update_values[field] = value.value if hasattr(value, "value") else value

        async with self.uow.transaction() as repo:
            row = await self._load(repo, appointment_id)
            transition(
                row["status"],
                AppointmentAction.UPDATE,
                actor.role,
                is_party=_is_party(actor, row),
            )

            if not update_values:
                # No changes, return current state
                return _to_response(row)

            update_values["updated_at"] = self.clock()
            row = await self._write(repo, row, update_values)

        return _to_response(row)

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: AppointmentCancel,
    ) -> AppointmentResponse:
        """
        Cancel a scheduled or confirmed appointment.

        Raises:
            NotFoundError: If appointment not found
            InvalidTransitionError: If not cancellable from its status or by
                the caller
            LockoutWindowError: If inside the cancellation lockout window
        """

        def values(row: dict, now: datetime) -> dict[str, Any]:
            self.policy.ensure_cancellable(row["start_at"], now)
            return {
                "cancelled_by": actor.id,
                "cancelled_by_role": actor.role.value,
                "cancellation_reason": data.reason,
                "cancelled_at": now,
            }

        return await self._advance(
            appointment_id,
            actor,
            AppointmentAction.CANCEL,
            values,
            AppointmentEvent.CANCELLED,
        )

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: AppointmentReschedule,
    ) -> AppointmentRescheduleResult:
        """
        Move an appointment to a new start time.

        The original is marked ``rescheduled`` and a replacement is inserted
        with a back-reference to it. Both writes commit together or not at
        all; on any failure the original is left untouched.

        Raises:
            NotFoundError: If appointment not found
            InvalidTransitionError: If not reschedulable from its status or
                by the caller
            LockoutWindowError: If inside the reschedule lockout window
            PastDateError: If the new start is not in the future
            SlotConflictError: If the new interval is already booked
        """
        now = self.clock()

        async with self.uow.transaction() as repo:
            row = await self._load(repo, appointment_id)
            await repo.lock_provider(row["provider_id"], now)
            # Re-read behind the lock
            row = await self._load(repo, appointment_id)

            next_status = transition(
                row["status"],
                AppointmentAction.RESCHEDULE,
                actor.role,
                is_party=_is_party(actor, row),
            )
            self.policy.ensure_reschedulable(row["start_at"], now)
            self.policy.ensure_future(data.new_start_at, now)
            self.policy.ensure_working_hours(data.new_start_at, row["duration_minutes"])

            conflicts = await repo.find_conflicts(
                row["provider_id"],
                data.new_start_at,
                row["duration_minutes"],
                exclude_id=row["id"],
            )
            if conflicts:
                logger.info(
                    "appointment_reschedule_conflict",
                    appointment_id=str(appointment_id),
                    new_start_at=data.new_start_at.isoformat(),
                    conflicting_ids=[str(c["id"]) for c in conflicts],
                )
                raise SlotConflictError()

            original = await self._write(
                repo,
                row,
                {
                    "status": next_status.value,
                    "reschedule_reason": data.reason,
                    "updated_at": now,
                },
            )
            replacement = await repo.insert(
                {
                    "id": uuid4(),
                    "provider_id": row["provider_id"],
                    "seeker_id": row["seeker_id"],
                    "start_at": data.new_start_at,
                    "duration_minutes": row["duration_minutes"],
                    "status": REPLACEMENT_STATUS.value,
                    "appointment_type": row["appointment_type"],
                    "reason": row["reason"],
                    "notes": row["notes"],
                    "is_emergency": row["is_emergency"],
                    "rescheduled_from_id": row["id"],
                    "reschedule_reason": data.reason,
                    "created_at": now,
                    "updated_at": now,
                }
            )

        result = AppointmentRescheduleResult(
            original=_to_response(original),
            replacement=_to_response(replacement),
        )
        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            replacement_id=str(result.replacement.id),
        )
        self.dispatcher.dispatch(AppointmentEvent.RESCHEDULED, result.replacement)
        return result

    async def complete_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: AppointmentComplete,
    ) -> AppointmentResponse:
        """
        Record the outcome of a confirmed or in-progress appointment.

        Raises:
            NotFoundError: If appointment not found
            InvalidTransitionError: If not completable from its status or
                the caller is not the assigned provider
        """

        def values(row: dict, now: datetime) -> dict[str, Any]:
            return {
                "diagnosis": data.diagnosis,
                "prescription": data.prescription,
                "clinical_notes": data.clinical_notes,
                "follow_up_required": data.follow_up_required,
                "follow_up_date": data.follow_up_date,
                "completed_at": now,
            }

        return await self._advance(
            appointment_id,
            actor,
            AppointmentAction.COMPLETE,
            values,
            AppointmentEvent.COMPLETED,
        )

    async def confirm_appointment(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Confirm a scheduled appointment."""
        return await self._advance(
            appointment_id,
            actor,
            AppointmentAction.CONFIRM,
            lambda row, now: {},
            AppointmentEvent.CONFIRMED,
        )

    async def start_appointment(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Mark a confirmed appointment as in progress."""
        return await self._advance(
            appointment_id,
            actor,
            AppointmentAction.START,
            lambda row, now: {},
            AppointmentEvent.STARTED,
        )

    async def mark_missed(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Record a no-show. Only possible once the appointment has started."""

        def values(row: dict, now: datetime) -> dict[str, Any]:
            if now < row["start_at"]:
                raise InvalidTransitionError(
                    "Cannot mark an appointment missed before its start time"
                )
            return {}

        return await self._advance(
            appointment_id,
            actor,
            AppointmentAction.MARK_MISSED,
            values,
            AppointmentEvent.MISSED,
        )

    async def sweep_missed(self, limit: int = 500) -> list[AppointmentResponse]:
        """
        Record no-shows for appointments that ended more than the grace period ago.

        Returns:
            Appointments moved to ``missed`` by this run
        """
        cutoff = self.clock() - self.policy.missed_grace
        async with self.uow.reader() as repo:
            overdue = await repo.list_overdue(cutoff, limit)

        system = Actor(role=ActorRole.SYSTEM)
        marked: list[AppointmentResponse] = []
        for row in overdue:
            try:
                marked.append(await self.mark_missed(row["id"], system))
            except InvalidTransitionError as e:
                # Moved on since it was listed
                logger.info("missed_sweep_skipped", appointment_id=str(row["id"]), reason=e.message)

        logger.info("missed_sweep_completed", candidates=len(overdue), marked=len(marked))
        return marked

    async def bulk_update(self, actor: Actor, request: BulkUpdateRequest) -> BulkUpdateResult:
        """
        Cancel or complete several appointments.

        Each item runs in its own transaction; one failing item does not
        affect the others.
        """
        successful: list[AppointmentResponse] = []
        failed: list[BulkFailure] = []

        for item in request.items:
            try:
                if request.operation == BulkOperation.CANCEL:
                    appointment = await self.cancel_appointment(
                        item.id,
                        actor,
                        AppointmentCancel(reason=item.reason),
                    )
                else:
                    appointment = await self.complete_appointment(
                        item.id,
                        actor,
                        item.completion or AppointmentComplete(),
                    )
            except AppException as e:
                failed.append(BulkFailure(id=item.id, kind=e.kind, reason=e.message))
                continue
            successful.append(appointment)

        logger.info(
            "appointment_bulk_update",
            operation=request.operation.value,
            successful=len(successful),
            failed=len(failed),
        )
        return BulkUpdateResult(successful=successful, failed=failed)

    async def get_statistics(self, filters: StatisticsFilters) -> AppointmentStatistics:
        """Aggregate appointment counts by status and type."""
        async with self.uow.reader() as repo:
            groups = await repo.count_by_status_and_type(filters)

        by_status = {status.value: 0 for status in AppointmentStatus}
        by_type: dict[str, int] = {}
        emergency_count = 0
        total = 0

        for group in groups:
            count = group["count"]
            total += count
            by_status[group["status"]] = by_status.get(group["status"], 0) + count
            by_type[group["appointment_type"]] = by_type.get(group["appointment_type"], 0) + count
            if group["is_emergency"]:
                emergency_count += count

        # Rescheduled originals are superseded, not outcomes
        concluded = total - by_status[AppointmentStatus.RESCHEDULED.value]

        def rate(status: AppointmentStatus) -> float:
            return round(by_status[status.value] / concluded, 4) if concluded else 0.0

        return AppointmentStatistics(
            total=total,
            by_status=by_status,
            by_type=by_type,
            emergency_count=emergency_count,
            completion_rate=rate(AppointmentStatus.COMPLETED),
            cancellation_rate=rate(AppointmentStatus.CANCELLED),
        )

    async def get_lineage(self, appointment_id: UUID) -> list[AppointmentResponse]:
        """
        Walk the rescheduled-from chain back to the first booking.

        Returns:
            Appointments ordered oldest first, ending with ``appointment_id``
        """
        chain: list[dict] = []
        visited: set[UUID] = set()

        async with self.uow.reader() as repo:
            current: UUID | None = appointment_id
            while current is not None and current not in visited:
                visited.add(current)
                row = await repo.get(current)
                if row is None:
                    if not chain:
                        raise NotFoundError("Appointment not found")
                    break
                chain.append(row)
                current = row["rescheduled_from_id"]

        return [_to_response(row) for row in reversed(chain)]

    async def archive_account_appointments(self, account_id: UUID) -> int:
        """
        Flag every appointment of a removed account as archived.

        Status is left as is; archived rows stay queryable for audit.
        """
        now = self.clock()
        async with self.uow.transaction() as repo:
            count = await repo.archive_for_account(account_id, now)

        logger.info("appointments_archived", account_id=str(account_id), count=count)
        return count

    async def _advance(
        self,
        appointment_id: UUID,
        actor: Actor,
        action: AppointmentAction,
        build_values: Callable[[dict, datetime], dict[str, Any]],
        event: AppointmentEvent,
    ) -> AppointmentResponse:
        """Apply a single-record status transition."""
        now = self.clock()

        async with self.uow.transaction() as repo:
            row = await self._load(repo, appointment_id)
            next_status = transition(
                row["status"],
                action,
                actor.role,
                is_party=_is_party(actor, row),
            )
            values = build_values(row, now)
            values.update(status=next_status.value, updated_at=now)
            row = await self._write(repo, row, values)

        appointment = _to_response(row)
        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            action=action.value,
            status=appointment.status.value,
            actor_role=actor.role.value,
        )
        self.dispatcher.dispatch(event, appointment)
        return appointment

    @staticmethod
    async def _load(repo: AppointmentRepository, appointment_id: UUID) -> dict:
        row = await repo.get(appointment_id)
        if not row:
            raise NotFoundError("Appointment not found")
        return row

    @staticmethod
    async def _write(repo: AppointmentRepository, row: dict, values: dict[str, Any]) -> dict:
        """Update a row only if its status has not moved since it was read."""
        updated = await repo.update(row["id"], values, expected_status=row["status"])
        if updated is None:
            raise InvalidTransitionError("Appointment was modified concurrently; reload and retry")
        return updated

