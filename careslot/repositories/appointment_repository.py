"""Appointment persistence and the transactional boundary around it."""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careslot.config import settings
from careslot.core.exceptions import StorageUnavailableError
from careslot.core.intervals import end_of, overlaps
from careslot.core.state_machine import OCCUPYING_STATUSES
from careslot.models.appointments import appointments, provider_schedule_locks
from careslot.schemas.appointments import (
    AppointmentFilters,
    AppointmentStatus,
    StatisticsFilters,
)

logger = structlog.get_logger(__name__)

# Longest appointment the range query must look back for
MAX_APPOINTMENT_MINUTES = 24 * 60

_UPSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_OCCUPYING_VALUES = [status.value for status in OCCUPYING_STATUSES]
# An appointment that was started is never a no-show
_NO_SHOW_CANDIDATES = [AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value]


class AppointmentRepository:
    """Reads and writes appointment rows through one session.

    Every method assumes the caller owns the transaction; nothing here
    commits.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def lock_provider(self, provider_id: UUID, now: datetime) -> None:
        """
        Take the per-provider serialization point for this transaction.

        Upserts the provider's lock row. The row lock (PostgreSQL) or write
        lock (SQLite) acquired here is held until commit or rollback, so a
        concurrent booking for the same provider waits and then sees this
        transaction's writes.
        """
        dialect = self.session.get_bind().dialect.name
        upsert = _UPSERTS.get(dialect)
        if upsert is None:
            raise NotImplementedError(f"No provider lock strategy for dialect {dialect}")

        stmt = upsert(provider_schedule_locks).values(
            provider_id=provider_id,
            version=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[provider_schedule_locks.c.provider_id],
            set_={
                "version": provider_schedule_locks.c.version + 1,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)

    async def get(self, appointment_id: UUID) -> dict | None:
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self.session.execute(stmt)
        row = result.fetchone()
        return dict(row._mapping) if row else None

    async def get_by_idempotency_key(self, seeker_id: UUID, key: str) -> dict | None:
        stmt = select(appointments).where(
            and_(
                appointments.c.seeker_id == seeker_id,
                appointments.c.idempotency_key == key,
            )
        )
        result = await self.session.execute(stmt)
        row = result.fetchone()
        return dict(row._mapping) if row else None

    async def find_conflicts(
        self,
        provider_id: UUID,
        start_at: datetime,
        duration_minutes: int,
        exclude_id: UUID | None = None,
    ) -> list[dict]:
        """
        Find the provider's occupying appointments overlapping an interval.

        Args:
            provider_id: Provider whose schedule is checked
            start_at: Start of the requested interval
            duration_minutes: Length of the requested interval
            exclude_id: Appointment to ignore (the one being rescheduled)

        Returns:
            Conflicting appointment rows, ordered by start
        """
        window_end = start_at + timedelta(minutes=duration_minutes)
        candidates = await self.list_occupying_for_provider(
            provider_id,
            start_at,
            window_end,
        )
        return [
            row
            for row in candidates
            if row["id"] != exclude_id
            and overlaps(row["start_at"], row["duration_minutes"], start_at, duration_minutes)
        ]

    async def list_occupying_for_provider(
        self,
        provider_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[dict]:
        """
        List occupying appointments that may intersect ``[range_start, range_end)``.

        The end instant is not stored, so the query looks back by the longest
        possible duration and callers refine with the overlap checker.
        """
        lookback = range_start - timedelta(minutes=MAX_APPOINTMENT_MINUTES)
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.provider_id == provider_id,
                    appointments.c.status.in_(_OCCUPYING_VALUES),
                    appointments.c.start_at >= lookback,
                    appointments.c.start_at < range_end,
                )
            )
            .order_by(appointments.c.start_at.asc())
        )
        result = await self.session.execute(stmt)
        return [dict(row._mapping) for row in result.fetchall()]

    async def list_overdue(self, cutoff: datetime, limit: int) -> list[dict]:
        """Scheduled or confirmed appointments that ended before ``cutoff``, oldest first."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.status.in_(_NO_SHOW_CANDIDATES),
                    appointments.c.start_at < cutoff,
                )
            )
            .order_by(appointments.c.start_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        rows = [dict(row._mapping) for row in result.fetchall()]
        return [row for row in rows if end_of(row["start_at"], row["duration_minutes"]) <= cutoff]

    async def insert(self, values: dict[str, Any]) -> dict:
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.session.execute(stmt)
        return dict(result.fetchone()._mapping)

    async def update(
        self,
        appointment_id: UUID,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> dict | None:
        """
        Update one appointment, optionally only if its status is unchanged.

        Returns:
            The updated row, or None if no row matched
        """
        conditions = [appointments.c.id == appointment_id]
        if expected_status is not None:
            conditions.append(appointments.c.status == expected_status)

        stmt = (
            update(appointments)
            .where(and_(*conditions))
            .values(**values)
            .returning(appointments)
        )
        result = await self.session.execute(stmt)
        row = result.fetchone()
        return dict(row._mapping) if row else None

    async def archive_for_account(self, account_id: UUID, now: datetime) -> int:
        stmt = (
            update(appointments)
            .where(
                and_(
                    (appointments.c.provider_id == account_id)
                    | (appointments.c.seeker_id == account_id),
                    appointments.c.is_archived.is_(False),
                )
            )
            .values(is_archived=True, archived_at=now, updated_at=now)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def search(self, filters: AppointmentFilters) -> tuple[int, list[dict]]:
        """List appointments matching filters, newest start first."""
        conditions = []

        if not filters.include_archived:
            conditions.append(appointments.c.is_archived.is_(False))

        if filters.provider_id:
            conditions.append(appointments.c.provider_id == filters.provider_id)

        if filters.seeker_id:
            conditions.append(appointments.c.seeker_id == filters.seeker_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.appointment_type:
            conditions.append(appointments.c.appointment_type == filters.appointment_type.value)

        if filters.from_date:
            conditions.append(appointments.c.start_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.start_at <= filters.to_date)

        # Count total
        count_stmt = select(func.count()).select_from(appointments).where(*conditions)
        total_result = await self.session.execute(count_stmt)
        total = total_result.scalar() or 0

        # Get paginated results
        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.start_at.desc(), appointments.c.id)
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return total, [dict(row._mapping) for row in result.fetchall()]

    async def count_by_status_and_type(self, filters: StatisticsFilters) -> list[dict]:
        """Group counts by status, type and emergency flag."""
        conditions = [appointments.c.is_archived.is_(False)]

        if filters.provider_id:
            conditions.append(appointments.c.provider_id == filters.provider_id)

        if filters.seeker_id:
            conditions.append(appointments.c.seeker_id == filters.seeker_id)

        if filters.from_date:
            conditions.append(appointments.c.start_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.start_at <= filters.to_date)

        stmt = (
            select(
                appointments.c.status,
                appointments.c.appointment_type,
                appointments.c.is_emergency,
                func.count().label("count"),
            )
            .where(and_(*conditions))
            .group_by(
                appointments.c.status,
                appointments.c.appointment_type,
                appointments.c.is_emergency,
            )
        )
        result = await self.session.execute(stmt)
        return [dict(row._mapping) for row in result.fetchall()]


class UnitOfWork:
    """Hands out repositories bound to a transaction or a read-only session.

    ``transaction()`` is the only way to write: everything done through the
    yielded repository commits together when the block exits cleanly and is
    rolled back if it raises, times out or is cancelled.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = settings.transaction_timeout_seconds,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AppointmentRepository]:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with self.session_factory() as session:
                    async with session.begin():
                        yield AppointmentRepository(session)
        except TimeoutError as e:
            logger.warning("transaction_timed_out", timeout_seconds=self.timeout_seconds)
            raise StorageUnavailableError("Scheduling transaction timed out") from e
        except (OperationalError, InterfaceError) as e:
            logger.warning("transaction_storage_error", error=str(e))
            raise StorageUnavailableError() from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning("transaction_connection_lost", error=str(e))
                raise StorageUnavailableError() from e
            raise

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[AppointmentRepository]:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with self.session_factory() as session:
                    yield AppointmentRepository(session)
        except TimeoutError as e:
            logger.warning("read_timed_out", timeout_seconds=self.timeout_seconds)
            raise StorageUnavailableError("Schedule read timed out") from e
        except (OperationalError, InterfaceError) as e:
            logger.warning("read_storage_error", error=str(e))
            raise StorageUnavailableError() from e
