import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import MetaData, insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Load environment variables from .env file
load_dotenv()

from careslot.core.policy import SchedulingPolicy
from careslot.database import build_engine
from careslot.dependencies import get_scheduling_policy, get_session_factory
from careslot.main import app
from careslot.models.accounts import accounts
from careslot.models.accounts import metadata as accounts_metadata
from careslot.models.appointments import metadata as appointments_metadata
from careslot.repositories.appointment_repository import UnitOfWork
from careslot.schemas.appointments import AppointmentResponse
from careslot.services.account_service import SqlAccountResolver
from careslot.services.appointment_service import AppointmentService
from careslot.services.availability_service import AvailabilityService
from careslot.services.notification_service import AppointmentEvent, NotificationDispatcher

# Combine all metadata
metadata = MetaData()
for table in accounts_metadata.tables.values():
    table.to_metadata(metadata)
for table in appointments_metadata.tables.values():
    table.to_metadata(metadata)

# Set TEST_DATABASE_URL to run against a dedicated Postgres database;
# otherwise each test gets its own SQLite file
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

# Service tests run against a frozen "now" well before the booked days
FROZEN_NOW = datetime(2025, 2, 28, 8, 0, tzinfo=UTC)


class FrozenClock:
    """Controllable replacement for the wall clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[tuple[AppointmentEvent, AppointmentResponse]] = []

    async def notify(self, event: AppointmentEvent, appointment: AppointmentResponse) -> None:
        self.events.append((event, appointment))


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh file-backed database for one test."""
    engine = build_engine(TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'careslot_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create test session factory."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWork:
    return UnitOfWork(session_factory, timeout_seconds=10)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def policy() -> SchedulingPolicy:
    return SchedulingPolicy()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def dispatcher(notifier: RecordingNotifier) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher(notifier)
    yield dispatcher
    await dispatcher.drain()


@pytest_asyncio.fixture
async def parties(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    """Insert the accounts used across tests."""
    ids = {
        "doctor": uuid4(),
        "other_doctor": uuid4(),
        "inactive_doctor": uuid4(),
        "patient_a": uuid4(),
        "patient_b": uuid4(),
        "admin": uuid4(),
    }
    rows = [
        {"id": ids["doctor"], "role": "doctor", "full_name": "Dr. D", "is_active": True},
        {"id": ids["other_doctor"], "role": "doctor", "full_name": "Dr. E", "is_active": True},
        {"id": ids["inactive_doctor"], "role": "doctor", "full_name": "Dr. F", "is_active": False},
        {"id": ids["patient_a"], "role": "patient", "full_name": "Patient A", "is_active": True},
        {"id": ids["patient_b"], "role": "patient", "full_name": "Patient B", "is_active": True},
        {"id": ids["admin"], "role": "admin", "full_name": "Admin", "is_active": True},
    ]

    async with session_factory() as session:
        await session.execute(insert(accounts), rows)
        await session.commit()

    return ids


@pytest.fixture
def service(
    uow: UnitOfWork,
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    policy: SchedulingPolicy,
    clock: FrozenClock,
) -> AppointmentService:
    return AppointmentService(
        uow,
        SqlAccountResolver(session_factory),
        dispatcher,
        policy=policy,
        clock=clock,
    )


@pytest.fixture
def availability(
    uow: UnitOfWork,
    policy: SchedulingPolicy,
    clock: FrozenClock,
) -> AvailabilityService:
    return AvailabilityService(uow, policy=policy, clock=clock)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_scheduling_policy] = lambda: SchedulingPolicy()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

