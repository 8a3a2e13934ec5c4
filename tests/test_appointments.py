"""Tests for appointment and availability endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from careslot.repositories.appointment_repository import AppointmentRepository


def actor_headers(actor_id: UUID | None, role: str) -> dict[str, str]:
    """Headers the upstream gateway sets for an authenticated caller."""
    headers = {"X-Actor-Role": role}
    if actor_id is not None:
        headers["X-Actor-Id"] = str(actor_id)
    return headers


def future_slot(days: int = 7, hour: int = 10, minute: int = 0) -> datetime:
    """A start time comfortably outside every lockout window."""
    base = datetime.now(UTC) + timedelta(days=days)
    return base.replace(hour=hour, minute=minute, second=0, microsecond=0)


def appointment_payload(parties: dict, start_at: datetime, seeker: str = "patient_a") -> dict:
    return {
        "provider_id": str(parties["doctor"]),
        "seeker_id": str(parties[seeker]),
        "start_at": start_at.isoformat(),
        "duration_minutes": 30,
        "appointment_type": "consultation",
        "reason": "Regular checkup",
    }


async def create(client: AsyncClient, parties: dict, start_at: datetime, seeker: str = "patient_a"):
    return await client.post(
        "/api/v1/appointments/",
        json=appointment_payload(parties, start_at, seeker),
        headers=actor_headers(parties[seeker], "patient"),
    )


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_create_appointment(client: AsyncClient, parties: dict) -> None:
    """Test creating an appointment."""
    start_at = future_slot()
    response = await create(client, parties, start_at)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "scheduled"
    assert data["seeker_id"] == str(parties["patient_a"])
    assert datetime.fromisoformat(data["start_at"]) == start_at
    assert datetime.fromisoformat(data["end_at"]) == start_at + timedelta(minutes=30)
    assert "id" in data
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_create_requires_caller_identity(client: AsyncClient, parties: dict) -> None:
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_payload(parties, future_slot()),
    )
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_payload(parties, future_slot()),
        headers=actor_headers(None, "patient"),
    )
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_payload(parties, future_slot()),
        headers=actor_headers(parties["patient_a"], "janitor"),
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_patient_cannot_book_for_someone_else(client: AsyncClient, parties: dict) -> None:
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_payload(parties, future_slot(), seeker="patient_b"),
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert response.status_code == 403
    assert response.json()["kind"] == "invalid_role"


@pytest.mark.asyncio
async def test_overlapping_booking_conflicts(client: AsyncClient, parties: dict) -> None:
    start_at = future_slot()
    assert (await create(client, parties, start_at)).status_code == 201

    response = await create(client, parties, start_at + timedelta(minutes=15), seeker="patient_b")

    assert response.status_code == 409
    data = response.json()
    assert data["kind"] == "slot_conflict"
    assert data["message"] == "This time is no longer available"

    back_to_back = await create(
        client, parties, start_at + timedelta(minutes=30), seeker="patient_b"
    )
    assert back_to_back.status_code == 201


@pytest.mark.asyncio
async def test_past_date_rejected(client: AsyncClient, parties: dict) -> None:
    response = await create(client, parties, datetime.now(UTC) - timedelta(hours=1))

    assert response.status_code == 422
    assert response.json()["kind"] == "past_date"


@pytest.mark.asyncio
async def test_get_appointment(client: AsyncClient, parties: dict) -> None:
    """Test getting a specific appointment."""
    created = (await create(client, parties, future_slot())).json()
    headers = actor_headers(parties["patient_a"], "patient")

    first = await client.get(f"/api/v1/appointments/{created['id']}", headers=headers)
    second = await client.get(f"/api/v1/appointments/{created['id']}", headers=headers)

    assert first.status_code == 200
    assert first.json() == second.json() == created


@pytest.mark.asyncio
async def test_get_nonexistent_appointment(client: AsyncClient, parties: dict) -> None:
    """Test getting a non-existent appointment."""
    response = await client.get(
        f"/api/v1/appointments/{uuid4()}",
        headers=actor_headers(parties["admin"], "admin"),
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_list_appointments_scoped_to_patient(client: AsyncClient, parties: dict) -> None:
    """Test listing appointments."""
    await create(client, parties, future_slot(hour=9))
    await create(client, parties, future_slot(hour=11), seeker="patient_b")

    mine = await client.get(
        "/api/v1/appointments/",
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert mine.status_code == 200
    assert mine.json()["total"] == 1

    schedule = await client.get(
        "/api/v1/appointments/",
        headers=actor_headers(parties["doctor"], "doctor"),
    )
    assert schedule.json()["total"] == 2


@pytest.mark.asyncio
async def test_update_appointment(client: AsyncClient, parties: dict) -> None:
    """Test updating an appointment."""
    created = (await create(client, parties, future_slot())).json()

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}",
        json={"notes": "Allergic to penicillin"},
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert response.status_code == 200
    assert response.json()["notes"] == "Allergic to penicillin"


@pytest.mark.asyncio
async def test_cancel_appointment(client: AsyncClient, parties: dict) -> None:
    """Test cancelling an appointment."""
    created = (await create(client, parties, future_slot())).json()
    headers = actor_headers(parties["patient_a"], "patient")

    response = await client.post(
        f"/api/v1/appointments/{created['id']}/cancel",
        json={"reason": "Schedule conflict"},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Schedule conflict"

    again = await client.post(
        f"/api/v1/appointments/{created['id']}/cancel",
        json={},
        headers=headers,
    )
    assert again.status_code == 409
    assert again.json()["kind"] == "invalid_transition"


@pytest.mark.asyncio
async def test_cancel_inside_lockout(client: AsyncClient, parties: dict) -> None:
    created = (await create(client, parties, datetime.now(UTC) + timedelta(minutes=90))).json()

    response = await client.post(
        f"/api/v1/appointments/{created['id']}/cancel",
        json={},
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert response.status_code == 409
    assert response.json()["kind"] == "lockout_window"


@pytest.mark.asyncio
async def test_reschedule_appointment(client: AsyncClient, parties: dict) -> None:
    created = (await create(client, parties, future_slot())).json()
    new_start = future_slot(days=8, hour=9)

    response = await client.post(
        f"/api/v1/appointments/{created['id']}/reschedule",
        json={"new_start_at": new_start.isoformat(), "reason": "Travel"},
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["original"]["status"] == "rescheduled"
    assert data["replacement"]["status"] == "scheduled"
    assert data["replacement"]["rescheduled_from_id"] == created["id"]
    assert datetime.fromisoformat(data["replacement"]["start_at"]) == new_start

    lineage = await client.get(
        f"/api/v1/appointments/{data['replacement']['id']}/lineage",
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert [a["id"] for a in lineage.json()] == [created["id"], data["replacement"]["id"]]


@pytest.mark.asyncio
async def test_doctor_visit_flow(client: AsyncClient, parties: dict) -> None:
    created = (await create(client, parties, future_slot())).json()
    doctor = actor_headers(parties["doctor"], "doctor")
    base = f"/api/v1/appointments/{created['id']}"

    assert (await client.post(f"{base}/confirm", headers=doctor)).json()["status"] == "confirmed"
    assert (await client.post(f"{base}/start", headers=doctor)).json()["status"] == "in_progress"

    response = await client.post(
        f"{base}/complete",
        json={"diagnosis": "Common cold", "prescription": "Rest"},
        headers=doctor,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["diagnosis"] == "Common cold"


@pytest.mark.asyncio
async def test_patient_cannot_complete(client: AsyncClient, parties: dict) -> None:
    created = (await create(client, parties, future_slot())).json()

    response = await client.post(
        f"/api/v1/appointments/{created['id']}/complete",
        json={},
        headers=actor_headers(parties["patient_a"], "patient"),
    )
    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_transition"


@pytest.mark.asyncio
async def test_statistics(client: AsyncClient, parties: dict) -> None:
    await create(client, parties, future_slot(hour=9))
    await create(client, parties, future_slot(hour=11), seeker="patient_b")

    response = await client.get(
        "/api/v1/appointments/statistics",
        params={"provider_id": str(parties["doctor"])},
        headers=actor_headers(parties["admin"], "admin"),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["by_status"]["scheduled"] == 2


@pytest.mark.asyncio
async def test_bulk_cancel(client: AsyncClient, parties: dict) -> None:
    first = (await create(client, parties, future_slot(hour=9))).json()
    second = (await create(client, parties, future_slot(hour=11))).json()

    response = await client.post(
        "/api/v1/appointments/bulk",
        json={
            "operation": "cancel",
            "items": [{"id": first["id"]}, {"id": second["id"]}, {"id": str(uuid4())}],
        },
        headers=actor_headers(parties["admin"], "admin"),
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["successful"]) == 2
    assert [f["kind"] for f in data["failed"]] == ["not_found"]


@pytest.mark.asyncio
async def test_provider_availability(client: AsyncClient, parties: dict) -> None:
    start_at = future_slot()
    await create(client, parties, start_at)
    day = start_at.replace(hour=0)

    response = await client.get(
        f"/api/v1/providers/{parties['doctor']}/availability",
        params={
            "from_date": day.isoformat(),
            "to_date": (day + timedelta(days=1)).isoformat(),
        },
        headers=actor_headers(parties["patient_b"], "patient"),
    )
    assert response.status_code == 200
    busy = response.json()["busy"]
    assert len(busy) == 1
    assert datetime.fromisoformat(busy[0]["start_at"]) == start_at


@pytest.mark.asyncio
async def test_availability_rejects_inverted_range(client: AsyncClient, parties: dict) -> None:
    day = future_slot().replace(hour=0)

    response = await client.get(
        f"/api/v1/providers/{parties['doctor']}/availability",
        params={
            "from_date": day.isoformat(),
            "to_date": (day - timedelta(days=1)).isoformat(),
        },
        headers=actor_headers(parties["patient_b"], "patient"),
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "bad_request"


@pytest.mark.asyncio
async def test_slot_check(client: AsyncClient, parties: dict) -> None:
    start_at = future_slot()
    await create(client, parties, start_at)
    headers = actor_headers(parties["patient_b"], "patient")
    url = f"/api/v1/providers/{parties['doctor']}/availability/check"

    taken = await client.get(url, params={"start_at": start_at.isoformat()}, headers=headers)
    assert taken.json()["available"] is False

    free = await client.get(
        url,
        params={"start_at": (start_at + timedelta(minutes=30)).isoformat()},
        headers=headers,
    )
    assert free.json()["available"] is True


@pytest.mark.asyncio
async def test_storage_outage_returns_503(client: AsyncClient, parties: dict, monkeypatch) -> None:
    """Transient storage failures tell the caller to retry."""

    async def lost_connection(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    monkeypatch.setattr(AppointmentRepository, "find_conflicts", lost_connection)

    response = await create(client, parties, future_slot())

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    data = response.json()
    assert data["kind"] == "storage_unavailable"
    assert data["error"] == "StorageUnavailableError"
