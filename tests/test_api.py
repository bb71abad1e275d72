from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.security.auth import create_access_token


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    # lifespan 을 실행하지 않음 (스케줄러, 기본 DB 미사용)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(role: str = "manager", actor: str = "manager-1") -> dict:
    return {"Authorization": f"Bearer {create_access_token(actor, role)}"}


def _slot_payload(today, capacity: int = 3) -> dict:
    return {
        "date": (today + timedelta(days=5)).isoformat(),
        "start_time": "14:00",
        "end_time": "15:00",
        "capacity": capacity,
        "description": "Afternoon tour",
    }


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_slot_routes_require_manager(client, today) -> None:
    assert client.post("/api/slots", json=_slot_payload(today)).status_code == 401
    assert client.post("/api/slots", json=_slot_payload(today), headers=_auth("staff", "staff-1")).status_code == 403

    response = client.post("/api/slots", json=_slot_payload(today), headers=_auth())
    assert response.status_code == 201
    body = response.json()
    assert body["start_time"] == "14:00:00"
    assert body["status"] == "available"
    assert body["created_by"] == "manager-1"


def test_engine_errors_are_mapped(client, today) -> None:
    client.post("/api/slots", json=_slot_payload(today), headers=_auth())

    overlapping = {**_slot_payload(today), "start_time": "14:30", "end_time": "15:30"}
    response = client.post("/api/slots", json=overlapping, headers=_auth())
    assert response.status_code == 409
    assert response.json()["kind"] == "ScheduleConflict"

    response = client.get("/api/slots/9999", headers=_auth())
    assert response.status_code == 404
    assert response.json()["kind"] == "SlotNotFound"


def test_public_booking_round_trip(client, today) -> None:
    slot_id = client.post("/api/slots", json=_slot_payload(today), headers=_auth()).json()["id"]

    available = client.get("/api/slots/public/available").json()
    assert [s["id"] for s in available] == [slot_id]

    response = client.post("/api/public/bookings", json={
        "slot_id": slot_id, "name": "Ana", "email": "ana@example.com", "group_size": 2,
    })
    assert response.status_code == 201
    token = response.json()["tracking_token"]
    assert response.json()["slot"]["booked_count"] == 2

    response = client.post("/api/public/bookings", json={
        "slot_id": slot_id, "name": "Bo", "email": "bo@example.com", "group_size": 2,
    })
    assert response.status_code == 409
    assert response.json() == {
        "kind": "CapacityExceeded",
        "detail": "Not enough capacity. Available: 1, Requested: 2",
        "available": 1,
        "requested": 2,
    }

    tracked = client.get("/api/public/bookings/track", params={"email": "ANA@example.com", "token": token})
    assert tracked.status_code == 200
    assert tracked.json()["status"] == "tentative"

    wrong = client.get("/api/public/bookings/track", params={"email": "bo@example.com", "token": token})
    assert wrong.status_code == 404
    assert wrong.json()["detail"] == "Booking not found. Please check your email and tracking token."

    cancelled = client.put("/api/public/bookings/cancel", json={
        "email": "ana@example.com", "token": token, "reason": "Plans changed",
    })
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    availability = client.get(f"/api/slots/{slot_id}/availability", params={"group_size": 3}).json()
    assert availability["available_capacity"] == 3
    assert availability["is_available"] is True


def test_staff_booking_lifecycle(client, db, visitor, today) -> None:
    slot_id = client.post("/api/slots", json=_slot_payload(today, capacity=4), headers=_auth()).json()["id"]
    staff = _auth("staff", "staff-7")

    response = client.post("/api/bookings", json={
        "slot_id": slot_id, "visitor_id": visitor.id, "group_size": 4,
    }, headers=staff)
    assert response.status_code == 201
    booking_id = response.json()["id"]
    assert response.json()["created_by"] == "staff-7"

    slot = client.get(f"/api/slots/{slot_id}", headers=staff).json()
    assert slot["status"] == "booked"

    assert client.post(f"/api/bookings/{booking_id}/confirm", headers=staff).json()["status"] == "confirmed"
    assert client.post(f"/api/bookings/{booking_id}/complete", headers=staff).json()["status"] == "completed"

    response = client.put(f"/api/bookings/{booking_id}", json={"notes": "late"}, headers=staff)
    assert response.status_code == 409
    assert response.json()["kind"] == "BookingImmutable"

    listed = client.get("/api/bookings", params={"slot_id": slot_id, "status": "completed"}, headers=staff).json()
    assert listed["total"] == 1
