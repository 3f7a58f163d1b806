"""
Tests for admin login, token checks and reservation support endpoints.
"""

from datetime import timedelta

import pytest

from mokka.core.security import create_access_token


@pytest.mark.asyncio
async def test_login_success(client):
    response = await client.post("/api/v1/admin/login", json={"password": "test-admin-password"})
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"

    overview = await client.get(
        "/api/v1/admin/rsvps", headers={"Authorization": f"Bearer {data['access_token']}"}
    )
    assert overview.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    response = await client.post("/api/v1/admin/login", json={"password": "espresso"})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_admin_routes_require_token(client):
    assert (await client.get("/api/v1/admin/rsvps")).status_code == 401
    assert (await client.delete("/api/v1/admin/rsvps/1")).status_code == 401
    assert (await client.get("/api/v1/admin/events")).status_code == 401


@pytest.mark.asyncio
async def test_invalid_and_expired_tokens(client):
    invalid = await client.get("/api/v1/admin/rsvps", headers={"Authorization": "Bearer not-a-jwt"})
    assert invalid.status_code == 401

    expired = create_access_token({"sub": "admin"}, expires_delta=timedelta(minutes=-1))
    response = await client.get("/api/v1/admin/rsvps", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401

    wrong_subject = create_access_token({"sub": "guest"})
    response = await client.get("/api/v1/admin/rsvps", headers={"Authorization": f"Bearer {wrong_subject}"})
    assert response.status_code == 401


async def _book(client, session_id, email, seats=1):
    response = await client.post(
        "/api/v1/rsvp",
        json={"session_id": session_id, "name": "Guest", "email": email, "seats": seats},
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_overview_groups_by_event_and_session(client, admin_headers, workshop):
    await _book(client, workshop.sessions[0].id, "ada@example.com", seats=2)
    await _book(client, workshop.sessions[0].id, "bob@example.com", seats=3)

    response = await client.get("/api/v1/admin/rsvps", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["total_reservations"] == 2
    assert data["summary"]["total_seats"] == 5
    assert data["summary"]["pending"] == 2

    (event_entry,) = data["events"]
    assert event_entry["event"]["id"] == workshop.id
    (session_entry,) = event_entry["sessions"]
    assert session_entry["session"]["reserved"] == 5
    assert {r["email"] for r in session_entry["reservations"]} == {"ada@example.com", "bob@example.com"}


@pytest.mark.asyncio
async def test_admin_update_moves_and_confirms(client, admin_headers, workshop):
    first, second = workshop.sessions
    reservation = await _book(client, first.id, "ada@example.com", seats=2)

    response = await client.put(
        f"/api/v1/admin/rsvps/{reservation['id']}",
        json={
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "phone": "+43 660 1234",
            "seats": 3,
            "status": "CONFIRMED",
            "session_id": second.id,
        },
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CONFIRMED"
    assert data["session_id"] == second.id
    assert data["session"]["reserved"] == 3

    event = (await client.get(f"/api/v1/events/{workshop.id}")).json()
    assert [s["reserved"] for s in event["sessions"]] == [0, 3]


@pytest.mark.asyncio
async def test_admin_update_unknown_reservation(client, admin_headers, workshop):
    response = await client.put(
        "/api/v1/admin/rsvps/9999",
        json={
            "name": "Nobody",
            "email": "nobody@example.com",
            "seats": 1,
            "status": "PENDING",
            "session_id": workshop.sessions[0].id,
        },
        headers=admin_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_delete_reservation(client, admin_headers, workshop):
    reservation = await _book(client, workshop.sessions[0].id, "ada@example.com", seats=4)

    response = await client.delete(f"/api/v1/admin/rsvps/{reservation['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["id"] == reservation["id"]

    event = (await client.get(f"/api/v1/events/{workshop.id}")).json()
    assert event["sessions"][0]["reserved"] == 0

    missing = await client.delete(f"/api/v1/admin/rsvps/{reservation['id']}", headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_health_and_metrics(client):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["cache"] == {"status": "disabled"}

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "rsvp_booking_attempts_total" in metrics.text
