"""
Tests for the booking engine: validation, double-booking rules, reservation codes.
"""

import re
from datetime import timedelta

import pytest
from sqlalchemy import delete

from mokka.core.exceptions import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    ReservationCodeExhaustedError,
)
from mokka.models.event import EventSession
from mokka.models.reservation import ReservationStatus
from mokka.services import booking_service, capacity, reservation_service


@pytest.mark.asyncio
async def test_book_creates_pending_reservation(db, workshop, notifier, seat_counts):
    session_id = workshop.sessions[0].id

    reservation = await booking_service.book(
        db, session_id, "Ada", "  Ada@Example.com ", 2, phone="+43 1 234", notifier=notifier
    )

    assert reservation.status == ReservationStatus.PENDING.value
    assert reservation.email == "ada@example.com"
    assert reservation.seats == 2
    assert re.fullmatch(r"[A-Z0-9]{8}", reservation.reservation_code)
    assert reservation.session.reserved == 2
    assert await seat_counts(session_id) == (2, 2)

    assert notifier.outbox[-1]["to"] == "ada@example.com"
    assert notifier.outbox[-1]["reservation_code"] == reservation.reservation_code


@pytest.mark.asyncio
async def test_book_unknown_session(db):
    with pytest.raises(NotFoundError):
        await booking_service.book(db, 9999, "Ada", "ada@example.com", 1)


@pytest.mark.asyncio
async def test_book_zero_seats_is_invalid(db, workshop):
    with pytest.raises(InvalidRequestError):
        await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 0)


@pytest.mark.asyncio
async def test_book_more_than_capacity_is_invalid(db, workshop, seat_counts):
    """More seats than the session can ever hold is a static error, not a conflict."""
    session_id = workshop.sessions[0].id
    with pytest.raises(InvalidRequestError):
        await booking_service.book(db, session_id, "Ada", "ada@example.com", 13)
    assert await seat_counts(session_id) == (0, 0)


@pytest.mark.asyncio
async def test_book_insufficient_seats(db, workshop, seat_counts):
    session_id = workshop.sessions[0].id
    await booking_service.book(db, session_id, "Ada", "ada@example.com", 10)

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book(db, session_id, "Bob", "bob@example.com", 3)

    assert exc_info.value.reason == "insufficient_seats"
    assert await seat_counts(session_id) == (10, 10)


@pytest.mark.asyncio
async def test_duplicate_booking_same_session(db, workshop):
    session_id = workshop.sessions[0].id
    await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book(db, session_id, "Ada", "ADA@example.com", 1)
    assert exc_info.value.reason == "duplicate_session"


@pytest.mark.asyncio
async def test_second_upcoming_session_of_same_event_conflicts(db, workshop, seat_counts):
    first_id, second_id = (s.id for s in workshop.sessions)
    await booking_service.book(db, first_id, "Ada", "ada@example.com", 1)

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book(db, second_id, "Ada", "ada@example.com", 1)

    assert exc_info.value.reason == "duplicate_event"
    assert await seat_counts(second_id) == (0, 0)


@pytest.mark.asyncio
async def test_past_session_of_same_event_does_not_block(db, make_event):
    event = await make_event(capacities=(5, 5), starts_in=[timedelta(days=-7), timedelta(days=7)])
    past, upcoming = event.sessions

    await booking_service.book(db, past.id, "Ada", "ada@example.com", 1)
    reservation = await booking_service.book(db, upcoming.id, "Ada", "ada@example.com", 1)

    assert reservation.session_id == upcoming.id


@pytest.mark.asyncio
async def test_other_event_does_not_block(db, workshop, make_event):
    tasting = await make_event(title="Coffee Tasting", capacities=(8,))

    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    reservation = await booking_service.book(db, tasting.sessions[0].id, "Ada", "ada@example.com", 1)

    assert reservation.session.event_id == tasting.id


@pytest.mark.asyncio
async def test_cancelled_reservation_does_not_block_rebooking(db, workshop):
    session_id = workshop.sessions[0].id
    await booking_service.book(db, session_id, "Ada", "ada@example.com", 2)
    await reservation_service.cancel_all(db, "ada@example.com")

    reservation = await booking_service.book(db, session_id, "Ada", "ada@example.com", 3)
    assert reservation.seats == 3


@pytest.mark.asyncio
async def test_reservation_codes_are_unique(db, make_event):
    event = await make_event(capacities=(50,))
    codes = set()
    for i in range(20):
        reservation = await booking_service.book(db, event.sessions[0].id, f"Guest {i}", f"g{i}@example.com", 1)
        codes.add(reservation.reservation_code)
    assert len(codes) == 20


@pytest.mark.asyncio
async def test_code_exhaustion_rolls_back_booking(db, workshop, seat_counts, monkeypatch):
    """When every candidate code is taken the booking fails and no seats are held."""
    monkeypatch.setattr(booking_service, "_random_code", lambda length: "MOKKA123")
    session_id = workshop.sessions[0].id

    await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)
    with pytest.raises(ReservationCodeExhaustedError):
        await booking_service.book(db, session_id, "Bob", "bob@example.com", 4)

    assert await seat_counts(session_id) == (1, 1)


@pytest.mark.asyncio
async def test_code_collision_retries(db, workshop, monkeypatch):
    candidates = iter(["MOKKA123", "MOKKA123", "MOKKA456"])
    monkeypatch.setattr(booking_service, "_random_code", lambda length: next(candidates))
    session_id = workshop.sessions[0].id

    await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)
    reservation = await booking_service.book(db, session_id, "Bob", "bob@example.com", 1)

    assert reservation.reservation_code == "MOKKA456"


@pytest.mark.asyncio
async def test_code_taken_between_check_and_insert_retries(db, workshop, seat_counts, monkeypatch):
    session_id = workshop.sessions[0].id
    first = await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)

    # The first candidate passed its lookup but another booking claimed it since
    codes = iter([first.reservation_code, "MOKKA456"])

    async def _generate(db):
        return next(codes)

    monkeypatch.setattr(booking_service, "generate_reservation_code", _generate)

    reservation = await booking_service.book(db, session_id, "Bob", "bob@example.com", 1)

    assert reservation.reservation_code == "MOKKA456"
    assert await seat_counts(session_id) == (2, 2)


@pytest.mark.asyncio
async def test_unique_index_reports_duplicate_session(db, workshop, seat_counts, monkeypatch):
    """A same-session duplicate that slips past the lookup is caught by the index."""
    session_id = workshop.sessions[0].id
    await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)

    async def _no_lookup(db, email, session):
        return None

    monkeypatch.setattr(booking_service, "_ensure_no_conflicting_booking", _no_lookup)

    with pytest.raises(ConflictError) as exc_info:
        await booking_service.book(db, session_id, "Ada", "ada@example.com", 2)

    assert exc_info.value.reason == "duplicate_session"
    assert await seat_counts(session_id) == (1, 1)


@pytest.mark.asyncio
async def test_session_removed_during_booking_is_not_found(db, workshop, seat_counts, monkeypatch):
    session_id = workshop.sessions[0].id

    async def _removed_then_rejected(db, target_id, seats):
        await db.execute(delete(EventSession).where(EventSession.id == target_id))
        return False

    monkeypatch.setattr(capacity, "try_reserve", _removed_then_rejected)

    with pytest.raises(NotFoundError):
        await booking_service.book(db, session_id, "Ada", "ada@example.com", 1)

    assert await capacity.load_session(db, session_id) is not None
    assert await seat_counts(session_id) == (0, 0)


# HTTP layer

@pytest.mark.asyncio
async def test_book_endpoint(client, workshop):
    session_id = workshop.sessions[0].id
    response = await client.post(
        "/api/v1/rsvp",
        json={"session_id": session_id, "name": "Ada", "email": "ada@example.com", "seats": 2},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["session_id"] == session_id
    assert data["seats"] == 2
    assert data["status"] == "PENDING"
    assert data["session"]["reserved"] == 2
    assert data["session"]["available"] == 10
    assert len(data["reservation_code"]) == 8


@pytest.mark.asyncio
async def test_book_endpoint_error_mapping(client, workshop):
    session_id = workshop.sessions[0].id
    payload = {"session_id": session_id, "name": "Ada", "email": "ada@example.com", "seats": 1}

    missing = await client.post("/api/v1/rsvp", json={**payload, "session_id": 9999})
    assert missing.status_code == 404

    too_many = await client.post("/api/v1/rsvp", json={**payload, "seats": 40})
    assert too_many.status_code == 400

    zero = await client.post("/api/v1/rsvp", json={**payload, "seats": 0})
    assert zero.status_code == 422

    bad_email = await client.post("/api/v1/rsvp", json={**payload, "email": "not-an-email"})
    assert bad_email.status_code == 422

    first = await client.post("/api/v1/rsvp", json=payload)
    assert first.status_code == 201
    duplicate = await client.post("/api/v1/rsvp", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["reason"] == "duplicate_session"


@pytest.mark.asyncio
async def test_book_endpoint_code_exhaustion_is_internal_error(client, workshop, monkeypatch):
    monkeypatch.setattr(booking_service, "_random_code", lambda length: "MOKKA123")
    session_id = workshop.sessions[0].id

    await client.post(
        "/api/v1/rsvp",
        json={"session_id": session_id, "name": "Ada", "email": "ada@example.com", "seats": 1},
    )
    response = await client.post(
        "/api/v1/rsvp",
        json={"session_id": session_id, "name": "Bob", "email": "bob@example.com", "seats": 1},
    )

    assert response.status_code == 500
    assert "MOKKA123" not in response.text
