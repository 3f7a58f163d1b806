"""
Tests for emailed verification codes and the verified self-service flow.
"""

import asyncio
from datetime import timedelta
from itertools import count

import pytest
from sqlalchemy import update

from mokka.core.clock import utcnow
from mokka.core.config import get_settings
from mokka.core.exceptions import NotFoundError, VerificationFailedError
from mokka.db.session import atomic
from mokka.models.verification import VerificationAction, VerificationCode
from mokka.services import booking_service, verification_service

CANCEL = VerificationAction.CANCEL
MODIFY = VerificationAction.MODIFY


@pytest.fixture
def predictable_codes(monkeypatch):
    codes = (f"{n:06d}" for n in count(111111, 111111))
    monkeypatch.setattr(verification_service, "_generate_code", lambda: next(codes))


@pytest.mark.asyncio
async def test_request_code_requires_reservations(db):
    with pytest.raises(NotFoundError):
        await verification_service.request_code(db, "nobody@example.com", CANCEL)


@pytest.mark.asyncio
async def test_code_verifies_exactly_once(db, workshop):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    issued = await verification_service.request_code(db, "ADA@example.com", CANCEL)

    assert issued.email == "ada@example.com"
    assert len(issued.code) == 6 and issued.code.isdigit()
    assert timedelta(minutes=14) < issued.expires_at - utcnow() <= timedelta(minutes=15)

    assert await verification_service.verify_code(db, "ada@example.com", issued.code, CANCEL) == "ada@example.com"

    with pytest.raises(VerificationFailedError) as exc_info:
        await verification_service.verify_code(db, "ada@example.com", issued.code, CANCEL)
    assert exc_info.value.reason == "missing"


@pytest.mark.asyncio
async def test_expired_code_is_rejected(db, workshop):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    issued = await verification_service.request_code(db, "ada@example.com", MODIFY)

    async with atomic(db):
        await db.execute(
            update(VerificationCode)
            .where(VerificationCode.email == "ada@example.com")
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )

    with pytest.raises(VerificationFailedError) as exc_info:
        await verification_service.verify_code(db, "ada@example.com", issued.code, MODIFY)
    assert exc_info.value.reason == "expired"


@pytest.mark.asyncio
async def test_wrong_action_is_rejected_without_consuming(db, workshop):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    issued = await verification_service.request_code(db, "ada@example.com", CANCEL)

    with pytest.raises(VerificationFailedError) as exc_info:
        await verification_service.verify_code(db, "ada@example.com", issued.code, MODIFY)
    assert exc_info.value.reason == "wrong_action"

    assert await verification_service.verify_code(db, "ada@example.com", issued.code, CANCEL)


@pytest.mark.asyncio
async def test_new_request_replaces_old_code(db, workshop, predictable_codes):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    first = await verification_service.request_code(db, "ada@example.com", CANCEL)
    second = await verification_service.request_code(db, "ada@example.com", MODIFY)

    assert first.code != second.code
    with pytest.raises(VerificationFailedError) as exc_info:
        await verification_service.verify_code(db, "ada@example.com", first.code, CANCEL)
    assert exc_info.value.reason == "mismatch"

    assert await verification_service.verify_code(db, "ada@example.com", second.code, MODIFY)


@pytest.mark.asyncio
async def test_concurrent_verifications_consume_once(database, db, workshop):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    issued = await verification_service.request_code(db, "ada@example.com", CANCEL)

    async def attempt():
        async with database.session() as session:
            try:
                await verification_service.verify_code(session, "ada@example.com", issued.code, CANCEL)
                return True
            except VerificationFailedError:
                return False

    results = await asyncio.gather(*(attempt() for _ in range(3)))
    assert sorted(results) == [False, False, True]


# HTTP layer

async def _book(client, session_id, email, seats=1):
    response = await client.post(
        "/api/v1/rsvp",
        json={"session_id": session_id, "name": "Guest", "email": email, "seats": seats},
    )
    assert response.status_code == 201
    return response.json()


async def _request_code(client, notifier, email, action):
    response = await client.post("/api/v1/rsvp/verify", json={"email": email, "action": action})
    assert response.status_code == 200
    assert response.json()["verification_code"] is None
    return notifier.outbox[-1]["code"]


@pytest.mark.asyncio
async def test_verify_endpoint_unknown_email(client):
    response = await client.post(
        "/api/v1/rsvp/verify", json={"email": "nobody@example.com", "action": "cancel"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_endpoint_can_echo_code(client, workshop, monkeypatch):
    monkeypatch.setattr(get_settings(), "EXPOSE_VERIFICATION_CODES", True)
    await _book(client, workshop.sessions[0].id, "ada@example.com")

    response = await client.post(
        "/api/v1/rsvp/verify", json={"email": "ada@example.com", "action": "modify"}
    )
    assert response.status_code == 200
    assert len(response.json()["verification_code"]) == 6


@pytest.mark.asyncio
async def test_manage_cancel_flow(client, notifier, workshop):
    session_id = workshop.sessions[0].id
    await _book(client, session_id, "ada@example.com", seats=3)
    code = await _request_code(client, notifier, "ada@example.com", "cancel")

    payload = {"email": "ada@example.com", "code": code, "action": "cancel"}
    response = await client.post("/api/v1/rsvp/manage", json=payload)
    assert response.status_code == 200
    assert response.json()["cancelled_count"] == 1

    reused = await client.post("/api/v1/rsvp/manage", json=payload)
    assert reused.status_code == 400

    listing = (await client.get("/api/v1/events")).json()
    assert listing["events"][0]["sessions"][0]["reserved"] == 0


@pytest.mark.asyncio
async def test_manage_failed_change_keeps_code(client, notifier, workshop):
    session_id = workshop.sessions[0].id
    reservation = await _book(client, session_id, "ada@example.com", seats=2)
    await _book(client, session_id, "bob@example.com", seats=9)
    code = await _request_code(client, notifier, "ada@example.com", "modify")

    payload = {"email": "ada@example.com", "code": code, "action": "modify", "rsvp_id": reservation["id"]}
    too_many = await client.post("/api/v1/rsvp/manage", json={**payload, "new_seats": 5})
    assert too_many.status_code == 409

    response = await client.post("/api/v1/rsvp/manage", json={**payload, "new_seats": 3})
    assert response.status_code == 200
    assert response.json()["reservation"]["seats"] == 3


@pytest.mark.asyncio
async def test_manage_rejects_foreign_reservation(client, notifier, workshop):
    session_id = workshop.sessions[0].id
    await _book(client, session_id, "ada@example.com")
    foreign = await _book(client, session_id, "bob@example.com")
    code = await _request_code(client, notifier, "ada@example.com", "modify")

    response = await client.post(
        "/api/v1/rsvp/manage",
        json={
            "email": "ada@example.com",
            "code": code,
            "action": "modify",
            "rsvp_id": foreign["id"],
            "new_seats": 2,
        },
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manage_wrong_code(client, notifier, workshop, predictable_codes):
    await _book(client, workshop.sessions[0].id, "ada@example.com")
    await _request_code(client, notifier, "ada@example.com", "cancel")

    response = await client.post(
        "/api/v1/rsvp/manage",
        json={"email": "ada@example.com", "code": "999999", "action": "cancel"},
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "mismatch"


@pytest.mark.asyncio
async def test_non_ascii_digits_are_a_mismatch(db, workshop):
    await booking_service.book(db, workshop.sessions[0].id, "Ada", "ada@example.com", 1)
    await verification_service.request_code(db, "ada@example.com", CANCEL)

    with pytest.raises(VerificationFailedError) as exc_info:
        await verification_service.verify_code(db, "ada@example.com", "١٢٣٤٥٦", CANCEL)
    assert exc_info.value.reason == "mismatch"


@pytest.mark.asyncio
async def test_manage_rejects_non_ascii_digits(client, notifier, workshop):
    await _book(client, workshop.sessions[0].id, "ada@example.com")
    await _request_code(client, notifier, "ada@example.com", "cancel")

    response = await client.post(
        "/api/v1/rsvp/manage",
        json={"email": "ada@example.com", "code": "١٢٣٤٥٦", "action": "cancel"},
    )
    assert response.status_code == 422
