"""
Modification and cancellation engine.

All operations assume the caller already proved ownership (reservation code,
verified email code, or admin token) and run as one transaction each:

- the reservation row is re-read under FOR UPDATE so two changes to the same
  reservation serialize instead of both computing a delta from stale seats
- the sessions involved are then locked in ascending id order, so moves in
  opposite directions and batch cancellations cannot deadlock each other
- capacity increases go through capacity.try_reserve (conditional UPDATE,
  409 when the seats are gone); decreases and credit-backs go through
  capacity.adjust, where leaving [0, capacity] aborts the transaction

Seats count against a session only while the reservation is not CANCELLED,
so every change is expressed as a move of "active seats" from the old
(session, seats, status) to the new one.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from mokka.core.logging import get_logger
from mokka.core.metrics import record_reservation_change, record_seats_released
from mokka.db.session import atomic
from mokka.models.reservation import Reservation, ReservationStatus
from mokka.services import capacity
from mokka.services.booking_service import find_active_for_session, normalize_email

logger = get_logger(__name__)

CANCELLED = ReservationStatus.CANCELLED.value


@dataclass
class ReservationChanges:
    """Fields an admin may change; None means keep the current value."""

    seats: Optional[int] = None
    session_id: Optional[int] = None
    status: Optional[ReservationStatus] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


async def get_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    reservation = await db.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


async def _lock_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .with_for_update(of=Reservation)
        .execution_options(populate_existing=True)
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


async def _move_active_seats(
    db: AsyncSession,
    reservation: Reservation,
    new_session_id: int,
    new_seats: int,
    new_active: bool,
) -> None:
    old_session_id = reservation.session_id
    old_active_seats = reservation.seats if reservation.is_active else 0
    new_active_seats = new_seats if new_active else 0

    locked = await capacity.lock_sessions(db, {old_session_id, new_session_id})
    if new_session_id not in locked:
        raise NotFoundError(f"Session {new_session_id} not found")
    target = await capacity.load_session(db, new_session_id)
    if new_seats > target.capacity:
        raise InvalidRequestError(
            f"Requested {new_seats} seats but the session only holds {target.capacity}"
        )

    if new_session_id != old_session_id:
        if new_active_seats and not await capacity.try_reserve(db, new_session_id, new_active_seats):
            raise ConflictError(
                f"Not enough seats in the new session. Available: {capacity.available(target)}",
                reason="insufficient_seats",
            )
        await capacity.adjust(db, old_session_id, -old_active_seats)
        record_seats_released("modify", old_active_seats)
        return

    delta = new_active_seats - old_active_seats
    if delta > 0:
        if not await capacity.try_reserve(db, new_session_id, delta):
            raise ConflictError(
                f"Not enough seats. Available: {capacity.available(target) + old_active_seats}",
                reason="insufficient_seats",
            )
    elif delta < 0:
        await capacity.adjust(db, new_session_id, delta)
        record_seats_released("modify", -delta)


async def modify(
    db: AsyncSession,
    reservation_id: int,
    new_seats: int,
    new_session_id: Optional[int] = None,
) -> Reservation:
    """Change the seat count (and optionally the session) of an active reservation."""
    if new_seats < 1:
        raise InvalidRequestError("At least one seat is required")

    async with atomic(db):
        reservation = await _lock_reservation(db, reservation_id)
        if not reservation.is_active:
            raise ConflictError("This reservation has been cancelled", reason="cancelled")

        old_seats, old_session_id = reservation.seats, reservation.session_id
        target_session_id = new_session_id if new_session_id is not None else old_session_id

        if target_session_id != old_session_id and await find_active_for_session(
            db, reservation.email, target_session_id, exclude_id=reservation.id
        ):
            raise ConflictError(
                "You already have a reservation for this session",
                reason="duplicate_session",
            )

        await _move_active_seats(db, reservation, target_session_id, new_seats, new_active=True)

        reservation.seats = new_seats
        reservation.session_id = target_session_id
        await db.flush()
        await capacity.load_session(db, target_session_id)
        await db.refresh(reservation)

    record_reservation_change("modify")
    logger.info(
        "reservation_modified",
        reservation_id=reservation.id,
        old_seats=old_seats,
        new_seats=new_seats,
        old_session_id=old_session_id,
        new_session_id=target_session_id,
    )
    return reservation


async def admin_update(
    db: AsyncSession,
    reservation_id: int,
    changes: ReservationChanges,
) -> Reservation:
    """Admin edit of any reservation field, keeping capacity in step."""
    async with atomic(db):
        reservation = await _lock_reservation(db, reservation_id)

        new_seats = changes.seats if changes.seats is not None else reservation.seats
        new_session_id = changes.session_id if changes.session_id is not None else reservation.session_id
        new_status = changes.status.value if changes.status is not None else reservation.status
        new_email = normalize_email(changes.email) if changes.email is not None else reservation.email
        new_active = new_status != CANCELLED

        if new_seats < 1:
            raise InvalidRequestError("At least one seat is required")

        becomes_new_claim = new_active and (
            not reservation.is_active
            or new_session_id != reservation.session_id
            or new_email != reservation.email
        )
        if becomes_new_claim and await find_active_for_session(
            db, new_email, new_session_id, exclude_id=reservation.id
        ):
            raise ConflictError(
                "This email already has an active reservation for that session",
                reason="duplicate_session",
            )

        await _move_active_seats(db, reservation, new_session_id, new_seats, new_active)

        reservation.seats = new_seats
        reservation.session_id = new_session_id
        reservation.status = new_status
        reservation.email = new_email
        if changes.name is not None:
            reservation.name = changes.name.strip()
        if changes.phone is not None:
            reservation.phone = changes.phone or None
        await db.flush()
        await capacity.load_session(db, new_session_id)
        await db.refresh(reservation)

    record_reservation_change("modify")
    logger.info("reservation_updated_by_admin", reservation_id=reservation.id, status=new_status)
    return reservation


async def cancel_all(db: AsyncSession, email: str) -> int:
    """
    Cancel every active reservation held by `email` and credit the seats back.
    Returns how many reservations were cancelled; 0 when nothing was active.
    """
    email = normalize_email(email)
    cancelled = 0
    released = 0

    async with atomic(db):
        rows = (
            await db.execute(
                select(Reservation.id, Reservation.session_id)
                .where(Reservation.email == email, Reservation.status != CANCELLED)
                .order_by(Reservation.id)
                .with_for_update()
            )
        ).all()
        await capacity.lock_sessions(db, {session_id for _, session_id in rows})

        for reservation_id, _ in rows:
            # The status guard makes a concurrent cancel of the same row a no-op;
            # RETURNING gives the seats as of the cancel, not as of the listing
            cancelled_row = (
                await db.execute(
                    update(Reservation)
                    .where(Reservation.id == reservation_id, Reservation.status != CANCELLED)
                    .values(status=CANCELLED)
                    .returning(Reservation.session_id, Reservation.seats)
                    .execution_options(synchronize_session=False)
                )
            ).first()
            if cancelled_row is None:
                continue
            session_id, seats = cancelled_row
            await capacity.adjust(db, session_id, -seats)
            cancelled += 1
            released += seats

    record_reservation_change("cancel", cancelled)
    record_seats_released("cancel", released)
    logger.info("reservations_cancelled", email=email, count=cancelled, seats_released=released)
    return cancelled


async def delete_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    """Hard-delete a reservation, crediting its seats back if it was active."""
    async with atomic(db):
        reservation = await _lock_reservation(db, reservation_id)
        seats = reservation.seats if reservation.is_active else 0

        session_id = reservation.session_id
        await db.delete(reservation)
        await db.flush()
        await capacity.adjust(db, session_id, -seats)

    record_reservation_change("delete")
    record_seats_released("delete", seats)
    logger.info(
        "reservation_deleted",
        reservation_id=reservation_id,
        session_id=session_id,
        seats_released=seats,
    )
    return reservation


async def resolve_code(db: AsyncSession, reservation_code: str) -> Reservation:
    """Authenticate a holder by the reservation code they were given at booking."""
    code = reservation_code.strip().upper()
    reservation = (
        await db.execute(select(Reservation).where(Reservation.reservation_code == code))
    ).scalar_one_or_none()
    if reservation is None:
        raise NotFoundError("Reservation code not found")
    return reservation


async def ensure_same_holder(db: AsyncSession, owner: Reservation, reservation_id: int) -> Reservation:
    """
    Load `reservation_id` and check it belongs to the same email as `owner`.
    One resolved code grants access to every reservation of that email.
    """
    target = await get_reservation(db, reservation_id)
    if target.email != owner.email:
        logger.warning(
            "cross_account_access_denied",
            owner_reservation_id=owner.id,
            target_reservation_id=reservation_id,
        )
        raise ForbiddenError("You do not have access to this reservation")
    return target


async def list_for_email(db: AsyncSession, email: str) -> list[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.email == normalize_email(email))
        .order_by(Reservation.created_at.desc(), Reservation.id.desc())
    )
    return list(result.scalars().unique().all())


async def reservation_overview(db: AsyncSession) -> dict:
    """All reservations grouped by event and session, with summary counters."""
    result = await db.execute(
        select(Reservation)
        .order_by(Reservation.session_id, Reservation.created_at, Reservation.id)
        .execution_options(populate_existing=True)
    )
    reservations = list(result.scalars().unique().all())

    events: dict[int, dict] = {}
    for reservation in reservations:
        session = reservation.session
        event = session.event
        event_entry = events.setdefault(
            event.id,
            {
                "event": {"id": event.id, "slug": event.slug, "title": event.title},
                "sessions": {},
            },
        )
        session_entry = event_entry["sessions"].setdefault(
            session.id,
            {
                "session": {
                    "id": session.id,
                    "start": session.start,
                    "end": session.end,
                    "capacity": session.capacity,
                    "reserved": session.reserved,
                },
                "reservations": [],
            },
        )
        session_entry["reservations"].append(reservation)

    def count(status: ReservationStatus) -> int:
        return sum(1 for r in reservations if r.status == status.value)

    return {
        "summary": {
            "total_reservations": len(reservations),
            "total_seats": sum(r.seats for r in reservations),
            "pending": count(ReservationStatus.PENDING),
            "confirmed": count(ReservationStatus.CONFIRMED),
            "cancelled": count(ReservationStatus.CANCELLED),
        },
        "events": [
            {"event": entry["event"], "sessions": list(entry["sessions"].values())}
            for entry in events.values()
        ],
    }
