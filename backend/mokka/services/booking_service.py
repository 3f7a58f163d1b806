"""
Booking engine: turns a booking request into a PENDING reservation.

Everything happens in one transaction:

  1. Load the session (404 if missing), then lock its event row. Bookings
     for the same event queue here, so the cross-session rule below always
     sees a concurrent booking by the same email. Event rewrites take the
     same lock first, so a session deleted meanwhile is seen as missing.
  2. Reject requests that can never fit (seats > capacity).
  3. Enforce the per-email conflict rules:
       - one active reservation per (email, session)
       - one active reservation per email across the *upcoming* sessions of
         the same event (no holding two alternate time slots)
  4. Debit capacity with capacity.try_reserve (conditional UPDATE). This is
     the only capacity decision, taken under the session row lock.
  5. Generate a unique reservation code and insert the reservation under a
     savepoint. A code claimed by a concurrent booking since it was checked
     is retried with a fresh one; the partial unique index on active
     (email, session) firing is reported as a duplicate booking.

If any step fails the transaction rolls back, so a rejected booking never
leaves a reservation row or a stale capacity debit behind.
"""

import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.clock import utcnow
from mokka.core.config import get_settings
from mokka.core.exceptions import (
    BookingError,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    ReservationCodeExhaustedError,
)
from mokka.core.logging import get_logger
from mokka.core.metrics import booking_latency, record_booking_attempt
from mokka.db.session import atomic
from mokka.models.event import Event, EventSession
from mokka.models.reservation import Reservation, ReservationStatus
from mokka.services import capacity
from mokka.services.notification_service import Notifier

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


async def generate_reservation_code(db: AsyncSession) -> str:
    """Pick an unused reservation code, giving up after a bounded number of tries."""
    settings = get_settings()

    for attempt in range(1, settings.RESERVATION_CODE_MAX_ATTEMPTS + 1):
        code = _random_code(settings.RESERVATION_CODE_LENGTH)
        taken = await db.scalar(
            select(Reservation.id).where(Reservation.reservation_code == code)
        )
        if taken is None:
            return code
        logger.warning("reservation_code_collision", attempt=attempt)

    logger.error(
        "reservation_code_exhausted",
        attempts=settings.RESERVATION_CODE_MAX_ATTEMPTS,
    )
    raise ReservationCodeExhaustedError("Could not generate a unique reservation code")


async def find_active_for_session(
    db: AsyncSession,
    email: str,
    session_id: int,
    exclude_id: Optional[int] = None,
) -> Optional[Reservation]:
    query = select(Reservation).where(
        Reservation.email == email,
        Reservation.session_id == session_id,
        Reservation.status != ReservationStatus.CANCELLED.value,
    )
    if exclude_id is not None:
        query = query.where(Reservation.id != exclude_id)
    return (await db.execute(query.limit(1))).scalar_one_or_none()


async def _ensure_no_conflicting_booking(db: AsyncSession, email: str, session: EventSession) -> None:
    if await find_active_for_session(db, email, session.id):
        raise ConflictError(
            "You already have a reservation for this session",
            reason="duplicate_session",
        )

    other_upcoming = await db.scalar(
        select(Reservation.id)
        .join(EventSession, Reservation.session_id == EventSession.id)
        .where(
            Reservation.email == email,
            Reservation.status != ReservationStatus.CANCELLED.value,
            EventSession.event_id == session.event_id,
            EventSession.id != session.id,
            EventSession.start > utcnow(),
        )
        .limit(1)
    )
    if other_upcoming is not None:
        raise ConflictError(
            "You already have a reservation for another session of this event",
            reason="duplicate_event",
        )


async def book(
    db: AsyncSession,
    session_id: int,
    name: str,
    email: str,
    seats: int,
    phone: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> Reservation:
    """
    Reserve `seats` in a session for the given holder.

    Raises NotFoundError, InvalidRequestError, ConflictError (reason:
    duplicate_session, duplicate_event, insufficient_seats) or
    ReservationCodeExhaustedError.
    """
    if seats < 1:
        raise InvalidRequestError("At least one seat is required")

    email = normalize_email(email)

    try:
        with booking_latency.time():
            reservation = await _book(db, session_id, name, email, seats, phone)
    except ConflictError:
        record_booking_attempt("conflict")
        raise
    except InvalidRequestError:
        record_booking_attempt("invalid")
        raise
    except NotFoundError:
        record_booking_attempt("not_found")
        raise
    except BookingError:
        record_booking_attempt("error")
        raise

    record_booking_attempt("success")
    logger.info(
        "reservation_created",
        reservation_id=reservation.id,
        session_id=session_id,
        seats=seats,
        reserved=reservation.session.reserved,
        capacity=reservation.session.capacity,
    )

    if notifier is not None:
        await notifier.reservation_confirmation(reservation)
    return reservation


async def _lock_event_of(db: AsyncSession, session_id: int) -> EventSession:
    session = await capacity.load_session(db, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")

    await db.execute(select(Event.id).where(Event.id == session.event_id).with_for_update())

    # Re-read under the event lock: an event rewrite may have replaced it
    session = await capacity.load_session(db, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def _is_code_collision(error: IntegrityError) -> bool:
    return "reservation_code" in str(error.orig)


async def _insert_reservation(
    db: AsyncSession,
    session_id: int,
    name: str,
    email: str,
    seats: int,
    phone: Optional[str],
) -> Reservation:
    settings = get_settings()

    for attempt in range(1, settings.RESERVATION_CODE_MAX_ATTEMPTS + 1):
        reservation = Reservation(
            session_id=session_id,
            name=name.strip(),
            email=email,
            phone=phone or None,
            seats=seats,
            status=ReservationStatus.PENDING.value,
            reservation_code=await generate_reservation_code(db),
        )
        try:
            async with db.begin_nested():
                db.add(reservation)
            return reservation
        except IntegrityError as e:
            if not _is_code_collision(e):
                logger.info("reservation_duplicate_race", session_id=session_id)
                raise ConflictError(
                    "You already have a reservation for this session",
                    reason="duplicate_session",
                )
            logger.warning("reservation_code_race", attempt=attempt)

    logger.error("reservation_code_exhausted", attempts=settings.RESERVATION_CODE_MAX_ATTEMPTS)
    raise ReservationCodeExhaustedError("Could not generate a unique reservation code")


async def _book(
    db: AsyncSession,
    session_id: int,
    name: str,
    email: str,
    seats: int,
    phone: Optional[str],
) -> Reservation:
    async with atomic(db):
        session = await _lock_event_of(db, session_id)

        if seats > session.capacity:
            raise InvalidRequestError(
                f"Requested {seats} seats but the session only holds {session.capacity}"
            )

        await _ensure_no_conflicting_booking(db, email, session)

        if not await capacity.try_reserve(db, session.id, seats):
            current = await capacity.load_session(db, session.id)
            if current is None:
                raise NotFoundError(f"Session {session_id} not found")
            raise ConflictError(
                f"Not enough seats. Requested: {seats}, Available: {capacity.available(current)}",
                reason="insufficient_seats",
            )

        reservation = await _insert_reservation(db, session.id, name, email, seats, phone)

        # Pick up the debited counter for the response
        await capacity.load_session(db, session.id)
        await db.refresh(reservation)

    return reservation
