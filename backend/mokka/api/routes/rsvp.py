"""
Public RSVP endpoints: booking and self-service management.

Two ways to prove ownership for changes:
- the reservation code handed out at booking time (/public-manage)
- a 6-digit code mailed to the holder's email (/verify, then /manage)
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.config import get_settings
from mokka.core.exceptions import InvalidRequestError, NotFoundError
from mokka.core.logging import get_logger
from mokka.db.session import atomic, get_db
from mokka.models.verification import VerificationAction
from mokka.schemas.reservation import (
    CancelResponse,
    ModifyResponse,
    PublicManageRequest,
    ReservationCreate,
    ReservationResponse,
)
from mokka.schemas.verification import (
    VerificationRequest,
    VerificationRequestResponse,
    VerifiedManageRequest,
)
from mokka.services import booking_service, reservation_service, verification_service
from mokka.services.cache_service import AvailabilityCache, get_cache
from mokka.services.notification_service import Notifier, get_notifier

logger = get_logger(__name__)
router = APIRouter(prefix="/rsvp", tags=["RSVP"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Reserve seats in a session.

    409 when the seats are gone or the email already holds a reservation for
    this session (or for another upcoming session of the same event).
    """
    reservation = await booking_service.book(
        db,
        session_id=data.session_id,
        name=data.name,
        email=data.email,
        phone=data.phone,
        seats=data.seats,
        notifier=notifier,
    )
    await cache.invalidate()
    return reservation


@router.post("/public-manage")
async def public_manage(
    data: PublicManageRequest,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    """Cancel all reservations, or change seats, using a reservation code."""
    owner = await reservation_service.resolve_code(db, data.reservation_code)

    if data.action == "cancel":
        count = await reservation_service.cancel_all(db, owner.email)
        await cache.invalidate()
        return CancelResponse(message="All reservations cancelled", cancelled_count=count)

    if data.rsvp_id is None or data.new_seats is None:
        raise InvalidRequestError("rsvp_id and new_seats are required to modify a reservation")

    await reservation_service.ensure_same_holder(db, owner, data.rsvp_id)
    reservation = await reservation_service.modify(db, data.rsvp_id, data.new_seats)
    await cache.invalidate()
    return ModifyResponse(
        message=f"Reservation updated to {reservation.seats} seat(s)",
        reservation=ReservationResponse.model_validate(reservation),
    )


@router.post("/verify", response_model=VerificationRequestResponse)
async def request_verification_code(
    data: VerificationRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Send a one-time code to the email holding the reservations."""
    issued = await verification_service.request_code(db, data.email, data.action)
    await notifier.verification_code(issued.email, issued.code, issued.action.value, issued.expires_at)

    settings = get_settings()
    return VerificationRequestResponse(
        message="A verification code has been sent to your email",
        expires_at=issued.expires_at,
        verification_code=issued.code if settings.EXPOSE_VERIFICATION_CODES else None,
    )


@router.post("/manage")
async def verified_manage(
    data: VerifiedManageRequest,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    """
    Cancel all reservations, or change seats, with a verified email code.
    The code is consumed only if the change itself succeeds.
    """
    async with atomic(db):
        email = await verification_service.verify_code(db, data.email, data.code, data.action)
        reservations = await reservation_service.list_for_email(db, email)
        if not reservations:
            raise NotFoundError("No reservations found for this email")

        if data.action == VerificationAction.CANCEL:
            count = await reservation_service.cancel_all(db, email)
            result = CancelResponse(message="All reservations cancelled", cancelled_count=count)
        else:
            if data.rsvp_id is None or data.new_seats is None:
                raise InvalidRequestError("rsvp_id and new_seats are required to modify a reservation")
            if data.rsvp_id not in {r.id for r in reservations}:
                raise NotFoundError("Reservation not found")
            reservation = await reservation_service.modify(db, data.rsvp_id, data.new_seats)
            result = ModifyResponse(
                message=f"Reservation updated to {reservation.seats} seat(s)",
                reservation=ReservationResponse.model_validate(reservation),
            )

    await cache.invalidate()
    return result
