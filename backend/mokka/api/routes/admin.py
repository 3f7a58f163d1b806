"""
Admin back-office endpoints: login, reservation support, event authoring.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.exceptions import AuthenticationError
from mokka.core.logging import get_logger
from mokka.core.security import ADMIN_SUBJECT, create_access_token, require_admin, verify_admin_password
from mokka.db.session import get_db
from mokka.schemas.admin import AdminLogin, Token
from mokka.schemas.event import EventCreate, EventResponse
from mokka.schemas.reservation import (
    AdminReservationUpdate,
    DeleteResponse,
    ReservationOverview,
    ReservationResponse,
)
from mokka.services import event_service, reservation_service
from mokka.services.cache_service import AvailabilityCache, get_cache
from mokka.services.event_service import SessionSpec

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])
protected = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/login", response_model=Token)
async def login(data: AdminLogin):
    """Exchange the admin password for a bearer token."""
    if not verify_admin_password(data.password):
        logger.warning("admin_login_failed")
        raise AuthenticationError("Invalid password")
    logger.info("admin_logged_in")
    return Token(access_token=create_access_token({"sub": ADMIN_SUBJECT}))


# Reservations

@protected.get("/rsvps", response_model=ReservationOverview)
async def list_reservations(db: AsyncSession = Depends(get_db)):
    return await reservation_service.reservation_overview(db)


@protected.put("/rsvps/{reservation_id}", response_model=ReservationResponse)
async def update_reservation(
    reservation_id: int,
    data: AdminReservationUpdate,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    """Edit any field, including moving the reservation to another session."""
    reservation = await reservation_service.admin_update(
        db,
        reservation_id,
        reservation_service.ReservationChanges(
            name=data.name,
            email=data.email,
            phone=data.phone,
            seats=data.seats,
            status=data.status,
            session_id=data.session_id,
        ),
    )
    await cache.invalidate()
    return reservation


@protected.delete("/rsvps/{reservation_id}", response_model=DeleteResponse)
async def delete_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    await reservation_service.delete_reservation(db, reservation_id)
    await cache.invalidate()
    return DeleteResponse(message="Reservation deleted", id=reservation_id)


# Events

def _session_specs(data: EventCreate) -> list[SessionSpec]:
    return [SessionSpec(start=s.start, end=s.end, capacity=s.capacity) for s in data.sessions]


@protected.get("/events", response_model=list[EventResponse])
async def list_all_events(db: AsyncSession = Depends(get_db)):
    return await event_service.list_events(db, upcoming_only=False)


@protected.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreate,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    event = await event_service.create_event(
        db, data.title, data.description, _session_specs(data), is_ticketed=data.is_ticketed
    )
    await cache.invalidate()
    return event


@protected.get("/events/{event_id}", response_model=EventResponse)
async def get_event(event_id: int, db: AsyncSession = Depends(get_db)):
    return await event_service.get_event(db, event_id)


@protected.put("/events/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: int,
    data: EventCreate,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    """Rewrites the sessions; refused (409) while the event has reservations."""
    event = await event_service.update_event(
        db, event_id, data.title, data.description, _session_specs(data), is_ticketed=data.is_ticketed
    )
    await cache.invalidate()
    return event


@protected.delete("/events/{event_id}", response_model=DeleteResponse)
async def delete_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    await event_service.delete_event(db, event_id)
    await cache.invalidate()
    return DeleteResponse(message="Event deleted", id=event_id)


router.include_router(protected)
