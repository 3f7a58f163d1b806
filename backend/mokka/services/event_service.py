"""
Event service handling the catalog: events and their bookable sessions.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.clock import as_utc, utcnow
from mokka.core.exceptions import ConflictError, InvalidRequestError, NotFoundError
from mokka.core.logging import get_logger
from mokka.db.session import atomic
from mokka.models.event import Event, EventSession
from mokka.models.reservation import Reservation

logger = get_logger(__name__)


@dataclass
class SessionSpec:
    start: datetime
    end: datetime
    capacity: int


def slugify(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "event"


async def _unique_slug(db: AsyncSession, title: str, exclude_id: Optional[int] = None) -> str:
    base = slugify(title)
    candidate, suffix = base, 2
    while True:
        query = select(Event.id).where(Event.slug == candidate)
        if exclude_id is not None:
            query = query.where(Event.id != exclude_id)
        if await db.scalar(query) is None:
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1


def _build_sessions(specs: Sequence[SessionSpec]) -> list[EventSession]:
    if not specs:
        raise InvalidRequestError("At least one session is required")

    sessions = []
    for spec in specs:
        start, end = as_utc(spec.start), as_utc(spec.end)
        if end <= start:
            raise InvalidRequestError("Session end must be after its start")
        if spec.capacity < 1:
            raise InvalidRequestError("Session capacity must be at least 1")
        sessions.append(EventSession(start=start, end=end, capacity=spec.capacity, reserved=0))
    return sessions


async def create_event(
    db: AsyncSession,
    title: str,
    description: str,
    sessions: Sequence[SessionSpec],
    is_ticketed: bool = True,
) -> Event:
    """Create an event together with its sessions, all seats free."""
    async with atomic(db):
        event = Event(
            slug=await _unique_slug(db, title),
            title=title,
            description=description,
            is_ticketed=is_ticketed,
            sessions=_build_sessions(sessions),
        )
        db.add(event)
        await db.flush()
        event = await _load_event(db, event.id)

    logger.info("event_created", event_id=event.id, slug=event.slug, sessions=len(event.sessions))
    return event


async def _load_event(db: AsyncSession, event_id: int) -> Optional[Event]:
    result = await db.execute(
        select(Event)
        .where(Event.id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event with its sessions."""
    event = await _load_event(db, event_id)
    if not event:
        raise NotFoundError(f"Event {event_id} not found")
    return event


async def list_events(db: AsyncSession, upcoming_only: bool = True) -> list[Event]:
    """
    List events with their sessions.
    With upcoming_only, events without a future session are left out.
    """
    result = await db.execute(
        select(Event)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .execution_options(populate_existing=True)
    )
    events = list(result.scalars().unique().all())

    if upcoming_only:
        now = utcnow()
        events = [e for e in events if any(as_utc(s.start) > now for s in e.sessions)]
    return events


async def _lock_event_for_rewrite(db: AsyncSession, event_id: int) -> Event:
    """
    Lock the event row and its session rows, then make sure nothing
    references them.

    Bookings lock the event row before any session, so either they commit
    first (and we see their reservation) or they wait for us and then find
    their session gone.
    """
    locked = await db.scalar(select(Event.id).where(Event.id == event_id).with_for_update())
    if locked is None:
        raise NotFoundError(f"Event {event_id} not found")

    await db.execute(
        select(EventSession.id)
        .where(EventSession.event_id == event_id)
        .order_by(EventSession.id)
        .with_for_update()
    )
    event = await _load_event(db, event_id)
    has_reservations = await db.scalar(
        select(Reservation.id)
        .join(EventSession, Reservation.session_id == EventSession.id)
        .where(EventSession.event_id == event_id)
        .limit(1)
    )
    if has_reservations is not None:
        raise ConflictError(
            "This event has reservations; its sessions cannot be changed or removed",
            reason="event_has_reservations",
        )
    return event


async def update_event(
    db: AsyncSession,
    event_id: int,
    title: str,
    description: str,
    sessions: Sequence[SessionSpec],
    is_ticketed: bool = True,
) -> Event:
    """Update event details and rewrite its sessions wholesale."""
    async with atomic(db):
        event = await _lock_event_for_rewrite(db, event_id)
        new_sessions = _build_sessions(sessions)

        if title != event.title:
            event.slug = await _unique_slug(db, title, exclude_id=event.id)
        event.title = title
        event.description = description
        event.is_ticketed = is_ticketed
        event.sessions = new_sessions
        await db.flush()
        event = await _load_event(db, event_id)

    logger.info("event_updated", event_id=event_id, sessions=len(event.sessions))
    return event


async def delete_event(db: AsyncSession, event_id: int) -> None:
    """Delete an event and its sessions; refused while reservations exist."""
    async with atomic(db):
        event = await _lock_event_for_rewrite(db, event_id)
        await db.delete(event)

    logger.info("event_deleted", event_id=event_id)
