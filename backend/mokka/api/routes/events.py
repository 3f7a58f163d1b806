"""
Public availability listing, cached in Redis.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.logging import get_logger
from mokka.db.session import get_db
from mokka.schemas.event import EventListResponse, EventResponse
from mokka.services.cache_service import AvailabilityCache, get_cache
from mokka.services.event_service import get_event, list_events

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.get("", response_model=EventListResponse)
async def list_events_endpoint(
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    cache: AvailabilityCache = Depends(get_cache),
):
    """
    Events with their sessions and remaining seats.
    Cached; every booking change invalidates the cache.
    """
    cached = await cache.get_listing(upcoming_only)
    if cached:
        logger.info("events_list_cache_hit", upcoming_only=upcoming_only)
        cached["cached"] = True
        return EventListResponse(**cached)

    events = await list_events(db, upcoming_only)
    response_data = {
        "events": [EventResponse.model_validate(e).model_dump() for e in events],
        "total": len(events),
        "cached": False,
    }
    await cache.set_listing(upcoming_only, response_data)
    return EventListResponse(**response_data)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(event_id: int, db: AsyncSession = Depends(get_db)):
    """Single event. Not cached (real-time seat counts)."""
    return await get_event(db, event_id)
