"""
Capacity store: the only code allowed to change EventSession.reserved.

CONCURRENCY STRATEGY: Conditional UPDATE
========================================

Problem:
  Two requests read reserved=11 of capacity=12, both see one free seat,
  both write reserved=12 and both succeed. Result: Overbooking.

Solution:
  The capacity check and the write are the same statement:

    UPDATE event_sessions SET reserved = reserved + :seats
    WHERE id = :session_id AND reserved + :seats <= capacity

  The database evaluates the WHERE clause against the latest committed row
  while holding that row's write lock, so the second writer blocks until
  the first commits and then re-checks against the new value. If
  rows_affected == 0 there was not enough room and nothing was written.

  No version column, no retry loop and no application-level lock: the
  session row lock is the serialization point, and it is held only for the
  rest of the caller's transaction. CHECK constraints
  (0 <= reserved <= capacity) stay as the last line of defence.

Lock order
==========

Operations that touch more than one session (moves, cancel_all) lock all
of them up front with lock_sessions, in ascending id order, after any
reservation row locks. Two such operations then never hold one session
while waiting for the other in the opposite order.
"""

from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.exceptions import CapacityInvariantError
from mokka.core.logging import get_logger
from mokka.core.metrics import record_capacity_operation
from mokka.models.event import EventSession

logger = get_logger(__name__)


async def try_reserve(db: AsyncSession, session_id: int, seats: int) -> bool:
    """
    Atomically debit `seats` from a session if they fit.
    Returns False (and changes nothing) when the session is too full.
    """
    result = await db.execute(
        update(EventSession)
        .where(
            EventSession.id == session_id,
            EventSession.reserved + seats <= EventSession.capacity,
        )
        .values(reserved=EventSession.reserved + seats)
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount == 1
    record_capacity_operation("reserve", applied)

    if not applied:
        logger.info("capacity_reserve_rejected", session_id=session_id, seats=seats)
    return applied


async def adjust(db: AsyncSession, session_id: int, delta: int) -> None:
    """
    Atomically add `delta` (positive or negative) to a session's reserved count.

    Used for credit-backs and already-validated net changes. Leaving
    [0, capacity] here means the ledger and the counter disagree, so the
    enclosing transaction is aborted with CapacityInvariantError.
    """
    if delta == 0:
        return

    result = await db.execute(
        update(EventSession)
        .where(
            EventSession.id == session_id,
            EventSession.reserved + delta >= 0,
            EventSession.reserved + delta <= EventSession.capacity,
        )
        .values(reserved=EventSession.reserved + delta)
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount == 1
    record_capacity_operation("adjust", applied)

    if not applied:
        logger.error("capacity_invariant_violation", session_id=session_id, delta=delta)
        raise CapacityInvariantError(
            f"Adjusting session {session_id} by {delta} would leave reserved seats out of range"
        )


async def load_session(db: AsyncSession, session_id: int) -> Optional[EventSession]:
    """Re-read a session row, overwriting any stale copy held by this session."""
    return await db.get(EventSession, session_id, populate_existing=True)


def available(session: EventSession) -> int:
    return session.capacity - session.reserved


async def lock_sessions(db: AsyncSession, session_ids: Iterable[int]) -> set[int]:
    """Row-lock the given sessions in ascending id order; returns the ids that exist."""
    result = await db.execute(
        select(EventSession.id)
        .where(EventSession.id.in_(set(session_ids)))
        .order_by(EventSession.id)
        .with_for_update()
    )
    return set(result.scalars().all())
