"""
Pytest fixtures for the test database, HTTP client, admin auth and catalog data.

Each test gets a fresh SQLite file (or the PostgreSQL database named by
TEST_DATABASE_URL, recreated per test) so concurrent sessions really hit a
shared store, which an in-memory connection cannot do.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.main import app
from mokka.core.clock import utcnow
from mokka.core.security import ADMIN_SUBJECT, create_access_token
from mokka.db.session import Database, atomic
from mokka.models.event import Event
from mokka.models.reservation import Reservation, ReservationStatus
from mokka.services import capacity, event_service
from mokka.services.cache_service import AvailabilityCache
from mokka.services.event_service import SessionSpec
from mokka.services.notification_service import Notifier

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Create tables, yield the store handle, then drop everything."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'mokka_test.db'}"
    db = Database(url)
    await db.create_all()

    yield db

    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(keep_outbox=True)


@pytest_asyncio.fixture(scope="function")
async def client(database: Database, notifier: Notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test store (the lifespan does not run under ASGITransport)."""
    app.state.db = database
    app.state.cache = AvailabilityCache(None)
    app.state.notifier = notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict:
    """Authorization headers with an admin bearer token."""
    token = create_access_token(data={"sub": ADMIN_SUBJECT})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_event(db: AsyncSession):
    """
    Factory creating an event with one session per entry of `capacities`.
    Sessions start `starts_in` from now (one entry per session, default a week out).
    """

    async def _make(title="Latte Art Workshop", capacities=(12,), starts_in=None) -> Event:
        starts_in = starts_in or [timedelta(days=7 + i) for i in range(len(capacities))]
        specs = [
            SessionSpec(start=utcnow() + offset, end=utcnow() + offset + timedelta(hours=2), capacity=cap)
            for cap, offset in zip(capacities, starts_in)
        ]
        return await event_service.create_event(db, title, "Hands-on session at the bar", specs)

    return _make


@pytest_asyncio.fixture
async def workshop(make_event) -> Event:
    """Upcoming event with two sessions of 12 seats."""
    return await make_event(capacities=(12, 12))


async def _seat_counts(db: AsyncSession, session_id: int) -> tuple[int, int]:
    """(reserved counter, sum of active reservation seats) for a session."""
    async with atomic(db):
        session = await capacity.load_session(db, session_id)
        active = await db.scalar(
            select(func.coalesce(func.sum(Reservation.seats), 0)).where(
                Reservation.session_id == session_id,
                Reservation.status != ReservationStatus.CANCELLED.value,
            )
        )
    return session.reserved, active


@pytest.fixture
def seat_counts(db: AsyncSession):
    """Ledger check: returns (reserved, active seats) for a session id."""

    async def _counts(session_id: int) -> tuple[int, int]:
        return await _seat_counts(db, session_id)

    return _counts
