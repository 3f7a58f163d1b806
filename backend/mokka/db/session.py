"""
Database handle and transaction helpers.

The engine and session factory live on an explicitly constructed `Database`
object (one per process, created in the app lifespan), never as import-time
globals. Requests receive a scoped `AsyncSession` through `get_db`.

Transactions
============

Every capacity-affecting operation runs inside `atomic(db)`: the outermost
block commits on success and rolls back on any exception (including request
cancellation), nested blocks simply join the outer transaction. Nothing a
failed operation wrote is ever visible to other requests.

SQLite
======

SQLite has no row locks. For local development and the test suite we open
every transaction with BEGIN IMMEDIATE so concurrent writers queue on the
database lock (bounded by SQLITE_BUSY_TIMEOUT) instead of failing with
"database is locked" when two deferred transactions try to upgrade at once.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mokka.core.config import get_settings
from mokka.core.logging import get_logger

logger = get_logger(__name__)

_ATOMIC_DEPTH = "atomic_depth"


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    settings = get_settings()
    backend = make_url(url).get_backend_name()

    if backend == "sqlite":
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
        )
        _enable_sqlite_immediate_transactions(engine)
        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


class Database:
    """Owns the engine and the session factory for one process."""

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        settings = get_settings()
        self.url = url or settings.DATABASE_URL
        self.engine = create_engine_for_url(self.url, echo=echo)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            yield session

    async def create_all(self) -> None:
        from mokka.db.base import Base
        import mokka.models  # noqa: F401 - register mappers

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        from mokka.db.base import Base
        import mokka.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_disposed", backend=self.engine.dialect.name)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed block as one transaction on `db`."""
    depth = db.info.get(_ATOMIC_DEPTH, 0)
    db.info[_ATOMIC_DEPTH] = depth + 1
    try:
        if depth:
            yield db
            return

        try:
            yield db
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
    finally:
        db.info[_ATOMIC_DEPTH] = depth


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    database: Database = request.app.state.db
    async with database.session() as session:
        yield session
