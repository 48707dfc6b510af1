"""
Database Connection Module
Handles the SQLAlchemy async engine, sessions and retried write units.

PostgreSQL (psycopg async) in deployed environments; SQLite (aiosqlite)
for local runs and tests. SQLite serializes writers, so every transaction
takes the write lock up front with BEGIN IMMEDIATE; that turns concurrent
writers into a queue instead of deadlocking on lock upgrades.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from foody.core.config import get_settings
from foody.core.exceptions import FoodyError, TransientError

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")


# Base class for all our models
class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite gets the
    immediate-transaction hooks instead.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            # let the "begin" hook below emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
        pool_pre_ping=True,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = build_session_maker(engine)


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # models must be imported so their tables are registered on Base
    from foody import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def with_write_retries(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    retry_on: tuple[type[Exception], ...] = (OperationalError,),
    attempts: Optional[int] = None,
) -> T:
    """
    Run a write unit of work, rolling back and retrying on contention.

    ``operation`` must do all of its reads, writes and the commit itself so
    that a retry replays the whole unit against fresh state. Domain errors
    roll back and propagate unchanged; anything in ``retry_on`` is retried
    with linear backoff and becomes ``TransientError`` once attempts run out.

    Args:
        session: Session the operation writes through
        operation: Zero-argument coroutine function performing the unit
        description: Human-readable name for logs and the final error
        retry_on: Exception types treated as transient
        attempts: Override for ``write_retry_attempts``

    Returns:
        Whatever ``operation`` returns
    """
    attempts = attempts or settings.write_retry_attempts

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except FoodyError:
            await session.rollback()
            raise
        except retry_on as e:
            await session.rollback()
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise TransientError(
                    f"{description} could not be completed, please retry"
                ) from e
            logger.warning(
                f"{description} hit contention (attempt {attempt}/{attempts}): {e}"
            )
            await asyncio.sleep(settings.write_retry_delay * attempt)
        except Exception:
            await session.rollback()
            raise

    # unreachable: the loop either returns or raises
    raise TransientError(f"{description} could not be completed, please retry")
