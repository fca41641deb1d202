"""
Engine and session wiring for the card store.

The URL decides the driver: asyncpg in production, aiosqlite for local runs
and tests. An in-memory SQLite database only exists per connection, so it is
pinned to a single shared one.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from cardtrader.config import settings
from cardtrader.models.db import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine suited to the backend named by database_url."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_async_engine(url, echo=echo, poolclass=StaticPool)
        return create_async_engine(url, echo=echo)
    # Revalidate pooled connections on checkout
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Per-request session dependency.

    Ownership changes commit inside the trading service while the card lock
    is held. Whatever a route leaves pending commits when it returns, and a
    storage error rolls the request back before it reaches the error handler.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            logger.warning("Rolling back request session after a storage error")
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the users, cards and collection_entries tables if missing."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
