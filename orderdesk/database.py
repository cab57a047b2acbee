"""
Database Connection Module
Builds the SQLAlchemy async engine and session factory for the SQL order store.

Nothing is created at import time: the application lifespan builds one engine
from the settings and disposes of it at shutdown.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from orderdesk.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine(settings: Optional[Settings] = None, url: Optional[str] = None) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Pool sizing only applies to server databases; SQLite (used by the test
    suite through aiosqlite) keeps the driver defaults.
    """
    settings = settings or get_settings()
    url = url or settings.database_url

    options: dict = {"echo": settings.database_echo}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
            pool_pre_ping=True,
        )

    return create_async_engine(url, **options)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False  # Objects remain accessible after commit
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the tables on Base.metadata
    import orderdesk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables created successfully!")
