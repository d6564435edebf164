"""
Database configuration and session management.
Uses SQLAlchemy async engine for PostgreSQL.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from docmeter.config import settings
from docmeter.models.base import Base

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False,  # Disable SQLAlchemy query logging
    future=True,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def create_worker_session_factory() -> async_sessionmaker:
    """
    Session factory for Celery workers.

    Each task runs its own event loop, and asyncpg connections are bound to
    the loop that opened them, so workers do not pool connections.
    """
    worker_engine = create_async_engine(
        settings.database_url,
        echo=False,
        poolclass=NullPool,
    )
    return async_sessionmaker(
        worker_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db():
    """
    Initialize database: create tables.
    Called on application startup.
    """
    # Register every model on Base.metadata
    import docmeter.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
