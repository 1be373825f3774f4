from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator
import logging

import redis.asyncio as redis

from .config import settings

logger = logging.getLogger(__name__)


def create_engine_for(url: str):
    """Create an async engine with pool settings suited to the backend."""
    if url.startswith("sqlite"):
        # SQLite serialises writers; give concurrent bookings time to queue
        return create_async_engine(url, connect_args={"timeout": 30})

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=settings.DB_POOL_RECYCLE,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )


def create_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for(settings.get_database_url)

SessionLocal = create_session_factory(engine)

Base = declarative_base()

# Redis client; connections are opened lazily on first command
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

# Session factory dependency (used by code that opens its own transactions)
def get_session_factory() -> async_sessionmaker:
    return SessionLocal

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
async def init_db(bind=None):
    """Create all tables declared on the models."""
    from ..models import appointment, audit_log, calendar, notification, payment, user  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))
