"""
Engine, session factory and the request-scoped session dependency.

The API and the CLI scripts share one engine per process. Schema creation at
startup covers development setups; deployments run the alembic migrations.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .cache import close_cache, init_cache
from .config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)

engine: Optional[AsyncEngine] = None
async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def engine_options(settings: Settings) -> Dict[str, Any]:
    """Pool and driver options for the configured database URL."""
    options: Dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}

    if settings.database_url.startswith("postgresql+asyncpg"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_recycle=3600,
            connect_args={"server_settings": {"application_name": "experience_booking_platform"}},
        )
    return options


def bind_engine(new_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Make new_engine the process-wide engine and return its session factory."""
    global engine, async_session_factory

    engine = new_engine
    # Committed objects stay readable after commit for response serialization
    async_session_factory = async_sessionmaker(new_engine, class_=AsyncSession, expire_on_commit=False)
    return async_session_factory


async def init_database(create_schema: bool = True) -> None:
    """Connect to the database and Redis; Redis failing is not fatal."""
    settings = get_settings()
    bind_engine(create_async_engine(settings.database_url, **engine_options(settings)))

    if create_schema:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready")

    try:
        await init_cache()
    except RedisError as e:
        logger.warning(f"Redis unavailable, availability reads and booking locks fall back to the database: {e}")


async def close_database() -> None:
    global engine, async_session_factory

    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")
    engine = None
    async_session_factory = None

    await close_cache()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session committed when the block exits cleanly and rolled back otherwise.

    Usage:
        async with get_db_session() as session:
            session.add(business)
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_db_session() as session:
        yield session
