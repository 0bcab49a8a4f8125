"""
Database configuration and session management.
Uses SQLAlchemy async engine (asyncpg in production, aiosqlite for local runs).
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from metering.config import settings
from metering.models.base import Base

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """Pool sizing only applies to server databases."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False,  # Disable SQLAlchemy query logging
    **_engine_options(settings.database_url),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """
    Dependency for FastAPI routes to get database session.
    Usage: db: AsyncSession = Depends(get_db)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """
    Initialize database: create tables.
    Called on application startup.
    """
    # Register all models on the metadata before create_all
    import metering.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables ensured", extra={"event": "database_initialized"})


async def ping_db(db: AsyncSession) -> None:
    """Run a trivial query; raises if the database is unreachable."""
    await db.execute(text("SELECT 1"))
