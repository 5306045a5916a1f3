# database/session.py

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from docintel.config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

Base = declarative_base()


# ============= Engine =============

def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,  # Recycle connections after 1 hour
        )
    return options


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine; registers the pgvector codec on asyncpg connections."""
    engine = create_async_engine(database_url, **_engine_options(database_url))

    if engine.dialect.name == "postgresql" and engine.dialect.driver == "asyncpg":
        from pgvector.asyncpg import register_vector

        @event.listens_for(engine.sync_engine, "connect")
        def _register_vector(dbapi_connection, connection_record):
            dbapi_connection.run_async(register_vector)

    return engine


async_engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine = async_engine) -> None:
    """Create the vector extension (PostgreSQL) and all tables."""
    from docintel.database import models  # noqa: F401  (registers entities on Base)

    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database schema ready ({engine.dialect.name})")


# ============= Dependencies =============

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide database session for FastAPI dependency injection"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
