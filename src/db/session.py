"""
Engine and session factory for the conversion database.

Every unit of work commits on success and rolls back on any error, so a
failed status transition never leaves a half-written audit trail.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # asyncpg's statement cache is invalid behind transaction poolers
    if url.startswith("postgresql+asyncpg"):
        return {"statement_cache_size": 0}
    return {}


engine = create_async_engine(
    settings.database_url,
    poolclass=NullPool,
    echo=not settings.is_production,
    connect_args=_connect_args(settings.database_url),
)

# Records stay readable after commit; handlers serialize them post-commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work for the rate refresh job and startup seeding."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("Session rolled back")
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for route handlers."""
    async with get_db_context() as session:
        yield session

