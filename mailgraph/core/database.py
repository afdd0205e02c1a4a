"""SQLAlchemy 2.x async engine and session factory.

Provides the async engine, the session maker shared by the graph
repository, and schema bootstrap for a fresh database.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mailgraph.core.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def pool_size_for(workers: int) -> int:
    """Connections needed so every extraction worker and one query caller can hold a session."""
    return max(5, workers + 1)


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory from settings.

    The repository opens one short session per call, so the steady-state
    demand is one connection per extraction worker. Overflow covers the
    refetch a worker makes after losing a duplicate-key race.

    Returns:
        Tuple of (engine, async_session_factory).
    """
    pool_size = pool_size_for(settings.extraction_workers)
    engine = create_async_engine(
        settings.database_url or "",
        echo=settings.debug,
        pool_size=pool_size,
        max_overflow=pool_size // 2,
        pool_pre_ping=True,
        connect_args={"server_settings": {"application_name": settings.app_name}},
    )
    logger.debug("Database pool sized for %d workers (pool_size=%d)", settings.extraction_workers, pool_size)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    return engine, session_factory


async def init_db(engine: AsyncEngine) -> None:
    """Create the pgvector extension and all tables if they do not exist."""
    # Registers the models on Base.metadata
    from mailgraph.core import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database schema initialised")
