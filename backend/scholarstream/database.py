"""
ScholarStream Backend - Database Pool & Session Management
============================================================

What:  Async SQLAlchemy engine + session factory wrapped in a ``Database``
       object with an explicit lifecycle, and the per-request session
       dependency.
How:   The lifespan handler in main.py creates one ``Database`` at startup,
       stores it on ``app.state.database`` and disposes it at shutdown.
       Route handlers receive sessions through ``get_db_session``, which reads
       the pool from the running app; nothing connects at import time.

Connection Pooling (PostgreSQL):
    pool_size=20, max_overflow=10  → at most 30 connections
    pool_pre_ping                  → stale connections are replaced before use
    pool_recycle=3600              → connections are recycled hourly

SQLite URLs (tests) skip the pool sizing arguments, which SQLite pools do not
accept.
"""

import logging
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from scholarstream.config import settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware UTC now; every stored timestamp goes through this."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object, which Alembic reads for autogenerate and
    the test suite uses to create tables on SQLite.
    """
    pass


class Database:
    """
    Process-wide connection pool with an explicit lifecycle.

    Usage:
        database = Database(settings.database_url)   # startup
        async with database.session() as session: ...
        await database.dispose()                      # shutdown
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {"echo": echo}
        if not url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_pre_ping=settings.db_pool_pre_ping,
                pool_recycle=3600,
            )
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

        # expire_on_commit=False: ORM objects stay readable after the
        # dependency commits, while the response is being serialized.
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self) -> None:
        """Creates every table registered on ``Base`` (tests and local dev only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Executes ``SELECT 1``; used by the health check."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Database ping failed: %s", str(e))
            return False

    async def dispose(self) -> None:
        """Closes every pooled connection. Called once during shutdown."""
        await self.engine.dispose()
        logger.info("Database pool disposed")


def create_database(url: Optional[str] = None) -> Database:
    return Database(url or settings.database_url, echo=settings.log_level == "DEBUG")


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Opens a session from the app's pool
        2. Yields it to the route handler
        3. On success: commits
        4. On error: rolls back and re-raises for the global handlers
        5. Always: returns the connection to the pool

    Each state change in the services is a single conditional UPDATE, so the
    commit here never publishes a half-applied multi-field change.
    """
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
