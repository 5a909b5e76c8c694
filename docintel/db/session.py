"""
Database session management.

Flow:
  1. FastAPI routes receive a session from get_db(); the whole request runs
     inside one transaction that commits when the route returns and rolls
     back when it raises.
  2. Services that outlive a request (the extraction worker, the usage
     recorder, Celery tasks) open their own short transactions through
     session_scope() instead of borrowing a request session.

SQLite (used by the test suite) gets a NullPool engine because aiosqlite
connections cannot be shared across event loops; every other URL gets a
sized pool with pre-ping.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from docintel.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _build_engine() -> AsyncEngine:
    if settings.is_sqlite:
        return create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            echo=settings.db_echo_sql,
        )
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=settings.db_echo_sql,
    )


engine: AsyncEngine = _build_engine()

# expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a request-scoped session.

    Usage in a route:
        @router.get("/documents")
        async def list_docs(db: AsyncSession = Depends(get_db)): ...
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session
            # Transaction commits automatically on context exit (begin() block)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One transaction, outside any request. Commits on exit, rolls back on error."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Schema helpers (tests and local development; production uses migrations)
# ---------------------------------------------------------------------------

async def init_models() -> None:
    from docintel.models.documents import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created | url=%s", engine.url.render_as_string(hide_password=True))


async def drop_models() -> None:
    from docintel.models.documents import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
