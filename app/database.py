"""
Database engine and sessions.

Hosted Postgres through asyncpg in deployment; SQLite URLs (local runs and
the test suite) go through aiosqlite. Schema changes ship as alembic
revisions, never create_all against Postgres.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional, Tuple

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from app.config import settings

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def normalize_database_url(raw_url: str) -> Tuple[str, bool]:
    """
    Rewrite a provider URL for the async drivers.

    Returns the URL and whether SSL is required. asyncpg rejects `sslmode`
    as a query parameter, so it is stripped and turned into the flag.
    """
    url = make_url(raw_url)
    drivername = _ASYNC_DRIVERS.get(url.drivername, url.drivername)

    query = dict(url.query)
    sslmode = query.pop("sslmode", None)
    use_ssl = drivername.startswith("postgresql") and sslmode != "disable"

    url = url.set(drivername=drivername, query=query)
    return url.render_as_string(hide_password=False), use_ssl


def create_engine_if_configured() -> Optional[AsyncEngine]:
    """Engine for DATABASE_URL, or None when it is unset."""
    if not settings.database_url:
        logger.warning("DATABASE_URL not configured, database features disabled")
        return None

    url, use_ssl = normalize_database_url(settings.database_url)

    if url.startswith("sqlite"):
        options: Dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            options["poolclass"] = StaticPool
        return create_async_engine(url, echo=settings.debug, **options)

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": True} if use_ssl else {},
    )


engine = create_engine_if_configured()

async_session_maker = (
    async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if engine
    else None
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def _require_sessions() -> async_sessionmaker:
    if not async_session_maker:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")
    return async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session.

    Services commit their own units of work; anything still pending when
    the request ends is committed here, and rolled back on error.
    """
    async with _require_sessions()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for Celery tasks and operator scripts."""
    async with _require_sessions()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    if engine:
        await engine.dispose()
