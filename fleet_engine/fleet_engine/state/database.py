"""Engines and sessions for the build record store and the road database.

The URL scheme selects the backend:

* ``postgresql+asyncpg://`` gives a pooled engine with server-side timeouts.
* ``sqlite+aiosqlite://`` is handed to :mod:`fleet_engine.state.sqlite_adapter`.

The road database read by :class:`~fleet_engine.state.source.SegmentSource`
goes through the same factory with a small pool, since it only ever sees one
aggregate query per build.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

_APPLICATION_NAME = "osrm-fleet"
_STATEMENT_TIMEOUT_MS = 30_000
_LOCK_TIMEOUT_MS = 10_000


def get_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Return an async engine for *database_url*.

    Parameters
    ----------
    database_url:
        SQLAlchemy URL; ``sqlite`` schemes get the local single-file engine.
    pool_size, max_overflow:
        Pool bounds for server databases.  Ignored for SQLite.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        from fleet_engine.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    connect_args: dict[str, object] = {}
    if url.get_driver_name() == "asyncpg":
        connect_args["server_settings"] = {
            "application_name": _APPLICATION_NAME,
            "statement_timeout": str(_STATEMENT_TIMEOUT_MS),
            "lock_timeout": str(_LOCK_TIMEOUT_MS),
        }

    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args=connect_args,
    )
    logger.info(
        "Opened %s engine on %s (pool %d+%d)",
        url.get_backend_name(),
        url.render_as_string(hide_password=True),
        pool_size,
        max_overflow,
    )
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records are returned as pydantic models after commit, so keep ORM
    # attributes loaded.
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit on clean exit, roll back on error."""
    async with factory() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise
        await session.commit()
