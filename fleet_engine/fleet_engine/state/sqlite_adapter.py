"""Single-host build store backed by a SQLite file.

The default ``database_url`` points here, so one orchestrator process can
keep its build history and instance roles without a database server.  The
ORM tables are the same as for PostgreSQL; instead of running migrations
they are created on startup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# Build workers and API readers share the file; writers wait instead of
# failing with "database is locked".
_FILE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA foreign_keys=ON",
)


def get_local_engine(db_path: Path | str = ".osrm-fleet/state.db") -> AsyncEngine:
    """Return an aiosqlite engine for *db_path*.

    ``":memory:"`` gives a private database held on one shared connection;
    any other value is a file whose parent directory is created if needed.
    """
    if str(db_path) == MEMORY:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{MEMORY}",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        logger.debug("Opened in-memory SQLite build store")
        return engine

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        for pragma in _FILE_PRAGMAS:
            cursor.execute(pragma)
        cursor.close()

    logger.info("Opened SQLite build store at %s", path)
    return engine


async def create_tables(engine: AsyncEngine) -> None:
    """Create ``osrm_builds`` and ``instance_roles`` if they are missing."""
    from fleet_engine.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Build store schema verified")
