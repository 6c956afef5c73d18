"""Alembic environment for the ``osrm_builds`` and ``instance_roles`` schema.

The target URL is taken from, in order: ``alembic -x url=...``,
``ALEMBIC_DATABASE_URL``, ``sqlalchemy.url`` in the ini file, and finally
``OSRM_FLEET_DATABASE_URL``.  Migrations run on a synchronous driver, so
the async drivers the orchestrator uses are swapped for their sync peers.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import URL, make_url

from fleet_engine.state.tables import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")
target_metadata = Base.metadata

_SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
}


def _migration_url() -> URL:
    raw = (
        context.get_x_argument(as_dictionary=True).get("url")
        or os.environ.get("ALEMBIC_DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
        or os.environ.get("OSRM_FLEET_DATABASE_URL")
    )
    if not raw:
        raise RuntimeError("No database URL: pass -x url=... or set OSRM_FLEET_DATABASE_URL")

    url = make_url(raw)
    url = url.set(drivername=_SYNC_DRIVERS.get(url.drivername, url.drivername))
    # asyncpg spells it ``ssl``, libpq spells it ``sslmode``.
    if "ssl" in url.query:
        query = dict(url.query)
        query["sslmode"] = query.pop("ssl")
        url = url.set(query=query)
    logger.info("Migrating %s", url.render_as_string(hide_password=True))
    return url


def _configure(url: URL, **kwargs: object) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place.
        render_as_batch=url.get_backend_name() == "sqlite",
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Print the migration SQL instead of executing it."""
    url = _migration_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _migration_url()
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(url, connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
