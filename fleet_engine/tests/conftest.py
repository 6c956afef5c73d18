"""Shared fixtures for fleet_engine tests.

Every test gets its own SQLite file under ``tmp_path`` so concurrent
sessions behave like they do against a real store, plus a settings object
whose directories and timeouts are scaled down for fast runs.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_engine.config import FleetSettings
from fleet_engine.state.database import get_session_factory
from fleet_engine.state.sqlite_adapter import create_tables, get_local_engine


@pytest.fixture
def settings(tmp_path: Path) -> FleetSettings:
    raw = tmp_path / "raw"
    profiles = tmp_path / "profiles"
    raw.mkdir()
    profiles.mkdir()
    (raw / "vietnam-latest.osm.pbf").write_bytes(b"PBF")
    (profiles / "car.lua").write_text("-- car\n")
    (profiles / "motorbike.lua").write_text("-- motorbike\n")
    return FleetSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        data_root=tmp_path / "data",
        raw_data_path=raw,
        profiles_dir=profiles,
        startup_timeout_seconds=0.3,
        stop_grace_seconds=0.1,
        port_poll_interval=0.01,
        health_max_retries=2,
        health_retry_base_delay=0.01,
        tool_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    eng = get_local_engine(tmp_path / "state.db")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s
