"""Shared fixtures for fleet API tests.

Provides a mock orchestrator backed by the real instance registry, a mock
database session, and an httpx client bound to the app through
``ASGITransport``.  The lifespan is not run, so no store or process is
touched.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fleet_engine.config import FleetSettings
from fleet_engine.models import ActionResult, BuildRecord, BuildStatus, HealthResult
from fleet_engine.registry import InstanceRegistry
from httpx import ASGITransport, AsyncClient

from fleet_api.dependencies import get_db_session, get_orchestrator
from fleet_api.main import create_app

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def make_record(
    instance: str = "car-1",
    status: BuildStatus = BuildStatus.READY,
    build_id: str = "b" * 32,
) -> BuildRecord:
    return BuildRecord(
        build_id=build_id,
        instance_name=instance,
        status=status,
        pbf_file_path="/data/raw/vietnam-latest.osm.pbf",
        pipeline_version="1",
        created_at=datetime(2026, 5, 1, 8, 0, tzinfo=UTC),
        osrm_output_path=f"/data/{instance}/network.osrm" if status != BuildStatus.PENDING else None,
    )


# ---------------------------------------------------------------------------
# Mock orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_orchestrator() -> MagicMock:
    """Return a MagicMock orchestrator whose lookups use the real registry.

    Unknown instance names raise :class:`UnknownInstanceError` exactly as
    the real orchestrator does, so error mapping can be exercised.
    """
    settings = FleetSettings()
    registry = InstanceRegistry(settings)

    orch = MagicMock()
    orch.settings = settings
    orch.registry = registry

    async def _build_status(instance: str) -> dict:
        registry.get(instance)
        return {"current": None, "latest_ready": make_record(instance), "latest_deployed": None}

    async def _history(instance: str | None = None, limit: int = 20) -> list:
        if instance is not None:
            registry.get(instance)
        return [make_record(instance or "car-1")][:limit]

    async def _submit_build(instance: str) -> dict:
        name = registry.get(instance).name
        return {"instance": name, "accepted": True, "queued": False}

    def _submit_rolling_restart(profile: str) -> dict:
        pair = registry.for_profile(profile)
        return {"profile": profile, "accepted": True, "standby": pair[1].name}

    orch.build_status = AsyncMock(side_effect=_build_status)
    orch.history = AsyncMock(side_effect=_history)
    orch.submit_build = AsyncMock(side_effect=_submit_build)
    orch.submit_build_all = AsyncMock(
        side_effect=lambda: [{"instance": name, "accepted": True, "queued": False} for name in registry.names],
    )
    orch.submit_rolling_restart = MagicMock(side_effect=_submit_rolling_restart)
    orch.fleet_status = AsyncMock(return_value=[])
    orch.executor.is_busy = MagicMock(side_effect=lambda name: name == "car-2")

    lifecycle = MagicMock()
    lifecycle.start = AsyncMock(
        return_value=ActionResult(instance_name="car-1", action="start", success=True, message="started on port 5000")
    )
    lifecycle.stop = AsyncMock(return_value=ActionResult(instance_name="car-1", action="stop", success=True))
    lifecycle.restart = AsyncMock(return_value=ActionResult(instance_name="car-1", action="restart", success=True))
    lifecycle.rebuild = AsyncMock(return_value=ActionResult(instance_name="car-1", action="rebuild", success=True))
    lifecycle.health_check = AsyncMock(return_value=HealthResult(instance_name="car-1", healthy=True, message="Ok"))
    orch.lifecycle = lifecycle
    return orch


@pytest.fixture()
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    return session


# ---------------------------------------------------------------------------
# FastAPI client (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(mock_orchestrator: MagicMock, mock_session: AsyncMock):
    application = create_app()

    async def _override_session():
        yield mock_session

    application.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    application.dependency_overrides[get_db_session] = _override_session
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
