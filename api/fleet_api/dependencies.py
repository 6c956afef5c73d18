"""FastAPI dependency injection for settings, the orchestrator, and sessions."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from fleet_engine.config import FleetSettings, load_settings
from fleet_engine.orchestrator import FleetOrchestrator
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_api.config import APISettings, load_api_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

_orchestrator: FleetOrchestrator | None = None


def init_orchestrator(fleet_settings: FleetSettings | None = None) -> FleetOrchestrator:
    """Create and cache the process-wide :class:`FleetOrchestrator`."""
    global _orchestrator  # noqa: PLW0603
    _orchestrator = FleetOrchestrator(fleet_settings or load_settings())
    return _orchestrator


async def dispose_orchestrator() -> None:
    """Wait for background work and release the store (call during shutdown)."""
    global _orchestrator  # noqa: PLW0603
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None


def get_orchestrator() -> FleetOrchestrator:
    if _orchestrator is None:
        raise RuntimeError(
            "Orchestrator has not been initialised. Ensure init_orchestrator() is called during application startup."
        )
    return _orchestrator


OrchestratorDep = Annotated[FleetOrchestrator, Depends(get_orchestrator)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------


async def get_db_session(orchestrator: OrchestratorDep) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` on the build record store.

    The session commits on clean exit and rolls back on exception.
    """
    session = orchestrator.session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
