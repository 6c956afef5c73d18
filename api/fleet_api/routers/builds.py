"""Build endpoints: status, history and build requests."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from fleet_engine.models import BuildRecord

from fleet_api.dependencies import OrchestratorDep, SettingsDep
from fleet_api.schemas import BuildAccepted, InstanceBuildStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/builds", tags=["builds"])

# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/status", response_model=list[InstanceBuildStatus])
async def all_build_status(orchestrator: OrchestratorDep) -> list[InstanceBuildStatus]:
    """In-flight, latest READY and latest DEPLOYED record per instance."""
    out: list[InstanceBuildStatus] = []
    for name in orchestrator.registry.names:
        status = await orchestrator.build_status(name)
        out.append(InstanceBuildStatus(instance=name, **status))
    return out


@router.get("/status/{instance}", response_model=InstanceBuildStatus)
async def instance_build_status(
    instance: str, orchestrator: OrchestratorDep, settings: SettingsDep
) -> InstanceBuildStatus:
    status = await orchestrator.build_status(instance)
    name = orchestrator.registry.get(instance).name
    history = await orchestrator.history(name, limit=settings.status_history_limit)
    return InstanceBuildStatus(instance=name, history=history, **status)


@router.get("/history", response_model=list[BuildRecord])
async def build_history(
    orchestrator: OrchestratorDep,
    instance: str | None = Query(default=None, description="Filter by instance name or id."),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[BuildRecord]:
    """Return build records newest first."""
    return await orchestrator.history(instance, limit=limit)


# ---------------------------------------------------------------------------
# Build requests
# ---------------------------------------------------------------------------


@router.post("", status_code=202, response_model=list[BuildAccepted])
async def build_all(orchestrator: OrchestratorDep) -> list[BuildAccepted]:
    """Accept a build for every registered instance."""
    return [BuildAccepted(**answer) for answer in await orchestrator.submit_build_all()]


@router.post("/{instance}", status_code=202, response_model=BuildAccepted)
async def build_instance(instance: str, orchestrator: OrchestratorDep) -> BuildAccepted:
    """Accept a build for one instance; it runs in the background.

    A request for an instance that is already building is queued behind
    the running build rather than rejected.  One that another orchestrator
    process is building answers 409.
    """
    return BuildAccepted(**await orchestrator.submit_build(instance))
