"""Instance process endpoints: status, start/stop/restart/rebuild, health."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from fleet_engine.models import ActionResult

from fleet_api.dependencies import OrchestratorDep
from fleet_api.schemas import InstanceStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/containers", tags=["containers"])


@router.get("/status", response_model=list[InstanceStatus])
async def containers_status(orchestrator: OrchestratorDep) -> list[InstanceStatus]:
    """Role, port, running state and route health per instance."""
    return [InstanceStatus(**row) for row in await orchestrator.fleet_status(include_health=True)]


@router.post("/{instance}/start", response_model=ActionResult)
async def start_instance(instance: str, orchestrator: OrchestratorDep) -> ActionResult:
    return await orchestrator.lifecycle.start(instance)


@router.post("/{instance}/stop", response_model=ActionResult)
async def stop_instance(instance: str, orchestrator: OrchestratorDep) -> ActionResult:
    return await orchestrator.lifecycle.stop(instance)


@router.post("/{instance}/restart", response_model=ActionResult)
async def restart_instance(instance: str, orchestrator: OrchestratorDep) -> ActionResult:
    return await orchestrator.lifecycle.restart(instance)


@router.post("/{instance}/rebuild", response_model=ActionResult)
async def rebuild_instance(instance: str, orchestrator: OrchestratorDep) -> ActionResult:
    """Stop, rebuild from scratch and start again; waits for the build."""
    logger.info("Rebuild requested for %s", instance)
    return await orchestrator.lifecycle.rebuild(instance)


@router.get("/{instance}/health")
async def instance_health(instance: str, orchestrator: OrchestratorDep) -> JSONResponse:
    """HTTP 200 when the route probe succeeds, 503 otherwise."""
    result = await orchestrator.lifecycle.health_check(instance)
    return JSONResponse(
        status_code=200 if result.healthy else 503,
        content=result.model_dump(mode="json"),
    )
