"""Blue/green cutover endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from fleet_api.dependencies import OrchestratorDep
from fleet_api.schemas import RollingRestartAccepted, RollingRestartRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/osrm", tags=["osrm"])


@router.post("/rolling-restart", status_code=202, response_model=RollingRestartAccepted)
async def rolling_restart(body: RollingRestartRequest, orchestrator: OrchestratorDep) -> RollingRestartAccepted:
    """Swap *profile* onto its standby instance in the background.

    The outcome is recorded on the build records and persisted roles and
    logged; poll ``/containers/status`` to observe it.
    """
    return RollingRestartAccepted(**orchestrator.submit_rolling_restart(body.profile))


@router.post("/deploy", status_code=202, response_model=RollingRestartAccepted)
async def deploy(body: RollingRestartRequest, orchestrator: OrchestratorDep) -> RollingRestartAccepted:
    """Build the standby of *profile*, then run the health-gated swap."""
    return RollingRestartAccepted(**orchestrator.submit_deploy(body.profile))
