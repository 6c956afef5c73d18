"""Liveness and readiness probes.

``/api/v1/health`` always answers 200 and describes the orchestrator;
``/ready`` sits at the root and answers 503 while the build record store
is unreachable, so a load balancer can stop routing control traffic here.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_api import __version__
from fleet_api.dependencies import OrchestratorDep, SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])
readiness_router = APIRouter(tags=["infrastructure"])


async def _store_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Build store unreachable: %s", exc)
        return False
    return True


@router.get("/health")
async def health(session: SessionDep, orchestrator: OrchestratorDep) -> dict[str, Any]:
    """Version, store state, and which instances are building right now."""
    registry = orchestrator.registry
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _store_reachable(session) else "degraded",
        "instances": len(registry),
        "profiles": registry.profiles,
        "building": [name for name in registry.names if orchestrator.executor.is_busy(name)],
    }


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep) -> JSONResponse:
    ready = await _store_reachable(session)
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "version": __version__,
            "checks": {"db": "ok" if ready else "unavailable"},
        },
    )
