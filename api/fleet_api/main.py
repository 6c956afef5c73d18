"""FastAPI application entry-point for the OSRM fleet control plane."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fleet_engine.errors import (
    BuildInProgressError,
    CutoverError,
    InputNotFoundError,
    LifecycleError,
    MissingArtifactError,
    PortInUseError,
    UnknownInstanceError,
    UnknownProfileError,
)
from sqlalchemy.exc import SQLAlchemyError

from fleet_api import __version__
from fleet_api.config import load_api_settings
from fleet_api.dependencies import dispose_orchestrator, init_orchestrator
from fleet_api.middleware.json_formatter import install_json_logging
from fleet_api.middleware.logging import RequestLoggingMiddleware
from fleet_api.routers import builds, containers, health, osrm

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Build the orchestrator from ``OSRM_FLEET_*`` settings.
    - Ensure tables (local SQLite store), fail builds left in flight by a
      previous process, and load the active/standby roles.

    On shutdown:
    - Wait for background builds and cutovers, then dispose the engine.
    """
    settings = load_api_settings()
    level = logging.getLevelName(settings.log_level)
    if settings.structured_logging:
        install_json_logging(level)
        logger.info("Structured JSON logging enabled")
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    orchestrator = init_orchestrator()
    await orchestrator.startup()
    logger.info(
        "Fleet orchestrator started (%d instances, store=%s)",
        len(orchestrator.registry),
        "local" if orchestrator.settings.is_local_store else "postgres",
    )

    yield

    await dispose_orchestrator()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(UnknownInstanceError)
    @app.exception_handler(UnknownProfileError)
    async def not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(MissingArtifactError)
    @app.exception_handler(PortInUseError)
    @app.exception_handler(InputNotFoundError)
    @app.exception_handler(CutoverError)
    @app.exception_handler(BuildInProgressError)
    async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.warning("Conflict on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
        logger.error("Lifecycle failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "instance": exc.instance_name},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="OSRM Fleet API",
        description="Build, deploy and blue/green cutover for a fleet of OSRM routing instances.",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID", "Accept"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(builds.router, prefix="/api/v1")
    app.include_router(containers.router, prefix="/api/v1")
    app.include_router(osrm.router, prefix="/api/v1")

    # Infrastructure endpoints outside versioning.
    app.include_router(health.readiness_router)

    _install_exception_handlers(app)
    return app


# Module-level application instance used by ``uvicorn fleet_api.main:app``.
app = create_app()
