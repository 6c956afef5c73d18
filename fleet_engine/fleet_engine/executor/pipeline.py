"""Ordered extract / contract / validate pipeline for one build.

:class:`PipelineRunner` is invoked while the caller holds the instance slot
of :class:`~fleet_engine.executor.sequential.SequentialBuildExecutor`.  It
owns every status change between PENDING and READY/FAILED and guarantees
that a build never stays in BUILDING or TESTING once ``run`` returns.

Tools run in a ``.staging`` directory under the instance's data path, so
the artifacts an instance is serving are untouched until a build has
passed validation:

0. *prepare*  -- read the road database snapshot, stage the ``.osm.pbf``
   input and the profile script.
1. *extract*  -- ``osrm-extract -p <profile> network.osm.pbf``.
2. *contract* -- ``osrm-contract`` (CH) or ``osrm-partition`` then
   ``osrm-customize`` (MLD).
3. *validate* -- every required artifact exists and is non-empty.
4. *promote*  -- move the new artifacts over the served ones.  A failed
   build only ever discards its staging directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_engine.config import FleetSettings, InstanceConfig
from fleet_engine.errors import FleetError, InputNotFoundError, StageFailure
from fleet_engine.executor.subprocess_runner import ToolResult, run_tool
from fleet_engine.executor.toolchain import (
    INPUT_FILENAME,
    OSRM_FILENAME,
    Toolchain,
    required_artifacts,
)
from fleet_engine.models.build import BuildOutcome, BuildStatus, SourceSnapshot, truncate_error
from fleet_engine.registry import InstanceRegistry
from fleet_engine.state.database import session_scope
from fleet_engine.state.repository import BuildRepository
from fleet_engine.state.source import SegmentSource

logger = logging.getLogger(__name__)

ToolRunner = Callable[..., Awaitable[ToolResult]]

STAGING_DIRNAME = ".staging"


def resolve_input_pbf(settings: FleetSettings) -> Path:
    """Return the configured extract, or the newest ``*.osm.pbf`` on disk.

    Raises
    ------
    InputNotFoundError
        When no usable extract exists.
    """
    if settings.pbf_path is not None:
        if not settings.pbf_path.is_file():
            raise InputNotFoundError(f"Configured extract not found: {settings.pbf_path}")
        return settings.pbf_path
    candidates = sorted(
        settings.raw_data_path.glob("*.osm.pbf"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    if not candidates:
        raise InputNotFoundError(f"No .osm.pbf extract under {settings.raw_data_path}")
    return candidates[0]


def _stage_file(source: Path, target: Path) -> None:
    if target.exists() or target.is_symlink():
        target.unlink()
    try:
        target.hardlink_to(source)
    except OSError:
        shutil.copy2(source, target)


def discard_artifacts(workdir: Path) -> int:
    """Delete ``network.osrm*`` files from *workdir*; return the count removed."""
    removed = 0
    for path in workdir.glob(f"{OSRM_FILENAME}*"):
        if path.is_file():
            path.unlink()
            removed += 1
    return removed


class PipelineRunner:
    """Drives the preprocessing tools for one build and records its progress.

    Parameters
    ----------
    settings:
        Fleet configuration (toolchain, timeouts, directories).
    session_factory:
        Factory for sessions on the build record store.
    source:
        Road database reader used for provenance.
    runner:
        Coroutine that executes one tool; defaults to :func:`run_tool`.
    """

    def __init__(
        self,
        settings: FleetSettings,
        session_factory: async_sessionmaker[AsyncSession],
        source: SegmentSource | None = None,
        runner: ToolRunner = run_tool,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._source = source or SegmentSource(None)
        self._runner = runner
        self._registry = InstanceRegistry(settings)
        self._toolchain = Toolchain(settings.algorithm, settings.docker_image)

    async def _update(self, method: str, build_id: str, *args: Any) -> None:
        async with session_scope(self._session_factory) as session:
            await getattr(BuildRepository(session), method)(build_id, *args)

    async def _record_snapshot(self, build_id: str, snapshot: SourceSnapshot) -> None:
        async with session_scope(self._session_factory) as session:
            await BuildRepository(session).record_snapshot(build_id, snapshot)

    async def _pbf_for(self, build_id: str) -> Path:
        async with session_scope(self._session_factory) as session:
            record = await BuildRepository(session).get(build_id)
        if record is not None and record.pbf_file_path:
            return Path(record.pbf_file_path)
        return resolve_input_pbf(self._settings)

    async def _tool(self, stage: str, argv: list[str], workdir: Path) -> ToolResult:
        return await self._runner(
            argv,
            stage=stage,
            cwd=workdir,
            timeout=self._settings.tool_timeout_seconds,
            max_output_bytes=self._settings.max_output_bytes,
        )

    def _prepare_staging(self, inst: InstanceConfig, pbf: Path) -> tuple[Path, str]:
        staging = self._registry.data_path(inst) / STAGING_DIRNAME
        script = self._settings.profile_script(inst.profile)
        if not pbf.is_file():
            raise InputNotFoundError(f"Input extract missing: {pbf}")
        if not script.is_file():
            raise InputNotFoundError(f"Profile script missing: {script}")
        # leftovers of a build that died mid-way
        shutil.rmtree(staging, ignore_errors=True)
        staging.mkdir(parents=True)
        _stage_file(pbf, staging / INPUT_FILENAME)
        shutil.copy2(script, staging / script.name)
        return staging, script.name

    @staticmethod
    def _promote(staging: Path, workdir: Path) -> None:
        """Replace the served artifacts with the validated ones in *staging*."""
        fresh = {path.name for path in staging.glob(f"{OSRM_FILENAME}*") if path.is_file()}
        for path in workdir.glob(f"{OSRM_FILENAME}*"):
            if path.is_file() and path.name not in fresh:
                path.unlink()
        for path in staging.iterdir():
            if path.is_file():
                os.replace(path, workdir / path.name)

    def _validate(self, workdir: Path) -> None:
        missing = [
            name
            for name in required_artifacts(self._settings.algorithm)
            if not (workdir / name).is_file() or (workdir / name).stat().st_size == 0
        ]
        if missing:
            raise StageFailure("validate", f"missing or empty artifacts: {', '.join(missing)}")

    async def run(self, build_id: str, instance_name: str) -> BuildOutcome:
        """Execute every stage and return the final outcome.

        Expected failures (stage errors, missing inputs, I/O errors) are
        recorded on the build and returned as a FAILED outcome.  Anything
        else is recorded and then re-raised.
        """
        start = time.monotonic()
        avg_weight: float | None = None
        staging: Path | None = None
        try:
            inst = self._registry.get(instance_name)
            snapshot = await self._source.snapshot()
            avg_weight = snapshot.avg_weight
            await self._record_snapshot(build_id, snapshot)

            pbf = await self._pbf_for(build_id)
            staging, script_name = await asyncio.to_thread(self._prepare_staging, inst, pbf)

            await self._update("mark_building", build_id)
            logger.info(
                "Build %s for %s started (%d segments, %s)",
                build_id[:12],
                instance_name,
                snapshot.total_segments,
                self._settings.algorithm.value,
                extra={"instance": instance_name, "build_id": build_id},
            )
            await self._tool("extract", self._toolchain.extract(staging, script_name), staging)
            for stage, argv in self._toolchain.contraction_steps(staging):
                await self._tool(stage, argv, staging)

            if self._settings.validate_artifacts:
                await self._update("mark_testing", build_id)
                await asyncio.to_thread(self._validate, staging)

            workdir = staging.parent
            await asyncio.to_thread(self._promote, staging, workdir)
            output_path = str(workdir / OSRM_FILENAME)
            await self._update("mark_ready", build_id, output_path, avg_weight)
        except (FleetError, OSError) as exc:
            return await self._fail(build_id, instance_name, exc, start)
        except Exception as exc:
            await self._fail(build_id, instance_name, exc, start)
            raise
        finally:
            if staging is not None:
                await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)

        duration = round(time.monotonic() - start, 3)
        logger.info(
            "Build %s for %s READY in %.1fs",
            build_id[:12],
            instance_name,
            duration,
            extra={"instance": instance_name, "build_id": build_id},
        )
        return BuildOutcome(
            build_id=build_id,
            instance_name=instance_name,
            status=BuildStatus.READY,
            osrm_output_path=output_path,
            avg_weight=avg_weight,
            duration_seconds=duration,
        )

    async def _fail(
        self,
        build_id: str,
        instance_name: str,
        exc: BaseException,
        start: float,
    ) -> BuildOutcome:
        message = truncate_error(str(exc) or type(exc).__name__)
        logger.error(
            "Build %s for %s FAILED: %s",
            build_id[:12],
            instance_name,
            message,
            extra={"instance": instance_name, "build_id": build_id},
        )
        try:
            await self._update("mark_failed", build_id, message)
        except Exception as persist_exc:  # noqa: BLE001
            # Never mask the stage failure with a bookkeeping failure.
            logger.error(
                "Could not record failure of build %s: %s",
                build_id[:12],
                str(persist_exc)[:200],
            )
        return BuildOutcome(
            build_id=build_id,
            instance_name=instance_name,
            status=BuildStatus.FAILED,
            error_message=message,
            duration_seconds=round(time.monotonic() - start, 3),
        )
