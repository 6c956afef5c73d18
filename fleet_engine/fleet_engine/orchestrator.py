"""Composition root shared by the HTTP API and the CLI.

:class:`FleetOrchestrator` wires the build record store, the sequential
executor, the pipeline runner, the lifecycle manager and the cutover
controller together, and exposes the operations both front ends need.
Status and history reads go straight to the store and never wait on an
executor slot.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fleet_engine.config import FleetSettings
from fleet_engine.deploy.cutover import DeploymentCutoverController
from fleet_engine.errors import BuildInProgressError, CutoverError
from fleet_engine.executor.pipeline import PipelineRunner, resolve_input_pbf
from fleet_engine.executor.sequential import SequentialBuildExecutor
from fleet_engine.lifecycle.manager import ContainerLifecycleManager
from fleet_engine.models.build import BuildOutcome, BuildRecord
from fleet_engine.models.instance import CutoverResult
from fleet_engine.registry import InstanceRegistry
from fleet_engine.state.database import get_engine, get_session_factory, session_scope
from fleet_engine.state.repository import BuildRepository
from fleet_engine.state.source import SegmentSource
from fleet_engine.state.sqlite_adapter import create_tables

logger = logging.getLogger(__name__)


class FleetOrchestrator:
    """Facade over every orchestrator component.

    Parameters
    ----------
    settings:
        Fleet configuration.
    engine:
        Build record store engine; created from ``settings.database_url``
        when omitted.
    lifecycle:
        Lifecycle manager override (tests inject fakes here).
    pipeline:
        Pipeline runner override.
    source:
        Road database reader override.
    """

    def __init__(
        self,
        settings: FleetSettings,
        *,
        engine: AsyncEngine | None = None,
        lifecycle: ContainerLifecycleManager | None = None,
        pipeline: PipelineRunner | None = None,
        source: SegmentSource | None = None,
    ) -> None:
        self.settings = settings
        self.engine = engine or get_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        self.session_factory: async_sessionmaker[AsyncSession] = get_session_factory(self.engine)
        self.registry = InstanceRegistry(settings)

        if source is None:
            source = SegmentSource(get_engine(settings.source_database_url) if settings.source_database_url else None)
        self.source = source
        self.executor = SequentialBuildExecutor(
            self.session_factory,
            settings.pipeline_version,
            stale_after_seconds=settings.stale_build_seconds,
        )
        self.pipeline = pipeline or PipelineRunner(settings, self.session_factory, source)
        self.lifecycle = lifecycle or ContainerLifecycleManager(settings)
        self.lifecycle.set_builder(self.build)
        self.cutover = DeploymentCutoverController(self.session_factory, self.lifecycle, self.build)
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """Ensure tables (local store), recover stale builds, load roles."""
        if self.settings.is_local_store:
            await create_tables(self.engine)
        await self.executor.recover_stale(self.settings.stale_build_seconds)
        await self.cutover.load_roles()

    async def shutdown(self) -> None:
        if self._tasks:
            logger.info("Waiting for %d background task(s)", len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.source.dispose()
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    async def build(self, instance_name: str) -> BuildOutcome:
        """Queue behind any running build of *instance_name*, then build it.

        Unknown instances and missing inputs are rejected before a record is
        created.
        """
        inst = self.registry.get(instance_name)
        pbf = resolve_input_pbf(self.settings)
        return await self.executor.submit(
            inst.name,
            lambda record: self.pipeline.run(record.build_id, record.instance_name),
            pbf_file_path=str(pbf),
        )

    async def build_all(self) -> list[BuildOutcome]:
        """Build every instance; different instances build concurrently.

        Every build runs to completion before the first rejection, if any, is
        raised.
        """
        results = await asyncio.gather(*(self.build(name) for name in self.registry.names), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)  # type: ignore[arg-type]

    def _spawn(self, coro: Any, label: str) -> None:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Background %s failed: %s", label, exc, exc_info=exc)

        task.add_done_callback(_done)

    async def submit_build(self, instance_name: str) -> dict[str, Any]:
        """Accept a build request and run it in the background.

        Returns the acceptance answer; ``queued`` tells whether the build
        will wait behind one already in flight in this process.  A live
        build of the instance owned by another process is rejected with
        :class:`BuildInProgressError`.
        """
        inst = self.registry.get(instance_name)
        resolve_input_pbf(self.settings)
        await self.executor.check_admissible(inst.name)
        queued = self.executor.pending(inst.name) > 0
        self._spawn(self.build(inst.name), f"build:{inst.name}")
        logger.info("Accepted build for %s%s", inst.name, " (queued)" if queued else "")
        return {"instance": inst.name, "accepted": True, "queued": queued}

    async def submit_build_all(self) -> list[dict[str, Any]]:
        """Submit every instance; ones building elsewhere are reported, not accepted."""
        resolve_input_pbf(self.settings)
        answers: list[dict[str, Any]] = []
        for name in self.registry.names:
            try:
                answers.append(await self.submit_build(name))
            except BuildInProgressError as exc:
                logger.warning("Skipping build of %s: %s", name, exc)
                answers.append({"instance": name, "accepted": False, "queued": False, "detail": str(exc)})
        return answers

    # ------------------------------------------------------------------
    # Cutover
    # ------------------------------------------------------------------

    async def rolling_restart(self, profile: str | None = None) -> list[CutoverResult]:
        if profile is None:
            return await self.cutover.rolling_restart_all()
        self.registry.for_profile(profile)
        return [await self.cutover.rolling_restart(profile)]

    def submit_rolling_restart(self, profile: str) -> dict[str, Any]:
        """Validate *profile* and run its cutover in the background."""
        self.registry.for_profile(profile)
        self._spawn(self._logged_cutover(profile), f"cutover:{profile}")
        return {"profile": profile, "accepted": True, "standby": self.cutover.standby_for(profile)}

    async def deploy(self, profile: str) -> CutoverResult:
        """Build the standby of *profile* and cut over to it."""
        self.registry.for_profile(profile)
        resolve_input_pbf(self.settings)
        return await self.cutover.build_and_deploy(profile)

    def submit_deploy(self, profile: str) -> dict[str, Any]:
        """Validate *profile* and the input, then build and deploy in the background."""
        self.registry.for_profile(profile)
        resolve_input_pbf(self.settings)
        self._spawn(self._logged_cutover(profile, build_first=True), f"deploy:{profile}")
        return {"profile": profile, "accepted": True, "standby": self.cutover.standby_for(profile)}

    async def _logged_cutover(self, profile: str, build_first: bool = False) -> None:
        try:
            if build_first:
                result = await self.cutover.build_and_deploy(profile)
            else:
                result = await self.cutover.rolling_restart(profile)
        except CutoverError as exc:
            logger.error("Cutover %s not attempted: %s", profile, exc)
            return
        if result.success:
            logger.info("Cutover %s succeeded; active=%s", profile, result.new_active)
        else:
            logger.error("Cutover %s failed: %s", profile, result.error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def build_status(self, instance_name: str) -> dict[str, BuildRecord | None]:
        inst = self.registry.get(instance_name)
        async with session_scope(self.session_factory) as session:
            repo = BuildRepository(session)
            return {
                "current": await repo.get_current(inst.name),
                "latest_ready": await repo.get_latest_ready(inst.name),
                "latest_deployed": await repo.get_latest_deployed(inst.name),
            }

    async def history(self, instance_name: str | None = None, limit: int = 20) -> list[BuildRecord]:
        if instance_name is not None:
            instance_name = self.registry.get(instance_name).name
        async with session_scope(self.session_factory) as session:
            return await BuildRepository(session).history(instance_name, limit)

    async def fleet_status(self, include_health: bool = True) -> list[dict[str, Any]]:
        """Role, process state and (optionally) route health per instance."""
        rows: list[dict[str, Any]] = []
        for descriptor in self.cutover.describe():
            proc = await self.lifecycle.status(descriptor.name)
            row: dict[str, Any] = {
                **descriptor.model_dump(mode="json"),
                "running": proc.running,
                "pids": proc.pids,
                "managed": proc.managed,
                "has_artifact": proc.has_artifact,
                "building": self.executor.is_busy(descriptor.name),
                "healthy": None,
            }
            if include_health and proc.running:
                row["healthy"] = (await self.lifecycle.health_check(descriptor.name)).healthy
            rows.append(row)
        return rows
