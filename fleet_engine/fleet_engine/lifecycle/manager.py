"""Start, stop, restart, rebuild and probe routing instances.

Every operation is keyed by instance name or numeric id and validated
against the registry first.  Process launch, signalling, port probing and
route probing are injectable collaborators so the state machine can be
exercised without real ``osrm-routed`` binaries.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from fleet_engine.config import FleetSettings, InstanceConfig
from fleet_engine.errors import (
    BuildFailedError,
    MissingArtifactError,
    PortInUseError,
    RestartError,
    StartFailedError,
    StopFailedError,
)
from fleet_engine.executor.pipeline import discard_artifacts
from fleet_engine.executor.retry import RetryConfig, async_retry_with_backoff
from fleet_engine.executor.toolchain import OSRM_FILENAME
from fleet_engine.lifecycle.health import RouteProbe
from fleet_engine.lifecycle.process import PortProbe, read_log_tail, send_signal, spawn_routed
from fleet_engine.models.build import BuildOutcome
from fleet_engine.models.instance import ActionResult, HealthResult, ProcessStatus
from fleet_engine.registry import InstanceRegistry

logger = logging.getLogger(__name__)

Spawner = Callable[[str, str, int, Path], Awaitable[asyncio.subprocess.Process]]
Signaller = Callable[[int, signal.Signals], bool]
Builder = Callable[[str], Awaitable[BuildOutcome]]


class _Unhealthy(Exception):
    def __init__(self, result: HealthResult) -> None:
        super().__init__(result.message)
        self.result = result


class ContainerLifecycleManager:
    """Process-level control over the ``osrm-routed`` servers of the fleet.

    Parameters
    ----------
    settings:
        Fleet configuration (binary, algorithm, timeouts).
    probe:
        Port occupancy and pid lookup.
    health:
        Route probe used by :meth:`health_check`.
    spawner:
        Coroutine launching a server; defaults to :func:`spawn_routed`.
    signaller:
        Signal delivery; defaults to :func:`send_signal`.
    builder:
        Coroutine running one full build for an instance, used by
        :meth:`rebuild`.  Supplied by the orchestrator.
    """

    def __init__(
        self,
        settings: FleetSettings,
        *,
        probe: PortProbe | None = None,
        health: RouteProbe | None = None,
        spawner: Spawner = spawn_routed,
        signaller: Signaller = send_signal,
        builder: Builder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._registry = InstanceRegistry(settings)
        self._probe = probe or PortProbe()
        self._health = health or RouteProbe(
            settings.health_probe_from,
            settings.health_probe_to,
            timeout=settings.health_timeout_seconds,
        )
        self._spawn = spawner
        self._signal = signaller
        self._builder = builder
        self._sleep = sleep
        self._procs: dict[str, asyncio.subprocess.Process] = {}

    @property
    def registry(self) -> InstanceRegistry:
        return self._registry

    def set_builder(self, builder: Builder) -> None:
        self._builder = builder

    def artifact_path(self, inst: InstanceConfig) -> Path:
        return self._registry.data_path(inst) / OSRM_FILENAME

    def _managed(self, name: str) -> asyncio.subprocess.Process | None:
        proc = self._procs.get(name)
        if proc is not None and proc.returncode is None:
            return proc
        return None

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, key: str | int) -> ActionResult:
        """Launch the server and wait until its port accepts connections.

        Raises
        ------
        MissingArtifactError
            No ``network.osrm`` in the data path; nothing is spawned.
        PortInUseError
            Something already listens on the instance port.
        StartFailedError
            The server could not be launched, exited early, or never bound
            within the timeout.
        """
        inst = self._registry.get(key)
        workdir = self._registry.data_path(inst)
        if not self.artifact_path(inst).is_file():
            raise MissingArtifactError(f"{inst.name}: no routing data at {self.artifact_path(inst)}")
        if await self._probe.is_bound(inst.port):
            raise PortInUseError(inst.name, f"port {inst.port} is already in use")

        try:
            proc = await self._spawn(
                self._settings.routed_binary,
                self._settings.algorithm.value,
                inst.port,
                workdir,
            )
        except OSError as exc:
            raise StartFailedError(inst.name, f"could not launch {self._settings.routed_binary}: {exc}") from exc
        self._procs[inst.name] = proc

        deadline = time.monotonic() + self._settings.startup_timeout_seconds
        while True:
            if proc.returncode is not None:
                self._procs.pop(inst.name, None)
                tail = read_log_tail(workdir)
                raise StartFailedError(
                    inst.name,
                    f"osrm-routed exited with code {proc.returncode}" + (f": {tail}" if tail else ""),
                )
            if await self._probe.is_bound(inst.port):
                break
            if time.monotonic() >= deadline:
                await self._terminate(proc)
                self._procs.pop(inst.name, None)
                raise StartFailedError(
                    inst.name,
                    f"port {inst.port} not bound after {self._settings.startup_timeout_seconds:.0f}s",
                )
            await self._sleep(self._settings.port_poll_interval)

        logger.info("Started %s on port %d (pid %d)", inst.name, inst.port, proc.pid)
        return ActionResult(instance_name=inst.name, action="start", success=True, message=f"listening on {inst.port}")

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            self._signal(proc.pid, signal.SIGKILL)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._settings.stop_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("pid %d did not exit after SIGKILL", proc.pid)

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    async def stop(self, key: str | int) -> ActionResult:
        """Stop whatever serves the instance port; a no-op when nothing runs.

        SIGTERM first, SIGKILL only after ``stop_grace_seconds``.

        Raises
        ------
        StopFailedError
            The port is still bound after escalation.
        """
        inst = self._registry.get(key)
        managed = self._managed(inst.name)
        pids = set(await self._probe.find_pids(inst.port))
        if managed is not None:
            pids.add(managed.pid)

        if not pids and not await self._probe.is_bound(inst.port):
            self._procs.pop(inst.name, None)
            logger.info("%s already stopped", inst.name)
            return ActionResult(instance_name=inst.name, action="stop", success=True, message="not running")

        for pid in sorted(pids):
            self._signal(pid, signal.SIGTERM)

        if not await self._wait_released(inst, managed, self._settings.stop_grace_seconds):
            logger.warning("%s ignored SIGTERM for %.0fs; sending SIGKILL", inst.name, self._settings.stop_grace_seconds)
            for pid in sorted(pids | set(await self._probe.find_pids(inst.port))):
                self._signal(pid, signal.SIGKILL)
            if not await self._wait_released(inst, managed, self._settings.stop_grace_seconds):
                raise StopFailedError(inst.name, f"port {inst.port} still bound after SIGKILL")

        self._procs.pop(inst.name, None)
        logger.info("Stopped %s (pids %s)", inst.name, ", ".join(str(p) for p in sorted(pids)) or "-")
        return ActionResult(instance_name=inst.name, action="stop", success=True, message="stopped")

    async def _wait_released(
        self,
        inst: InstanceConfig,
        managed: asyncio.subprocess.Process | None,
        grace: float,
    ) -> bool:
        deadline = time.monotonic() + grace
        while True:
            exited = managed is None or managed.returncode is not None
            if exited and not await self._probe.is_bound(inst.port):
                return True
            if time.monotonic() >= deadline:
                return False
            await self._sleep(self._settings.port_poll_interval)

    # ------------------------------------------------------------------
    # restart / rebuild
    # ------------------------------------------------------------------

    async def restart(self, key: str | int) -> ActionResult:
        """Stop then start; a failed start leaves the instance stopped."""
        inst = self._registry.get(key)
        await self.stop(inst.name)
        try:
            await self.start(inst.name)
        except (MissingArtifactError, PortInUseError, StartFailedError) as exc:
            raise RestartError(inst.name, f"stopped but could not start: {exc}") from exc
        return ActionResult(instance_name=inst.name, action="restart", success=True, message="restarted")

    async def rebuild(self, key: str | int) -> ActionResult:
        """Stop, discard served artifacts, run a full build, start again.

        Raises
        ------
        BuildFailedError
            The build finished FAILED; the instance stays stopped.
        """
        if self._builder is None:
            raise RuntimeError("ContainerLifecycleManager.rebuild requires a builder")
        inst = self._registry.get(key)
        await self.stop(inst.name)
        removed = await asyncio.to_thread(discard_artifacts, self._registry.data_path(inst))
        logger.info("Discarded %d artifact file(s) for %s", removed, inst.name)

        outcome = await self._builder(inst.name)
        if not outcome.succeeded:
            raise BuildFailedError(inst.name, f"rebuild failed: {outcome.error_message}", outcome.build_id)
        await self.start(inst.name)
        return ActionResult(
            instance_name=inst.name,
            action="rebuild",
            success=True,
            message="rebuilt and started",
            build_id=outcome.build_id,
        )

    # ------------------------------------------------------------------
    # probes
    # ------------------------------------------------------------------

    async def health_check(self, key: str | int) -> HealthResult:
        inst = self._registry.get(key)
        return await self._health.check(inst.name, inst.port)

    async def wait_healthy(self, key: str | int, config: RetryConfig | None = None) -> HealthResult:
        """Poll :meth:`health_check` with backoff; return the last result."""
        inst = self._registry.get(key)
        config = config or RetryConfig(
            max_retries=self._settings.health_max_retries,
            base_delay=self._settings.health_retry_base_delay,
        )

        async def _attempt() -> HealthResult:
            result = await self.health_check(inst.name)
            if not result.healthy:
                raise _Unhealthy(result)
            return result

        try:
            return await async_retry_with_backoff(_attempt, config, (_Unhealthy,), sleep=self._sleep)
        except _Unhealthy as exc:
            return exc.result

    async def status(self, key: str | int) -> ProcessStatus:
        inst = self._registry.get(key)
        running = await self._probe.is_bound(inst.port)
        pids = await self._probe.find_pids(inst.port) if running else []
        return ProcessStatus(
            instance_name=inst.name,
            port=inst.port,
            running=running,
            pids=pids,
            managed=self._managed(inst.name) is not None,
            has_artifact=self.artifact_path(inst).is_file(),
        )
