"""Active/standby cutover for each vehicle profile.

Every profile is served by a pair of instances.  One is *active* (receives
traffic); the other is *standby* and is where new builds land.  A cutover
promotes the standby only after it has proven healthy on its new data, so a
profile always keeps at least one healthy serving instance:

1. restart the standby on its latest READY build;
2. probe it with backoff -- if it never becomes healthy, stop it, make sure
   the active is still serving, and report failure with roles unchanged;
3. stop the old active and re-probe the new one -- if that check fails,
   bring the old active back and report failure;
4. otherwise persist the swapped roles, mark the build DEPLOYED and the
   superseded deployment DEPRECATED.

Roles survive restarts through the ``instance_roles`` table.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_engine.errors import CutoverError, FleetError, StopFailedError
from fleet_engine.lifecycle.manager import ContainerLifecycleManager
from fleet_engine.models.build import BuildOutcome
from fleet_engine.models.instance import CutoverResult, InstanceDescriptor, InstanceRole
from fleet_engine.state.database import session_scope
from fleet_engine.state.repository import BuildRepository, RoleRepository

logger = logging.getLogger(__name__)

Builder = Callable[[str], Awaitable[BuildOutcome]]


class DeploymentCutoverController:
    """Owns instance roles and performs health-gated swaps.

    Parameters
    ----------
    session_factory:
        Factory for sessions on the build record store.
    lifecycle:
        Process control for the instances being swapped.
    builder:
        Coroutine running one full build for an instance, used by
        :meth:`build_and_deploy`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: ContainerLifecycleManager,
        builder: Builder | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._lifecycle = lifecycle
        self._registry = lifecycle.registry
        self._builder = builder
        self._roles: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def set_builder(self, builder: Builder) -> None:
        self._builder = builder

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def load_roles(self) -> dict[str, str]:
        """Recover the active instance of every profile.

        Order of precedence: the persisted role, the instance whose build
        was deployed most recently, the lowest-id instance.
        """
        async with session_scope(self._session_factory) as session:
            roles = RoleRepository(session)
            builds = BuildRepository(session)
            for profile in self._registry.profiles:
                members = self._registry.for_profile(profile)
                names = {m.name for m in members}
                active = await roles.get_active(profile)
                if active not in names:
                    active = None
                    latest_at = None
                    for member in members:
                        record = await builds.get_latest_deployed(member.name)
                        if record is None or record.deployed_at is None:
                            continue
                        if latest_at is None or record.deployed_at > latest_at:
                            active, latest_at = member.name, record.deployed_at
                    if active is None:
                        active = members[0].name
                    await roles.set_active(profile, active)
                self._roles[profile] = active
        logger.info("Active instances: %s", ", ".join(f"{p}={a}" for p, a in sorted(self._roles.items())))
        return dict(self._roles)

    def active_for(self, profile: str) -> str:
        members = self._registry.for_profile(profile)
        return self._roles.get(profile, members[0].name)

    def standby_for(self, profile: str) -> str:
        active = self.active_for(profile)
        for member in self._registry.for_profile(profile):
            if member.name != active:
                return member.name
        raise CutoverError(f"Profile {profile!r} has no standby instance")

    def role_of(self, instance_name: str) -> InstanceRole:
        inst = self._registry.get(instance_name)
        return InstanceRole.ACTIVE if self.active_for(inst.profile) == inst.name else InstanceRole.STANDBY

    def describe(self) -> list[InstanceDescriptor]:
        return [
            InstanceDescriptor(
                id=inst.id,
                name=inst.name,
                profile=inst.profile,
                port=inst.port,
                data_path=str(self._registry.data_path(inst)),
                role=self.role_of(inst.name),
            )
            for inst in self._registry
        ]

    def _lock(self, profile: str) -> asyncio.Lock:
        lock = self._locks.get(profile)
        if lock is None:
            lock = self._locks[profile] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Cutover
    # ------------------------------------------------------------------

    async def rolling_restart(self, profile: str) -> CutoverResult:
        """Promote the standby of *profile* onto its latest READY build.

        Raises
        ------
        CutoverError
            The standby has no READY build to deploy, or a build of it is
            still in flight.
        """
        async with self._lock(profile):
            active = self.active_for(profile)
            standby = self.standby_for(profile)

            async with session_scope(self._session_factory) as session:
                builds = BuildRepository(session)
                running = await builds.get_current(standby)
                ready = await builds.get_latest_ready(standby)
            if running is not None:
                raise CutoverError(
                    f"Standby {standby} has build {running.build_id[:12]} {running.status.value}; wait for it to finish"
                )
            if ready is None:
                raise CutoverError(f"No READY build for standby {standby}; build it first")

            logger.info(
                "Cutover %s: %s -> %s (build %s)",
                profile,
                active,
                standby,
                ready.build_id[:12],
                extra={"profile": profile, "build_id": ready.build_id},
            )
            result = CutoverResult(profile=profile, success=False, previous_active=active, build_id=ready.build_id)

            try:
                await self._lifecycle.restart(standby)
            except (FleetError, OSError) as exc:
                result.error = f"standby {standby} failed to start: {exc}"
                return await self._abort(result, active, standby)

            health = await self._lifecycle.wait_healthy(standby)
            if not health.healthy:
                result.error = f"standby {standby} unhealthy: {health.message}"
                return await self._abort(result, active, standby)

            swap_start = time.monotonic()
            try:
                await self._lifecycle.stop(active)
            except StopFailedError as exc:
                result.warnings.append(f"old active {active} did not stop cleanly: {exc}")

            post = await self._lifecycle.health_check(standby)
            if not post.healthy:
                result.error = f"new active {standby} failed post-swap check: {post.message}"
                return await self._abort(result, active, standby)

            async with session_scope(self._session_factory) as session:
                await RoleRepository(session).set_active(profile, standby)
                builds = BuildRepository(session)
                await builds.mark_deployed(ready.build_id)
                await builds.deprecate_deployed(active)
            self._roles[profile] = standby

            result.success = True
            result.new_active = standby
            result.downtime_seconds = round(time.monotonic() - swap_start, 3)
            logger.info("Cutover %s complete: %s is active", profile, standby, extra={"profile": profile})
            return result

    async def _abort(self, result: CutoverResult, active: str, standby: str) -> CutoverResult:
        """Stop the failed standby and make sure the previous active serves."""
        logger.error("Cutover %s aborted: %s", result.profile, result.error, extra={"profile": result.profile})
        try:
            await self._lifecycle.stop(standby)
        except (FleetError, OSError) as exc:
            result.warnings.append(f"could not stop standby {standby}: {exc}")
        result.restored = await self._ensure_serving(active, result)
        result.new_active = active
        return result

    async def _ensure_serving(self, instance_name: str, result: CutoverResult) -> bool:
        if (await self._lifecycle.health_check(instance_name)).healthy:
            return True
        logger.warning("Previous active %s is not healthy; restarting it", instance_name)
        try:
            await self._lifecycle.restart(instance_name)
        except (FleetError, OSError) as exc:
            result.warnings.append(f"could not restart {instance_name}: {exc}")
            return False
        return (await self._lifecycle.wait_healthy(instance_name)).healthy

    async def rolling_restart_all(self) -> list[CutoverResult]:
        results: list[CutoverResult] = []
        for profile in self._registry.profiles:
            try:
                results.append(await self.rolling_restart(profile))
            except CutoverError as exc:
                results.append(CutoverResult(profile=profile, success=False, error=str(exc)))
        return results

    async def build_and_deploy(self, profile: str) -> CutoverResult:
        """Build the standby of *profile*, then cut over to it."""
        if self._builder is None:
            raise RuntimeError("DeploymentCutoverController.build_and_deploy requires a builder")
        standby = self.standby_for(profile)
        outcome = await self._builder(standby)
        if not outcome.succeeded:
            return CutoverResult(
                profile=profile,
                success=False,
                previous_active=self.active_for(profile),
                new_active=self.active_for(profile),
                build_id=outcome.build_id,
                error=f"build of {standby} failed: {outcome.error_message}",
            )
        return await self.rolling_restart(profile)
