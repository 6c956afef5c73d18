"""Per-instance admission gate for routing-data builds.

At most one build per instance is ever in flight.  A submission for a busy
instance waits for the running build (and any earlier waiters) to finish;
submissions for different instances never wait on each other.

Crash recovery
--------------
Slots live in memory, so after a process restart the store may still hold
PENDING/BUILDING/TESTING records that nobody is working on.  Two sweeps
mark them FAILED:

* :meth:`SequentialBuildExecutor.recover_stale` at startup, for records older
  than the staleness window;
* at admission, in-flight records of the instance that are older than the
  same window.

Several orchestrator processes (the API server and one per CLI command)
share one store, so a younger in-flight record may belong to a live build
in another process.  Admission is then refused with
:class:`~fleet_engine.errors.BuildInProgressError`; the record is left alone.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_engine.errors import BuildInProgressError
from fleet_engine.models.build import IN_FLIGHT_STATUSES, BuildRecord
from fleet_engine.state.database import session_scope
from fleet_engine.state.repository import BuildRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_REASON = "stale: orchestrator restarted while build was in flight"
ORPHAN_REASON = "orphaned: no progress within the staleness window"
UNSETTLED_REASON = "abandoned: build operation ended without a final status"
DEFAULT_STALE_AFTER_SECONDS = 6 * 3600


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class SequentialBuildExecutor:
    """Serialises builds per instance and creates their build records.

    Parameters
    ----------
    session_factory:
        Factory for sessions on the build record store.
    pipeline_version:
        Stamped on every record created at admission.
    stale_after_seconds:
        Age after which an in-flight record is presumed abandoned.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pipeline_version: str | None = None,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._pipeline_version = pipeline_version
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._slots: dict[str, _Slot] = {}

    def is_busy(self, instance_name: str) -> bool:
        slot = self._slots.get(instance_name)
        return slot is not None and slot.lock.locked()

    def pending(self, instance_name: str) -> int:
        """Number of submissions running or queued for *instance_name*."""
        slot = self._slots.get(instance_name)
        return slot.users if slot is not None else 0

    async def submit(
        self,
        instance_name: str,
        operation: Callable[[BuildRecord], Awaitable[T]],
        *,
        pbf_file_path: str | None = None,
    ) -> T:
        """Wait for the instance slot, create a PENDING record, run *operation*.

        The operation's result is returned and its exceptions propagate; no
        retry is attempted.  A record the operation leaves in flight is marked
        FAILED once it ends.
        """
        slot = self._slots.get(instance_name)
        if slot is None:
            slot = self._slots[instance_name] = _Slot()
        slot.users += 1
        if slot.users > 1:
            logger.info("Build for %s queued behind %d other(s)", instance_name, slot.users - 1)
        try:
            async with slot.lock:
                record = await self._admit(instance_name, pbf_file_path)
                try:
                    return await operation(record)
                finally:
                    await self._settle_unfinished(record.build_id)
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[instance_name]

    async def check_admissible(self, instance_name: str) -> None:
        """Raise :class:`BuildInProgressError` if another process is building *instance_name*.

        Builds queued or running in this executor are not a conflict; they
        only make a new submission wait.
        """
        if self.pending(instance_name):
            return
        cutoff = datetime.now(UTC) - self._stale_after
        async with session_scope(self._session_factory) as session:
            live = await BuildRepository(session).get_current(instance_name)
        if live is not None and live.created_at is not None and live.created_at >= cutoff:
            raise BuildInProgressError(instance_name, live.build_id)

    async def _admit(self, instance_name: str, pbf_file_path: str | None) -> BuildRecord:
        cutoff = datetime.now(UTC) - self._stale_after
        async with session_scope(self._session_factory) as session:
            orphaned = await BuildRepository(session).fail_orphaned(instance_name, ORPHAN_REASON, cutoff)
        if orphaned:
            logger.warning("Marked %d orphaned build(s) for %s as FAILED", len(orphaned), instance_name)

        async with session_scope(self._session_factory) as session:
            repo = BuildRepository(session)
            live = await repo.get_current(instance_name)
            if live is not None:
                raise BuildInProgressError(instance_name, live.build_id)
            return await repo.create(
                instance_name,
                pbf_file_path=pbf_file_path,
                pipeline_version=self._pipeline_version,
            )

    async def _settle_unfinished(self, build_id: str) -> None:
        """Fail *build_id* if its operation returned without settling it."""
        try:
            async with session_scope(self._session_factory) as session:
                repo = BuildRepository(session)
                record = await repo.get(build_id)
                if record is not None and record.status in IN_FLIGHT_STATUSES:
                    await repo.mark_failed(build_id, UNSETTLED_REASON)
                    logger.warning(
                        "Build %s left %s by its operation; marked FAILED",
                        build_id[:12],
                        record.status.value,
                    )
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not settle build %s: %s", build_id[:12], str(exc)[:200])

    async def recover_stale(self, max_age_seconds: int) -> list[str]:
        """Mark in-flight records older than *max_age_seconds* as FAILED."""
        cutoff = datetime.now(UTC) - timedelta(seconds=max_age_seconds)
        async with session_scope(self._session_factory) as session:
            failed = await BuildRepository(session).fail_stale(cutoff, STALE_REASON)
        if failed:
            logger.warning("Recovered %d stale build(s): %s", len(failed), ", ".join(b[:12] for b in failed))
        return failed
