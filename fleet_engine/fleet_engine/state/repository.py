"""Repository classes providing access to the build record store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``;
the caller is responsible for committing (or relying on
:func:`fleet_engine.state.database.session_scope`).

Status changes are conditional updates: the ``WHERE`` clause only matches
rows whose current status may legally move to the target, so a late or
duplicate writer can never move a record backwards.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_engine.errors import InvalidTransitionError
from fleet_engine.models.build import (
    IN_FLIGHT_STATUSES,
    BuildRecord,
    BuildStatus,
    SourceSnapshot,
    allowed_predecessors,
    truncate_error,
)
from fleet_engine.state.tables import BuildTable, InstanceRoleTable

logger = logging.getLogger(__name__)

_MAX_HISTORY_PAGE_SIZE = 500
_IN_FLIGHT_VALUES = tuple(s.value for s in IN_FLIGHT_STATUSES)


def _now() -> datetime:
    return datetime.now(UTC)


def row_to_record(row: BuildTable) -> BuildRecord:
    """Convert a ``BuildTable`` row into a :class:`BuildRecord`."""
    return BuildRecord(
        build_id=row.build_id,
        instance_name=row.instance_name,
        status=BuildStatus(row.status),
        data_snapshot_time=row.data_snapshot_time,
        total_segments=row.total_segments or 0,
        pbf_file_path=row.pbf_file_path,
        pipeline_version=row.pipeline_version,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        deployed_at=row.deployed_at,
        osrm_output_path=row.osrm_output_path,
        avg_weight=row.avg_weight,
        error_message=row.error_message,
    )


# ---------------------------------------------------------------------------
# BuildRepository
# ---------------------------------------------------------------------------


class BuildRepository:
    """Create, transition and query rows of the ``osrm_builds`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        instance_name: str,
        *,
        pbf_file_path: str | None = None,
        pipeline_version: str | None = None,
        total_segments: int = 0,
    ) -> BuildRecord:
        """Insert a new PENDING record and return it."""
        row = BuildTable(
            build_id=uuid.uuid4().hex,
            instance_name=instance_name,
            status=BuildStatus.PENDING.value,
            pbf_file_path=pbf_file_path,
            pipeline_version=pipeline_version,
            total_segments=total_segments,
            created_at=_now(),
        )
        self._session.add(row)
        await self._session.flush()
        logger.info("Created build %s for %s", row.build_id[:12], instance_name)
        return row_to_record(row)

    async def _transition(
        self,
        build_id: str,
        target: BuildStatus,
        **values: Any,
    ) -> None:
        sources = tuple(s.value for s in allowed_predecessors(target))
        stmt = (
            update(BuildTable)
            .where(BuildTable.build_id == build_id, BuildTable.status.in_(sources))
            .values(status=target.value, **values)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            current = await self.get(build_id)
            raise InvalidTransitionError(
                build_id,
                target.value,
                current.status.value if current is not None else None,
            )
        await self._session.flush()

    async def record_snapshot(self, build_id: str, snapshot: SourceSnapshot) -> None:
        """Store source provenance; only allowed before the build settles."""
        stmt = (
            update(BuildTable)
            .where(BuildTable.build_id == build_id, BuildTable.status.in_(_IN_FLIGHT_VALUES))
            .values(
                data_snapshot_time=snapshot.taken_at,
                total_segments=snapshot.total_segments,
                avg_weight=snapshot.avg_weight,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise InvalidTransitionError(build_id, "snapshot")
        await self._session.flush()

    async def mark_building(self, build_id: str) -> None:
        await self._transition(build_id, BuildStatus.BUILDING, started_at=_now())

    async def mark_testing(self, build_id: str) -> None:
        await self._transition(build_id, BuildStatus.TESTING)

    async def mark_ready(
        self,
        build_id: str,
        osrm_output_path: str,
        avg_weight: float | None = None,
    ) -> None:
        values: dict[str, Any] = {"completed_at": _now(), "osrm_output_path": osrm_output_path}
        if avg_weight is not None:
            values["avg_weight"] = avg_weight
        await self._transition(build_id, BuildStatus.READY, **values)

    async def mark_failed(self, build_id: str, error_message: str) -> None:
        """Mark a build FAILED, truncating *error_message* to the column width."""
        await self._transition(
            build_id,
            BuildStatus.FAILED,
            completed_at=_now(),
            error_message=truncate_error(error_message),
        )

    async def mark_deployed(self, build_id: str) -> None:
        """Promote a READY build, deprecating the instance's current deployment.

        ``deployed_at`` is only ever written here, and READY is the only
        predecessor of DEPLOYED, so it is set at most once per record.
        """
        record = await self.get(build_id)
        if record is None:
            raise InvalidTransitionError(build_id, BuildStatus.DEPLOYED.value)
        await self.deprecate_deployed(record.instance_name, exclude=build_id)
        await self._transition(build_id, BuildStatus.DEPLOYED, deployed_at=_now())
        logger.info("Build %s deployed on %s", build_id[:12], record.instance_name)

    async def deprecate_deployed(self, instance_name: str, exclude: str | None = None) -> int:
        """Move every DEPLOYED record of *instance_name* to DEPRECATED."""
        stmt = update(BuildTable).where(
            BuildTable.instance_name == instance_name,
            BuildTable.status == BuildStatus.DEPLOYED.value,
        )
        if exclude is not None:
            stmt = stmt.where(BuildTable.build_id != exclude)
        result = await self._session.execute(stmt.values(status=BuildStatus.DEPRECATED.value))
        await self._session.flush()
        count: int = result.rowcount  # type: ignore[attr-defined]
        if count:
            logger.info("Deprecated %d deployed build(s) for %s", count, instance_name)
        return count

    # -- crash recovery -------------------------------------------------

    async def fail_stale(self, older_than: datetime, reason: str) -> list[str]:
        """Mark in-flight records created before *older_than* as FAILED."""
        stmt = select(BuildTable.build_id).where(
            BuildTable.status.in_(_IN_FLIGHT_VALUES),
            BuildTable.created_at < older_than,
        )
        return await self._fail_many(await self._session.scalars(stmt), reason)

    async def fail_orphaned(self, instance_name: str, reason: str, older_than: datetime) -> list[str]:
        """Mark in-flight records of *instance_name* created before *older_than* as FAILED."""
        stmt = select(BuildTable.build_id).where(
            BuildTable.instance_name == instance_name,
            BuildTable.status.in_(_IN_FLIGHT_VALUES),
            BuildTable.created_at < older_than,
        )
        return await self._fail_many(await self._session.scalars(stmt), reason)

    async def _fail_many(self, build_ids: Iterable[str], reason: str) -> list[str]:
        failed: list[str] = []
        for build_id in list(build_ids):
            try:
                await self.mark_failed(build_id, reason)
            except InvalidTransitionError:
                # Settled concurrently; nothing to recover.
                continue
            failed.append(build_id)
        return failed

    # -- queries --------------------------------------------------------

    async def get(self, build_id: str) -> BuildRecord | None:
        stmt = select(BuildTable).where(BuildTable.build_id == build_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return row_to_record(row) if row is not None else None

    async def get_current(self, instance_name: str) -> BuildRecord | None:
        """Return the newest in-flight record for *instance_name*, if any."""
        stmt = (
            select(BuildTable)
            .where(
                BuildTable.instance_name == instance_name,
                BuildTable.status.in_(_IN_FLIGHT_VALUES),
            )
            .order_by(BuildTable.created_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return row_to_record(row) if row is not None else None

    async def list_in_flight(self) -> list[BuildRecord]:
        stmt = (
            select(BuildTable)
            .where(BuildTable.status.in_(_IN_FLIGHT_VALUES))
            .order_by(BuildTable.created_at.asc())
        )
        return [row_to_record(row) for row in (await self._session.scalars(stmt)).all()]

    async def _latest_with_status(self, instance_name: str, status: BuildStatus) -> BuildRecord | None:
        stmt = (
            select(BuildTable)
            .where(BuildTable.instance_name == instance_name, BuildTable.status == status.value)
            .order_by(BuildTable.completed_at.desc().nulls_last(), BuildTable.created_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return row_to_record(row) if row is not None else None

    async def get_latest_ready(self, instance_name: str) -> BuildRecord | None:
        return await self._latest_with_status(instance_name, BuildStatus.READY)

    async def get_latest_deployed(self, instance_name: str) -> BuildRecord | None:
        return await self._latest_with_status(instance_name, BuildStatus.DEPLOYED)

    async def history(
        self,
        instance_name: str | None = None,
        limit: int = 20,
    ) -> list[BuildRecord]:
        """Return build records newest first, optionally for one instance."""
        limit = max(1, min(limit, _MAX_HISTORY_PAGE_SIZE))
        stmt = select(BuildTable)
        if instance_name is not None:
            stmt = stmt.where(BuildTable.instance_name == instance_name)
        stmt = stmt.order_by(BuildTable.created_at.desc()).limit(limit)
        return [row_to_record(row) for row in (await self._session.scalars(stmt)).all()]


# ---------------------------------------------------------------------------
# RoleRepository
# ---------------------------------------------------------------------------


class RoleRepository:
    """Persist which instance is active for each profile."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_active(self, profile: str) -> str | None:
        row = await self._session.get(InstanceRoleTable, profile)
        return row.active_instance if row is not None else None

    async def get_all(self) -> dict[str, str]:
        rows = (await self._session.scalars(select(InstanceRoleTable))).all()
        return {row.profile: row.active_instance for row in rows}

    async def set_active(self, profile: str, instance_name: str) -> None:
        row = await self._session.get(InstanceRoleTable, profile)
        if row is None:
            self._session.add(InstanceRoleTable(profile=profile, active_instance=instance_name, updated_at=_now()))
        else:
            row.active_instance = instance_name
            row.updated_at = _now()
        await self._session.flush()
        logger.info("Active instance for %s is now %s", profile, instance_name)
