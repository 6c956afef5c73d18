"""Read-only access to the road database that feeds routing builds."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from fleet_engine.models.build import SourceSnapshot

logger = logging.getLogger(__name__)

_SNAPSHOT_SQL = text("SELECT count(*), avg(current_weight) FROM road_segments")


class SegmentSource:
    """Reads segment count and mean weight at the moment a build starts.

    The snapshot is provenance only.  When no source database is configured
    or the query fails, an empty snapshot is returned so the build proceeds
    on whatever extract is on disk.
    """

    def __init__(self, engine: AsyncEngine | None) -> None:
        self._engine = engine

    async def snapshot(self) -> SourceSnapshot:
        taken_at = datetime.now(UTC)
        if self._engine is None:
            return SourceSnapshot(taken_at=taken_at)
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(_SNAPSHOT_SQL)).one()
        except SQLAlchemyError as exc:
            logger.warning("Road segment snapshot unavailable: %s", str(exc)[:200])
            return SourceSnapshot(taken_at=taken_at)
        count, avg_weight = row[0], row[1]
        return SourceSnapshot(
            taken_at=taken_at,
            total_segments=int(count or 0),
            avg_weight=float(avg_weight) if avg_weight is not None else None,
        )

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
