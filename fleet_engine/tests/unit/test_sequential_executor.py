"""Tests for SequentialBuildExecutor admission and serialisation."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from fleet_engine.errors import BuildInProgressError
from fleet_engine.executor.sequential import (
    ORPHAN_REASON,
    STALE_REASON,
    UNSETTLED_REASON,
    SequentialBuildExecutor,
)
from fleet_engine.models.build import BuildRecord, BuildStatus
from fleet_engine.state.database import session_scope
from fleet_engine.state.repository import BuildRepository
from fleet_engine.state.tables import BuildTable


class _Tracker:
    """Records overlap of operations per instance."""

    def __init__(self) -> None:
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.order: list[str] = []
        self.global_active = 0
        self.global_max = 0

    def op(self, label: str, delay: float = 0.02):
        async def _run(record: BuildRecord) -> str:
            name = record.instance_name
            self.active[name] = self.active.get(name, 0) + 1
            self.max_active[name] = max(self.max_active.get(name, 0), self.active[name])
            self.global_active += 1
            self.global_max = max(self.global_max, self.global_active)
            self.order.append(label)
            await asyncio.sleep(delay)
            self.active[name] -= 1
            self.global_active -= 1
            return label

        return _run


class TestSerialisation:
    @pytest.mark.asyncio
    async def test_same_instance_runs_one_at_a_time_in_fifo_order(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory, "1")
        tracker = _Tracker()

        results = await asyncio.gather(*(executor.submit("car-1", tracker.op(f"b{i}")) for i in range(5)))

        assert results == [f"b{i}" for i in range(5)]
        assert tracker.max_active["car-1"] == 1
        assert tracker.order == [f"b{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_different_instances_run_concurrently(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory)
        tracker = _Tracker()

        await asyncio.gather(
            executor.submit("car-1", tracker.op("car", delay=0.1)),
            executor.submit("motorbike-1", tracker.op("moto", delay=0.1)),
        )

        assert tracker.global_max == 2

    @pytest.mark.asyncio
    async def test_each_submission_gets_new_pending_record(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory, "7")
        seen: list[BuildRecord] = []

        async def _capture(record: BuildRecord) -> None:
            seen.append(record)

        await executor.submit("car-1", _capture, pbf_file_path="/raw/a.osm.pbf")
        await executor.submit("car-1", _capture)

        assert len({r.build_id for r in seen}) == 2
        assert all(r.status == BuildStatus.PENDING for r in seen)
        assert seen[0].pbf_file_path == "/raw/a.osm.pbf"
        assert seen[0].pipeline_version == "7"

    @pytest.mark.asyncio
    async def test_bookkeeping_cleared_after_completion(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory)
        started = asyncio.Event()
        release = asyncio.Event()

        async def _blocking(record: BuildRecord) -> None:
            started.set()
            await release.wait()

        task = asyncio.create_task(executor.submit("car-1", _blocking))
        await started.wait()
        assert executor.is_busy("car-1")
        assert executor.pending("car-1") == 1

        queued = asyncio.create_task(executor.submit("car-1", _blocking))
        await asyncio.sleep(0.01)
        assert executor.pending("car-1") == 2

        release.set()
        await asyncio.gather(task, queued)
        assert not executor.is_busy("car-1")
        assert executor.pending("car-1") == 0

    @pytest.mark.asyncio
    async def test_failure_propagates_and_releases_slot(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory)

        async def _boom(record: BuildRecord) -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await executor.submit("car-1", _boom)

        assert executor.pending("car-1") == 0
        ok = await executor.submit("car-1", _Tracker().op("after"))
        assert ok == "after"

    @pytest.mark.asyncio
    async def test_unsettled_record_failed_when_operation_ends(self, session_factory) -> None:
        executor = SequentialBuildExecutor(session_factory)

        async def _walk_away(record: BuildRecord) -> str:
            async with session_scope(session_factory) as session:
                await BuildRepository(session).mark_building(record.build_id)
            return record.build_id

        build_id = await executor.submit("car-1", _walk_away)

        async with session_scope(session_factory) as session:
            record = await BuildRepository(session).get(build_id)
        assert record is not None and record.status == BuildStatus.FAILED
        assert record.error_message == UNSETTLED_REASON
        assert await executor.submit("car-1", _walk_away) != build_id


class TestRecovery:
    @pytest.mark.asyncio
    async def test_admission_fails_records_past_staleness_window(self, session_factory) -> None:
        async with session_scope(session_factory) as session:
            orphan = await BuildRepository(session).create("car-1")
            await BuildRepository(session).mark_building(orphan.build_id)
            await session.execute(
                update(BuildTable)
                .where(BuildTable.build_id == orphan.build_id)
                .values(created_at=datetime.now(UTC) - timedelta(hours=7))
            )

        executor = SequentialBuildExecutor(session_factory, stale_after_seconds=6 * 3600)

        async def _noop(record: BuildRecord) -> str:
            return record.build_id

        new_id = await executor.submit("car-1", _noop)

        async with session_scope(session_factory) as session:
            repo = BuildRepository(session)
            old = await repo.get(orphan.build_id)
            current = await repo.get_current("car-1")
        assert old is not None
        assert old.status == BuildStatus.FAILED
        assert old.error_message == ORPHAN_REASON
        assert current is not None and current.build_id == new_id

    @pytest.mark.asyncio
    async def test_recent_in_flight_record_rejects_admission(self, session_factory) -> None:
        async with session_scope(session_factory) as session:
            live = await BuildRepository(session).create("car-1")
            await BuildRepository(session).mark_building(live.build_id)

        executor = SequentialBuildExecutor(session_factory)
        ran: list[str] = []

        async def _op(record: BuildRecord) -> None:
            ran.append(record.build_id)

        with pytest.raises(BuildInProgressError) as excinfo:
            await executor.submit("car-1", _op)

        assert excinfo.value.build_id == live.build_id
        assert ran == []
        assert executor.pending("car-1") == 0
        async with session_scope(session_factory) as session:
            record = await BuildRepository(session).get(live.build_id)
        assert record is not None and record.status == BuildStatus.BUILDING

    @pytest.mark.asyncio
    async def test_second_process_cannot_fail_a_live_build(self, session_factory) -> None:
        api_side = SequentialBuildExecutor(session_factory)
        cli_side = SequentialBuildExecutor(session_factory)
        tracker = _Tracker()
        started = asyncio.Event()
        release = asyncio.Event()

        async def _slow(record: BuildRecord) -> str:
            async with session_scope(session_factory) as session:
                await BuildRepository(session).mark_building(record.build_id)
            started.set()
            await tracker.op("api", delay=0)(record)
            await release.wait()
            return record.build_id

        running = asyncio.create_task(api_side.submit("car-1", _slow))
        await started.wait()

        with pytest.raises(BuildInProgressError):
            await cli_side.submit("car-1", tracker.op("cli"))

        async with session_scope(session_factory) as session:
            current = await BuildRepository(session).get_current("car-1")
        assert current is not None and current.status == BuildStatus.BUILDING

        release.set()
        build_id = await running
        assert current.build_id == build_id
        assert tracker.order == ["api"]

    @pytest.mark.asyncio
    async def test_recover_stale_on_startup(self, session_factory) -> None:
        async with session_scope(session_factory) as session:
            repo = BuildRepository(session)
            old = await repo.create("car-1")
            fresh = await repo.create("car-2")
            await session.execute(
                update(BuildTable)
                .where(BuildTable.build_id == old.build_id)
                .values(created_at=datetime.now(UTC) - timedelta(hours=12))
            )

        executor = SequentialBuildExecutor(session_factory)
        failed = await executor.recover_stale(max_age_seconds=6 * 3600)

        assert failed == [old.build_id]
        async with session_scope(session_factory) as session:
            repo = BuildRepository(session)
            old_rec = await repo.get(old.build_id)
            fresh_rec = await repo.get(fresh.build_id)
        assert old_rec is not None and old_rec.status == BuildStatus.FAILED
        assert old_rec.error_message == STALE_REASON
        assert fresh_rec is not None and fresh_rec.status == BuildStatus.PENDING
