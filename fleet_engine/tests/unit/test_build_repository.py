"""Unit tests for BuildRepository and RoleRepository.

These tests use a SQLite file via aiosqlite so they can run without a
PostgreSQL instance.

Covers:
- PENDING creation and forward transitions with timestamps
- Conditional updates rejecting illegal transitions
- DEPLOYED supersession (at most one DEPLOYED per instance)
- Crash-recovery sweeps
- History ordering and role persistence
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from fleet_engine.errors import InvalidTransitionError
from fleet_engine.models.build import BuildStatus, SourceSnapshot
from fleet_engine.state.repository import BuildRepository, RoleRepository


async def _ready_build(repo: BuildRepository, instance: str = "car-1") -> str:
    record = await repo.create(instance, pbf_file_path="/raw/x.osm.pbf", pipeline_version="1")
    await repo.mark_building(record.build_id)
    await repo.mark_ready(record.build_id, f"/data/{instance}/network.osrm", 12.5)
    return record.build_id


class TestCreateAndTransition:
    @pytest.mark.asyncio
    async def test_create_is_pending(self, session) -> None:
        repo = BuildRepository(session)
        record = await repo.create("car-1", pbf_file_path="/raw/x.osm.pbf", pipeline_version="1")

        assert record.status == BuildStatus.PENDING
        assert record.created_at is not None
        assert record.created_at.tzinfo is not None
        assert record.started_at is None
        assert record.pipeline_version == "1"

    @pytest.mark.asyncio
    async def test_happy_path_sets_timestamps_and_outputs(self, session) -> None:
        repo = BuildRepository(session)
        build_id = await _ready_build(repo)

        record = await repo.get(build_id)
        assert record is not None
        assert record.status == BuildStatus.READY
        assert record.started_at is not None
        assert record.completed_at is not None
        assert record.osrm_output_path == "/data/car-1/network.osrm"
        assert record.avg_weight == 12.5

    @pytest.mark.asyncio
    async def test_record_snapshot(self, session) -> None:
        repo = BuildRepository(session)
        record = await repo.create("car-1")
        taken = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        await repo.record_snapshot(record.build_id, SourceSnapshot(taken_at=taken, total_segments=42, avg_weight=1.5))

        stored = await repo.get(record.build_id)
        assert stored is not None
        assert stored.data_snapshot_time == taken
        assert stored.total_segments == 42

    @pytest.mark.asyncio
    async def test_failed_cannot_be_revived(self, session) -> None:
        repo = BuildRepository(session)
        record = await repo.create("car-1")
        await repo.mark_failed(record.build_id, "boom")

        with pytest.raises(InvalidTransitionError):
            await repo.mark_building(record.build_id)

    @pytest.mark.asyncio
    async def test_pending_cannot_jump_to_deployed(self, session) -> None:
        repo = BuildRepository(session)
        record = await repo.create("car-1")

        with pytest.raises(InvalidTransitionError):
            await repo.mark_deployed(record.build_id)
        stored = await repo.get(record.build_id)
        assert stored is not None
        assert stored.status == BuildStatus.PENDING

    @pytest.mark.asyncio
    async def test_mark_failed_truncates(self, session) -> None:
        repo = BuildRepository(session)
        record = await repo.create("car-1")
        await repo.mark_building(record.build_id)
        await repo.mark_failed(record.build_id, "z" * 1200)

        stored = await repo.get(record.build_id)
        assert stored is not None
        assert stored.status == BuildStatus.FAILED
        assert stored.completed_at is not None
        assert stored.osrm_output_path is None
        assert len(stored.error_message or "") == 500
        assert (stored.error_message or "").endswith("...")


class TestDeployment:
    @pytest.mark.asyncio
    async def test_mark_deployed_deprecates_previous(self, session) -> None:
        repo = BuildRepository(session)
        first = await _ready_build(repo)
        await repo.mark_deployed(first)
        second = await _ready_build(repo)
        await repo.mark_deployed(second)

        old = await repo.get(first)
        new = await repo.get(second)
        assert old is not None and new is not None
        assert old.status == BuildStatus.DEPRECATED
        assert new.status == BuildStatus.DEPLOYED
        assert new.deployed_at is not None
        latest = await repo.get_latest_deployed("car-1")
        assert latest is not None and latest.build_id == second

    @pytest.mark.asyncio
    async def test_deployed_at_set_once(self, session) -> None:
        repo = BuildRepository(session)
        build_id = await _ready_build(repo)
        await repo.mark_deployed(build_id)

        with pytest.raises(InvalidTransitionError):
            await repo.mark_deployed(build_id)

    @pytest.mark.asyncio
    async def test_deprecate_deployed_other_instance_untouched(self, session) -> None:
        repo = BuildRepository(session)
        car1 = await _ready_build(repo, "car-1")
        car2 = await _ready_build(repo, "car-2")
        await repo.mark_deployed(car1)
        await repo.mark_deployed(car2)

        assert await repo.deprecate_deployed("car-1") == 1
        rec2 = await repo.get(car2)
        assert rec2 is not None and rec2.status == BuildStatus.DEPLOYED


class TestRecovery:
    @pytest.mark.asyncio
    async def test_fail_stale_only_touches_old_in_flight(self, session) -> None:
        repo = BuildRepository(session)
        old = await repo.create("car-1")
        await repo.mark_building(old.build_id)
        ready = await _ready_build(repo, "car-2")

        cutoff = datetime.now(UTC) + timedelta(seconds=1)
        failed = await repo.fail_stale(cutoff, "stale")

        assert failed == [old.build_id]
        rec = await repo.get(old.build_id)
        assert rec is not None and rec.status == BuildStatus.FAILED
        assert rec.error_message == "stale"
        ready_rec = await repo.get(ready)
        assert ready_rec is not None and ready_rec.status == BuildStatus.READY

    @pytest.mark.asyncio
    async def test_fail_stale_ignores_recent(self, session) -> None:
        repo = BuildRepository(session)
        await repo.create("car-1")
        cutoff = datetime.now(UTC) - timedelta(hours=1)
        assert await repo.fail_stale(cutoff, "stale") == []

    @pytest.mark.asyncio
    async def test_fail_orphaned_scoped_to_instance(self, session) -> None:
        repo = BuildRepository(session)
        a = await repo.create("car-1")
        b = await repo.create("car-2")

        later = datetime.now(UTC) + timedelta(seconds=1)
        assert await repo.fail_orphaned("car-1", "orphaned", later) == [a.build_id]
        assert await repo.get_current("car-1") is None
        current = await repo.get_current("car-2")
        assert current is not None and current.build_id == b.build_id

    @pytest.mark.asyncio
    async def test_fail_orphaned_keeps_recent_records(self, session) -> None:
        repo = BuildRepository(session)
        live = await repo.create("car-1")
        cutoff = datetime.now(UTC) - timedelta(hours=6)

        assert await repo.fail_orphaned("car-1", "orphaned", cutoff) == []
        current = await repo.get_current("car-1")
        assert current is not None and current.build_id == live.build_id


class TestQueries:
    @pytest.mark.asyncio
    async def test_history_newest_first_and_filtered(self, session) -> None:
        repo = BuildRepository(session)
        ids = []
        for _ in range(3):
            rec = await repo.create("car-1")
            await repo.mark_failed(rec.build_id, "x")
            ids.append(rec.build_id)
        await repo.create("car-2")

        history = await repo.history("car-1", limit=10)
        assert [r.build_id for r in history] == list(reversed(ids))
        assert len(await repo.history(None, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_list_in_flight(self, session) -> None:
        repo = BuildRepository(session)
        a = await repo.create("car-1")
        await _ready_build(repo, "car-2")

        in_flight = await repo.list_in_flight()
        assert [r.build_id for r in in_flight] == [a.build_id]


class TestRoleRepository:
    @pytest.mark.asyncio
    async def test_set_and_get_active(self, session) -> None:
        roles = RoleRepository(session)
        assert await roles.get_active("car") is None

        await roles.set_active("car", "car-1")
        await roles.set_active("car", "car-2")
        await roles.set_active("motorbike", "motorbike-1")

        assert await roles.get_active("car") == "car-2"
        assert await roles.get_all() == {"car": "car-2", "motorbike": "motorbike-1"}
