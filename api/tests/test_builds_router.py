"""Tests for the /api/v1/builds endpoints."""

from __future__ import annotations

import pytest
from fleet_engine.errors import BuildInProgressError, InputNotFoundError
from sqlalchemy.exc import OperationalError


class TestBuildStatus:
    @pytest.mark.asyncio
    async def test_status_lists_every_instance(self, client, mock_orchestrator) -> None:
        resp = await client.get("/api/v1/builds/status")

        assert resp.status_code == 200
        body = resp.json()
        assert [row["instance"] for row in body] == ["car-1", "car-2", "motorbike-1", "motorbike-2"]
        assert body[0]["current"] is None
        assert body[0]["latest_ready"]["status"] == "READY"

    @pytest.mark.asyncio
    async def test_instance_status_includes_history(self, client, mock_orchestrator) -> None:
        resp = await client.get("/api/v1/builds/status/car-2")

        assert resp.status_code == 200
        body = resp.json()
        assert body["instance"] == "car-2"
        assert len(body["history"]) == 1
        mock_orchestrator.history.assert_awaited_with("car-2", limit=10)

    @pytest.mark.asyncio
    async def test_instance_status_by_id(self, client) -> None:
        resp = await client.get("/api/v1/builds/status/3")
        assert resp.status_code == 200
        assert resp.json()["instance"] == "motorbike-1"

    @pytest.mark.asyncio
    async def test_unknown_instance_is_404(self, client) -> None:
        resp = await client.get("/api/v1/builds/status/truck-1")
        assert resp.status_code == 404
        assert "truck-1" in resp.json()["detail"]


class TestBuildHistory:
    @pytest.mark.asyncio
    async def test_default_limit(self, client, mock_orchestrator) -> None:
        resp = await client.get("/api/v1/builds/history")
        assert resp.status_code == 200
        mock_orchestrator.history.assert_awaited_with(None, limit=20)

    @pytest.mark.asyncio
    async def test_filtered(self, client, mock_orchestrator) -> None:
        resp = await client.get("/api/v1/builds/history", params={"instance": "car-1", "limit": 5})
        assert resp.status_code == 200
        mock_orchestrator.history.assert_awaited_with("car-1", limit=5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_out_of_range_is_422(self, client, limit: int) -> None:
        resp = await client.get("/api/v1/builds/history", params={"limit": limit})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_database_error_is_500(self, client, mock_orchestrator) -> None:
        mock_orchestrator.history.side_effect = OperationalError("SELECT", {}, Exception("locked"))
        resp = await client.get("/api/v1/builds/history")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Internal database error"


class TestBuildRequests:
    @pytest.mark.asyncio
    async def test_build_instance_accepted(self, client, mock_orchestrator) -> None:
        resp = await client.post("/api/v1/builds/car-1")

        assert resp.status_code == 202
        assert resp.json() == {"instance": "car-1", "accepted": True, "queued": False, "detail": None}
        mock_orchestrator.submit_build.assert_called_once_with("car-1")

    @pytest.mark.asyncio
    async def test_queued_flag_passes_through(self, client, mock_orchestrator) -> None:
        mock_orchestrator.submit_build.side_effect = None
        mock_orchestrator.submit_build.return_value = {"instance": "car-1", "accepted": True, "queued": True}
        resp = await client.post("/api/v1/builds/car-1")
        assert resp.status_code == 202
        assert resp.json()["queued"] is True

    @pytest.mark.asyncio
    async def test_build_unknown_instance_is_404(self, client) -> None:
        resp = await client.post("/api/v1/builds/truck-9")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_input_is_409(self, client, mock_orchestrator) -> None:
        mock_orchestrator.submit_build.side_effect = InputNotFoundError("No *.osm.pbf found in raw_data")
        resp = await client.post("/api/v1/builds/car-1")
        assert resp.status_code == 409
        assert "osm.pbf" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_build_all(self, client) -> None:
        resp = await client.post("/api/v1/builds")
        assert resp.status_code == 202
        assert [a["instance"] for a in resp.json()] == ["car-1", "car-2", "motorbike-1", "motorbike-2"]

    @pytest.mark.asyncio
    async def test_build_owned_by_another_process_is_409(self, client, mock_orchestrator) -> None:
        mock_orchestrator.submit_build.side_effect = BuildInProgressError("car-1", "c" * 32)
        resp = await client.post("/api/v1/builds/car-1")
        assert resp.status_code == 409
        assert "already in flight" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_build_all_reports_skipped_instances(self, client, mock_orchestrator) -> None:
        mock_orchestrator.submit_build_all.side_effect = None
        mock_orchestrator.submit_build_all.return_value = [
            {"instance": "car-1", "accepted": True, "queued": False},
            {"instance": "car-2", "accepted": False, "queued": False, "detail": "car-2: build cccc is already in flight"},
        ]
        resp = await client.post("/api/v1/builds")
        assert resp.status_code == 202
        body = resp.json()
        assert body[0]["accepted"] is True and body[0]["detail"] is None
        assert body[1]["accepted"] is False
        assert "already in flight" in body[1]["detail"]
