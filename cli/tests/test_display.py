"""Tests for the Rich rendering helpers in fleet_cli.display."""

from __future__ import annotations

from datetime import UTC, datetime
from io import StringIO

from fleet_cli.display import (
    _coloured_status,
    display_build_outcomes,
    display_cutover_results,
    display_fleet_status,
    display_history,
)
from fleet_engine.models import BuildOutcome, BuildRecord, BuildStatus, CutoverResult
from rich.console import Console


def _console() -> tuple[Console, StringIO]:
    buf = StringIO()
    return Console(file=buf, width=200, no_color=True), buf


class TestStatusColours:
    def test_known_status(self) -> None:
        assert _coloured_status("READY") == "[green]READY[/green]"

    def test_unknown_status_is_white(self) -> None:
        assert _coloured_status("WEIRD") == "[white]WEIRD[/white]"


class TestBuildOutcomes:
    def test_summary_counts(self) -> None:
        console, buf = _console()
        display_build_outcomes(
            console,
            [
                BuildOutcome(build_id="b-ok", instance_name="car-1", status=BuildStatus.READY, duration_seconds=3.2),
                BuildOutcome(
                    build_id="b-bad",
                    instance_name="car-2",
                    status=BuildStatus.FAILED,
                    error_message="osrm-extract exited with code 1",
                ),
            ],
        )
        out = buf.getvalue()
        assert "car-1" in out and "car-2" in out
        assert "osrm-extract exited with code 1" in out
        assert "Succeeded: 1" in out
        assert "Failed: 1" in out


class TestHistory:
    def test_empty(self) -> None:
        console, buf = _console()
        display_history(console, [])
        assert "No builds recorded." in buf.getvalue()

    def test_rows(self) -> None:
        console, buf = _console()
        record = BuildRecord(
            build_id="abc123",
            instance_name="motorbike-1",
            status=BuildStatus.DEPLOYED,
            total_segments=4210,
            created_at=datetime(2026, 3, 1, 8, 30, tzinfo=UTC),
        )
        display_history(console, [record])
        out = buf.getvalue()
        assert "motorbike-1" in out
        assert "DEPLOYED" in out
        assert "2026-03-01 08:30:00" in out
        assert "4210" in out


class TestFleetStatus:
    def test_unprobed_health_shows_dash(self) -> None:
        console, buf = _console()
        display_fleet_status(
            console,
            [
                {
                    "name": "car-2",
                    "profile": "car",
                    "role": "standby",
                    "port": 5001,
                    "running": False,
                    "pids": [],
                    "has_artifact": True,
                    "building": False,
                    "healthy": None,
                }
            ],
        )
        out = buf.getvalue()
        assert "car-2" in out
        assert "5001" in out
        assert "built" in out


class TestCutover:
    def test_success_shows_downtime(self) -> None:
        console, buf = _console()
        display_cutover_results(
            console,
            [CutoverResult(profile="car", success=True, previous_active="car-1", new_active="car-2", downtime_seconds=0.42)],
        )
        out = buf.getvalue()
        assert "Cutover: car" in out
        assert "0.42s" in out

    def test_failure_reports_restore(self) -> None:
        console, buf = _console()
        display_cutover_results(
            console,
            [
                CutoverResult(
                    profile="motorbike",
                    success=False,
                    previous_active="motorbike-1",
                    error="Standby motorbike-2 never became healthy",
                    restored=True,
                )
            ],
        )
        out = buf.getvalue()
        assert "never became healthy" in out
        assert "Old active serving: yes" in out
        assert "Downtime" not in out
