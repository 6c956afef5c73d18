"""Shared fixtures for CLI tests.

The orchestrator factory in :mod:`fleet_cli.app` is patched to return a
MagicMock whose lookups go through the real instance registry, so commands
run end-to-end through Typer without touching a store or a process.
"""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fleet_engine.config import FleetSettings
from fleet_engine.registry import InstanceRegistry


@pytest.fixture()
def mock_orchestrator() -> Iterator[MagicMock]:
    registry = InstanceRegistry(FleetSettings())

    orch = MagicMock()
    orch.registry = registry
    orch.startup = AsyncMock()
    orch.shutdown = AsyncMock()
    orch.build = AsyncMock()
    orch.build_all = AsyncMock()
    orch.rolling_restart = AsyncMock()
    orch.fleet_status = AsyncMock(return_value=[])
    orch.history = AsyncMock(return_value=[])

    lifecycle = MagicMock()
    for name in ("start", "stop", "restart", "rebuild", "health_check"):
        setattr(lifecycle, name, AsyncMock())
    orch.lifecycle = lifecycle

    with patch("fleet_cli.app._make_orchestrator", return_value=orch):
        yield orch
