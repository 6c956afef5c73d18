"""Pydantic domain models for builds and instances."""

from __future__ import annotations

from fleet_engine.models.build import (
    ERROR_MESSAGE_MAX_LENGTH,
    IN_FLIGHT_STATUSES,
    BuildOutcome,
    BuildRecord,
    BuildStatus,
    SourceSnapshot,
    allowed_predecessors,
    truncate_error,
)
from fleet_engine.models.instance import (
    ActionResult,
    CutoverResult,
    HealthResult,
    InstanceDescriptor,
    InstanceRole,
    ProcessStatus,
)

__all__ = [
    "ERROR_MESSAGE_MAX_LENGTH",
    "IN_FLIGHT_STATUSES",
    "ActionResult",
    "BuildOutcome",
    "BuildRecord",
    "BuildStatus",
    "CutoverResult",
    "HealthResult",
    "InstanceDescriptor",
    "InstanceRole",
    "ProcessStatus",
    "SourceSnapshot",
    "allowed_predecessors",
    "truncate_error",
]
