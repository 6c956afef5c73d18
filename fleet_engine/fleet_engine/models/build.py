"""Build record models for tracking routing-data rebuilds.

Each ``BuildRecord`` tracks one attempt to regenerate an instance's routing
data from PENDING through to READY or FAILED, and later DEPLOYED and
DEPRECATED once a cutover promotes or supersedes it.  Records are
append-only: a retry always creates a new record.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

ERROR_MESSAGE_MAX_LENGTH = 500
_ELLIPSIS = "..."


class BuildStatus(str, Enum):
    """Lifecycle state of a single build attempt."""

    PENDING = "PENDING"
    BUILDING = "BUILDING"
    TESTING = "TESTING"
    READY = "READY"
    DEPLOYED = "DEPLOYED"
    FAILED = "FAILED"
    DEPRECATED = "DEPRECATED"

    @property
    def in_flight(self) -> bool:
        return self in IN_FLIGHT_STATUSES

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, target: BuildStatus) -> bool:
        return target in _TRANSITIONS[self]


IN_FLIGHT_STATUSES: frozenset[BuildStatus] = frozenset(
    {BuildStatus.PENDING, BuildStatus.BUILDING, BuildStatus.TESTING}
)

_TRANSITIONS: dict[BuildStatus, frozenset[BuildStatus]] = {
    BuildStatus.PENDING: frozenset({BuildStatus.BUILDING, BuildStatus.FAILED}),
    BuildStatus.BUILDING: frozenset({BuildStatus.TESTING, BuildStatus.READY, BuildStatus.FAILED}),
    BuildStatus.TESTING: frozenset({BuildStatus.READY, BuildStatus.FAILED}),
    BuildStatus.READY: frozenset({BuildStatus.DEPLOYED, BuildStatus.DEPRECATED}),
    BuildStatus.DEPLOYED: frozenset({BuildStatus.DEPRECATED}),
    BuildStatus.FAILED: frozenset(),
    BuildStatus.DEPRECATED: frozenset(),
}


def allowed_predecessors(target: BuildStatus) -> frozenset[BuildStatus]:
    """Return every status from which *target* may be reached."""
    return frozenset(src for src, dests in _TRANSITIONS.items() if target in dests)


def truncate_error(message: str, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str:
    """Bound *message* to *limit* characters, marking truncation with ``...``."""
    if len(message) <= limit:
        return message
    return message[: limit - len(_ELLIPSIS)] + _ELLIPSIS


class BuildRecord(BaseModel):
    """Durable record of one routing-data build attempt."""

    build_id: str = Field(..., min_length=1, description="Unique identifier for this attempt.")
    instance_name: str = Field(..., min_length=1, description="Target instance, e.g. ``car-1``.")
    status: BuildStatus = Field(default=BuildStatus.PENDING, description="Current lifecycle state.")

    data_snapshot_time: datetime | None = Field(
        default=None, description="When the road database was read for this build."
    )
    total_segments: int = Field(default=0, ge=0, description="Road segment count at snapshot time.")
    pbf_file_path: str | None = Field(default=None, description="Input ``.osm.pbf`` extract.")
    pipeline_version: str | None = Field(default=None, description="Version of the build pipeline.")

    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    deployed_at: datetime | None = None

    osrm_output_path: str | None = Field(default=None, description="Path of the built ``network.osrm``.")
    avg_weight: float | None = Field(default=None, description="Mean segment weight (diagnostic).")
    error_message: str | None = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)


class BuildOutcome(BaseModel):
    """Result returned by the pipeline runner for one build."""

    build_id: str
    instance_name: str
    status: BuildStatus
    osrm_output_path: str | None = None
    avg_weight: float | None = None
    error_message: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == BuildStatus.READY


class SourceSnapshot(BaseModel):
    """Provenance read from the road database before a build starts."""

    taken_at: datetime
    total_segments: int = Field(default=0, ge=0)
    avg_weight: float | None = None
