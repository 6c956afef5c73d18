"""Request and response models for the fleet API.

Build records and instance results are the engine's own Pydantic models;
only the shapes that exist purely at the HTTP edge live here.
"""

from __future__ import annotations

from fleet_engine.models import BuildRecord
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


class BuildAccepted(BaseModel):
    """Answer to a build request; the build itself runs in the background."""

    instance: str
    accepted: bool = True
    queued: bool = False
    detail: str | None = None


class InstanceBuildStatus(BaseModel):
    """In-flight, latest READY and latest DEPLOYED records for one instance."""

    instance: str
    current: BuildRecord | None = None
    latest_ready: BuildRecord | None = None
    latest_deployed: BuildRecord | None = None
    history: list[BuildRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Containers / OSRM
# ---------------------------------------------------------------------------


class InstanceStatus(BaseModel):
    """Role, port, process state and route health of one instance."""

    id: int
    name: str
    profile: str
    port: int
    data_path: str
    role: str
    running: bool
    pids: list[int] = Field(default_factory=list)
    managed: bool = False
    has_artifact: bool = False
    building: bool = False
    healthy: bool | None = None


class RollingRestartRequest(BaseModel):
    profile: str = Field(..., min_length=1, max_length=64)


class RollingRestartAccepted(BaseModel):
    profile: str
    accepted: bool = True
    standby: str
