"""Instance registry and process-level result models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class InstanceRole(str, Enum):
    """Serving role of an instance within its profile pair."""

    ACTIVE = "active"
    STANDBY = "standby"


class InstanceDescriptor(BaseModel):
    """Registry entry for one routing instance with its current role."""

    id: int
    name: str
    profile: str
    port: int
    data_path: str
    role: InstanceRole = InstanceRole.STANDBY


class ProcessStatus(BaseModel):
    """Live view of the process serving an instance's port."""

    instance_name: str
    port: int
    running: bool = Field(description="Whether the port currently accepts connections.")
    pids: list[int] = Field(default_factory=list)
    managed: bool = Field(default=False, description="Whether this manager spawned the process.")
    has_artifact: bool = False


class HealthResult(BaseModel):
    """Outcome of a route probe against an instance."""

    instance_name: str
    healthy: bool
    message: str = ""
    response_time_ms: float | None = None


class ActionResult(BaseModel):
    """Outcome of a start/stop/restart/rebuild request."""

    instance_name: str
    action: str
    success: bool
    message: str = ""
    build_id: str | None = None


class CutoverResult(BaseModel):
    """Outcome of an active/standby swap for one profile."""

    profile: str
    success: bool
    previous_active: str | None = None
    new_active: str | None = None
    build_id: str | None = None
    downtime_seconds: float = 0.0
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    restored: bool | None = Field(
        default=None,
        description="After a failed swap, whether the previous active is serving again.",
    )
