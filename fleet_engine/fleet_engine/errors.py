"""Exception hierarchy for the fleet orchestrator.

Input and configuration errors are raised before any build record exists.
Stage failures are caught by the pipeline and recorded on the build record.
Lifecycle errors surface to the caller of the start/stop/restart primitives.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base class for every error raised by the orchestrator."""


# ---------------------------------------------------------------------------
# Input / configuration
# ---------------------------------------------------------------------------


class UnknownInstanceError(FleetError, LookupError):
    """Raised when an instance name or id is not in the registry."""

    def __init__(self, key: str | int) -> None:
        super().__init__(f"Unknown instance: {key!r}")
        self.key = key


class UnknownProfileError(FleetError, LookupError):
    """Raised when a profile has no instance pair in the registry."""

    def __init__(self, profile: str) -> None:
        super().__init__(f"Unknown profile: {profile!r}")
        self.profile = profile


class InputNotFoundError(FleetError):
    """Raised when the ``.osm.pbf`` input or a profile script is missing."""


class MissingArtifactError(FleetError):
    """Raised when a start is requested but no built routing data exists."""


class BuildInProgressError(FleetError):
    """Another orchestrator process holds an in-flight build of the instance."""

    def __init__(self, instance_name: str, build_id: str) -> None:
        super().__init__(f"{instance_name}: build {build_id[:12]} is already in flight")
        self.instance_name = instance_name
        self.build_id = build_id


# ---------------------------------------------------------------------------
# Build pipeline
# ---------------------------------------------------------------------------


class StageFailure(FleetError):
    """A pipeline stage exited unsuccessfully.

    Parameters
    ----------
    stage:
        Stage name (``extract``, ``contract``, ``partition``, ...).
    message:
        Human readable reason.
    returncode:
        Process exit code when the stage ran a subprocess.
    output_tail:
        Last captured bytes of stderr (or stdout), decoded.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        returncode: int | None = None,
        output_tail: str = "",
    ) -> None:
        detail = f"{stage} failed: {message}"
        if output_tail:
            detail = f"{detail}: {output_tail.strip()}"
        super().__init__(detail)
        self.stage = stage
        self.returncode = returncode
        self.output_tail = output_tail


class ToolTimeoutError(StageFailure):
    """A pipeline subprocess exceeded its time budget and was killed."""


class InvalidTransitionError(FleetError):
    """Raised when a build record cannot move to the requested status."""

    def __init__(self, build_id: str, target: str, current: str | None = None) -> None:
        where = f" from {current}" if current else ""
        super().__init__(f"Build {build_id[:12]} cannot transition{where} to {target}")
        self.build_id = build_id
        self.target = target
        self.current = current


# ---------------------------------------------------------------------------
# Process lifecycle
# ---------------------------------------------------------------------------


class LifecycleError(FleetError):
    """Base class for start/stop/restart failures."""

    def __init__(self, instance_name: str, message: str) -> None:
        super().__init__(f"{instance_name}: {message}")
        self.instance_name = instance_name


class PortInUseError(LifecycleError):
    """The instance port is already bound by another process."""


class StartFailedError(LifecycleError):
    """The server process exited early or never bound its port."""


class StopFailedError(LifecycleError):
    """The port is still bound after SIGTERM and SIGKILL."""


class RestartError(LifecycleError):
    """A restart stopped the instance but could not start it again."""


class BuildFailedError(LifecycleError):
    """A rebuild produced no usable routing data; the instance stays stopped."""

    def __init__(self, instance_name: str, message: str, build_id: str | None = None) -> None:
        super().__init__(instance_name, message)
        self.build_id = build_id


# ---------------------------------------------------------------------------
# Cutover
# ---------------------------------------------------------------------------


class CutoverError(FleetError):
    """A cutover could not be attempted (no READY build, unknown pair)."""
