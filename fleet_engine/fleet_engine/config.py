"""Fleet configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Algorithm(str, Enum):
    """Routing graph preprocessing algorithm passed to ``osrm-routed``."""

    MLD = "mld"
    CH = "ch"


class InstanceConfig(BaseModel):
    """Static registry entry for one serving instance."""

    id: int = Field(..., ge=1, description="Stable numeric identifier.")
    name: str = Field(..., min_length=1, description="Logical instance name, e.g. ``car-1``.")
    profile: str = Field(..., min_length=1, description="Vehicle profile served by the instance.")
    port: int = Field(..., ge=1, le=65535, description="TCP port ``osrm-routed`` listens on.")
    data_path: Path | None = Field(
        default=None,
        description="Working directory for artifacts; defaults to ``<data_root>/<name>``.",
    )


def _default_instances() -> list[InstanceConfig]:
    return [
        InstanceConfig(id=1, name="car-1", profile="car", port=5000),
        InstanceConfig(id=2, name="car-2", profile="car", port=5001),
        InstanceConfig(id=3, name="motorbike-1", profile="motorbike", port=5002),
        InstanceConfig(id=4, name="motorbike-2", profile="motorbike", port=5003),
    ]


class FleetSettings(BaseSettings):
    """Orchestrator settings loaded from environment variables with OSRM_FLEET_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="OSRM_FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Build record store
    database_url: str = "sqlite+aiosqlite:///.osrm-fleet/state.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Road data source (segment count and average weight for provenance)
    source_database_url: str | None = None

    # Inputs and outputs
    data_root: Path = Path("osrm_data")
    raw_data_path: Path = Path("raw_data")
    pbf_path: Path | None = None
    profiles_dir: Path = Path("profiles")
    profiles: dict[str, str] = Field(
        default_factory=lambda: {"car": "car.lua", "motorbike": "motorbike.lua"},
    )
    instances: list[InstanceConfig] = Field(default_factory=_default_instances)

    # Toolchain
    algorithm: Algorithm = Algorithm.MLD
    docker_image: str | None = None
    routed_binary: str = "osrm-routed"
    tool_timeout_seconds: float = 3600.0
    max_output_bytes: int = 1024 * 1024
    validate_artifacts: bool = True
    pipeline_version: str = "1"

    # Crash recovery
    stale_build_seconds: int = 6 * 3600

    # Process lifecycle
    startup_timeout_seconds: float = 60.0
    stop_grace_seconds: float = 5.0
    port_poll_interval: float = 0.5

    # Health probe
    health_timeout_seconds: float = 5.0
    health_probe_from: tuple[float, float] = (106.7718, 10.8505)
    health_probe_to: tuple[float, float] = (106.8032, 10.8623)
    health_max_retries: int = 5
    health_retry_base_delay: float = 2.0

    # Logging
    structured_logging: bool = False

    @field_validator("instances")
    @classmethod
    def _unique_instances(cls, v: list[InstanceConfig]) -> list[InstanceConfig]:
        names = [inst.name for inst in v]
        if len(set(names)) != len(names):
            raise ValueError("instance names must be unique")
        ports = [inst.port for inst in v]
        if len(set(ports)) != len(ports):
            raise ValueError("instance ports must be unique")
        return v

    @model_validator(mode="after")
    def _profiles_known(self) -> FleetSettings:
        for inst in self.instances:
            if inst.profile not in self.profiles:
                raise ValueError(f"instance {inst.name!r} uses unknown profile {inst.profile!r}")
        return self

    def instance_data_path(self, inst: InstanceConfig) -> Path:
        """Return the private working directory of *inst*."""
        return inst.data_path if inst.data_path is not None else self.data_root / inst.name

    def profile_script(self, profile: str) -> Path:
        return self.profiles_dir / self.profiles[profile]

    @property
    def is_local_store(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_settings(**overrides: object) -> FleetSettings:
    """Load settings from environment, with optional overrides for testing."""
    settings = FleetSettings(**overrides)  # type: ignore[arg-type]
    logger.debug(
        "Loaded fleet settings: %d instance(s), algorithm=%s",
        len(settings.instances),
        settings.algorithm.value,
    )
    return settings
