"""Settings for the HTTP control plane (``FLEET_API_*``).

Fleet settings such as instances, paths and timeouts live in
:class:`fleet_engine.config.FleetSettings` and are read separately from
``OSRM_FLEET_*``.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


class APISettings(BaseSettings):
    """Bind address, CORS policy and log output of ``fleet_api``."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = False

    log_level: LogLevel = "INFO"
    structured_logging: bool = Field(
        default=False,
        description="Emit one JSON object per log line instead of plain text.",
    )

    status_history_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Records returned with the per-instance build status.",
    )

    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_allow_credentials: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        # Either a JSON list or "http://a,http://b".
        if not isinstance(value, str):
            return value
        if value.lstrip().startswith("["):
            return json.loads(value)
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _no_wildcard_with_credentials(self) -> Self:
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError("cors_origins may not contain '*' when cors_allow_credentials is enabled")
        return self


def load_api_settings(**overrides: Any) -> APISettings:
    """Read ``FLEET_API_*`` variables and ``.env``; keyword overrides win."""
    return APISettings(**overrides)
