"""Tests for fleet_api.config.APISettings."""

from __future__ import annotations

import pytest
from fleet_api.config import APISettings, load_api_settings
from pydantic import ValidationError


class TestAPISettings:
    def test_defaults(self) -> None:
        settings = APISettings()
        assert settings.port == 8000
        assert settings.status_history_limit == 10
        assert settings.structured_logging is False

    def test_comma_separated_origins(self, monkeypatch) -> None:
        monkeypatch.setenv("FLEET_API_CORS_ORIGINS", "http://ops.local, http://dispatch.local")
        settings = load_api_settings()
        assert settings.cors_origins == ["http://ops.local", "http://dispatch.local"]

    def test_json_origins(self, monkeypatch) -> None:
        monkeypatch.setenv("FLEET_API_CORS_ORIGINS", '["http://ops.local"]')
        assert load_api_settings().cors_origins == ["http://ops.local"]

    def test_log_level_case_insensitive(self, monkeypatch) -> None:
        monkeypatch.setenv("FLEET_API_LOG_LEVEL", "debug")
        assert load_api_settings().log_level == "DEBUG"

    def test_wildcard_with_credentials_rejected(self) -> None:
        with pytest.raises(ValidationError, match="cors_allow_credentials"):
            APISettings(cors_origins=["*"], cors_allow_credentials=True)

    def test_wildcard_without_credentials_allowed(self) -> None:
        assert APISettings(cors_origins=["*"]).cors_origins == ["*"]

    def test_overrides_win(self, monkeypatch) -> None:
        monkeypatch.setenv("FLEET_API_PORT", "9000")
        assert load_api_settings(port=9100).port == 9100
