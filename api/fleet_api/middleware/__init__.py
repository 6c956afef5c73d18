"""Middleware components for the fleet API."""

from __future__ import annotations

from fleet_api.middleware.json_formatter import JSONFormatter
from fleet_api.middleware.logging import RequestLoggingMiddleware

__all__ = ["JSONFormatter", "RequestLoggingMiddleware"]
