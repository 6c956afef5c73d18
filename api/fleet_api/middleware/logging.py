"""Access logging for the fleet control plane.

One record per request on the ``fleet_api.access`` logger.  Requests that
target an instance or a profile carry that name in the payload so that a
build or cutover can be traced from the HTTP call that triggered it.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("fleet_api.access")

_CORRELATION_HEADER = "X-Correlation-ID"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _route_context(request: Request) -> dict[str, Any]:
    """Matched route template and target instance, read after routing."""
    context: dict[str, Any] = {}
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        context["route"] = template
    instance = request.scope.get("path_params", {}).get("instance")
    if instance:
        context["instance"] = instance
    return context


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and latency, and echo a correlation id.

    The id comes from the ``X-Correlation-ID`` request header when the
    caller sends one, otherwise a fresh UUID-4 is used.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(_CORRELATION_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[_CORRELATION_HEADER] = correlation_id
            return response
        finally:
            payload: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "correlation_id": correlation_id,
                **_route_context(request),
            }
            if request.url.query:
                payload["query"] = request.url.query
            logger.log(
                _level_for(status_code),
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={"request": payload},
            )
