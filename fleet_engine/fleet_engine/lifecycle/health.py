"""Route probe used to decide whether an instance can serve traffic."""

from __future__ import annotations

import logging
import time

import httpx

from fleet_engine.models.instance import HealthResult

logger = logging.getLogger(__name__)


class RouteProbe:
    """Requests a fixed route and checks the engine answers ``code == "Ok"``.

    Parameters
    ----------
    origin, destination:
        ``(lon, lat)`` pairs inside the served extract.
    timeout:
        Per-request timeout in seconds.
    host:
        Host the instances listen on.
    transport:
        Optional httpx transport, used to stub the engine in tests.
    """

    def __init__(
        self,
        origin: tuple[float, float],
        destination: tuple[float, float],
        timeout: float = 5.0,
        host: str = "127.0.0.1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._origin = origin
        self._destination = destination
        self._timeout = timeout
        self._host = host
        self._transport = transport

    def url(self, port: int) -> str:
        (lon1, lat1), (lon2, lat2) = self._origin, self._destination
        return f"http://{self._host}:{port}/route/v1/driving/{lon1},{lat1};{lon2},{lat2}?overview=false"

    async def check(self, instance_name: str, port: int) -> HealthResult:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self.url(port))
            elapsed_ms = round((time.monotonic() - start) * 1000, 2)
            if response.status_code != 200:
                return HealthResult(
                    instance_name=instance_name,
                    healthy=False,
                    message=f"HTTP {response.status_code}",
                    response_time_ms=elapsed_ms,
                )
            body = response.json()
        except httpx.HTTPError as exc:
            return HealthResult(instance_name=instance_name, healthy=False, message=f"unreachable: {exc}")
        except ValueError:
            return HealthResult(instance_name=instance_name, healthy=False, message="invalid JSON response")

        code = body.get("code") if isinstance(body, dict) else None
        routes = body.get("routes") if isinstance(body, dict) else None
        if code == "Ok" and routes:
            return HealthResult(instance_name=instance_name, healthy=True, message="Ok", response_time_ms=elapsed_ms)
        return HealthResult(
            instance_name=instance_name,
            healthy=False,
            message=f"route probe returned code={code!r}",
            response_time_ms=elapsed_ms,
        )
