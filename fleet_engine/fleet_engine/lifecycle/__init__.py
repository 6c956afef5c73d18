"""Process lifecycle and health probing for routing instances."""

from __future__ import annotations

from fleet_engine.lifecycle.health import RouteProbe
from fleet_engine.lifecycle.manager import ContainerLifecycleManager
from fleet_engine.lifecycle.process import PortProbe, send_signal, spawn_routed

__all__ = [
    "ContainerLifecycleManager",
    "PortProbe",
    "RouteProbe",
    "send_signal",
    "spawn_routed",
]
