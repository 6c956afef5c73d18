"""Active/standby role management and cutover."""

from __future__ import annotations

from fleet_engine.deploy.cutover import DeploymentCutoverController

__all__ = ["DeploymentCutoverController"]
