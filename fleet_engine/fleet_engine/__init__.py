"""Build-and-deploy orchestration for a fleet of OSRM routing instances."""

__version__ = "0.1.0"
