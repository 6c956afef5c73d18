"""Command-line front end for the OSRM fleet orchestrator."""

__version__ = "0.1.0"
