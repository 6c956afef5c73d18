"""Build record store: ORM tables, engine factories and repositories."""

from __future__ import annotations

from fleet_engine.state.database import get_engine, get_session_factory, session_scope
from fleet_engine.state.repository import BuildRepository, RoleRepository
from fleet_engine.state.sqlite_adapter import create_tables
from fleet_engine.state.source import SegmentSource
from fleet_engine.state.tables import Base, BuildTable, InstanceRoleTable

__all__ = [
    "Base",
    "BuildRepository",
    "BuildTable",
    "InstanceRoleTable",
    "RoleRepository",
    "SegmentSource",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
