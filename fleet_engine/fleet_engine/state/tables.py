"""SQLAlchemy 2.0 ORM table definitions for the build record store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """``DateTime`` that always yields UTC-aware values.

    SQLite drops the offset on storage, so naive values read back are
    tagged as UTC.  Aware values are normalised to UTC before storage.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all fleet tables."""


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


class BuildTable(Base):
    """One row per routing-data build attempt (append-only)."""

    __tablename__ = "osrm_builds"

    build_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    instance_name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")

    data_snapshot_time: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    total_segments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pbf_file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    pipeline_version: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=_utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    deployed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)

    osrm_output_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    avg_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'BUILDING', 'TESTING', 'READY', 'DEPLOYED', 'FAILED', 'DEPRECATED')",
            name="ck_osrm_builds_status",
        ),
        Index("ix_osrm_builds_instance_status", "instance_name", "status"),
        Index("ix_osrm_builds_created_at", "created_at"),
    )


# ---------------------------------------------------------------------------
# Instance roles
# ---------------------------------------------------------------------------


class InstanceRoleTable(Base):
    """Which instance of a profile pair currently serves traffic."""

    __tablename__ = "instance_roles"

    profile: Mapped[str] = mapped_column(String(64), primary_key=True)
    active_instance: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
