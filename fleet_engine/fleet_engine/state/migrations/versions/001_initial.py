"""Initial schema for the build record store.

Creates ``osrm_builds`` (append-only build attempts) and ``instance_roles``
(active instance per profile).

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "osrm_builds",
        sa.Column("build_id", sa.String(64), primary_key=True),
        sa.Column("instance_name", sa.String(128), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("data_snapshot_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_segments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pbf_file_path", sa.String(1024), nullable=True),
        sa.Column("pipeline_version", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deployed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("osrm_output_path", sa.String(1024), nullable=True),
        sa.Column("avg_weight", sa.Float(), nullable=True),
        sa.Column("error_message", sa.String(500), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING', 'BUILDING', 'TESTING', 'READY', 'DEPLOYED', 'FAILED', 'DEPRECATED')",
            name="ck_osrm_builds_status",
        ),
    )
    op.create_index("ix_osrm_builds_instance_status", "osrm_builds", ["instance_name", "status"])
    op.create_index("ix_osrm_builds_created_at", "osrm_builds", ["created_at"])

    op.create_table(
        "instance_roles",
        sa.Column("profile", sa.String(64), primary_key=True),
        sa.Column("active_instance", sa.String(128), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("instance_roles")
    op.drop_index("ix_osrm_builds_created_at", table_name="osrm_builds")
    op.drop_index("ix_osrm_builds_instance_status", table_name="osrm_builds")
    op.drop_table("osrm_builds")
