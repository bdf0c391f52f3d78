"""create_composition_tables

Revision ID: 1f0c2a7d9b31
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "1f0c2a7d9b31"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("project_name", sa.String(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.PrimaryKeyConstraint("project_id"),
    )
    op.create_index("ix_projects_project_id", "projects", ["project_id"], unique=True)

    op.create_table(
        "assets",
        sa.Column("asset_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("asset_type", sa.String(), nullable=False),
        sa.Column("filename", sa.String(), nullable=False),
        # Readiness as reported by the ingestion pipeline
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("playback_url", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(
            ["project_id"], ["projects.project_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("asset_id"),
    )
    op.create_index("ix_assets_asset_id", "assets", ["asset_id"], unique=True)
    op.create_index("ix_assets_project_id", "assets", ["project_id"])
    op.create_index("ix_assets_status", "assets", ["status"])

    op.create_table(
        "compositions",
        sa.Column("composition_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("ir", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("compiled_artifact", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("history_cursor", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(
            ["project_id"], ["projects.project_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("composition_id"),
        sa.UniqueConstraint("project_id"),
    )
    op.create_index(
        "ix_compositions_composition_id", "compositions", ["composition_id"], unique=True
    )

    op.create_table(
        "composition_snapshots",
        sa.Column("snapshot_id", sa.String(length=64), nullable=False),
        sa.Column("composition_id", sa.String(length=64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("ir", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(
            ["composition_id"], ["compositions.composition_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("snapshot_id"),
    )
    op.create_index(
        "ix_composition_snapshots_snapshot_id", "composition_snapshots", ["snapshot_id"], unique=True
    )
    op.create_index(
        "ix_composition_snapshots_composition_sequence",
        "composition_snapshots",
        ["composition_id", "sequence"],
        unique=True,
    )
    op.create_index(
        "ix_composition_snapshots_composition_id", "composition_snapshots", ["composition_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_composition_snapshots_composition_id", table_name="composition_snapshots")
    op.drop_index("ix_composition_snapshots_composition_sequence", table_name="composition_snapshots")
    op.drop_index("ix_composition_snapshots_snapshot_id", table_name="composition_snapshots")
    op.drop_table("composition_snapshots")
    op.drop_index("ix_compositions_composition_id", table_name="compositions")
    op.drop_table("compositions")
    op.drop_index("ix_assets_status", table_name="assets")
    op.drop_index("ix_assets_project_id", table_name="assets")
    op.drop_index("ix_assets_asset_id", table_name="assets")
    op.drop_table("assets")
    op.drop_index("ix_projects_project_id", table_name="projects")
    op.drop_table("projects")
