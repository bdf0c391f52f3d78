from uuid import uuid4
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from database.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid_str() -> str:
    return str(uuid4())


class Project(Base):
    __tablename__ = "projects"

    project_id = Column(
        String(64), unique=True, index=True, nullable=False, primary_key=True, default=_uuid_str
    )
    project_name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<Project project_id={self.project_id} project_name={self.project_name} created_at={self.created_at} updated_at={self.updated_at}>"


class Assets(Base):
    """
    Asset registry entry.

    Ingestion happens elsewhere; this table only records what the editor
    needs: readiness, a playable source locator and the natural duration.
    """

    __tablename__ = "assets"

    asset_id = Column(
        String(64), unique=True, index=True, nullable=False, primary_key=True, default=_uuid_str
    )
    project_id = Column(
        String(64),
        ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
    )
    asset_type = Column(String, nullable=False)  # video | audio | image
    filename = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="uploading")
    playback_url = Column(String, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_assets_project_id", project_id),
        Index("ix_assets_status", status),
    )

    def __repr__(self):
        return (
            f"<Assets asset_id={self.asset_id} project_id={self.project_id} "
            f"asset_type={self.asset_type} status={self.status}>"
        )


class Composition(Base):
    """
    Composition container - one per project.

    `ir` holds the current document; `history_cursor` is the sequence number
    of the snapshot that matches it.
    """

    __tablename__ = "compositions"

    composition_id = Column(String(64), unique=True, index=True, nullable=False, primary_key=True)
    project_id = Column(
        String(64),
        ForeignKey("projects.project_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,  # One composition per project
    )
    ir = Column(JSONType, nullable=False)
    compiled_artifact = Column(String, nullable=False, default="")
    version = Column(Integer, nullable=False, default=0)
    history_cursor = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return (
            f"<Composition composition_id={self.composition_id} "
            f"project_id={self.project_id} version={self.version} "
            f"history_cursor={self.history_cursor}>"
        )


class CompositionSnapshot(Base):
    """
    One committed document state in a composition's history log.

    `sequence` increases monotonically per composition and is never reused,
    so it stays a valid cursor after old snapshots are evicted.
    """

    __tablename__ = "composition_snapshots"

    snapshot_id = Column(
        String(64), unique=True, index=True, nullable=False, primary_key=True, default=_uuid_str
    )
    composition_id = Column(
        String(64),
        ForeignKey("compositions.composition_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    ir = Column(JSONType, nullable=False)
    description = Column(String, nullable=False)  # Receipt of the edit that produced it
    version = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index(
            "ix_composition_snapshots_composition_sequence",
            composition_id,
            sequence,
            unique=True,
        ),
        Index("ix_composition_snapshots_composition_id", composition_id),
    )

    def __repr__(self):
        return (
            f"<CompositionSnapshot snapshot_id={self.snapshot_id} "
            f"composition_id={self.composition_id} sequence={self.sequence} "
            f"version={self.version} description={self.description[:50]}...>"
        )
