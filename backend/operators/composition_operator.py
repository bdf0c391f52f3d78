"""
Composition Operator - persistence, versioning and history for compositions.

This module is the store side of the edit engine:
- Create/read compositions (one per project)
- Commit a new document with a version bump under a row lock
- Optimistic locking via an optional expected_version parameter
- Append-only snapshot log with an explicit cursor for undo/redo
- History queries and maintenance

Every committed state is a snapshot, so the snapshot just behind the cursor
is always the state before the last change. Undo and redo move the cursor
and restore that snapshot as a new version; a fresh commit after an undo
discards everything ahead of the cursor.
"""

import os
from datetime import datetime, timezone

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session as DBSession

from database.models import (
    Composition as CompositionModel,
    CompositionSnapshot as CompositionSnapshotModel,
)
from models.composition_models import (
    CompositionDocument,
    CompositionMetadata,
    HistoryState,
    SnapshotSummary,
    UndoResult,
    generate_composition_id,
)


HISTORY_LIMIT = int(os.getenv("COMPOSITION_HISTORY_LIMIT", "50"))
DEFAULT_HISTORY_PAGE = 20


# =============================================================================
# EXCEPTIONS
# =============================================================================


class CompositionError(Exception):
    """Base exception for composition operations."""
    pass


class CompositionNotFoundError(CompositionError):
    """Raised when a composition is not found."""
    def __init__(self, composition_id: str | None = None, project_id: str | None = None):
        self.composition_id = composition_id
        self.project_id = project_id
        if composition_id:
            super().__init__(f"Composition not found: {composition_id}")
        elif project_id:
            super().__init__(f"No composition found for project: {project_id}")
        else:
            super().__init__("Composition not found")


class SnapshotNotFoundError(CompositionError):
    """Raised when a history snapshot is not found."""
    def __init__(self, snapshot_id: str | None = None):
        self.snapshot_id = snapshot_id
        if snapshot_id:
            super().__init__(f"Snapshot not found: {snapshot_id}")
        else:
            super().__init__("Snapshot not found")


class VersionConflictError(CompositionError):
    """
    Raised when optimistic locking fails.

    The caller read version `expected_version` but another writer has since
    committed, so the stored version is now `current_version`.
    """
    def __init__(self, expected_version: int, current_version: int):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Version conflict: expected {expected_version}, "
            f"but current version is {current_version}. "
            f"Please refresh and retry."
        )


# =============================================================================
# CREATE & READ
# =============================================================================


def create_composition(
    db: DBSession,
    project_id: str,
    metadata: CompositionMetadata | None = None,
    composition_id: str | None = None,
) -> CompositionModel:
    """
    Create the composition for a project with an initial history snapshot.

    Raises:
        CompositionError: If the project already has a composition
    """
    existing = get_composition_by_project(db, project_id)
    if existing:
        raise CompositionError(f"Composition already exists for project {project_id}")

    document = CompositionDocument.create_empty(
        metadata=metadata,
        composition_id=composition_id or generate_composition_id(),
    )
    now = datetime.now(timezone.utc)

    composition = CompositionModel(
        composition_id=document.id,
        project_id=project_id,
        ir=document.to_record(),
        compiled_artifact="",
        version=document.version,
        history_cursor=0,
        created_at=now,
        updated_at=now,
    )
    db.add(composition)
    db.flush()

    db.add(
        CompositionSnapshotModel(
            composition_id=document.id,
            sequence=0,
            ir=document.to_record(),
            description="Initial empty composition",
            version=document.version,
            timestamp=now,
        )
    )

    db.commit()
    db.refresh(composition)
    return composition


def get_composition(db: DBSession, composition_id: str) -> CompositionModel | None:
    return db.query(CompositionModel).filter(
        CompositionModel.composition_id == composition_id
    ).first()


def get_composition_by_project(db: DBSession, project_id: str) -> CompositionModel | None:
    """Get the composition owned by a project."""
    return db.query(CompositionModel).filter(
        CompositionModel.project_id == project_id
    ).first()


def to_document(composition: CompositionModel) -> CompositionDocument:
    return CompositionDocument.model_validate(composition.ir)


def get_document(db: DBSession, composition_id: str) -> CompositionDocument:
    """
    Get the current document of a composition.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
    """
    composition = get_composition(db, composition_id)
    if not composition:
        raise CompositionNotFoundError(composition_id=composition_id)
    return to_document(composition)


def lock_composition(db: DBSession, composition_id: str) -> CompositionModel:
    """
    Load a composition with a row lock held until the transaction ends.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
    """
    composition = db.query(CompositionModel).filter(
        CompositionModel.composition_id == composition_id
    ).with_for_update().first()

    if not composition:
        raise CompositionNotFoundError(composition_id=composition_id)
    return composition


def check_expected_version(composition: CompositionModel, expected_version: int | None) -> None:
    if expected_version is not None and composition.version != expected_version:
        raise VersionConflictError(
            expected_version=expected_version,
            current_version=composition.version,
        )


# =============================================================================
# SNAPSHOT LOG INTERNALS
# =============================================================================


def _snapshots(db: DBSession, composition_id: str):
    return db.query(CompositionSnapshotModel).filter(
        CompositionSnapshotModel.composition_id == composition_id
    )


def _snapshot_at(db: DBSession, composition_id: str, sequence: int) -> CompositionSnapshotModel | None:
    return _snapshots(db, composition_id).filter(
        CompositionSnapshotModel.sequence == sequence
    ).first()


def _previous_snapshot(db: DBSession, composition: CompositionModel) -> CompositionSnapshotModel | None:
    return _snapshots(db, composition.composition_id).filter(
        CompositionSnapshotModel.sequence < composition.history_cursor
    ).order_by(CompositionSnapshotModel.sequence.desc()).first()


def _next_snapshot(db: DBSession, composition: CompositionModel) -> CompositionSnapshotModel | None:
    return _snapshots(db, composition.composition_id).filter(
        CompositionSnapshotModel.sequence > composition.history_cursor
    ).order_by(CompositionSnapshotModel.sequence.asc()).first()


def _last_sequence(db: DBSession, composition_id: str) -> int:
    last = db.query(sa_func.max(CompositionSnapshotModel.sequence)).filter(
        CompositionSnapshotModel.composition_id == composition_id
    ).scalar()
    return -1 if last is None else last


def _discard_redo_branch(db: DBSession, composition: CompositionModel) -> None:
    _snapshots(db, composition.composition_id).filter(
        CompositionSnapshotModel.sequence > composition.history_cursor
    ).delete(synchronize_session=False)


def _evict_oldest(db: DBSession, composition_id: str) -> None:
    total = _snapshots(db, composition_id).count()
    overflow = total - HISTORY_LIMIT
    if overflow <= 0:
        return
    oldest = _snapshots(db, composition_id).order_by(
        CompositionSnapshotModel.sequence.asc()
    ).limit(overflow).all()
    for snapshot in oldest:
        db.delete(snapshot)


def _write_state(
    composition: CompositionModel,
    document: CompositionDocument,
    cursor: int,
) -> CompositionDocument:
    """Store `document` as the next version and point the cursor at `cursor`."""
    new_version = composition.version + 1
    document = document.model_copy(
        update={"id": composition.composition_id, "version": new_version}
    )
    composition.ir = document.to_record()
    composition.version = new_version
    composition.history_cursor = cursor
    composition.updated_at = datetime.now(timezone.utc)
    return document


# =============================================================================
# COMMIT (with optimistic locking)
# =============================================================================


def commit_document(
    db: DBSession,
    composition_id: str,
    document: CompositionDocument,
    description: str,
    expected_version: int | None = None,
    compiled_artifact: str | None = None,
) -> CompositionModel:
    """
    Persist a new document state.

    This is the single write path for edits. It:
    1. Locks the composition row and checks expected_version when given
    2. Sets version = current version + 1
    3. Drops any redo branch ahead of the history cursor
    4. Appends a snapshot described by `description` and moves the cursor
    5. Evicts the oldest snapshots beyond the history limit

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
        VersionConflictError: If expected_version doesn't match
    """
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    _discard_redo_branch(db, composition)
    sequence = _last_sequence(db, composition_id) + 1
    if sequence <= composition.history_cursor:
        sequence = composition.history_cursor + 1

    committed = _write_state(composition, document, cursor=sequence)
    if compiled_artifact is not None:
        composition.compiled_artifact = compiled_artifact

    db.add(
        CompositionSnapshotModel(
            composition_id=composition_id,
            sequence=sequence,
            ir=committed.to_record(),
            description=description,
            version=committed.version,
            timestamp=datetime.now(timezone.utc),
        )
    )
    db.flush()
    _evict_oldest(db, composition_id)

    db.commit()
    db.refresh(composition)
    return composition


# =============================================================================
# UNDO / REDO / RESTORE
# =============================================================================


def _restore(
    db: DBSession,
    composition: CompositionModel,
    snapshot: CompositionSnapshotModel,
) -> int:
    document = CompositionDocument.model_validate(snapshot.ir)
    _write_state(composition, document, cursor=snapshot.sequence)
    db.commit()
    db.refresh(composition)
    return composition.version


def undo(db: DBSession, composition_id: str, expected_version: int | None = None) -> UndoResult:
    """
    Step back to the state before the last change.

    Restoring counts as a mutation, so the version still goes up by one.
    With nothing behind the cursor this reports failure and changes nothing.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
        VersionConflictError: If expected_version doesn't match
    """
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    previous = _previous_snapshot(db, composition)
    if previous is None:
        version = composition.version
        db.rollback()
        return UndoResult(success=False, message="No previous state to restore", version=version)

    current = _snapshot_at(db, composition_id, composition.history_cursor)
    undone = current.description if current else "last change"
    version = _restore(db, composition, previous)
    return UndoResult(success=True, message=f"Undid: {undone}", version=version)


def redo(db: DBSession, composition_id: str, expected_version: int | None = None) -> UndoResult:
    """
    Re-apply the change most recently undone.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
        VersionConflictError: If expected_version doesn't match
    """
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    following = _next_snapshot(db, composition)
    if following is None:
        version = composition.version
        db.rollback()
        return UndoResult(success=False, message="Nothing to redo", version=version)

    description = following.description
    version = _restore(db, composition, following)
    return UndoResult(success=True, message=f"Redid: {description}", version=version)


def restore_snapshot(
    db: DBSession,
    composition_id: str,
    snapshot_id: str,
    expected_version: int | None = None,
) -> UndoResult:
    """
    Restore any snapshot in the composition's history and move the cursor to it.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
        SnapshotNotFoundError: If the snapshot doesn't belong to this composition
        VersionConflictError: If expected_version doesn't match
    """
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    snapshot = _snapshots(db, composition_id).filter(
        CompositionSnapshotModel.snapshot_id == snapshot_id
    ).first()
    if not snapshot:
        db.rollback()
        raise SnapshotNotFoundError(snapshot_id=snapshot_id)

    description = snapshot.description
    version = _restore(db, composition, snapshot)
    return UndoResult(success=True, message=f"Restored: {description}", version=version)


# =============================================================================
# HISTORY QUERIES
# =============================================================================


def list_snapshots(
    db: DBSession,
    composition_id: str,
    limit: int = DEFAULT_HISTORY_PAGE,
    offset: int = 0,
) -> tuple[list[SnapshotSummary], int]:
    """
    List history snapshots, newest first.

    Returns:
        Tuple of (list of SnapshotSummary, total count)
    """
    composition = get_composition(db, composition_id)
    if not composition:
        raise CompositionNotFoundError(composition_id=composition_id)

    query = _snapshots(db, composition_id)
    total = query.count()

    snapshots = query.order_by(
        CompositionSnapshotModel.sequence.desc()
    ).offset(offset).limit(limit).all()

    summaries = [
        SnapshotSummary(
            snapshot_id=snapshot.snapshot_id,
            composition_id=snapshot.composition_id,
            sequence=snapshot.sequence,
            description=snapshot.description,
            version=snapshot.version,
            timestamp=snapshot.timestamp,
            is_current=snapshot.sequence == composition.history_cursor,
        )
        for snapshot in snapshots
    ]

    return summaries, total


def get_history_state(db: DBSession, composition_id: str) -> HistoryState:
    composition = get_composition(db, composition_id)
    if not composition:
        raise CompositionNotFoundError(composition_id=composition_id)

    return HistoryState(
        can_undo=_previous_snapshot(db, composition) is not None,
        can_redo=_next_snapshot(db, composition) is not None,
        history_count=_snapshots(db, composition_id).count(),
        current_version=composition.version,
    )


def clear_history(db: DBSession, composition_id: str) -> int:
    """
    Delete every snapshot and re-seed the log with the current state.

    The document and its version are left alone.

    Returns:
        Number of snapshots deleted
    """
    composition = lock_composition(db, composition_id)

    next_sequence = _last_sequence(db, composition_id) + 1
    deleted = _snapshots(db, composition_id).delete(synchronize_session=False)

    db.add(
        CompositionSnapshotModel(
            composition_id=composition_id,
            sequence=next_sequence,
            ir=composition.ir,
            description="History cleared",
            version=composition.version,
            timestamp=datetime.now(timezone.utc),
        )
    )
    composition.history_cursor = next_sequence

    db.commit()
    return deleted


def delete_composition(db: DBSession, composition_id: str) -> bool:
    """Delete a composition and its history."""
    composition = get_composition(db, composition_id)
    if not composition:
        return False

    _snapshots(db, composition_id).delete(synchronize_session=False)
    db.delete(composition)
    db.commit()
    return True
