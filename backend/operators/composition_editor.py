"""
Composition Editor - run edits against stored compositions.

Each call is one read -> execute -> write cycle inside a single transaction
with the composition row locked. Rejected edits roll back and leave both the
document and its version untouched.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session as DBSession

from models.composition_models import (
    ByIdSelector,
    EditOperation,
    EditPlan,
    ElementChanges,
    ElementType,
    ExecutionResult,
)
from operators.asset_operator import get_asset_infos
from operators.composition_operator import (
    check_expected_version,
    commit_document,
    lock_composition,
    to_document,
)
from operators.plan_executor import execute_plan, reorder_elements


logger = logging.getLogger(__name__)


def _commit_result(
    db: DBSession,
    composition_id: str,
    result: ExecutionResult,
    expected_version: int | None,
) -> ExecutionResult:
    if not result.success:
        db.rollback()
        logger.info(
            "Edit rejected for composition %s: %s",
            composition_id,
            result.error or "selector needs disambiguation",
        )
        return result

    committed = commit_document(
        db,
        composition_id,
        result.updated_ir,
        description=result.receipt,
        expected_version=expected_version,
    )
    logger.info(
        "Composition %s at version %s: %s", composition_id, committed.version, result.receipt
    )
    return result.model_copy(update={"updated_ir": to_document(committed)})


def execute_plan_for_composition(
    db: DBSession,
    composition_id: str,
    plan: EditPlan,
    resolved_element_id: str | None = None,
    expected_version: int | None = None,
) -> ExecutionResult:
    """
    Execute an edit plan against the stored composition and commit on success.

    Raises:
        CompositionNotFoundError: If the composition doesn't exist
        VersionConflictError: If expected_version doesn't match
        UnknownOperationError: If the plan's operation is not recognised
    """
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    document = to_document(composition)
    assets = None
    if plan.operation in (EditOperation.ADD, EditOperation.UPDATE):
        assets = get_asset_infos(db, composition.project_id)

    try:
        result = execute_plan(document, plan, resolved_element_id, assets)
    except Exception:
        db.rollback()
        raise

    return _commit_result(db, composition_id, result, expected_version)


# =============================================================================
# DIRECT ELEMENT CRUD
# =============================================================================


def add_element(
    db: DBSession,
    composition_id: str,
    element_type: ElementType,
    from_frame: int | None = None,
    duration_in_frames: int | None = None,
    label: str | None = None,
    properties: dict[str, Any] | None = None,
    asset_id: str | None = None,
    expected_version: int | None = None,
) -> ExecutionResult:
    """
    Add an element. With `asset_id` the asset must be ready; its playback
    URL becomes the element's source and its duration the default length.
    """
    properties = dict(properties or {})
    if asset_id:
        properties["assetId"] = asset_id

    changes: dict[str, Any] = {"type": element_type, "properties": properties}
    if from_frame is not None:
        changes["from_frame"] = from_frame
    if duration_in_frames is not None:
        changes["duration_in_frames"] = duration_in_frames
    if label is not None:
        changes["label"] = label

    plan = EditPlan(operation=EditOperation.ADD, changes=ElementChanges(**changes))
    return execute_plan_for_composition(
        db, composition_id, plan, expected_version=expected_version
    )


def update_element(
    db: DBSession,
    composition_id: str,
    element_id: str,
    changes: ElementChanges,
    expected_version: int | None = None,
) -> ExecutionResult:
    plan = EditPlan(
        operation=EditOperation.UPDATE,
        selector=ByIdSelector(id=element_id),
        changes=changes,
    )
    return execute_plan_for_composition(
        db, composition_id, plan, resolved_element_id=element_id, expected_version=expected_version
    )


def delete_element(
    db: DBSession,
    composition_id: str,
    element_id: str,
    expected_version: int | None = None,
) -> ExecutionResult:
    plan = EditPlan(
        operation=EditOperation.DELETE,
        selector=ByIdSelector(id=element_id),
        changes=ElementChanges(),
    )
    return execute_plan_for_composition(
        db, composition_id, plan, resolved_element_id=element_id, expected_version=expected_version
    )


def reorder_composition(
    db: DBSession,
    composition_id: str,
    element_ids: list[str],
    expected_version: int | None = None,
) -> ExecutionResult:
    """Replace the stacking order with a full ordered list of element ids."""
    composition = lock_composition(db, composition_id)
    check_expected_version(composition, expected_version)

    result = reorder_elements(to_document(composition), element_ids)
    return _commit_result(db, composition_id, result, expected_version)
