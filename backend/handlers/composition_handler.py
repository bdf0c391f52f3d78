"""
Composition Handler - REST API endpoints for editing a composition.

Mutating endpoints accept an optional X-Expected-Version header for
optimistic locking. When it is sent and the stored version has moved on,
the request fails with 409 Conflict:
{
    "detail": {
        "error": "version_conflict",
        "expected_version": <int>,
        "current_version": <int>,
        "message": "Composition was modified. Please refresh and retry."
    }
}

Rejected edits (validation, not found, asset not ready) on POST /plans come
back as data with ok=false. Ambiguous selectors come back the same way with
needsDisambiguation=true so the caller can resubmit with resolvedElementId.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import Composition
from dependencies.composition import get_expected_version, require_composition
from models.api_models import (
    AddElementRequest,
    CompositionResponse,
    EditResultResponse,
    ExecutePlanRequest,
    HistoryClearResponse,
    HistoryListResponse,
    HistoryStateResponse,
    ReorderElementsRequest,
    ResolveSelectorRequest,
    ResolveSelectorResponse,
    UndoResponse,
    UpdateElementRequest,
)
from models.composition_models import ErrorCode, ExecutionResult
from operators.asset_operator import AssetNotFoundError
from operators.composition_editor import (
    add_element,
    delete_element,
    execute_plan_for_composition,
    reorder_composition,
    update_element,
)
from operators.composition_operator import (
    CompositionNotFoundError,
    SnapshotNotFoundError,
    VersionConflictError,
    clear_history,
    get_history_state,
    list_snapshots,
    redo,
    restore_snapshot,
    to_document,
    undo,
)
from operators.plan_executor import UnknownOperationError
from operators.selector_resolver import resolve_selector


router = APIRouter(prefix="/compositions/{composition_id}", tags=["compositions"])


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


_RESULT_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION: 400,
    ErrorCode.ASSET_NOT_READY: 409,
}


def handle_composition_error(e: Exception):
    """Convert composition exceptions to HTTP exceptions."""
    if isinstance(e, HTTPException):
        raise e
    elif isinstance(e, (CompositionNotFoundError, SnapshotNotFoundError, AssetNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    elif isinstance(e, VersionConflictError):
        raise HTTPException(
            status_code=409,
            detail={
                "error": "version_conflict",
                "expected_version": e.expected_version,
                "current_version": e.current_version,
                "message": "Composition was modified. Please refresh and retry."
            }
        )
    elif isinstance(e, UnknownOperationError):
        raise HTTPException(status_code=400, detail=str(e))
    elif isinstance(e, ValidationError):
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    else:
        raise HTTPException(status_code=500, detail=f"Internal error: {str(e)}")


def raise_for_result(result: ExecutionResult) -> None:
    """Direct element endpoints report rejected edits as HTTP errors."""
    if result.success:
        return
    status_code = _RESULT_STATUS.get(result.error_code, 400)
    raise HTTPException(status_code=status_code, detail=result.error)


def _edit_response(result: ExecutionResult, composition: Composition) -> EditResultResponse:
    version = result.updated_ir.version if result.success else composition.version
    return EditResultResponse(ok=result.success, version=version, result=result)


# =============================================================================
# DOCUMENT
# =============================================================================


@router.get("", response_model=CompositionResponse)
async def composition_get(
    composition: Composition = Depends(require_composition),
):
    """Get the current document and its version."""
    return CompositionResponse(
        composition_id=composition.composition_id,
        project_id=composition.project_id,
        version=composition.version,
        ir=to_document(composition),
        compiled_artifact=composition.compiled_artifact or "",
        created_at=composition.created_at,
        updated_at=composition.updated_at,
    )


@router.post("/plans", response_model=EditResultResponse)
async def composition_execute_plan(
    request: ExecutePlanRequest,
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    """
    Execute an edit plan.

    Business failures and ambiguity are returned with ok=false; the
    document and version are unchanged in that case.
    """
    try:
        result = execute_plan_for_composition(
            db,
            composition.composition_id,
            request.plan,
            resolved_element_id=request.resolved_element_id,
            expected_version=expected_version,
        )
        return _edit_response(result, composition)
    except Exception as e:
        handle_composition_error(e)


@router.post("/resolve", response_model=ResolveSelectorResponse)
async def composition_resolve_selector(
    request: ResolveSelectorRequest,
    composition: Composition = Depends(require_composition),
):
    """Preview what a selector matches, without editing anything."""
    return ResolveSelectorResponse(
        result=resolve_selector(to_document(composition), request.selector)
    )


# =============================================================================
# DIRECT ELEMENT CRUD
# =============================================================================


@router.post("/elements", response_model=EditResultResponse)
async def composition_add_element(
    request: AddElementRequest,
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    try:
        result = add_element(
            db,
            composition.composition_id,
            element_type=request.type,
            from_frame=request.from_frame,
            duration_in_frames=request.duration_in_frames,
            label=request.label,
            properties=request.properties,
            asset_id=request.asset_id,
            expected_version=expected_version,
        )
        raise_for_result(result)
        return _edit_response(result, composition)
    except Exception as e:
        handle_composition_error(e)


@router.patch("/elements/{element_id}", response_model=EditResultResponse)
async def composition_update_element(
    request: UpdateElementRequest,
    element_id: str = Path(...),
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    """Partially update an element. Properties merge key by key."""
    try:
        result = update_element(
            db,
            composition.composition_id,
            element_id,
            changes=request,
            expected_version=expected_version,
        )
        raise_for_result(result)
        return _edit_response(result, composition)
    except Exception as e:
        handle_composition_error(e)


@router.delete("/elements/{element_id}", response_model=EditResultResponse)
async def composition_delete_element(
    element_id: str = Path(...),
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    try:
        result = delete_element(
            db, composition.composition_id, element_id, expected_version=expected_version
        )
        raise_for_result(result)
        return _edit_response(result, composition)
    except Exception as e:
        handle_composition_error(e)


@router.put("/elements/order", response_model=EditResultResponse)
async def composition_reorder_elements(
    request: ReorderElementsRequest,
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    """Replace the stacking order. Every current element id must appear exactly once."""
    try:
        result = reorder_composition(
            db, composition.composition_id, request.element_ids, expected_version=expected_version
        )
        raise_for_result(result)
        return _edit_response(result, composition)
    except Exception as e:
        handle_composition_error(e)


# =============================================================================
# HISTORY
# =============================================================================


@router.post("/undo", response_model=UndoResponse)
async def composition_undo(
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    try:
        result = undo(db, composition.composition_id, expected_version=expected_version)
        return UndoResponse(ok=result.success, result=result)
    except Exception as e:
        handle_composition_error(e)


@router.post("/redo", response_model=UndoResponse)
async def composition_redo(
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    try:
        result = redo(db, composition.composition_id, expected_version=expected_version)
        return UndoResponse(ok=result.success, result=result)
    except Exception as e:
        handle_composition_error(e)


@router.post("/history/{snapshot_id}/restore", response_model=UndoResponse)
async def composition_restore_snapshot(
    snapshot_id: str = Path(...),
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    expected_version: int | None = Depends(get_expected_version),
):
    try:
        result = restore_snapshot(
            db, composition.composition_id, snapshot_id, expected_version=expected_version
        )
        return UndoResponse(ok=result.success, result=result)
    except Exception as e:
        handle_composition_error(e)


@router.get("/history", response_model=HistoryListResponse)
async def composition_history(
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """List history snapshots, newest first."""
    try:
        snapshots, total = list_snapshots(
            db, composition.composition_id, limit=limit, offset=offset
        )
        return HistoryListResponse(snapshots=snapshots, total=total)
    except Exception as e:
        handle_composition_error(e)


@router.get("/history/state", response_model=HistoryStateResponse)
async def composition_history_state(
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
):
    try:
        return HistoryStateResponse(state=get_history_state(db, composition.composition_id))
    except Exception as e:
        handle_composition_error(e)


@router.delete("/history", response_model=HistoryClearResponse)
async def composition_clear_history(
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
):
    try:
        deleted = clear_history(db, composition.composition_id)
        return HistoryClearResponse(deleted=deleted)
    except Exception as e:
        handle_composition_error(e)
