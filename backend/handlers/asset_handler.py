"""
Asset registry endpoints.

Upload and transcoding happen in the ingestion pipeline; these endpoints let
it register assets and report readiness so the editor can place them.
"""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import Project
from dependencies.composition import require_project
from models.api_models import (
    AssetListResponse,
    AssetRegisterRequest,
    AssetResponse,
    AssetStatusUpdateRequest,
)
from operators.asset_operator import (
    AssetNotFoundError,
    list_assets,
    register_asset,
    update_asset_status,
)

router = APIRouter(tags=["assets"])


def _asset_to_response(asset) -> AssetResponse:
    return AssetResponse(
        asset_id=asset.asset_id,
        project_id=asset.project_id,
        asset_type=asset.asset_type,
        filename=asset.filename,
        status=asset.status,
        playback_url=asset.playback_url,
        duration_seconds=asset.duration_seconds,
        error_message=asset.error_message,
        created_at=asset.created_at,
    )


@router.get("/projects/{project_id}/assets", response_model=AssetListResponse)
async def assets_list(
    project: Project = Depends(require_project),
    db: Session = Depends(get_db),
):
    assets = list_assets(db, project.project_id)
    return AssetListResponse(
        ok=True,
        assets=[_asset_to_response(a) for a in assets],
    )


@router.post("/projects/{project_id}/assets", response_model=AssetResponse)
async def asset_register(
    request: AssetRegisterRequest,
    project: Project = Depends(require_project),
    db: Session = Depends(get_db),
):
    asset = register_asset(
        db,
        project.project_id,
        asset_type=request.asset_type,
        filename=request.filename,
        status=request.status,
        playback_url=request.playback_url,
        duration_seconds=request.duration_seconds,
    )
    return _asset_to_response(asset)


@router.patch("/assets/{asset_id}", response_model=AssetResponse)
async def asset_update_status(
    request: AssetStatusUpdateRequest,
    asset_id: str = Path(...),
    db: Session = Depends(get_db),
):
    """Record a readiness change for an asset."""
    try:
        asset = update_asset_status(
            db,
            asset_id,
            status=request.status,
            playback_url=request.playback_url,
            duration_seconds=request.duration_seconds,
            error_message=request.error_message,
        )
    except AssetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return _asset_to_response(asset)
