"""
Asset registry lookups.

Ingestion and transcoding happen outside this service. The registry only
tracks what the editor needs to place an asset on the timeline: its
readiness, a playable source locator and its natural duration.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import Session as DBSession

from database.models import Assets
from models.composition_models import AssetInfo, AssetStatus
from operators.composition_operator import CompositionError


class AssetNotFoundError(CompositionError):
    """Raised when an asset is not found."""
    def __init__(self, asset_id: str | None = None):
        self.asset_id = asset_id
        super().__init__(f"Asset not found: {asset_id}" if asset_id else "Asset not found")


def register_asset(
    db: DBSession,
    project_id: str,
    asset_type: str,
    filename: str,
    status: AssetStatus = AssetStatus.UPLOADING,
    playback_url: str | None = None,
    duration_seconds: float | None = None,
) -> Assets:
    now = datetime.now(timezone.utc)
    asset = Assets(
        project_id=project_id,
        asset_type=asset_type,
        filename=filename,
        status=AssetStatus(status).value,
        playback_url=playback_url,
        duration_seconds=duration_seconds,
        created_at=now,
        updated_at=now,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def update_asset_status(
    db: DBSession,
    asset_id: str,
    status: AssetStatus,
    playback_url: str | None = None,
    duration_seconds: float | None = None,
    error_message: str | None = None,
) -> Assets:
    """
    Record a readiness change reported by the ingestion pipeline.

    Fields left as None keep their stored value.
    """
    asset = get_asset(db, asset_id)
    if not asset:
        raise AssetNotFoundError(asset_id)

    asset.status = AssetStatus(status).value
    if playback_url is not None:
        asset.playback_url = playback_url
    if duration_seconds is not None:
        asset.duration_seconds = duration_seconds
    if error_message is not None:
        asset.error_message = error_message
    asset.updated_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(asset)
    return asset


def get_asset(db: DBSession, asset_id: str, project_id: str | None = None) -> Assets | None:
    query = db.query(Assets).filter(Assets.asset_id == asset_id)
    if project_id is not None:
        query = query.filter(Assets.project_id == project_id)
    return query.first()


def list_assets(db: DBSession, project_id: str) -> list[Assets]:
    return (
        db.query(Assets)
        .filter(Assets.project_id == project_id)
        .order_by(Assets.created_at.asc())
        .all()
    )


def delete_asset(db: DBSession, project_id: str, asset_id: str) -> bool:
    asset = get_asset(db, asset_id, project_id=project_id)
    if not asset:
        return False

    db.delete(asset)
    db.commit()
    return True


def to_asset_info(asset: Assets) -> AssetInfo:
    return AssetInfo(
        asset_id=asset.asset_id,
        asset_type=asset.asset_type,
        filename=asset.filename or "",
        status=AssetStatus(asset.status),
        playback_url=asset.playback_url,
        duration_seconds=asset.duration_seconds,
    )


def get_asset_infos(db: DBSession, project_id: str) -> dict[str, AssetInfo]:
    """Registry facts for every asset in a project, keyed by asset id."""
    return {asset.asset_id: to_asset_info(asset) for asset in list_assets(db, project_id)}
