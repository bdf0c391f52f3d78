from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from models.composition_models import (
    AssetStatus,
    CompositionDocument,
    CompositionMetadata,
    EditPlan,
    ElementChanges,
    ElementType,
    ExecutionResult,
    HistoryState,
    Selector,
    SelectorResult,
    SnapshotSummary,
    UndoResult,
    WireModel,
)


class ProjectCreateRequest(BaseModel):
    name: str
    metadata: CompositionMetadata | None = None


class ProjectCreateResponse(BaseModel):
    ok: bool
    project_id: str
    project_name: str
    composition_id: str


class ProjectListResponse(BaseModel):
    ok: bool
    projects: list[dict[str, Any]]


class ProjectDeleteResponse(BaseModel):
    ok: bool


class AssetRegisterRequest(BaseModel):
    asset_type: str
    filename: str
    status: AssetStatus = AssetStatus.UPLOADING
    playback_url: str | None = None
    duration_seconds: float | None = Field(default=None, ge=0)


class AssetStatusUpdateRequest(BaseModel):
    status: AssetStatus
    playback_url: str | None = None
    duration_seconds: float | None = Field(default=None, ge=0)
    error_message: str | None = None


class AssetResponse(BaseModel):
    asset_id: str
    project_id: str
    asset_type: str
    filename: str
    status: str
    playback_url: str | None = None
    duration_seconds: float | None = None
    error_message: str | None = None
    created_at: datetime


class AssetListResponse(BaseModel):
    ok: bool
    assets: list[AssetResponse]


# =============================================================================
# COMPOSITION
# =============================================================================


class CompositionResponse(WireModel):
    ok: bool = True
    composition_id: str
    project_id: str
    version: int
    ir: CompositionDocument
    compiled_artifact: str = ""
    created_at: datetime
    updated_at: datetime


class ExecutePlanRequest(WireModel):
    plan: EditPlan
    resolved_element_id: str | None = None


class ResolveSelectorRequest(WireModel):
    selector: Selector


class ResolveSelectorResponse(WireModel):
    ok: bool = True
    result: SelectorResult


class AddElementRequest(WireModel):
    type: ElementType
    from_frame: int | None = Field(default=None, alias="from")
    duration_in_frames: int | None = None
    label: str | None = None
    properties: dict[str, Any] | None = None
    asset_id: str | None = None


class UpdateElementRequest(ElementChanges):
    pass


class ReorderElementsRequest(WireModel):
    element_ids: list[str]


class EditResultResponse(WireModel):
    ok: bool
    version: int
    result: ExecutionResult


class UndoResponse(WireModel):
    ok: bool
    result: UndoResult


class HistoryListResponse(WireModel):
    ok: bool = True
    snapshots: list[SnapshotSummary]
    total: int


class HistoryStateResponse(WireModel):
    ok: bool = True
    state: HistoryState


class HistoryClearResponse(WireModel):
    ok: bool = True
    deleted: int


class ChatRequest(WireModel):
    message: str = Field(min_length=1)
    history: list[dict[str, str]] = Field(default_factory=list)


class ChatResponse(WireModel):
    ok: bool
    reply: str
    receipts: list[str] = Field(default_factory=list)
    needs_disambiguation: bool = False
    disambiguation_options: list[dict[str, Any]] = Field(default_factory=list)
    iterations: int = 0
    budget_exhausted: bool = False
    version: int
