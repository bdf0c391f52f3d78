"""
Pydantic models for the composition document ("IR") and its edit language.

This module defines:
- The versioned composition document: metadata plus an ordered list of
  typed elements (render order = list order, later elements on top)
- Per-type element property sets as a discriminated union keyed on `type`
- Keyframe animations with easing
- Selectors used to reference elements loosely (by id, label, index, type)
- Edit plans and the structured results returned by the executor

Field names are snake_case in Python and camelCase on the wire
(`durationInFrames`, `playbackRate`, ...). `from` is exposed as `from_frame`.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


DEFAULT_DURATION_IN_FRAMES = 90


class WireModel(BaseModel):
    """Base model using camelCase aliases on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# ENUMS
# =============================================================================


class ElementType(str, Enum):
    """Closed set of element kinds."""
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"
    IMAGE = "image"
    SHAPE = "shape"
    SEQUENCE = "sequence"


ASSET_BACKED_TYPES = {ElementType.VIDEO, ElementType.AUDIO, ElementType.IMAGE}


class EditOperation(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    MOVE = "move"


class ErrorCode(str, Enum):
    """Business failure categories returned as data by the executor."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    ASSET_NOT_READY = "asset_not_ready"


class AssetStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


Easing = Literal["linear", "ease-in", "ease-out", "ease-in-out"]

AnimatableProperty = Literal[
    "opacity",
    "scale",
    "scaleX",
    "scaleY",
    "rotation",
    "rotateX",
    "rotateY",
    "translateX",
    "translateY",
    "skewX",
    "skewY",
    "x",
    "y",
]


# =============================================================================
# ANIMATION
# =============================================================================


def apply_easing(t: float, easing: Easing = "linear") -> float:
    """Map linear progress t in [0, 1] through an easing curve."""
    if easing == "ease-in":
        return t * t
    if easing == "ease-out":
        return t * (2 - t)
    if easing == "ease-in-out":
        return 2 * t * t if t < 0.5 else -1 + (4 - 2 * t) * t
    return t


class Keyframe(WireModel):
    """Property value at a frame relative to the element's own start."""
    frame: int = Field(ge=0, description="Frame offset from the element's `from`")
    value: float


class Animation(WireModel):
    """
    Keyframe animation of a single element property.

    Keyframe frames are relative to the element's `from`, not absolute
    timeline frames. A single keyframe is a constant value.
    """
    property_name: AnimatableProperty = Field(alias="property")
    keyframes: list[Keyframe] = Field(min_length=1)
    easing: Easing = "linear"

    @field_validator("keyframes")
    @classmethod
    def _frames_increase(cls, keyframes: list[Keyframe]) -> list[Keyframe]:
        for previous, current in zip(keyframes, keyframes[1:]):
            if current.frame <= previous.frame:
                raise ValueError(
                    f"Keyframe frames must be strictly increasing "
                    f"({previous.frame} then {current.frame})"
                )
        return keyframes

    def value_at(self, frame: float) -> float:
        """Evaluate the animation at a frame relative to the element start."""
        first, last = self.keyframes[0], self.keyframes[-1]
        if frame <= first.frame:
            return first.value
        if frame >= last.frame:
            return last.value

        for start, end in zip(self.keyframes, self.keyframes[1:]):
            if start.frame <= frame <= end.frame:
                progress = (frame - start.frame) / (end.frame - start.frame)
                eased = apply_easing(progress, self.easing)
                return start.value + (end.value - start.value) * eased

        return last.value


# =============================================================================
# ELEMENT PROPERTIES (one variant per element type)
# =============================================================================


class _Properties(WireModel):
    model_config = ConfigDict(extra="forbid")


Opacity = Annotated[float, Field(ge=0, le=1)]
Volume = Annotated[float, Field(ge=0, le=1)]
PlaybackRate = Annotated[float, Field(gt=0, le=10)]


class MediaPlaybackProperties(_Properties):
    """Shared playback attributes of asset-backed time-based media."""
    src: str | None = Field(default=None, description="Playable source locator")
    asset_id: str | None = Field(default=None, description="Asset registry reference")
    volume: Volume = 1.0
    playback_rate: PlaybackRate = 1.0
    start_from: int | None = Field(
        default=None, ge=0, description="Frame offset into the source media"
    )
    muted: bool = False


class VideoProperties(MediaPlaybackProperties):
    x: float | None = None
    y: float | None = None
    width: float | None = Field(default=None, gt=0)
    height: float | None = Field(default=None, gt=0)
    opacity: Opacity | None = None


class AudioProperties(MediaPlaybackProperties):
    pass


class TextProperties(_Properties):
    text: str = ""
    font_size: float = Field(default=48, gt=0)
    font_family: str | None = None
    font_weight: str | int = "normal"
    color: str = "#ffffff"
    background_color: str | None = None
    text_align: Literal["left", "center", "right"] = "center"
    x: float | None = None
    y: float | None = None
    opacity: Opacity | None = None


class ImageProperties(_Properties):
    src: str | None = None
    asset_id: str | None = None
    fit: Literal["cover", "contain", "fill"] = "cover"
    x: float | None = None
    y: float | None = None
    width: float | None = Field(default=None, gt=0)
    height: float | None = Field(default=None, gt=0)
    opacity: Opacity | None = None


class ShapeProperties(_Properties):
    shape: Literal["rect", "circle", "ellipse", "line"] = "rect"
    fill: str = "#ffffff"
    stroke: str | None = None
    stroke_width: float | None = Field(default=None, ge=0)
    border_radius: float | None = Field(default=None, ge=0)
    x: float | None = None
    y: float | None = None
    width: float | None = Field(default=None, gt=0)
    height: float | None = Field(default=None, gt=0)
    opacity: Opacity | None = None


class SequenceProperties(_Properties):
    x: float | None = None
    y: float | None = None
    opacity: Opacity | None = None


# =============================================================================
# ELEMENTS
# =============================================================================


class _ElementBase(WireModel):
    id: str = Field(description="Unique within the document, stable for life")
    from_frame: int = Field(default=0, ge=0, alias="from", description="Start frame")
    duration_in_frames: int = Field(default=DEFAULT_DURATION_IN_FRAMES, gt=0)
    label: str | None = Field(default=None, description="Display name, not unique")
    animations: list[Animation] | None = None

    @property
    def end_frame(self) -> int:
        """Exclusive end frame on the timeline."""
        return self.from_frame + self.duration_in_frames

    def display_name(self) -> str:
        return f'"{self.label}"' if self.label else f"{self.type} element"


class VideoElement(_ElementBase):
    type: Literal["video"] = "video"
    properties: VideoProperties = Field(default_factory=VideoProperties)


class AudioElement(_ElementBase):
    type: Literal["audio"] = "audio"
    properties: AudioProperties = Field(default_factory=AudioProperties)


class TextElement(_ElementBase):
    type: Literal["text"] = "text"
    properties: TextProperties = Field(default_factory=TextProperties)


class ImageElement(_ElementBase):
    type: Literal["image"] = "image"
    properties: ImageProperties = Field(default_factory=ImageProperties)


class ShapeElement(_ElementBase):
    type: Literal["shape"] = "shape"
    properties: ShapeProperties = Field(default_factory=ShapeProperties)


class SequenceElement(_ElementBase):
    type: Literal["sequence"] = "sequence"
    properties: SequenceProperties = Field(default_factory=SequenceProperties)


Element = Annotated[
    Union[
        VideoElement,
        AudioElement,
        TextElement,
        ImageElement,
        ShapeElement,
        SequenceElement,
    ],
    Field(discriminator="type"),
]

ELEMENT_ADAPTER: TypeAdapter[Element] = TypeAdapter(Element)

ELEMENT_CLASSES: dict[str, type[_ElementBase]] = {
    "video": VideoElement,
    "audio": AudioElement,
    "text": TextElement,
    "image": ImageElement,
    "shape": ShapeElement,
    "sequence": SequenceElement,
}


def generate_element_id() -> str:
    return f"el_{uuid4().hex[:12]}"


def generate_composition_id() -> str:
    return f"comp_{uuid4().hex}"


# =============================================================================
# COMPOSITION DOCUMENT
# =============================================================================


class CompositionMetadata(WireModel):
    """Canvas and timing parameters; fixed after creation."""
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)
    fps: int = Field(default=30, gt=0)
    duration_in_frames: int = Field(default=300, gt=0)


class CompositionDocument(WireModel):
    """
    The single source of truth for one timeline.

    Documents are treated as immutable values: every edit produces a new
    document and leaves the previous one untouched.
    """
    id: str = Field(default_factory=generate_composition_id)
    version: int = Field(default=0, ge=0)
    metadata: CompositionMetadata = Field(default_factory=CompositionMetadata)
    elements: list[Element] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_element_ids(self) -> CompositionDocument:
        seen: set[str] = set()
        for element in self.elements:
            if element.id in seen:
                raise ValueError(f"Duplicate element id: {element.id}")
            seen.add(element.id)
        return self

    def find_element(self, element_id: str) -> Element | None:
        return next((el for el in self.elements if el.id == element_id), None)

    def element_ids(self) -> list[str]:
        return [el.id for el in self.elements]

    def total_duration(self) -> int:
        """Last frame covered by any element (0 for an empty document)."""
        return max((el.end_frame for el in self.elements), default=0)

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible dict in wire format, as persisted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def create_empty(
        cls,
        metadata: CompositionMetadata | None = None,
        composition_id: str | None = None,
    ) -> CompositionDocument:
        return cls(
            id=composition_id or generate_composition_id(),
            version=0,
            metadata=metadata or CompositionMetadata(),
            elements=[],
        )


# =============================================================================
# SELECTORS
# =============================================================================


class ByIdSelector(WireModel):
    type: Literal["byId"] = "byId"
    id: str


class ByLabelSelector(WireModel):
    type: Literal["byLabel"] = "byLabel"
    label: str
    partial: bool = False


class ByIndexSelector(WireModel):
    """
    Positional selector over the top-level elements.

    `parent` is reserved for sequence groups; nested lookup is not
    implemented and the index always applies to the top level.
    """
    type: Literal["byIndex"] = "byIndex"
    index: int
    parent: Selector | None = None


class ByTypeSelector(WireModel):
    type: Literal["byType"] = "byType"
    element_type: ElementType
    index: int | None = Field(
        default=None, description="Position within elements of this type"
    )
    filter: dict[str, Any] | None = Field(
        default=None, description="Field equality filter, every key must match"
    )


Selector = Annotated[
    Union[ByIdSelector, ByLabelSelector, ByIndexSelector, ByTypeSelector],
    Field(discriminator="type"),
]

ByIndexSelector.model_rebuild()


class DisambiguationOption(WireModel):
    element_id: str
    label: str
    description: str


class SelectorResult(WireModel):
    matches: list[Element] = Field(default_factory=list)
    is_ambiguous: bool = False
    disambiguation_options: list[DisambiguationOption] | None = None


# =============================================================================
# EDIT PLANS & RESULTS
# =============================================================================


class ElementChanges(WireModel):
    """
    Partial element payload carried by an edit plan.

    Only keys that are explicitly present are applied; an absent key means
    "leave unchanged", not "clear".
    """
    model_config = ConfigDict(extra="forbid")

    type: ElementType | None = None
    from_frame: int | None = Field(default=None, alias="from")
    duration_in_frames: int | None = None
    label: str | None = None
    properties: dict[str, Any] | None = None
    animations: list[Animation] | None = None

    def provided(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class EditPlan(WireModel):
    """A single requested change plus what is needed to locate its target."""
    operation: EditOperation
    selector: Selector | None = None
    changes: ElementChanges | None = None


class AssetInfo(WireModel):
    """What the engine needs to know about an asset from the registry."""
    asset_id: str
    asset_type: str
    filename: str = ""
    status: AssetStatus = AssetStatus.UPLOADING
    playback_url: str | None = None
    duration_seconds: float | None = None

    @property
    def is_playable(self) -> bool:
        return self.status == AssetStatus.READY and bool(self.playback_url)


class ExecutionResult(WireModel):
    """Outcome of executing an edit plan. Business failures are data."""
    success: bool
    updated_ir: CompositionDocument | None = Field(default=None, alias="updatedIR")
    affected_elements: list[str] = Field(default_factory=list)
    receipt: str = ""
    error: str | None = None
    error_code: ErrorCode | None = None
    needs_disambiguation: bool = False
    disambiguation_options: list[DisambiguationOption] | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def failure(cls, message: str, code: ErrorCode) -> ExecutionResult:
        return cls(success=False, error=message, error_code=code)

    @classmethod
    def ambiguous(cls, options: list[DisambiguationOption] | None) -> ExecutionResult:
        return cls(
            success=False,
            needs_disambiguation=True,
            disambiguation_options=options or [],
        )


# =============================================================================
# HISTORY
# =============================================================================


class SnapshotSummary(WireModel):
    """A saved document state, as listed in history."""
    snapshot_id: str
    composition_id: str
    sequence: int
    description: str
    version: int
    timestamp: datetime
    is_current: bool = False


class HistoryState(WireModel):
    can_undo: bool
    can_redo: bool
    history_count: int
    current_version: int


class UndoResult(WireModel):
    success: bool
    message: str
    version: int | None = None
