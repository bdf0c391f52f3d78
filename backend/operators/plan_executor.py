"""
Plan Executor - apply a single edit plan to a composition document.

Everything here is pure: the input document is never mutated and no I/O
happens. Business failures (validation, not found, ambiguity, asset not
ready) come back as an ExecutionResult with success=False. Only an unknown
operation raises, since no legitimate caller can produce one.

apply_edit() is the one function used both for optimistic client-side
prediction and by the authoritative store path.
"""

import logging
import math
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from models.composition_models import (
    ASSET_BACKED_TYPES,
    DEFAULT_DURATION_IN_FRAMES,
    ELEMENT_ADAPTER,
    ELEMENT_CLASSES,
    AssetInfo,
    AssetStatus,
    ByTypeSelector,
    CompositionDocument,
    EditOperation,
    EditPlan,
    Element,
    ElementType,
    ErrorCode,
    ExecutionResult,
    generate_element_id,
)
from operators.selector_resolver import resolve_selector


logger = logging.getLogger(__name__)


class UnknownOperationError(ValueError):
    """Raised when an edit plan carries an operation outside the known four."""
    def __init__(self, operation: Any):
        self.operation = operation
        super().__init__(f"Unknown edit operation: {operation!r}")


# =============================================================================
# PLAN PARSING & VALIDATION
# =============================================================================


def parse_edit_plan(payload: dict[str, Any]) -> EditPlan:
    """
    Build an EditPlan from a loose dict (tool arguments, JSON bodies).

    Raises:
        UnknownOperationError: If `operation` is not add/update/delete/move
        pydantic.ValidationError: If the rest of the payload is malformed
    """
    operation = payload.get("operation")
    if operation not in {op.value for op in EditOperation}:
        raise UnknownOperationError(operation)
    return EditPlan.model_validate(payload)


def validate_edit_plan(plan: EditPlan, resolved_element_id: str | None = None) -> list[str]:
    """Return the reasons a plan cannot be dispatched (empty when valid)."""
    operation = _operation_of(plan)
    errors = []

    if plan.changes is None:
        errors.append("Edit plan must include changes object")

    if operation != EditOperation.ADD and plan.selector is None and not resolved_element_id:
        errors.append(f"{operation.value} operation requires a selector")

    if operation == EditOperation.ADD and plan.changes is not None and plan.changes.type is None:
        errors.append("Add operation requires element type")

    return errors


def _operation_of(plan: EditPlan) -> EditOperation:
    try:
        return EditOperation(plan.operation)
    except ValueError:
        raise UnknownOperationError(plan.operation) from None


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


# =============================================================================
# ELEMENT BUILDING
# =============================================================================


def _properties_model(element_type: str):
    return ELEMENT_CLASSES[element_type].model_fields["properties"].annotation


def _normalize_property_keys(element_type: str, properties: dict[str, Any]) -> dict[str, Any]:
    """Rename Python-style keys to their wire names so merges never double up."""
    fields = _properties_model(element_type).model_fields
    normalized = {}
    for key, value in properties.items():
        field = fields.get(key)
        normalized[field.alias if field and field.alias else key] = value
    return normalized


def _build_element(data: dict[str, Any]) -> Element:
    return ELEMENT_ADAPTER.validate_python(data)


def _dump_element(element: Element) -> dict[str, Any]:
    return element.model_dump(mode="json", by_alias=True, exclude_none=True)


def _overflow_warnings(document: CompositionDocument, element: Element) -> list[str]:
    limit = document.metadata.duration_in_frames
    if element.end_frame <= limit:
        return []
    warning = (
        f"Element {element.id} ends at frame {element.end_frame}, "
        f"past the composition duration of {limit} frames"
    )
    logger.warning(warning)
    return [warning]


def _with_elements(document: CompositionDocument, elements: list[Element]) -> CompositionDocument:
    return document.model_copy(update={"elements": elements})


# =============================================================================
# TARGET RESOLUTION
# =============================================================================


def _resolve_targets(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None,
    allow_batch: bool = False,
) -> tuple[list[Element], ExecutionResult | None]:
    """
    Find the element(s) a plan acts on.

    A pre-resolved id takes priority over the selector. An unfiltered byType
    selector that matches several elements is a batch target when
    allow_batch is set. A filtered one still asks for disambiguation.
    """
    if resolved_element_id:
        element = document.find_element(resolved_element_id)
        if element is None:
            return [], ExecutionResult.failure(
                f"Element not found: {resolved_element_id}", ErrorCode.NOT_FOUND
            )
        return [element], None

    result = resolve_selector(document, plan.selector)
    if result.is_ambiguous:
        if (
            allow_batch
            and isinstance(plan.selector, ByTypeSelector)
            and not plan.selector.filter
        ):
            return result.matches, None
        return [], ExecutionResult.ambiguous(result.disambiguation_options)

    if not result.matches:
        return [], ExecutionResult.failure(
            "No element found matching selector", ErrorCode.NOT_FOUND
        )
    return result.matches, None


# =============================================================================
# OPERATIONS
# =============================================================================


def _bind_asset(
    element_type: ElementType,
    asset_id: str,
    properties: dict[str, Any],
    assets: Mapping[str, AssetInfo] | None,
) -> tuple[AssetInfo | None, ExecutionResult | None]:
    """
    Check that an asset can back an element of this type and point the
    element's `src` at its playback URL.

    Returns (asset, None) on success or (None, failure).
    """
    asset = (assets or {}).get(asset_id)
    if asset is None:
        return None, ExecutionResult.failure(f"Asset not found: {asset_id}", ErrorCode.NOT_FOUND)
    if asset.asset_type != element_type.value:
        return None, ExecutionResult.failure(
            f"Asset {asset_id} is {asset.asset_type}, not {element_type.value}",
            ErrorCode.VALIDATION,
        )
    if asset.status != AssetStatus.READY:
        return None, ExecutionResult.failure(
            f"Asset is not ready (status: {asset.status.value}). "
            f"Please wait for processing to complete.",
            ErrorCode.ASSET_NOT_READY,
        )
    if not asset.playback_url:
        return None, ExecutionResult.failure(
            "Asset does not have a playback URL", ErrorCode.ASSET_NOT_READY
        )
    properties["src"] = asset.playback_url
    return asset, None


def _execute_add(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None,
    assets: Mapping[str, AssetInfo] | None,
) -> ExecutionResult:
    changes = plan.changes
    element_type = ElementType(changes.type)
    properties = _normalize_property_keys(element_type.value, dict(changes.properties or {}))
    duration = changes.duration_in_frames
    label = changes.label

    asset_id = properties.get("assetId")
    if element_type in ASSET_BACKED_TYPES and asset_id:
        asset, failure = _bind_asset(element_type, asset_id, properties, assets)
        if failure:
            return failure
        if duration is None and asset.duration_seconds:
            duration = max(1, math.floor(asset.duration_seconds * document.metadata.fps))
        if label is None and asset.filename:
            label = asset.filename
    elif element_type in ASSET_BACKED_TYPES and not properties.get("src"):
        return ExecutionResult.failure(
            f"A {element_type.value} element needs an assetId or a src",
            ErrorCode.VALIDATION,
        )

    existing_ids = set(document.element_ids())
    element_id = generate_element_id()
    while element_id in existing_ids:
        element_id = generate_element_id()

    data: dict[str, Any] = {
        "id": element_id,
        "type": element_type.value,
        "from": changes.from_frame if changes.from_frame is not None else 0,
        "durationInFrames": duration if duration is not None else DEFAULT_DURATION_IN_FRAMES,
        "label": label,
        "properties": properties,
    }
    if changes.animations is not None:
        data["animations"] = [a.model_dump(by_alias=True) for a in changes.animations]

    try:
        element = _build_element(data)
    except ValidationError as e:
        return ExecutionResult.failure(_format_validation_error(e), ErrorCode.VALIDATION)

    suffix = f' "{element.label}"' if element.label else ""
    return ExecutionResult(
        success=True,
        updated_ir=_with_elements(document, [*document.elements, element]),
        affected_elements=[element.id],
        receipt=f"Added {element.type} element{suffix}",
        warnings=_overflow_warnings(document, element),
    )


def _replace_element(
    document: CompositionDocument,
    element: Element,
    data: dict[str, Any],
    verb: str,
) -> ExecutionResult:
    try:
        updated = _build_element(data)
    except ValidationError as e:
        return ExecutionResult.failure(_format_validation_error(e), ErrorCode.VALIDATION)

    elements = [updated if el.id == element.id else el for el in document.elements]
    return ExecutionResult(
        success=True,
        updated_ir=_with_elements(document, elements),
        affected_elements=[updated.id],
        receipt=f"{verb} {element.display_name()}",
        warnings=_overflow_warnings(document, updated),
    )


def _execute_update(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None,
    assets: Mapping[str, AssetInfo] | None,
) -> ExecutionResult:
    targets, failure = _resolve_targets(document, plan, resolved_element_id)
    if failure:
        return failure
    element = targets[0]
    changes = plan.changes

    if changes.type is not None and ElementType(changes.type).value != element.type:
        return ExecutionResult.failure(
            f"Element type cannot be changed ({element.type} to {ElementType(changes.type).value})",
            ErrorCode.VALIDATION,
        )

    data = _dump_element(element)
    if changes.properties:
        properties = _normalize_property_keys(element.type, changes.properties)
        asset_id = properties.get("assetId")
        element_type = ElementType(element.type)
        if element_type in ASSET_BACKED_TYPES and asset_id:
            _, failure = _bind_asset(element_type, asset_id, properties, assets)
            if failure:
                return failure
        data["properties"] = {**data.get("properties", {}), **properties}
    if changes.provided("from_frame"):
        data["from"] = changes.from_frame
    if changes.provided("duration_in_frames"):
        data["durationInFrames"] = changes.duration_in_frames
    if changes.provided("label"):
        data["label"] = changes.label
    if changes.provided("animations"):
        data["animations"] = (
            [a.model_dump(by_alias=True) for a in changes.animations]
            if changes.animations is not None
            else None
        )

    return _replace_element(document, element, data, "Updated")


def _execute_move(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None,
    assets: Mapping[str, AssetInfo] | None,
) -> ExecutionResult:
    changes = plan.changes
    if not (changes.provided("from_frame") or changes.provided("duration_in_frames")):
        return ExecutionResult.failure(
            "Move operation requires from or durationInFrames", ErrorCode.VALIDATION
        )

    targets, failure = _resolve_targets(document, plan, resolved_element_id)
    if failure:
        return failure
    element = targets[0]

    data = _dump_element(element)
    if changes.provided("from_frame"):
        data["from"] = changes.from_frame
    if changes.provided("duration_in_frames"):
        data["durationInFrames"] = changes.duration_in_frames

    return _replace_element(document, element, data, "Moved")


def _execute_delete(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None,
    assets: Mapping[str, AssetInfo] | None,
) -> ExecutionResult:
    targets, failure = _resolve_targets(document, plan, resolved_element_id, allow_batch=True)
    if failure:
        return failure

    removed = {el.id for el in targets}
    elements = [el for el in document.elements if el.id not in removed]
    if len(targets) == 1:
        receipt = f"Deleted {targets[0].display_name()}"
    else:
        receipt = f"Deleted {len(targets)} elements"

    return ExecutionResult(
        success=True,
        updated_ir=_with_elements(document, elements),
        affected_elements=[el.id for el in targets],
        receipt=receipt,
    )


_OPERATIONS: dict[EditOperation, Callable[..., ExecutionResult]] = {
    EditOperation.ADD: _execute_add,
    EditOperation.UPDATE: _execute_update,
    EditOperation.DELETE: _execute_delete,
    EditOperation.MOVE: _execute_move,
}


# =============================================================================
# PUBLIC API
# =============================================================================


def execute_plan(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None = None,
    assets: Mapping[str, AssetInfo] | None = None,
) -> ExecutionResult:
    """
    Execute an edit plan against a document.

    Args:
        document: Current document (left untouched)
        plan: The edit to apply
        resolved_element_id: Exact target from a prior disambiguation round;
            takes priority over the plan's selector
        assets: Asset registry facts keyed by asset id, needed when adding
            asset-backed elements or updating their assetId

    Returns:
        ExecutionResult with the new document on success

    Raises:
        UnknownOperationError: If the plan's operation is not recognised
    """
    errors = validate_edit_plan(plan, resolved_element_id)
    if errors:
        return ExecutionResult.failure("; ".join(errors), ErrorCode.VALIDATION)

    handler = _OPERATIONS[_operation_of(plan)]
    return handler(document, plan, resolved_element_id, assets)


def apply_edit(
    document: CompositionDocument,
    plan: EditPlan,
    resolved_element_id: str | None = None,
    assets: Mapping[str, AssetInfo] | None = None,
) -> CompositionDocument:
    """Return the edited document, or the input unchanged if the plan was rejected."""
    result = execute_plan(document, plan, resolved_element_id, assets)
    return result.updated_ir if result.success else document


def reorder_elements(document: CompositionDocument, element_ids: list[str]) -> ExecutionResult:
    """
    Reorder elements to match a full ordered id list.

    The list must contain every current id exactly once and nothing else.
    """
    current = document.element_ids()
    current_set = set(current)

    missing = [el_id for el_id in current if el_id not in element_ids]
    unknown = [el_id for el_id in element_ids if el_id not in current_set]
    duplicates = sorted({el_id for el_id in element_ids if element_ids.count(el_id) > 1})

    problems = []
    if missing:
        problems.append(f"Missing element ids: {', '.join(missing)}")
    if unknown:
        problems.append(f"Elements not found: {', '.join(unknown)}")
    if duplicates:
        problems.append(f"Duplicate element ids: {', '.join(duplicates)}")
    if problems:
        return ExecutionResult.failure(
            f"Reorder must include all {len(current)} elements exactly once, "
            f"got {len(element_ids)}. " + "; ".join(problems),
            ErrorCode.VALIDATION,
        )

    by_id = {el.id: el for el in document.elements}
    return ExecutionResult(
        success=True,
        updated_ir=_with_elements(document, [by_id[el_id] for el_id in element_ids]),
        affected_elements=list(element_ids),
        receipt=f"Reordered {len(element_ids)} elements",
    )
