from __future__ import annotations

from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from models.composition_models import (
    Animation,
    ErrorCode,
    ExecutionResult,
)
from operators.composition_editor import execute_plan_for_composition
from operators.composition_operator import (
    CompositionNotFoundError,
    VersionConflictError,
    get_composition,
    to_document,
)
from operators.plan_executor import UnknownOperationError, parse_edit_plan
from operators.selector_resolver import resolve_selector

from .types import ErrorSeverity, ToolError


class ToolArgumentError(ValueError):
    """Raised when tool arguments cannot be turned into an edit plan."""
    pass


# =============================================================================
# Tool Definitions
# =============================================================================


_ANIMATABLE_PROPERTIES = [
    "opacity",
    "scale",
    "scaleX",
    "scaleY",
    "x",
    "y",
    "rotation",
    "rotateX",
    "rotateY",
    "translateX",
    "translateY",
    "skewX",
    "skewY",
]

_SELECTOR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Loose reference used when the element id is unknown. "
        "byLabel matches labels case-insensitively (partial for substring), "
        "byIndex picks by stacking position, byType picks by element type "
        "(optionally the n-th of that type)."
    ),
    "properties": {
        "type": {"type": "string", "enum": ["byId", "byLabel", "byIndex", "byType"]},
        "id": {"type": "string"},
        "label": {"type": "string"},
        "partial": {"type": "boolean"},
        "index": {"type": "integer"},
        "elementType": {
            "type": "string",
            "enum": ["video", "audio", "text", "image", "shape", "sequence"],
        },
        "filter": {"type": "object"},
    },
    "required": ["type"],
}

_TARGET_PROPERTIES: dict[str, Any] = {
    "elementId": {
        "type": "string",
        "description": "Exact element id. Takes priority over selector.",
    },
    "selector": _SELECTOR_SCHEMA,
}

COMPOSITION_TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "add_video_element",
            "description": "Add a video from the project's uploaded assets to the composition.",
            "parameters": {
                "type": "object",
                "properties": {
                    "assetId": {"type": "string", "description": "ID of the asset to add"},
                    "from": {"type": "integer", "description": "Start frame (default 0)"},
                    "durationInFrames": {
                        "type": "integer",
                        "description": "Duration in frames (default: the asset's own length)",
                    },
                    "label": {"type": "string", "description": "Display name"},
                },
                "required": ["assetId"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "add_text_element",
            "description": "Add a text overlay to the composition.",
            "parameters": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "from": {"type": "integer", "description": "Start frame"},
                    "durationInFrames": {"type": "integer"},
                    "x": {"type": "number"},
                    "y": {"type": "number"},
                    "fontSize": {"type": "number"},
                    "color": {"type": "string", "description": "CSS color, e.g. #ffffff"},
                    "fontWeight": {"type": "string"},
                    "backgroundColor": {"type": "string"},
                    "label": {"type": "string"},
                },
                "required": ["text", "from", "durationInFrames"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "add_animation",
            "description": (
                "Animate a property of an element with keyframes. Keyframe frames "
                "are relative to the element's start. Replaces any existing "
                "animation of the same property."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    **_TARGET_PROPERTIES,
                    "property": {"type": "string", "enum": _ANIMATABLE_PROPERTIES},
                    "keyframes": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "frame": {"type": "integer"},
                                "value": {"type": "number"},
                            },
                            "required": ["frame", "value"],
                        },
                        "minItems": 2,
                    },
                    "easing": {
                        "type": "string",
                        "enum": ["linear", "ease-in", "ease-out", "ease-in-out"],
                    },
                },
                "required": ["property", "keyframes"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "update_element_properties",
            "description": (
                "Change properties of an element (volume, text, color, opacity, ...). "
                "Only the given properties change."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    **_TARGET_PROPERTIES,
                    "properties": {"type": "object"},
                    "label": {"type": "string"},
                },
                "required": ["properties"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "delete_element",
            "description": (
                "Remove an element. A byType selector without index or filter removes "
                "every element of that type."
            ),
            "parameters": {
                "type": "object",
                "properties": {**_TARGET_PROPERTIES},
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "move_element",
            "description": "Change when an element starts and/or how long it lasts.",
            "parameters": {
                "type": "object",
                "properties": {
                    **_TARGET_PROPERTIES,
                    "from": {"type": "integer", "description": "New start frame"},
                    "durationInFrames": {"type": "integer", "description": "New duration"},
                },
                "required": [],
            },
        },
    },
]


# =============================================================================
# Tool Errors
# =============================================================================


_ERROR_HINTS: dict[str, tuple[ErrorSeverity, str | None]] = {
    "UNKNOWN_TOOL": (ErrorSeverity.USER_INPUT, "Use a tool name from the tool list."),
    "INVALID_ARGUMENTS": (
        ErrorSeverity.USER_INPUT,
        "Pass elementId or a selector, plus the fields the tool requires.",
    ),
    "VALIDATION_ERROR": (
        ErrorSeverity.VALIDATION,
        "Check value ranges: volume and opacity 0-1, playbackRate above 0 up to 10, "
        "from >= 0, durationInFrames > 0.",
    ),
    "ELEMENT_NOT_FOUND": (
        ErrorSeverity.STATE_MISMATCH,
        "Check the element list in the system prompt for valid ids and labels.",
    ),
    "ASSET_NOT_READY": (
        ErrorSeverity.RECOVERABLE,
        "The asset is still processing. Tell the user to wait and try again.",
    ),
    "VERSION_CONFLICT": (
        ErrorSeverity.STATE_MISMATCH,
        "The composition changed. Retry the operation.",
    ),
    "COMPOSITION_NOT_FOUND": (ErrorSeverity.SYSTEM, None),
    "UNKNOWN_OPERATION": (ErrorSeverity.SYSTEM, None),
    "UNKNOWN_ERROR": (ErrorSeverity.SYSTEM, None),
}

_RESULT_ERROR_CODES = {
    ErrorCode.VALIDATION: "VALIDATION_ERROR",
    ErrorCode.NOT_FOUND: "ELEMENT_NOT_FOUND",
    ErrorCode.ASSET_NOT_READY: "ASSET_NOT_READY",
}


def _create_tool_error(
    code: str,
    message: str,
    context: dict[str, Any] | None = None,
    affected_field: str | None = None,
    severity: ErrorSeverity | None = None,
    recovery_hint: str | None = None,
) -> dict[str, Any]:
    inferred_severity, inferred_hint = _ERROR_HINTS.get(code, _ERROR_HINTS["UNKNOWN_ERROR"])
    error = ToolError(
        severity=severity or inferred_severity,
        code=code,
        message=message,
        recovery_hint=recovery_hint or inferred_hint,
        affected_field=affected_field,
        context=context or {},
    )
    return error.to_response()


def _categorize_exception(exc: Exception) -> str:
    if isinstance(exc, ToolArgumentError):
        return "INVALID_ARGUMENTS"
    if isinstance(exc, ValidationError):
        return "VALIDATION_ERROR"
    if isinstance(exc, VersionConflictError):
        return "VERSION_CONFLICT"
    if isinstance(exc, CompositionNotFoundError):
        return "COMPOSITION_NOT_FOUND"
    if isinstance(exc, UnknownOperationError):
        return "UNKNOWN_OPERATION"
    return "UNKNOWN_ERROR"


def result_to_tool_response(result: ExecutionResult) -> dict[str, Any]:
    """Shape an execution result for the model."""
    if result.needs_disambiguation:
        return {
            "success": False,
            "needs_disambiguation": True,
            "options": [
                option.model_dump(by_alias=True)
                for option in result.disambiguation_options or []
            ],
            "message": (
                "Several elements match. Ask the user which one they mean, "
                "then call the tool again with that elementId."
            ),
        }

    if not result.success:
        return _create_tool_error(
            _RESULT_ERROR_CODES.get(result.error_code, "UNKNOWN_ERROR"),
            result.error or "Edit rejected",
        )

    return {
        "success": True,
        "receipt": result.receipt,
        "affected_elements": result.affected_elements,
        "new_version": result.updated_ir.version if result.updated_ir else None,
        "warnings": result.warnings,
    }


# =============================================================================
# Tool Implementations
# =============================================================================


def _target(arguments: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
    """Selector payload and pre-resolved id for a tool that acts on one element."""
    element_id = arguments.get("elementId")
    selector = arguments.get("selector")
    if element_id:
        return {"type": "byId", "id": element_id}, element_id
    if selector:
        return selector, None
    raise ToolArgumentError("Provide elementId or selector to identify the element")


def _run_plan(
    composition_id: str,
    db: Session,
    payload: dict[str, Any],
    resolved_element_id: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    plan = parse_edit_plan(payload)
    result = execute_plan_for_composition(
        db,
        composition_id,
        plan,
        resolved_element_id=resolved_element_id,
        expected_version=expected_version,
    )
    return result_to_tool_response(result)


def _timing_changes(arguments: dict[str, Any]) -> dict[str, Any]:
    changes = {}
    if arguments.get("from") is not None:
        changes["from"] = arguments["from"]
    if arguments.get("durationInFrames") is not None:
        changes["durationInFrames"] = arguments["durationInFrames"]
    return changes


def _add_video_element(composition_id: str, db: Session, arguments: dict[str, Any]) -> dict[str, Any]:
    asset_id = arguments.get("assetId")
    if not asset_id:
        raise ToolArgumentError("assetId is required")

    changes: dict[str, Any] = {
        "type": "video",
        "properties": {"assetId": asset_id},
        **_timing_changes(arguments),
    }
    if arguments.get("label"):
        changes["label"] = arguments["label"]

    return _run_plan(composition_id, db, {"operation": "add", "changes": changes})


_TEXT_STYLE_KEYS = ("x", "y", "fontSize", "color", "fontWeight", "backgroundColor")


def _add_text_element(composition_id: str, db: Session, arguments: dict[str, Any]) -> dict[str, Any]:
    text = arguments.get("text")
    if not text:
        raise ToolArgumentError("text is required")

    properties = {"text": text}
    for key in _TEXT_STYLE_KEYS:
        if arguments.get(key) is not None:
            properties[key] = arguments[key]

    changes: dict[str, Any] = {
        "type": "text",
        "properties": properties,
        **_timing_changes(arguments),
    }
    if arguments.get("label"):
        changes["label"] = arguments["label"]

    return _run_plan(composition_id, db, {"operation": "add", "changes": changes})


def _add_animation(composition_id: str, db: Session, arguments: dict[str, Any]) -> dict[str, Any]:
    selector, element_id = _target(arguments)
    animation = Animation.model_validate(
        {
            "property": arguments.get("property"),
            "keyframes": arguments.get("keyframes") or [],
            "easing": arguments.get("easing") or "linear",
        }
    )

    composition = get_composition(db, composition_id)
    if not composition:
        raise CompositionNotFoundError(composition_id=composition_id)
    document = to_document(composition)

    # Existing animations are needed to build the replacement list, so the
    # target is resolved here rather than inside the executor.
    if element_id:
        element = document.find_element(element_id)
    else:
        plan = parse_edit_plan({"operation": "update", "selector": selector, "changes": {}})
        resolution = resolve_selector(document, plan.selector)
        if resolution.is_ambiguous:
            return result_to_tool_response(
                ExecutionResult.ambiguous(resolution.disambiguation_options)
            )
        element = resolution.matches[0] if resolution.matches else None

    if element is None:
        return result_to_tool_response(
            ExecutionResult.failure("No element found matching selector", ErrorCode.NOT_FOUND)
        )

    animations = [
        existing.model_dump(by_alias=True)
        for existing in element.animations or []
        if existing.property_name != animation.property_name
    ]
    animations.append(animation.model_dump(by_alias=True))

    return _run_plan(
        composition_id,
        db,
        {
            "operation": "update",
            "selector": {"type": "byId", "id": element.id},
            "changes": {"animations": animations},
        },
        resolved_element_id=element.id,
        expected_version=composition.version,
    )


def _update_element_properties(
    composition_id: str, db: Session, arguments: dict[str, Any]
) -> dict[str, Any]:
    selector, element_id = _target(arguments)
    properties = arguments.get("properties")
    if not isinstance(properties, dict) or not properties:
        raise ToolArgumentError("properties must be a non-empty object")

    changes: dict[str, Any] = {"properties": properties}
    if arguments.get("label"):
        changes["label"] = arguments["label"]

    return _run_plan(
        composition_id,
        db,
        {"operation": "update", "selector": selector, "changes": changes},
        resolved_element_id=element_id,
    )


def _delete_element(composition_id: str, db: Session, arguments: dict[str, Any]) -> dict[str, Any]:
    selector, element_id = _target(arguments)
    return _run_plan(
        composition_id,
        db,
        {"operation": "delete", "selector": selector, "changes": {}},
        resolved_element_id=element_id,
    )


def _move_element(composition_id: str, db: Session, arguments: dict[str, Any]) -> dict[str, Any]:
    selector, element_id = _target(arguments)
    changes = _timing_changes(arguments)
    if not changes:
        raise ToolArgumentError("Provide from and/or durationInFrames")

    return _run_plan(
        composition_id,
        db,
        {"operation": "move", "selector": selector, "changes": changes},
        resolved_element_id=element_id,
    )


TOOL_MAP: dict[str, Callable[[str, Session, dict[str, Any]], dict[str, Any]]] = {
    "add_video_element": _add_video_element,
    "add_text_element": _add_text_element,
    "add_animation": _add_animation,
    "update_element_properties": _update_element_properties,
    "delete_element": _delete_element,
    "move_element": _move_element,
}


def execute_tool(
    tool_name: str,
    arguments: dict[str, Any],
    composition_id: str,
    db: Session,
) -> dict[str, Any]:
    """Run one tool call as exactly one edit plan and return a JSON-able result."""
    tool_fn = TOOL_MAP.get(tool_name)
    if not tool_fn:
        return _create_tool_error(
            "UNKNOWN_TOOL",
            f"Unknown tool: {tool_name}",
            context={"available_tools": sorted(TOOL_MAP.keys())},
        )

    try:
        return tool_fn(composition_id, db, arguments)
    except ValidationError as exc:
        db.rollback()
        return _create_tool_error(
            "VALIDATION_ERROR",
            str(exc),
            context={"tool": tool_name, "arguments": arguments},
        )
    except Exception as exc:
        db.rollback()
        return _create_tool_error(
            _categorize_exception(exc),
            str(exc),
            context={"tool": tool_name, "arguments": arguments},
        )
