"""
Selector Resolver - turn a loose element reference into concrete targets.

Pure functions over a CompositionDocument. Only byLabel and byType selectors
can be ambiguous; byId and byIndex resolve to at most one element.
"""

from typing import Any

from models.composition_models import (
    ByIdSelector,
    ByIndexSelector,
    ByLabelSelector,
    ByTypeSelector,
    CompositionDocument,
    DisambiguationOption,
    Element,
    Selector,
    SelectorResult,
)


class AmbiguousSelectorError(ValueError):
    """Raised by get_single_match when a selector matches several elements."""
    def __init__(self, result: SelectorResult):
        self.result = result
        count = len(result.matches)
        super().__init__(f"Selector is ambiguous: {count} elements matched")


# =============================================================================
# FORMATTING
# =============================================================================


def _format_duration(duration_in_frames: int, fps: int) -> str:
    seconds = duration_in_frames / fps
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    remainder = int(seconds % 60)
    return f"{minutes}:{remainder:02d}"


def _describe(element: Element, fps: int) -> str:
    duration = _format_duration(element.duration_in_frames, fps)
    return f"{element.type} at frame {element.from_frame} ({duration})"


def _build_options(
    elements: list[Element],
    fps: int,
    fallback_numbering: bool = False,
) -> list[DisambiguationOption]:
    options = []
    for position, element in enumerate(elements):
        if element.label:
            label = element.label
        elif fallback_numbering:
            label = f"{element.type} #{position + 1}"
        else:
            label = f"Unnamed {element.type}"
        options.append(
            DisambiguationOption(
                element_id=element.id,
                label=label,
                description=_describe(element, fps),
            )
        )
    return options


def _resolved(matches: list[Element]) -> SelectorResult:
    return SelectorResult(matches=matches, is_ambiguous=False)


def _ambiguous(
    matches: list[Element], fps: int, fallback_numbering: bool = False
) -> SelectorResult:
    return SelectorResult(
        matches=matches,
        is_ambiguous=True,
        disambiguation_options=_build_options(matches, fps, fallback_numbering),
    )


# =============================================================================
# FILTERING
# =============================================================================


def _field_value(element: Element, key: str) -> Any:
    """Read an element field by wire name (`durationInFrames`) or Python name."""
    if key in type(element).model_fields:
        return getattr(element, key)
    for name, field in type(element).model_fields.items():
        if field.alias == key:
            return getattr(element, name)
    return None


def _matches_filter(element: Element, filter_: dict[str, Any]) -> bool:
    return all(_field_value(element, key) == value for key, value in filter_.items())


# =============================================================================
# RESOLUTION
# =============================================================================


def _resolve_by_id(document: CompositionDocument, selector: ByIdSelector) -> SelectorResult:
    element = document.find_element(selector.id)
    return _resolved([element] if element else [])


def _resolve_by_label(
    document: CompositionDocument, selector: ByLabelSelector
) -> SelectorResult:
    needle = selector.label.lower()
    matches = []
    for element in document.elements:
        if not element.label:
            continue
        label = element.label.lower()
        if label == needle or (selector.partial and needle in label):
            matches.append(element)

    if len(matches) > 1:
        return _ambiguous(matches, document.metadata.fps)
    return _resolved(matches)


def _resolve_by_index(
    document: CompositionDocument, selector: ByIndexSelector
) -> SelectorResult:
    if selector.parent is not None:
        # Nested lookup inside sequences is not supported; the parent only
        # has to exist and the index still applies to the top level.
        parent = resolve_selector(document, selector.parent)
        if not parent.matches:
            return _resolved([])

    if 0 <= selector.index < len(document.elements):
        return _resolved([document.elements[selector.index]])
    return _resolved([])


def _resolve_by_type(
    document: CompositionDocument, selector: ByTypeSelector
) -> SelectorResult:
    element_type = selector.element_type.value
    of_type = [el for el in document.elements if el.type == element_type]
    fps = document.metadata.fps

    if selector.index is not None:
        if 0 <= selector.index < len(of_type):
            return _resolved([of_type[selector.index]])
        return _resolved([])

    if selector.filter:
        filtered = [el for el in of_type if _matches_filter(el, selector.filter)]
        if len(filtered) > 1:
            return _ambiguous(filtered, fps)
        return _resolved(filtered)

    if len(of_type) > 1:
        return _ambiguous(of_type, fps, fallback_numbering=True)
    return _resolved(of_type)


def resolve_selector(document: CompositionDocument, selector: Selector) -> SelectorResult:
    """
    Resolve a selector against a document.

    Zero matches is an empty result, never an error. When several elements
    match a byLabel or byType selector the result is flagged ambiguous and
    carries one disambiguation option per match.
    """
    if isinstance(selector, ByIdSelector):
        return _resolve_by_id(document, selector)
    if isinstance(selector, ByLabelSelector):
        return _resolve_by_label(document, selector)
    if isinstance(selector, ByIndexSelector):
        return _resolve_by_index(document, selector)
    if isinstance(selector, ByTypeSelector):
        return _resolve_by_type(document, selector)
    raise TypeError(f"Unsupported selector: {selector!r}")


# =============================================================================
# HELPERS
# =============================================================================


def get_single_match(document: CompositionDocument, selector: Selector) -> Element | None:
    """Return the one matching element, None if nothing matched."""
    result = resolve_selector(document, selector)
    if result.is_ambiguous:
        raise AmbiguousSelectorError(result)
    return result.matches[0] if result.matches else None


def get_all_matches(document: CompositionDocument, selector: Selector) -> list[Element]:
    return resolve_selector(document, selector).matches


def is_unambiguous(document: CompositionDocument, selector: Selector) -> bool:
    result = resolve_selector(document, selector)
    return not result.is_ambiguous and len(result.matches) == 1
