from __future__ import annotations

from models.composition_models import AssetInfo, CompositionDocument

SYSTEM_PROMPT = """
You are a video editing assistant working on a frame-based composition.

Each element on the timeline has a type (video, audio, text, image, shape,
sequence), a start frame ("from"), a length ("durationInFrames"), an optional
label and type-specific properties. Later elements render on top of earlier
ones.

How to work:
1. Read the current composition and asset list below before editing.
2. Make one change per tool call. Refer to elements by elementId whenever you
   know it; use a selector only when you have to (for example "the second
   text element").
3. Keyframe frames in add_animation are relative to the element's own start,
   not to the timeline.
4. Convert seconds to frames with the composition fps.
5. If a tool reports needs_disambiguation, do not guess. Ask the user which
   of the listed options they mean.
6. If a tool reports an error, explain it plainly. Do not retry the same call
   unchanged.
7. Only use assets whose status is ready.

When you are done, reply with a short summary of what changed.
""".strip()


def _format_seconds(seconds: float | None) -> str:
    if seconds is None:
        return "unknown length"
    return f"{seconds:.1f}s"


def build_system_prompt(document: CompositionDocument, assets: list[AssetInfo]) -> str:
    """System prompt with the current composition and assets inlined."""
    meta = document.metadata
    lines = [
        SYSTEM_PROMPT,
        "",
        f"Composition (version {document.version}): {meta.width}x{meta.height}, "
        f"{meta.fps} fps, {meta.duration_in_frames} frames.",
        "",
        "Elements (bottom to top):",
    ]
    if document.elements:
        for index, element in enumerate(document.elements):
            name = element.label or element.id
            lines.append(
                f'- [{index}] {element.type} "{name}" id={element.id} '
                f"from {element.from_frame} ({element.duration_in_frames} frames)"
            )
    else:
        lines.append("- (none)")

    lines.append("")
    lines.append("Assets:")
    if assets:
        for asset in assets:
            lines.append(
                f"- {asset.asset_id}: {asset.filename or 'untitled'} "
                f"({asset.asset_type}, {asset.status.value}, "
                f"{_format_seconds(asset.duration_seconds)})"
            )
    else:
        lines.append("- (none)")

    return "\n".join(lines)
