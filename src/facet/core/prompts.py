"""Prompt compilation for jewelry image generation.

Two kinds of prompt are built here:

**Base-image prompts** (:func:`build_image_prompt`) turn the user's request
plus project context into a full rendering instruction::

    [Based on this reference sketch/drawing,] <request>.
    Design specifications: <merged specs>.      (or: Context from conversation: ...)
    Create a high-quality, realistic image of this jewelry piece <format> <ratio>. ...
    [Material specifications: <category>: <prompt>. ...]
    [Use the reference image(s) as a guide ... In the reference drawing: <colors>.]

**View prompts** (:func:`build_view_prompt`) re-use the prompt of a base image
to render the same piece from one fixed angle::

    <sanitized base prompt>. Create a high-quality, realistic, professional
    jewelry photography image <format> <ratio>. This must be a <view modifier>.
    <studio lighting and background directive> ... true to the <view> view
    specification.

Because a base prompt already ends with its own boilerplate (and sometimes a
view clause), :func:`sanitize_base_prompt` trims those suffixes first so they
are not repeated or contradicted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from facet.core.tables import AspectRatio, ImageFormat, ViewType

# ---------------------------------------------------------------------------
# Fixed instruction fragments.
# ---------------------------------------------------------------------------

FORMAT_INSTRUCTIONS: dict[ImageFormat, str] = {
    ImageFormat.PNG: "in PNG format",
    ImageFormat.JPEG: "in JPEG format",
    ImageFormat.WEBP: "in WebP format",
}

ASPECT_RATIO_INSTRUCTIONS: dict[AspectRatio, str] = {
    AspectRatio.SQUARE: "with a square aspect ratio (1:1)",
    AspectRatio.HORIZONTAL: "with a horizontal/landscape aspect ratio (16:9 or 4:3)",
    AspectRatio.VERTICAL: "with a vertical/portrait aspect ratio (9:16 or 3:4)",
}

VIEW_PROMPT_MODIFIERS: dict[ViewType, str] = {
    ViewType.FRONT: (
        "direct front view, eye-level perspective, facing the camera head-on, showing the main "
        "design elements and the front face of the jewelry piece. Focus on the primary design "
        "features and the upper part of the piece that would be visible from the front"
    ),
    ViewType.SIDE: (
        "perfect side profile view, showing the jewelry piece from a 90-degree side angle. "
        "Emphasize the thickness, depth, and structural details of the piece. Show the ring's "
        "silhouette and profile clearly, highlighting how the design elements connect and the "
        "tapering of the band"
    ),
    ViewType.TOP: (
        "direct overhead view, looking straight down at the jewelry piece from directly above, "
        "bird's eye perspective. Clearly display the full top design, all decorative elements "
        "visible from above, and the top curvature of the band or structure. Show the complete "
        "top surface without any tilt or angle"
    ),
    ViewType.BOTTOM: (
        "clear bottom view, looking up into the jewelry piece's interior and underside. Show the "
        "hollowed-out underside, the complete inner circumference of the band, and any "
        "structural details visible from below. Emphasize the interior construction and the "
        "reverse side of the design elements"
    ),
}

_VIEW_STYLE_DIRECTIVE = (
    "The image should use professional studio lighting with soft, even illumination that "
    "highlights all design details. The jewelry should be displayed on a neutral, clean "
    "background (light gray or white surface). Maintain the exact same design, materials, "
    "colors, and decorative elements as shown in the reference image, but render the piece "
    "from this specific viewing angle."
)

_BASE_STYLE_DIRECTIVE = (
    "The image should be professional, well-lit, and showcase the jewelry design clearly on a "
    "neutral background."
)

# Suffixes trimmed from a base prompt before it is re-used for a view.  Each
# pattern is applied once; the first removes a trailing view/perspective
# sentence but keeps the period that ends the preceding sentence.
_SANITIZE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?<=\.)\s*(front|side|top|bottom|view|perspective)\b.*\Z", re.IGNORECASE),
    re.compile(r"Context from conversation:.*\Z", re.IGNORECASE),
    re.compile(r"Create a high-quality.*\Z", re.IGNORECASE),
)


def format_instruction(image_format: ImageFormat | str | None) -> str:
    return FORMAT_INSTRUCTIONS[ImageFormat(image_format or ImageFormat.PNG)]


def aspect_ratio_instruction(aspect_ratio: AspectRatio | str | None) -> str:
    return ASPECT_RATIO_INSTRUCTIONS[AspectRatio(aspect_ratio or AspectRatio.SQUARE)]


def sanitize_base_prompt(prompt: str) -> str:
    """Strip view clauses and generation boilerplate from a stored prompt.

    Example::

        >>> sanitize_base_prompt(
        ...     "A gold ring. Front view, eye-level perspective. "
        ...     "Create a high-quality rendering."
        ... )
        'A gold ring.'

    Args:
        prompt: The prompt a base image was generated with.

    Returns:
        The design description alone, whitespace-trimmed.
    """
    cleaned = prompt
    for pattern in _SANITIZE_PATTERNS:
        cleaned = pattern.sub("", cleaned, count=1)
    return cleaned.strip()


def _lead_sentence(text: str) -> str:
    """Return *text* as a sentence followed by a space, or ``""`` if empty."""
    text = text.strip()
    if not text:
        return ""
    return f"{text.rstrip('.').rstrip()}. "


def build_view_prompt(
    base_prompt: str,
    view_type: ViewType | str,
    image_format: ImageFormat | str | None = ImageFormat.PNG,
    aspect_ratio: AspectRatio | str | None = AspectRatio.SQUARE,
) -> str:
    """Build the prompt for one angle of a view set.

    Args:
        base_prompt: Prompt stored with the base image (sanitized here).
        view_type: Angle to render.
        image_format: Project's stored image format.
        aspect_ratio: Project's stored aspect ratio.

    Returns:
        The complete prompt for that view.
    """
    view = ViewType(view_type)
    return (
        f"{_lead_sentence(sanitize_base_prompt(base_prompt))}"
        "Create a high-quality, realistic, professional jewelry photography image "
        f"{format_instruction(image_format)} {aspect_ratio_instruction(aspect_ratio)}. "
        f"This must be a {VIEW_PROMPT_MODIFIERS[view]}. "
        f"{_VIEW_STYLE_DIRECTIVE} "
        f"The perspective must be accurate and true to the {view.value.lower()} view specification."
    )


def describe_design_specs(specs: Iterable[Mapping[str, Any]]) -> str:
    """Merge design specifications gathered during the conversation.

    Later scalar values (type, style, dimensions) override earlier ones; list
    values (materials, gemstones, features, special features) accumulate.

    Args:
        specs: ``designSpec`` objects from assistant messages, oldest first.

    Returns:
        A comma-separated description such as ``"a ring, made of gold, in
        modern style"``, or ``""`` when the specs are empty.
    """
    merged: dict[str, Any] = {}
    for spec in specs:
        for key in ("type", "style", "dimensions"):
            if spec.get(key):
                merged[key] = spec[key]
        for key in ("materials", "features", "gemstones", "specialFeatures"):
            values = spec.get(key)
            if isinstance(values, list) and values:
                merged.setdefault(key, []).extend(str(v) for v in values)

    parts: list[str] = []
    if merged.get("type"):
        parts.append(f"a {merged['type']}")
    if merged.get("materials"):
        parts.append(f"made of {', '.join(merged['materials'])}")
    if merged.get("style"):
        parts.append(f"in {merged['style']} style")
    if merged.get("gemstones"):
        parts.append(f"with {', '.join(merged['gemstones'])} gemstones")
    if merged.get("features"):
        parts.append(f"featuring {', '.join(merged['features'])}")
    if merged.get("dimensions"):
        parts.append(f"dimensions: {merged['dimensions']}")
    if merged.get("specialFeatures"):
        parts.append(f"special features: {', '.join(merged['specialFeatures'])}")
    return ", ".join(parts)


def build_image_prompt(
    prompt: str,
    *,
    image_format: ImageFormat | str | None = ImageFormat.PNG,
    aspect_ratio: AspectRatio | str | None = AspectRatio.SQUARE,
    design_description: str = "",
    conversation_context: str = "",
    reference_count: int = 0,
    color_context: Iterable[str] = (),
    material_prompts: Iterable[str] = (),
) -> str:
    """Build the prompt for a new base image.

    Args:
        prompt: The user's request.
        image_format: Project's stored image format.
        aspect_ratio: Project's stored aspect ratio.
        design_description: Output of :func:`describe_design_specs`.  Takes
            precedence over *conversation_context* when non-empty.
        conversation_context: Recent conversation text, used as fallback.
        reference_count: Number of reference images sent with the prompt.
        color_context: Per-reference color descriptions (see
            :meth:`ReferenceAnnotation.color_context`).
        material_prompts: ``"<category>: <prompt>"`` fragments of the
            materials mentioned with ``@name``.

    Returns:
        The complete base-image prompt.
    """
    render = (
        "Create a high-quality, realistic image of this jewelry piece "
        f"{format_instruction(image_format)} {aspect_ratio_instruction(aspect_ratio)}. "
        f"{_BASE_STYLE_DIRECTIVE}"
    )
    if design_description:
        enhanced = f"{prompt}. Design specifications: {design_description}. {render}"
    else:
        enhanced = f"{prompt}. Context from conversation: {conversation_context}. {render}"

    materials = [m for m in material_prompts if m]
    if materials:
        enhanced = f"{enhanced} Material specifications: {'. '.join(materials)}."

    if reference_count > 0:
        if reference_count == 1:
            image_text = "reference sketch/drawing"
        else:
            image_text = f"{reference_count} reference sketches/drawings"
        enhanced = (
            f"Based on this {image_text}, {enhanced} Use the reference image(s) as a guide for "
            "the shape, style, and overall design of the jewelry piece."
        )
        colors = [c for c in color_context if c]
        if colors:
            enhanced = f"{enhanced} In the reference drawing: {'. '.join(colors)}."

    return enhanced
