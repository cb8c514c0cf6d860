"""Tests for facet.core.prompts — base-image and view prompt compilation.

Tests cover:
- Sanitisation of stored base prompts before they are reused for views.
- View prompts: format, aspect ratio, view modifier and style directive.
- Base-image prompts: design specs vs conversation fallback, reference
  image wording and color context.
"""

from __future__ import annotations

import pytest

from facet.core.prompts import (
    VIEW_PROMPT_MODIFIERS,
    build_image_prompt,
    build_view_prompt,
    describe_design_specs,
    sanitize_base_prompt,
)
from facet.core.tables import AspectRatio, ImageFormat, ViewType


class TestSanitizeBasePrompt:
    """Stored prompts should be reduced to the design description."""

    def test_strips_view_clause_and_boilerplate(self):
        """The trailing view sentence and generation boilerplate are removed."""
        prompt = "A gold ring. Front view, eye-level perspective. Create a high-quality rendering."
        assert sanitize_base_prompt(prompt) == "A gold ring."

    def test_strips_conversation_context(self):
        prompt = "A pendant. Context from conversation: I like silver. Create a high-quality image."
        assert sanitize_base_prompt(prompt) == "A pendant."

    def test_strips_boilerplate_only(self):
        prompt = "An art deco brooch with onyx. Create a high-quality, realistic image of this jewelry piece."
        assert sanitize_base_prompt(prompt) == "An art deco brooch with onyx."

    def test_case_insensitive(self):
        assert sanitize_base_prompt("A cuff. SIDE PROFILE of the cuff.") == "A cuff."

    def test_word_prefix_is_not_a_view_keyword(self):
        """``Topaz`` starts with ``top`` but is not a view clause."""
        prompt = "A ring. Topaz stones around the band."
        assert sanitize_base_prompt(prompt) == prompt

    def test_plain_prompt_unchanged(self):
        assert sanitize_base_prompt("  A simple silver band  ") == "A simple silver band"


class TestBuildViewPrompt:
    """View prompts reuse the base design and pin down one angle."""

    BASE = "A gold ring with a sapphire. Front view, eye-level perspective. Create a high-quality rendering."

    def test_starts_with_sanitized_base(self):
        prompt = build_view_prompt(self.BASE, ViewType.SIDE)
        assert prompt.startswith("A gold ring with a sapphire. Create a high-quality, realistic, professional")
        assert "eye-level perspective. Create" not in prompt

    @pytest.mark.parametrize("view_type", list(ViewType))
    def test_contains_view_modifier(self, view_type):
        prompt = build_view_prompt(self.BASE, view_type)
        assert f"This must be a {VIEW_PROMPT_MODIFIERS[view_type]}." in prompt
        assert prompt.endswith(f"true to the {view_type.value.lower()} view specification.")

    def test_format_and_aspect_ratio(self):
        prompt = build_view_prompt(self.BASE, ViewType.TOP, ImageFormat.WEBP, AspectRatio.VERTICAL)
        assert "image in WebP format with a vertical/portrait aspect ratio (9:16 or 3:4)." in prompt

    def test_accepts_string_values(self):
        prompt = build_view_prompt(self.BASE, "BOTTOM", "JPEG", "HORIZONTAL")
        assert "in JPEG format with a horizontal/landscape aspect ratio" in prompt
        assert VIEW_PROMPT_MODIFIERS[ViewType.BOTTOM] in prompt

    def test_defaults_when_unset(self):
        """A missing format or ratio falls back to PNG and square."""
        prompt = build_view_prompt(self.BASE, ViewType.FRONT, None, None)
        assert "in PNG format with a square aspect ratio (1:1)" in prompt

    def test_empty_base_prompt(self):
        prompt = build_view_prompt("", ViewType.FRONT)
        assert prompt.startswith("Create a high-quality")

    def test_includes_studio_directive(self):
        prompt = build_view_prompt(self.BASE, ViewType.FRONT)
        assert "professional studio lighting" in prompt
        assert "neutral, clean background" in prompt


class TestDescribeDesignSpecs:
    def test_merges_scalars_and_lists(self):
        """Later scalars win; list values accumulate across specs."""
        specs = [
            {"type": "ring", "materials": ["gold"], "style": "vintage"},
            {"style": "modern", "materials": ["platinum"], "gemstones": ["diamond"]},
            {"features": ["milgrain edge"], "dimensions": "size 6", "specialFeatures": ["engraving"]},
        ]
        assert describe_design_specs(specs) == (
            "a ring, made of gold, platinum, in modern style, with diamond gemstones, "
            "featuring milgrain edge, dimensions: size 6, special features: engraving"
        )

    def test_empty_specs(self):
        assert describe_design_specs([]) == ""
        assert describe_design_specs([{"materials": []}]) == ""


class TestBuildImagePrompt:
    def test_design_description_takes_precedence(self):
        prompt = build_image_prompt(
            "A ring",
            design_description="a ring, made of gold",
            conversation_context="ignored",
        )
        assert prompt.startswith("A ring. Design specifications: a ring, made of gold. Create a high-quality")
        assert "Context from conversation" not in prompt

    def test_conversation_fallback(self):
        prompt = build_image_prompt("A ring", conversation_context="User: gold please")
        assert "A ring. Context from conversation: User: gold please. Create" in prompt

    def test_format_and_ratio(self):
        prompt = build_image_prompt("A ring", image_format=ImageFormat.JPEG, aspect_ratio=AspectRatio.HORIZONTAL)
        assert "this jewelry piece in JPEG format with a horizontal/landscape aspect ratio (16:9 or 4:3)." in prompt

    def test_single_reference(self):
        prompt = build_image_prompt("A ring", reference_count=1)
        assert prompt.startswith("Based on this reference sketch/drawing, A ring.")
        assert prompt.endswith("overall design of the jewelry piece.")

    def test_multiple_references_with_colors(self):
        prompt = build_image_prompt(
            "A ring",
            reference_count=2,
            color_context=["red areas represent rubies", "", "blue areas represent sapphires"],
        )
        assert prompt.startswith("Based on this 2 reference sketches/drawings, ")
        assert prompt.endswith(
            "In the reference drawing: red areas represent rubies. blue areas represent sapphires."
        )

    def test_colors_ignored_without_references(self):
        prompt = build_image_prompt("A ring", color_context=["red areas represent rubies"])
        assert "In the reference drawing" not in prompt

    def test_material_specifications(self):
        prompt = build_image_prompt("A ring", material_prompts=["Metal: rose gold", "Stone: pear-cut ruby"])
        assert prompt.endswith(
            "on a neutral background. Material specifications: Metal: rose gold. Stone: pear-cut ruby."
        )

    def test_materials_precede_reference_guidance(self):
        prompt = build_image_prompt("A ring", reference_count=1, material_prompts=["Metal: platinum"])
        assert "Material specifications: Metal: platinum. Use the reference image(s)" in prompt

    def test_no_materials(self):
        assert "Material specifications" not in build_image_prompt("A ring", material_prompts=["", ""])
