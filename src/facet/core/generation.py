"""Gemini client wrapper for image generation and design chat.

:class:`GeminiClient` is the single point of contact with the generative API.
It turns a prompt plus optional inline images into one ``generate_content``
call and reduces the SDK response to the few facts the application needs:

- the first inline image of the first candidate (if any)
- the prompt-token and output-token counts from the usage metadata
- the response text, for chat

It does not decide what a missing image means.  Callers (the view
orchestrator, base-image generation, chat) own that policy, and SDK errors
propagate to them unchanged.

Usage
-----
::

    from facet.core.config import config
    from facet.core.generation import GeminiClient, InlineImage

    client = GeminiClient(config)
    result = client.generate_image(
        "A rose-gold ring with a pear-cut sapphire.",
        images=[InlineImage(data=sketch_bytes, mime_type="image/png")],
    )
    if result.image is not None:
        png_bytes = result.image.data
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from google import genai
from google.genai import types

from facet.core.config import FacetConfig

logger = logging.getLogger(__name__)

# Gemini accepts at most this many inline images alongside a prompt.
MAX_INLINE_IMAGES = 4

_GENERATION_CONFIG_KEYS = {
    "temperature": "temperature",
    "topP": "top_p",
    "topK": "top_k",
    "maxOutputTokens": "max_output_tokens",
}


@dataclass(frozen=True)
class InlineImage:
    """Encoded image bytes with their MIME type."""

    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one image-generation call.

    Attributes:
        image: First inline image of the first candidate, or ``None`` when the
            response carried no candidate or no image payload.
        prompt_tokens: Prompt tokens reported by the usage metadata.
        output_tokens: Output tokens reported by the usage metadata.
        candidate_count: Number of candidates in the response.
    """

    image: InlineImage | None
    prompt_tokens: int = 0
    output_tokens: int = 0
    candidate_count: int = 0


@dataclass(frozen=True)
class TextResult:
    text: str
    prompt_tokens: int = 0
    output_tokens: int = 0


def parse_generation_config(llm_parameters: Any) -> dict[str, float | int] | None:
    """Extract supported sampling parameters from a project's settings.

    Only numeric ``temperature``, ``topP``, ``topK`` and ``maxOutputTokens``
    are kept; everything else is ignored.

    Args:
        llm_parameters: The project's stored ``llm_parameters`` JSON.

    Returns:
        A dict keyed by the SDK's snake_case names, or ``None`` when nothing
        usable was found.
    """
    if not isinstance(llm_parameters, Mapping):
        return None

    parsed: dict[str, float | int] = {}
    for key, sdk_key in _GENERATION_CONFIG_KEYS.items():
        value = llm_parameters.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            parsed[sdk_key] = value
    return parsed or None


def _usage_counts(response: Any) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    prompt_tokens = getattr(usage, "prompt_token_count", None) or 0
    output_tokens = getattr(usage, "candidates_token_count", None) or 0
    return int(prompt_tokens), int(output_tokens)


def _first_inline_image(candidates: Sequence[Any]) -> InlineImage | None:
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline_data = getattr(part, "inline_data", None)
        data = getattr(inline_data, "data", None) if inline_data else None
        if data:
            return InlineImage(data=bytes(data), mime_type=inline_data.mime_type or "image/png")
    return None


class GeminiClient:
    """Thin wrapper over :class:`google.genai.Client`.

    Attributes:
        image_model: Model used by :meth:`generate_image`.
        chat_model: Model used by :meth:`generate_text`.
    """

    def __init__(self, config: FacetConfig, client: genai.Client | None = None) -> None:
        self.image_model = config.image_model
        self.chat_model = config.chat_model
        self._client = client or genai.Client(api_key=config.gemini_api_key or None)

    @staticmethod
    def _build_parts(prompt: str, images: Sequence[InlineImage]) -> list[types.Part]:
        parts = [types.Part.from_text(text=prompt)]
        for image in images[:MAX_INLINE_IMAGES]:
            parts.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
        return parts

    def generate_image(self, prompt: str, images: Sequence[InlineImage] = ()) -> GenerationResult:
        """Generate an image from *prompt* and optional reference images.

        Args:
            prompt: Full text prompt.
            images: Reference images sent after the prompt (at most four).

        Returns:
            The reduced :class:`GenerationResult`.
        """
        response = self._client.models.generate_content(
            model=self.image_model,
            contents=self._build_parts(prompt, images),
            config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )
        candidates = getattr(response, "candidates", None) or []
        prompt_tokens, output_tokens = _usage_counts(response)
        result = GenerationResult(
            image=_first_inline_image(candidates),
            prompt_tokens=prompt_tokens,
            output_tokens=output_tokens,
            candidate_count=len(candidates),
        )
        logger.debug(
            f"{self.image_model}: {result.candidate_count} candidates, "
            f"{prompt_tokens} prompt tokens, image={'yes' if result.image else 'no'}"
        )
        return result

    def generate_text(
        self,
        prompt: str,
        images: Sequence[InlineImage] = (),
        generation_config: Mapping[str, Any] | None = None,
    ) -> TextResult:
        """Generate a text reply for the design conversation.

        Args:
            prompt: System prompt plus conversation transcript.
            images: Images attached to the turn (at most four).
            generation_config: Sampling parameters from
                :func:`parse_generation_config`.

        Returns:
            The reply text and token usage.
        """
        config = types.GenerateContentConfig(**dict(generation_config or {}))
        response = self._client.models.generate_content(
            model=self.chat_model,
            contents=self._build_parts(prompt, images),
            config=config,
        )
        prompt_tokens, output_tokens = _usage_counts(response)
        return TextResult(
            text=getattr(response, "text", None) or "",
            prompt_tokens=prompt_tokens,
            output_tokens=output_tokens,
        )
