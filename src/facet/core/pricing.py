"""Cost accounting for Gemini usage.

All functions are pure and total.  Rates follow the paid tier of the Gemini
2.5 Flash Image API:

- Input: $0.30 per 1,000,000 tokens (text or image)
- Output (text): $0.30 per 1,000,000 tokens
- Output (images): $0.039 per image, billed per unit

An output image is equivalent to 1290 tokens.  That figure is only used for
display (:func:`get_image_tokens`) and never feeds the monetary calculation.

Negative or non-finite inputs are not guarded against.
"""

from __future__ import annotations

INPUT_PRICE_PER_MILLION_TOKENS = 0.30
OUTPUT_TEXT_PRICE_PER_MILLION_TOKENS = 0.30
OUTPUT_IMAGE_PRICE_PER_IMAGE = 0.039
TOKENS_PER_IMAGE = 1290

_MILLION = 1_000_000


def calculate_chat_cost(input_tokens: float, output_tokens: float) -> float:
    """Return the cost of text generation for the given token counts."""
    input_cost = (input_tokens / _MILLION) * INPUT_PRICE_PER_MILLION_TOKENS
    output_cost = (output_tokens / _MILLION) * OUTPUT_TEXT_PRICE_PER_MILLION_TOKENS
    return input_cost + output_cost


def calculate_image_cost(image_count: float) -> float:
    """Return the cost of *image_count* generated images."""
    return image_count * OUTPUT_IMAGE_PRICE_PER_IMAGE


def calculate_total_cost(input_tokens: float, output_tokens: float, image_count: float) -> float:
    """Return the running cost of a project from its usage totals.

    Args:
        input_tokens: Total prompt tokens consumed (chat and images).
        output_tokens: Total text output tokens.
        image_count: Total images generated.

    Returns:
        ``calculate_chat_cost(input, output) + calculate_image_cost(images)``.
    """
    return calculate_chat_cost(input_tokens, output_tokens) + calculate_image_cost(image_count)


def get_image_tokens(image_count: int) -> int:
    """Return the token equivalent of *image_count* images, for display."""
    return image_count * TOKENS_PER_IMAGE


def format_cost(cost: float) -> str:
    """Format *cost* as US dollars with two to four decimal places.

    Examples:
        >>> format_cost(0.039)
        '$0.039'
        >>> format_cost(1.5)
        '$1.50'
    """
    text = f"{cost:,.4f}"
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0").ljust(2, "0")
    sign = ""
    if whole.startswith("-"):
        sign, whole = "-", whole[1:]
    return f"{sign}${whole}.{fraction}"
