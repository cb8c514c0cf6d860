"""Design conversation with the jewelry assistant.

One call to :func:`run_chat_turn` stores the user's message, asks the chat
model for a reply over the whole conversation, stores the assistant's reply
and charges the project for the tokens used.

The assistant is instructed to answer with a JSON object::

    {"message": "<markdown>", "metadata": {..., "designSpec": {...}},
     "shouldGenerateImage": true}

The ``designSpec`` collected here feeds base-image prompts later (see
:mod:`facet.core.images`).  Replies that do not parse are kept as plain text.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from google.genai import errors as genai_errors
from sqlalchemy import select
from sqlalchemy.orm import Session

from facet.core.errors import NotFoundError, UpstreamError
from facet.core.generation import GeminiClient, parse_generation_config
from facet.core.images import load_inline_images, select_reference_images
from facet.core.storage import ImageStore
from facet.core.tables import Message, Project
from facet.core.usage import record_usage

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are a helpful jewelry design assistant. You help users design custom jewelry pieces by having a conversation about their preferences, style, materials, and desired features.

When the user describes a jewelry piece, provide thoughtful suggestions and ask clarifying questions using a structured format with multiple-choice options (a, b, c). Present each question with clear options, each option on its own line. Each question must have exactly 3 options (a, b, c).

Never ask more than 3 questions at once. If you need more information, ask 2-3 questions first, wait for the user's response, then ask follow-up questions.

Formatting:
- Always use Markdown formatting
- Use **bold text** for question titles and important terms
- Number question titles sequentially (1., 2., 3., etc.)
- Use a single line break between options and a blank line between questions

Example format:

**1. Type of jewelry:**
a) Ring
b) Necklace
c) Earrings

**2. Material preference:**
a) Gold (yellow, white, or rose)
b) Silver
c) Platinum

Focus on these key aspects:
- Type of jewelry
- Materials
- Gemstones
- Style
- Special features or engravings

When the user seems satisfied with the design description, suggest: "Would you like me to generate an image of this design?"

Keep responses concise and friendly.

You MUST respond with ONLY a valid JSON object with this exact structure:
{
  "message": "Your full markdown-formatted message text",
  "metadata": {
    "type": "question" | "suggestion" | "confirmation" | "info",
    "questions": [
      {
        "id": "unique-id",
        "title": "Question title",
        "options": [
          {"id": "a", "label": "Option a"},
          {"id": "b", "label": "Option b"}
        ]
      }
    ],
    "designSpec": {
      "type": "ring" | "necklace" | etc.,
      "materials": ["gold", "silver"],
      "style": "modern",
      "features": ["feature1"],
      "gemstones": ["diamond"],
      "specialFeatures": ["engraving"]
    }
  },
  "shouldGenerateImage": true or false
}

The "message" field holds the text shown to the user. The metadata is for internal processing only."""

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ChatTurn:
    """The stored assistant reply of one chat turn."""

    message: Message
    should_generate_image: bool
    input_tokens: int
    output_tokens: int


def parse_json_response(text: str) -> Any:
    """Parse JSON out of model output.

    Tries, in order: the whole text, the body of a fenced code block, and the
    outermost ``{...}`` span.  Returns ``None`` when none of them parses.
    """
    try:
        return json.loads(text.strip())
    except ValueError:
        pass

    fenced = _FENCED_JSON_RE.search(text)
    if fenced is not None:
        candidate = fenced.group(1)
    else:
        bare = _JSON_OBJECT_RE.search(text)
        if bare is None:
            return None
        candidate = bare.group(0)

    try:
        return json.loads(candidate)
    except ValueError:
        return None


def parse_chat_response(text: str) -> dict[str, Any] | None:
    """Return the structured reply if *text* holds a valid one.

    A valid reply is an object with a string ``message``, an object
    ``metadata`` and a boolean ``shouldGenerateImage``.
    """
    parsed = parse_json_response(text)
    if not isinstance(parsed, dict):
        return None
    if not isinstance(parsed.get("message"), str) or not parsed["message"]:
        return None
    if not isinstance(parsed.get("metadata"), dict):
        return None
    if not isinstance(parsed.get("shouldGenerateImage"), bool):
        return None
    return parsed


def format_history(messages: Sequence[Message]) -> str:
    return "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}" for message in messages
    )


def run_chat_turn(
    session: Session,
    store: ImageStore,
    client: GeminiClient,
    project_id: str,
    message: str,
    reference_image_ids: Sequence[str] | None = None,
    generated_image_ids: Sequence[str] | None = None,
) -> ChatTurn:
    """Run one turn of the design conversation.

    Args:
        session: Active database session.
        store: Object store used to inline selected images.
        client: Generative API client.
        project_id: Project the conversation belongs to.
        message: The user's message.
        reference_image_ids: References to show the model; all when omitted.
        generated_image_ids: Generated images to show the model; none when
            omitted.

    Returns:
        The stored assistant reply with its token usage.

    Raises:
        NotFoundError: If the project does not exist.
    """
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)

    session.add(Message(project_id=project_id, role="user", content=message))
    session.commit()

    history = session.scalars(
        select(Message).where(Message.project_id == project_id).order_by(Message.created_at)
    ).all()
    system_prompt = project.custom_system_prompt or DEFAULT_SYSTEM_PROMPT

    keys = [ref.storage_key for ref in select_reference_images(project, reference_image_ids)]
    if generated_image_ids:
        wanted = set(generated_image_ids)
        keys.extend(image.storage_key for image in project.images if image.id in wanted)
    inline = load_inline_images(store, keys)

    try:
        result = client.generate_text(
            f"{system_prompt}\n\nConversation:\n{format_history(history)}",
            images=inline,
            generation_config=parse_generation_config(project.llm_parameters),
        )
    except genai_errors.APIError as exc:
        logger.error(f"Chat generation failed for project {project_id}: {exc}")
        raise UpstreamError("Chat generation failed", details=exc) from exc

    parsed = parse_chat_response(result.text)
    if parsed is None:
        logger.warning(f"Chat reply for project {project_id} is not structured JSON, storing raw text")
        reply = Message(project_id=project_id, role="assistant", content=result.text)
        should_generate = False
    else:
        reply = Message(project_id=project_id, role="assistant", content=parsed["message"], content_json=parsed)
        should_generate = parsed["shouldGenerateImage"]
    session.add(reply)
    session.commit()

    record_usage(
        session,
        project_id,
        input_tokens=result.prompt_tokens,
        output_tokens=result.output_tokens,
    )
    return ChatTurn(
        message=reply,
        should_generate_image=should_generate,
        input_tokens=result.prompt_tokens,
        output_tokens=result.output_tokens,
    )
