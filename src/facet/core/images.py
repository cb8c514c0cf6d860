"""Base-image generation.

A base image is the first rendering of a design, produced from the user's
request plus whatever the project already knows: the structured design specs
collected by the chat assistant, the recent conversation, the materials
mentioned with ``@name`` and the reference sketches with their color
annotations.  Base images carry no view type and are the input of
:func:`facet.core.views.generate_views`.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

from google.genai import errors as genai_errors
from sqlalchemy import select
from sqlalchemy.orm import Session

from facet.core.annotations import ReferenceAnnotation
from facet.core.config import config as default_config
from facet.core.errors import NotFoundError, StorageError, UpstreamError
from facet.core.generation import MAX_INLINE_IMAGES, GeminiClient, InlineImage
from facet.core.materials import extract_mentions, resolve_material_prompts
from facet.core.prompts import build_image_prompt, describe_design_specs
from facet.core.storage import ImageStore, convert_image, guess_mime_from_key
from facet.core.tables import GeneratedImage, Message, Project, ReferenceImage
from facet.core.usage import record_usage

logger = logging.getLogger(__name__)


def load_inline_images(store: ImageStore, keys: Iterable[str], limit: int = MAX_INLINE_IMAGES) -> list[InlineImage]:
    """Fetch up to *limit* stored images for inlining into a prompt.

    Objects that cannot be read are logged and skipped.
    """
    images: list[InlineImage] = []
    for key in keys:
        if len(images) >= limit:
            break
        try:
            images.append(InlineImage(data=store.get(key), mime_type=guess_mime_from_key(key)))
        except StorageError as exc:
            logger.warning(f"Skipping image {key}: {exc}")
    return images


def select_reference_images(project: Project, reference_image_ids: Sequence[str] | None) -> list[ReferenceImage]:
    """Return the project's references matching *reference_image_ids*.

    All references (newest first) are used when no ids are given.  Ids that
    do not belong to the project are ignored.
    """
    if not reference_image_ids:
        return list(project.reference_images)
    wanted = set(reference_image_ids)
    return [ref for ref in project.reference_images if ref.id in wanted]


def recent_messages(session: Session, project_id: str, limit: int) -> list[Message]:
    """Return the last *limit* messages of a project, oldest first."""
    if limit <= 0:
        return []
    stmt = (
        select(Message)
        .where(Message.project_id == project_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    return list(reversed(session.scalars(stmt).all()))


def _design_specs(messages: Iterable[Message]) -> list[dict[str, Any]]:
    specs = []
    for message in messages:
        if message.role != "assistant" or not isinstance(message.content_json, dict):
            continue
        metadata = message.content_json.get("metadata")
        spec = metadata.get("designSpec") if isinstance(metadata, dict) else None
        if isinstance(spec, dict):
            specs.append(spec)
    return specs


def generate_base_image(
    session: Session,
    store: ImageStore,
    client: GeminiClient,
    project_id: str,
    prompt: str,
    reference_image_ids: Sequence[str] | None = None,
    context_message_limit: int | None = None,
) -> tuple[GeneratedImage, str]:
    """Generate, store and record a new base image for a project.

    Args:
        session: Active database session.
        store: Object store holding image bytes.
        client: Generative API client.
        project_id: Project to generate for.
        prompt: The user's request.
        reference_image_ids: References to guide the rendering; all of the
            project's references when omitted.
        context_message_limit: Number of recent messages used as context;
            defaults to the configured value.

    Returns:
        Tuple of the persisted :class:`GeneratedImage` and its presigned URL.

    Raises:
        NotFoundError: If the project does not exist.
        UpstreamError: If the model returned no candidate or no image.
        StorageError: If the image could not be uploaded or signed.
    """
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)

    if context_message_limit is None:
        context_message_limit = default_config.context_message_limit

    references = select_reference_images(project, reference_image_ids)
    color_context = [
        ReferenceAnnotation.from_columns(ref.label, ref.color_descriptions).color_context()
        for ref in references
    ]

    messages = recent_messages(session, project_id, context_message_limit)
    mentions = extract_mentions([*(message.content for message in messages), prompt])
    enhanced = build_image_prompt(
        prompt,
        image_format=project.image_format,
        aspect_ratio=project.image_aspect_ratio,
        design_description=describe_design_specs(_design_specs(messages)),
        conversation_context=" ".join(message.content for message in messages),
        reference_count=len(references),
        color_context=color_context,
        material_prompts=resolve_material_prompts(session, project_id, mentions),
    )

    inline = load_inline_images(store, (ref.storage_key for ref in references))
    try:
        result = client.generate_image(enhanced, images=inline)
    except genai_errors.APIError as exc:
        logger.error(f"Image generation failed for project {project_id}: {exc}")
        raise UpstreamError("Image generation failed", details=exc) from exc
    if result.candidate_count == 0:
        raise UpstreamError("No image generated from Gemini API")
    if result.image is None:
        raise UpstreamError("No image data in Gemini API response")

    data, mime_type = convert_image(result.image.data, project.image_format)
    key = store.put(data, uuid.uuid4().hex, project_id, mime_type)
    url = store.presigned_url(key)

    image = GeneratedImage(project_id=project_id, storage_key=key, prompt=enhanced)
    session.add(image)
    session.commit()

    record_usage(session, project_id, input_tokens=result.prompt_tokens, images=1)
    logger.info(f"Generated base image {image.id} for project {project_id}")
    return image, url
