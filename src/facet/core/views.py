"""Multi-angle view generation.

Given a project and one of its base images, :func:`generate_views` renders the
same jewelry piece from four fixed angles (front, side, top, bottom) and
stores each result as a new :class:`~facet.core.tables.GeneratedImage` tagged
with its view type and a view-set identifier shared by the whole run.

Flow
----
1. Resolve the project and the base image (explicit id, or the most recent
   base image of the project).
2. Fetch the base image bytes once; they are re-sent with every view prompt.
3. For FRONT, SIDE, TOP, BOTTOM in that order, one call at a time:
   build the view prompt, call the image model, re-encode the returned image
   to the project's format, upload it, persist the record, presign its URL.
4. Charge the project for the accumulated prompt tokens and the number of
   views that succeeded.

Partial failure
---------------
Each angle yields a :class:`ViewOutcome`.  An angle whose call raises, returns
no candidate, or returns a candidate without an image is recorded as failed
and the loop moves on: the images that did succeed are expensive and still
useful.  Only when all four fail does the batch raise
:class:`~facet.core.errors.UpstreamError`, in which case nothing is charged.

Views that were committed before a request is aborted stay in place; there is
no compensating rollback.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from facet.core.errors import NotFoundError, StorageError, UpstreamError
from facet.core.generation import GeminiClient, InlineImage
from facet.core.prompts import build_view_prompt
from facet.core.storage import ImageStore, convert_image, guess_mime_from_key
from facet.core.tables import VIEW_ORDER, GeneratedImage, Project, ViewType
from facet.core.usage import record_usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedView:
    id: str
    view_type: ViewType
    image_url: str


@dataclass(frozen=True)
class ViewOutcome:
    """Result of one angle of a view set.

    Attributes:
        view_type: The angle that was attempted.
        view: The stored view on success, ``None`` on failure.
        error: Why the angle failed, ``None`` on success.
        prompt_tokens: Prompt tokens reported for this call (0 if it raised).
    """

    view_type: ViewType
    view: GeneratedView | None = None
    error: str | None = None
    prompt_tokens: int = 0

    @property
    def succeeded(self) -> bool:
        return self.view is not None


@dataclass
class ViewBatch:
    """All outcomes of one view-generation run."""

    view_set_id: str
    outcomes: list[ViewOutcome] = field(default_factory=list)

    @property
    def views(self) -> list[GeneratedView]:
        """Successful views, in generation order."""
        return [outcome.view for outcome in self.outcomes if outcome.view is not None]

    @property
    def failures(self) -> list[ViewOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    @property
    def input_tokens(self) -> int:
        return sum(outcome.prompt_tokens for outcome in self.outcomes)


def resolve_base_image(
    session: Session, project_id: str, base_image_id: str | None = None
) -> tuple[Project, GeneratedImage]:
    """Look up the project and the base image to derive views from.

    Args:
        session: Active database session.
        project_id: Owning project.
        base_image_id: Explicit base image, or ``None`` for the most recent
            base image of the project.

    Returns:
        Tuple of ``(project, base_image)``.

    Raises:
        NotFoundError: If the project is missing, if the explicit image does
            not exist, belongs to another project or is itself a view, or if
            the project has no base image at all.
    """
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)

    stmt = select(GeneratedImage).where(
        GeneratedImage.project_id == project_id,
        GeneratedImage.view_type.is_(None),
    )
    if base_image_id:
        base_image = session.scalars(stmt.where(GeneratedImage.id == base_image_id)).first()
        if base_image is None:
            raise NotFoundError("Base image", base_image_id)
    else:
        base_image = session.scalars(stmt.order_by(GeneratedImage.created_at.desc())).first()
        if base_image is None:
            raise NotFoundError("Base image")

    return project, base_image


def _generate_view(
    session: Session,
    store: ImageStore,
    client: GeminiClient,
    project: Project,
    base_image: GeneratedImage,
    reference: InlineImage,
    view_type: ViewType,
    view_set_id: str,
) -> ViewOutcome:
    """Render, store and persist a single angle."""
    prompt = build_view_prompt(
        base_image.prompt,
        view_type,
        image_format=project.image_format,
        aspect_ratio=project.image_aspect_ratio,
    )

    try:
        result = client.generate_image(prompt, images=[reference])
    except Exception as exc:
        logger.warning(f"View {view_type.value} generation failed for project {project.id}: {exc}")
        return ViewOutcome(view_type=view_type, error=f"generation failed: {exc}")

    if result.candidate_count == 0:
        logger.warning(f"View {view_type.value}: no image generated")
        return ViewOutcome(view_type=view_type, error="no candidates", prompt_tokens=result.prompt_tokens)
    if result.image is None:
        logger.warning(f"View {view_type.value}: no image data in response")
        return ViewOutcome(view_type=view_type, error="no image data", prompt_tokens=result.prompt_tokens)

    try:
        data, mime_type = convert_image(result.image.data, project.image_format)
        key = store.put(data, uuid.uuid4().hex, project.id, mime_type)
        url = store.presigned_url(key)

        record = GeneratedImage(
            project_id=project.id,
            storage_key=key,
            prompt=prompt,
            view_type=view_type,
            view_set_id=view_set_id,
        )
        session.add(record)
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.warning(f"View {view_type.value} could not be stored for project {project.id}: {exc}")
        return ViewOutcome(view_type=view_type, error=f"storage failed: {exc}", prompt_tokens=result.prompt_tokens)

    logger.info(f"Generated {view_type.value} view {record.id} in set {view_set_id}")
    return ViewOutcome(
        view_type=view_type,
        view=GeneratedView(id=record.id, view_type=view_type, image_url=url),
        prompt_tokens=result.prompt_tokens,
    )


def generate_views(
    session: Session,
    store: ImageStore,
    client: GeminiClient,
    project_id: str,
    base_image_id: str | None = None,
) -> ViewBatch:
    """Generate the front, side, top and bottom views of a base image.

    Args:
        session: Active database session.
        store: Object store holding image bytes.
        client: Generative API client.
        project_id: Project to generate views for.
        base_image_id: Base image to derive from; defaults to the project's
            most recent base image.

    Returns:
        The :class:`ViewBatch` with one outcome per angle.  ``batch.views``
        holds the successful views in generation order.

    Raises:
        NotFoundError: Project or base image could not be resolved.
        StorageError: The base image bytes could not be loaded.
        UpstreamError: None of the four views could be generated.
    """
    project, base_image = resolve_base_image(session, project_id, base_image_id)

    try:
        base_bytes = store.get(base_image.storage_key)
    except StorageError as exc:
        logger.error(f"Failed to load base image {base_image.id}: {exc}")
        raise StorageError("Failed to load base image", details=exc.details) from exc

    reference = InlineImage(data=base_bytes, mime_type=guess_mime_from_key(base_image.storage_key))
    batch = ViewBatch(view_set_id=str(uuid.uuid4()))

    for view_type in VIEW_ORDER:
        batch.outcomes.append(
            _generate_view(
                session,
                store,
                client,
                project,
                base_image,
                reference,
                view_type,
                batch.view_set_id,
            )
        )

    if not batch.views:
        logger.error(f"All views failed for project {project_id}: {[o.error for o in batch.failures]}")
        raise UpstreamError("Failed to generate any views")

    # Images are billed per unit; no output-token accounting here.
    record_usage(session, project_id, input_tokens=batch.input_tokens, images=len(batch.views))
    logger.info(f"View set {batch.view_set_id}: {len(batch.views)}/{len(VIEW_ORDER)} views generated")
    return batch
