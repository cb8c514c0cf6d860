"""Atomic usage accounting for projects.

Project totals (tokens, images, cost) are shared aggregate counters: a view
batch, a base-image generation and a chat turn can all finish against the same
project at the same time.  Reading the totals, adding locally and writing them
back would lose one of two racing updates, so :func:`record_usage` expresses
the change as ``column = column + delta`` in a single ``UPDATE`` statement and
recomputes the cost from the updated columns inside that same statement.

Every completed billable event is therefore counted exactly once, whatever the
interleaving of concurrent requests.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from facet.core.errors import NotFoundError
from facet.core.pricing import (
    INPUT_PRICE_PER_MILLION_TOKENS,
    OUTPUT_IMAGE_PRICE_PER_IMAGE,
    OUTPUT_TEXT_PRICE_PER_MILLION_TOKENS,
)
from facet.core.tables import Project, utcnow

logger = logging.getLogger(__name__)


def record_usage(
    session: Session,
    project_id: str,
    *,
    input_tokens: int = 0,
    output_tokens: int = 0,
    images: int = 0,
) -> Project:
    """Add usage deltas to a project's running totals and recompute its cost.

    The cost expression mirrors
    :func:`facet.core.pricing.calculate_total_cost` evaluated on the new
    totals.

    Args:
        session: Active database session.  The update is committed.
        project_id: Project to charge.
        input_tokens: Prompt tokens consumed.
        output_tokens: Text output tokens produced.
        images: Images produced.

    Returns:
        The refreshed :class:`Project`.

    Raises:
        NotFoundError: If the project does not exist.
    """
    if not (input_tokens or output_tokens or images):
        project = session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    new_input = Project.total_input_tokens + input_tokens
    new_output = Project.total_output_tokens + output_tokens
    new_images = Project.total_images_generated + images

    stmt = (
        update(Project)
        .where(Project.id == project_id)
        .values(
            total_input_tokens=new_input,
            total_output_tokens=new_output,
            total_images_generated=new_images,
            total_cost=(
                new_input * INPUT_PRICE_PER_MILLION_TOKENS / 1_000_000.0
                + new_output * OUTPUT_TEXT_PRICE_PER_MILLION_TOKENS / 1_000_000.0
                + new_images * OUTPUT_IMAGE_PRICE_PER_IMAGE
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        session.rollback()
        raise NotFoundError("Project", project_id)
    session.commit()

    project = session.get(Project, project_id)
    session.refresh(project)
    logger.info(
        f"Recorded usage for project {project_id}: +{input_tokens} input, "
        f"+{output_tokens} output, +{images} images"
    )
    return project
