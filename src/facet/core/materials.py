"""Materials library.

A material is a named prompt fragment (``"Metal: brushed 18k rose gold"``)
that users reference in conversation or in an image request with an
``@mention``::

    A solitaire ring in @roseGold with a @pave band

Materials are either global, shared by every project, or scoped to a single
project.  When a base image is generated, every mentioned material visible
to the project is appended to the prompt as ``<category>: <prompt>``.  Names
are matched case-insensitively; only single-word names can be mentioned.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from facet.core.errors import NotFoundError, ValidationError
from facet.core.tables import Material, Project

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"@(\w+)")
_HTML_TAG_RE = re.compile(r"<[^>]*>")


def extract_mentions(texts: Iterable[str]) -> set[str]:
    """Return the lower-cased names mentioned with ``@`` in *texts*."""
    return {match.lower() for text in texts for match in MENTION_RE.findall(text)}


def strip_html(text: str) -> str:
    """Remove markup left by the rich-text material editor."""
    return _HTML_TAG_RE.sub("", text)


def _visible_to(project_id: str | None):
    if project_id:
        return or_(Material.is_global.is_(True), Material.project_id == project_id)
    return Material.is_global.is_(True)


def list_materials(session: Session, project_id: str | None = None) -> list[Material]:
    """List global materials, plus those of *project_id* when given.

    Global materials come first, each group newest first.
    """
    stmt = (
        select(Material)
        .where(_visible_to(project_id))
        .order_by(Material.is_global.desc(), Material.created_at.desc())
    )
    return list(session.scalars(stmt).all())


def get_material(session: Session, material_id: str) -> Material:
    material = session.get(Material, material_id)
    if material is None:
        raise NotFoundError("Material", material_id)
    return material


def create_material(
    session: Session,
    name: str,
    prompt: str,
    category: str,
    is_global: bool = False,
    project_id: str | None = None,
) -> Material:
    """Create a global or project-scoped material.

    Raises:
        ValidationError: A project material without a project, or a global
            material with one.
        NotFoundError: The project does not exist.
    """
    if not is_global and not project_id:
        raise ValidationError("Project ID is required for project-specific materials")
    if is_global and project_id:
        raise ValidationError("Global materials cannot be associated with a project")
    if project_id and session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)

    material = Material(
        name=name,
        prompt=prompt,
        category=category,
        is_global=is_global,
        project_id=project_id,
    )
    session.add(material)
    session.commit()
    logger.info(f"Created {'global' if is_global else 'project'} material {material.id} ({name})")
    return material


def update_material(
    session: Session,
    material_id: str,
    name: str | None = None,
    prompt: str | None = None,
    category: str | None = None,
    is_global: bool | None = None,
) -> Material:
    """Apply the given changes; ``None`` leaves a field as it is.

    Making a material global detaches it from its project.  A global
    material cannot be made project-scoped because it has no project.

    Raises:
        NotFoundError: The material does not exist.
        ValidationError: Scoping a global material to no project.
    """
    material = get_material(session, material_id)
    if name is not None:
        material.name = name
    if prompt is not None:
        material.prompt = prompt
    if category is not None:
        material.category = category
    if is_global is True:
        material.is_global = True
        material.project_id = None
    elif is_global is False:
        if material.project_id is None:
            raise ValidationError("Project ID is required for project-specific materials")
        material.is_global = False
    session.commit()
    return material


def delete_material(session: Session, material_id: str) -> None:
    session.delete(get_material(session, material_id))
    session.commit()
    logger.info(f"Deleted material {material_id}")


def resolve_material_prompts(session: Session, project_id: str, names: Iterable[str]) -> list[str]:
    """Return ``"<category>: <prompt>"`` for each named material visible to a project.

    Args:
        session: Active database session.
        project_id: Project whose scoped materials are searched with the
            global ones.
        names: Mentioned names, matched case-insensitively.

    Returns:
        Prompt fragments with markup removed, global materials first.
    """
    wanted = {name.lower() for name in names}
    if not wanted:
        return []
    stmt = (
        select(Material)
        .where(_visible_to(project_id), func.lower(Material.name).in_(sorted(wanted)))
        .order_by(Material.is_global.desc(), Material.created_at)
    )
    return [f"{m.category}: {strip_html(m.prompt).strip()}" for m in session.scalars(stmt)]
