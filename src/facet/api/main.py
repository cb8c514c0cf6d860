"""Facet Jewelry Studio — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Persistence** goes through a SQLAlchemy session per request
  (:func:`get_session`).  Tables are created on startup.
- **Image bytes** live in an S3-compatible object store
  (:class:`~facet.core.storage.ImageStore`); the database keeps only keys and
  responses carry presigned URLs.
- **Generation** is delegated to :class:`~facet.core.generation.GeminiClient`,
  built on first use so the server can start without an API key.
- **Errors** derived from :class:`~facet.core.errors.FacetError` are rendered
  as ``{"error", "code", "details"?}`` with the error's status code.

Route handlers are plain ``def`` functions: FastAPI runs them in its thread
pool, so the blocking SDK, boto3 and database calls do not stall the event
loop.

Endpoints
---------
======  =============================================  ==================================
Method  Path                                           Purpose
======  =============================================  ==================================
GET     ``/health``                                    Liveness and version
POST    ``/projects``                                  Create a project
GET     ``/projects``                                  List projects with counts
DELETE  ``/projects?id=``                              Delete a project
GET     ``/projects/{id}``                             Project with messages and images
PATCH   ``/projects/{id}``                             Rename a project
GET     ``/projects/{id}/export``                      Download the project as JSON
GET     ``/projects/{id}/system-prompt``               Custom system prompt
PUT     ``/projects/{id}/system-prompt``               Set or clear the system prompt
GET     ``/projects/{id}/llm-parameters``              Chat sampling parameters
PUT     ``/projects/{id}/llm-parameters``              Set or clear sampling parameters
POST    ``/projects/{id}/reference-images``            Upload a reference image
GET     ``/projects/{id}/reference-images``            List reference images
PATCH   ``/projects/{id}/reference-images/{imageId}``  Rename a reference image
DELETE  ``/projects/{id}/reference-images/{imageId}``  Delete a reference image
PATCH   ``/messages/{id}``                             Edit a message
DELETE  ``/messages/{id}``                             Delete a message
GET     ``/materials?projectId=``                      Global and project materials
POST    ``/materials``                                 Create a material
PATCH   ``/materials``                                 Update a material
DELETE  ``/materials?id=``                             Delete a material
POST    ``/chat``                                      One design-assistant turn
POST    ``/generate-image``                            Generate a base image
POST    ``/generate-views``                            Generate front/side/top/bottom views
GET     ``/images/{key}``                              Proxy stored image bytes
======  =============================================  ==================================

Usage
-----
CLI (installed entry point)::

    facet

Direct invocation::

    python -m facet.api.main
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from facet import __version__
from facet.api.models import (
    ChatRequest,
    ChatResponse,
    ChatUsage,
    CreateMaterialRequest,
    CreateProjectRequest,
    GeneratedImageOut,
    GeneratedViewOut,
    GenerateImageRequest,
    GenerateImageResponse,
    GenerateViewsRequest,
    GenerateViewsResponse,
    LLMParametersRequest,
    MaterialOut,
    MessageOut,
    ProjectCounts,
    ProjectDetail,
    ProjectOut,
    ProjectSummary,
    ReferenceImageOut,
    SystemPromptRequest,
    UpdateMaterialRequest,
    UpdateMessageRequest,
    UpdateProjectRequest,
    UpdateReferenceImageRequest,
    UploadReferenceImageRequest,
)
from facet.core import materials
from facet.core.annotations import ReferenceAnnotation
from facet.core.chat import run_chat_turn
from facet.core.config import config
from facet.core.db import create_session_factory, init_db, session_scope
from facet.core.errors import FacetError, NotFoundError, StorageError, ValidationError
from facet.core.generation import GeminiClient
from facet.core.images import generate_base_image
from facet.core.storage import ImageStore, decode_data_url, guess_mime_from_key
from facet.core.tables import GeneratedImage, Message, Project, ReferenceImage
from facet.core.views import generate_views as run_view_generation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    On startup:
        Creates the session factory and any missing tables.  The object store
        and generation clients are built lazily by their dependencies.

    On shutdown:
        Disposes the database engine's connection pool.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    factory = _session_factory(app)
    logger.info(f"Facet {__version__} started.")

    yield

    # --- Shutdown ----------------------------------------------------------
    factory.kw["bind"].dispose()
    logger.info("Database engine disposed on shutdown.")


app = FastAPI(
    title="Facet Jewelry Studio",
    description="AI-assisted jewelry design: projects, reference sketches, base images and multi-angle views.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FacetError)
async def facet_error_handler(request: Request, exc: FacetError) -> JSONResponse:
    """Render application errors with their own status code and body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def _session_factory(app: FastAPI) -> sessionmaker:
    factory = getattr(app.state, "session_factory", None)
    if factory is None:
        factory = create_session_factory(config.database_url)
        init_db(factory.kw["bind"])
        app.state.session_factory = factory
    return factory


def get_session(request: Request) -> Iterator[Session]:
    yield from session_scope(_session_factory(request.app))


def get_store(request: Request) -> ImageStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = ImageStore(config)
        request.app.state.store = store
    return store


def get_generator(request: Request) -> GeminiClient:
    generator = getattr(request.app.state, "generator", None)
    if generator is None:
        generator = GeminiClient(config)
        request.app.state.generator = generator
    return generator


# ---------------------------------------------------------------------------
# Lookup and serialisation helpers.
# ---------------------------------------------------------------------------


def _get_project(session: Session, project_id: str) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def _get_reference_image(session: Session, project_id: str, image_id: str) -> ReferenceImage:
    """Return a reference image only if it belongs to *project_id*."""
    reference = session.get(ReferenceImage, image_id)
    if reference is None or reference.project_id != project_id:
        raise NotFoundError("Reference image", image_id)
    return reference


def _get_message(session: Session, message_id: str) -> Message:
    message = session.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message", message_id)
    return message


def _reference_out(store: ImageStore, reference: ReferenceImage) -> ReferenceImageOut:
    annotation = ReferenceAnnotation.from_columns(reference.label, reference.color_descriptions)
    return ReferenceImageOut(
        id=reference.id,
        project_id=reference.project_id,
        name=annotation.to_legacy(),
        label=annotation.label,
        color_descriptions=annotation.color_descriptions,
        image_url=store.presigned_url(reference.storage_key),
        created_at=reference.created_at,
    )


def _image_out(store: ImageStore, image: GeneratedImage) -> GeneratedImageOut:
    return GeneratedImageOut(
        id=image.id,
        project_id=image.project_id,
        prompt=image.prompt,
        view_type=image.view_type,
        view_set_id=image.view_set_id,
        image_url=store.presigned_url(image.storage_key),
        created_at=image.created_at,
    )


def _project_detail(store: ImageStore, project: Project) -> ProjectDetail:
    return ProjectDetail(
        **ProjectOut.model_validate(project).model_dump(),
        messages=[MessageOut.model_validate(message) for message in project.messages],
        images=[_image_out(store, image) for image in project.images],
        reference_images=[_reference_out(store, ref) for ref in project.reference_images],
    )


def _count_by_project(session: Session, column) -> dict[str, int]:
    return dict(session.execute(select(column, func.count()).group_by(column)).all())


def _delete_objects(store: ImageStore, keys: list[str]) -> None:
    """Best-effort removal of stored objects; failures are only logged."""
    for key in keys:
        try:
            store.delete(key)
        except StorageError as exc:
            logger.warning(f"Could not delete stored object {key}: {exc}")


# ---------------------------------------------------------------------------
# Health.
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# Projects.
# ---------------------------------------------------------------------------


@app.post("/projects")
def create_project(req: CreateProjectRequest, session: Session = Depends(get_session)) -> dict:
    """Create an empty project with the given image preferences."""
    project = Project(name=req.name, image_format=req.image_format, image_aspect_ratio=req.image_aspect_ratio)
    session.add(project)
    session.commit()
    logger.info(f"Created project {project.id} ({project.name})")
    return {"project": ProjectOut.model_validate(project)}


@app.get("/projects")
def list_projects(session: Session = Depends(get_session)) -> dict:
    """List all projects, most recently updated first, with message and image counts."""
    projects = session.scalars(select(Project).order_by(Project.updated_at.desc())).all()
    message_counts = _count_by_project(session, Message.project_id)
    image_counts = _count_by_project(session, GeneratedImage.project_id)
    return {
        "projects": [
            ProjectSummary(
                **ProjectOut.model_validate(project).model_dump(),
                counts=ProjectCounts(
                    messages=message_counts.get(project.id, 0),
                    images=image_counts.get(project.id, 0),
                ),
            )
            for project in projects
        ]
    }


@app.delete("/projects")
def delete_project(
    project_id: str | None = Query(default=None, alias="id"),
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    """Delete a project, its records, and (best effort) its stored images.

    Raises:
        ValidationError: 400 if the ``id`` query parameter is missing.
        NotFoundError: 404 if the project does not exist.
    """
    if not project_id:
        raise ValidationError("Project ID is required")
    project = _get_project(session, project_id)

    keys = [image.storage_key for image in project.images]
    keys.extend(ref.storage_key for ref in project.reference_images)
    session.delete(project)
    session.commit()
    _delete_objects(store, keys)

    logger.info(f"Deleted project {project_id}")
    return {"success": True}


@app.get("/projects/{project_id}")
def get_project(
    project_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    """Return a project with its messages (oldest first) and images (newest first)."""
    project = _get_project(session, project_id)
    return {"project": _project_detail(store, project)}


@app.patch("/projects/{project_id}")
def rename_project(
    project_id: str, req: UpdateProjectRequest, session: Session = Depends(get_session)
) -> dict:
    project = _get_project(session, project_id)
    project.name = req.name
    session.commit()
    return {"project": ProjectOut.model_validate(project)}


@app.get("/projects/{project_id}/export")
def export_project(
    project_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> JSONResponse:
    """Return the full project as a downloadable JSON attachment."""
    project = _get_project(session, project_id)
    payload = jsonable_encoder(_project_detail(store, project).model_dump(by_alias=True))
    slug = re.sub(r"[^a-z0-9]", "-", project.name, flags=re.IGNORECASE)
    filename = f"project-{slug}-{int(time.time() * 1000)}.json"
    return JSONResponse(
        content=payload,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/projects/{project_id}/system-prompt")
def get_system_prompt(project_id: str, session: Session = Depends(get_session)) -> dict:
    return {"systemPrompt": _get_project(session, project_id).custom_system_prompt}


@app.put("/projects/{project_id}/system-prompt")
def set_system_prompt(
    project_id: str, req: SystemPromptRequest, session: Session = Depends(get_session)
) -> dict:
    project = _get_project(session, project_id)
    project.custom_system_prompt = req.system_prompt
    session.commit()
    return {"systemPrompt": project.custom_system_prompt}


@app.get("/projects/{project_id}/llm-parameters")
def get_llm_parameters(project_id: str, session: Session = Depends(get_session)) -> dict:
    return {"llmParameters": _get_project(session, project_id).llm_parameters}


@app.put("/projects/{project_id}/llm-parameters")
def set_llm_parameters(
    project_id: str, req: LLMParametersRequest, session: Session = Depends(get_session)
) -> dict:
    """Store chat sampling parameters; an empty or null object clears them."""
    project = _get_project(session, project_id)
    params = req.llm_parameters.model_dump(by_alias=True, exclude_none=True) if req.llm_parameters else {}
    project.llm_parameters = params or None
    session.commit()
    return {"llmParameters": project.llm_parameters}


# ---------------------------------------------------------------------------
# Reference images.
# ---------------------------------------------------------------------------


@app.post("/projects/{project_id}/reference-images")
def upload_reference_image(
    project_id: str,
    req: UploadReferenceImageRequest,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    """Upload a reference sketch with an optional label and color annotations.

    A ``name`` in the old JSON encoding is migrated into the structured
    columns; explicit ``colorDescriptions`` take precedence over colors found
    in it.

    Raises:
        ValidationError: 400 if the image payload is not valid base64.
        NotFoundError: 404 if the project does not exist.
        StorageError: 500 if the upload fails.
    """
    _get_project(session, project_id)
    data, mime_type = decode_data_url(req.reference_image)

    annotation = ReferenceAnnotation.from_legacy(req.name)
    colors = {**annotation.color_descriptions, **(req.color_descriptions or {})}

    key = store.put(data, f"ref-{uuid.uuid4().hex}", project_id, mime_type)
    reference = ReferenceImage(
        project_id=project_id,
        storage_key=key,
        label=annotation.label,
        color_descriptions=colors or None,
    )
    session.add(reference)
    session.commit()
    return {"referenceImage": _reference_out(store, reference)}


@app.get("/projects/{project_id}/reference-images")
def list_reference_images(
    project_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    _get_project(session, project_id)
    references = session.scalars(
        select(ReferenceImage)
        .where(ReferenceImage.project_id == project_id)
        .order_by(ReferenceImage.created_at.desc())
    ).all()
    return {"referenceImages": [_reference_out(store, ref) for ref in references]}


@app.patch("/projects/{project_id}/reference-images/{image_id}")
def rename_reference_image(
    project_id: str,
    image_id: str,
    req: UpdateReferenceImageRequest,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    """Change a reference image's label; its color descriptions are kept."""
    reference = _get_reference_image(session, project_id, image_id)
    annotation = ReferenceAnnotation.from_columns(reference.label, reference.color_descriptions)
    reference.label = annotation.with_label(req.name).label
    session.commit()
    return {"referenceImage": _reference_out(store, reference)}


@app.delete("/projects/{project_id}/reference-images/{image_id}")
def delete_reference_image(
    project_id: str,
    image_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
) -> dict:
    """Delete a reference image.

    The stored object is removed first; if that fails the error is logged and
    the database record is deleted anyway.
    """
    reference = _get_reference_image(session, project_id, image_id)
    _delete_objects(store, [reference.storage_key])
    session.delete(reference)
    session.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Messages.
# ---------------------------------------------------------------------------


@app.patch("/messages/{message_id}")
def update_message(message_id: str, req: UpdateMessageRequest, session: Session = Depends(get_session)) -> dict:
    message = _get_message(session, message_id)
    message.content = req.content
    session.commit()
    return {"message": MessageOut.model_validate(message)}


@app.delete("/messages/{message_id}")
def delete_message(message_id: str, session: Session = Depends(get_session)) -> dict:
    session.delete(_get_message(session, message_id))
    session.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Materials.
# ---------------------------------------------------------------------------


@app.get("/materials")
def list_materials(
    project_id: str | None = Query(default=None, alias="projectId"),
    session: Session = Depends(get_session),
) -> dict:
    """List global materials first, then those of ``projectId`` if given."""
    found = materials.list_materials(session, project_id)
    return {"materials": [MaterialOut.model_validate(material) for material in found]}


@app.post("/materials")
def create_material(req: CreateMaterialRequest, session: Session = Depends(get_session)) -> dict:
    """Create a material.

    Raises:
        ValidationError: 400 if a project material has no ``projectId`` or a
            global one has one.
        NotFoundError: 404 if the project does not exist.
    """
    material = materials.create_material(
        session,
        name=req.name,
        prompt=req.prompt,
        category=req.category,
        is_global=req.is_global,
        project_id=req.project_id,
    )
    return {"material": MaterialOut.model_validate(material)}


@app.patch("/materials")
def update_material(req: UpdateMaterialRequest, session: Session = Depends(get_session)) -> dict:
    material = materials.update_material(
        session,
        req.id,
        name=req.name,
        prompt=req.prompt,
        category=req.category,
        is_global=req.is_global,
    )
    return {"material": MaterialOut.model_validate(material)}


@app.delete("/materials")
def delete_material(
    material_id: str | None = Query(default=None, alias="id"),
    session: Session = Depends(get_session),
) -> dict:
    if not material_id:
        raise ValidationError("Material ID is required")
    materials.delete_material(session, material_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Generation.
# ---------------------------------------------------------------------------


@app.post("/chat")
def chat(
    req: ChatRequest,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
    generator: GeminiClient = Depends(get_generator),
) -> ChatResponse:
    """Send one message to the design assistant and return its reply."""
    turn = run_chat_turn(
        session,
        store,
        generator,
        req.project_id,
        req.message,
        reference_image_ids=req.reference_image_ids,
        generated_image_ids=req.generated_image_ids,
    )
    return ChatResponse(
        message=MessageOut.model_validate(turn.message),
        should_generate_image=turn.should_generate_image,
        usage=ChatUsage(input_tokens=turn.input_tokens, output_tokens=turn.output_tokens),
    )


@app.post("/generate-image")
def generate_image(
    req: GenerateImageRequest,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
    generator: GeminiClient = Depends(get_generator),
) -> GenerateImageResponse:
    """Generate a new base image from a prompt and the project's context."""
    image, url = generate_base_image(
        session,
        store,
        generator,
        req.project_id,
        req.prompt,
        reference_image_ids=req.reference_image_ids,
        context_message_limit=config.context_message_limit,
    )
    return GenerateImageResponse(image_id=image.id, image_url=url)


@app.post("/generate-views")
def generate_views(
    req: GenerateViewsRequest,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_store),
    generator: GeminiClient = Depends(get_generator),
) -> GenerateViewsResponse:
    """Generate front, side, top and bottom views of a base image.

    Views that fail are skipped; the request fails with 502 only when none of
    the four could be generated.
    """
    batch = run_view_generation(session, store, generator, req.project_id, req.base_image_id)
    return GenerateViewsResponse(
        views=[
            GeneratedViewOut(id=view.id, view_type=view.view_type, image_url=view.image_url)
            for view in batch.views
        ],
        view_set_id=batch.view_set_id,
    )


# ---------------------------------------------------------------------------
# Image proxy.
# ---------------------------------------------------------------------------


@app.get("/images/{key:path}")
def proxy_image(key: str, store: ImageStore = Depends(get_store)) -> Response:
    """Serve stored image bytes, for clients that cannot reach the object store."""
    try:
        data = store.get(key)
    except StorageError:
        return Response(content="Image not found", status_code=404, media_type="text/plain")
    return Response(
        content=data,
        media_type=guess_mime_from_key(key),
        headers={"Cache-Control": "public, max-age=3600"},
    )


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~facet.core.config.config`
    (``FACET_SERVER_HOST``, ``FACET_SERVER_PORT``, ``FACET_LOG_LEVEL``).

    This function is registered as the ``facet`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "facet.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
