"""Pydantic request and response models for the Facet API.

Field names are snake_case in Python and camelCase on the wire: every model
derives from :class:`CamelModel`, whose alias generator maps
``image_aspect_ratio`` to ``imageAspectRatio``.  Requests accept either form;
responses are always serialised by alias.

Response models are built from ORM rows with ``model_validate(row)``; the
image URL fields are filled in by the route handlers because they depend on
the object store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from facet.core.tables import AspectRatio, ImageFormat, ViewType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Requests.
# ---------------------------------------------------------------------------


class CreateProjectRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255, description="Project name.")
    image_format: ImageFormat = Field(default=ImageFormat.PNG, description="Format generated images are stored in.")
    image_aspect_ratio: AspectRatio = Field(default=AspectRatio.SQUARE, description="Aspect ratio requested in prompts.")


class UpdateProjectRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)


class UploadReferenceImageRequest(CamelModel):
    """Request body for ``POST /projects/{id}/reference-images``.

    Attributes:
        reference_image: ``data:<mime>;base64,<payload>`` URL, or bare base64
            (treated as PNG).
        name: Optional display label.
        color_descriptions: Optional mapping of sketch colors to what they
            represent, e.g. ``{"red": "rubies"}``.
    """

    reference_image: str = Field(..., min_length=1)
    name: str | None = None
    color_descriptions: dict[str, str] | None = None


class UpdateReferenceImageRequest(CamelModel):
    name: str | None = None


class GenerateViewsRequest(CamelModel):
    project_id: str = Field(..., min_length=1)
    base_image_id: str | None = Field(
        default=None,
        description="Base image to derive views from. Defaults to the project's latest base image.",
    )


class GenerateImageRequest(CamelModel):
    project_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    reference_image_ids: list[str] | None = None


class ChatRequest(CamelModel):
    project_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    reference_image_ids: list[str] | None = None
    generated_image_ids: list[str] | None = None


class SystemPromptRequest(CamelModel):
    system_prompt: str | None


class LLMParameters(CamelModel):
    """Sampling parameters for the chat model.  All optional."""

    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, ge=0, le=1)
    top_k: int | None = Field(default=None, ge=1)
    max_output_tokens: int | None = Field(default=None, ge=1, le=8192)


class LLMParametersRequest(CamelModel):
    llm_parameters: LLMParameters | None = None


class UpdateMessageRequest(CamelModel):
    content: str = Field(..., min_length=1)


class CreateMaterialRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255, description="Name used in @mentions.")
    prompt: str = Field(..., min_length=1, description="Prompt fragment; may contain rich-text markup.")
    category: str = Field(..., min_length=1, max_length=255)
    is_global: bool = False
    project_id: str | None = None


class UpdateMaterialRequest(CamelModel):
    id: str = Field(..., min_length=1)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    prompt: str | None = Field(default=None, min_length=1)
    category: str | None = Field(default=None, min_length=1, max_length=255)
    is_global: bool | None = None


# ---------------------------------------------------------------------------
# Responses.
# ---------------------------------------------------------------------------


class ProjectOut(CamelModel):
    id: str
    name: str
    image_format: ImageFormat
    image_aspect_ratio: AspectRatio
    total_input_tokens: int
    total_output_tokens: int
    total_images_generated: int
    total_cost: float
    custom_system_prompt: str | None = None
    llm_parameters: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class ProjectCounts(BaseModel):
    messages: int
    images: int


class ProjectSummary(ProjectOut):
    counts: ProjectCounts = Field(..., alias="_count")


class MessageOut(CamelModel):
    id: str
    project_id: str
    role: str
    content: str
    content_json: dict[str, Any] | None = None
    created_at: datetime


class GeneratedImageOut(CamelModel):
    id: str
    project_id: str
    prompt: str
    view_type: ViewType | None = None
    view_set_id: str | None = None
    image_url: str = ""
    created_at: datetime


class ReferenceImageOut(CamelModel):
    """A reference image with its annotation.

    ``name`` carries the legacy single-string encoding (plain label, or JSON
    with ``colorDescriptions``) for clients that still read it; ``label`` and
    ``color_descriptions`` are the structured form.
    """

    id: str
    project_id: str
    name: str | None = None
    label: str | None = None
    color_descriptions: dict[str, str] = Field(default_factory=dict)
    image_url: str = ""
    created_at: datetime


class ProjectDetail(ProjectOut):
    messages: list[MessageOut] = Field(default_factory=list)
    images: list[GeneratedImageOut] = Field(default_factory=list)
    reference_images: list[ReferenceImageOut] = Field(default_factory=list)


class MaterialOut(CamelModel):
    id: str
    name: str
    prompt: str
    category: str
    is_global: bool
    project_id: str | None = None
    created_at: datetime
    updated_at: datetime


class GeneratedViewOut(CamelModel):
    id: str
    view_type: ViewType
    image_url: str


class GenerateViewsResponse(CamelModel):
    views: list[GeneratedViewOut]
    view_set_id: str


class GenerateImageResponse(CamelModel):
    image_id: str
    image_url: str


class ChatUsage(CamelModel):
    input_tokens: int
    output_tokens: int


class ChatResponse(CamelModel):
    message: MessageOut
    should_generate_image: bool
    usage: ChatUsage
