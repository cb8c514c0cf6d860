"""Database tables for Facet Jewelry Studio.

This file defines all SQLAlchemy models used by the application, providing a
single source of truth for the database schema.

Ownership
---------
Projects own their messages, generated images, reference images and
project-scoped materials.  The relationships cascade deletes, so removing a
project removes every dependent row; image bytes in the object store are not
touched by that cascade.

Views
-----
A generated image with a ``view_type`` is one of the (up to) four angles of a
view set and always carries the ``view_set_id`` shared by its siblings.  An
image without a ``view_type`` is a *base image* from which views are derived.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageFormat(str, enum.Enum):
    PNG = "PNG"
    JPEG = "JPEG"
    WEBP = "WEBP"


class AspectRatio(str, enum.Enum):
    SQUARE = "SQUARE"
    HORIZONTAL = "HORIZONTAL"
    VERTICAL = "VERTICAL"


class ViewType(str, enum.Enum):
    FRONT = "FRONT"
    SIDE = "SIDE"
    TOP = "TOP"
    BOTTOM = "BOTTOM"


# Generation order for a view set.
VIEW_ORDER: tuple[ViewType, ...] = (
    ViewType.FRONT,
    ViewType.SIDE,
    ViewType.TOP,
    ViewType.BOTTOM,
)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    image_format = Column(Enum(ImageFormat), nullable=False, default=ImageFormat.PNG)
    image_aspect_ratio = Column(Enum(AspectRatio), nullable=False, default=AspectRatio.SQUARE)

    # Running usage totals, only ever changed through facet.core.usage.
    total_input_tokens = Column(Integer, nullable=False, default=0)
    total_output_tokens = Column(Integer, nullable=False, default=0)
    total_images_generated = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)

    custom_system_prompt = Column(Text, nullable=True)
    llm_parameters = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    messages = relationship(
        "Message",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by=lambda: Message.created_at,
    )
    images = relationship(
        "GeneratedImage",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by=lambda: GeneratedImage.created_at.desc(),
    )
    reference_images = relationship(
        "ReferenceImage",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by=lambda: ReferenceImage.created_at.desc(),
    )
    materials = relationship(
        "Material",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class GeneratedImage(Base):
    __tablename__ = "generated_images"

    id = Column(String(32), primary_key=True, default=_new_id)
    project_id = Column(String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_key = Column(String(1024), nullable=False)
    prompt = Column(Text, nullable=False)
    view_type = Column(Enum(ViewType), nullable=True)
    view_set_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    project = relationship("Project", back_populates="images")

    @property
    def is_base(self) -> bool:
        return self.view_type is None


class ReferenceImage(Base):
    __tablename__ = "reference_images"

    id = Column(String(32), primary_key=True, default=_new_id)
    project_id = Column(String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_key = Column(String(1024), nullable=False)
    label = Column(String(255), nullable=True)
    color_descriptions = Column(JSON, nullable=True)  # {color: description}
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    project = relationship("Project", back_populates="reference_images")


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(32), primary_key=True, default=_new_id)
    project_id = Column(String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    content_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    project = relationship("Project", back_populates="messages")


class Material(Base):
    """A reusable prompt fragment, e.g. ``"Metal: brushed 18k rose gold"``.

    Global materials have no project; project materials belong to exactly one.
    """

    __tablename__ = "materials"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    category = Column(String(255), nullable=False)
    is_global = Column(Boolean, nullable=False, default=False, index=True)
    project_id = Column(String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="materials")
