"""Shared pytest fixtures for Facet tests.

Nothing here touches the network: the database is a temporary SQLite file,
the object store is an in-memory fake and the generation client is scripted.
"""

from __future__ import annotations

import io
import shutil
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.orm import Session, sessionmaker

from facet.api.main import app, get_generator, get_store
from facet.core.config import FacetConfig
from facet.core.db import create_session_factory, init_db
from facet.core.errors import StorageError
from facet.core.generation import GenerationResult, InlineImage, TextResult
from facet.core.storage import ImageStore
from facet.core.tables import GeneratedImage, Project

BASE_PROMPT = (
    "A yellow gold ring with a pear-cut sapphire. Front view, eye-level perspective. "
    "Create a high-quality rendering."
)


def make_png(color: tuple[int, int, int] = (212, 175, 55), size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeImageStore:
    """In-memory stand-in for :class:`ImageStore`.

    Attributes:
        objects: Stored bytes by key.
        deleted: Keys passed to :meth:`delete`, in order.
        fail_delete: Make every delete raise :class:`StorageError`.
        fail_get: Make every get raise :class:`StorageError`.
    """

    build_key = staticmethod(ImageStore.build_key)

    def __init__(self, fail_delete: bool = False, fail_get: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.deleted: list[str] = []
        self.fail_delete = fail_delete
        self.fail_get = fail_get

    def put(self, data: bytes, image_id: str, project_id: str, mime_type: str = "image/png") -> str:
        key = self.build_key(image_id, project_id, mime_type)
        self.objects[key] = data
        self.content_types[key] = mime_type
        return key

    def get(self, key: str) -> bytes:
        if self.fail_get or key not in self.objects:
            raise StorageError("Failed to get image")
        return self.objects[key]

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        if self.fail_delete:
            raise StorageError("Failed to delete image")
        self.objects.pop(key, None)

    def presigned_url(self, key: str, expires_in: int | None = None) -> str:
        return f"http://storage.test/{key}?expires={expires_in or 86400}"


class FakeGenerator:
    """Scripted generation client.

    ``image_results`` and ``text_results`` are consumed in call order; an
    entry that is an exception is raised instead of returned.  When a script
    runs out, a default successful result is returned.
    """

    def __init__(self) -> None:
        self.image_results: list[GenerationResult | Exception] = []
        self.text_results: list[TextResult | Exception] = []
        self.image_calls: list[tuple[str, list[InlineImage]]] = []
        self.text_calls: list[tuple[str, list[InlineImage], dict | None]] = []

    def generate_image(self, prompt: str, images=()) -> GenerationResult:
        self.image_calls.append((prompt, list(images)))
        outcome = self.image_results.pop(0) if self.image_results else image_success()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def generate_text(self, prompt: str, images=(), generation_config=None) -> TextResult:
        self.text_calls.append((prompt, list(images), generation_config))
        if self.text_results:
            outcome = self.text_results.pop(0)
        else:
            outcome = TextResult(text="Plain reply", prompt_tokens=10, output_tokens=5)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def image_success(prompt_tokens: int = 100) -> GenerationResult:
    return GenerationResult(
        image=InlineImage(data=make_png(), mime_type="image/png"),
        prompt_tokens=prompt_tokens,
        output_tokens=1290,
        candidate_count=1,
    )


def image_without_data(prompt_tokens: int = 100) -> GenerationResult:
    return GenerationResult(image=None, prompt_tokens=prompt_tokens, candidate_count=1)


def image_without_candidates(prompt_tokens: int = 100) -> GenerationResult:
    return GenerationResult(image=None, prompt_tokens=prompt_tokens, candidate_count=0)


# ---------------------------------------------------------------------------
# Configuration and database.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> FacetConfig:
    """Create a test configuration pointing at a temporary SQLite file."""
    return FacetConfig(
        database_url=f"sqlite:///{temp_dir / 'facet-test.db'}",
        gemini_api_key="test-key",
        storage_endpoint="http://storage.test",
        storage_bucket="test-bucket",
    )


@pytest.fixture
def session_factory(test_config: FacetConfig) -> Generator[sessionmaker, None, None]:
    factory = create_session_factory(test_config.database_url)
    init_db(factory.kw["bind"])
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Fakes.
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeImageStore:
    return FakeImageStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def results() -> dict[str, Callable[..., GenerationResult]]:
    """Factories for scripted image-generation results."""
    return {
        "success": image_success,
        "no_data": image_without_data,
        "no_candidates": image_without_candidates,
    }


# ---------------------------------------------------------------------------
# Records.
# ---------------------------------------------------------------------------


@pytest.fixture
def project(session: Session) -> Project:
    project = Project(name="Sapphire Ring")
    session.add(project)
    session.commit()
    return project


@pytest.fixture
def base_image(session: Session, store: FakeImageStore, project: Project, png_bytes: bytes) -> GeneratedImage:
    """A stored base image (no view type) for ``project``."""
    key = store.put(png_bytes, "base0001", project.id, "image/png")
    image = GeneratedImage(
        project_id=project.id,
        storage_key=key,
        prompt=BASE_PROMPT,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )
    session.add(image)
    session.commit()
    return image


# ---------------------------------------------------------------------------
# HTTP client.
# ---------------------------------------------------------------------------


@pytest.fixture
def test_client(
    session_factory: sessionmaker, store: FakeImageStore, generator: FakeGenerator
) -> Generator[TestClient, None, None]:
    """TestClient bound to the temporary database and the fakes."""
    app.state.session_factory = session_factory
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_generator] = lambda: generator
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        del app.state.session_factory
