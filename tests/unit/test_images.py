"""Tests for facet.core.images — base-image generation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from google.genai import errors as genai_errors
from sqlalchemy import func, select

from facet.core.errors import NotFoundError, UpstreamError
from facet.core.images import generate_base_image, recent_messages, select_reference_images
from facet.core.tables import GeneratedImage, Material, Message, Project, ReferenceImage


def _add_reference(session, store, project, data=b"sketch", label=None, colors=None, minutes_ago=0):
    reference = ReferenceImage(
        project_id=project.id,
        storage_key=store.put(data, f"ref-{len(store.objects)}", project.id),
        label=label,
        color_descriptions=colors,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )
    session.add(reference)
    session.commit()
    return reference


def _add_message(session, project, role, content, content_json=None, minutes_ago=0):
    message = Message(
        project_id=project.id,
        role=role,
        content=content,
        content_json=content_json,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )
    session.add(message)
    session.commit()
    return message


class TestGenerateBaseImage:
    def test_stores_base_image_and_charges_project(self, session, store, generator, project):
        image, url = generate_base_image(session, store, generator, project.id, "A rose gold ring")

        assert image.view_type is None
        assert image.view_set_id is None
        assert image.storage_key in store.objects
        assert url == store.presigned_url(image.storage_key)
        assert image.prompt.startswith("A rose gold ring. Context from conversation: .")

        session.refresh(project)
        assert project.total_images_generated == 1
        assert project.total_input_tokens == 100
        assert project.total_output_tokens == 0

    def test_unknown_project(self, session, store, generator):
        with pytest.raises(NotFoundError):
            generate_base_image(session, store, generator, "missing", "A ring")

    @pytest.mark.parametrize("kind", ["no_candidates", "no_data"])
    def test_empty_response(self, session, store, generator, results, project, kind):
        generator.image_results = [results[kind]()]
        with pytest.raises(UpstreamError):
            generate_base_image(session, store, generator, project.id, "A ring")

        assert session.scalar(select(func.count()).select_from(GeneratedImage)) == 0
        session.refresh(project)
        assert project.total_images_generated == 0

    def test_api_error_becomes_upstream_error(self, session, store, generator, project):
        generator.image_results = [genai_errors.APIError(503, {"error": {"message": "overloaded"}})]
        with pytest.raises(UpstreamError, match="Image generation failed"):
            generate_base_image(session, store, generator, project.id, "A ring")

    def test_all_references_used_by_default(self, session, store, generator, project):
        _add_reference(session, store, project, data=b"old", minutes_ago=10)
        _add_reference(session, store, project, data=b"new", colors={"red": "rubies"})

        image, _ = generate_base_image(session, store, generator, project.id, "A ring")

        prompt, images = generator.image_calls[0]
        assert [inline.data for inline in images] == [b"new", b"old"]
        assert prompt.startswith("Based on this 2 reference sketches/drawings, A ring.")
        assert prompt.endswith("In the reference drawing: red areas represent rubies.")
        assert image.prompt == prompt

    def test_selected_references_only(self, session, store, generator, project):
        _add_reference(session, store, project, data=b"first")
        chosen = _add_reference(session, store, project, data=b"second")

        generate_base_image(session, store, generator, project.id, "A ring", reference_image_ids=[chosen.id])

        prompt, images = generator.image_calls[0]
        assert [inline.data for inline in images] == [b"second"]
        assert prompt.startswith("Based on this reference sketch/drawing, ")

    def test_unreadable_reference_is_skipped(self, session, store, generator, project):
        reference = _add_reference(session, store, project, data=b"gone")
        del store.objects[reference.storage_key]

        generate_base_image(session, store, generator, project.id, "A ring")

        _, images = generator.image_calls[0]
        assert images == []

    def test_design_specs_from_assistant_messages(self, session, store, generator, project):
        spec = {"metadata": {"designSpec": {"type": "ring", "materials": ["gold"]}}}
        _add_message(session, project, "user", "I want a ring", minutes_ago=2)
        _add_message(session, project, "assistant", "Gold it is", content_json=spec, minutes_ago=1)

        generate_base_image(session, store, generator, project.id, "A ring")

        prompt, _ = generator.image_calls[0]
        assert "Design specifications: a ring, made of gold." in prompt
        assert "Context from conversation" not in prompt

    def test_conversation_context_is_limited(self, session, store, generator, project):
        for i in range(5):
            _add_message(session, project, "user", f"message {i}", minutes_ago=10 - i)

        generate_base_image(session, store, generator, project.id, "A ring", context_message_limit=2)

        prompt, _ = generator.image_calls[0]
        assert "Context from conversation: message 3 message 4." in prompt
        assert "message 2" not in prompt

    def test_mentioned_materials_are_added(self, session, store, generator, project):
        session.add_all(
            [
                Material(name="roseGold", prompt="<p>18k rose gold</p>", category="Metal", is_global=True),
                Material(name="halo", prompt="micro pave halo", category="Setting", project_id=project.id),
                Material(name="unused", prompt="never", category="Stone", is_global=True),
            ]
        )
        session.commit()
        _add_message(session, project, "user", "Can we try @halo?", minutes_ago=1)

        generate_base_image(session, store, generator, project.id, "A ring in @RoseGold")

        prompt, _ = generator.image_calls[0]
        assert "Material specifications: Metal: 18k rose gold. Setting: micro pave halo." in prompt
        assert "never" not in prompt

    def test_materials_of_other_projects_ignored(self, session, store, generator, project):
        other = Project(name="Other")
        session.add(other)
        session.commit()
        session.add(Material(name="halo", prompt="foreign halo", category="Setting", project_id=other.id))
        session.commit()

        generate_base_image(session, store, generator, project.id, "A ring with @halo")

        prompt, _ = generator.image_calls[0]
        assert "Material specifications" not in prompt

class TestHelpers:
    def test_recent_messages_oldest_first(self, session, project):
        for i in range(4):
            _add_message(session, project, "user", f"m{i}", minutes_ago=10 - i)
        assert [m.content for m in recent_messages(session, project.id, 3)] == ["m1", "m2", "m3"]
        assert recent_messages(session, project.id, 0) == []

    def test_select_reference_images_ignores_foreign_ids(self, session, store, project):
        reference = _add_reference(session, store, project)
        session.refresh(project)
        assert select_reference_images(project, ["other-project-ref"]) == []
        assert select_reference_images(project, [reference.id]) == [reference]
