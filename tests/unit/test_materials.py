"""Tests for facet.core.materials — the materials library and @mentions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from facet.core.errors import NotFoundError, ValidationError
from facet.core.materials import (
    create_material,
    delete_material,
    extract_mentions,
    list_materials,
    resolve_material_prompts,
    strip_html,
    update_material,
)
from facet.core.tables import Material, Project


def _material(session, name, *, project=None, category="Metal", prompt="polished", minutes_ago=0):
    material = Material(
        name=name,
        prompt=prompt,
        category=category,
        is_global=project is None,
        project_id=project.id if project else None,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )
    session.add(material)
    session.commit()
    return material


@pytest.fixture
def other_project(session) -> Project:
    project = Project(name="Emerald Pendant")
    session.add(project)
    session.commit()
    return project


class TestMentions:
    def test_extract_mentions_lowercases(self):
        texts = ["A ring in @RoseGold", "with a @pave band and @rosegold prongs", "no mentions"]
        assert extract_mentions(texts) == {"rosegold", "pave"}

    def test_email_like_text(self):
        """Only word characters after ``@`` form the name."""
        assert extract_mentions(["@18k-gold, please"]) == {"18k"}

    def test_strip_html(self):
        assert strip_html("<p>Brushed <b>18k</b> gold</p>") == "Brushed 18k gold"


class TestListMaterials:
    def test_global_only_without_project(self, session, project):
        shared = _material(session, "platinum")
        _material(session, "house", project=project)
        assert list_materials(session) == [shared]

    def test_global_first_then_project_newest_first(self, session, project, other_project):
        old_global = _material(session, "silver", minutes_ago=10)
        new_global = _material(session, "gold", minutes_ago=5)
        old_local = _material(session, "house", project=project, minutes_ago=20)
        new_local = _material(session, "signature", project=project, minutes_ago=1)
        _material(session, "foreign", project=other_project)

        found = list_materials(session, project.id)
        assert [m.id for m in found] == [new_global.id, old_global.id, new_local.id, old_local.id]


class TestCreateMaterial:
    def test_project_material(self, session, project):
        material = create_material(session, "house", "Brushed finish", "Finish", project_id=project.id)
        assert material.is_global is False
        assert material.project_id == project.id

    def test_global_material(self, session):
        material = create_material(session, "gold", "18k yellow gold", "Metal", is_global=True)
        assert material.is_global is True
        assert material.project_id is None

    def test_project_material_needs_project(self, session):
        with pytest.raises(ValidationError, match="Project ID is required"):
            create_material(session, "house", "p", "c")

    def test_global_material_cannot_have_project(self, session, project):
        with pytest.raises(ValidationError, match="cannot be associated"):
            create_material(session, "gold", "p", "c", is_global=True, project_id=project.id)

    def test_unknown_project(self, session):
        with pytest.raises(NotFoundError):
            create_material(session, "house", "p", "c", project_id="missing")


class TestUpdateMaterial:
    def test_partial_update(self, session, project):
        material = _material(session, "house", project=project, prompt="old")
        updated = update_material(session, material.id, prompt="new")
        assert (updated.name, updated.prompt, updated.category) == ("house", "new", "Metal")

    def test_making_global_detaches_project(self, session, project):
        material = _material(session, "house", project=project)
        updated = update_material(session, material.id, is_global=True)
        assert updated.is_global is True
        assert updated.project_id is None

    def test_global_cannot_become_project_scoped(self, session):
        material = _material(session, "gold")
        with pytest.raises(ValidationError):
            update_material(session, material.id, is_global=False)

    def test_unknown_material(self, session):
        with pytest.raises(NotFoundError, match="Material with id nope not found"):
            update_material(session, "nope", name="x")


class TestDeleteMaterial:
    def test_delete(self, session, project):
        material = _material(session, "house", project=project)
        delete_material(session, material.id)
        assert session.get(Material, material.id) is None

    def test_unknown_material(self, session):
        with pytest.raises(NotFoundError):
            delete_material(session, "nope")

    def test_project_deletion_removes_scoped_materials(self, session, project):
        _material(session, "house", project=project)
        shared = _material(session, "gold")
        session.refresh(project)
        session.delete(project)
        session.commit()
        assert session.query(Material).all() == [shared]


class TestResolveMaterialPrompts:
    def test_case_insensitive_and_scoped(self, session, project, other_project):
        _material(session, "RoseGold", category="Metal", prompt="<p>18k <b>rose</b> gold</p>")
        _material(session, "pave", project=project, category="Setting", prompt="micro pave")
        _material(session, "secret", project=other_project, category="Stone", prompt="hidden")

        prompts = resolve_material_prompts(session, project.id, {"rosegold", "pave", "secret", "unknown"})
        assert prompts == ["Metal: 18k rose gold", "Setting: micro pave"]

    def test_no_names(self, session, project):
        _material(session, "gold")
        assert resolve_material_prompts(session, project.id, []) == []
