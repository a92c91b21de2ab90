"""Tests for the built-in entity definitions."""

import pytest

from kbcrm.entities import DEFAULT_ENTITIES, default_entities
from kbcrm.models import SortSpec


@pytest.fixture(scope="module")
def entities():
    return default_entities()


def test_every_type_is_defined(entities):
    assert set(entities.types) == set(DEFAULT_ENTITIES)
    for entity_type, entity in entities.entities.items():
        assert entity.type == entity_type
        assert entity.folder


def test_reference_creates_resolve(entities):
    """Every createEntity.referenceCreate names a createRelated entry of its host."""
    for entity in entities.entities.values():
        for link in entity.backlink_panels():
            create = link.config.create_entity
            if create and create.reference_create:
                assert entity.find_create_related(create.reference_create) is not None, link.key


def test_create_related_panels_exist(entities):
    for entity in entities.entities.values():
        for entry in entity.create_related:
            assert entity.find_panel(entry.panel_key) is not None, (entity.type, entry.key)
            assert entities.get(entry.effective_target_type) is not None


def test_panels_have_a_source(entities):
    """Each panel either runs a query or declares match properties."""
    for entity in entities.entities.values():
        for link in entity.backlink_panels():
            assert link.config.has_query or link.config.properties, link.key


def test_panel_keys_unique(entities):
    for entity in entities.entities.values():
        keys = [link.key for link in entity.backlink_panels()]
        assert len(keys) == len(set(keys)), entity.type


def test_person_list_sort_shape(entities):
    sort = entities.get("person").list_config.sort
    assert sort == SortSpec(strategy="column", column="show", direction="asc")


def test_teammates_query(entities):
    panel = entities.get("person").find_panel("teammates")
    steps = panel.config.find.query[0].steps
    assert [step.kind for step in steps] == ["out", "in", "notHost", "unique"]
