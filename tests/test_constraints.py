"""Tests for character constraints and event notes."""

import pytest

from spica_writer.constraints import (
    CONSTRAINT_PRIORITY,
    create_character_constraint,
    create_note_from_event,
    detect_characters_in_event,
)
from spica_writer.context import scene_context
from spica_writer.errors import NotFoundError
from spica_writer.models import CharacterConstraint, Fact


@pytest.fixture
def setup(store):
    ann = store.create_character("Ann")
    bo = store.create_character("Bo")
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "Ann slams the door on Bo", "Get out!")
    return store, ann, bo, tab, event


# ── detect_characters_in_event ───────────────────────────


def test_detect_is_case_insensitive_in_table_order(store):
    bo = store.create_character("Bo")
    ann = store.create_character("Ann")
    store.create_character("Cy")
    assert detect_characters_in_event(store, "ANN shouts at bo") == [bo.id, ann.id]


def test_detect_matches_substrings(store):
    ann = store.create_character("Ann")
    assert detect_characters_in_event(store, "Anne arrives") == [ann.id]


def test_detect_skips_blank_names(store):
    store.create_character("  ")
    assert detect_characters_in_event(store, "anything at all") == []


# ── create_character_constraint ──────────────────────────


def test_create_constraint(setup):
    store, ann, bo, tab, event = setup
    star_id = create_character_constraint(
        store, event.id, tab.id, ann.id,
        constraint_type="behavior", title="Temper", description="Ann slams doors when angry",
        situation_context="when angry", constraint_tags=["anger"],
    )

    star = store.get_star(star_id)
    assert isinstance(star, CharacterConstraint)
    assert star.constraint_type == "character_behavior"
    assert star.applies_to_character == ann.id
    assert star.situation_context == "when angry"
    assert star.priority == CONSTRAINT_PRIORITY
    assert star.is_checked is True
    assert star.origin_draft_tab_id == tab.id
    assert star.tags.characters == [ann.id]
    assert star.tags.constraint_context == ["anger"]
    assert star.source_event.event_text == "Ann slams the door on Bo"


def test_source_event_is_a_snapshot(setup):
    store, ann, bo, tab, event = setup
    star_id = create_character_constraint(
        store, event.id, tab.id, ann.id,
        constraint_type="character_emotion", title="t", description="d",
    )
    store.update_timeline_event(tab.id, event.id, {"text": "Ann gently closes the door"})
    assert store.get_star(star_id).source_event.event_text == "Ann slams the door on Bo"


@pytest.mark.parametrize("missing", ["tab", "event", "character"])
def test_missing_references_raise_and_create_nothing(setup, missing):
    store, ann, bo, tab, event = setup
    args = {"event_id": event.id, "tab_id": tab.id, "character_id": ann.id}
    args[f"{missing}_id"] = "nope"
    with pytest.raises(NotFoundError):
        create_character_constraint(
            store, args["event_id"], args["tab_id"], args["character_id"],
            constraint_type="behavior", title="t", description="d",
        )
    assert store.stars == {}


def test_constraint_reaches_the_context(setup, scene_id):
    store, ann, bo, tab, event = setup
    create_character_constraint(
        store, event.id, tab.id, ann.id,
        constraint_type="social", title="t", description="Avoids crowds",
    )
    assert "**Ann**\n- social: Avoids crowds" in scene_context(store, scene_id)


def test_deleting_character_keeps_constraint(setup):
    store, ann, bo, tab, event = setup
    star_id = create_character_constraint(
        store, event.id, tab.id, ann.id,
        constraint_type="behavior", title="t", description="d",
    )
    store.delete_character(ann.id)
    star = store.get_star(star_id)
    assert star.applies_to_character is None
    assert star.tags.characters == []


# ── create_note_from_event ───────────────────────────────


def test_note_from_event(setup):
    store, ann, bo, tab, event = setup
    star = store.get_star(create_note_from_event(store, tab.id, event.id))
    assert isinstance(star, Fact)
    assert star.title == "Note: Ann slams the door on Bo..."
    assert star.body == 'Related to event: "Ann slams the door on Bo"'
    assert star.tags.characters == [ann.id, bo.id]
    assert star.priority == 0.5
    assert star.is_checked is True


def test_note_title_is_truncated(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "x" * 50)
    star = store.get_star(create_note_from_event(store, tab.id, event.id))
    assert star.title == "Note: " + "x" * 30 + "..."
