"""Character and star operations on ProjectStore."""

import pytest
from pydantic import ValidationError

from spica_writer.errors import NotFoundError
from spica_writer.locations import validate_consistency
from spica_writer.models import CharacterConstraint, Fact


# ── Characters ───────────────────────────────────────────


def test_create_character_keeps_field_order(store):
    ann = store.create_character("Ann", {"Role": "Captain", "Age": "40"})
    assert list(store.get_character(ann.id).fields) == ["Role", "Age"]
    assert ann.is_checked is False


def test_update_and_toggle_character(store):
    ann = store.create_character("Ann")
    store.update_character(ann.id, {"fields": {"Mood": "calm"}})
    assert store.get_character(ann.id).fields == {"Mood": "calm"}
    assert store.toggle_character_checked(ann.id) is True
    assert store.checked_characters() == [store.get_character(ann.id)]


def test_delete_character_prunes_stars(store):
    ann = store.create_character("Ann")
    bo = store.create_character("Bo")
    fact = store.create_star("Old friends", tags={"characters": [ann.id, bo.id]})
    constraint = CharacterConstraint(
        id="c1", title="Quiet", constraint_type="behavior",
        applies_to_character=ann.id,
    )
    store.add_star(constraint)

    store.delete_character(ann.id)

    assert store.get_star(fact.id).tags.characters == [bo.id]
    assert store.get_star("c1").applies_to_character is None


def test_delete_missing_character_raises(store):
    with pytest.raises(NotFoundError):
        store.delete_character("nope")


# ── Stars ────────────────────────────────────────────────


def test_create_star_is_a_fact(store):
    star = store.create_star("The bridge is out", "Nobody can cross", priority=0.9)
    assert isinstance(star, Fact)
    assert star.is_checked is False
    assert store.get_star(star.id).priority == 0.9


def test_create_star_rejects_unknown_references(store):
    with pytest.raises(NotFoundError):
        store.create_star("x", origin_draft_tab_id="nope")
    with pytest.raises(NotFoundError):
        store.create_star("x", tags={"characters": ["nope"]})
    assert store.stars == {}


def test_update_star_validates(store):
    star = store.create_star("x")
    with pytest.raises(ValidationError):
        store.update_star(star.id, {"priority": 2})
    assert store.get_star(star.id).priority == 0.5


def test_update_star_can_turn_fact_into_constraint(store):
    ann = store.create_character("Ann")
    star = store.create_star("Stutters")
    updated = store.update_star(
        star.id, {"constraint_type": "dialogue", "applies_to_character": ann.id}
    )
    assert isinstance(updated, CharacterConstraint)
    assert updated.constraint_type == "character_dialogue"
    assert store.get_star(star.id) is updated


def test_update_star_rejects_unknown_fields(store):
    star = store.create_star("x")
    with pytest.raises(ValueError, match="bogus"):
        store.update_star(star.id, {"bogus": 1})
    assert "bogus" not in store.get_star(star.id).model_dump()


def test_update_star_rejects_unknown_references(store):
    star = store.create_star("x")
    with pytest.raises(NotFoundError):
        store.update_star(star.id, {"tags": {"characters": ["ghost"]}})
    with pytest.raises(NotFoundError):
        store.update_star(star.id, {"origin_draft_tab_id": "nope"})
    with pytest.raises(NotFoundError):
        store.update_star(star.id, {"constraint_type": "behavior", "applies_to_character": "ghost"})
    unchanged = store.get_star(star.id)
    assert isinstance(unchanged, Fact)
    assert unchanged.tags.characters == []
    assert unchanged.origin_draft_tab_id is None
    assert validate_consistency(store).ok


def test_toggle_star_checked(store):
    star = store.create_star("x")
    assert store.toggle_star_checked(star.id) is True
    assert store.checked_stars() == [star]


def test_link_star_to_event_is_idempotent(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "x")
    star = store.create_star("s")
    store.link_star_to_event(star.id, tab.id, event.id)
    store.link_star_to_event(star.id, tab.id, event.id)
    assert store.find_event(tab.id, event.id).associated_stars == [star.id]
    assert store.tabs_with_star(star.id) == [store.get_draft_tab(tab.id)]

    store.unlink_star_from_event(star.id, tab.id, event.id)
    assert store.find_event(tab.id, event.id).associated_stars == []


def test_delete_star_cascades(store, scene_id):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "x")
    star = store.create_star("s")
    store.link_star_to_event(star.id, tab.id, event.id)
    description = store.add_description(tab.id, "d", origin_star_id=star.id)
    step = store.create_plan_step(scene_id, "p")
    store.update_plan_step(step.id, {"linked_stars": [star.id]})

    store.delete_star(star.id)

    assert store.find_event(tab.id, event.id).associated_stars == []
    assert store.get_draft_tab(tab.id).descriptions[0].id == description.id
    assert store.get_draft_tab(tab.id).descriptions[0].origin_star_id is None
    assert store.get_plan_step(step.id).linked_stars == []
    assert store.tabs_with_star(star.id) == []


def test_mark_stars_used_skips_unknown_ids(store):
    star = store.create_star("s")
    store.mark_stars_used([star.id, "gone"], at=1234)
    assert store.get_star(star.id).last_used_in_prompt == 1234
