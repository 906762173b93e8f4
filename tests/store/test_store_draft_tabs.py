"""Draft tab, timeline event and description operations on ProjectStore."""

import pytest

from spica_writer.errors import NotFoundError
from spica_writer.models import WorkbenchLocation


# ── Draft tabs ───────────────────────────────────────────


def test_new_tab_lands_at_end_of_workbench(store):
    first = store.create_draft_tab()
    second = store.create_draft_tab()
    assert store.workbench == [first.id, second.id]
    assert second.index == 1
    assert second.location == WorkbenchLocation()
    assert second.summary == ""


def test_update_draft_tab_merges(store):
    tab = store.create_draft_tab()
    store.update_draft_tab(tab.id, {"summary": "Ann leaves", "atmosphere": "Tense"})
    updated = store.get_draft_tab(tab.id)
    assert updated.summary == "Ann leaves"
    assert updated.atmosphere == "Tense"
    assert updated.location == WorkbenchLocation()


@pytest.mark.parametrize("field", ["location", "index", "scene_id", "id"])
def test_update_draft_tab_cannot_move_it(store, field):
    tab = store.create_draft_tab()
    with pytest.raises(ValueError):
        store.update_draft_tab(tab.id, {field: None})


def test_delete_draft_tab_cascades(store, tracker, scene_id):
    tab = store.create_draft_tab()
    tracker.move_to_scene(tab.id, scene_id)
    star = store.create_star("Origin", origin_draft_tab_id=tab.id)
    step = store.create_plan_step(scene_id, "Step")
    store.link_plan_step_to_tab(step.id, tab.id)

    store.delete_draft_tab(tab.id)

    assert tab.id not in store.draft_tabs
    assert store.get_scene(scene_id).draft_tab_ids == []
    assert store.get_star(star.id).origin_draft_tab_id is None
    assert store.get_plan_step(step.id).fulfilled_by == []
    assert store.get_scene(scene_id).plan.parsed_steps[0].fulfilled_by == []


def test_delete_missing_tab_raises(store):
    with pytest.raises(NotFoundError):
        store.delete_draft_tab("nope")


def test_workbench_tabs_most_recent_first(store):
    older = store.create_draft_tab()
    newer = store.create_draft_tab()
    older.created_at = 1
    newer.created_at = 2
    assert [t.id for t in store.workbench_tabs()] == [newer.id, older.id]


# ── Timeline events ──────────────────────────────────────


def test_add_timeline_event_defaults(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "Ann enters.", "Hello?")
    assert event.checked is True
    assert event.dialogue == "Hello?"
    assert event.associated_stars == []
    assert store.get_draft_tab(tab.id).timeline == [event]


def test_empty_dialogue_is_stored_as_none(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "Silence.", "")
    assert event.dialogue is None


def test_add_event_with_unknown_star_raises(store):
    tab = store.create_draft_tab()
    with pytest.raises(NotFoundError):
        store.add_timeline_event(tab.id, "x", associated_stars=["nope"])
    assert store.get_draft_tab(tab.id).timeline == []


def test_update_and_toggle_event(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "Ann enters.")
    store.update_timeline_event(tab.id, event.id, {"text": "Ann storms in."})
    assert store.find_event(tab.id, event.id).text == "Ann storms in."
    assert store.toggle_event_checked(tab.id, event.id) is False
    assert store.toggle_event_checked(tab.id, event.id) is True


def test_update_missing_event_raises(store):
    tab = store.create_draft_tab()
    with pytest.raises(NotFoundError) as exc:
        store.update_timeline_event(tab.id, "nope", {"text": "x"})
    assert exc.value.kind == "TimelineEvent"


def test_delete_event_drops_its_descriptions(store):
    tab = store.create_draft_tab()
    keep = store.add_timeline_event(tab.id, "Keep")
    drop = store.add_timeline_event(tab.id, "Drop")
    store.add_description(tab.id, "about keep", scope="event", target_event_id=keep.id)
    store.add_description(tab.id, "about drop", scope="event", target_event_id=drop.id)
    store.add_description(tab.id, "about the tab")

    store.delete_timeline_event(tab.id, drop.id)

    current = store.get_draft_tab(tab.id)
    assert [e.id for e in current.timeline] == [keep.id]
    assert [d.text for d in current.descriptions] == ["about keep", "about the tab"]


# ── Descriptions ─────────────────────────────────────────


def test_event_description_needs_existing_target(store):
    tab = store.create_draft_tab()
    with pytest.raises(ValueError):
        store.add_description(tab.id, "x", scope="event")
    with pytest.raises(NotFoundError):
        store.add_description(tab.id, "x", scope="event", target_event_id="nope")


def test_tab_description_ignores_target(store):
    tab = store.create_draft_tab()
    event = store.add_timeline_event(tab.id, "x")
    description = store.add_description(tab.id, "general", target_event_id=event.id)
    assert description.scope == "tab"
    assert description.target_event_id is None


def test_update_and_delete_description(store):
    tab = store.create_draft_tab()
    description = store.add_description(tab.id, "dim light")
    store.update_description(tab.id, description.id, {"is_important": True})
    assert store.get_draft_tab(tab.id).descriptions[0].is_important is True

    store.delete_description(tab.id, description.id)
    assert store.get_draft_tab(tab.id).descriptions == []
    with pytest.raises(NotFoundError):
        store.delete_description(tab.id, description.id)
