"""Tests for prompt registry lookup and template assembly."""

import pytest
from pydantic import ValidationError

from spica_writer.errors import UnknownPromptTypeError
from spica_writer.models import TimelineEvent
from spica_writer.prompts import (
    EVENT_DESCRIPTION,
    PROMPT_TYPES,
    SCENE_TIMELINE,
    assemble_prompt,
    format_target_event,
    get_prompt_config,
)


# ── Registry ─────────────────────────────────────────────


def test_registered_prompt_types():
    assert set(PROMPT_TYPES) == {SCENE_TIMELINE, EVENT_DESCRIPTION}


def test_unknown_prompt_type_raises():
    with pytest.raises(UnknownPromptTypeError, match="Unknown prompt type: POEM"):
        get_prompt_config("POEM")


@pytest.mark.parametrize("key", sorted(PROMPT_TYPES))
def test_each_placeholder_appears_once(key):
    template = PROMPT_TYPES[key].user_template
    for placeholder in ("{context}", "{userInput}", "{responseInstructions}"):
        assert template.count(placeholder) == 1
    assert template.count("{targetEvent}") <= 1


# ── assemble_prompt ──────────────────────────────────────


def test_scene_timeline_prompt():
    prompt = assemble_prompt(SCENE_TIMELINE, "Ann finds the map", "### SCENE: Docks\n")
    config = PROMPT_TYPES[SCENE_TIMELINE]
    assert prompt.system_prompt == config.system_prompt
    assert prompt.user_prompt == (
        "### SCENE: Docks\n\n### USER REQUEST\nAnn finds the map\n\n"
        + config.response_instructions
    )


def test_substitution_is_single_pass():
    prompt = assemble_prompt(SCENE_TIMELINE, "literal {context} here", "CTX {userInput}")
    assert prompt.user_prompt.startswith("CTX {userInput}\n")
    assert "literal {context} here" in prompt.user_prompt


def test_event_description_includes_target_event():
    event = TimelineEvent(id="e1", text="Ann draws her sword", dialogue="Stand back!")
    prompt = assemble_prompt(EVENT_DESCRIPTION, "Focus on her hands", "CTX\n", target_event=event)
    assert '### TARGET EVENT\nAnn draws her sword\nDialogue: "Stand back!"\n' in prompt.user_prompt
    assert "### USER REQUEST\nFocus on her hands" in prompt.user_prompt
    assert "{targetEvent}" not in prompt.user_prompt


def test_event_description_requires_target_event():
    with pytest.raises(ValueError):
        assemble_prompt(EVENT_DESCRIPTION, "x", "CTX")


def test_target_event_ignored_by_timeline_template():
    with_event = assemble_prompt(SCENE_TIMELINE, "x", "CTX", target_event="ignored")
    without = assemble_prompt(SCENE_TIMELINE, "x", "CTX")
    assert with_event == without


def test_assembled_prompt_is_frozen():
    prompt = assemble_prompt(SCENE_TIMELINE, "x", "CTX")
    with pytest.raises(ValidationError):
        prompt.user_prompt = "changed"


def test_format_target_event():
    assert format_target_event("plain") == "plain"
    assert format_target_event(TimelineEvent(id="e", text="Bo sits")) == "Bo sits"
