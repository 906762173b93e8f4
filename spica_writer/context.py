"""Context assembly for LLM prompts.

build_context() renders the story state into a bounded text block.
It is a pure function: the same inputs always give the same bytes, and
the returned string is the snapshot sent across the LLM boundary.

Section order (each omitted when it has nothing to say):

    ### SCENE: {name}                       always present
    ### CHARACTERS                           one block per character
    ### SCENE PLAN                           plan raw text, verbatim
    ### RECENT EVENTS                        summaries for older tabs,
                                             checked events for the last 3
    ### CHARACTER BEHAVIORAL CONSTRAINTS    grouped by character
    ### KEY FACTS                            top 10 facts by priority

Priority ordering uses Python's stable sort, so ties keep input order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from spica_writer.models import (
    CONSTRAINT_PREFIX,
    Character,
    CharacterConstraint,
    DraftTab,
    Scene,
    StarBase,
    TimelineEvent,
)
from spica_writer.store import ProjectStore

RECENT_DETAIL_WINDOW = 3
KEY_FACTS_LIMIT = 10
UNKNOWN_CHARACTER = "Unknown Character"


def describe_constraint_type(constraint_type: str) -> str:
    """Human label for a constraint type: character_physical -> physical."""
    label = constraint_type
    if label.startswith(CONSTRAINT_PREFIX):
        label = label[len(CONSTRAINT_PREFIX):]
    return label.replace("_", " ")


def format_event(event: TimelineEvent) -> str:
    if event.dialogue:
        return f'{event.text} -> "{event.dialogue}"'
    return event.text


def _by_priority(stars: Sequence[StarBase]) -> list[StarBase]:
    return sorted(stars, key=lambda s: s.priority, reverse=True)


def _scene_section(scene: Scene) -> list[str]:
    lines = [f"### SCENE: {scene.name}"]
    if scene.setting:
        lines.append(f"Setting: {scene.setting}")
    if scene.backstory:
        lines.append(f"Backstory: {scene.backstory}")
    return lines


def _characters_section(characters: Sequence[Character]) -> list[str]:
    lines = ["### CHARACTERS"]
    for character in characters:
        lines.append(f"**{character.name}**")
        for key, value in character.fields.items():
            lines.append(f"- {key}: {value}")
        lines.append("")
    return lines


def _recent_events_section(tabs: Sequence[DraftTab]) -> list[str]:
    split = max(len(tabs) - RECENT_DETAIL_WINDOW, 0)
    body: list[str] = []

    # Older tabs contribute one summary line each; the latest ones full detail.
    for number, tab in enumerate(tabs[:split], start=1):
        if tab.summary and tab.summary.strip():
            body.append(f"Section {number} (summary): {tab.summary.strip()}")

    for number, tab in enumerate(tabs[split:], start=split + 1):
        events = [e for e in tab.timeline if e.checked]
        if not events:
            continue
        body.append(f"**Section {number}**")
        body.extend(f"- {format_event(e)}" for e in events)
        body.append("")

    if not body:
        return []
    return ["### RECENT EVENTS", *body]


def _constraints_section(
    constraints: Sequence[CharacterConstraint], names: Mapping[str, str]
) -> list[str]:
    groups: dict[str, list[CharacterConstraint]] = {}
    for star in constraints:
        name = names.get(star.applies_to_character or "", UNKNOWN_CHARACTER)
        groups.setdefault(name, []).append(star)

    lines = ["### CHARACTER BEHAVIORAL CONSTRAINTS"]
    for name, group in groups.items():
        lines.append(f"**{name}**")
        for star in _by_priority(group):
            situation = f" ({star.situation_context})" if star.situation_context else ""
            label = describe_constraint_type(star.constraint_type)
            lines.append(f"- {label}{situation}: {star.body}")
        lines.append("")
    return lines


def _key_facts_section(facts: Sequence[StarBase]) -> list[str]:
    lines = ["### KEY FACTS"]
    for star in _by_priority(facts)[:KEY_FACTS_LIMIT]:
        lines.append(f"- {star.title}: {star.body}")
    return lines


def build_context(
    scene: Scene,
    characters: Sequence[Character],
    checked_stars: Sequence[StarBase],
    recent_tabs: Sequence[DraftTab],
    *,
    character_names: Mapping[str, str] | None = None,
) -> str:
    """Render the prompt context for a scene.

    `recent_tabs` must be in scene order. `character_names` resolves the
    owners of constraints; it defaults to the characters passed in.
    """
    names = dict(character_names) if character_names is not None else {
        c.id: c.name for c in characters
    }
    constraints = [
        s for s in checked_stars
        if isinstance(s, CharacterConstraint) and s.applies_to_character
    ]
    facts = [s for s in checked_stars if not isinstance(s, CharacterConstraint)]

    sections = [_scene_section(scene)]
    if characters:
        sections.append(_characters_section(characters))
    if scene.plan.raw_text:
        sections.append(["### SCENE PLAN", scene.plan.raw_text])
    if recent_tabs:
        sections.append(_recent_events_section(recent_tabs))
    if constraints:
        sections.append(_constraints_section(constraints, names))
    if facts:
        sections.append(_key_facts_section(facts))

    blocks = []
    for lines in sections:
        if not lines:
            continue
        while lines and lines[-1] == "":
            lines.pop()
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def used_star_ids(checked_stars: Sequence[StarBase]) -> list[str]:
    """Ids of the stars build_context() actually renders."""
    constraints = [
        s.id for s in checked_stars
        if isinstance(s, CharacterConstraint) and s.applies_to_character
    ]
    facts = [s for s in checked_stars if not isinstance(s, CharacterConstraint)]
    return constraints + [s.id for s in _by_priority(facts)[:KEY_FACTS_LIMIT]]


def scene_context(store: ProjectStore, scene_id: str) -> str:
    """Gather a scene's context inputs from the store and render them."""
    scene = store.get_scene(scene_id)
    return build_context(
        scene,
        store.checked_characters(),
        store.checked_stars(),
        store.scene_tabs(scene_id),
        character_names={c.id: c.name for c in store.characters.values()},
    )
