"""Character constraints and event tagging.

A character constraint is a Star that records a behavioural rule for one
character, together with a snapshot of the timeline event that prompted
it. The snapshot is a copy: editing the event later does not change why
the constraint was recorded.

Constraints start checked with a high priority, because they exist to be
enforced in every following prompt.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from spica_writer.models import (
    CharacterConstraint,
    Fact,
    SourceEvent,
    StarTags,
    normalize_constraint_type,
)
from spica_writer.store import ProjectStore, new_id

logger = logging.getLogger(__name__)

CONSTRAINT_PRIORITY = 0.8
NOTE_PRIORITY = 0.5
NOTE_TITLE_CHARS = 30


def detect_characters_in_event(store: ProjectStore, text: str) -> list[str]:
    """Ids of characters whose name occurs in `text`, in table order.

    Plain case-insensitive substring matching: "Ann" also matches "Anne".
    """
    haystack = text.lower()
    return [
        character.id
        for character in store.characters.values()
        if character.name.strip() and character.name.strip().lower() in haystack
    ]


def create_character_constraint(
    store: ProjectStore,
    event_id: str,
    tab_id: str,
    character_id: str,
    *,
    constraint_type: str,
    title: str,
    description: str,
    situation_context: str | None = None,
    constraint_tags: Iterable[str] | None = None,
) -> str:
    """Record a constraint derived from a timeline event. Returns the star id.

    Raises NotFoundError when the tab, the event or the character is
    missing; nothing is created in that case.
    """
    event = store.find_event(tab_id, event_id)
    store.get_character(character_id)

    star = CharacterConstraint(
        id=new_id(),
        title=title,
        body=description,
        tags=StarTags(
            characters=[character_id],
            scope="CurrentScene",
            status="Active",
            constraint_context=list(constraint_tags or []),
        ),
        priority=CONSTRAINT_PRIORITY,
        is_checked=True,
        origin_draft_tab_id=tab_id,
        constraint_type=normalize_constraint_type(constraint_type),
        applies_to_character=character_id,
        situation_context=situation_context or None,
        source_event=SourceEvent(tab_id=tab_id, event_id=event_id, event_text=event.text),
    )
    store.add_star(star)
    logger.debug("constraint %s (%s) recorded for character %s",
                 star.id, star.constraint_type, character_id)
    return star.id


def create_note_from_event(store: ProjectStore, tab_id: str, event_id: str) -> str:
    """Turn a timeline event into a checked fact tagged with the characters it mentions."""
    event = store.find_event(tab_id, event_id)
    star = Fact(
        id=new_id(),
        title=f"Note: {event.text[:NOTE_TITLE_CHARS]}...",
        body=f'Related to event: "{event.text}"',
        tags=StarTags(characters=detect_characters_in_event(store, event.text)),
        priority=NOTE_PRIORITY,
        is_checked=True,
        origin_draft_tab_id=tab_id,
    )
    store.add_star(star)
    return star.id
