"""Prompt session: runs one LLM round-trip against a project store.

Timeline flow:
  1. Refuse if a request is already pending.
  2. Build the scene context and assemble the SCENE_TIMELINE prompt.
     The prompt is a frozen snapshot; store edits made while the request
     is pending do not change what was sent.
  3. Send it to the LLM (stage "scene_timeline").
  4. Apply the reply: one new Workbench draft tab per reply entry.
  5. Stamp last_used_in_prompt on every star rendered into the context.

Event description flow is the same with EVENT_DESCRIPTION, the chosen
event as target, and an event-scoped Description attached to its tab.

A failed request raises and leaves the store exactly as it was.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from spica_writer.context import scene_context, used_star_ids
from spica_writer.errors import NotFoundError, RequestInFlightError
from spica_writer.llm import LLM
from spica_writer.models import Description, DraftTab, now_ms
from spica_writer.prompts import EVENT_DESCRIPTION, SCENE_TIMELINE, AssembledPrompt, assemble_prompt
from spica_writer.responses import ReplyKind, apply_timeline_reply, fetch_reply, parse_description_reply
from spica_writer.store import ProjectStore, new_id

logger = logging.getLogger(__name__)

TIMELINE_STAGE = "scene_timeline"
DESCRIPTION_STAGE = "event_description"


class PromptRecord(BaseModel):
    id: str
    text: str
    timestamp: int = Field(default_factory=now_ms)


class PromptSession:
    """Serialises prompt submissions for one store.

    Only one request may be pending at a time; `in_flight` is cleared
    whether the request succeeds or fails.
    """

    def __init__(self, store: ProjectStore, llm: LLM) -> None:
        self.store = store
        self.llm = llm
        self.in_flight = False
        self.history: list[PromptRecord] = []

    def _resolve_scene(self, scene_id: str | None) -> str:
        if scene_id is not None:
            return self.store.get_scene(scene_id).id
        scene = self.store.active_scene()
        if scene is None:
            raise NotFoundError("Scene", "<active>")
        return scene.id

    async def _round_trip(
        self, stage: str, user_input: str, prompt: AssembledPrompt, kind: ReplyKind
    ) -> dict:
        if self.in_flight:
            raise RequestInFlightError("A prompt is already being processed")
        self.history.append(PromptRecord(id=new_id(), text=user_input))
        self.in_flight = True
        try:
            return await fetch_reply(self.llm, stage, prompt, kind)
        finally:
            self.in_flight = False

    async def generate_timeline(self, user_input: str, scene_id: str | None = None) -> list[DraftTab]:
        """Ask for new timeline segments and add them to the Workbench."""
        scene_id = self._resolve_scene(scene_id)
        used = used_star_ids(self.store.checked_stars())
        prompt = assemble_prompt(SCENE_TIMELINE, user_input, scene_context(self.store, scene_id))
        payload = await self._round_trip(TIMELINE_STAGE, user_input, prompt, "timeline")
        tabs = apply_timeline_reply(self.store, payload)
        self.store.mark_stars_used(used)
        logger.info("timeline prompt for scene %s produced %d tab(s)", scene_id, len(tabs))
        return tabs

    async def generate_event_description(
        self,
        tab_id: str,
        event_id: str,
        user_input: str,
        scene_id: str | None = None,
    ) -> Description:
        """Describe one timeline event and attach the text to its tab."""
        event = self.store.find_event(tab_id, event_id)
        scene_id = self._resolve_scene(scene_id)
        used = used_star_ids(self.store.checked_stars())
        prompt = assemble_prompt(
            EVENT_DESCRIPTION, user_input, scene_context(self.store, scene_id), target_event=event,
        )
        payload = await self._round_trip(DESCRIPTION_STAGE, user_input, prompt, "description")
        text = parse_description_reply(payload)
        # raises NotFoundError if the event was deleted while pending
        description = self.store.add_description(
            tab_id, text, scope="event", target_event_id=event_id,
        )
        self.store.mark_stars_used(used)
        return description
