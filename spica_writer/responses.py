"""LLM reply parsing and application.

Reply payloads crossing the LLM boundary take one of three shapes:

    {"tabs": [{"title", "timeline": [{"text", "dialogue"?}], "summary"?, "atmosphere"?}]}
    {"description": "..."}
    {"error": true, "message": "...", "code"?: "..."}

Any payload with `error: true` is a failure, whatever else it carries.

Applying a timeline reply is all-or-nothing: every tab entry is validated
before the first draft tab is created. New tabs always land in the
Workbench, never directly in a scene, so generated text is reviewed
before it joins the authored story.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from spica_writer.errors import InvalidResponseError
from spica_writer.llm import LLM, LLMError
from spica_writer.models import DraftTab
from spica_writer.prompts import AssembledPrompt
from spica_writer.store import ProjectStore

logger = logging.getLogger(__name__)

DEFAULT_TAB_TITLE = "Generated Scene Segment"

ReplyKind = Literal["timeline", "description"]


class ReplyEvent(BaseModel):
    text: str
    dialogue: str | None = None


class ReplyTab(BaseModel):
    title: str
    timeline: list[ReplyEvent]
    summary: str | None = None
    atmosphere: str | None = None


class TimelineReply(BaseModel):
    tabs: list[ReplyTab] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Error payloads
# ---------------------------------------------------------------------------

def is_error_payload(payload: Any) -> bool:
    return isinstance(payload, Mapping) and payload.get("error") is True


def raise_for_error_payload(payload: Any) -> None:
    if is_error_payload(payload):
        raise LLMError(
            f"LLM Error: {payload.get('message') or 'unknown error'}",
            code=payload.get("code"),
        )


# ---------------------------------------------------------------------------
# Structured replies
# ---------------------------------------------------------------------------

def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    where = ".".join(str(part) for part in err["loc"]) or "entry"
    return f"{where}: {err['msg']}"


def validate_timeline_reply(payload: Any) -> TimelineReply:
    """Validate a `{tabs: [...]}` payload without touching any store."""
    if not isinstance(payload, Mapping):
        raise InvalidResponseError(f"reply must be an object, got {type(payload).__name__}")
    if "tabs" not in payload:
        raise InvalidResponseError("reply has no 'tabs'")
    entries = payload["tabs"]
    if not isinstance(entries, list):
        raise InvalidResponseError(f"'tabs' must be a list, got {type(entries).__name__}")

    tabs: list[ReplyTab] = []
    for index, entry in enumerate(entries):
        try:
            tabs.append(ReplyTab.model_validate(entry))
        except ValidationError as e:
            raise InvalidResponseError(_first_error(e), index=index) from e
    return TimelineReply(tabs=tabs)


def apply_timeline_reply(store: ProjectStore, payload: Any) -> list[DraftTab]:
    """Create one Workbench draft tab per reply entry and return them.

    Events keep reply order, start checked and have no associated stars.
    """
    raise_for_error_payload(payload)
    reply = validate_timeline_reply(payload)
    if not reply.tabs:
        logger.warning("timeline reply contained no tabs")

    created: list[DraftTab] = []
    for entry in reply.tabs:
        tab = store.create_draft_tab()
        updates: dict[str, Any] = {}
        if entry.summary is not None:
            updates["summary"] = entry.summary
        if entry.atmosphere is not None:
            updates["atmosphere"] = entry.atmosphere
        if updates:
            store.update_draft_tab(tab.id, updates)
        for event in entry.timeline:
            store.add_timeline_event(tab.id, event.text, event.dialogue, checked=True)
        created.append(store.get_draft_tab(tab.id))

    logger.info("applied timeline reply: %d tab(s) added to workbench", len(created))
    return created


def parse_description_reply(payload: Any) -> str:
    raise_for_error_payload(payload)
    if not isinstance(payload, Mapping):
        raise InvalidResponseError(f"reply must be an object, got {type(payload).__name__}")
    description = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        raise InvalidResponseError("reply has no 'description' text")
    return description.strip()


# ---------------------------------------------------------------------------
# Free-form model output
# ---------------------------------------------------------------------------

_PIPES = re.compile(r"\|([^|]*)\|([^|]*)\|")
_BULLET = re.compile(r"^(?:[-*•]\s+|\d+[.)]\s+)")


def _parse_line(line: str) -> dict[str, str]:
    start = line.find('"')
    end = line.rfind('"')
    if start != -1 and start < end:
        dialogue = line[start + 1:end].strip()
        text = f"{line[:start].strip()} {line[end + 1:].strip()}".strip()
        event = {"text": text or line}
        if dialogue:
            event["dialogue"] = dialogue
        return event
    return {"text": line}


def parse_timeline_text(text: str, title: str = DEFAULT_TAB_TITLE) -> dict[str, Any]:
    """Turn plain model output into a one-tab `{tabs: [...]}` reply.

    One event per non-empty line, with a double-quoted span split off as
    dialogue. A `|summary|atmosphere|` segment (the last one, if several)
    fills the tab's summary and atmosphere. Leading list bullets are
    dropped. Blank output gives a reply with no tabs.
    """
    body = text.strip()
    if not body:
        return {"tabs": []}

    tab: dict[str, Any] = {"title": title, "timeline": []}
    matches = list(_PIPES.finditer(body))
    if matches:
        last = matches[-1]
        tab["summary"] = last.group(1).strip()
        tab["atmosphere"] = last.group(2).strip()
        body = (body[:last.start()] + body[last.end():]).strip()

    for raw in body.splitlines():
        line = _BULLET.sub("", raw.strip()).strip()
        if line:
            tab["timeline"].append(_parse_line(line))
    return {"tabs": [tab]}


# ---------------------------------------------------------------------------
# Round-trip
# ---------------------------------------------------------------------------

async def fetch_reply(
    llm: LLM, stage: str, prompt: AssembledPrompt, kind: ReplyKind
) -> dict[str, Any]:
    """Send one prompt and return the reply payload.

    Client failures come back as an error payload rather than raising.
    """
    try:
        text = await llm(stage, prompt.system_prompt, prompt.user_prompt)
    except LLMError as e:
        logger.warning("llm request failed stage=%s: %s", stage, e)
        return {
            "error": True,
            "message": f"Failed to process prompt: {e.message}",
            "code": e.code or "LLM_ERROR",
        }
    if kind == "description":
        return {"description": text.strip()}
    return parse_timeline_text(text)
