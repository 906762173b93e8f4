"""Prompt registry and assembly.

Each prompt type pairs a system prompt, a user template and response
instructions. Templates use literal `{placeholder}` markers; each marker
appears exactly once per template. Substitution is a single pass over
the template, so text inserted for one marker is never rescanned.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from spica_writer.errors import UnknownPromptTypeError
from spica_writer.models import TimelineEvent

SCENE_TIMELINE = "SCENE_TIMELINE"
EVENT_DESCRIPTION = "EVENT_DESCRIPTION"


class PromptConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_prompt: str
    user_template: str
    response_instructions: str


class AssembledPrompt(BaseModel):
    """The immutable request sent across the LLM boundary."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str
    user_prompt: str


PROMPT_TYPES: dict[str, PromptConfig] = {
    SCENE_TIMELINE: PromptConfig(
        system_prompt=" ".join([
            "You are a genius planner; world-class memory and empathy.",
            "Be CONSISTENT with all given information; not compulsory to use all.",
            "Use names not pronouns.",
        ]),
        user_template="{context}\n### USER REQUEST\n{userInput}\n\n{responseInstructions}",
        response_instructions=" ".join([
            "You need not cover the whole SCENE PLAN in this message.",
            "Now, plan strictly for the USER REQUEST,",
            "consistent with RECENT EVENTS but not referencing them.",
            "One simple sentence per line, no dialogue or descriptions; just events.",
            "At the end, give a STANDALONE summary that explains who does what.",
            "then give a STANDALONE sentence that explains the Atmosphere: "
            "surroundings and scene significance.",
            "Enclose both in pipes: |TheSummary|TheAtmosphere|",
        ]),
    ),
    EVENT_DESCRIPTION: PromptConfig(
        system_prompt=" ".join([
            "You are a hyperphantasic visualiser.",
            "Be CONSISTENT with ALL given information, especially DIALOGUE.",
            "Extrapolate from ALL non-literal information, do not blindly repeat it.",
            "Do not add UNMENTIONED elements or characteristics.",
            "Use names not pronouns.",
        ]),
        user_template=(
            "{context}\n### TARGET EVENT\n{targetEvent}\n"
            "### USER REQUEST\n{userInput}\n\n{responseInstructions}"
        ),
        response_instructions=" ".join([
            "USER REQUEST is king. Aim to make user vividly imagine TARGET EVENT.",
            "Write in present tense only. Describe the snapshot BLUNTLY and OBJECTIVELY.",
            "Prioritise body language, physical, sensory details.",
            "Limit 200 words.",
        ]),
    ),
}

_PLACEHOLDER = re.compile(r"\{(context|userInput|responseInstructions|targetEvent)\}")


def get_prompt_config(prompt_type: str) -> PromptConfig:
    config = PROMPT_TYPES.get(prompt_type)
    if config is None:
        raise UnknownPromptTypeError(prompt_type)
    return config


def format_target_event(event: TimelineEvent | str) -> str:
    if isinstance(event, str):
        return event
    if event.dialogue:
        return f'{event.text}\nDialogue: "{event.dialogue}"'
    return event.text


def assemble_prompt(
    prompt_type: str,
    user_input: str,
    context: str,
    target_event: TimelineEvent | str | None = None,
) -> AssembledPrompt:
    """Fill the registered template for `prompt_type`.

    `target_event` is only used by templates containing `{targetEvent}`,
    and those templates require it.
    """
    config = get_prompt_config(prompt_type)
    values = {
        "context": context,
        "userInput": user_input,
        "responseInstructions": config.response_instructions,
    }
    if "{targetEvent}" in config.user_template:
        if target_event is None:
            raise ValueError(f"Prompt type {prompt_type} needs a target event")
        values["targetEvent"] = format_target_event(target_event)

    user_prompt = _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), config.user_template)
    return AssembledPrompt(system_prompt=config.system_prompt, user_prompt=user_prompt)
