"""Authoring core for LLM-assisted story drafting.

A project holds scenes, draft tabs (timeline fragments), characters and
stars (facts and character constraints). Every draft tab lives in exactly
one place:

  Scene      ordered part of the authored story
  Workbench  unassigned drafts, where generated text lands
  IdeaBank   parked drafts kept for later

Modules:
  models       pydantic data model and the saved JSON shape
  store        ProjectStore: entity tables with cascading deletes
  locations    LocationTracker (moves, reorders) and the consistency validator
  context      deterministic prompt context for a scene
  prompts      prompt registry and template assembly
  llm          HttpLLM client for openai / koboldcpp backends
  responses    reply parsing and all-or-nothing application
  constraints  character constraints and event notes
  session      PromptSession: one serialised LLM round-trip at a time
  persistence  load-time repair and JSON file storage
  config       defaults, config.json and environment overrides
"""

# Re-export the main entry points so `import spica_writer` is enough for callers.

from .errors import (  # noqa: F401
    ConsistencyError,
    ConsistencyWarning,
    InvalidResponseError,
    NotFoundError,
    ProjectLoadError,
    RequestInFlightError,
    SpicaError,
    UnknownPromptTypeError,
)
from .llm import LLM, HttpLLM, LLMError  # noqa: F401
from .locations import LocationTracker, validate_consistency  # noqa: F401
from .persistence import ProjectStorage, repair_project_data, serialize_project  # noqa: F401
from .session import PromptSession  # noqa: F401
from .store import ProjectStore  # noqa: F401
