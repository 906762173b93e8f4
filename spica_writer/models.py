"""Core domain models.

Every store operation, the context builder and the persistence layer work
on these types. Pydantic validates and serialises them at each data
boundary (project files, LLM replies).

Two tagged unions replace the loosely-typed records of the persisted
shape:

    TabLocation  SceneLocation | WorkbenchLocation | IdeaBankLocation,
                 stored on the DraftTab itself. The persisted `scene_id`
                 is derived from it.
    Star         Fact | CharacterConstraint. A record is a constraint iff
                 its `constraint_type` is set, so the JSON shape is the
                 same for both variants.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    computed_field,
    field_validator,
)

PROJECT_VERSION = "1.0"


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


# ---------------------------------------------------------------------------
# Draft tab location
# ---------------------------------------------------------------------------

class SceneLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["scene"] = "scene"
    scene_id: str


class WorkbenchLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["workbench"] = "workbench"


class IdeaBankLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["idea_bank"] = "idea_bank"


TabLocation = Annotated[
    Union[SceneLocation, WorkbenchLocation, IdeaBankLocation],
    Field(discriminator="kind"),
]

ContainerKind = Literal["scene", "workbench", "idea_bank"]


# ---------------------------------------------------------------------------
# Draft tab content
# ---------------------------------------------------------------------------

class TimelineEvent(BaseModel):
    """One line of a draft tab's timeline."""

    id: str
    text: str
    dialogue: str | None = None
    associated_stars: list[str] = Field(default_factory=list)
    checked: bool = True  # include in the next LLM context


class Description(BaseModel):
    """Free-floating annotation on a draft tab or one of its events."""

    id: str
    text: str
    is_important: bool = False
    scope: Literal["tab", "event"] = "tab"
    target_event_id: str | None = None  # required when scope == "event"
    origin_star_id: str | None = None


class DraftTab(BaseModel):
    """A unit of narrative content living in exactly one container."""

    id: str
    location: TabLocation = Field(default_factory=WorkbenchLocation, exclude=True)
    index: int = 0
    timeline: list[TimelineEvent] = Field(default_factory=list)
    descriptions: list[Description] = Field(default_factory=list)
    summary: str | None = None
    atmosphere: str | None = None
    fulfilled_plan_steps: list[str] = Field(default_factory=list)
    suggested_plan_steps: list[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def scene_id(self) -> str | None:
        if isinstance(self.location, SceneLocation):
            return self.location.scene_id
        return None

    def find_event(self, event_id: str) -> TimelineEvent | None:
        for event in self.timeline:
            if event.id == event_id:
                return event
        return None


# ---------------------------------------------------------------------------
# Scenes and plans
# ---------------------------------------------------------------------------

class PlanStep(BaseModel):
    id: str
    text: str
    fulfilled_by: list[str] = Field(default_factory=list)  # DraftTab ids
    linked_stars: list[str] = Field(default_factory=list)


class ScenePlan(BaseModel):
    raw_text: str = ""
    parsed_steps: list[PlanStep] = Field(default_factory=list)


class Scene(BaseModel):
    id: str
    name: str
    setting: str = ""
    backstory: str = ""
    plan: ScenePlan = Field(default_factory=ScenePlan)
    draft_tab_ids: list[str] = Field(default_factory=list)  # ordered
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class Character(BaseModel):
    id: str
    name: str
    fields: dict[str, str] = Field(default_factory=dict)  # insertion order kept
    is_checked: bool = False


# ---------------------------------------------------------------------------
# Stars: facts and character constraints
# ---------------------------------------------------------------------------

StarScope = Literal["CurrentScene", "FuturePlot", "Backstory", "Worldbuilding"]
StarStatus = Literal["Active", "Resolved", "Deferred"]
ConstraintType = Literal[
    "character_behavior",
    "character_dialogue",
    "character_emotion",
    "character_social",
    "character_physical",
]

CONSTRAINT_PREFIX = "character_"


def normalize_constraint_type(value: str) -> str:
    """Accept "behavior" as well as "character_behavior"."""
    if value and not value.startswith(CONSTRAINT_PREFIX):
        return CONSTRAINT_PREFIX + value
    return value


class StarTags(BaseModel):
    characters: list[str] = Field(default_factory=list)  # Character ids
    scope: StarScope = "CurrentScene"
    status: StarStatus = "Active"
    custom: list[str] = Field(default_factory=list)
    constraint_context: list[str] | None = None  # e.g. ["anger", "public"]


class SourceEvent(BaseModel):
    """Snapshot of the timeline event a constraint was recorded from."""

    tab_id: str
    event_id: str
    event_text: str


class StarBase(BaseModel):
    id: str
    title: str
    body: str = ""
    tags: StarTags = Field(default_factory=StarTags)
    priority: float = Field(default=0.5, ge=0.0, le=1.0)
    is_checked: bool = False
    origin_draft_tab_id: str | None = None
    created_at: int = Field(default_factory=now_ms)
    last_used_in_prompt: int | None = None


class Fact(StarBase):
    """A plain plot fact."""


class CharacterConstraint(StarBase):
    """A behavioural rule scoped to one character."""

    constraint_type: ConstraintType
    applies_to_character: str | None = None
    situation_context: str | None = None  # "when angry", "in public"
    source_event: SourceEvent | None = None

    @field_validator("constraint_type", mode="before")
    @classmethod
    def _prefix_short_form(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_constraint_type(value)
        return value


def _star_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "constraint" if value.get("constraint_type") else "fact"
    return "constraint" if getattr(value, "constraint_type", None) else "fact"


Star = Annotated[
    Union[
        Annotated[Fact, Tag("fact")],
        Annotated[CharacterConstraint, Tag("constraint")],
    ],
    Discriminator(_star_kind),
]


def is_constraint(star: StarBase) -> bool:
    return isinstance(star, CharacterConstraint)


# ---------------------------------------------------------------------------
# Persisted project shape
# ---------------------------------------------------------------------------

class ProjectMetadata(BaseModel):
    title: str = "Untitled Project"
    author: str | None = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class Workbench(BaseModel):
    unassigned_draft_tab_ids: list[str] = Field(default_factory=list)


class IdeaBank(BaseModel):
    stored_draft_tab_ids: list[str] = Field(default_factory=list)


class ProjectData(BaseModel):
    """Everything that is saved to and loaded from a project file."""

    version: str = PROJECT_VERSION
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)
    scenes: dict[str, Scene] = Field(default_factory=dict)
    draft_tabs: dict[str, DraftTab] = Field(default_factory=dict)
    workbench: Workbench = Field(default_factory=Workbench)
    stars: dict[str, Star] = Field(default_factory=dict)
    characters: dict[str, Character] = Field(default_factory=dict)
    plan_steps: dict[str, PlanStep] = Field(default_factory=dict)
    idea_bank: IdeaBank = Field(default_factory=IdeaBank)
    active_scene_id: str | None = None
