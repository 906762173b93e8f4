"""In-memory entity store.

A ProjectStore owns normalised tables of scenes, draft tabs, stars,
characters and plan steps, plus the workbench and idea-bank id lists.
It is an explicit object passed to every operation, so tests can create
isolated stores.

Rules enforced here:
  - Unknown ids raise NotFoundError before anything is mutated.
  - Updates are partial merges validated against the model.
  - Deletes cascade: no id is left dangling anywhere in the store.
  - New draft tabs always land in the Workbench. Every later change of
    location goes through LocationTracker.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter

from spica_writer.errors import NotFoundError
from spica_writer.models import (
    Character,
    CharacterConstraint,
    ContainerKind,
    Description,
    DraftTab,
    Fact,
    IdeaBankLocation,
    PlanStep,
    ProjectData,
    ProjectMetadata,
    Scene,
    SceneLocation,
    Star,
    StarBase,
    StarTags,
    TimelineEvent,
    WorkbenchLocation,
    now_ms,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_STAR_ADAPTER: TypeAdapter[Star] = TypeAdapter(Star)
_STAR_FIELDS = set(Fact.model_fields) | set(CharacterConstraint.model_fields)

DEFAULT_SCENE_NAME = "Main Scene"


def new_id() -> str:
    return str(uuid.uuid4())


def _merge(model: M, updates: Mapping[str, Any], protected: Iterable[str] = ("id",)) -> M:
    """Return a copy of `model` with `updates` applied and validated."""
    blocked = sorted(set(protected) & set(updates))
    if blocked:
        raise ValueError(f"{type(model).__name__} field(s) not updatable here: {', '.join(blocked)}")
    unknown = sorted(set(updates) - set(type(model).model_fields))
    if unknown:
        raise ValueError(f"Unknown {type(model).__name__} field(s): {', '.join(unknown)}")
    validated = type(model).model_validate({**model.model_dump(), **updates})
    return model.model_copy(update={k: getattr(validated, k) for k in updates})


class ProjectStore:
    def __init__(self, data: ProjectData | None = None) -> None:
        data = data.model_copy(deep=True) if data is not None else ProjectData()
        self.version = data.version
        self.metadata = data.metadata
        self.scenes: dict[str, Scene] = data.scenes
        self.draft_tabs: dict[str, DraftTab] = data.draft_tabs
        self.stars: dict[str, StarBase] = data.stars
        self.characters: dict[str, Character] = data.characters
        self.plan_steps: dict[str, PlanStep] = data.plan_steps
        self.workbench: list[str] = data.workbench.unassigned_draft_tab_ids
        self.idea_bank: list[str] = data.idea_bank.stored_draft_tab_ids
        self.active_scene_id: str | None = data.active_scene_id

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------

    @classmethod
    def new(cls, title: str, author: str | None = None) -> ProjectStore:
        """Empty project with one active scene."""
        store = cls(ProjectData(metadata=ProjectMetadata(title=title, author=author)))
        scene = store.create_scene(DEFAULT_SCENE_NAME)
        store.active_scene_id = scene.id
        return store

    @classmethod
    def from_project_data(cls, data: ProjectData) -> ProjectStore:
        return cls(data)

    def to_project_data(self) -> ProjectData:
        """Deep copy of the current state in the persisted shape."""
        data = ProjectData(
            version=self.version,
            metadata=self.metadata,
            scenes=self.scenes,
            draft_tabs=self.draft_tabs,
            stars=self.stars,
            characters=self.characters,
            plan_steps=self.plan_steps,
            active_scene_id=self.active_scene_id,
        )
        data.workbench.unassigned_draft_tab_ids = self.workbench
        data.idea_bank.stored_draft_tab_ids = self.idea_bank
        return data.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_scene(self, scene_id: str) -> Scene:
        scene = self.scenes.get(scene_id)
        if scene is None:
            raise NotFoundError("Scene", scene_id)
        return scene

    def get_draft_tab(self, tab_id: str) -> DraftTab:
        tab = self.draft_tabs.get(tab_id)
        if tab is None:
            raise NotFoundError("DraftTab", tab_id)
        return tab

    def get_star(self, star_id: str) -> StarBase:
        star = self.stars.get(star_id)
        if star is None:
            raise NotFoundError("Star", star_id)
        return star

    def get_character(self, character_id: str) -> Character:
        character = self.characters.get(character_id)
        if character is None:
            raise NotFoundError("Character", character_id)
        return character

    def get_plan_step(self, step_id: str) -> PlanStep:
        step = self.plan_steps.get(step_id)
        if step is None:
            raise NotFoundError("PlanStep", step_id)
        return step

    def find_event(self, tab_id: str, event_id: str) -> TimelineEvent:
        event = self.get_draft_tab(tab_id).find_event(event_id)
        if event is None:
            raise NotFoundError("TimelineEvent", event_id)
        return event

    def container_ids(self, kind: ContainerKind, container_id: str | None = None) -> list[str]:
        """The live id list of a container (mutating it mutates the store)."""
        if kind == "scene":
            if container_id is None:
                raise ValueError("A scene container needs a scene id")
            return self.get_scene(container_id).draft_tab_ids
        if kind == "workbench":
            return self.workbench
        if kind == "idea_bank":
            return self.idea_bank
        raise ValueError(f"Unknown container kind {kind!r}")

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    def create_scene(self, name: str, setting: str = "", backstory: str = "") -> Scene:
        scene = Scene(id=new_id(), name=name, setting=setting, backstory=backstory)
        self.scenes[scene.id] = scene
        logger.debug("created scene %s (%s)", scene.id, name)
        return scene

    def update_scene(self, scene_id: str, updates: Mapping[str, Any]) -> Scene:
        scene = _merge(self.get_scene(scene_id), updates, protected=("id", "draft_tab_ids", "plan"))
        scene.updated_at = now_ms()
        self.scenes[scene_id] = scene
        return scene

    def update_scene_plan(self, scene_id: str, raw_text: str) -> Scene:
        scene = self.get_scene(scene_id)
        scene.plan.raw_text = raw_text
        scene.updated_at = now_ms()
        return scene

    def set_active_scene(self, scene_id: str) -> None:
        self.get_scene(scene_id)
        self.active_scene_id = scene_id

    def active_scene(self) -> Scene | None:
        if self.active_scene_id is None:
            return None
        return self.scenes.get(self.active_scene_id)

    def delete_scene(self, scene_id: str) -> None:
        """Delete a scene. Its draft tabs move to the Workbench."""
        scene = self.get_scene(scene_id)
        for tab_id in scene.draft_tab_ids:
            tab = self.draft_tabs.get(tab_id)
            if tab is None:
                continue
            tab.location = WorkbenchLocation()
            tab.index = len(self.workbench)
            self.workbench.append(tab_id)
        for step in list(scene.plan.parsed_steps):
            if step.id in self.plan_steps:
                self.delete_plan_step(step.id)
        del self.scenes[scene_id]
        if self.active_scene_id == scene_id:
            self.active_scene_id = next(iter(self.scenes), None)
        logger.debug("deleted scene %s", scene_id)

    # ------------------------------------------------------------------
    # Plan steps
    # ------------------------------------------------------------------

    def _owning_scene(self, step_id: str) -> Scene | None:
        for scene in self.scenes.values():
            if any(s.id == step_id for s in scene.plan.parsed_steps):
                return scene
        return None

    def _put_plan_step(self, step: PlanStep) -> None:
        self.plan_steps[step.id] = step
        scene = self._owning_scene(step.id)
        if scene is not None:
            scene.plan.parsed_steps = [
                step if s.id == step.id else s for s in scene.plan.parsed_steps
            ]

    def create_plan_step(self, scene_id: str, text: str) -> PlanStep:
        scene = self.get_scene(scene_id)
        step = PlanStep(id=new_id(), text=text)
        self.plan_steps[step.id] = step
        scene.plan.parsed_steps.append(step)
        scene.updated_at = now_ms()
        return step

    def update_plan_step(self, step_id: str, updates: Mapping[str, Any]) -> PlanStep:
        """Merge `updates` into a plan step.

        Tab and star ids are resolved first. Tabs gained or lost in
        `fulfilled_by` get their `fulfilled_plan_steps` updated to match.
        """
        current = self.get_plan_step(step_id)
        step = _merge(current, updates)
        for tab_id in step.fulfilled_by:
            self.get_draft_tab(tab_id)
        for star_id in step.linked_stars:
            self.get_star(star_id)
        self._put_plan_step(step)
        for tab_id in set(current.fulfilled_by) - set(step.fulfilled_by):
            tab = self.draft_tabs.get(tab_id)
            if tab is not None and step_id in tab.fulfilled_plan_steps:
                tab.fulfilled_plan_steps = [s for s in tab.fulfilled_plan_steps if s != step_id]
                tab.updated_at = now_ms()
        for tab_id in step.fulfilled_by:
            tab = self.draft_tabs[tab_id]
            if step_id not in tab.fulfilled_plan_steps:
                tab.fulfilled_plan_steps = [*tab.fulfilled_plan_steps, step_id]
                tab.updated_at = now_ms()
        return step

    def delete_plan_step(self, step_id: str) -> None:
        self.get_plan_step(step_id)
        del self.plan_steps[step_id]
        for scene in self.scenes.values():
            scene.plan.parsed_steps = [s for s in scene.plan.parsed_steps if s.id != step_id]
        for tab in self.draft_tabs.values():
            if step_id in tab.fulfilled_plan_steps:
                tab.fulfilled_plan_steps = [s for s in tab.fulfilled_plan_steps if s != step_id]

    def link_plan_step_to_tab(self, step_id: str, tab_id: str) -> None:
        step = self.get_plan_step(step_id)
        tab = self.get_draft_tab(tab_id)
        if tab_id in step.fulfilled_by:
            return
        self._put_plan_step(step.model_copy(update={"fulfilled_by": [*step.fulfilled_by, tab_id]}))
        if step_id not in tab.fulfilled_plan_steps:
            tab.fulfilled_plan_steps = [*tab.fulfilled_plan_steps, step_id]
            tab.updated_at = now_ms()

    def unlink_plan_step_from_tab(self, step_id: str, tab_id: str) -> None:
        step = self.get_plan_step(step_id)
        tab = self.get_draft_tab(tab_id)
        self._put_plan_step(step.model_copy(
            update={"fulfilled_by": [t for t in step.fulfilled_by if t != tab_id]}
        ))
        tab.fulfilled_plan_steps = [s for s in tab.fulfilled_plan_steps if s != step_id]
        tab.updated_at = now_ms()

    # ------------------------------------------------------------------
    # Draft tabs
    # ------------------------------------------------------------------

    def create_draft_tab(self) -> DraftTab:
        """Create an empty tab at the end of the Workbench."""
        tab = DraftTab(id=new_id(), index=len(self.workbench), summary="")
        self.draft_tabs[tab.id] = tab
        self.workbench.append(tab.id)
        logger.debug("created draft tab %s in workbench", tab.id)
        return tab

    def update_draft_tab(self, tab_id: str, updates: Mapping[str, Any]) -> DraftTab:
        tab = _merge(
            self.get_draft_tab(tab_id), updates,
            protected=("id", "location", "index", "scene_id"),
        )
        tab.updated_at = now_ms()
        self.draft_tabs[tab_id] = tab
        return tab

    def delete_draft_tab(self, tab_id: str) -> None:
        self.get_draft_tab(tab_id)
        del self.draft_tabs[tab_id]
        for scene in self.scenes.values():
            if tab_id in scene.draft_tab_ids:
                scene.draft_tab_ids[:] = [t for t in scene.draft_tab_ids if t != tab_id]
                scene.updated_at = now_ms()
        self.workbench[:] = [t for t in self.workbench if t != tab_id]
        self.idea_bank[:] = [t for t in self.idea_bank if t != tab_id]
        for star in self.stars.values():
            if star.origin_draft_tab_id == tab_id:
                star.origin_draft_tab_id = None
        for step in list(self.plan_steps.values()):
            if tab_id in step.fulfilled_by:
                self._put_plan_step(step.model_copy(
                    update={"fulfilled_by": [t for t in step.fulfilled_by if t != tab_id]}
                ))
        logger.debug("deleted draft tab %s", tab_id)

    # ------------------------------------------------------------------
    # Timeline events
    # ------------------------------------------------------------------

    def add_timeline_event(
        self,
        tab_id: str,
        text: str,
        dialogue: str | None = None,
        *,
        checked: bool = True,
        associated_stars: Iterable[str] = (),
    ) -> TimelineEvent:
        tab = self.get_draft_tab(tab_id)
        stars = list(associated_stars)
        for star_id in stars:
            self.get_star(star_id)
        event = TimelineEvent(
            id=new_id(), text=text, dialogue=dialogue or None,
            associated_stars=stars, checked=checked,
        )
        tab.timeline.append(event)
        tab.updated_at = now_ms()
        return event

    def update_timeline_event(
        self, tab_id: str, event_id: str, updates: Mapping[str, Any]
    ) -> TimelineEvent:
        tab = self.get_draft_tab(tab_id)
        event = _merge(self.find_event(tab_id, event_id), updates)
        for star_id in event.associated_stars:
            self.get_star(star_id)
        tab.timeline = [event if e.id == event_id else e for e in tab.timeline]
        tab.updated_at = now_ms()
        return event

    def toggle_event_checked(self, tab_id: str, event_id: str) -> bool:
        event = self.find_event(tab_id, event_id)
        event.checked = not event.checked
        self.get_draft_tab(tab_id).updated_at = now_ms()
        return event.checked

    def delete_timeline_event(self, tab_id: str, event_id: str) -> None:
        """Remove an event and every description that targets it."""
        tab = self.get_draft_tab(tab_id)
        self.find_event(tab_id, event_id)
        tab.timeline = [e for e in tab.timeline if e.id != event_id]
        tab.descriptions = [d for d in tab.descriptions if d.target_event_id != event_id]
        tab.updated_at = now_ms()

    # ------------------------------------------------------------------
    # Descriptions
    # ------------------------------------------------------------------

    def add_description(
        self,
        tab_id: str,
        text: str,
        *,
        scope: str = "tab",
        target_event_id: str | None = None,
        is_important: bool = False,
        origin_star_id: str | None = None,
    ) -> Description:
        tab = self.get_draft_tab(tab_id)
        if scope == "event":
            if target_event_id is None:
                raise ValueError("An event-scoped description needs a target_event_id")
            self.find_event(tab_id, target_event_id)
        if origin_star_id is not None:
            self.get_star(origin_star_id)
        description = Description(
            id=new_id(), text=text, scope=scope,
            target_event_id=target_event_id if scope == "event" else None,
            is_important=is_important, origin_star_id=origin_star_id,
        )
        tab.descriptions.append(description)
        tab.updated_at = now_ms()
        return description

    def update_description(
        self, tab_id: str, description_id: str, updates: Mapping[str, Any]
    ) -> Description:
        tab = self.get_draft_tab(tab_id)
        current = next((d for d in tab.descriptions if d.id == description_id), None)
        if current is None:
            raise NotFoundError("Description", description_id)
        description = _merge(current, updates)
        if description.scope == "event":
            if description.target_event_id is None:
                raise ValueError("An event-scoped description needs a target_event_id")
            self.find_event(tab_id, description.target_event_id)
        tab.descriptions = [description if d.id == description_id else d for d in tab.descriptions]
        tab.updated_at = now_ms()
        return description

    def delete_description(self, tab_id: str, description_id: str) -> None:
        tab = self.get_draft_tab(tab_id)
        if not any(d.id == description_id for d in tab.descriptions):
            raise NotFoundError("Description", description_id)
        tab.descriptions = [d for d in tab.descriptions if d.id != description_id]
        tab.updated_at = now_ms()

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def create_character(
        self, name: str, fields: Mapping[str, str] | None = None, is_checked: bool = False
    ) -> Character:
        character = Character(
            id=new_id(), name=name, fields=dict(fields or {}), is_checked=is_checked,
        )
        self.characters[character.id] = character
        return character

    def update_character(self, character_id: str, updates: Mapping[str, Any]) -> Character:
        character = _merge(self.get_character(character_id), updates)
        self.characters[character_id] = character
        return character

    def toggle_character_checked(self, character_id: str) -> bool:
        character = self.get_character(character_id)
        character.is_checked = not character.is_checked
        return character.is_checked

    def delete_character(self, character_id: str) -> None:
        """Delete a character and prune it from star tags and constraints.

        Stars that mention the character survive; they just stop
        referencing it.
        """
        self.get_character(character_id)
        del self.characters[character_id]
        for star in self.stars.values():
            if character_id in star.tags.characters:
                star.tags.characters = [c for c in star.tags.characters if c != character_id]
            if isinstance(star, CharacterConstraint) and star.applies_to_character == character_id:
                star.applies_to_character = None

    # ------------------------------------------------------------------
    # Stars
    # ------------------------------------------------------------------

    def create_star(
        self,
        title: str,
        body: str = "",
        *,
        tags: StarTags | Mapping[str, Any] | None = None,
        priority: float = 0.5,
        is_checked: bool = False,
        origin_draft_tab_id: str | None = None,
    ) -> Fact:
        """Create a plain fact star."""
        if origin_draft_tab_id is not None:
            self.get_draft_tab(origin_draft_tab_id)
        star = Fact(
            id=new_id(), title=title, body=body,
            tags=StarTags.model_validate(tags) if tags is not None else StarTags(),
            priority=priority, is_checked=is_checked,
            origin_draft_tab_id=origin_draft_tab_id,
        )
        self.add_star(star)
        return star

    def add_star(self, star: StarBase) -> None:
        """Insert a fully built star (either variant)."""
        self._check_star_refs(star)
        self.stars[star.id] = star

    def update_star(self, star_id: str, updates: Mapping[str, Any]) -> StarBase:
        """Merge `updates` into a star. Setting or clearing
        `constraint_type` switches the variant."""
        current = self.get_star(star_id)
        if "id" in updates:
            raise ValueError("Star field(s) not updatable here: id")
        unknown = sorted(set(updates) - _STAR_FIELDS)
        if unknown:
            raise ValueError(f"Unknown Star field(s): {', '.join(unknown)}")
        star = _STAR_ADAPTER.validate_python({**current.model_dump(), **updates})
        self._check_star_refs(star)
        self.stars[star_id] = star
        return star

    def _check_star_refs(self, star: StarBase) -> None:
        for character_id in star.tags.characters:
            self.get_character(character_id)
        if star.origin_draft_tab_id is not None:
            self.get_draft_tab(star.origin_draft_tab_id)
        if isinstance(star, CharacterConstraint) and star.applies_to_character is not None:
            self.get_character(star.applies_to_character)

    def toggle_star_checked(self, star_id: str) -> bool:
        star = self.get_star(star_id)
        star.is_checked = not star.is_checked
        return star.is_checked

    def delete_star(self, star_id: str) -> None:
        self.get_star(star_id)
        del self.stars[star_id]
        for tab in self.draft_tabs.values():
            for event in tab.timeline:
                if star_id in event.associated_stars:
                    event.associated_stars = [s for s in event.associated_stars if s != star_id]
            for description in tab.descriptions:
                if description.origin_star_id == star_id:
                    description.origin_star_id = None
        for step in list(self.plan_steps.values()):
            if star_id in step.linked_stars:
                self._put_plan_step(step.model_copy(
                    update={"linked_stars": [s for s in step.linked_stars if s != star_id]}
                ))

    def link_star_to_event(self, star_id: str, tab_id: str, event_id: str) -> None:
        self.get_star(star_id)
        event = self.find_event(tab_id, event_id)
        if star_id not in event.associated_stars:
            event.associated_stars = [*event.associated_stars, star_id]

    def unlink_star_from_event(self, star_id: str, tab_id: str, event_id: str) -> None:
        event = self.find_event(tab_id, event_id)
        event.associated_stars = [s for s in event.associated_stars if s != star_id]

    def mark_stars_used(self, star_ids: Iterable[str], at: int | None = None) -> None:
        stamp = at if at is not None else now_ms()
        for star_id in star_ids:
            star = self.stars.get(star_id)
            if star is not None:
                star.last_used_in_prompt = stamp

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def scene_tabs(self, scene_id: str) -> list[DraftTab]:
        """Tabs of a scene in `draft_tab_ids` order.

        The id list is the source of truth; a tab's `index` may be stale
        after siblings leave the scene.
        """
        scene = self.get_scene(scene_id)
        return [self.draft_tabs[t] for t in scene.draft_tab_ids if t in self.draft_tabs]

    def workbench_tabs(self) -> list[DraftTab]:
        """Workbench tabs, most recently created first."""
        tabs = [self.draft_tabs[t] for t in self.workbench if t in self.draft_tabs]
        return sorted(tabs, key=lambda t: t.created_at, reverse=True)

    def idea_bank_tabs(self) -> list[DraftTab]:
        return [self.draft_tabs[t] for t in self.idea_bank if t in self.draft_tabs]

    def tabs_with_star(self, star_id: str) -> list[DraftTab]:
        return [
            tab for tab in self.draft_tabs.values()
            if any(star_id in e.associated_stars for e in tab.timeline)
        ]

    def checked_stars(self) -> list[StarBase]:
        return [s for s in self.stars.values() if s.is_checked]

    def checked_characters(self) -> list[Character]:
        return [c for c in self.characters.values() if c.is_checked]

    def location_of(self, tab_id: str) -> SceneLocation | WorkbenchLocation | IdeaBankLocation:
        return self.get_draft_tab(tab_id).location
