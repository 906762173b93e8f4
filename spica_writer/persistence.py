"""Project persistence: the saved JSON shape, load-time repair, and a
thin JSON file adapter.

A project is one JSON document:

    {
      "version": "1.0",
      "metadata": {"title", "author"?, "created_at", "updated_at"},
      "scenes": {id: Scene},
      "draft_tabs": {id: DraftTab},          <- "scene_id" only for scene tabs
      "workbench": {"unassigned_draft_tab_ids": [...]},
      "stars": {id: Star},
      "characters": {id: Character},
      "plan_steps": {id: PlanStep},
      "idea_bank": {"stored_draft_tab_ids": [...]},
      "active_scene_id": "..."
    }

repair_project_data() accepts partial or damaged documents and returns a
ProjectData in which every draft tab sits in exactly one container and
no list refers to a missing id. Every fix is logged. A document that is
already consistent comes back unchanged.

Directory layout used by ProjectStorage:

    {base}/
      last_project.json     <- default project file
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from spica_writer.errors import ProjectLoadError
from spica_writer.models import (
    PROJECT_VERSION,
    Character,
    CharacterConstraint,
    DraftTab,
    IdeaBankLocation,
    PlanStep,
    ProjectData,
    ProjectMetadata,
    Scene,
    SceneLocation,
    Star,
    WorkbenchLocation,
    now_ms,
)
from spica_writer.store import DEFAULT_SCENE_NAME, new_id

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_FILE = "last_project.json"

_STAR_ADAPTER: TypeAdapter[Star] = TypeAdapter(Star)


def create_empty_project(title: str, author: str | None = None) -> ProjectData:
    """New project with a single active "Main Scene"."""
    scene = Scene(id=new_id(), name=DEFAULT_SCENE_NAME)
    return ProjectData(
        version=PROJECT_VERSION,
        metadata=ProjectMetadata(title=title, author=author),
        scenes={scene.id: scene},
        active_scene_id=scene.id,
    )


def serialize_project(data: ProjectData) -> dict[str, Any]:
    """JSON-ready dict in the saved shape. Unset optional fields are omitted."""
    return data.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def _table(raw: Mapping[str, Any], key: str, validate) -> dict[str, Any]:
    """Validate each record of an id-keyed table, dropping broken ones."""
    records = raw.get(key)
    if not isinstance(records, Mapping):
        if records is not None:
            logger.warning("repair: %s is not an object, starting empty", key)
        return {}
    table: dict[str, Any] = {}
    for record_id, record in records.items():
        try:
            item = validate(record)
        except ValidationError as e:
            logger.warning("repair: dropping malformed %s entry %s (%d error(s))",
                           key, record_id, e.error_count())
            continue
        if item.id != record_id:
            logger.warning("repair: %s entry keyed %s has id %s, re-keying", key, record_id, item.id)
        table[item.id] = item
    return table


def _id_list(raw: Mapping[str, Any], key: str, field: str) -> list[str]:
    container = raw.get(key)
    if not isinstance(container, Mapping):
        return []
    ids = container.get(field)
    if not isinstance(ids, list):
        return []
    return [i for i in ids if isinstance(i, str)]


def _model(raw: Mapping[str, Any], key: str, model: type[BaseModel]) -> Any:
    value = raw.get(key)
    if value is None:
        return model()
    try:
        return model.model_validate(value)
    except ValidationError:
        logger.warning("repair: malformed %s replaced with defaults", key)
        return model()


def repair_project_data(raw: Mapping[str, Any] | ProjectData) -> ProjectData:
    """Fill missing fields and remove dangling references."""
    if isinstance(raw, ProjectData):
        raw = serialize_project(raw)

    version = raw.get("version")
    metadata = _model(raw, "metadata", ProjectMetadata)

    scenes: dict[str, Scene] = _table(raw, "scenes", Scene.model_validate)
    tabs: dict[str, DraftTab] = _table(raw, "draft_tabs", DraftTab.model_validate)
    stars = _table(raw, "stars", _STAR_ADAPTER.validate_python)
    characters: dict[str, Character] = _table(raw, "characters", Character.model_validate)
    plan_steps: dict[str, PlanStep] = _table(raw, "plan_steps", PlanStep.model_validate)
    workbench = _id_list(raw, "workbench", "unassigned_draft_tab_ids")
    idea_bank = _id_list(raw, "idea_bank", "stored_draft_tab_ids")

    # Each tab keeps the first container that lists it.
    placed: set[str] = set()

    def claim(ids: list[str], where: str) -> list[str]:
        kept = []
        for tab_id in ids:
            if tab_id not in tabs:
                logger.warning("repair: %s referenced missing draft tab %s", where, tab_id)
            elif tab_id in placed:
                logger.warning("repair: draft tab %s listed again in %s, dropped", tab_id, where)
            else:
                placed.add(tab_id)
                kept.append(tab_id)
        if len(kept) != len(ids):
            # Entries were dropped, so positions shifted.
            for position, tab_id in enumerate(kept):
                tabs[tab_id].index = position
        return kept

    for scene in scenes.values():
        scene.draft_tab_ids = claim(scene.draft_tab_ids, f"scene {scene.id}")
        for tab_id in scene.draft_tab_ids:
            tabs[tab_id].location = SceneLocation(scene_id=scene.id)
    workbench = claim(workbench, "workbench")
    idea_bank = claim(idea_bank, "idea_bank")
    for tab_id in workbench:
        tabs[tab_id].location = WorkbenchLocation()
    for tab_id in idea_bank:
        tabs[tab_id].location = IdeaBankLocation()

    for tab_id, tab in tabs.items():
        if tab_id not in placed:
            logger.warning("repair: draft tab %s was in no container, moved to workbench", tab_id)
            tab.location = WorkbenchLocation()
            tab.index = len(workbench)
            workbench.append(tab_id)

    # Plan steps: the table is authoritative, scene plans hold the same steps.
    for scene in scenes.values():
        steps = []
        for step in scene.plan.parsed_steps:
            if step.id not in plan_steps:
                logger.warning("repair: plan step %s only found in scene %s, restored", step.id, scene.id)
                plan_steps[step.id] = step
            steps.append(plan_steps[step.id])
        scene.plan.parsed_steps = steps

    for star in stars.values():
        if star.origin_draft_tab_id and star.origin_draft_tab_id not in tabs:
            logger.warning("repair: star %s lost its origin tab %s", star.id, star.origin_draft_tab_id)
            star.origin_draft_tab_id = None
        kept_characters = [c for c in star.tags.characters if c in characters]
        if kept_characters != star.tags.characters:
            logger.warning("repair: star %s tagged missing characters", star.id)
            star.tags.characters = kept_characters
        if (
            isinstance(star, CharacterConstraint)
            and star.applies_to_character
            and star.applies_to_character not in characters
        ):
            logger.warning("repair: constraint %s applied to missing character %s",
                           star.id, star.applies_to_character)
            star.applies_to_character = None

    for tab in tabs.values():
        for event in tab.timeline:
            event.associated_stars = [s for s in event.associated_stars if s in stars]
        for description in tab.descriptions:
            if description.origin_star_id and description.origin_star_id not in stars:
                description.origin_star_id = None
        tab.fulfilled_plan_steps = [s for s in tab.fulfilled_plan_steps if s in plan_steps]
    for step in plan_steps.values():
        step.fulfilled_by = [t for t in step.fulfilled_by if t in tabs]
        step.linked_stars = [s for s in step.linked_stars if s in stars]

    active_scene_id = raw.get("active_scene_id")
    if not isinstance(active_scene_id, str) or active_scene_id not in scenes:
        if scenes:
            active_scene_id = next(iter(scenes))
        else:
            scene = Scene(id=new_id(), name=DEFAULT_SCENE_NAME)
            scenes[scene.id] = scene
            active_scene_id = scene.id
            logger.warning("repair: project had no scenes, created %r", DEFAULT_SCENE_NAME)

    data = ProjectData(
        version=version if isinstance(version, str) and version else PROJECT_VERSION,
        metadata=metadata,
        scenes=scenes,
        draft_tabs=tabs,
        stars=stars,
        characters=characters,
        plan_steps=plan_steps,
        active_scene_id=active_scene_id,
    )
    data.workbench.unassigned_draft_tab_ids = workbench
    data.idea_bank.stored_draft_tab_ids = idea_bank
    return data


# ---------------------------------------------------------------------------
# JSON file adapter
# ---------------------------------------------------------------------------

class ProjectStorage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def project_path(self) -> Path:
        return self._base / DEFAULT_PROJECT_FILE

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def save_project(self, data: ProjectData) -> Path:
        return self.save_project_as(data, self.project_path)

    def save_project_as(self, data: ProjectData, path: Path) -> Path:
        """Write `data` to `path`, stamping metadata.updated_at."""
        stamped = data.model_copy(deep=True)
        stamped.metadata.updated_at = now_ms()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_json(path, serialize_project(stamped))
        logger.info("saved project %r to %s", stamped.metadata.title, path)
        return path

    def load_project(self) -> ProjectData:
        """Load the default project file, or start a new project if there is none."""
        if not self.project_path.exists():
            logger.info("no project at %s, starting a new one", self.project_path)
            return create_empty_project("New Project")
        return self.load_project_from(self.project_path)

    def load_project_from(self, path: Path) -> ProjectData:
        try:
            raw = self._read_json(path)
        except FileNotFoundError as e:
            raise ProjectLoadError(f"Project file {path} does not exist") from e
        except json.JSONDecodeError as e:
            raise ProjectLoadError(f"Project file {path} is not valid JSON: {e}") from e
        except UnicodeDecodeError as e:
            raise ProjectLoadError(f"Project file {path} is not UTF-8 text: {e}") from e
        if not isinstance(raw, dict):
            raise ProjectLoadError(f"Project file {path} does not contain a project object")
        return repair_project_data(raw)
