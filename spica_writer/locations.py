"""Draft tab location tracking.

Every draft tab lives in exactly one container: a scene's
`draft_tab_ids`, the Workbench, or the Idea Bank. The tab's own
`location` names that container. LocationTracker is the only code that
moves tabs between containers, and every move is one synchronous step:

  1. Resolve the tab (and target scene). Unknown ids raise NotFoundError
     before anything changes.
  2. A tab already in its target is left alone (warning, no duplicate).
  3. Remove the id from every container that holds it.
  4. Append it to the target and update `location`.
  5. Set the moved tab's `index` to its new position. Siblings keep
     their indexes on an append-at-end move.

Reorders never insert ids: entries that are unknown or not members of
the container are dropped with a warning.

validate_consistency() is a debugging aid that checks the whole store;
it is not called on the hot path.
"""

from __future__ import annotations

import logging
import warnings
from collections import Counter

from pydantic import BaseModel, Field

from spica_writer.errors import ConsistencyError, ConsistencyWarning, NotFoundError
from spica_writer.models import (
    CharacterConstraint,
    ContainerKind,
    DraftTab,
    IdeaBankLocation,
    SceneLocation,
    WorkbenchLocation,
    now_ms,
)
from spica_writer.store import ProjectStore

logger = logging.getLogger(__name__)

Location = SceneLocation | WorkbenchLocation | IdeaBankLocation


def describe_location(location: Location) -> str:
    if isinstance(location, SceneLocation):
        return f"scene {location.scene_id}"
    return location.kind


class LocationTracker:
    def __init__(self, store: ProjectStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def move_to_scene(self, tab_id: str, scene_id: str) -> DraftTab:
        tab = self._store.get_draft_tab(tab_id)
        self._store.get_scene(scene_id)
        return self._move(tab, SceneLocation(scene_id=scene_id))

    def move_to_workbench(self, tab_id: str) -> DraftTab:
        tab = self._store.get_draft_tab(tab_id)
        return self._move(tab, WorkbenchLocation())

    def move_to_idea_bank(self, tab_id: str) -> DraftTab:
        tab = self._store.get_draft_tab(tab_id)
        return self._move(tab, IdeaBankLocation())

    def move_from_idea_bank(self, tab_id: str, scene_id: str | None = None) -> DraftTab:
        """Take a tab out of the Idea Bank into a scene, or the Workbench."""
        tab = self._store.get_draft_tab(tab_id)
        if not isinstance(tab.location, IdeaBankLocation):
            logger.warning("draft tab %s is not in the idea bank (%s)",
                           tab_id, describe_location(tab.location))
        if scene_id is not None:
            return self.move_to_scene(tab_id, scene_id)
        return self.move_to_workbench(tab_id)

    def remove_from_scene(self, tab_id: str) -> DraftTab:
        """Send a scene tab back to the Workbench and close the gap it leaves."""
        tab = self._store.get_draft_tab(tab_id)
        if not isinstance(tab.location, SceneLocation):
            logger.warning("draft tab %s is not in a scene (%s); nothing to remove",
                           tab_id, describe_location(tab.location))
            return tab
        scene_id = tab.location.scene_id
        self.move_to_workbench(tab_id)
        if scene_id in self._store.scenes:
            self._reindex(self._store.scenes[scene_id].draft_tab_ids)
        return tab

    def _target_ids(self, location: Location) -> list[str]:
        if isinstance(location, SceneLocation):
            return self._store.get_scene(location.scene_id).draft_tab_ids
        if isinstance(location, WorkbenchLocation):
            return self._store.workbench
        return self._store.idea_bank

    def _containers_holding(self, tab_id: str) -> int:
        count = sum(s.draft_tab_ids.count(tab_id) for s in self._store.scenes.values())
        return count + self._store.workbench.count(tab_id) + self._store.idea_bank.count(tab_id)

    def _move(self, tab: DraftTab, target: Location) -> DraftTab:
        target_ids = self._target_ids(target)
        if (
            tab.location == target
            and tab.id in target_ids
            and self._containers_holding(tab.id) == 1
        ):
            logger.warning("draft tab %s is already in %s", tab.id, describe_location(target))
            return tab

        self._detach(tab.id)
        target_ids.append(tab.id)
        tab.location = target
        tab.index = len(target_ids) - 1
        tab.updated_at = now_ms()
        if isinstance(target, SceneLocation):
            self._store.scenes[target.scene_id].updated_at = tab.updated_at
        logger.debug("moved draft tab %s to %s at %d", tab.id, describe_location(target), tab.index)
        return tab

    def _detach(self, tab_id: str) -> None:
        # Only one container should hold the id, but all of them are checked.
        for scene in self._store.scenes.values():
            if tab_id in scene.draft_tab_ids:
                scene.draft_tab_ids[:] = [t for t in scene.draft_tab_ids if t != tab_id]
                scene.updated_at = now_ms()
        self._store.workbench[:] = [t for t in self._store.workbench if t != tab_id]
        self._store.idea_bank[:] = [t for t in self._store.idea_bank if t != tab_id]

    # ------------------------------------------------------------------
    # Reordering
    # ------------------------------------------------------------------

    def reorder(
        self,
        kind: ContainerKind,
        new_order: list[str],
        container_id: str | None = None,
    ) -> list[str]:
        """Replace a container's order and rewrite every member's index.

        Returns the resulting order. An unknown container is logged and
        left alone.
        """
        try:
            current = self._store.container_ids(kind, container_id)
        except (NotFoundError, ValueError) as e:
            logger.warning("reorder of %s %s ignored: %s", kind, container_id or "", e)
            return []

        members = set(current)
        kept: list[str] = []
        for tab_id in new_order:
            if tab_id not in self._store.draft_tabs:
                logger.warning("reorder: dropping unknown draft tab %s", tab_id)
            elif tab_id not in members:
                logger.warning("reorder: dropping draft tab %s, not a member of %s", tab_id, kind)
            elif tab_id in kept:
                logger.warning("reorder: dropping duplicate draft tab %s", tab_id)
            else:
                kept.append(tab_id)

        omitted = [
            t for t in dict.fromkeys(current)
            if t not in kept and t in self._store.draft_tabs
        ]
        if omitted:
            logger.warning("reorder: %d member(s) missing from new order kept at the end: %s",
                           len(omitted), ", ".join(omitted))

        current[:] = kept + omitted
        self._reindex(current)
        if kind == "scene" and container_id is not None:
            self._store.scenes[container_id].updated_at = now_ms()
        return list(current)

    def move_within(
        self,
        kind: ContainerKind,
        from_index: int,
        to_index: int,
        container_id: str | None = None,
    ) -> list[str]:
        """Move the tab at `from_index` to `to_index` inside one container."""
        try:
            order = list(self._store.container_ids(kind, container_id))
        except (NotFoundError, ValueError) as e:
            logger.warning("move within %s %s ignored: %s", kind, container_id or "", e)
            return []
        if not (0 <= from_index < len(order) and 0 <= to_index < len(order)):
            logger.warning("move within %s ignored: index %d -> %d out of range (%d tabs)",
                           kind, from_index, to_index, len(order))
            return order
        order.insert(to_index, order.pop(from_index))
        return self.reorder(kind, order, container_id)

    def _reindex(self, ids: list[str]) -> None:
        for position, tab_id in enumerate(ids):
            tab = self._store.draft_tabs.get(tab_id)
            if tab is not None:
                tab.index = position


# ---------------------------------------------------------------------------
# Consistency checking
# ---------------------------------------------------------------------------

class ConsistencyReport(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def check(self) -> None:
        """Emit warnings as ConsistencyWarning; raise ConsistencyError on errors."""
        for message in self.warnings:
            warnings.warn(message, ConsistencyWarning, stacklevel=2)
        if self.errors:
            raise ConsistencyError(self.errors)


def validate_consistency(store: ProjectStore) -> ConsistencyReport:
    """Check the location invariants and reference integrity of a store."""
    report = ConsistencyReport()

    containers: list[tuple[str, Location, list[str]]] = [
        (f"scene {scene.id}", SceneLocation(scene_id=scene.id), scene.draft_tab_ids)
        for scene in store.scenes.values()
    ]
    containers.append(("workbench", WorkbenchLocation(), store.workbench))
    containers.append(("idea_bank", IdeaBankLocation(), store.idea_bank))

    holders: dict[str, list[Location]] = {tab_id: [] for tab_id in store.draft_tabs}
    for name, location, ids in containers:
        for tab_id, count in Counter(ids).items():
            if count > 1:
                report.warnings.append(f"{name} lists draft tab {tab_id} {count} times")
        for position, tab_id in enumerate(ids):
            if tab_id not in store.draft_tabs:
                report.errors.append(f"{name} references missing draft tab {tab_id}")
                continue
            if location not in holders[tab_id]:
                holders[tab_id].append(location)
            tab = store.draft_tabs[tab_id]
            if tab.index != position:
                report.warnings.append(
                    f"draft tab {tab_id} has index {tab.index} but sits at {position} in {name}"
                )

    for tab_id, found in holders.items():
        tab = store.draft_tabs[tab_id]
        if not found:
            report.errors.append(f"draft tab {tab_id} is in no container")
        elif len(found) > 1:
            where = ", ".join(describe_location(loc) for loc in found)
            report.errors.append(f"draft tab {tab_id} is in {len(found)} containers: {where}")
        elif tab.location != found[0]:
            report.errors.append(
                f"draft tab {tab_id} says {describe_location(tab.location)} "
                f"but is listed in {describe_location(found[0])}"
            )

    if store.active_scene_id is not None and store.active_scene_id not in store.scenes:
        report.warnings.append(f"active scene {store.active_scene_id} does not exist")

    for star in store.stars.values():
        if star.origin_draft_tab_id and star.origin_draft_tab_id not in store.draft_tabs:
            report.warnings.append(
                f"star {star.id} origin draft tab {star.origin_draft_tab_id} does not exist"
            )
        for character_id in star.tags.characters:
            if character_id not in store.characters:
                report.warnings.append(f"star {star.id} tags missing character {character_id}")
        if (
            isinstance(star, CharacterConstraint)
            and star.applies_to_character
            and star.applies_to_character not in store.characters
        ):
            report.warnings.append(
                f"constraint {star.id} applies to missing character {star.applies_to_character}"
            )

    for tab in store.draft_tabs.values():
        for event in tab.timeline:
            for star_id in event.associated_stars:
                if star_id not in store.stars:
                    report.warnings.append(f"event {event.id} links missing star {star_id}")
        for step_id in tab.fulfilled_plan_steps:
            if step_id not in store.plan_steps:
                report.warnings.append(f"draft tab {tab.id} fulfils missing plan step {step_id}")

    for step in store.plan_steps.values():
        for tab_id in step.fulfilled_by:
            if tab_id not in store.draft_tabs:
                report.warnings.append(f"plan step {step.id} fulfilled by missing tab {tab_id}")
        for star_id in step.linked_stars:
            if star_id not in store.stars:
                report.warnings.append(f"plan step {step.id} links missing star {star_id}")

    for message in report.errors:
        logger.error("consistency: %s", message)
    for message in report.warnings:
        logger.warning("consistency: %s", message)
    return report
