"""
Goal and site registries.

In-memory implementations of GoalRegistryPort and SiteRegistryPort, plus a
YAML loader so a deployment can declare its sites and goals next to
rules.yaml:

    sites:
      - site_id: 1
        time_zone: Europe/London
    goals:
      - goal_id: 1
        site_id: 1
        name: Signup
        goal_type: event
        config:
          event_name: signup
          filters: [{parameter: plan, operator: eq, value: pro}]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eventlens.components.filters.component import parse_filters
from eventlens.components.funnels.component import parse_steps
from eventlens.core.entities import Goal, GoalConfig, SiteConfig
from eventlens.core.errors import EngineError

logger = logging.getLogger(__name__)


class InMemoryGoalRegistry:
    """Goals keyed by id."""

    def __init__(self, goals: Iterable[Goal] = ()) -> None:
        self._goals: dict[int, Goal] = {}
        for goal in goals:
            self.add(goal)

    def add(self, goal: Goal) -> None:
        self._goals[goal.goal_id] = goal

    def get_goal(self, goal_id: int) -> Goal | None:
        return self._goals.get(goal_id)

    def list_goals(self, site_id: int) -> list[Goal]:
        return sorted(
            (g for g in self._goals.values() if g.site_id == site_id),
            key=lambda g: g.goal_id,
        )


class InMemorySiteRegistry:
    """Sites keyed by id."""

    def __init__(self, sites: Iterable[SiteConfig] = ()) -> None:
        self._sites = {s.site_id: s for s in sites}

    def add(self, site: SiteConfig) -> None:
        self._sites[site.site_id] = site

    def get_site(self, site_id: int) -> SiteConfig | None:
        return self._sites.get(site_id)


# --- YAML documents ---


class SiteDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    site_id: int
    time_zone: str = "UTC"
    is_public: bool = False
    domain: str | None = None


class GoalDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    goal_id: int
    site_id: int
    name: str | None = None
    goal_type: Literal["path", "event", "funnel"]
    config: dict[str, Any] = Field(default_factory=dict)


class RegistryDoc(BaseModel):
    sites: list[SiteDoc] = []
    goals: list[GoalDoc] = []


def goal_from_doc(doc: GoalDoc) -> Goal:
    config = doc.config
    return Goal(
        goal_id=doc.goal_id,
        site_id=doc.site_id,
        name=doc.name,
        goal_type=doc.goal_type,
        config=GoalConfig(
            path_pattern=config.get("path_pattern"),
            event_name=config.get("event_name"),
            filters=tuple(parse_filters(config.get("filters"))),
            steps=parse_steps(config.get("steps") or ()),
        ),
    )


def load_registry(path: Path) -> tuple[InMemorySiteRegistry, InMemoryGoalRegistry]:
    """
    Load sites and goals from a YAML file.

    A missing file yields empty registries.
    Raises ValueError if the YAML, the schema or a goal definition is invalid.
    """
    if not path.exists():
        logger.info("No registry file at %s; starting with no sites or goals", path)
        return InMemorySiteRegistry(), InMemoryGoalRegistry()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in registry file: {e}") from e

    try:
        doc = RegistryDoc.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Registry validation failed:\n{e}") from e

    goals = []
    for goal_doc in doc.goals:
        try:
            goals.append(goal_from_doc(goal_doc))
        except EngineError as e:
            raise ValueError(f"Goal {goal_doc.goal_id} is invalid: {e.message}") from e

    sites = [SiteConfig(**site.model_dump()) for site in doc.sites]
    logger.info("Loaded %d sites and %d goals from %s", len(sites), len(goals), path)
    return InMemorySiteRegistry(sites), InMemoryGoalRegistry(goals)
