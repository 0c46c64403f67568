"""
Goal engine input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from eventlens.components.buckets.models import RangeSpec
from eventlens.components.pagination.models import Page
from eventlens.core.entities import FilterItem, Goal, SessionSummary, TimeRange

GoalSort = Literal["goal_id", "name", "goal_type"]
SortOrder = Literal["asc", "desc"]

GOAL_SORT_FIELDS: frozenset[str] = frozenset({"goal_id", "name", "goal_type"})


# --- Input Models ---


@dataclass(frozen=True)
class GoalInput:
    """Input for evaluating one persisted goal."""

    site_id: int
    goal_id: int
    range: RangeSpec
    filters: tuple[FilterItem, ...] = ()


@dataclass(frozen=True)
class GoalSessionsInput:
    """Input for listing a goal's converting sessions."""

    site_id: int
    goal_id: int
    range: RangeSpec
    filters: tuple[FilterItem, ...] = ()
    page: int = 1
    page_size: int = 25
    cursor: str | None = None


@dataclass(frozen=True)
class SiteGoalsInput:
    """Input for evaluating every goal of a site, paginated."""

    site_id: int
    range: RangeSpec
    filters: tuple[FilterItem, ...] = ()
    page: int = 1
    page_size: int = 10
    sort: GoalSort | str = "goal_id"
    order: SortOrder | str = "asc"


# --- Output Models ---


@dataclass(frozen=True)
class GoalResult:
    """Conversions for one goal over a range."""

    goal: Goal
    conversions: int
    total_sessions: int
    conversion_rate: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.goal.to_dict(),
            "conversions": self.conversions,
            "total_sessions": self.total_sessions,
            "conversion_rate": self.conversion_rate,
        }


@dataclass(frozen=True)
class GoalSessionsOutput:
    """A page of converting sessions."""

    goal: Goal
    page: Page[SessionSummary]

    def to_dict(self) -> dict[str, Any]:
        return {"goal_id": self.goal.goal_id, **self.page.to_dict(lambda s: s.to_dict())}


@dataclass(frozen=True)
class SiteGoalsOutput:
    """A page of evaluated goals."""

    time_range: TimeRange
    page: Page[GoalResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.time_range.start.isoformat(),
            "end": self.time_range.end.isoformat(),
            "time_zone": self.time_range.time_zone,
            **self.page.to_dict(lambda g: g.to_dict()),
        }
