"""
Domain entities for the eventlens aggregation engine.

- Event: immutable raw event as delivered by the raw event store
- Filter / AnyOf: filter specifications over event fields and properties
- TimeRange / Bucket: absolute query windows and their half-open tiles
- FunnelStep / Goal: step predicates and persisted conversion definitions
- SiteConfig: registry view of a site (time zone default, visibility)
- SessionSummary: per-session row returned by every paginated session list

Invariants:
- Events in a session are totally ordered by (timestamp, sequence_no)
- Buckets are half-open intervals [start, end)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal, Union

from eventlens.core.services.paths import normalize_path

# --- Value types ---

Scalar = Union[str, int, float, bool]
FilterValue = Union[str, int, float, bool, tuple[str, ...], list[str]]

PAGEVIEW = "pageview"


class FilterOperator(str, Enum):
    """Supported filter operators."""

    EQ = "eq"
    NE = "ne"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"


class Granularity(str, Enum):
    """Time bucket widths."""

    MINUTE = "minute"
    FIVE_MINUTES = "five_minutes"
    TEN_MINUTES = "ten_minutes"
    FIFTEEN_MINUTES = "fifteen_minutes"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# --- Event ---


@dataclass(frozen=True)
class Event:
    """Raw analytics event. Immutable once written."""

    session_id: str
    user_id: str
    site_id: int
    name: str
    timestamp: datetime
    sequence_no: int = 0
    properties: Mapping[str, Scalar] = field(default_factory=dict)
    page_url: str | None = None
    referrer: str | None = None

    @property
    def pathname(self) -> str | None:
        return normalize_path(self.page_url)

    @property
    def is_pageview(self) -> bool:
        return self.name == PAGEVIEW

    @property
    def order_key(self) -> tuple[str, datetime, int]:
        return (self.session_id, self.timestamp, self.sequence_no)


# --- Filters ---


@dataclass(frozen=True)
class Filter:
    """Single filter: parameter, operator, value(s)."""

    parameter: str
    operator: FilterOperator | str
    value: FilterValue

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Filter:
        return cls(
            parameter=data["parameter"],
            operator=data.get("operator", data.get("type", "eq")),
            value=data["value"],
        )


@dataclass(frozen=True)
class AnyOf:
    """Alternative filter groups; matches when any conjunctive group matches."""

    groups: tuple[tuple[Filter, ...], ...]


FilterItem = Union[Filter, AnyOf]


# --- Time ---


@dataclass(frozen=True)
class TimeRange:
    """Absolute query range, resolved to aware datetimes."""

    start: datetime
    end: datetime
    time_zone: str = "UTC"


@dataclass(frozen=True)
class Bucket:
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime
    label: str

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def to_dict(self) -> dict[str, str]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
        }


# --- Funnels and goals ---

StepType = Literal["page", "event"]


@dataclass(frozen=True)
class FunnelStep:
    """
    One funnel step.

    Page steps match pageviews whose pathname matches ``value`` as a path
    pattern. Event steps match events named ``value``. ``filters`` are ANDed
    on top. ``window`` bounds the time since the previous step was reached.
    """

    value: str
    type: StepType = "event"
    name: str | None = None
    filters: tuple[FilterItem, ...] = ()
    window: timedelta | None = None

    @property
    def label(self) -> str:
        return self.name or self.value


GoalType = Literal["path", "event", "funnel"]


@dataclass(frozen=True)
class GoalConfig:
    """Goal definition payload."""

    path_pattern: str | None = None
    event_name: str | None = None
    filters: tuple[FilterItem, ...] = ()
    steps: tuple[FunnelStep, ...] = ()


@dataclass(frozen=True)
class Goal:
    """Persisted goal owned by a site."""

    goal_id: int
    site_id: int
    name: str | None
    goal_type: GoalType
    config: GoalConfig

    @property
    def is_step_sequence(self) -> bool:
        return self.goal_type == "funnel" and len(self.config.steps) >= 2

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "site_id": self.site_id,
            "name": self.name,
            "goal_type": self.goal_type,
        }


# --- Sites ---


@dataclass(frozen=True)
class SiteConfig:
    """Registry view of a site."""

    site_id: int
    time_zone: str = "UTC"
    is_public: bool = False
    domain: str | None = None


# --- Sessions ---


@dataclass(frozen=True)
class SessionSummary:
    """Summary row for a session (session lists)."""

    session_id: str
    user_id: str
    session_start: datetime
    session_end: datetime
    duration_seconds: float
    entry_page: str | None
    exit_page: str | None
    pageviews: int
    events: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "session_start": self.session_start.isoformat(),
            "session_end": self.session_end.isoformat(),
            "duration_seconds": self.duration_seconds,
            "entry_page": self.entry_page,
            "exit_page": self.exit_page,
            "pageviews": self.pageviews,
            "events": self.events,
        }
