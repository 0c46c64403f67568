"""
Metric aggregator input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from eventlens.components.buckets.models import RangeSpec
from eventlens.core.entities import Bucket, FilterItem, Granularity, TimeRange
from eventlens.core.services.sessions import SessionStats

MetricName = Literal[
    "sessions",
    "pageviews",
    "events",
    "users",
    "bounce_rate",
    "session_duration",
    "pages_per_session",
]

METRICS: tuple[str, ...] = (
    "sessions",
    "pageviews",
    "events",
    "users",
    "bounce_rate",
    "session_duration",
    "pages_per_session",
)

MetricValues = dict[str, float]


# --- Input Models ---


@dataclass(frozen=True)
class AggregateInput:
    """Input for a time-bucketed metric series."""

    site_id: int
    range: RangeSpec
    granularity: Granularity | str = Granularity.DAY
    metrics: tuple[str, ...] = ()
    filters: tuple[FilterItem, ...] = ()
    group_by: str | None = None
    top_k: int | None = None


@dataclass(frozen=True)
class OverviewInput:
    """Input for whole-range metrics, optionally broken down by a dimension."""

    site_id: int
    range: RangeSpec
    metrics: tuple[str, ...] = ()
    filters: tuple[FilterItem, ...] = ()
    group_by: str | None = None
    limit: int | None = None


# --- Accumulation ---


@dataclass
class MetricAccumulator:
    """Running totals over the sessions of one bucket (or one group)."""

    track_users: bool = True
    sessions: int = 0
    pageviews: int = 0
    events: int = 0
    bounces: int = 0
    duration_total: float = 0.0
    user_ids: set[str] = field(default_factory=set)

    def add(self, stats: SessionStats) -> None:
        self.sessions += 1
        self.pageviews += stats.pageviews
        self.events += stats.events
        self.duration_total += stats.duration_seconds
        if stats.bounced:
            self.bounces += 1
        if self.track_users:
            self.user_ids.add(stats.user_id)

    def values(self, metrics: tuple[str, ...], users: int | None = None) -> MetricValues:
        """Requested metrics; an empty accumulator yields zeros."""
        sessions = self.sessions
        computed: dict[str, float] = {
            "sessions": sessions,
            "pageviews": self.pageviews,
            "events": self.events,
            "users": users if users is not None else len(self.user_ids),
            "bounce_rate": self.bounces / sessions if sessions else 0.0,
            "session_duration": self.duration_total / sessions if sessions else 0.0,
            "pages_per_session": self.pageviews / sessions if sessions else 0.0,
        }
        return {name: computed[name] for name in metrics}


# --- Output Models ---


@dataclass(frozen=True)
class BucketMetrics:
    """Metrics for one bucket, with per-group splits when grouped."""

    bucket: Bucket
    values: MetricValues
    groups: dict[str, MetricValues] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {**self.bucket.to_dict(), "values": self.values}
        if self.groups:
            data["groups"] = self.groups
        return data


@dataclass(frozen=True)
class AggregateOutput:
    """Dense metric series over a range."""

    time_range: TimeRange
    granularity: Granularity
    metrics: tuple[str, ...]
    buckets: list[BucketMetrics]
    group_by: str | None = None
    groups: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.time_range.start.isoformat(),
            "end": self.time_range.end.isoformat(),
            "time_zone": self.time_range.time_zone,
            "granularity": self.granularity.value,
            "metrics": list(self.metrics),
            "group_by": self.group_by,
            "groups": self.groups,
            "buckets": [b.to_dict() for b in self.buckets],
        }


@dataclass(frozen=True)
class GroupShare:
    """One dimension value over the whole range."""

    value: str
    values: MetricValues
    sessions: int
    share: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "values": self.values,
            "sessions": self.sessions,
            "share": round(self.share, 4),
        }


@dataclass(frozen=True)
class OverviewOutput:
    """Metrics over a whole range."""

    time_range: TimeRange
    values: MetricValues
    group_by: str | None = None
    breakdown: list[GroupShare] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.time_range.start.isoformat(),
            "end": self.time_range.end.isoformat(),
            "time_zone": self.time_range.time_zone,
            "values": self.values,
            "group_by": self.group_by,
            "breakdown": [g.to_dict() for g in self.breakdown],
        }
