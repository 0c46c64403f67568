"""
Journey engine input/output models.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from eventlens.components.buckets.models import RangeSpec
from eventlens.core.entities import FilterItem, TimeRange

# --- Input Models ---


@dataclass(frozen=True)
class JourneyInput:
    """Input for building ranked journeys."""

    site_id: int
    range: RangeSpec
    filters: tuple[FilterItem, ...] = ()
    max_steps: int | None = None
    step_filters: Mapping[int, str] = field(default_factory=dict)
    limit: int | None = None


# --- Output Models ---


@dataclass(frozen=True)
class JourneyPath:
    """A distinct label sequence and the sessions that followed it exactly."""

    path: tuple[str, ...]
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"path": list(self.path), "count": self.count}


@dataclass(frozen=True)
class JourneyNode:
    """Sessions showing ``label`` at a 1-based position."""

    position: int
    label: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "label": self.label, "count": self.count}


@dataclass(frozen=True)
class JourneyLink:
    """Sessions moving from ``source`` at ``position`` to ``target`` next."""

    position: int
    source: str
    target: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "source": self.source,
            "target": self.target,
            "count": self.count,
        }


@dataclass(frozen=True)
class JourneyOutput:
    """Ranked paths plus per-position flow (sankey input)."""

    time_range: TimeRange
    max_steps: int
    total_sessions: int
    paths: list[JourneyPath]
    nodes: list[JourneyNode]
    links: list[JourneyLink]

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.time_range.start.isoformat(),
            "end": self.time_range.end.isoformat(),
            "time_zone": self.time_range.time_zone,
            "max_steps": self.max_steps,
            "total_sessions": self.total_sessions,
            "paths": [p.to_dict() for p in self.paths],
            "nodes": [n.to_dict() for n in self.nodes],
            "links": [link.to_dict() for link in self.links],
        }
