"""
Funnel engine input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from eventlens.components.buckets.models import RangeSpec
from eventlens.components.pagination.models import Page
from eventlens.core.entities import FilterItem, FunnelStep, SessionSummary, TimeRange

StepMode = Literal["reached", "dropped"]

STEP_MODES: frozenset[str] = frozenset({"reached", "dropped"})


# --- Input Models ---


@dataclass(frozen=True)
class FunnelInput:
    """Input for evaluating a funnel over a range."""

    site_id: int
    range: RangeSpec
    steps: tuple[FunnelStep, ...]
    filters: tuple[FilterItem, ...] = ()


@dataclass(frozen=True)
class StepSessionsInput:
    """Input for listing the sessions behind one funnel step."""

    site_id: int
    range: RangeSpec
    steps: tuple[FunnelStep, ...]
    step_number: int
    mode: StepMode | str = "reached"
    filters: tuple[FilterItem, ...] = ()
    page: int = 1
    page_size: int = 25
    cursor: str | None = None


# --- Output Models ---


@dataclass(frozen=True)
class StepResult:
    """Counts for one funnel step."""

    step_number: int
    step_name: str
    reached: int
    dropped: int
    conversion_rate: float | None
    step_conversion_rate: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "step_name": self.step_name,
            "reached": self.reached,
            "dropped": self.dropped,
            "conversion_rate": self.conversion_rate,
            "step_conversion_rate": self.step_conversion_rate,
        }


@dataclass(frozen=True)
class FunnelOutput:
    """Per-step reached/dropped counts."""

    time_range: TimeRange
    steps: list[StepResult]

    @property
    def reached(self) -> list[int]:
        return [s.reached for s in self.steps]

    @property
    def dropped(self) -> list[int]:
        return [s.dropped for s in self.steps]

    @property
    def entered(self) -> int:
        return self.steps[0].reached if self.steps else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.time_range.start.isoformat(),
            "end": self.time_range.end.isoformat(),
            "time_zone": self.time_range.time_zone,
            "entered": self.entered,
            "reached": self.reached,
            "dropped": self.dropped,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class StepSessionsOutput:
    """A page of sessions at a funnel step."""

    step_number: int
    mode: StepMode
    page: Page[SessionSummary]

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "mode": self.mode,
            **self.page.to_dict(lambda s: s.to_dict()),
        }
