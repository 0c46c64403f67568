"""
Time bucketer input models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from eventlens.core.entities import Bucket, Granularity, TimeRange

Preset = Literal[
    "today",
    "yesterday",
    "last_24_hours",
    "last_7_days",
    "last_30_days",
    "last_90_days",
    "this_month",
    "last_month",
    "this_year",
]

PRESETS: frozenset[str] = frozenset(
    {
        "today",
        "yesterday",
        "last_24_hours",
        "last_7_days",
        "last_30_days",
        "last_90_days",
        "this_month",
        "last_month",
        "this_year",
    }
)


@dataclass(frozen=True)
class RelativeRange:
    """Named preset resolved against the clock at query time."""

    preset: str
    time_zone: str = "UTC"


@dataclass(frozen=True)
class PastMinutesRange:
    """Sliding window: from ``start_minutes`` ago to ``end_minutes`` ago."""

    start_minutes: int
    end_minutes: int = 0
    time_zone: str = "UTC"


RangeSpec = Union[TimeRange, RelativeRange, PastMinutesRange]


@dataclass(frozen=True)
class BucketizeInput:
    """Input for bucketizing a (possibly relative) range."""

    range: RangeSpec
    granularity: Granularity | str = Granularity.DAY


__all__ = [
    "Bucket",
    "BucketizeInput",
    "Granularity",
    "PRESETS",
    "PastMinutesRange",
    "Preset",
    "RangeSpec",
    "RelativeRange",
    "TimeRange",
]
