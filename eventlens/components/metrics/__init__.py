"""
Metrics component - time-bucketed session metrics, optionally grouped.
"""

from .component import (
    aggregate,
    finalize_groups,
    group_label,
    rank_groups,
    run_aggregate,
    run_overview,
    session_stats,
    split_session,
    validate_metrics,
    validate_top_k,
)
from .models import (
    METRICS,
    AggregateInput,
    AggregateOutput,
    BucketMetrics,
    GroupShare,
    MetricAccumulator,
    MetricName,
    MetricValues,
    OverviewInput,
    OverviewOutput,
)
from .ports import RawEventStorePort, ScanSpec, TimePort

__all__ = [
    # Component functions
    "aggregate",
    "run_aggregate",
    "run_overview",
    # Pure functions
    "finalize_groups",
    "group_label",
    "rank_groups",
    "session_stats",
    "split_session",
    "validate_metrics",
    "validate_top_k",
    # Models
    "AggregateInput",
    "AggregateOutput",
    "BucketMetrics",
    "GroupShare",
    "METRICS",
    "MetricAccumulator",
    "MetricName",
    "MetricValues",
    "OverviewInput",
    "OverviewOutput",
    # Ports
    "RawEventStorePort",
    "ScanSpec",
    "TimePort",
]
