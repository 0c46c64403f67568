"""
Metric aggregator component.

Computes per-bucket (optionally per-group) session metrics from the raw event
store.

Key behaviors:
- One scan per bucket, folded into sessions in a single pass
- sessions = distinct session_id, pageviews = events named "pageview",
  bounce_rate = single-pageview sessions / sessions,
  session_duration = mean of (last - first) event time per session
- users = distinct user_id, from the store's count_distinct when ungrouped
- group_by splits the same pass by a dimension; the top-K groups (by
  sessions over the whole range) are kept and the rest fold into "other"
- Buckets run on a bounded worker pool and come back in time order
- The overview can break the whole range down by a dimension, with each
  value's share of sessions

Invariants:
- Dense output: every bucket is present, every kept group in every bucket,
  with zero-valued metrics where there is no data
- A session is counted once per group it has events in; folding groups
  into "other" merges those sessions rather than adding counts
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace
from functools import partial

from eventlens.components.buckets.component import bucketize, resolve_range
from eventlens.components.filters.component import Predicate, compile_filters, event_value
from eventlens.core.entities import Bucket, TimeRange
from eventlens.core.errors import InvalidFilter, InvalidMetric
from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import (
    CancellationToken,
    retrying,
    run_bounded,
    scan_events,
)
from eventlens.core.services.sessions import Session, SessionStats, iter_sessions
from eventlens.rules.loader import retry_config
from eventlens.rules.models import DEFAULT_RULES, Rules

from .models import (
    METRICS,
    AggregateInput,
    AggregateOutput,
    BucketMetrics,
    GroupShare,
    MetricAccumulator,
    MetricValues,
    OverviewInput,
    OverviewOutput,
)

logger = logging.getLogger(__name__)

GroupedSessions = dict[str, dict[str, SessionStats]]


# --- Validation ---


def validate_metrics(metrics: Sequence[str], defaults: Sequence[str] = ()) -> tuple[str, ...]:
    """Requested metric names, de-duplicated in request order."""
    requested = tuple(dict.fromkeys(metrics or defaults))
    unknown = [m for m in requested if m not in METRICS]
    if unknown:
        raise InvalidMetric(
            f"Unknown metric(s): {', '.join(unknown)}. Must be one of: {', '.join(METRICS)}",
            field_name="metrics",
        )
    if not requested:
        raise InvalidMetric("At least one metric is required", field_name="metrics")
    return requested


def validate_top_k(top_k: int, field_name: str = "top_k") -> int:
    """A caller-supplied group limit; must be at least 1."""
    if isinstance(top_k, bool) or top_k < 1:
        raise InvalidFilter(f"'{field_name}' must be at least 1, got {top_k}", field_name=field_name)
    return top_k


def group_label(value: object, missing_label: str) -> str:
    """String key for a dimension value."""
    if value is None or value == "":
        return missing_label
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# --- Per-session folding ---


def session_stats(session: Session) -> SessionStats:
    """Counters for the whole session."""
    stats = SessionStats.from_event(session.events[0])
    for event in session.events[1:]:
        stats.add(event)
    return stats


def split_session(session: Session, dimension: str, missing_label: str) -> dict[str, SessionStats]:
    """Counters for a session, split by the dimension value of each event."""
    groups: dict[str, SessionStats] = {}
    for event in session.events:
        key = group_label(event_value(event, dimension), missing_label)
        stats = groups.get(key)
        if stats is None:
            groups[key] = SessionStats.from_event(event)
        else:
            stats.add(event)
    return groups


# --- Bucket scans ---


def _scan_totals(
    bucket: Bucket,
    token: CancellationToken,
    *,
    store: RawEventStorePort,
    site_id: int,
    predicate: Predicate,
    metrics: tuple[str, ...],
) -> MetricValues:
    spec = ScanSpec(site_id=site_id, start=bucket.start, end=bucket.end, predicate=predicate)
    acc = MetricAccumulator(track_users=False)
    for session in iter_sessions(scan_events(store, spec, token)):
        acc.add(session_stats(session))

    users = store.count_distinct("user_id", spec) if "users" in metrics else None
    return acc.values(metrics, users=users)


def _scan_groups(
    bucket: Bucket,
    token: CancellationToken,
    *,
    store: RawEventStorePort,
    site_id: int,
    predicate: Predicate,
    dimension: str,
    missing_label: str,
) -> GroupedSessions:
    spec = ScanSpec(site_id=site_id, start=bucket.start, end=bucket.end, predicate=predicate)
    grouped: GroupedSessions = {}
    for session in iter_sessions(scan_events(store, spec, token)):
        for key, stats in split_session(session, dimension, missing_label).items():
            grouped.setdefault(key, {})[session.session_id] = stats
    return grouped


# --- Group ranking ---


def rank_groups(per_bucket: Iterable[GroupedSessions]) -> list[str]:
    """Groups ordered by distinct sessions over the whole range, then by value."""
    seen: dict[str, set[str]] = {}
    for grouped in per_bucket:
        for key, sessions in grouped.items():
            seen.setdefault(key, set()).update(sessions)
    return sorted(seen, key=lambda k: (-len(seen[k]), k))


def _merge_sessions(groups: Iterable[dict[str, SessionStats]]) -> dict[str, SessionStats]:
    merged: dict[str, SessionStats] = {}
    for sessions in groups:
        for session_id, stats in sessions.items():
            existing = merged.get(session_id)
            if existing is None:
                merged[session_id] = replace(stats)
            else:
                existing.merge(stats)
    return merged


def _values_of(sessions: Iterable[SessionStats], metrics: tuple[str, ...]) -> MetricValues:
    acc = MetricAccumulator()
    for stats in sessions:
        acc.add(stats)
    return acc.values(metrics)


def finalize_groups(
    per_bucket: list[GroupedSessions],
    metrics: tuple[str, ...],
    top_k: int,
    other_label: str,
) -> tuple[list[str], list[tuple[MetricValues, dict[str, MetricValues]]]]:
    """
    Apply range-wide top-K to per-bucket group splits.

    Returns the ordered group labels and, per bucket, the bucket totals and
    the per-group values.
    """
    ranked = rank_groups(per_bucket)
    kept = ranked[:top_k]
    folded = set(ranked[top_k:])
    labels = kept + ([other_label] if folded else [])

    results: list[tuple[MetricValues, dict[str, MetricValues]]] = []
    for grouped in per_bucket:
        group_values = {key: _values_of(grouped.get(key, {}).values(), metrics) for key in kept}
        if folded:
            other = _merge_sessions(v for k, v in grouped.items() if k in folded)
            group_values[other_label] = _values_of(other.values(), metrics)
        totals = _values_of(_merge_sessions(grouped.values()).values(), metrics)
        results.append((totals, group_values))
    return labels, results


# --- Component Entry Points ---


def aggregate(
    buckets: Iterable[Bucket],
    predicate: Predicate,
    metrics: tuple[str, ...],
    group_by: str | None = None,
    *,
    store: RawEventStorePort,
    site_id: int,
    rules: Rules | None = None,
    top_k: int | None = None,
    token: CancellationToken | None = None,
) -> tuple[list[BucketMetrics], list[str]]:
    """
    Compute metrics for each bucket.

    Args:
        buckets: Ordered buckets (a BucketSequence or any iterable).
        predicate: Compiled filters applied to every scan.
        metrics: Validated metric names.
        group_by: Optional dimension (filter parameter syntax).
        store: Raw event store.
        site_id: Site to scan.
        rules: Optional rules (concurrency, retry, top-K, labels).
        top_k: Overrides the configured top-K; must be at least 1.
        token: Cancellation token for the query.

    Returns:
        Per-bucket metrics in time order, and the group labels (empty when
        ungrouped).
    """
    rules = rules or DEFAULT_RULES
    token = token or CancellationToken()
    if top_k is not None:
        validate_top_k(top_k)
    retry = retry_config(rules)
    bucket_list = list(buckets)
    workers = rules.concurrency.max_workers

    if group_by is None:
        task = retrying(
            partial(_scan_totals, store=store, site_id=site_id, predicate=predicate, metrics=metrics),
            retry,
        )
        totals = run_bounded(task, bucket_list, workers, token)
        return [BucketMetrics(bucket=b, values=v) for b, v in zip(bucket_list, totals)], []

    if not group_by.strip():
        raise InvalidFilter("Group-by dimension must not be empty", field_name="group_by")

    task = retrying(
        partial(
            _scan_groups,
            store=store,
            site_id=site_id,
            predicate=predicate,
            dimension=group_by,
            missing_label=rules.metrics.missing_label,
        ),
        retry,
    )
    per_bucket = run_bounded(task, bucket_list, workers, token)
    labels, results = finalize_groups(
        per_bucket,
        metrics,
        top_k if top_k is not None else rules.metrics.top_k,
        rules.metrics.other_label,
    )
    rows = [
        BucketMetrics(bucket=b, values=totals, groups=groups)
        for b, (totals, groups) in zip(bucket_list, results)
    ]
    return rows, labels


def run_aggregate(
    inp: AggregateInput,
    *,
    store: RawEventStorePort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> AggregateOutput:
    """
    Resolve, validate and compute a metric series.

    All validation (range, granularity ceiling, filters, metric names) runs
    before the first scan.
    """
    rules = rules or DEFAULT_RULES
    metrics = validate_metrics(inp.metrics, rules.metrics.default_metrics)
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    buckets = bucketize(time_range, inp.granularity, rules.buckets.max_buckets)

    rows, groups = aggregate(
        buckets,
        predicate,
        metrics,
        inp.group_by,
        store=store,
        site_id=inp.site_id,
        rules=rules,
        top_k=inp.top_k,
        token=token,
    )
    logger.debug(
        "Aggregated site %d: %d buckets, %d groups", inp.site_id, len(rows), len(groups)
    )
    return AggregateOutput(
        time_range=time_range,
        granularity=buckets.granularity,
        metrics=metrics,
        buckets=rows,
        group_by=inp.group_by,
        groups=groups,
    )


def run_overview(
    inp: OverviewInput,
    *,
    store: RawEventStorePort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> OverviewOutput:
    """
    Compute metrics over the whole range as a single bucket.

    With ``group_by`` the same scan also yields a breakdown: one row per
    dimension value (the top ``limit``, the rest folded into "other") with
    its metrics and its share of the range's sessions. A session with events
    under several values counts toward each, so shares can sum past 1.
    """
    rules = rules or DEFAULT_RULES
    metrics = validate_metrics(inp.metrics, rules.metrics.default_metrics)
    predicate = compile_filters(inp.filters)
    if inp.limit is not None:
        validate_top_k(inp.limit, "limit")
    time_range: TimeRange = resolve_range(inp.range, time_port.now_utc())

    whole = Bucket(start=time_range.start, end=time_range.end, label="total")
    if inp.group_by is None:
        rows, _ = aggregate(
            [whole],
            predicate,
            metrics,
            store=store,
            site_id=inp.site_id,
            rules=rules,
            token=token,
        )
        return OverviewOutput(time_range=time_range, values=rows[0].values)

    scan_metrics = metrics if "sessions" in metrics else (*metrics, "sessions")
    rows, labels = aggregate(
        [whole],
        predicate,
        scan_metrics,
        inp.group_by,
        store=store,
        site_id=inp.site_id,
        rules=rules,
        top_k=inp.limit,
        token=token,
    )
    totals = rows[0].values
    total_sessions = int(totals["sessions"])
    breakdown = []
    for label in labels:
        values = rows[0].groups[label]
        sessions = int(values["sessions"])
        breakdown.append(
            GroupShare(
                value=label,
                values={m: values[m] for m in metrics},
                sessions=sessions,
                share=sessions / total_sessions if total_sessions else 0.0,
            )
        )
    return OverviewOutput(
        time_range=time_range,
        values={m: totals[m] for m in metrics},
        group_by=inp.group_by,
        breakdown=breakdown,
    )
