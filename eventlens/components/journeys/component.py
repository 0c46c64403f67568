"""
Journey engine component.

Reconstructs each session's first N labeled events and ranks the distinct
label sequences.

Key behaviors:
- Labels: normalized pathname for pageviews, event name otherwise
- Each session contributes its first ``max_steps`` labels; shorter sessions
  contribute shorter paths (never padded)
- A path and its extensions are distinct entries ("stopped here" vs
  "continued")
- step_filters pin a label pattern to a 1-based position; sessions without
  a matching label there are left out
- Ranked by descending count, ties by lexicographic path order

Invariants:
- Sum of position-1 node counts == sessions contributing a path
- Output order never depends on worker scheduling
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from functools import partial

from eventlens.components.buckets.component import resolve_range
from eventlens.components.filters.component import Predicate, compile_filters
from eventlens.core.entities import Event, TimeRange
from eventlens.core.errors import InvalidFilter, InvalidPagination
from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import CancellationToken, map_session_batches
from eventlens.core.services.paths import path_matches
from eventlens.core.services.sessions import Session
from eventlens.rules.loader import retry_config
from eventlens.rules.models import DEFAULT_RULES, Rules

from .models import JourneyInput, JourneyLink, JourneyNode, JourneyOutput, JourneyPath

Path = tuple[str, ...]


# --- Labels ---


def event_label(event: Event) -> str:
    """Journey label for an event."""
    if event.is_pageview:
        return event.pathname or "/"
    return event.name


def session_path(session: Session, max_steps: int) -> Path:
    labels: list[str] = []
    for event in session.events:
        labels.append(event_label(event))
        if len(labels) == max_steps:
            break
    return tuple(labels)


# --- Validation ---


def validate_journey_query(
    max_steps: int,
    step_filters: Mapping[int, str],
    limit: int,
    rules: Rules,
) -> dict[int, str]:
    """Check bounds; returns step filters keyed by 1-based position."""
    if not 1 <= max_steps <= rules.journeys.max_steps:
        raise InvalidFilter(
            f"Steps must be between 1 and {rules.journeys.max_steps}, got {max_steps}",
            field_name="max_steps",
        )
    if limit < 1:
        raise InvalidPagination(f"Limit must be >= 1, got {limit}", field_name="limit")

    checked: dict[int, str] = {}
    for position, pattern in step_filters.items():
        try:
            pos = int(position)
        except (TypeError, ValueError):
            raise InvalidFilter(
                f"Step filter position must be an integer, got {position!r}",
                field_name="step_filters",
            ) from None
        if not 1 <= pos <= max_steps:
            raise InvalidFilter(
                f"Step filter position {pos} is outside 1..{max_steps}",
                field_name="step_filters",
            )
        if not isinstance(pattern, str) or not pattern:
            raise InvalidFilter(
                f"Step filter at position {pos} must be a non-empty string",
                field_name="step_filters",
            )
        checked[pos] = pattern
    return checked


def label_matches(pattern: str, label: str) -> bool:
    """Path pattern for page labels, exact name for event labels."""
    if label.startswith("/"):
        return path_matches(pattern, label)
    return pattern == label


def passes_step_filters(path: Path, step_filters: Mapping[int, str]) -> bool:
    for position, pattern in step_filters.items():
        if position > len(path) or not label_matches(pattern, path[position - 1]):
            return False
    return True


# --- Ranking ---


def rank_paths(counts: Counter[Path], limit: int | None = None) -> list[JourneyPath]:
    """Descending count, ties in lexicographic path order."""
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [JourneyPath(path=path, count=count) for path, count in ranked]


def flow_graph(counts: Counter[Path]) -> tuple[list[JourneyNode], list[JourneyLink]]:
    """Per-position node and link counts over all paths."""
    nodes: Counter[tuple[int, str]] = Counter()
    links: Counter[tuple[int, str, str]] = Counter()
    for path, count in counts.items():
        for i, label in enumerate(path):
            nodes[(i + 1, label)] += count
            if i + 1 < len(path):
                links[(i + 1, label, path[i + 1])] += count

    node_list = [
        JourneyNode(position=pos, label=label, count=count)
        for (pos, label), count in sorted(nodes.items(), key=lambda kv: (kv[0][0], -kv[1], kv[0][1]))
    ]
    link_list = [
        JourneyLink(position=pos, source=source, target=target, count=count)
        for (pos, source, target), count in sorted(
            links.items(), key=lambda kv: (kv[0][0], -kv[1], kv[0][1], kv[0][2])
        )
    ]
    return node_list, link_list


# --- Batch worker ---


def _count_paths(
    batch: list[Session],
    token: CancellationToken,
    *,
    max_steps: int,
    step_filters: Mapping[int, str],
) -> Counter[Path]:
    counts: Counter[Path] = Counter()
    for session in batch:
        token.check()
        path = session_path(session, max_steps)
        if path and passes_step_filters(path, step_filters):
            counts[path] += 1
    return counts


# --- Component Entry Points ---


def build_journeys(
    time_range: TimeRange,
    predicate: Predicate,
    max_steps: int,
    step_filters: Mapping[int, str] | None = None,
    *,
    store: RawEventStorePort,
    site_id: int,
    limit: int | None = None,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> JourneyOutput:
    """
    Ranked journeys over a resolved range.

    Raises:
        InvalidFilter: max_steps out of bounds or malformed step filters.
        InvalidPagination: limit < 1.
        Cancelled: The token was cancelled or timed out mid-scan.
    """
    rules = rules or DEFAULT_RULES
    limit = limit if limit is not None else rules.journeys.default_limit
    checked = validate_journey_query(max_steps, step_filters or {}, limit, rules)
    spec = ScanSpec(site_id=site_id, start=time_range.start, end=time_range.end, predicate=predicate)

    partials = map_session_batches(
        store,
        spec,
        partial(_count_paths, max_steps=max_steps, step_filters=checked),
        max_workers=rules.concurrency.max_workers,
        batch_size=rules.concurrency.session_batch_size,
        retry=retry_config(rules),
        token=token,
    )
    counts: Counter[Path] = Counter()
    for batch_counts in partials:
        counts.update(batch_counts)

    nodes, links = flow_graph(counts)
    return JourneyOutput(
        time_range=time_range,
        max_steps=max_steps,
        total_sessions=sum(counts.values()),
        paths=rank_paths(counts, limit),
        nodes=nodes,
        links=links,
    )


def run_journeys(
    inp: JourneyInput,
    *,
    store: RawEventStorePort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> JourneyOutput:
    """Resolve, validate and build journeys."""
    rules = rules or DEFAULT_RULES
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    return build_journeys(
        time_range,
        predicate,
        inp.max_steps if inp.max_steps is not None else rules.journeys.default_steps,
        inp.step_filters,
        store=store,
        site_id=inp.site_id,
        limit=inp.limit,
        rules=rules,
        token=token,
    )