"""
Funnel engine component.

Evaluates ordered step sequences over stitched sessions and lists the
sessions behind a step.

Key behaviors:
- Requires at least two steps (InvalidFunnel)
- Walks a cursor over each session's events in (timestamp, sequence_no)
  order; an event advances the cursor when it satisfies the current step
  and, when that step has a window, falls within it of the previous step
- First touch: each step is reached at most once, by its earliest
  qualifying event; the lowest sequence_no wins timestamp ties
- Sessions that never match step 1 are excluded from every count
- reached[i] = sessions with depth >= i + 1, dropped[i] = depth == i + 1

Invariants:
- reached is non-increasing and reached[i] == reached[i + 1] + dropped[i]
- An event only counts for the step the cursor is on, so out-of-order
  satisfaction never advances the funnel
- Cancellation raises Cancelled; partial counts are never returned
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta
from functools import partial
from typing import Any

from eventlens.components.buckets.component import resolve_range
from eventlens.components.filters.component import (
    Predicate,
    StepPredicate,
    compile_filters,
    parse_filters,
)
from eventlens.components.pagination.component import decode_cursor, paginate, validate_page_request
from eventlens.core.entities import Event, FunnelStep, SessionSummary, TimeRange
from eventlens.core.errors import InvalidFilter, InvalidFunnel
from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import CancellationToken, map_session_batches
from eventlens.core.services.sessions import Session, session_sort_key, summarize_session
from eventlens.rules.loader import retry_config
from eventlens.rules.models import DEFAULT_RULES, Rules

from .models import (
    STEP_MODES,
    FunnelInput,
    FunnelOutput,
    StepMode,
    StepResult,
    StepSessionsInput,
    StepSessionsOutput,
)

MIN_STEPS = 2


# --- Parsing ---


def parse_step(data: Mapping[str, Any]) -> FunnelStep:
    """
    Parse a JSON-shaped step.

    ``{"type": "page"|"event", "value": ..., "name"?, "filters"?, "window_seconds"?}``
    """
    if not isinstance(data, Mapping):
        raise InvalidFunnel("Each step must be an object", field_name="steps")

    step_type = data.get("type", "event")
    value = data.get("value")
    if step_type not in ("page", "event"):
        raise InvalidFunnel(f"Unsupported step type: {step_type}", field_name="type")
    if not isinstance(value, str) or not value:
        raise InvalidFunnel("Step value must be a non-empty string", field_name="value")

    window = data.get("window_seconds")
    if window is not None:
        if isinstance(window, bool) or not isinstance(window, (int, float)) or window <= 0:
            raise InvalidFunnel("Step window must be a positive number of seconds", field_name="window_seconds")
        window = timedelta(seconds=window)

    try:
        filters = tuple(parse_filters(data.get("filters") or ()))
    except InvalidFilter as e:
        raise InvalidFunnel(f"Invalid step filter: {e.message}", field_name="filters") from None

    return FunnelStep(
        value=value,
        type=step_type,
        name=data.get("name"),
        filters=filters,
        window=window,
    )


def parse_steps(raw: Iterable[Mapping[str, Any]]) -> tuple[FunnelStep, ...]:
    return tuple(parse_step(s) for s in raw)


# --- Validation ---


def compile_steps(steps: Sequence[FunnelStep], min_steps: int = MIN_STEPS) -> list[StepPredicate]:
    """
    Validate a step list and compile each step.

    Raises:
        InvalidFunnel: Too few steps or a bad window.
        InvalidFilter: A step's filters do not compile.
    """
    if len(steps) < min_steps:
        raise InvalidFunnel(
            f"Funnel requires at least {min_steps} steps, got {len(steps)}",
            field_name="steps",
        )
    for step in steps:
        if step.window is not None and step.window <= timedelta(0):
            raise InvalidFunnel("Step window must be positive", field_name="window")
    return [StepPredicate(step) for step in steps]


def validate_step_query(step_number: int, mode: str, step_count: int) -> StepMode:
    if not 1 <= step_number <= step_count:
        raise InvalidFunnel(
            f"Step number must be between 1 and {step_count}, got {step_number}",
            field_name="step_number",
        )
    if mode not in STEP_MODES:
        raise InvalidFunnel(f"Mode must be 'reached' or 'dropped', got {mode}", field_name="mode")
    return mode  # type: ignore[return-value]


# --- Core walk ---


def funnel_depth(
    events: Iterable[Event],
    predicates: Sequence[StepPredicate],
    steps: Sequence[FunnelStep],
) -> int:
    """
    Number of steps a session reached, walking its ordered events once.

    Events must arrive ordered by (timestamp, sequence_no).
    """
    depth = 0
    last_ts = None
    total = len(predicates)

    for event in events:
        if depth == total:
            break
        if not predicates[depth].test(event):
            continue
        window = steps[depth].window
        if depth > 0 and window is not None and event.timestamp - last_ts > window:
            # Every later event is later still; the session is stuck here
            break
        depth += 1
        last_ts = event.timestamp

    return depth


def in_mode(depth: int, step_number: int, mode: StepMode) -> bool:
    if mode == "reached":
        return depth >= step_number
    return depth == step_number


def step_results(steps: Sequence[FunnelStep], depths: Counter[int]) -> list[StepResult]:
    """Turn a depth histogram into per-step counts and rates."""
    n = len(steps)
    reached = [sum(c for d, c in depths.items() if d >= i + 1) for i in range(n)]
    entered = reached[0] if reached else 0

    results = []
    for i, step in enumerate(steps):
        previous = reached[i - 1] if i > 0 else entered
        results.append(
            StepResult(
                step_number=i + 1,
                step_name=step.label,
                reached=reached[i],
                dropped=depths.get(i + 1, 0),
                conversion_rate=reached[i] / entered if entered else None,
                step_conversion_rate=reached[i] / previous if previous else None,
            )
        )
    return results


# --- Batch workers ---


def _depth_histogram(
    batch: list[Session],
    token: CancellationToken,
    *,
    predicates: Sequence[StepPredicate],
    steps: Sequence[FunnelStep],
) -> Counter[int]:
    depths: Counter[int] = Counter()
    for session in batch:
        token.check()
        depth = funnel_depth(session.events, predicates, steps)
        if depth > 0:
            depths[depth] += 1
    return depths


def _sessions_at_step(
    batch: list[Session],
    token: CancellationToken,
    *,
    predicates: Sequence[StepPredicate],
    steps: Sequence[FunnelStep],
    step_number: int,
    mode: StepMode,
) -> list[SessionSummary]:
    rows = []
    for session in batch:
        token.check()
        depth = funnel_depth(session.events, predicates, steps)
        if in_mode(depth, step_number, mode):
            rows.append(summarize_session(session))
    return rows


# --- Component Entry Points ---


def evaluate_funnel(
    steps: Sequence[FunnelStep],
    time_range: TimeRange,
    predicate: Predicate,
    *,
    store: RawEventStorePort,
    site_id: int,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> list[StepResult]:
    """
    Per-step reached/dropped counts over a resolved range.

    Raises:
        InvalidFunnel: Fewer than two steps.
        Cancelled: The token was cancelled or timed out mid-scan.
        StorageUnavailable: Store faults outlasted the retry budget.
    """
    rules = rules or DEFAULT_RULES
    predicates = compile_steps(steps)
    spec = ScanSpec(site_id=site_id, start=time_range.start, end=time_range.end, predicate=predicate)

    histograms = map_session_batches(
        store,
        spec,
        partial(_depth_histogram, predicates=predicates, steps=steps),
        max_workers=rules.concurrency.max_workers,
        batch_size=rules.concurrency.session_batch_size,
        retry=retry_config(rules),
        token=token,
    )
    depths: Counter[int] = Counter()
    for histogram in histograms:
        depths.update(histogram)
    return step_results(steps, depths)


def list_step_sessions(
    steps: Sequence[FunnelStep],
    time_range: TimeRange,
    predicate: Predicate,
    step_number: int,
    mode: str,
    *,
    store: RawEventStorePort,
    site_id: int,
    page: int = 1,
    page_size: int = DEFAULT_RULES.pagination.default_page_size,
    cursor: str | None = None,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> StepSessionsOutput:
    """
    Sessions that reached (or dropped at) a 1-based step, newest first.

    Re-runs the same walk as ``evaluate_funnel``; ``total_count`` of the page
    equals the matching step count for the same inputs.
    """
    rules = rules or DEFAULT_RULES
    predicates = compile_steps(steps)
    checked_mode = validate_step_query(step_number, mode, len(steps))
    validate_page_request(page, page_size, rules.pagination.max_page_size)
    if cursor:
        decode_cursor(cursor)

    spec = ScanSpec(site_id=site_id, start=time_range.start, end=time_range.end, predicate=predicate)
    batches = map_session_batches(
        store,
        spec,
        partial(
            _sessions_at_step,
            predicates=predicates,
            steps=steps,
            step_number=step_number,
            mode=checked_mode,
        ),
        max_workers=rules.concurrency.max_workers,
        batch_size=rules.concurrency.session_batch_size,
        retry=retry_config(rules),
        token=token,
    )
    rows = sorted((row for batch in batches for row in batch), key=session_sort_key)
    return StepSessionsOutput(
        step_number=step_number,
        mode=checked_mode,
        page=paginate(
            rows,
            page_number=page,
            page_size=page_size,
            cursor=cursor,
            max_page_size=rules.pagination.max_page_size,
        ),
    )


def run_funnel(
    inp: FunnelInput,
    *,
    store: RawEventStorePort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> FunnelOutput:
    """Resolve, validate and evaluate a funnel."""
    compile_steps(inp.steps)
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    steps = evaluate_funnel(
        inp.steps,
        time_range,
        predicate,
        store=store,
        site_id=inp.site_id,
        rules=rules,
        token=token,
    )
    return FunnelOutput(time_range=time_range, steps=steps)


def run_step_sessions(
    inp: StepSessionsInput,
    *,
    store: RawEventStorePort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> StepSessionsOutput:
    """Resolve, validate and list the sessions behind a funnel step."""
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    return list_step_sessions(
        inp.steps,
        time_range,
        predicate,
        inp.step_number,
        inp.mode,
        store=store,
        site_id=inp.site_id,
        page=inp.page,
        page_size=inp.page_size,
        cursor=inp.cursor,
        rules=rules,
        token=token,
    )
