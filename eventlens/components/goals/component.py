"""
Goal engine component.

Evaluates persisted goals: a step-sequence goal is a funnel whose last step
is the conversion; any other goal is a single predicate a session either
satisfies or not.

Key behaviors:
- path goals match pageviews by path pattern, event goals by event name,
  both with optional property filters
- funnel goals with two or more steps delegate to the funnel walk; a funnel
  goal with one step is a single predicate
- conversion_rate = conversions / sessions in range, None when there were
  no sessions (no traffic is not the same as no conversions)
- evaluate_site_goals evaluates every goal of a site in one scan
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial

from eventlens.components.buckets.component import resolve_range
from eventlens.components.filters.component import Predicate, StepPredicate, compile_filters
from eventlens.components.funnels.component import compile_steps, funnel_depth
from eventlens.components.pagination.component import decode_cursor, paginate, validate_page_request
from eventlens.components.pagination.models import Page
from eventlens.core.entities import FunnelStep, Goal, SessionSummary, TimeRange
from eventlens.core.errors import InvalidFunnel, InvalidPagination, NotFound
from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.registry import GoalRegistryPort
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import CancellationToken, map_session_batches
from eventlens.core.services.sessions import Session, session_sort_key, summarize_session
from eventlens.rules.loader import retry_config
from eventlens.rules.models import DEFAULT_RULES, Rules

from .models import (
    GOAL_SORT_FIELDS,
    GoalInput,
    GoalResult,
    GoalSessionsInput,
    GoalSessionsOutput,
    SiteGoalsInput,
    SiteGoalsOutput,
)

# --- Goal definitions ---


def goal_steps(goal: Goal) -> tuple[FunnelStep, ...]:
    """The goal definition as funnel steps (one step for single-predicate goals)."""
    config = goal.config
    if goal.goal_type == "path":
        if not config.path_pattern:
            raise InvalidFunnel(f"Path goal {goal.goal_id} has no path pattern", field_name="path_pattern")
        return (FunnelStep(value=config.path_pattern, type="page", filters=config.filters),)
    if goal.goal_type == "event":
        if not config.event_name:
            raise InvalidFunnel(f"Event goal {goal.goal_id} has no event name", field_name="event_name")
        return (FunnelStep(value=config.event_name, type="event", filters=config.filters),)
    if goal.goal_type == "funnel":
        if not config.steps:
            raise InvalidFunnel(f"Funnel goal {goal.goal_id} has no steps", field_name="steps")
        return config.steps
    raise InvalidFunnel(f"Unsupported goal type: {goal.goal_type}", field_name="goal_type")


@dataclass(frozen=True)
class GoalMatcher:
    """Compiled goal: decides whether a session converted."""

    goal: Goal
    steps: tuple[FunnelStep, ...]
    predicates: tuple[StepPredicate, ...]

    @classmethod
    def compile(cls, goal: Goal) -> GoalMatcher:
        steps = goal_steps(goal)
        if goal.is_step_sequence:
            predicates = compile_steps(steps)
        else:
            predicates = [StepPredicate(steps[0])]
        return cls(goal=goal, steps=steps, predicates=tuple(predicates))

    def converted(self, session: Session) -> bool:
        if len(self.predicates) == 1:
            return any(self.predicates[0].test(e) for e in session.events)
        return funnel_depth(session.events, self.predicates, self.steps) == len(self.steps)


def conversion_rate(conversions: int, total_sessions: int) -> float | None:
    if total_sessions == 0:
        return None
    return conversions / total_sessions


# --- Batch workers ---


def _count_conversions(
    batch: list[Session],
    token: CancellationToken,
    *,
    matchers: Sequence[GoalMatcher],
) -> tuple[int, list[int]]:
    conversions = [0] * len(matchers)
    for session in batch:
        token.check()
        for i, matcher in enumerate(matchers):
            if matcher.converted(session):
                conversions[i] += 1
    return len(batch), conversions


def _converting_sessions(
    batch: list[Session],
    token: CancellationToken,
    *,
    matcher: GoalMatcher,
) -> list[SessionSummary]:
    rows = []
    for session in batch:
        token.check()
        if matcher.converted(session):
            rows.append(summarize_session(session))
    return rows


def _scan_spec(site_id: int, time_range: TimeRange, predicate: Predicate) -> ScanSpec:
    return ScanSpec(site_id=site_id, start=time_range.start, end=time_range.end, predicate=predicate)


# --- Component Entry Points ---


def evaluate_goals(
    goals: Sequence[Goal],
    time_range: TimeRange,
    predicate: Predicate,
    *,
    store: RawEventStorePort,
    site_id: int,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> list[GoalResult]:
    """Evaluate several goals of one site in a single scan."""
    rules = rules or DEFAULT_RULES
    matchers = [GoalMatcher.compile(g) for g in goals]
    if not matchers:
        return []

    batches = map_session_batches(
        store,
        _scan_spec(site_id, time_range, predicate),
        partial(_count_conversions, matchers=matchers),
        max_workers=rules.concurrency.max_workers,
        batch_size=rules.concurrency.session_batch_size,
        retry=retry_config(rules),
        token=token,
    )
    total = sum(n for n, _ in batches)
    conversions = [sum(counts[i] for _, counts in batches) for i in range(len(matchers))]

    return [
        GoalResult(
            goal=goal,
            conversions=conversions[i],
            total_sessions=total,
            conversion_rate=conversion_rate(conversions[i], total),
        )
        for i, goal in enumerate(goals)
    ]


def evaluate_goal(
    goal: Goal,
    time_range: TimeRange,
    predicate: Predicate,
    *,
    store: RawEventStorePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> GoalResult:
    """
    Conversions and conversion rate for one goal.

    Raises:
        InvalidFunnel: The goal definition is malformed.
        Cancelled: The token was cancelled or timed out mid-scan.
    """
    return evaluate_goals(
        [goal], time_range, predicate, store=store, site_id=goal.site_id, rules=rules, token=token
    )[0]


def list_goal_sessions(
    goal: Goal,
    time_range: TimeRange,
    predicate: Predicate,
    *,
    store: RawEventStorePort,
    page: int = 1,
    page_size: int = DEFAULT_RULES.pagination.default_page_size,
    cursor: str | None = None,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> GoalSessionsOutput:
    """Converting sessions, newest first."""
    rules = rules or DEFAULT_RULES
    matcher = GoalMatcher.compile(goal)
    validate_page_request(page, page_size, rules.pagination.max_page_size)
    if cursor:
        decode_cursor(cursor)

    batches = map_session_batches(
        store,
        _scan_spec(goal.site_id, time_range, predicate),
        partial(_converting_sessions, matcher=matcher),
        max_workers=rules.concurrency.max_workers,
        batch_size=rules.concurrency.session_batch_size,
        retry=retry_config(rules),
        token=token,
    )
    rows = sorted((row for batch in batches for row in batch), key=session_sort_key)
    return GoalSessionsOutput(
        goal=goal,
        page=paginate(
            rows,
            page_number=page,
            page_size=page_size,
            cursor=cursor,
            max_page_size=rules.pagination.max_page_size,
        ),
    )


def sort_goals(goals: Sequence[Goal], sort: str, order: str) -> list[Goal]:
    if sort not in GOAL_SORT_FIELDS:
        raise InvalidPagination(
            f"Sort must be one of: {', '.join(sorted(GOAL_SORT_FIELDS))}", field_name="sort"
        )
    if order not in ("asc", "desc"):
        raise InvalidPagination("Order must be 'asc' or 'desc'", field_name="order")

    def key(goal: Goal) -> tuple[object, int]:
        value = getattr(goal, sort)
        return (value if value is not None else "", goal.goal_id)

    return sorted(goals, key=key, reverse=order == "desc")


def get_site_goal(registry: GoalRegistryPort, site_id: int, goal_id: int) -> Goal:
    goal = registry.get_goal(goal_id)
    if goal is None or goal.site_id != site_id:
        raise NotFound(f"Goal {goal_id} not found for site {site_id}", field_name="goal_id")
    return goal


def run_goal(
    inp: GoalInput,
    *,
    store: RawEventStorePort,
    goals: GoalRegistryPort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> GoalResult:
    """Look up, validate and evaluate a goal."""
    goal = get_site_goal(goals, inp.site_id, inp.goal_id)
    GoalMatcher.compile(goal)
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    return evaluate_goal(goal, time_range, predicate, store=store, rules=rules, token=token)


def run_goal_sessions(
    inp: GoalSessionsInput,
    *,
    store: RawEventStorePort,
    goals: GoalRegistryPort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> GoalSessionsOutput:
    """Look up a goal and list its converting sessions."""
    goal = get_site_goal(goals, inp.site_id, inp.goal_id)
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    return list_goal_sessions(
        goal,
        time_range,
        predicate,
        store=store,
        page=inp.page,
        page_size=inp.page_size,
        cursor=inp.cursor,
        rules=rules,
        token=token,
    )


def evaluate_site_goals(
    inp: SiteGoalsInput,
    *,
    store: RawEventStorePort,
    goals: GoalRegistryPort,
    time_port: TimePort,
    rules: Rules | None = None,
    token: CancellationToken | None = None,
) -> SiteGoalsOutput:
    """
    Evaluate a page of a site's goals.

    Goals are sorted and paginated by their own attributes first, so only the
    goals on the requested page are evaluated.
    """
    rules = rules or DEFAULT_RULES
    predicate = compile_filters(inp.filters)
    time_range = resolve_range(inp.range, time_port.now_utc())
    ordered = sort_goals(goals.list_goals(inp.site_id), inp.sort, inp.order)
    goal_page = paginate(
        ordered,
        page_number=inp.page,
        page_size=inp.page_size,
        max_page_size=rules.pagination.max_page_size,
    )

    results = evaluate_goals(
        list(goal_page.items),
        time_range,
        predicate,
        store=store,
        site_id=inp.site_id,
        rules=rules,
        token=token,
    )
    return SiteGoalsOutput(
        time_range=time_range,
        page=Page(
            items=results,
            total_count=goal_page.total_count,
            page_number=goal_page.page_number,
            page_size=goal_page.page_size,
            offset=goal_page.offset,
            next_cursor=goal_page.next_cursor,
        ),
    )
