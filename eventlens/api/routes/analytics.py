"""
Site analytics API.

Read-only query endpoints over one site's raw events: metric series and
overview, funnels and their sessions, journeys, and goal conversions.

Ranges come as ``start_date``/``end_date`` (ISO), a ``preset`` or a
``past_minutes_start``/``past_minutes_end`` window, in the site's time zone
unless ``time_zone`` is given. Filters come as a JSON list.
"""

import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from eventlens.api.deps import (
    get_clock,
    get_goal_registry,
    get_rules,
    get_site,
    get_store,
    get_token,
)
from eventlens.api.schemas import (
    FunnelRequest,
    FunnelResponse,
    GoalResponse,
    GoalSessionsResponse,
    JourneysResponse,
    MetricsResponse,
    OverviewResponse,
    RangeModel,
    SiteGoalsResponse,
    StepSessionsRequest,
    StepSessionsResponse,
)
from eventlens.components.buckets.models import PastMinutesRange, RangeSpec, RelativeRange
from eventlens.components.filters.component import parse_filters
from eventlens.components.funnels import FunnelInput, StepSessionsInput, parse_steps, run_funnel, run_step_sessions
from eventlens.components.goals import (
    GoalInput,
    GoalSessionsInput,
    SiteGoalsInput,
    evaluate_site_goals,
    run_goal,
    run_goal_sessions,
)
from eventlens.components.journeys import JourneyInput, run_journeys
from eventlens.components.metrics import AggregateInput, OverviewInput, run_aggregate, run_overview
from eventlens.core.entities import FilterItem, SiteConfig, TimeRange
from eventlens.core.errors import InvalidFilter, InvalidRange
from eventlens.core.ports.events import RawEventStorePort
from eventlens.core.ports.registry import GoalRegistryPort
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import CancellationToken
from eventlens.rules.models import Rules

router = APIRouter()

DEFAULT_PRESET = "last_7_days"


# --- Helper Functions ---


def parse_datetime(dt_str: str, field_name: str) -> datetime:
    """Parse an ISO datetime; naive values are wall time in the range zone."""
    if dt_str.endswith("Z"):
        dt_str = dt_str[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(dt_str)
    except ValueError:
        raise InvalidRange(f"Invalid datetime format: {dt_str}", field_name=field_name) from None


def build_range(
    site: SiteConfig,
    start: datetime | None,
    end: datetime | None,
    preset: str | None,
    past_minutes_start: int | None,
    past_minutes_end: int,
    time_zone: str | None,
) -> RangeSpec:
    tz = time_zone or site.time_zone
    if start is not None or end is not None:
        if start is None or end is None:
            missing = "start_date" if start is None else "end_date"
            raise InvalidRange("Both start_date and end_date are required", field_name=missing)
        return TimeRange(start=start, end=end, time_zone=tz)
    if past_minutes_start is not None:
        return PastMinutesRange(
            start_minutes=past_minutes_start,
            end_minutes=past_minutes_end,
            time_zone=tz,
        )
    return RelativeRange(preset=preset or DEFAULT_PRESET, time_zone=tz)


def body_range(site: SiteConfig, body: RangeModel) -> RangeSpec:
    return build_range(
        site,
        body.start_date,
        body.end_date,
        body.preset,
        body.past_minutes_start,
        body.past_minutes_end,
        body.time_zone,
    )


def load_json(raw: str | None, field_name: str, expected: type) -> Any:
    if raw is None or raw == "":
        return expected()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidFilter(f"'{field_name}' is not valid JSON", field_name=field_name) from None
    if not isinstance(value, expected):
        raise InvalidFilter(
            f"'{field_name}' must be a JSON {expected.__name__}", field_name=field_name
        )
    return value


# --- Dependencies ---


def range_params(
    site: SiteConfig = Depends(get_site),
    start_date: str | None = Query(None, description="Start datetime (ISO format)"),
    end_date: str | None = Query(None, description="End datetime (ISO format)"),
    preset: str | None = Query(None, description="Range preset, e.g. last_7_days"),
    past_minutes_start: int | None = Query(None, description="Window start, minutes ago"),
    past_minutes_end: int = Query(0, description="Window end, minutes ago"),
    time_zone: str | None = Query(None, description="IANA time zone (defaults to the site's)"),
) -> RangeSpec:
    return build_range(
        site,
        parse_datetime(start_date, "start_date") if start_date else None,
        parse_datetime(end_date, "end_date") if end_date else None,
        preset,
        past_minutes_start,
        past_minutes_end,
        time_zone,
    )


def filter_params(
    filters: str | None = Query(None, description="JSON list of filters"),
) -> tuple[FilterItem, ...]:
    return tuple(parse_filters(load_json(filters, "filters", list)))


# --- Metrics ---


@router.get("/metrics", response_model=MetricsResponse)
def get_metrics(
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    granularity: str | None = Query(None, description="Bucket width: minute ... year"),
    metrics: str | None = Query(None, description="Comma-separated metric names"),
    group_by: str | None = Query(None, description="Dimension to split by"),
    top_k: int | None = Query(None, description="Groups kept before folding into 'other'"),
    store: RawEventStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> MetricsResponse:
    """Time-bucketed metric series, optionally split by a dimension."""
    out = run_aggregate(
        AggregateInput(
            site_id=site.site_id,
            range=time_range,
            granularity=granularity or rules.buckets.default_granularity,
            metrics=tuple(m.strip() for m in metrics.split(",") if m.strip()) if metrics else (),
            filters=filters,
            group_by=group_by,
            top_k=top_k,
        ),
        store=store,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return MetricsResponse.model_validate(out.to_dict())


@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    metrics: str | None = Query(None, description="Comma-separated metric names"),
    group_by: str | None = Query(None, description="Dimension to break the range down by"),
    limit: int | None = Query(None, description="Values kept before folding into 'other'"),
    store: RawEventStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> OverviewResponse:
    """Metrics over the whole range, optionally broken down by a dimension."""
    out = run_overview(
        OverviewInput(
            site_id=site.site_id,
            range=time_range,
            metrics=tuple(m.strip() for m in metrics.split(",") if m.strip()) if metrics else (),
            filters=filters,
            group_by=group_by,
            limit=limit,
        ),
        store=store,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return OverviewResponse.model_validate(out.to_dict())


# --- Funnels ---


@router.post("/funnel", response_model=FunnelResponse)
def post_funnel(
    body: FunnelRequest = Body(...),
    site: SiteConfig = Depends(get_site),
    store: RawEventStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> FunnelResponse:
    """Per-step reached/dropped counts for an ad-hoc funnel."""
    out = run_funnel(
        FunnelInput(
            site_id=site.site_id,
            range=body_range(site, body),
            steps=parse_steps(body.steps),
            filters=tuple(parse_filters(body.filters)),
        ),
        store=store,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return FunnelResponse.model_validate(out.to_dict())


@router.post("/funnel/sessions", response_model=StepSessionsResponse)
def post_funnel_sessions(
    body: StepSessionsRequest = Body(...),
    site: SiteConfig = Depends(get_site),
    store: RawEventStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> StepSessionsResponse:
    """Sessions that reached (or dropped at) a funnel step."""
    out = run_step_sessions(
        StepSessionsInput(
            site_id=site.site_id,
            range=body_range(site, body),
            steps=parse_steps(body.steps),
            step_number=body.step_number,
            mode=body.mode,
            filters=tuple(parse_filters(body.filters)),
            page=body.page,
            page_size=body.page_size,
            cursor=body.cursor,
        ),
        store=store,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return StepSessionsResponse.model_validate(out.to_dict())


# --- Journeys ---


@router.get("/journeys", response_model=JourneysResponse)
def get_journeys(
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    steps: int | None = Query(None, description="Labels per path"),
    limit: int | None = Query(None, description="Number of ranked paths"),
    step_filters: str | None = Query(None, description='JSON object, e.g. {"2": "/pricing"}'),
    store: RawEventStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> JourneysResponse:
    """Most common first-N-step paths, plus sankey nodes and links."""
    out = run_journeys(
        JourneyInput(
            site_id=site.site_id,
            range=time_range,
            filters=filters,
            max_steps=steps,
            step_filters=load_json(step_filters, "step_filters", dict),
            limit=limit,
        ),
        store=store,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return JourneysResponse.model_validate(out.to_dict())


# --- Goals ---


@router.get("/goals", response_model=SiteGoalsResponse)
def get_goals(
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    page: int = Query(1, description="1-indexed page"),
    page_size: int = Query(10, description="Goals per page"),
    sort: str = Query("goal_id", description="goal_id, name or goal_type"),
    order: str = Query("asc", description="asc or desc"),
    store: RawEventStorePort = Depends(get_store),
    goals: GoalRegistryPort = Depends(get_goal_registry),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> SiteGoalsResponse:
    """Conversions for a page of the site's goals."""
    out = evaluate_site_goals(
        SiteGoalsInput(
            site_id=site.site_id,
            range=time_range,
            filters=filters,
            page=page,
            page_size=page_size,
            sort=sort,
            order=order,
        ),
        store=store,
        goals=goals,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return SiteGoalsResponse.model_validate(out.to_dict())


@router.get("/goals/{goal_id}", response_model=GoalResponse)
def get_goal(
    goal_id: int,
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    store: RawEventStorePort = Depends(get_store),
    goals: GoalRegistryPort = Depends(get_goal_registry),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> GoalResponse:
    """Conversions and conversion rate for one goal."""
    out = run_goal(
        GoalInput(site_id=site.site_id, goal_id=goal_id, range=time_range, filters=filters),
        store=store,
        goals=goals,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return GoalResponse.model_validate(out.to_dict())


@router.get("/goals/{goal_id}/sessions", response_model=GoalSessionsResponse)
def get_goal_sessions(
    goal_id: int,
    site: SiteConfig = Depends(get_site),
    time_range: RangeSpec = Depends(range_params),
    filters: tuple[FilterItem, ...] = Depends(filter_params),
    page: int = Query(1, description="1-indexed page"),
    page_size: int = Query(25, description="Sessions per page"),
    cursor: str | None = Query(None, description="next_cursor of the previous page"),
    store: RawEventStorePort = Depends(get_store),
    goals: GoalRegistryPort = Depends(get_goal_registry),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    token: CancellationToken = Depends(get_token),
) -> GoalSessionsResponse:
    """Sessions that converted on a goal, newest first."""
    out = run_goal_sessions(
        GoalSessionsInput(
            site_id=site.site_id,
            goal_id=goal_id,
            range=time_range,
            filters=filters,
            page=page,
            page_size=page_size,
            cursor=cursor,
        ),
        store=store,
        goals=goals,
        time_port=clock,
        rules=rules,
        token=token,
    )
    return GoalSessionsResponse.model_validate(out.to_dict())
