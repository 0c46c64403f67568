from datetime import datetime
from typing import Any

from pydantic import BaseModel


# --- Errors ---
class ErrorBody(BaseModel):
    kind: str
    message: str
    field: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


# --- Requests ---
class RangeModel(BaseModel):
    """Absolute bounds, a preset, or a past-minutes window (first one set wins)."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    preset: str | None = None
    past_minutes_start: int | None = None
    past_minutes_end: int = 0
    time_zone: str | None = None


class FunnelRequest(RangeModel):
    # Steps and filters keep their JSON shape; the engine validates them
    steps: list[dict[str, Any]]
    filters: list[dict[str, Any]] = []


class StepSessionsRequest(FunnelRequest):
    step_number: int
    mode: str = "reached"
    page: int = 1
    page_size: int = 25
    cursor: str | None = None


# --- Metrics ---
class BucketResponse(BaseModel):
    start: str
    end: str
    label: str
    values: dict[str, int | float]
    groups: dict[str, dict[str, int | float]] | None = None


class MetricsResponse(BaseModel):
    start: str
    end: str
    time_zone: str
    granularity: str
    metrics: list[str]
    group_by: str | None = None
    groups: list[str] = []
    buckets: list[BucketResponse]


class GroupShareResponse(BaseModel):
    value: str
    values: dict[str, int | float]
    sessions: int
    share: float


class OverviewResponse(BaseModel):
    start: str
    end: str
    time_zone: str
    values: dict[str, int | float]
    group_by: str | None = None
    breakdown: list[GroupShareResponse] = []


# --- Funnels ---
class StepResultResponse(BaseModel):
    step_number: int
    step_name: str
    reached: int
    dropped: int
    conversion_rate: float | None = None
    step_conversion_rate: float | None = None


class FunnelResponse(BaseModel):
    start: str
    end: str
    time_zone: str
    entered: int
    reached: list[int]
    dropped: list[int]
    steps: list[StepResultResponse]


# --- Sessions ---
class SessionSummaryResponse(BaseModel):
    session_id: str
    user_id: str
    session_start: str
    session_end: str
    duration_seconds: float
    entry_page: str | None = None
    exit_page: str | None = None
    pageviews: int
    events: int


class PageFields(BaseModel):
    total_count: int
    page_number: int
    page_size: int
    next_cursor: str | None = None


class StepSessionsResponse(PageFields):
    step_number: int
    mode: str
    items: list[SessionSummaryResponse]


class GoalSessionsResponse(PageFields):
    goal_id: int
    items: list[SessionSummaryResponse]


# --- Journeys ---
class JourneyPathResponse(BaseModel):
    path: list[str]
    count: int


class JourneyNodeResponse(BaseModel):
    position: int
    label: str
    count: int


class JourneyLinkResponse(BaseModel):
    position: int
    source: str
    target: str
    count: int


class JourneysResponse(BaseModel):
    start: str
    end: str
    time_zone: str
    max_steps: int
    total_sessions: int
    paths: list[JourneyPathResponse]
    nodes: list[JourneyNodeResponse]
    links: list[JourneyLinkResponse]


# --- Goals ---
class GoalResponse(BaseModel):
    goal_id: int
    site_id: int
    name: str | None = None
    goal_type: str
    conversions: int
    total_sessions: int
    conversion_rate: float | None = None


class SiteGoalsResponse(PageFields):
    start: str
    end: str
    time_zone: str
    items: list[GoalResponse]
