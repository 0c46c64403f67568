"""
Unit tests for the Funnels component.

Covers the step walk (ordering, first touch, tie-breaks, windows), count
invariants, step session lists and cancellation.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from eventlens.adapters.memory_store import InMemoryEventStore
from eventlens.components.filters.component import MATCH_ALL
from eventlens.core.entities import Event, Filter, FunnelStep, TimeRange
from eventlens.core.errors import Cancelled, InvalidFunnel
from eventlens.core.ports.events import ScanSpec
from eventlens.core.services.execution import CancellationToken
from eventlens.rules.models import ConcurrencyRules, Rules

from ..component import (
    evaluate_funnel,
    list_step_sessions,
    parse_step,
    run_funnel,
)
from ..models import FunnelInput

T0 = datetime(2024, 6, 15, 9, 0, tzinfo=UTC)
RANGE = TimeRange(start=datetime(2024, 6, 15, tzinfo=UTC), end=datetime(2024, 6, 16, tzinfo=UTC))

PRICING = FunnelStep(value="/pricing", type="page")
SIGNUP = FunnelStep(
    value="click",
    name="signup-button",
    filters=(Filter("button", "eq", "signup-button"),),
)
WELCOME = FunnelStep(value="/welcome", type="page")
STEPS = (PRICING, SIGNUP, WELCOME)

SEQUENTIAL = Rules(concurrency=ConcurrencyRules(max_workers=1))


# --- Helpers ---


def pageview(session_id: str, seconds: int, path: str, seq: int = 0) -> Event:
    return Event(
        session_id=session_id,
        user_id=f"u-{session_id}",
        site_id=1,
        name="pageview",
        timestamp=T0 + timedelta(seconds=seconds),
        sequence_no=seq,
        page_url=path,
    )


def click(session_id: str, seconds: int, seq: int = 0, **properties: Any) -> Event:
    return Event(
        session_id=session_id,
        user_id=f"u-{session_id}",
        site_id=1,
        name="click",
        timestamp=T0 + timedelta(seconds=seconds),
        sequence_no=seq,
        properties=properties or {"button": "signup-button"},
    )


def scenario_events() -> list[Event]:
    """100 sessions: 40 see pricing, 25 of those sign up, 10 of those land on welcome."""
    events: list[Event] = []
    for n in range(100):
        sid = f"s{n:03d}"
        events.append(pageview(sid, n, "/"))
        if n < 40:
            events.append(pageview(sid, n + 100, "/pricing"))
        if n < 25:
            events.append(click(sid, n + 200))
        if n < 10:
            events.append(pageview(sid, n + 300, "/welcome"))
    return events


class FakeTimePort:
    """Fake time port for testing."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime(2024, 6, 20, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now


class CancellingStore(InMemoryEventStore):
    """Cancels the query token after yielding a number of events."""

    def __init__(self, events: list[Event], token: CancellationToken, after: int) -> None:
        super().__init__(events)
        self.token = token
        self.after = after
        self.closed = False

    def scan(self, spec: ScanSpec) -> Iterator[Event]:
        return self._stream(super().scan(spec))

    def _stream(self, source: Iterator[Event]) -> Iterator[Event]:
        try:
            for i, event in enumerate(source):
                if i == self.after:
                    self.token.cancel()
                yield event
        finally:
            self.closed = True


# --- Counts ---


class TestFunnelCounts:
    """Reached/dropped counts and their invariants."""

    def test_scenario_counts(self) -> None:
        store = InMemoryEventStore(scenario_events())
        results = evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1)

        assert [r.reached for r in results] == [40, 25, 10]
        assert [r.dropped for r in results] == [15, 15, 10]
        assert [r.step_name for r in results] == ["/pricing", "signup-button", "/welcome"]

    def test_count_invariants(self) -> None:
        store = InMemoryEventStore(scenario_events())
        results = evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1)

        for upper, lower in zip(results, results[1:]):
            assert upper.reached >= lower.reached
            assert upper.reached == lower.reached + upper.dropped

    def test_rates(self) -> None:
        store = InMemoryEventStore(scenario_events())
        results = evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1)

        assert results[0].conversion_rate == 1.0
        assert results[1].conversion_rate == 25 / 40
        assert results[2].step_conversion_rate == 10 / 25

    def test_nobody_entered_gives_null_rates(self) -> None:
        store = InMemoryEventStore([pageview("s1", 0, "/")])
        results = evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1)

        assert [r.reached for r in results] == [0, 0, 0]
        assert results[0].conversion_rate is None
        assert results[1].step_conversion_rate is None

    def test_other_sites_are_not_scanned(self) -> None:
        events = scenario_events() + [
            Event(
                session_id="s999",
                user_id="u",
                site_id=2,
                name="pageview",
                timestamp=T0,
                page_url="/pricing",
            )
        ]
        store = InMemoryEventStore(events)
        results = evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1)
        assert results[0].reached == 40

    def test_parallel_batches_match_sequential(self) -> None:
        store = InMemoryEventStore(scenario_events())
        parallel = Rules(concurrency=ConcurrencyRules(max_workers=4, session_batch_size=7))
        assert evaluate_funnel(
            STEPS, RANGE, MATCH_ALL, store=store, site_id=1, rules=parallel
        ) == evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1, rules=SEQUENTIAL)

    def test_fewer_than_two_steps(self) -> None:
        store = InMemoryEventStore(scenario_events())
        with pytest.raises(InvalidFunnel):
            evaluate_funnel((PRICING,), RANGE, MATCH_ALL, store=store, site_id=1)
        assert store.scan_count == 0


# --- Walk semantics ---


class TestWalk:
    """Ordering, first touch, tie-break and window rules."""

    def _reached(self, events: list[Event], steps: tuple[FunnelStep, ...] = STEPS) -> list[int]:
        store = InMemoryEventStore(events)
        return [r.reached for r in evaluate_funnel(steps, RANGE, MATCH_ALL, store=store, site_id=1)]

    def test_out_of_order_does_not_count(self) -> None:
        assert self._reached([click("s1", 0), pageview("s1", 10, "/pricing")]) == [1, 0, 0]

    def test_same_event_cannot_satisfy_two_steps(self) -> None:
        steps = (PRICING, FunnelStep(value="/pricing", type="page"))
        assert self._reached([pageview("s1", 0, "/pricing")], steps) == [1, 0]

    def test_equal_timestamps_follow_sequence_no(self) -> None:
        in_order = [pageview("s1", 0, "/pricing", seq=0), click("s1", 0, seq=1)]
        reversed_order = [pageview("s1", 0, "/pricing", seq=1), click("s1", 0, seq=0)]
        assert self._reached(in_order) == [1, 1, 0]
        assert self._reached(reversed_order) == [1, 0, 0]

    def test_window_bounds_time_since_previous_step(self) -> None:
        steps = (PRICING, FunnelStep(value="click", window=timedelta(seconds=60)))
        assert self._reached([pageview("s1", 0, "/pricing"), click("s1", 30)], steps) == [1, 1]
        assert self._reached([pageview("s1", 0, "/pricing"), click("s1", 120)], steps) == [1, 0]

    def test_window_measured_from_first_touch(self) -> None:
        steps = (PRICING, FunnelStep(value="click", window=timedelta(seconds=60)))
        events = [
            pageview("s1", 0, "/pricing"),
            pageview("s1", 100, "/pricing"),
            click("s1", 130),
        ]
        assert self._reached(events, steps) == [1, 0]

    def test_no_window_means_only_ordering(self) -> None:
        events = [pageview("s1", 0, "/pricing"), click("s1", 50_000)]
        assert self._reached(events) == [1, 1, 0]

    def test_step_filters_are_anded(self) -> None:
        events = [pageview("s1", 0, "/pricing"), click("s1", 10, button="login")]
        assert self._reached(events) == [1, 0, 0]


# --- Step sessions ---


class TestStepSessions:
    """Session lists match the step counts and paginate stably."""

    @pytest.fixture
    def store(self) -> InMemoryEventStore:
        return InMemoryEventStore(scenario_events())

    def test_reached_total_matches_count(self, store: InMemoryEventStore) -> None:
        out = list_step_sessions(
            STEPS, RANGE, MATCH_ALL, 2, "reached", store=store, site_id=1, page_size=10
        )
        assert out.page.total_count == 25
        assert len(out.page.items) == 10
        assert out.page.next_cursor is not None

    def test_dropped_total_matches_count(self, store: InMemoryEventStore) -> None:
        out = list_step_sessions(STEPS, RANGE, MATCH_ALL, 1, "dropped", store=store, site_id=1)
        assert out.page.total_count == 15
        assert {row.session_id for row in out.page.items} == {f"s{n:03d}" for n in range(25, 40)}

    def test_newest_sessions_first(self, store: InMemoryEventStore) -> None:
        out = list_step_sessions(STEPS, RANGE, MATCH_ALL, 3, "reached", store=store, site_id=1)
        starts = [row.session_start for row in out.page.items]
        assert starts == sorted(starts, reverse=True)
        assert out.page.items[0].session_id == "s009"
        assert out.page.items[0].entry_page == "/"
        assert out.page.items[0].exit_page == "/welcome"

    def test_cursor_resumes(self, store: InMemoryEventStore) -> None:
        first = list_step_sessions(
            STEPS, RANGE, MATCH_ALL, 2, "reached", store=store, site_id=1, page_size=20
        )
        second = list_step_sessions(
            STEPS,
            RANGE,
            MATCH_ALL,
            2,
            "reached",
            store=store,
            site_id=1,
            page_size=20,
            cursor=first.page.next_cursor,
        )
        ids = [r.session_id for r in first.page.items] + [r.session_id for r in second.page.items]
        assert len(ids) == len(set(ids)) == 25
        assert second.page.next_cursor is None

    @pytest.mark.parametrize("step_number,mode", [(0, "reached"), (4, "reached"), (1, "entered")])
    def test_invalid_step_query(
        self, store: InMemoryEventStore, step_number: int, mode: str
    ) -> None:
        with pytest.raises(InvalidFunnel):
            list_step_sessions(STEPS, RANGE, MATCH_ALL, step_number, mode, store=store, site_id=1)
        assert store.scan_count == 0


# --- Cancellation ---


class TestCancellation:
    """A cancelled evaluation raises; it never returns partial counts."""

    def test_cancel_mid_scan(self) -> None:
        token = CancellationToken()
        store = CancellingStore(scenario_events(), token, after=50)

        with pytest.raises(Cancelled):
            evaluate_funnel(
                STEPS, RANGE, MATCH_ALL, store=store, site_id=1, rules=SEQUENTIAL, token=token
            )
        assert store.closed

    def test_cancel_mid_scan_with_workers(self) -> None:
        token = CancellationToken()
        store = CancellingStore(scenario_events(), token, after=50)
        rules = Rules(concurrency=ConcurrencyRules(max_workers=4, session_batch_size=5))

        with pytest.raises(Cancelled):
            evaluate_funnel(STEPS, RANGE, MATCH_ALL, store=store, site_id=1, rules=rules, token=token)
        assert store.closed

    def test_expired_deadline(self) -> None:
        token = CancellationToken(timeout_seconds=0)
        with pytest.raises(Cancelled):
            run_funnel(
                FunnelInput(site_id=1, range=RANGE, steps=STEPS),
                store=InMemoryEventStore(scenario_events()),
                time_port=FakeTimePort(),
                token=token,
            )


# --- Parsing ---


class TestParseStep:
    """JSON-shaped steps."""

    def test_page_step_with_window(self) -> None:
        step = parse_step({"type": "page", "value": "/blog/*", "window_seconds": 30})
        assert step.type == "page"
        assert step.window == timedelta(seconds=30)

    def test_event_step_with_filters(self) -> None:
        step = parse_step(
            {
                "type": "event",
                "value": "click",
                "filters": [{"parameter": "button", "operator": "eq", "value": "buy"}],
            }
        )
        assert step.filters == (Filter("button", "eq", "buy"),)

    @pytest.mark.parametrize(
        "data",
        [
            {"type": "scroll", "value": "x"},
            {"type": "page", "value": ""},
            {"type": "event", "value": "click", "window_seconds": -5},
            {"type": "event", "value": "click", "filters": [{"parameter": "x"}]},
        ],
    )
    def test_malformed_step(self, data: dict[str, Any]) -> None:
        with pytest.raises(InvalidFunnel):
            parse_step(data)
