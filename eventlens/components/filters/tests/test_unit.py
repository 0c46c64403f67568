"""
Unit tests for the Filters component.

Covers compile-time validation, per-event evaluation and query fragments.
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

import pytest

from eventlens.core.entities import AnyOf, Event, Filter, FunnelStep
from eventlens.core.errors import InvalidFilter, TypeMismatch

from ..component import (
    StepPredicate,
    compile_filter,
    compile_filters,
    event_value,
    parse_filters,
    scalar_equal,
)

# --- Helpers ---


def make_event(
    name: str = "pageview",
    page_url: str | None = "/pricing",
    **properties: object,
) -> Event:
    return Event(
        session_id="s1",
        user_id="u1",
        site_id=1,
        name=name,
        timestamp=datetime(2024, 6, 15, 12, 0, tzinfo=UTC),
        properties=properties,  # type: ignore[arg-type]
        page_url=page_url,
    )


# --- Compile-time validation ---


class TestCompileValidation:
    """Unsupported operator/value combinations fail before any scan."""

    def test_unknown_operator_rejected(self) -> None:
        with pytest.raises(InvalidFilter) as exc:
            compile_filter(Filter("country", "starts_with", "U"))
        assert exc.value.code == "InvalidFilter"

    def test_contains_requires_string_value(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filter(Filter("plan", "contains", 5))

    def test_in_requires_list_value(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filter(Filter("country", "in", "US"))

    def test_eq_rejects_list_value(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filter(Filter("country", "eq", ["US"]))

    def test_top_level_field_requires_string(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filter(Filter("pathname", "eq", 3))

    def test_empty_alternatives_rejected(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filters([AnyOf(groups=())])

    def test_empty_parameter_rejected(self) -> None:
        with pytest.raises(InvalidFilter):
            compile_filter(Filter("", "eq", "x"))


# --- Evaluation ---


class TestPredicateEvaluation:
    """Per-event evaluation semantics."""

    def test_eq_and_ne_on_property(self) -> None:
        event = make_event(country="US")
        assert compile_filters([Filter("country", "eq", "US")]).test(event)
        assert not compile_filters([Filter("country", "ne", "US")]).test(event)

    def test_filters_are_conjunctive(self) -> None:
        event = make_event(country="US", device="mobile")
        predicate = compile_filters(
            [Filter("country", "eq", "US"), Filter("device", "eq", "desktop")]
        )
        assert not predicate.test(event)

    def test_contains_is_case_sensitive(self) -> None:
        event = make_event(title="Pricing Plans")
        assert compile_filters([Filter("title", "contains", "Plans")]).test(event)
        assert not compile_filters([Filter("title", "contains", "plans")]).test(event)

    def test_not_contains(self) -> None:
        event = make_event(title="Pricing Plans")
        assert compile_filters([Filter("title", "not_contains", "Blog")]).test(event)

    def test_contains_on_numeric_property_is_type_mismatch(self) -> None:
        predicate = compile_filters([Filter("amount", "contains", "1")])
        with pytest.raises(TypeMismatch):
            predicate.test(make_event(amount=12))

    def test_empty_in_is_always_false(self) -> None:
        predicate = compile_filters([Filter("country", "in", [])])
        assert not predicate.test(make_event(country="US"))
        assert not predicate.test(make_event())

    def test_empty_not_in_is_always_true(self) -> None:
        predicate = compile_filters([Filter("country", "not_in", [])])
        assert predicate.test(make_event(country="US"))
        assert predicate.test(make_event())

    def test_in_matches_any_listed_value(self) -> None:
        predicate = compile_filters([Filter("country", "in", ["US", "CA"])])
        assert predicate.test(make_event(country="CA"))
        assert not predicate.test(make_event(country="DE"))

    def test_missing_field_semantics(self) -> None:
        event = make_event()
        assert not compile_filters([Filter("country", "eq", "US")]).test(event)
        assert compile_filters([Filter("country", "ne", "US")]).test(event)
        assert not compile_filters([Filter("country", "contains", "U")]).test(event)
        assert compile_filters([Filter("country", "not_contains", "U")]).test(event)

    def test_booleans_never_equal_numbers(self) -> None:
        assert not scalar_equal(True, 1)
        assert scalar_equal(1, 1.0)
        assert not compile_filters([Filter("flag", "eq", 1)]).test(make_event(flag=True))

    def test_top_level_fields(self) -> None:
        event = make_event(name="pageview", page_url="https://example.com/pricing/?a=1")
        assert event_value(event, "pathname") == "/pricing"
        assert event_value(event, "hostname") == "example.com"
        assert compile_filters([Filter("event_name", "eq", "pageview")]).test(event)

    def test_properties_prefix(self) -> None:
        event = Event(
            session_id="s1",
            user_id="u1",
            site_id=1,
            name="signup",
            timestamp=datetime(2024, 6, 15, 12, 0, tzinfo=UTC),
            properties={"name": "ignored"},
        )
        assert event_value(event, "properties.name") == "ignored"
        assert event_value(event, "name") == "signup"

    def test_any_of_groups(self) -> None:
        predicate = compile_filters(
            [
                AnyOf(
                    groups=(
                        (Filter("country", "eq", "US"),),
                        (Filter("country", "eq", "CA"), Filter("device", "eq", "mobile")),
                    )
                )
            ]
        )
        assert predicate.test(make_event(country="US"))
        assert predicate.test(make_event(country="CA", device="mobile"))
        assert not predicate.test(make_event(country="CA", device="desktop"))

    def test_empty_filter_list_matches_everything(self) -> None:
        predicate = compile_filters(None)
        assert predicate.is_empty
        assert predicate.test(make_event())


# --- Parsing ---


class TestParseFilters:
    """JSON-shaped filter parsing."""

    def test_parse_plain_and_any_of(self) -> None:
        items = parse_filters(
            [
                {"parameter": "country", "operator": "eq", "value": "US"},
                {"any_of": [[{"parameter": "device", "operator": "eq", "value": "mobile"}]]},
            ]
        )
        assert items[0] == Filter("country", "eq", "US")
        assert isinstance(items[1], AnyOf)

    def test_missing_key_is_invalid_filter(self) -> None:
        with pytest.raises(InvalidFilter):
            parse_filters([{"parameter": "country"}])

    def test_non_object_is_invalid_filter(self) -> None:
        with pytest.raises(InvalidFilter):
            parse_filters(["country=US"])  # type: ignore[list-item]


# --- Step predicates ---


class TestStepPredicate:
    """Funnel step matching."""

    def test_page_step_uses_path_pattern(self) -> None:
        step = StepPredicate(FunnelStep(value="/blog/*", type="page"))
        assert step.test(make_event(page_url="/blog/intro"))
        assert not step.test(make_event(page_url="/blog/intro/part-2"))
        assert not step.test(make_event(name="click", page_url="/blog/intro"))

    def test_double_star_matches_suffix(self) -> None:
        step = StepPredicate(FunnelStep(value="/docs/**", type="page"))
        assert step.test(make_event(page_url="/docs/a/b/c"))

    def test_event_step_with_property_filter(self) -> None:
        step = StepPredicate(
            FunnelStep(value="click", filters=(Filter("button", "eq", "signup"),))
        )
        assert step.test(make_event(name="click", button="signup"))
        assert not step.test(make_event(name="click", button="login"))

    def test_unknown_step_type_rejected(self) -> None:
        with pytest.raises(InvalidFilter):
            StepPredicate(FunnelStep(value="x", type="scroll"))  # type: ignore[arg-type]


# --- Query fragments ---


class TestQueryFragment:
    """Fragments select the same rows as per-event evaluation."""

    @pytest.fixture
    def conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE events (id INTEGER, name TEXT, pathname TEXT, properties TEXT)")
        conn.executemany(
            "INSERT INTO events VALUES (?, ?, ?, ?)",
            [
                (1, "pageview", "/pricing", '{"country": "US", "plan": "pro"}'),
                (2, "pageview", "/blog", '{"country": "CA"}'),
                (3, "click", None, '{"country": "DE", "plan": "free"}'),
                (4, "click", None, "{}"),
            ],
        )
        return conn

    def _ids(self, conn: sqlite3.Connection, filters: list[Filter]) -> set[int]:
        fragment = compile_filters(filters).to_query_fragment()
        rows = conn.execute(f"SELECT id FROM events WHERE {fragment.sql}", fragment.params)
        return {r[0] for r in rows}

    def test_eq_on_property(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, [Filter("country", "eq", "US")]) == {1}

    def test_ne_includes_missing(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, [Filter("plan", "ne", "pro")]) == {2, 3, 4}

    def test_in_and_not_in(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, [Filter("country", "in", ["US", "CA"])]) == {1, 2}
        assert self._ids(conn, [Filter("country", "not_in", ["US", "CA"])]) == {3, 4}

    def test_empty_lists(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, [Filter("country", "in", [])]) == set()
        assert self._ids(conn, [Filter("country", "not_in", [])]) == {1, 2, 3, 4}

    def test_contains_on_column(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, [Filter("pathname", "contains", "pri")]) == {1}
        assert self._ids(conn, [Filter("pathname", "not_contains", "pri")]) == {2, 3, 4}

    def test_empty_predicate(self, conn: sqlite3.Connection) -> None:
        assert self._ids(conn, []) == {1, 2, 3, 4}

    def test_booleans_and_numbers_never_equal(self, conn: sqlite3.Connection) -> None:
        conn.executemany(
            "INSERT INTO events VALUES (?, ?, ?, ?)",
            [
                (5, "click", None, '{"flag": 1}'),
                (6, "click", None, '{"flag": true}'),
                (7, "click", None, '{"flag": "1"}'),
            ],
        )
        assert self._ids(conn, [Filter("flag", "eq", True)]) == {6}
        assert self._ids(conn, [Filter("flag", "ne", True)]) == {1, 2, 3, 4, 5, 7}
        assert self._ids(conn, [Filter("flag", "eq", 1)]) == {5}
        assert self._ids(conn, [Filter("flag", "in", [True, "1"])]) == {6, 7}
        assert self._ids(conn, [Filter("flag", "not_in", [1])]) == {1, 2, 3, 4, 6, 7}
