"""
Filter evaluator component.

Compiles filter specifications into a predicate usable against a single event
or pushed down to the raw event store as a query fragment.

Key behaviors:
- Operator/value-type combinations are checked at compile time (InvalidFilter)
- contains/not_contains are case-sensitive substring tests on strings;
  applied to a non-string property they fail with TypeMismatch
- in/not_in with an empty list are "always false"/"always true"
- A filter list is conjunctive; AnyOf items hold alternative groups

Invariants:
- Pure: compiling and testing never touch the store
- A missing field never equals anything (eq/in/contains false, negations true)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any
from urllib.parse import urlsplit

from eventlens.core.entities import Event, FunnelStep
from eventlens.core.errors import InvalidFilter, TypeMismatch
from eventlens.core.ports.events import QueryFragment
from eventlens.core.services.paths import path_matches

from .models import (
    OPERATOR_VALUE_TYPES,
    AnyOf,
    CompiledFilter,
    FieldRef,
    Filter,
    FilterItem,
    FilterOperator,
    ValueKind,
)

# --- Field access ---


def resolve_field(event: Event, field: FieldRef) -> Any:
    """Read a resolved field from an event; None when absent."""
    if field.is_property:
        return event.properties.get(field.name)
    if field.name == "pathname":
        return event.pathname
    if field.name == "hostname":
        if event.page_url and "://" in event.page_url:
            return urlsplit(event.page_url).hostname
        return None
    return getattr(event, field.name, None)


def event_value(event: Event, parameter: str) -> Any:
    """Read a filter parameter (or group-by dimension) from an event."""
    return resolve_field(event, FieldRef.parse(parameter))


# --- Value typing ---


def value_kind(value: object) -> ValueKind | None:
    """Classify a filter value into its tagged variant."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        if all(value_kind(v) in ("string", "number", "boolean") for v in value):
            return "list"
    return None


def scalar_equal(left: object, right: object) -> bool:
    """Type-strict scalar equality (booleans never equal numbers)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


# --- Compilation ---


def compile_filter(flt: Filter) -> CompiledFilter:
    """
    Validate a single filter.

    Event properties carry no declared schema, so a string operator applied
    to a non-string property can only be detected per event: ``test`` raises
    TypeMismatch on the first such event.

    Raises:
        InvalidFilter: Unknown operator or unsupported value type.
    """
    if not flt.parameter:
        raise InvalidFilter("Filter parameter is required", field_name="parameter")

    try:
        operator = FilterOperator(flt.operator)
    except ValueError:
        raise InvalidFilter(
            f"Unsupported filter operator: {flt.operator}",
            field_name=flt.parameter,
        ) from None

    kind = value_kind(flt.value)
    if kind is None or kind not in OPERATOR_VALUE_TYPES[operator]:
        raise InvalidFilter(
            f"Operator '{operator.value}' does not accept a {kind or type(flt.value).__name__} value",
            field_name=flt.parameter,
        )

    field = FieldRef.parse(flt.parameter)
    if not field.is_property and kind not in ("string", "list"):
        raise InvalidFilter(
            f"Field '{flt.parameter}' is a string; got a {kind} value",
            field_name=flt.parameter,
        )

    value = tuple(flt.value) if kind == "list" else flt.value  # type: ignore[arg-type]
    return CompiledFilter(field=field, operator=operator, value=value, kind=kind)


def _test_one(cf: CompiledFilter, event: Event) -> bool:
    actual = resolve_field(event, cf.field)
    op = cf.operator

    if op is FilterOperator.IN:
        return actual is not None and any(scalar_equal(actual, v) for v in cf.value)  # type: ignore[attr-defined]
    if op is FilterOperator.NOT_IN:
        return actual is None or not any(scalar_equal(actual, v) for v in cf.value)  # type: ignore[attr-defined]

    if actual is None:
        return op in (FilterOperator.NE, FilterOperator.NOT_CONTAINS)

    if op is FilterOperator.EQ:
        return scalar_equal(actual, cf.value)
    if op is FilterOperator.NE:
        return not scalar_equal(actual, cf.value)

    if not isinstance(actual, str):
        raise TypeMismatch(
            f"Operator '{op.value}' requires a string; '{cf.field.name}' is {type(actual).__name__}",
            field_name=cf.field.name,
        )
    if op is FilterOperator.CONTAINS:
        return cf.value in actual  # type: ignore[operator]
    return cf.value not in actual  # type: ignore[operator]


# --- Query fragments ---


def _column_sql(field: FieldRef) -> tuple[str, tuple[object, ...]]:
    """Column expression and the parameters it binds."""
    if field.is_property:
        return "json_extract(properties, ?)", (_json_path(field.name),)
    return field.name, ()


def _json_path(key: str) -> str:
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


def _sql_value(value: object) -> object:
    return int(value) if isinstance(value, bool) else value


def _property_match(path: str, value: object) -> QueryFragment:
    """Type-strict equality on a JSON property (true never equals 1)."""
    if isinstance(value, bool):
        return QueryFragment("json_type(properties, ?) IS ?", (path, "true" if value else "false"))
    json_types = "'integer', 'real'" if isinstance(value, (int, float)) else "'text'"
    return QueryFragment(
        f"(json_type(properties, ?) IN ({json_types}) AND json_extract(properties, ?) = ?)",
        (path, path, value),
    )


def _property_fragment(cf: CompiledFilter, path: str) -> QueryFragment:
    """Equality-family operators on a property; results are never NULL."""
    op = cf.operator
    values = cf.value if op in (FilterOperator.IN, FilterOperator.NOT_IN) else (cf.value,)
    matches = [_property_match(path, v) for v in values]  # type: ignore[union-attr]
    if not matches:
        return QueryFragment("0" if op is FilterOperator.IN else "1")
    any_match = _join(matches, "OR", "0")
    if op in (FilterOperator.EQ, FilterOperator.IN):
        return QueryFragment(f"COALESCE(({any_match.sql}), 0)", any_match.params)
    return QueryFragment(f"NOT COALESCE(({any_match.sql}), 0)", any_match.params)


def _fragment_one(cf: CompiledFilter) -> QueryFragment:
    op = cf.operator
    col, col_params = _column_sql(cf.field)

    if cf.field.is_property and op not in (FilterOperator.CONTAINS, FilterOperator.NOT_CONTAINS):
        return _property_fragment(cf, col_params[0])  # type: ignore[arg-type]

    if op in (FilterOperator.IN, FilterOperator.NOT_IN):
        values = tuple(_sql_value(v) for v in cf.value)  # type: ignore[attr-defined]
        if not values:
            return QueryFragment("0" if op is FilterOperator.IN else "1")
        placeholders = ", ".join("?" for _ in values)
        if op is FilterOperator.IN:
            return QueryFragment(f"{col} IN ({placeholders})", col_params + values)
        return QueryFragment(
            f"({col} IS NULL OR {col} NOT IN ({placeholders}))",
            col_params + col_params + values,
        )

    if op is FilterOperator.EQ:
        return QueryFragment(f"{col} = ?", col_params + (_sql_value(cf.value),))
    if op is FilterOperator.NE:
        return QueryFragment(
            f"({col} IS NULL OR {col} != ?)",
            col_params + col_params + (_sql_value(cf.value),),
        )

    # contains / not_contains: non-text properties pass through so the
    # per-event test can raise TypeMismatch for them
    if cf.field.is_property:
        path = col_params[0]
        if op is FilterOperator.CONTAINS:
            return QueryFragment(
                "(json_type(properties, ?) != 'text' OR instr(json_extract(properties, ?), ?) > 0)",
                (path, path, cf.value),
            )
        return QueryFragment(
            "(json_type(properties, ?) IS NOT 'text' OR instr(json_extract(properties, ?), ?) = 0)",
            (path, path, cf.value),
        )
    if op is FilterOperator.CONTAINS:
        return QueryFragment(f"instr({col}, ?) > 0", (cf.value,))
    return QueryFragment(f"({col} IS NULL OR instr({col}, ?) = 0)", (cf.value,))


def _join(fragments: Sequence[QueryFragment], glue: str, empty: str) -> QueryFragment:
    if not fragments:
        return QueryFragment(empty)
    if len(fragments) == 1:
        return fragments[0]
    sql = f" {glue} ".join(f"({f.sql})" for f in fragments)
    params: tuple[object, ...] = ()
    for f in fragments:
        params += f.params
    return QueryFragment(sql, params)


# --- Predicate ---


class Predicate:
    """Compiled conjunction of filters and alternative groups."""

    def __init__(
        self,
        filters: Sequence[CompiledFilter] = (),
        alternatives: Sequence[Sequence[Sequence[CompiledFilter]]] = (),
    ) -> None:
        self._filters = tuple(filters)
        self._alternatives = tuple(tuple(tuple(g) for g in alt) for alt in alternatives)

    @property
    def is_empty(self) -> bool:
        return not self._filters and not self._alternatives

    def test(self, event: Event) -> bool:
        for cf in self._filters:
            if not _test_one(cf, event):
                return False
        for groups in self._alternatives:
            if not any(all(_test_one(cf, event) for cf in group) for group in groups):
                return False
        return True

    def to_query_fragment(self) -> QueryFragment:
        parts = [_fragment_one(cf) for cf in self._filters]
        for groups in self._alternatives:
            group_parts = [_join([_fragment_one(cf) for cf in g], "AND", "1") for g in groups]
            parts.append(_join(group_parts, "OR", "0"))
        return _join(parts, "AND", "1")

    def __and__(self, other: Predicate) -> Predicate:
        return Predicate(
            self._filters + other._filters,
            self._alternatives + other._alternatives,
        )


MATCH_ALL = Predicate()


def compile_filters(filters: Iterable[FilterItem] | None) -> Predicate:
    """
    Compile a filter list into a Predicate.

    Raises:
        InvalidFilter: Malformed filter, empty alternative set.
    """
    compiled: list[CompiledFilter] = []
    alternatives: list[list[list[CompiledFilter]]] = []

    for item in filters or ():
        if isinstance(item, AnyOf):
            if not item.groups:
                raise InvalidFilter("Alternative filter group must not be empty")
            alternatives.append(
                [[compile_filter(f) for f in group] for group in item.groups]
            )
        elif isinstance(item, Filter):
            compiled.append(compile_filter(item))
        else:
            raise InvalidFilter(f"Unsupported filter item: {type(item).__name__}")

    return Predicate(compiled, alternatives)


def parse_filters(raw: Iterable[Mapping[str, Any]] | None) -> list[FilterItem]:
    """
    Parse JSON-shaped filters.

    Each item is either ``{parameter, operator, value}`` or
    ``{"any_of": [[filter, ...], ...]}``.
    """
    items: list[FilterItem] = []
    for entry in raw or ():
        if not isinstance(entry, Mapping):
            raise InvalidFilter("Each filter must be an object")
        if "any_of" in entry:
            groups = entry["any_of"]
            if not isinstance(groups, list):
                raise InvalidFilter("'any_of' must be a list of filter lists")
            items.append(AnyOf(groups=tuple(tuple(_parse_one(f) for f in g) for g in groups)))
        else:
            items.append(_parse_one(entry))
    return items


def _parse_one(entry: Any) -> Filter:
    if not isinstance(entry, Mapping):
        raise InvalidFilter("Each filter must be an object")
    try:
        return Filter.from_dict(entry)
    except KeyError as e:
        raise InvalidFilter(f"Filter is missing '{e.args[0]}'") from None


# --- Funnel step predicates ---


class StepPredicate:
    """Predicate for a funnel step (page pattern or event name, plus filters)."""

    def __init__(self, step: FunnelStep) -> None:
        if step.type not in ("page", "event"):
            raise InvalidFilter(f"Unsupported step type: {step.type}", field_name="type")
        if not step.value:
            raise InvalidFilter("Step value is required", field_name="value")
        self._step = step
        self._filters = compile_filters(step.filters)

    def test(self, event: Event) -> bool:
        if self._step.type == "page":
            if not event.is_pageview or not path_matches(self._step.value, event.pathname):
                return False
        elif event.name != self._step.value:
            return False
        return self._filters.test(event)
