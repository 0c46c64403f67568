"""
Filter evaluator models.

The value of a filter is a tagged variant: string, number, boolean or a list
of scalars. Which variants an operator accepts is fixed by ``OPERATOR_VALUE_TYPES``
and checked when filters are compiled, never per event.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from eventlens.core.entities import AnyOf, Filter, FilterItem, FilterOperator

ValueKind = Literal["string", "number", "boolean", "list"]

# operator -> value kinds it accepts
OPERATOR_VALUE_TYPES: dict[FilterOperator, frozenset[str]] = {
    FilterOperator.EQ: frozenset({"string", "number", "boolean"}),
    FilterOperator.NE: frozenset({"string", "number", "boolean"}),
    FilterOperator.CONTAINS: frozenset({"string"}),
    FilterOperator.NOT_CONTAINS: frozenset({"string"}),
    FilterOperator.IN: frozenset({"list"}),
    FilterOperator.NOT_IN: frozenset({"list"}),
}

# Top-level event fields and the storage column behind each; all are strings
EVENT_FIELDS: dict[str, str] = {
    "event_name": "name",
    "name": "name",
    "pathname": "pathname",
    "page_url": "page_url",
    "hostname": "hostname",
    "referrer": "referrer",
    "user_id": "user_id",
    "session_id": "session_id",
}

PROPERTY_PREFIX = "properties."


@dataclass(frozen=True)
class FieldRef:
    """Resolved filter parameter: a top-level column or a property key."""

    name: str
    is_property: bool

    @classmethod
    def parse(cls, parameter: str) -> FieldRef:
        if parameter.startswith(PROPERTY_PREFIX):
            return cls(name=parameter[len(PROPERTY_PREFIX):], is_property=True)
        if parameter in EVENT_FIELDS:
            return cls(name=EVENT_FIELDS[parameter], is_property=False)
        return cls(name=parameter, is_property=True)


@dataclass(frozen=True)
class CompiledFilter:
    """A validated filter with its operator and field resolved."""

    field: FieldRef
    operator: FilterOperator
    value: object
    kind: ValueKind


__all__ = [
    "AnyOf",
    "CompiledFilter",
    "EVENT_FIELDS",
    "FieldRef",
    "Filter",
    "FilterItem",
    "FilterOperator",
    "OPERATOR_VALUE_TYPES",
    "PROPERTY_PREFIX",
    "ValueKind",
]
