"""
Filters component - compile filter specifications into event predicates.
"""

from .component import (
    MATCH_ALL,
    Predicate,
    StepPredicate,
    compile_filter,
    compile_filters,
    event_value,
    parse_filters,
    resolve_field,
    scalar_equal,
    value_kind,
)
from .models import (
    EVENT_FIELDS,
    OPERATOR_VALUE_TYPES,
    AnyOf,
    CompiledFilter,
    FieldRef,
    Filter,
    FilterItem,
    FilterOperator,
)

__all__ = [
    # Entry points
    "compile_filter",
    "compile_filters",
    "parse_filters",
    # Predicates
    "MATCH_ALL",
    "Predicate",
    "StepPredicate",
    # Helpers
    "event_value",
    "resolve_field",
    "scalar_equal",
    "value_kind",
    # Models
    "AnyOf",
    "CompiledFilter",
    "EVENT_FIELDS",
    "FieldRef",
    "Filter",
    "FilterItem",
    "FilterOperator",
    "OPERATOR_VALUE_TYPES",
]
