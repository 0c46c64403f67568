"""
Raw event store interface.

The store is an external, append-only columnar engine. The aggregation engine
only ever reads from it through two primitives:

- scan: lazy sequence of events ordered by (session_id, timestamp, sequence_no)
- count_distinct: distinct count of one event field over a scan

Adapters raise ``StorageUnavailable`` for transient faults; retrying is the
caller's job.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from eventlens.core.entities import Event


@dataclass(frozen=True)
class QueryFragment:
    """SQL WHERE fragment with positional parameters."""

    sql: str
    params: tuple[object, ...] = ()


class EventPredicate(Protocol):
    """Compiled filter usable per event or pushed down as a query fragment."""

    def test(self, event: Event) -> bool:
        """Check a single event."""
        ...

    def to_query_fragment(self) -> QueryFragment:
        """Render as a storage-engine WHERE fragment."""
        ...


@dataclass(frozen=True)
class ScanSpec:
    """What to scan: one site, a half-open time window and a predicate."""

    site_id: int
    start: datetime
    end: datetime
    predicate: EventPredicate | None = None


class RawEventStorePort(Protocol):
    """Read-only handle to the raw event store."""

    def scan(self, spec: ScanSpec) -> Iterator[Event]:
        """Yield matching events ordered by (session_id, timestamp, sequence_no)."""
        ...

    def count_distinct(self, field_name: str, spec: ScanSpec) -> int:
        """Count distinct values of an event field over a scan."""
        ...
