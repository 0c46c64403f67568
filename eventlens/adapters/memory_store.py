"""
In-memory raw event store (tests and local development).

Implements RawEventStorePort over a plain list. Scans are sorted by
(session_id, timestamp, sequence_no) exactly like the production store.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import UTC

from eventlens.core.entities import Event
from eventlens.core.ports.events import ScanSpec

COUNTABLE_FIELDS = frozenset({"user_id", "session_id", "name", "page_url", "referrer"})


class InMemoryEventStore:
    """Append-only event list with ordered scans."""

    def __init__(self, events: Iterable[Event] = ()) -> None:
        self._events: list[Event] = []
        self.scan_count = 0
        self.add_many(events)

    def add(self, event: Event) -> None:
        if event.timestamp.tzinfo is None:
            msg = "Event timestamps must be timezone-aware"
            raise ValueError(msg)
        self._events.append(event)

    def add_many(self, events: Iterable[Event]) -> None:
        for event in events:
            self.add(event)

    def __len__(self) -> int:
        return len(self._events)

    def _matching(self, spec: ScanSpec) -> list[Event]:
        start = spec.start.astimezone(UTC)
        end = spec.end.astimezone(UTC)
        return [
            e
            for e in self._events
            if e.site_id == spec.site_id
            and start <= e.timestamp < end
            and (spec.predicate is None or spec.predicate.test(e))
        ]

    def scan(self, spec: ScanSpec) -> Iterator[Event]:
        self.scan_count += 1
        return iter(sorted(self._matching(spec), key=lambda e: e.order_key))

    def count_distinct(self, field_name: str, spec: ScanSpec) -> int:
        if field_name not in COUNTABLE_FIELDS:
            msg = f"Cannot count distinct values of '{field_name}'"
            raise ValueError(msg)
        return len({getattr(e, field_name) for e in self._matching(spec)} - {None})
