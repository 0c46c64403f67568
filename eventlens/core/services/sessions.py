"""
Session stitching over a flat, pre-sorted event stream.

The raw event store yields events ordered by (session_id, timestamp,
sequence_no). Contiguous runs sharing a session_id are folded into sessions
without materializing the whole scan.

Key behaviors:
- iter_sessions: ordered merge of the event stream into Session runs
- summarize_session: SessionSummary row (entry/exit page, counts, duration)
- SessionStats: mergeable per-session counters used by the metric aggregator
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime

from eventlens.core.entities import Event, SessionSummary


@dataclass(frozen=True)
class Session:
    """Ordered run of events sharing a session_id."""

    session_id: str
    events: tuple[Event, ...]

    @property
    def user_id(self) -> str:
        return self.events[0].user_id

    @property
    def start(self) -> datetime:
        return self.events[0].timestamp

    @property
    def end(self) -> datetime:
        return self.events[-1].timestamp


def iter_sessions(
    events: Iterable[Event],
    check: Callable[[], None] | None = None,
) -> Iterator[Session]:
    """
    Fold contiguous runs of a session_id into Session objects.

    ``check`` is called once per event and may raise to abort the fold
    (cancellation).
    """
    current_id: str | None = None
    run: list[Event] = []

    for event in events:
        if check is not None:
            check()
        if event.session_id != current_id:
            if run:
                yield Session(session_id=current_id, events=tuple(run))  # type: ignore[arg-type]
            current_id = event.session_id
            run = []
        run.append(event)

    if run:
        yield Session(session_id=current_id, events=tuple(run))  # type: ignore[arg-type]


def summarize_session(session: Session) -> SessionSummary:
    """Build the summary row for a session."""
    pageviews = [e for e in session.events if e.is_pageview]
    return SessionSummary(
        session_id=session.session_id,
        user_id=session.user_id,
        session_start=session.start,
        session_end=session.end,
        duration_seconds=(session.end - session.start).total_seconds(),
        entry_page=pageviews[0].pathname if pageviews else None,
        exit_page=pageviews[-1].pathname if pageviews else None,
        pageviews=len(pageviews),
        events=len(session.events),
    )


def session_sort_key(summary: SessionSummary) -> tuple[float, str]:
    """Most recent sessions first, session_id as tie-break."""
    return (-summary.session_start.timestamp(), summary.session_id)


# --- Mergeable per-session counters ---


@dataclass
class SessionStats:
    """Counters for one session within one bucket/group."""

    user_id: str
    first_ts: datetime
    last_ts: datetime
    pageviews: int = 0
    events: int = 0

    @classmethod
    def from_event(cls, event: Event) -> SessionStats:
        return cls(
            user_id=event.user_id,
            first_ts=event.timestamp,
            last_ts=event.timestamp,
            pageviews=1 if event.is_pageview else 0,
            events=1,
        )

    def add(self, event: Event) -> None:
        if event.timestamp < self.first_ts:
            self.first_ts = event.timestamp
        if event.timestamp > self.last_ts:
            self.last_ts = event.timestamp
        self.events += 1
        if event.is_pageview:
            self.pageviews += 1

    def merge(self, other: SessionStats) -> None:
        self.first_ts = min(self.first_ts, other.first_ts)
        self.last_ts = max(self.last_ts, other.last_ts)
        self.pageviews += other.pageviews
        self.events += other.events

    @property
    def duration_seconds(self) -> float:
        return (self.last_ts - self.first_ts).total_seconds()

    @property
    def bounced(self) -> bool:
        return self.pageviews == 1
