from datetime import UTC, datetime, timedelta

import pytest

from eventlens.adapters.memory_store import InMemoryEventStore
from eventlens.adapters.sqlite_store import SQLiteEventStore
from eventlens.core.entities import Event
from eventlens.rules.models import ConcurrencyRules, RetryRules, Rules, StorageRules

T0 = datetime(2024, 6, 15, 9, 0, tzinfo=UTC)


def make_event(
    session_id: str,
    seconds: float,
    name: str = "pageview",
    page_url: str | None = None,
    *,
    site_id: int = 1,
    user_id: str | None = None,
    seq: int = 0,
    **properties: object,
) -> Event:
    return Event(
        session_id=session_id,
        user_id=user_id or f"u-{session_id}",
        site_id=site_id,
        name=name,
        timestamp=T0 + timedelta(seconds=seconds),
        sequence_no=seq,
        properties=properties,
        page_url=page_url,
    )


@pytest.fixture
def sample_events() -> list[Event]:
    """Three sessions on site 1, one on site 2."""
    return [
        make_event("a", 0, page_url="/"),
        make_event("a", 30, page_url="/pricing?ref=nav"),
        make_event("a", 45, "click", button="signup"),
        make_event("b", 10, page_url="https://example.com/blog/intro/"),
        make_event("c", 20, page_url="/", user_id="u-a"),
        make_event("c", 20, "click", seq=1, user_id="u-a", button="docs"),
        make_event("z", 5, page_url="/", site_id=2),
    ]


@pytest.fixture
def memory_store(sample_events: list[Event]) -> InMemoryEventStore:
    return InMemoryEventStore(sample_events)


@pytest.fixture
def sqlite_store(tmp_path, sample_events: list[Event]) -> SQLiteEventStore:
    store = SQLiteEventStore(str(tmp_path / "events.db"))
    store.init_schema()
    store.insert_many(sample_events)
    return store


@pytest.fixture
def fast_rules() -> Rules:
    """Single worker, no retry sleeps."""
    return Rules(
        concurrency=ConcurrencyRules(max_workers=1),
        storage=StorageRules(retry=RetryRules(max_attempts=3, backoff_seconds=[0.0])),
    )
