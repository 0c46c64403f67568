"""
Tests for query execution helpers: cancellation, retry and bounded workers.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from datetime import timedelta

import pytest

from eventlens.adapters.memory_store import InMemoryEventStore
from eventlens.core.entities import Event
from eventlens.core.errors import Cancelled, InvalidFilter, StorageUnavailable
from eventlens.core.ports.events import ScanSpec
from eventlens.core.services.execution import (
    CancellationToken,
    RetryConfig,
    calculate_backoff,
    call_with_retry,
    chunked,
    map_session_batches,
    run_bounded,
    scan_events,
)
from eventlens.core.services.sessions import Session
from tests.conftest import T0, make_event

NO_SLEEP = RetryConfig(max_attempts=3, backoff_seconds=(0.0,))


def site_spec(site_id: int = 1) -> ScanSpec:
    return ScanSpec(site_id=site_id, start=T0 - timedelta(hours=1), end=T0 + timedelta(hours=1))


class FlakyStore:
    """Store whose first ``failures`` scans break midway."""

    def __init__(self, events: list[Event], failures: int) -> None:
        self._inner = InMemoryEventStore(events)
        self.failures = failures
        self.scans = 0
        self.closed = 0

    def scan(self, spec: ScanSpec) -> Iterator[Event]:
        self.scans += 1
        broken = self.scans <= self.failures
        return self._stream(self._inner.scan(spec), broken)

    def _stream(self, events: Iterator[Event], broken: bool) -> Iterator[Event]:
        try:
            for i, event in enumerate(events):
                if broken and i == 1:
                    raise StorageUnavailable("connection reset")
                yield event
        finally:
            self.closed += 1

    def count_distinct(self, field_name: str, spec: ScanSpec) -> int:
        return self._inner.count_distinct(field_name, spec)


def session_ids(batch: list[Session], token: CancellationToken) -> list[str]:
    return [s.session_id for s in batch]


# --- Cancellation ---


class TestCancellationToken:
    """Tests for the cancellation token."""

    def test_check_passes_until_cancelled(self) -> None:
        token = CancellationToken()
        token.check()
        token.cancel()
        with pytest.raises(Cancelled):
            token.check()

    def test_deadline_times_out(self) -> None:
        token = CancellationToken(timeout_seconds=0.0)
        with pytest.raises(Cancelled, match="timed out"):
            token.check()

    def test_child_sees_parent(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("stop")
        assert child.cancelled
        assert child.reason == "stop"

    def test_child_cancel_leaves_parent(self) -> None:
        parent = CancellationToken()
        parent.child().cancel()
        assert not parent.cancelled

    def test_wait_returns_early_on_cancel(self) -> None:
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        started = time.monotonic()
        assert token.wait(5.0) is True
        assert time.monotonic() - started < 2.0


# --- Retry ---


class TestRetry:
    """Tests for storage retry with backoff."""

    def test_backoff_schedule(self) -> None:
        config = RetryConfig(max_attempts=4, backoff_seconds=(0.1, 0.5))
        assert calculate_backoff(1, config) == 0.1
        assert calculate_backoff(2, config) == 0.5
        assert calculate_backoff(3, config) == 0.5
        assert calculate_backoff(4, config) is None

    def test_transient_failure_is_retried(self) -> None:
        calls = []

        def fn() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise StorageUnavailable("busy")
            return "ok"

        assert call_with_retry(fn, NO_SLEEP) == "ok"
        assert len(calls) == 3

    def test_exhausted_attempts_reraise(self) -> None:
        def fn() -> str:
            raise StorageUnavailable("down")

        with pytest.raises(StorageUnavailable):
            call_with_retry(fn, RetryConfig(max_attempts=2, backoff_seconds=(0.0,)))

    def test_validation_errors_not_retried(self) -> None:
        calls = []

        def fn() -> str:
            calls.append(1)
            raise InvalidFilter("bad")

        with pytest.raises(InvalidFilter):
            call_with_retry(fn, NO_SLEEP)
        assert len(calls) == 1

    def test_cancelled_before_first_attempt(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            call_with_retry(lambda: "never", NO_SLEEP, token)


# --- Bounded workers ---


class TestRunBounded:
    """Tests for bounded parallel execution."""

    def test_results_in_input_order(self) -> None:
        def slow_square(n: int, token: CancellationToken) -> int:
            time.sleep(0.01 * (5 - n))
            return n * n

        assert run_bounded(slow_square, range(5), max_workers=3) == [0, 1, 4, 9, 16]

    def test_never_exceeds_worker_limit(self) -> None:
        active = 0
        peak = 0
        lock = threading.Lock()

        def task(n: int, token: CancellationToken) -> int:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return n

        run_bounded(task, range(12), max_workers=3)
        assert peak <= 3

    def test_first_failure_propagates(self) -> None:
        def task(n: int, token: CancellationToken) -> int:
            if n == 2:
                raise ValueError("boom")
            return n

        with pytest.raises(ValueError, match="boom"):
            run_bounded(task, range(6), max_workers=2)

    def test_cancelled_token_raises(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            run_bounded(lambda n, t: n, range(3), max_workers=2, token=token)

    def test_chunked(self) -> None:
        assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]


# --- Scans ---


class TestScanning:
    """Tests for scanning and session batches."""

    def test_scan_checks_cancellation(self) -> None:
        store = InMemoryEventStore([make_event("a", 0), make_event("b", 1)])
        token = CancellationToken()
        events = scan_events(store, site_spec(), token)
        next(events)
        token.cancel()
        with pytest.raises(Cancelled):
            next(events)

    def test_batches_in_scan_order(self) -> None:
        events = [make_event(sid, n) for n, sid in enumerate(["c", "a", "d", "b", "a"])]
        out = map_session_batches(
            InMemoryEventStore(events),
            site_spec(),
            session_ids,
            max_workers=2,
            batch_size=2,
            retry=NO_SLEEP,
        )
        assert out == [["a", "b"], ["c", "d"]]

    def test_failed_scan_is_rerun_and_closed(self) -> None:
        events = [make_event(sid, n) for n, sid in enumerate("abcd")]
        store = FlakyStore(events, failures=1)
        out = map_session_batches(
            store, site_spec(), session_ids, max_workers=1, batch_size=10, retry=NO_SLEEP
        )
        assert out == [["a", "b", "c", "d"]]
        assert store.scans == 2
        assert store.closed == 2

    def test_persistent_failure_surfaces(self) -> None:
        store = FlakyStore([make_event(sid, 0) for sid in "abc"], failures=10)
        with pytest.raises(StorageUnavailable):
            map_session_batches(
                store, site_spec(), session_ids, max_workers=1, batch_size=10, retry=NO_SLEEP
            )
        assert store.scans == NO_SLEEP.max_attempts
