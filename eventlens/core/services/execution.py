"""
Query execution helpers: cancellation, storage retry and bounded workers.

Key behaviors:
- CancellationToken: cooperative cancel flag with an optional deadline;
  ``check()`` raises ``Cancelled`` once set or expired
- call_with_retry: reruns a whole sub-computation on ``StorageUnavailable``
  with bounded exponential backoff (interruptible by cancellation)
- run_bounded: runs independent tasks on at most ``max_workers`` threads and
  returns results in submission order, so parallelism never changes output
- map_session_batches: scan -> session stitching -> parallel batch work

Invariants:
- A cancelled query raises ``Cancelled``; it never returns partial results
- Validation errors are never retried
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from contextlib import closing, nullcontext
from dataclasses import dataclass
from typing import TypeVar

from eventlens.core.entities import Event
from eventlens.core.errors import Cancelled, StorageUnavailable
from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.services.sessions import Session, iter_sessions

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_POLL_SECONDS = 0.05


# --- Cancellation ---


class CancellationToken:
    """
    Cooperative cancellation flag shared by every sub-scan of one query.

    A deadline turns the token into a timeout. Child tokens observe their
    parent, so aborting a worker pool never cancels the caller's token.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        parent: CancellationToken | None = None,
    ) -> None:
        self._event = threading.Event()
        self._reason = "Query cancelled"
        self._parent = parent
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def cancel(self, reason: str = "Query cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            self._reason = self._parent.reason
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("Query timed out")
            return True
        return False

    def check(self) -> None:
        """Raise Cancelled if the query was cancelled or timed out."""
        if self.cancelled:
            raise Cancelled(self._reason)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        until = time.monotonic() + seconds
        while not self.cancelled:
            remaining = until - time.monotonic()
            if remaining <= 0:
                return False
            self._event.wait(timeout=min(remaining, _POLL_SECONDS))
        return True


# --- Retry ---


@dataclass(frozen=True)
class RetryConfig:
    """Storage retry policy."""

    max_attempts: int = 3
    backoff_seconds: tuple[float, ...] = (0.1, 0.5, 2.0)


DEFAULT_RETRY = RetryConfig()


def calculate_backoff(attempts: int, config: RetryConfig = DEFAULT_RETRY) -> float | None:
    """
    Backoff before the next attempt, or None if attempts are exhausted.

    Args:
        attempts: Attempts made so far (first failure is attempts=1)
        config: Retry configuration
    """
    if attempts >= config.max_attempts:
        return None
    if not config.backoff_seconds:
        return 0.0

    # First failure (attempts=1) uses backoff[0]
    backoff_index = min(max(attempts - 1, 0), len(config.backoff_seconds) - 1)
    return config.backoff_seconds[backoff_index]


def call_with_retry(
    fn: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY,
    token: CancellationToken | None = None,
) -> T:
    """Run ``fn``, rerunning it from scratch on StorageUnavailable."""
    token = token or CancellationToken()
    attempts = 0
    while True:
        token.check()
        try:
            return fn()
        except StorageUnavailable as e:
            attempts += 1
            backoff = calculate_backoff(attempts, config)
            if backoff is None:
                logger.error("Storage unavailable after %d attempts: %s", attempts, e.message)
                raise
            logger.warning(
                "Storage unavailable (attempt %d/%d), retrying in %.2fs: %s",
                attempts,
                config.max_attempts,
                backoff,
                e.message,
            )
            token.wait(backoff)


def retrying(
    fn: Callable[[T, CancellationToken], R],
    config: RetryConfig = DEFAULT_RETRY,
) -> Callable[[T, CancellationToken], R]:
    """Wrap a worker task so a transient store fault reruns that task from scratch."""

    def task(item: T, token: CancellationToken) -> R:
        return call_with_retry(lambda: fn(item, token), config, token)

    return task


# --- Scanning ---


def scan_events(
    store: RawEventStorePort,
    spec: ScanSpec,
    token: CancellationToken | None = None,
) -> Iterator[Event]:
    """
    Stream a scan, checking for cancellation on every event.

    The underlying store iterator is closed when the consumer stops or the
    query is cancelled, releasing any held cursor.
    """
    token = token or CancellationToken()
    token.check()
    source = iter(store.scan(spec))
    guard = closing(source) if hasattr(source, "close") else nullcontext()
    with guard:
        for event in source:
            token.check()
            yield event


# --- Bounded parallelism ---


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Split an iterable into lists of at most ``size`` items."""
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def run_bounded(
    fn: Callable[[T, CancellationToken], R],
    items: Iterable[T],
    max_workers: int,
    token: CancellationToken | None = None,
) -> list[R]:
    """
    Apply ``fn`` to every item on at most ``max_workers`` threads.

    Each call receives a child token. Results come back in input order. The
    first failure (or a cancellation) aborts in-flight work through the child
    token, drops pending work, and is re-raised.
    """
    token = token or CancellationToken()
    child = token.child()

    if max_workers <= 1:
        results = []
        for item in items:
            child.check()
            results.append(fn(item, child))
        return results

    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="eventlens")
    futures: list[Future[R]] = []
    try:
        for item in items:
            child.check()
            futures.append(executor.submit(fn, item, child))
            _wait_for_slot(futures, max_workers, child)
        _wait_for_slot(futures, 1, child)
        return [f.result() for f in futures]
    except BaseException:
        child.cancel("Query aborted")
        raise
    finally:
        executor.shutdown(wait=True, cancel_futures=True)


def _wait_for_slot(futures: list[Future[R]], limit: int, token: CancellationToken) -> None:
    """Block until fewer than ``limit`` tasks are in flight, surfacing failures."""
    while True:
        _raise_first_failure(futures)
        in_flight = [f for f in futures if not f.done()]
        if len(in_flight) < limit:
            return
        token.check()
        wait(in_flight, timeout=_POLL_SECONDS, return_when=FIRST_EXCEPTION)


def _raise_first_failure(futures: Iterable[Future[R]]) -> None:
    for f in futures:
        if f.done() and not f.cancelled():
            error = f.exception()
            if error is not None:
                raise error


# --- Session batches ---


def map_session_batches(
    store: RawEventStorePort,
    spec: ScanSpec,
    fn: Callable[[list[Session], CancellationToken], R],
    *,
    max_workers: int,
    batch_size: int,
    retry: RetryConfig = DEFAULT_RETRY,
    token: CancellationToken | None = None,
) -> list[R]:
    """
    Scan, stitch sessions and apply ``fn`` to batches of them in parallel.

    The whole scan is rerun on StorageUnavailable, since a stream that failed
    midway cannot be resumed. Batch results come back in scan order. The store
    cursor is closed on success, failure and cancellation alike.
    """
    token = token or CancellationToken()

    def attempt() -> list[R]:
        with closing(scan_events(store, spec, token)) as events:
            batches = chunked(iter_sessions(events), batch_size)
            return run_bounded(fn, batches, max_workers, token)

    return call_with_retry(attempt, retry, token)
