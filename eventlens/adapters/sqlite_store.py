"""
SQLite raw event store.

Implements RawEventStorePort on a local SQLite file. Useful for development
and for exercising filter push-down against a real SQL engine.

Key behaviors:
- Timestamps stored as ISO-8601 UTC text (lexicographically ordered)
- Properties stored as JSON text, queried with json_extract
- The compiled predicate's query fragment is pushed into the WHERE clause;
  every row is still re-checked with ``predicate.test`` so type errors
  surface exactly as they do per event
- Any sqlite3.Error (locked, busy, missing or corrupt file) during a read or
  write maps to StorageUnavailable
- Each scan owns its connection and closes it when the iterator is closed
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

from eventlens.core.entities import Event
from eventlens.core.errors import StorageUnavailable
from eventlens.core.ports.events import EventPredicate, ScanSpec

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    site_id INTEGER NOT NULL,
    session_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    sequence_no INTEGER NOT NULL DEFAULT 0,
    page_url TEXT,
    pathname TEXT,
    hostname TEXT,
    referrer TEXT,
    properties TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_events_site_time ON events (site_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_session
    ON events (site_id, session_id, timestamp, sequence_no);
"""

COUNTABLE_COLUMNS = frozenset({"user_id", "session_id", "name", "page_url", "referrer"})

_COLUMNS = "session_id, user_id, site_id, name, timestamp, sequence_no, page_url, referrer, properties"


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def format_ts(dt: datetime) -> str:
    """Fixed-width ISO UTC timestamp."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_ts(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s)


def row_to_event(row: dict[str, Any]) -> Event:
    return Event(
        session_id=row["session_id"],
        user_id=row["user_id"],
        site_id=row["site_id"],
        name=row["name"],
        timestamp=parse_ts(row["timestamp"]),
        sequence_no=row["sequence_no"],
        properties=json.loads(row["properties"] or "{}"),
        page_url=row["page_url"],
        referrer=row["referrer"],
    )


def _hostname(page_url: str | None) -> str | None:
    if page_url and "://" in page_url:
        return urlsplit(page_url).hostname
    return None


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class SQLiteEventStore:
    """SQLite implementation of RawEventStorePort."""

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open event store: {e}") from e
        conn.row_factory = dict_factory
        return conn

    def init_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def insert_many(self, events: Iterable[Event]) -> int:
        """Append events; returns the number written."""
        rows = [
            (
                e.site_id,
                e.session_id,
                e.user_id,
                e.name,
                format_ts(e.timestamp),
                e.sequence_no,
                e.page_url,
                e.pathname,
                _hostname(e.page_url),
                e.referrer,
                json.dumps(dict(e.properties)),
            )
            for e in events
        ]
        conn = self._get_conn()
        try:
            conn.executemany(
                """
                INSERT INTO events (
                    site_id, session_id, user_id, name, timestamp, sequence_no,
                    page_url, pathname, hostname, referrer, properties
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Event store write failed: {e}") from e
        finally:
            conn.close()
        return len(rows)

    def _where(self, spec: ScanSpec) -> tuple[str, list[Any]]:
        clauses = ["site_id = ?", "timestamp >= ?", "timestamp < ?"]
        params: list[Any] = [spec.site_id, format_ts(spec.start), format_ts(spec.end)]
        if spec.predicate is not None:
            fragment = spec.predicate.to_query_fragment()
            clauses.append(f"({fragment.sql})")
            params.extend(fragment.params)
        return " AND ".join(clauses), params

    def scan(self, spec: ScanSpec) -> Iterator[Event]:
        where, params = self._where(spec)
        sql = (
            f"SELECT {_COLUMNS} FROM events WHERE {where} "
            "ORDER BY session_id, timestamp, sequence_no"
        )
        return self._stream(sql, params, spec.predicate)

    def _stream(
        self,
        sql: str,
        params: list[Any],
        predicate: EventPredicate | None,
    ) -> Iterator[Event]:
        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
            for row in cursor:
                event = row_to_event(row)
                if predicate is None or predicate.test(event):
                    yield event
        except sqlite3.Error as e:
            logger.warning("Event store scan failed: %s", e)
            raise StorageUnavailable(f"Event store scan failed: {e}") from e
        finally:
            conn.close()

    def count_distinct(self, field_name: str, spec: ScanSpec) -> int:
        if field_name not in COUNTABLE_COLUMNS:
            msg = f"Cannot count distinct values of '{field_name}'"
            raise ValueError(msg)
        where, params = self._where(spec)
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"SELECT COUNT(DISTINCT {field_name}) AS n FROM events WHERE {where}", params
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Event store count failed: {e}") from e
        finally:
            conn.close()
        return int(row["n"])
