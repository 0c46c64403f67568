"""
Time provider interface.

Relative ranges ("last 7 days") are resolved against the injected clock so
query resolution stays deterministic under test.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
