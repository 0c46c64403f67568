"""
Pagination models.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    """Page number or resume cursor, plus page size."""

    page_number: int = 1
    page_size: int = 25
    cursor: str | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a result list."""

    items: Sequence[T]
    total_count: int
    page_number: int
    page_size: int
    offset: int
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    def to_dict(self, serialize: Callable[[T], Any] | None = None) -> dict[str, Any]:
        return {
            "items": [serialize(i) if serialize else i for i in self.items],
            "total_count": self.total_count,
            "page_number": self.page_number,
            "page_size": self.page_size,
            "next_cursor": self.next_cursor,
        }
