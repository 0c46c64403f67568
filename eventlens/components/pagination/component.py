"""
Pagination component.

Slices result lists into 1-indexed pages and hands out opaque offset cursors
for infinite-scroll callers.

Key behaviors:
- page_number < 1 or page_size < 1 fails with InvalidPagination
- page_size is capped at the configured maximum
- Cursors are URL-safe base64 tokens wrapping the next offset; a cursor takes
  precedence over page_number when both are given

Consistency is best-effort: cursors are positional, so rows inserted between
requests can shift items across page boundaries (duplicates or skips).
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Sequence
from typing import TypeVar

from eventlens.core.errors import InvalidPagination
from eventlens.rules.models import DEFAULT_RULES

from .models import Page, PageRequest

T = TypeVar("T")

_CURSOR_VERSION = 1


def encode_cursor(offset: int) -> str:
    """Opaque token for resuming at ``offset``."""
    raw = json.dumps({"v": _CURSOR_VERSION, "o": offset}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(token: str) -> int:
    """Offset wrapped by a cursor token."""
    padded = token + "=" * (-len(token) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise InvalidPagination("Malformed cursor", field_name="cursor") from None

    if not isinstance(payload, dict) or payload.get("v") != _CURSOR_VERSION:
        raise InvalidPagination("Malformed cursor", field_name="cursor")
    offset = payload.get("o")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidPagination("Malformed cursor", field_name="cursor")
    return offset


def validate_page_request(
    page_number: int,
    page_size: int,
    max_page_size: int = DEFAULT_RULES.pagination.max_page_size,
) -> int:
    """Validate page parameters; returns the effective (capped) page size."""
    if page_number < 1:
        raise InvalidPagination(
            f"Page number must be >= 1, got {page_number}", field_name="page"
        )
    if page_size < 1:
        raise InvalidPagination(
            f"Page size must be >= 1, got {page_size}", field_name="page_size"
        )
    return min(page_size, max_page_size)


def paginate(
    items: Sequence[T],
    page_number: int = 1,
    page_size: int = DEFAULT_RULES.pagination.default_page_size,
    cursor: str | None = None,
    max_page_size: int = DEFAULT_RULES.pagination.max_page_size,
) -> Page[T]:
    """
    Slice ``items`` into one page.

    Args:
        items: Fully ordered result list.
        page_number: 1-indexed page number (ignored when ``cursor`` is set).
        page_size: Requested page size, capped at ``max_page_size``.
        cursor: Token from a previous page's ``next_cursor``.

    Raises:
        InvalidPagination: Bad page number/size or malformed cursor.
    """
    size = validate_page_request(page_number, page_size, max_page_size)
    offset = decode_cursor(cursor) if cursor else (page_number - 1) * size

    total = len(items)
    window = items[offset : offset + size]
    next_offset = offset + len(window)

    return Page(
        items=window,
        total_count=total,
        page_number=offset // size + 1,
        page_size=size,
        offset=offset,
        next_cursor=encode_cursor(next_offset) if next_offset < total else None,
    )


def run_paginate(
    items: Sequence[T],
    request: PageRequest,
    max_page_size: int = DEFAULT_RULES.pagination.max_page_size,
) -> Page[T]:
    """Paginate with a PageRequest."""
    return paginate(
        items,
        page_number=request.page_number,
        page_size=request.page_size,
        cursor=request.cursor,
        max_page_size=max_page_size,
    )
