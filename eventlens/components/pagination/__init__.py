"""
Pagination component - stable pages and offset cursors for result lists.
"""

from .component import (
    decode_cursor,
    encode_cursor,
    paginate,
    run_paginate,
    validate_page_request,
)
from .models import Page, PageRequest

__all__ = [
    "decode_cursor",
    "encode_cursor",
    "paginate",
    "run_paginate",
    "validate_page_request",
    "Page",
    "PageRequest",
]
