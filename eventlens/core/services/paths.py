"""
Page path normalization and path pattern matching.

Patterns use ``*`` for exactly one path segment and ``**`` for any suffix,
so ``/blog/*`` matches ``/blog/intro`` but not ``/blog/intro/part-2``, and
``/docs/**`` matches everything below ``/docs/``.
"""

from __future__ import annotations

import re
from functools import lru_cache
from urllib.parse import urlsplit

_MULTI_SLASH = re.compile(r"/{2,}")


def normalize_path(page_url: str | None) -> str | None:
    """
    Reduce a page URL (absolute or path-only) to a normalized pathname.

    Query string and fragment are dropped, repeated slashes are collapsed and
    a trailing slash is removed except for the root path.
    """
    if page_url is None:
        return None
    raw = page_url.strip()
    if not raw:
        return None

    path = urlsplit(raw).path if "://" in raw else raw.split("?", 1)[0].split("#", 1)[0]
    path = _MULTI_SLASH.sub("/", path or "/")
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


@lru_cache(maxsize=512)
def pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path pattern into an anchored regular expression."""
    normalized = normalize_path(pattern) or "/"
    parts: list[str] = []
    i = 0
    while i < len(normalized):
        if normalized.startswith("**", i):
            parts.append(".*")
            i += 2
        elif normalized[i] == "*":
            parts.append("[^/]+")
            i += 1
        else:
            parts.append(re.escape(normalized[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def path_matches(pattern: str, path: str | None) -> bool:
    """Check whether a normalized path matches a path pattern."""
    if path is None:
        return False
    if "*" not in pattern:
        return (normalize_path(pattern) or "/") == path
    return pattern_to_regex(pattern).match(path) is not None
