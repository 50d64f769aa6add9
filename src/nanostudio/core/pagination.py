"""Pagination and query-flag helpers for history listings.

History listings are paged in SQL rather than in memory, so these helpers
only normalise what the client asked for:

- page numbers are one-based and floored to 1
- page sizes default to 50 and are clamped to ``[1, MAX_PAGE_SIZE]``
- unparseable values fall back to the defaults instead of failing

The same normalisation is used by the listing and by the count endpoint so
both agree on the page the client is looking at.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageRequest:
    """A normalised page selection.

    Attributes:
        page: One-based page number (always >= 1).
        page_size: Items per page (always within ``[1, MAX_PAGE_SIZE]``).
    """

    page: int
    page_size: int

    @property
    def offset(self) -> int:
        """Number of rows to skip before this page starts."""
        return (self.page - 1) * self.page_size


def _to_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None


def resolve_page(page: object = None, page_size: object = None) -> PageRequest:
    """Clamp a requested page and page size to valid bounds.

    A zero, negative or missing page resolves to page 1.  A zero or missing
    page size resolves to the default; anything above the maximum is clamped
    down to it.

    Args:
        page: Requested one-based page number (any type, usually a query string).
        page_size: Requested items per page.

    Returns:
        The resolved :class:`PageRequest`.
    """
    page_num = _to_int(page)
    size_num = _to_int(page_size)

    resolved_page = max(1, page_num or 1)
    resolved_size = max(1, min(MAX_PAGE_SIZE, size_num or DEFAULT_PAGE_SIZE))

    return PageRequest(page=resolved_page, page_size=resolved_size)


def parse_flag(value: object) -> bool:
    """Interpret a query-string flag.

    Only ``true`` (any case) and ``1`` switch a flag on; everything else,
    including a missing value, leaves it off.
    """
    if isinstance(value, bool):
        return value
    return str(value if value is not None else "").strip().lower() in ("true", "1")
