"""
Offset pagination over the reporting APIs
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from metricsync.exceptions import PaginationSafetyLimitExceeded
from metricsync.utils.logger import log

DEFAULT_MAX_PAGES = 100

FetchPage = Callable[[int, int], Awaitable[List[Any]]]


@dataclass
class PageResult:
    """Rows gathered across pages"""
    rows: List[Any] = field(default_factory=list)
    pages: int = 0  # page requests made
    truncated: bool = False  # stopped at the page cap while pages were still full


async def fetch_all(
    fetch_page: FetchPage,
    page_size: int,
    max_pages: int = DEFAULT_MAX_PAGES,
    strict: bool = False,
    parse: Optional[Callable[[Any], Any]] = None,
    label: str = ""
) -> PageResult:
    """
    Request pages at offsets 0, page_size, 2*page_size, ... until a page comes
    back short or empty.

    Args:
        fetch_page: async (offset, limit) -> list of wire rows
        page_size: rows requested per page
        max_pages: safety cap on page requests
        strict: raise PaginationSafetyLimitExceeded at the cap instead of
            returning a truncated result
        parse: applied to every wire row as it arrives
        label: included in log messages

    Returns:
        PageResult with every row gathered
    """
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    result = PageResult()
    offset = 0

    while True:
        if result.pages >= max_pages:
            if strict:
                raise PaginationSafetyLimitExceeded(result.pages, len(result.rows))
            log.warning(
                f"[Paginator] {label} hit the {max_pages}-page safety limit with "
                f"{len(result.rows)} rows; remaining rows were not fetched"
            )
            result.truncated = True
            break

        rows = await fetch_page(offset, page_size)
        result.pages += 1

        if not rows:
            break

        if parse:
            result.rows.extend(parse(row) for row in rows)
        else:
            result.rows.extend(rows)

        if len(rows) < page_size:
            break
        offset += page_size

    log.debug(f"[Paginator] {label} fetched {len(result.rows)} rows in {result.pages} pages")
    return result
