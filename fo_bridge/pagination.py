"""
Follows @odata.nextLink continuation links and flattens every page's
records into one list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import PaginationLimitExceeded

logger = logging.getLogger("fo_bridge.pagination")

NEXT_LINK_KEYS = ("@odata.nextLink", "@odata.nextlink")

Record = Dict[str, Any]


@dataclass
class ResultPage:
    records: List[Record]
    continuation_link: Optional[str] = None


@dataclass
class AggregatedResult:
    records: List[Record] = field(default_factory=list)


def page_records(payload: Any) -> Optional[List[Record]]:
    """Records of a page-shaped payload, or None when the payload is not a page."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        value = payload.get("value")
        if isinstance(value, list):
            return value
        # OData v2 envelope
        d = payload.get("d")
        if isinstance(d, dict) and isinstance(d.get("results"), list):
            return d["results"]
    return None


def next_link(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in NEXT_LINK_KEYS:
        link = payload.get(key)
        if link:
            return str(link)
    d = payload.get("d")
    if isinstance(d, dict) and d.get("__next"):
        return str(d["__next"])
    return None


def parse_page(payload: Any) -> Optional[ResultPage]:
    records = page_records(payload)
    if records is None:
        return None
    return ResultPage(records=list(records), continuation_link=next_link(payload))


async def collect_all(
    fetch_first: Callable[[], Awaitable[Any]],
    fetch_next: Callable[[str], Awaitable[Any]],
    max_pages: Optional[int] = None,
) -> Any:
    """
    Fetch the first page and follow continuation links until none remain.

    Returns an AggregatedResult, or the first payload unchanged when it is not
    page-shaped. A non-page intermediate payload stops the walk with what was
    gathered so far. With `max_pages` set, a chain longer than that raises
    PaginationLimitExceeded.
    """
    first = await fetch_first()
    page = parse_page(first)
    if page is None:
        return first

    result = AggregatedResult()
    pages_fetched = 1
    while True:
        result.records.extend(page.records)
        link = page.continuation_link
        if not link:
            break
        if max_pages is not None and pages_fetched >= max_pages:
            raise PaginationLimitExceeded(max_pages, link)

        payload = await fetch_next(link)
        pages_fetched += 1
        page = parse_page(payload)
        if page is None:
            logger.warning(f"Non-page payload at page {pages_fetched}; returning {len(result.records)} records")
            break

    logger.debug(f"Collected {len(result.records)} records from {pages_fetched} pages")
    return result
