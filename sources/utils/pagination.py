"""
Pagination normalization.

Providers paginate differently: GitLab uses integer page numbers, GitHub's
GraphQL API uses opaque cursors. Each provider supplies a ``fetch_page``
callable that performs one round trip for a given continuation token, and
``list_all`` turns it into the shared PageRequest/PageResponse contract.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

from sources.exceptions import InvalidArgumentException, PaginationException
from sources.models import FETCH_ALL, MAX_PAGE_SIZE, PageRequest, PageResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """
    One provider round trip.

    :param items: Items on this page, already mapped and filtered.
    :param next_token: Continuation marker for the next page, empty when
                       there is none.
    :param total_count: Total number of items the provider reports.
    """

    items: List[T] = field(default_factory=list)
    next_token: str = ""
    total_count: int = 0


FetchPage = Callable[[str, int], Page[T]]


def validate_page_request(page: Optional[PageRequest]) -> PageRequest:
    """
    Check that a page request is present and its size is within bounds.

    :raises InvalidArgumentException: If the request is missing or invalid.
    """
    if page is None:
        raise InvalidArgumentException("page must not be empty")
    if page.size < FETCH_ALL or page.size > MAX_PAGE_SIZE:
        raise InvalidArgumentException(
            f"page size must be >= {FETCH_ALL} and <= {MAX_PAGE_SIZE}",
            size=page.size,
        )
    return page


def parse_page_number(token: str) -> int:
    """
    Parse an integer page token. An empty token means the first page.

    :raises InvalidArgumentException: If the token is not an integer.
    """
    if not token:
        return 1
    try:
        return int(token)
    except ValueError:
        raise InvalidArgumentException("page token must be int", token=token)


def format_page_number(next_page: Optional[int]) -> str:
    """Render a provider's next page number as a token, empty when exhausted."""
    if not next_page:
        return ""
    return str(next_page)


def list_all(
    fetch_page: FetchPage, page: Optional[PageRequest]
) -> Tuple[List[T], PageResponse]:
    """
    Fetch one page, or every page when ``page.size`` is -1.

    A finite request performs exactly one round trip and reports the
    provider's next token and total count. A fetch-all request pages through
    the provider at 100 items per call, starting from ``page.token``, until
    no next token is returned.

    :param fetch_page: Callable performing a single round trip.
    :param page: Caller's page request.
    :return: Items and the pagination response.
    :raises InvalidArgumentException: If the page request is invalid.
    :raises PaginationException: If the provider repeats a continuation token.
    """
    page = validate_page_request(page)

    if page.size != FETCH_ALL:
        result = fetch_page(page.token, page.size)
        return result.items, PageResponse(
            next_token=result.next_token,
            result_size=len(result.items),
            total_size=result.total_count,
        )

    items: List[T] = []
    token = page.token
    seen = {token} if token else set()
    round_trips = 0

    while True:
        result = fetch_page(token, MAX_PAGE_SIZE)
        round_trips += 1
        items.extend(result.items)
        logger.debug(
            f"Fetched page {round_trips} with {len(result.items)} items "
            f"({len(items)} so far)"
        )

        if not result.next_token:
            break
        if result.next_token in seen:
            raise PaginationException(
                "provider returned a page token twice", token=result.next_token
            )
        seen.add(result.next_token)
        token = result.next_token

    return items, PageResponse(
        next_token="", result_size=len(items), total_size=len(items)
    )
