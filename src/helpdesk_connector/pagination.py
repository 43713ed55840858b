"""
Pagination engine.

Helpdesk APIs page their collections in four incompatible ways. Each way is
a small frozen strategy object that knows how to build the first request
and how to derive the next one from the page just received:

- OffsetPagination:  ?offset=N&limit=L, continue while pages are full
- PagePagination:    ?page=N, continue per totalPages / next_page / full pages
- AfterIdPagination: ?after_id=<last id>, continue while pages are full
- CursorPagination:  opaque token or next-page URL read from the body

Envelopes (`{"_embedded": {"conversations": [...]}, "page": {...}}`,
`{"data": [...]}`, ...) are unwrapped by `unwrap()` before a strategy or a
caller sees them, so the loop in `iter_pages()` is written once against a
uniform `Page(items, has_more)` view.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

Fetch = Callable[[str], Any]
ItemsKey = str | Callable[[Any], Any] | None


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def dig(body: Any, dotted_key: str, default: Any = None) -> Any:
    """
    Read a nested value by dotted path, e.g. dig(body, "pages.next.starting_after").

    Missing keys and non-dict intermediates yield `default`.
    """
    value = body
    for part in dotted_key.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return default if value is None else value


def unwrap(body: Any, items_key: ItemsKey = None) -> list[Any]:
    """
    Extract the item list from a response envelope.

    Args:
        body: Decoded response body
        items_key: Dotted key to the list, a callable, or None when the
            body itself is the list

    Returns:
        The items, or [] when the envelope has no list where expected
    """
    if callable(items_key):
        items = items_key(body)
    elif items_key:
        items = dig(body, items_key)
    else:
        items = body
    return list(items) if isinstance(items, list) else []


def with_query(path: str, drop: tuple[str, ...] = (), **params: Any) -> str:
    """Return `path` with query parameters merged in and `drop` keys removed."""
    url = httpx.URL(path)
    for key in drop:
        url = url.copy_remove_param(key)
    if params:
        url = url.copy_merge_params({k: v for k, v in params.items() if v is not None})
    return str(url)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class PaginationStrategy(Protocol):
    def first(self, path: str) -> str:
        """Request for the first page."""
        ...

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        """Request for the next page, or None when the collection is exhausted."""
        ...


@dataclass(frozen=True)
class SinglePage:
    """Unpaginated endpoint: one request, whatever comes back."""

    def first(self, path: str) -> str:
        return path

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        return None


@dataclass(frozen=True)
class OffsetPagination:
    """offset/limit paging. A short page, or reaching `total_key`, ends it."""

    limit: int = 100
    offset_param: str = "offset"
    limit_param: str = "limit"
    total_key: str | None = None

    def first(self, path: str) -> str:
        return with_query(path, **{self.offset_param: 0, self.limit_param: self.limit})

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        if len(items) < self.limit:
            return None
        next_offset = pages_done * self.limit
        if self.total_key:
            total = dig(body, self.total_key)
            if isinstance(total, int) and next_offset >= total:
                return None
        return with_query(request, **{self.offset_param: next_offset})


@dataclass(frozen=True)
class PagePagination:
    """
    Page-number paging.

    Continuation is decided by, in order: `total_pages_key` when the body
    carries an integer there; `next_page_key` when configured (null ends
    it, an integer names the next page); otherwise a full page of
    `page_size` items.
    """

    page_size: int | None = None
    page_param: str = "page"
    size_param: str | None = None
    total_pages_key: str | None = None
    next_page_key: str | None = None
    start_page: int = 1

    def first(self, path: str) -> str:
        params: dict[str, Any] = {self.page_param: self.start_page}
        if self.size_param and self.page_size:
            params[self.size_param] = self.page_size
        return with_query(path, **params)

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        current = self.start_page + pages_done - 1
        next_page = current + 1

        total_pages = dig(body, self.total_pages_key) if self.total_pages_key else None
        if isinstance(total_pages, int) and not isinstance(total_pages, bool):
            if current >= total_pages:
                return None
        elif self.next_page_key:
            marker = dig(body, self.next_page_key)
            if marker is None or marker is False:
                return None
            if isinstance(marker, int) and not isinstance(marker, bool):
                next_page = marker
        elif not self.page_size or len(items) < self.page_size:
            return None

        return with_query(request, **{self.page_param: next_page})


@dataclass(frozen=True)
class AfterIdPagination:
    """ID cursor: ask for items after the last id seen. A short page ends it."""

    limit: int = 100
    after_param: str = "after_id"
    limit_param: str = "limit"
    id_key: str = "id"

    def first(self, path: str) -> str:
        return with_query(path, **{self.limit_param: self.limit})

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        if len(items) < self.limit:
            return None
        last = items[-1]
        last_id = last.get(self.id_key) if isinstance(last, dict) else None
        if last_id is None:
            return None
        return with_query(request, **{self.after_param: last_id})


@dataclass(frozen=True)
class CursorPagination:
    """
    Opaque cursor read from the body.

    With `cursor_param` the token is sent back as that query parameter
    (after removing `drop_params`); without it the token is itself the
    URL of the next page. A null or absent token ends it, as does a truthy
    value under `end_key`.
    """

    token_key: str
    cursor_param: str | None = None
    end_key: str | None = None
    drop_params: tuple[str, ...] = field(default_factory=tuple)

    def first(self, path: str) -> str:
        return path

    def follow(self, request: str, body: Any, items: list[Any], pages_done: int) -> str | None:
        if self.end_key and dig(body, self.end_key):
            return None
        token = dig(body, self.token_key)
        if not token:
            return None
        if self.cursor_param is None:
            return str(token)
        return with_query(request, drop=self.drop_params, **{self.cursor_param: token})


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResourceDescriptor:
    """Where a collection lives, how it pages, and where its items sit."""

    path: str
    strategy: PaginationStrategy = field(default_factory=SinglePage)
    items_key: ItemsKey = None


@dataclass
class Page:
    """One unwrapped page of a collection."""

    items: list[Any]
    has_more: bool
    number: int
    request: str


def iter_pages(fetch: Fetch, descriptor: ResourceDescriptor) -> Iterator[Page]:
    """
    Drain a collection page by page, in source order.

    An empty page always ends the walk, and so does a next request that
    was already issued (a source echoing the same cursor). Errors raised by
    `fetch` propagate to the caller unchanged.
    """
    strategy = descriptor.strategy
    request: str | None = strategy.first(descriptor.path)
    issued: set[str] = set()
    number = 0

    while request is not None:
        issued.add(request)
        body = fetch(request)
        items = unwrap(body, descriptor.items_key)
        number += 1

        next_request = strategy.follow(request, body, items, number) if items else None
        if next_request is not None and next_request in issued:
            logger.warning(
                "Pagination cursor repeated, stopping",
                path=descriptor.path,
                request=next_request,
            )
            next_request = None

        yield Page(items=items, has_more=next_request is not None, number=number, request=request)
        request = next_request


def paginate(
    fetch: Fetch,
    descriptor: ResourceDescriptor,
    on_page: Callable[[list[Any]], None],
) -> int:
    """
    Drain a collection, calling `on_page(items)` for every non-empty page.

    Returns:
        Number of page requests issued
    """
    pages = 0
    for page in iter_pages(fetch, descriptor):
        pages += 1
        if page.items:
            on_page(page.items)
    return pages


def collect(fetch: Fetch, descriptor: ResourceDescriptor) -> list[Any]:
    """Drain a collection into one list. Any page failure propagates."""
    items: list[Any] = []
    for page in iter_pages(fetch, descriptor):
        items.extend(page.items)
    return items
