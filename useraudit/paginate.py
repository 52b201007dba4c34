from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar


T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 1

    @property
    def is_last(self) -> bool:
        return self.current_page >= self.total_pages


PageFetcher = Callable[[int, int], Page[T]]


def drain(fetch: PageFetcher[T], *, per_page: int = DEFAULT_PAGE_SIZE) -> list[T]:
    """
    Call `fetch(page, per_page)` starting at page 1 until the returned page
    reports `current_page >= total_pages`, and return every item in page order.

    The first exception raised by `fetch` propagates as-is; no further pages
    are requested and the items gathered so far are dropped.
    """
    items: list[T] = []
    page_no = 1
    while True:
        page = fetch(page_no, per_page)
        items.extend(page.items)
        if page.is_last:
            return items
        page_no += 1
