from __future__ import annotations

from typing import Callable, Iterable

from useraudit.models import AccessLevel, CanonicalRecord


MemberFilter = Callable[[CanonicalRecord], bool]


def accept_all(record: CanonicalRecord) -> bool:
    return True


def exclude_owner(username: str) -> MemberFilter:
    """Reject `username` only where it holds Owner; lower grants stay reportable."""

    def _filter(record: CanonicalRecord) -> bool:
        return not (record.username == username and record.access_level == AccessLevel.OWNER)

    return _filter


class FilterPipeline:
    """
    Ordered, immutable sequence of predicates. A record is reportable only if
    every predicate accepts it. Built once before the walk and shared
    read-only by every worker.
    """

    def __init__(self, filters: Iterable[MemberFilter] = ()) -> None:
        self._filters: tuple[MemberFilter, ...] = (accept_all, *filters)

    def __len__(self) -> int:
        return len(self._filters)

    @property
    def filters(self) -> tuple[MemberFilter, ...]:
        return self._filters

    def accepts(self, record: CanonicalRecord) -> bool:
        return all(f(record) for f in self._filters)


def build_pipeline(excluded_users: Iterable[str] = ()) -> FilterPipeline:
    seen: list[str] = []
    for username in excluded_users:
        if username and username not in seen:
            seen.append(username)
    return FilterPipeline(exclude_owner(u) for u in seen)
