from __future__ import annotations

from typing import Callable, Optional
import threading

from useraudit.models import Container, ContainerKind


PENDING = "pending"
IN_PROGRESS = "in_progress"
VISITED = "visited"
FAILED = "failed"

STATES = (PENDING, IN_PROGRESS, VISITED, FAILED)


class WalkProgress:
    """
    Thread-safe per-container state tracker for the tree walk.

    - Keeps each container's state: pending -> in_progress -> visited | failed.
    - Remembers the peak number of group traversals in_progress at the same time
      (projects are handled inline by their parent group and do not count).
    - Optionally drives a single tqdm bar whose total grows as containers are discovered.

    Per-state totals are kept as running counters, so every event is O(1).
    """

    def __init__(
        self,
        *,
        desc: str = "Auditing containers",
        unit: str = "container",
        tqdm_factory: Optional[Callable] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._state: dict[tuple[str, int], str] = {}
        self._counts = {st: 0 for st in STATES}
        self._groups_in_progress = 0
        self._peak_in_progress = 0
        self._tqdm = tqdm_factory(total=0, desc=desc, unit=unit, leave=False) if tqdm_factory else None

    @staticmethod
    def _key(container: Container) -> tuple[str, int]:
        return (container.kind.value, container.id)

    def _move_locked(self, key: tuple[str, int], new: str) -> None:
        old = self._state.get(key)
        if old == new:
            return
        if old is not None:
            self._counts[old] -= 1
        self._counts[new] += 1
        self._state[key] = new
        if key[0] == ContainerKind.GROUP.value:
            if new == IN_PROGRESS:
                self._groups_in_progress += 1
                self._peak_in_progress = max(self._peak_in_progress, self._groups_in_progress)
            elif old == IN_PROGRESS:
                self._groups_in_progress -= 1

    def discovered(self, container: Container) -> None:
        with self._lock:
            key = self._key(container)
            if key in self._state:
                return
            self._move_locked(key, PENDING)
            if self._tqdm is not None:
                self._tqdm.total += 1
                self._tqdm.refresh()
            self._render_locked()

    def started(self, container: Container) -> None:
        with self._lock:
            self._move_locked(self._key(container), IN_PROGRESS)
            self._render_locked()

    def finished(self, container: Container, *, failed: bool = False) -> None:
        with self._lock:
            self._move_locked(self._key(container), FAILED if failed else VISITED)
            if self._tqdm is not None:
                self._tqdm.update(1)
            self._render_locked()

    def state_of(self, container: Container) -> Optional[str]:
        with self._lock:
            return self._state.get(self._key(container))

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @property
    def in_progress_groups(self) -> int:
        with self._lock:
            return self._groups_in_progress

    @property
    def peak_in_progress(self) -> int:
        with self._lock:
            return self._peak_in_progress

    def close(self) -> None:
        with self._lock:
            if self._tqdm is not None:
                self._tqdm.close()
                self._tqdm = None

    def _render_locked(self) -> None:
        if self._tqdm is None:
            return
        postfix = " ".join(f"{st}:{self._counts[st]}" for st in STATES if self._counts[st])
        self._tqdm.set_postfix_str(postfix, refresh=True)
