from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Optional, Protocol
import threading
import sys

from termcolor import colored

from useraudit.filters import FilterPipeline
from useraudit.models import CanonicalRecord, Container, ContainerKind
from useraudit.normalize import normalize_member
from useraudit.paginate import DEFAULT_PAGE_SIZE, drain
from useraudit.progress import WalkProgress


DEFAULT_MAX_CONCURRENCY = 5


class RecordSink(Protocol):
    def emit(self, record: CanonicalRecord) -> None: ...


# Which paged member listing serves each container kind.
_MEMBER_LISTERS = {
    ContainerKind.GROUP: "list_group_members",
    ContainerKind.PROJECT: "list_project_members",
}


def _emit(sink: RecordSink, record: CanonicalRecord) -> None:
    try:
        sink.emit(record)
    except Exception as exc:
        print(
            f"{colored('[*] ', 'yellow')}Failed to report {record.username} on {record.path}: {exc}",
            file=sys.stderr,
        )


def report_members(
    client: Any,
    container: Container,
    pipeline: FilterPipeline,
    sink: RecordSink,
    *,
    per_page: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Drain the direct members of one container and forward the reportable ones. Returns the number forwarded."""
    lister = getattr(client, _MEMBER_LISTERS[container.kind])
    members = drain(partial(lister, container.id), per_page=per_page)
    reported = 0
    for member in members:
        record = normalize_member(container, member)
        if pipeline.accepts(record):
            _emit(sink, record)
            reported += 1
    return reported


def collect_container(
    client: Any,
    container: Container,
    pipeline: FilterPipeline,
    sink: RecordSink,
    *,
    per_page: int = DEFAULT_PAGE_SIZE,
    include_members: bool = True,
    progress: Optional[WalkProgress] = None,
) -> list[Container]:
    """
    Process one container and return the subgroups to recurse into.

    Projects of a group are handled here, inline: their members are reported
    and they are never returned for recursion. Any FetchError aborts the
    container and propagates.
    """
    if include_members:
        report_members(client, container, pipeline, sink, per_page=per_page)
    if not container.is_group:
        return []

    projects = drain(partial(client.list_group_projects, container.id), per_page=per_page)
    for project in projects:
        if progress:
            progress.discovered(project)
            progress.started(project)
        try:
            report_members(client, project, pipeline, sink, per_page=per_page)
        except Exception:
            if progress:
                progress.finished(project, failed=True)
            raise
        if progress:
            progress.finished(project)

    return drain(partial(client.list_subgroups, container.id), per_page=per_page)


class _Outstanding:
    """Counts dispatched-but-unfinished units of work; wait() returns at zero or on the first failure."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0
        self._error: Optional[BaseException] = None

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._cond.notify_all()

    def fail(self, exc: BaseException) -> None:
        with self._cond:
            if self._error is None:
                self._error = exc
            self._cond.notify_all()

    @property
    def failed(self) -> bool:
        with self._cond:
            return self._error is not None

    def wait(self) -> Optional[BaseException]:
        with self._cond:
            while self._count > 0 and self._error is None:
                self._cond.wait()
            return self._error


class TreeWalker:
    """
    Walks a group tree, one unit of work per group.

    Every discovered subgroup is submitted to a thread pool. A unit must take
    one of `max_concurrency` slots from the admission gate before touching the
    API and gives it back when it ends, so at most that many group traversals
    are in flight however wide the tree is. Completion is tracked separately:
    children are counted before their parent's unit is marked done, so the
    count only reaches zero once the whole tree is drained.

    The first error from any unit fails the whole run: run() re-raises it
    without waiting for work still in flight.
    """

    def __init__(
        self,
        client: Any,
        pipeline: FilterPipeline,
        sink: RecordSink,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        per_page: int = DEFAULT_PAGE_SIZE,
        include_root_members: bool = True,
        progress: Optional[WalkProgress] = None,
        workers: Optional[int] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._client = client
        self._pipeline = pipeline
        self._sink = sink
        self._per_page = per_page
        self._include_root_members = include_root_members
        self.max_concurrency = max_concurrency
        # Extra threads may pick up queued subgroups and wait on the gate.
        self._workers = workers or max_concurrency * 2
        self.progress = progress or WalkProgress()
        self._gate = threading.BoundedSemaphore(max_concurrency)
        self._outstanding = _Outstanding()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._root: Optional[Container] = None

    def run(self, root: Container) -> dict[str, int]:
        """Walk `root` and everything below it; return the final state counts."""
        if not root.is_group:
            raise ValueError(f"{root.path} is not a group")
        self._root = root
        self._outstanding = _Outstanding()
        self._executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="useraudit-walk")
        self._dispatch(root)
        error = self._outstanding.wait()
        if error is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            raise error
        self._executor.shutdown(wait=True)
        return self.progress.counts()

    def _dispatch(self, group: Container) -> None:
        if self._outstanding.failed:
            return
        self.progress.discovered(group)
        self._outstanding.add()
        try:
            self._executor.submit(self._visit, group)
        except RuntimeError:
            # The pool is shut down once the run has failed.
            self._outstanding.done()
            if not self._outstanding.failed:
                raise

    def _visit(self, group: Container) -> None:
        try:
            subgroups = self._traverse(group)
            for subgroup in subgroups:
                self._dispatch(subgroup)
        except Exception as exc:
            self._outstanding.fail(exc)
        finally:
            self._outstanding.done()

    def _traverse(self, group: Container) -> list[Container]:
        with self._gate:
            if self._outstanding.failed:
                return []
            self.progress.started(group)
            try:
                subgroups = collect_container(
                    self._client,
                    group,
                    self._pipeline,
                    self._sink,
                    per_page=self._per_page,
                    include_members=self._include_root_members or group != self._root,
                    progress=self.progress,
                )
            except Exception:
                self.progress.finished(group, failed=True)
                raise
            self.progress.finished(group)
            return subgroups
