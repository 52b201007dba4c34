"""Pytest fixtures for the GitLab user audit tests."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import pytest

from useraudit.errors import FetchError
from useraudit.models import AccessLevel, Container, ContainerKind, Member
from useraudit.paginate import Page


# --- Synthetic tree ---


def make_group(group_id: int, path: str) -> Container:
    return Container(ContainerKind.GROUP, group_id, path, f"https://gitlab.example.com/groups/{path}")


def make_project(project_id: int, path: str) -> Container:
    return Container(ContainerKind.PROJECT, project_id, path, f"https://gitlab.example.com/{path}")


def make_member(username: str, level: int = AccessLevel.DEVELOPER, user_id: Optional[int] = None) -> Member:
    return Member(username=username, user_id=user_id or sum(map(ord, username)), access_level=level)


@dataclass
class FakeNode:
    container: Container
    members: list[Member] = field(default_factory=list)
    subgroups: list["FakeNode"] = field(default_factory=list)
    projects: list["FakeNode"] = field(default_factory=list)


def _slice(items: list, page: int, per_page: int) -> Page:
    total = max(1, -(-len(items) // per_page))
    start = (page - 1) * per_page
    return Page(items=list(items[start : start + per_page]), current_page=page, total_pages=total)


class FakeGitLabClient:
    """In-memory GitLab client with real page slicing, call log and in-flight accounting."""

    def __init__(self, root: FakeNode, *, delay: float = 0.0) -> None:
        self.root = root
        self.delay = delay
        self._groups: dict[int, FakeNode] = {}
        self._projects: dict[int, FakeNode] = {}
        self._index(root)
        self._lock = threading.Lock()
        self.calls: list[tuple[str, int, int]] = []
        self.fail_on: dict[tuple[str, int], Exception] = {}
        self.delays: dict[int, float] = {}
        self.in_flight = 0
        self.peak_in_flight = 0

    def _index(self, node: FakeNode) -> None:
        self._groups[node.container.id] = node
        for p in node.projects:
            self._projects[p.container.id] = p
        for sub in node.subgroups:
            self._index(sub)

    def _call(self, name: str, container_id: int, page: int) -> None:
        with self._lock:
            self.calls.append((name, container_id, page))
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            exc = self.fail_on.get((name, container_id))
            if exc is not None:
                raise exc
            delay = self.delays.get(container_id, self.delay)
            if delay:
                time.sleep(delay)
        finally:
            with self._lock:
                self.in_flight -= 1

    def get_group(self, group_id) -> Container:
        node = self._groups.get(int(group_id))
        if node is None:
            raise FetchError(f"group {group_id} not found", status=404)
        return node.container

    def list_group_members(self, group_id: int, page: int, per_page: int) -> Page[Member]:
        self._call("list_group_members", group_id, page)
        return _slice(self._groups[group_id].members, page, per_page)

    def list_project_members(self, project_id: int, page: int, per_page: int) -> Page[Member]:
        self._call("list_project_members", project_id, page)
        return _slice(self._projects[project_id].members, page, per_page)

    def list_group_projects(self, group_id: int, page: int, per_page: int) -> Page[Container]:
        self._call("list_group_projects", group_id, page)
        return _slice([p.container for p in self._groups[group_id].projects], page, per_page)

    def list_subgroups(self, group_id: int, page: int, per_page: int) -> Page[Container]:
        self._call("list_subgroups", group_id, page)
        return _slice([g.container for g in self._groups[group_id].subgroups], page, per_page)

    def calls_named(self, name: str) -> list[tuple[str, int, int]]:
        with self._lock:
            return [c for c in self.calls if c[0] == name]


class RecordingSink:
    """Thread-safe sink that keeps every record it receives."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records = []

    def emit(self, record) -> None:
        with self._lock:
            self.records.append(record)


def build_depth3_tree() -> FakeNode:
    """root -> 2 subgroups -> 1 project each; every container has 2 members."""
    root = FakeNode(make_group(1, "acme"), [make_member("root-a"), make_member("root-b")])
    for i in (1, 2):
        sub = FakeNode(
            make_group(10 + i, f"acme/team{i}"),
            [make_member(f"team{i}-a"), make_member(f"team{i}-b", AccessLevel.MAINTAINER)],
        )
        sub.projects.append(
            FakeNode(
                make_project(100 + i, f"acme/team{i}/svc"),
                [make_member(f"svc{i}-a", AccessLevel.REPORTER), make_member(f"svc{i}-b", AccessLevel.OWNER)],
            )
        )
        root.subgroups.append(sub)
    return root


def build_chain_tree(depth: int) -> FakeNode:
    """A single line of nested groups, `depth` levels below the root, one member each."""
    root = FakeNode(make_group(1, "chain"), [make_member("m1")])
    node = root
    path = "chain"
    for level in range(2, depth + 2):
        path = f"{path}/l{level}"
        child = FakeNode(make_group(level, path), [make_member(f"m{level}")])
        node.subgroups.append(child)
        node = child
    return root


def build_wide_tree(width: int, members_per_group: int = 1) -> FakeNode:
    root = FakeNode(make_group(1, "wide"))
    for i in range(width):
        gid = 1000 + i
        root.subgroups.append(
            FakeNode(
                make_group(gid, f"wide/g{i}"),
                [make_member(f"user{i}-{j}") for j in range(members_per_group)],
            )
        )
    return root


# --- Fixtures ---


@pytest.fixture
def depth3_tree() -> FakeNode:
    return build_depth3_tree()


@pytest.fixture
def fake_client(depth3_tree: FakeNode) -> FakeGitLabClient:
    return FakeGitLabClient(depth3_tree)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def group() -> Container:
    return make_group(42, "acme/platform")


@pytest.fixture
def project() -> Container:
    return make_project(7, "acme/platform/api")
