from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum, IntEnum
from typing import Any, Optional


class AccessLevel(IntEnum):
    NONE = 0
    MINIMAL_ACCESS = 5
    GUEST = 10
    PLANNER = 15
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40
    OWNER = 50


def coerce_access_level(value: Any) -> int:
    """Known levels become AccessLevel members; levels newer than this table keep their raw int."""
    value = int(value)
    try:
        return AccessLevel(value)
    except ValueError:
        return value


def access_level_to_string(value: int) -> str:
    try:
        return AccessLevel(value).name.lower()
    except ValueError:
        return str(value)


class ContainerKind(str, Enum):
    GROUP = "group"
    PROJECT = "project"

    @property
    def members_segment(self) -> str:
        return f"{self.value}_members"


@dataclass(frozen=True)
class Container:
    kind: ContainerKind
    id: int
    path: str
    web_url: str

    @property
    def is_group(self) -> bool:
        return self.kind is ContainerKind.GROUP


@dataclass(frozen=True)
class Member:
    username: str
    user_id: int
    access_level: int
    expires_at: Optional[date] = None


@dataclass(frozen=True)
class CanonicalRecord:
    kind: ContainerKind
    container_id: int
    path: str
    username: str
    user_id: int
    access_level: int
    expires_at: Optional[date]
    members_url: str

    @property
    def key(self) -> tuple[str, int, str]:
        # Group and project ids are separate sequences in GitLab.
        return (self.kind.value, self.container_id, self.username)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "container_id": self.container_id,
            "path": self.path,
            "username": self.username,
            "user_id": self.user_id,
            "access_level": access_level_to_string(self.access_level),
            "access_level_value": int(self.access_level),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "members_url": self.members_url,
        }
