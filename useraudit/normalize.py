from __future__ import annotations

from useraudit.models import CanonicalRecord, Container, Member, access_level_to_string


def members_url(container: Container, username: str) -> str:
    return f"{container.web_url}/-/{container.kind.members_segment}?search={username}"


def normalize_member(container: Container, member: Member) -> CanonicalRecord:
    """
    Turn one (container, member) pair into a CanonicalRecord.

    Pure and total: no I/O, and the same inputs always give an equal record.
    """
    return CanonicalRecord(
        kind=container.kind,
        container_id=container.id,
        path=container.path,
        username=member.username,
        user_id=member.user_id,
        access_level=member.access_level,
        expires_at=member.expires_at,
        members_url=members_url(container, member.username),
    )
