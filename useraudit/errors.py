from __future__ import annotations

from typing import Optional


class AuditError(RuntimeError):
    pass


class FetchError(AuditError):
    """A single page or single-item fetch from GitLab failed. Never retried."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ConfigurationError(AuditError):
    pass
