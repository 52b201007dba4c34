from __future__ import annotations

from datetime import date
from typing import Any, Optional
import urllib.parse

import requests

from useraudit.errors import FetchError
from useraudit.models import Container, ContainerKind, Member, coerce_access_level
from useraudit.paginate import Page


DEFAULT_BASE_URL = "https://gitlab.com"


def _header_int(headers: Any, name: str) -> Optional[int]:
    raw = (headers.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def page_from_headers(items: list, headers: Any, *, requested_page: int) -> Page:
    """
    Build a Page from GitLab's X-Page / X-Total-Pages headers.

    GitLab drops X-Total-Pages for very large collections; then the presence of
    X-Next-Page decides whether another page follows.
    """
    current = _header_int(headers, "X-Page") or requested_page
    total = _header_int(headers, "X-Total-Pages")
    if total is None:
        total = current + 1 if _header_int(headers, "X-Next-Page") else current
    return Page(items=items, current_page=current, total_pages=total)


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise FetchError(f"Malformed expires_at `{value}`") from exc


class GitLabClient:
    """Read-only GitLab REST v4 client exposing the paged list calls the audit needs."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ) -> None:
        self._api = base_url.rstrip("/") + "/api/v4"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"PRIVATE-TOKEN": token, "Accept": "application/json"})

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> tuple[Any, Any]:
        url = f"{self._api}{path}"
        try:
            r = self._session.get(url, params=params or {}, timeout=self._timeout)
        except requests.RequestException as exc:
            raise FetchError(f"GET {url} failed: {exc}", url=url) from exc
        if r.status_code >= 400:
            raise FetchError(
                f"GET {url} failed ({r.status_code}): {r.text[:200]}",
                url=url,
                status=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as exc:
            raise FetchError(f"GET {url} returned a non-JSON body", url=url, status=r.status_code) from exc
        return data, r.headers

    def _get_page(self, path: str, page: int, per_page: int, **params: Any) -> Page:
        params.update({"page": page, "per_page": per_page})
        data, headers = self._get(path, params)
        if not isinstance(data, list):
            raise FetchError(f"Unexpected response for {path} (not a JSON list)", url=f"{self._api}{path}")
        return page_from_headers(data, headers, requested_page=page)

    @staticmethod
    def _quote_id(container_id: Any) -> str:
        # Groups may be addressed by full path ("parent/child").
        return urllib.parse.quote(str(container_id), safe="")

    def get_group(self, group_id: Any) -> Container:
        data, _ = self._get(f"/groups/{self._quote_id(group_id)}", {"with_projects": "false"})
        if not isinstance(data, dict):
            raise FetchError(f"Unexpected response for group {group_id} (not a JSON object)")
        return self._group(data)

    def list_group_projects(self, group_id: int, page: int, per_page: int) -> Page[Container]:
        raw = self._get_page(
            f"/groups/{self._quote_id(group_id)}/projects",
            page,
            per_page,
            with_shared="false",
            include_subgroups="false",
        )
        return Page([self._project(p) for p in raw.items], raw.current_page, raw.total_pages)

    def list_subgroups(self, group_id: int, page: int, per_page: int) -> Page[Container]:
        raw = self._get_page(f"/groups/{self._quote_id(group_id)}/subgroups", page, per_page)
        return Page([self._group(g) for g in raw.items], raw.current_page, raw.total_pages)

    def list_group_members(self, group_id: int, page: int, per_page: int) -> Page[Member]:
        raw = self._get_page(f"/groups/{self._quote_id(group_id)}/members", page, per_page)
        return Page([self._member(m) for m in raw.items], raw.current_page, raw.total_pages)

    def list_project_members(self, project_id: int, page: int, per_page: int) -> Page[Member]:
        raw = self._get_page(f"/projects/{self._quote_id(project_id)}/members", page, per_page)
        return Page([self._member(m) for m in raw.items], raw.current_page, raw.total_pages)

    @staticmethod
    def _group(data: dict) -> Container:
        try:
            return Container(
                kind=ContainerKind.GROUP,
                id=int(data["id"]),
                path=str(data.get("full_path") or data.get("path") or ""),
                web_url=str(data.get("web_url") or ""),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"Malformed group payload: {exc}") from exc

    @staticmethod
    def _project(data: dict) -> Container:
        try:
            return Container(
                kind=ContainerKind.PROJECT,
                id=int(data["id"]),
                path=str(data.get("path_with_namespace") or data.get("path") or ""),
                web_url=str(data.get("web_url") or ""),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"Malformed project payload: {exc}") from exc

    @staticmethod
    def _member(data: dict) -> Member:
        try:
            return Member(
                username=str(data["username"]),
                user_id=int(data["id"]),
                access_level=coerce_access_level(data["access_level"]),
                expires_at=_parse_date(data.get("expires_at")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"Malformed member payload: {exc}") from exc
