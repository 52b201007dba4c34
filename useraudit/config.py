from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional
import os

import yaml

from useraudit.client import DEFAULT_BASE_URL
from useraudit.errors import ConfigurationError
from useraudit.paginate import DEFAULT_PAGE_SIZE
from useraudit.walker import DEFAULT_MAX_CONCURRENCY


MAX_PAGE_SIZE = 100  # GitLab caps per_page at 100


@dataclass(frozen=True)
class AuditConfig:
    token: str
    group_id: str
    base_url: str = DEFAULT_BASE_URL
    excluded_users: tuple[str, ...] = ()
    page_size: int = DEFAULT_PAGE_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    include_root_members: bool = True
    out_json: Optional[str] = None
    show_progress: bool = False


def split_usernames(values: Optional[Iterable[str]]) -> list[str]:
    """Accept both `--excluded-users a,b` and repeated `--excluded-users a --excluded-users b`."""
    out: list[str] = []
    for item in values or []:
        if not isinstance(item, str):
            continue
        for part in item.split(","):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out


def load_excluded_users(path: str) -> list[str]:
    """
    Read usernames from a YAML file. Either a plain list:

        - alice
        - bob

    or a mapping with an `excluded_users` list.
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Exclusion file `{path}` not found.")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to parse `{path}`: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("excluded_users")
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(u, str) for u in data):
        raise ConfigurationError(f"`{path}` must hold a list of usernames (or an `excluded_users` list).")
    return split_usernames(data)


def build_config(
    *,
    token: Optional[str],
    group_id: Optional[str],
    base_url: Optional[str] = None,
    excluded_users: Optional[Iterable[str]] = None,
    exclude_file: Optional[str] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    include_root_members: bool = True,
    out_json: Optional[str] = None,
    show_progress: bool = False,
    environ: Optional[dict[str, Any]] = None,
) -> AuditConfig:
    env = os.environ if environ is None else environ

    token = (token or env.get("GITLAB_TOKEN") or "").strip()
    if not token:
        raise ConfigurationError("Missing GitLab token. Use --gitlab-token or set GITLAB_TOKEN.")

    group_id = (group_id or "").strip()
    if not group_id:
        raise ConfigurationError("Missing root group. Use --gid with a group id or full path.")

    base_url = (base_url or env.get("GITLAB_URL") or DEFAULT_BASE_URL).strip().rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid --base-url `{base_url}` (expected http:// or https://).")

    if not 1 <= int(page_size) <= MAX_PAGE_SIZE:
        raise ConfigurationError(f"--page-size must be between 1 and {MAX_PAGE_SIZE}.")
    if int(max_concurrency) < 1:
        raise ConfigurationError("--max-concurrency must be at least 1.")

    users = split_usernames(excluded_users)
    if exclude_file:
        for u in load_excluded_users(exclude_file):
            if u not in users:
                users.append(u)

    return AuditConfig(
        token=token,
        group_id=group_id,
        base_url=base_url,
        excluded_users=tuple(users),
        page_size=int(page_size),
        max_concurrency=int(max_concurrency),
        include_root_members=include_root_members,
        out_json=out_json,
        show_progress=show_progress,
    )
