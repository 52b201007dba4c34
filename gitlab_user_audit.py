#!/usr/bin/env python3

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from typing import Callable, Optional

from termcolor import colored
from tqdm import tqdm

from useraudit import __version__
from useraudit.client import GitLabClient
from useraudit.config import AuditConfig, build_config
from useraudit.errors import ConfigurationError, FetchError
from useraudit.filters import build_pipeline
from useraudit.paginate import DEFAULT_PAGE_SIZE
from useraudit.progress import WalkProgress
from useraudit.report import JsonReportSink, MultiSink, TableSink
from useraudit.walker import DEFAULT_MAX_CONCURRENCY, TreeWalker


EXIT_OK = 0
EXIT_FETCH_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_WRITE_ERROR = 3
EXIT_INTERRUPTED = 130

HELP = (
    "Report GitLab users whose permissions are set explicitly on a group or project "
    "instead of being inherited from the parent group."
)


def signal_handler(signum, frame):
    """Stop immediately; worker threads are not waited for."""
    print(f"\n{colored('[*] ', 'yellow')}Interrupt received. Aborting audit.", file=sys.stderr)
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(EXIT_INTERRUPTED)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="gitlab-user-audit", description=HELP)
    ap.add_argument(
        "-t",
        "--gitlab-token",
        "--gitlabToken",
        dest="gitlab_token",
        help="GitLab API access token (default: $GITLAB_TOKEN).",
    )
    ap.add_argument(
        "--gid",
        "--group-id",
        dest="gid",
        help="Root GitLab group id or full path to audit.",
    )
    ap.add_argument(
        "--excluded-users",
        "--excludedUsers",
        dest="excluded_users",
        action="append",
        default=[],
        help="Usernames whose Owner grants are not reported (comma-separated, repeatable).",
    )
    ap.add_argument(
        "--exclude-file",
        help="YAML file with usernames to exclude from Owner-level reports (list, or mapping with `excluded_users`).",
    )
    ap.add_argument("--base-url", help="GitLab instance URL (default: $GITLAB_URL or https://gitlab.com).")
    ap.add_argument(
        "--page-size",
        type=int,
        default=DEFAULT_PAGE_SIZE,
        help=f"Page size for API list calls (default: {DEFAULT_PAGE_SIZE}, max: 100).",
    )
    ap.add_argument(
        "--max-concurrency",
        type=int,
        default=DEFAULT_MAX_CONCURRENCY,
        help=f"Max groups traversed in parallel (default: {DEFAULT_MAX_CONCURRENCY}).",
    )
    ap.add_argument(
        "--skip-root-members",
        action="store_true",
        help="Do not report direct members of the root group itself.",
    )
    ap.add_argument("--out-json", dest="out_json", help="Also write the full report as JSON to this path.")
    ap.add_argument("--progress", action="store_true", help="Show a progress bar on stderr.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def config_from_args(args: argparse.Namespace) -> AuditConfig:
    return build_config(
        token=args.gitlab_token,
        group_id=args.gid,
        base_url=args.base_url,
        excluded_users=args.excluded_users,
        exclude_file=args.exclude_file,
        page_size=args.page_size,
        max_concurrency=args.max_concurrency,
        include_root_members=not args.skip_root_members,
        out_json=args.out_json,
        show_progress=args.progress,
    )


def run_audit(config: AuditConfig, *, client: Optional[GitLabClient] = None) -> int:
    start = time.monotonic()
    client = client or GitLabClient(config.token, base_url=config.base_url)

    pipeline = build_pipeline(config.excluded_users)
    if config.excluded_users:
        print(
            f"{colored('[*] ', 'yellow')}Ignoring Owner grants for: {', '.join(config.excluded_users)}",
            file=sys.stderr,
        )

    try:
        root = client.get_group(config.group_id)
    except FetchError as exc:
        print(f"{colored('[-] ', 'red')}Unable to fetch group {config.group_id}: {exc}", file=sys.stderr)
        return EXIT_FETCH_ERROR

    table = TableSink()
    json_sink = JsonReportSink() if config.out_json else None
    sink = MultiSink([table, json_sink]) if json_sink else table

    progress = WalkProgress(tqdm_factory=tqdm if config.show_progress else None)
    walker = TreeWalker(
        client,
        pipeline,
        sink,
        max_concurrency=config.max_concurrency,
        per_page=config.page_size,
        include_root_members=config.include_root_members,
        progress=progress,
    )
    try:
        counts = walker.run(root)
    except FetchError as exc:
        print(f"{colored('[-] ', 'red')}Audit of {root.path} failed: {exc}", file=sys.stderr)
        return EXIT_FETCH_ERROR
    finally:
        progress.close()

    elapsed = time.monotonic() - start
    if json_sink is not None:
        try:
            json_sink.write(
                config.out_json,
                root={"id": root.id, "path": root.path, "web_url": root.web_url},
                elapsed_seconds=elapsed,
            )
        except OSError as exc:
            print(f"{colored('[-] ', 'red')}Unable to write JSON report to {config.out_json}: {exc}", file=sys.stderr)
            return EXIT_WRITE_ERROR
        print(f"{colored('[+] ', 'green')}JSON report written to {config.out_json}", file=sys.stderr)

    print(
        f"{colored('[+] ', 'green')}Audited {counts.get('visited', 0)} containers under {root.path}: "
        f"{table.count} direct grants reported in {elapsed:.2f}s",
        file=sys.stderr,
    )
    return EXIT_OK


def main(argv: Optional[list[str]] = None, *, client_factory: Optional[Callable[[AuditConfig], GitLabClient]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except ConfigurationError as exc:
        print(f"{colored('[-] ', 'red')}Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    client = client_factory(config) if client_factory else None
    return run_audit(config, client=client)


def cli() -> int:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    code = main()
    if code == EXIT_FETCH_ERROR:
        # Do not wait for walker threads still draining pages.
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(code)
    return code


if __name__ == "__main__":
    raise SystemExit(cli())
