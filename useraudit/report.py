from __future__ import annotations

import json
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, TextIO

from useraudit.models import CanonicalRecord
from useraudit.normalize import access_level_to_string


SCHEMA_VERSION = 1
TOOL_NAME = "GitLab User Audit"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def atomic_write_json(path: str, obj: Any) -> None:
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=False, default=str)
        f.write("\n")
    os.replace(tmp_path, path)


def format_record(record: CanonicalRecord) -> str:
    expires = record.expires_at.isoformat() if record.expires_at else ""
    return (
        f"{record.kind.value:<10} {record.path:<50} {record.username:<30} "
        f"{access_level_to_string(record.access_level):<20} {expires:<15} {record.members_url}"
    )


class TableSink:
    """Prints one fixed-width line per record. Safe to call from several threads."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self.count = 0

    def emit(self, record: CanonicalRecord) -> None:
        line = format_record(record)
        with self._lock:
            print(line, file=self._stream or sys.stdout, flush=True)
            self.count += 1


class JsonReportSink:
    """Collects records in memory for a single JSON report written at the end of the run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[dict] = []

    def emit(self, record: CanonicalRecord) -> None:
        with self._lock:
            self._records.append(record.to_dict())

    @property
    def records(self) -> list[dict]:
        with self._lock:
            return list(self._records)

    def write(self, path: str, *, root: dict, elapsed_seconds: Optional[float] = None) -> dict:
        report = build_report(root=root, records=self.records, elapsed_seconds=elapsed_seconds)
        atomic_write_json(path, report)
        return report


class MultiSink:
    def __init__(self, sinks: Iterable[Any]) -> None:
        self._sinks = list(sinks)

    def emit(self, record: CanonicalRecord) -> None:
        for sink in self._sinks:
            sink.emit(record)


def build_report(
    *,
    root: dict,
    records: list[dict],
    elapsed_seconds: Optional[float] = None,
) -> dict:
    by_level: dict[str, int] = {}
    by_type: dict[str, int] = {}
    for r in records:
        lvl = r.get("access_level") or "unknown"
        by_level[lvl] = by_level.get(lvl, 0) + 1
        typ = r.get("type") or "unknown"
        by_type[typ] = by_type.get(typ, 0) + 1

    summary: dict[str, Any] = {
        "total_records": len(records),
        "by_access_level": by_level,
        "by_type": by_type,
    }
    if elapsed_seconds is not None:
        summary["elapsed_seconds"] = round(elapsed_seconds, 3)

    return {
        "tool": TOOL_NAME,
        "schema_version": SCHEMA_VERSION,
        "generated_at": utc_now_iso(),
        "root": root,
        "records": records,
        "summary": summary,
    }
