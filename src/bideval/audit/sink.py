"""Where evaluation audit events go.

Sinks are append-only. An event that cannot be serialized or written raises
AuditSinkError; the evaluation service logs it and carries on, so a broken
sink never rolls back a committed state change.

Events are stored as canonical JSON (sorted keys, compact separators) so two
sinks given the same event hold byte-identical records.

Environment Variables:
    BIDEVAL_AUDIT_LOG_PATH: JSONL file to append to. When unset events are
        kept in memory.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "BIDEVAL_AUDIT_LOG_PATH"


class AuditSinkError(Exception):
    """An audit event could not be recorded."""


@runtime_checkable
class AuditSink(Protocol):
    def emit(self, event: dict[str, Any]) -> None:
        """Record one event or raise AuditSinkError."""
        ...


def serialize_event(event: dict[str, Any]) -> str:
    """Canonical single-line JSON for an audit event."""
    try:
        return json.dumps(event, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Audit event is not JSON serializable: {e}") from e


class JsonlFileAuditSink:
    """Appends one canonical JSON line per event to a file.

    The parent directory is created on first write. Existing content is never
    truncated.
    """

    def __init__(self, file_path: str | Path) -> None:
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        line = serialize_event(event)
        try:
            with self._lock:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise AuditSinkError(f"Cannot append to audit log {self.file_path}: {e}") from e

    def read_events(self) -> Iterator[dict[str, Any]]:
        """Replay the log in write order. A missing file yields nothing."""
        if not self.file_path.exists():
            return
        with self.file_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)


class InMemoryAuditSink:
    """Keeps events in process; used by tests and when no log path is set.

    Events are round-tripped through serialize_event so callers see exactly
    what a file sink would have written.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: list[str] = []

    def emit(self, event: dict[str, Any]) -> None:
        line = serialize_event(event)
        with self._lock:
            self._lines.append(line)

    @property
    def events(self) -> list[dict[str, Any]]:
        with self._lock:
            lines = list(self._lines)
        return [json.loads(line) for line in lines]

    def event_types(self) -> list[str]:
        return [e["event_type"] for e in self.events]

    def for_evaluation(self, evaluation_id: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["resource"]["resource_id"] == evaluation_id]

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()


def get_audit_sink() -> AuditSink:
    """JSONL sink when BIDEVAL_AUDIT_LOG_PATH is set, else in memory."""
    path = os.environ.get(AUDIT_LOG_PATH_ENV)
    if path:
        return JsonlFileAuditSink(path)
    logger.info("%s not set; audit events are kept in memory", AUDIT_LOG_PATH_ENV)
    return InMemoryAuditSink()
