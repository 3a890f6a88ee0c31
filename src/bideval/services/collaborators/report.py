"""Report service collaborator: consumes the JSON evaluation report."""

from __future__ import annotations

import threading
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ReportService(Protocol):
    """Accepts evaluation reports for rendering and archival."""

    def submit_report(self, evaluation_id: str, report: dict[str, Any]) -> None: ...


class InMemoryReportService:
    """Keeps submitted reports in memory, keyed by evaluation id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reports: dict[str, dict[str, Any]] = {}

    def submit_report(self, evaluation_id: str, report: dict[str, Any]) -> None:
        with self._lock:
            self._reports[evaluation_id] = report

    def get_report(self, evaluation_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._reports.get(evaluation_id)
