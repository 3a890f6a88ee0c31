"""External collaborators of the evaluation service."""

from bideval.services.collaborators.report import InMemoryReportService, ReportService
from bideval.services.collaborators.rfq import (
    HttpRfqDirectory,
    InMemoryRfqDirectory,
    RfqDirectory,
    RfqDirectoryError,
    get_rfq_directory,
)

__all__ = [
    "HttpRfqDirectory",
    "InMemoryReportService",
    "InMemoryRfqDirectory",
    "ReportService",
    "RfqDirectory",
    "RfqDirectoryError",
    "get_rfq_directory",
]
