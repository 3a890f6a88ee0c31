"""BidEval audit module - append-only audit event logging."""

from bideval.audit.events import AuditEventType, build_audit_event
from bideval.audit.sink import (
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    get_audit_sink,
)

__all__ = [
    "AuditEventType",
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "build_audit_event",
    "get_audit_sink",
]
