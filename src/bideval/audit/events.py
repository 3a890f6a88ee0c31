"""Audit event construction for evaluation operations."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any


class AuditEventType(StrEnum):
    """Audit event types emitted by the evaluation service."""

    CREATED = "evaluation.created"
    UPDATED = "evaluation.updated"
    STARTED = "evaluation.started"
    EVALUATOR_ADDED = "evaluation.evaluator_added"
    EVALUATOR_REMOVED = "evaluation.evaluator_removed"
    SCORE_SUBMITTED = "evaluation.score_submitted"
    CONSENSUS_READY = "evaluation.consensus_ready"
    CONSENSUS_BUILT = "evaluation.consensus_built"
    FINALIZED = "evaluation.finalized"
    DISPUTED = "evaluation.disputed"
    CANCELLED = "evaluation.cancelled"


def build_audit_event(
    event_type: AuditEventType,
    *,
    evaluation_id: str,
    actor_id: str,
    occurred_at: datetime,
    request_id: str | None = None,
    status: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-serializable audit event.

    ``details`` must not carry score justifications or other free text from
    evaluators; callers pass identifiers and counts only.
    """
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type.value,
        "occurred_at": occurred_at.isoformat(),
        "actor": {"actor_id": actor_id},
        "request": {"request_id": request_id},
        "resource": {
            "resource_type": "evaluation",
            "resource_id": evaluation_id,
            "status": status,
        },
        "details": details or {},
    }
