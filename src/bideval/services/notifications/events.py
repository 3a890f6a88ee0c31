"""Notification events collected by evaluation operations."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(StrEnum):
    """Events evaluation operations notify about."""

    EVALUATOR_ASSIGNED = "evaluator_assigned"
    EVALUATION_UPDATED = "evaluation_updated"
    EVALUATION_STARTED = "evaluation_started"
    EVALUATOR_COMPLETED = "evaluator_completed"
    READY_FOR_CONSENSUS = "ready_for_consensus"
    CONSENSUS_REACHED = "consensus_reached"
    FINALIZED = "finalized"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class NotificationEvent(BaseModel):
    """One fire-and-forget notification."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: NotificationType
    evaluation_id: str
    recipients: list[str] = Field(default_factory=list)
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


def notification(
    event_type: NotificationType,
    *,
    evaluation_id: str,
    recipients: list[str] | tuple[str, ...] | frozenset[str],
    occurred_at: datetime,
    **payload: Any,
) -> NotificationEvent:
    """Shorthand for building a NotificationEvent with sorted recipients."""
    return NotificationEvent(
        event_type=event_type,
        evaluation_id=evaluation_id,
        recipients=sorted(set(recipients)),
        occurred_at=occurred_at,
        payload=payload,
    )
