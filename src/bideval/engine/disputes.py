"""Dispute records.

A dispute may be raised against an evaluation in any status. It is an
annotation only: scores, consensus and status are left untouched.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from bideval.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from bideval.engine.errors import ValidationError
from bideval.models.evaluation import Dispute, DisputeType, Evaluation, RequestedAction


def build_dispute(
    evaluation: Evaluation,
    *,
    dispute_id: str,
    dispute_type: DisputeType,
    description: str,
    requested_action: RequestedAction,
    raised_by: str,
    now: datetime,
    evidence: Sequence[str] = (),
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
) -> Dispute:
    """Build an open dispute against the evaluation."""
    text = description.strip()
    if not text:
        raise ValidationError("Dispute description is required", field="description")
    if len(text) > config.dispute_description_max_length:
        raise ValidationError(
            f"Dispute description exceeds {config.dispute_description_max_length} characters",
            field="description",
        )
    return Dispute(
        dispute_id=dispute_id,
        evaluation_id=evaluation.evaluation_id,
        dispute_type=dispute_type,
        description=text,
        evidence=list(evidence),
        requested_action=requested_action,
        raised_by=raised_by,
        evaluation_status_at_raise=evaluation.status,
        created_at=now,
    )
