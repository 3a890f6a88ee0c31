"""Evaluation lifecycle state machine.

Legal transitions::

    draft -> active -> in_progress -> consensus -> completed -> finalized
    draft -> cancelled

``active`` becomes ``in_progress`` when the first score is recorded and
``in_progress`` becomes ``consensus`` when every active evaluator has scored
every submission. Everything else is rejected with StateConflictError.

The functions here are pure: they check the current state and return the
updated Evaluation. Persisting the result atomically is the store's job.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime

from bideval.engine.errors import (
    NoSubmissionsError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from bideval.models.evaluation import Evaluation, EvaluationStatus, Evaluator, EvaluatorStatus

ALLOWED_TRANSITIONS: dict[EvaluationStatus, frozenset[EvaluationStatus]] = {
    EvaluationStatus.DRAFT: frozenset({EvaluationStatus.ACTIVE, EvaluationStatus.CANCELLED}),
    EvaluationStatus.ACTIVE: frozenset({EvaluationStatus.IN_PROGRESS}),
    EvaluationStatus.IN_PROGRESS: frozenset({EvaluationStatus.CONSENSUS}),
    EvaluationStatus.CONSENSUS: frozenset({EvaluationStatus.COMPLETED}),
    EvaluationStatus.COMPLETED: frozenset({EvaluationStatus.FINALIZED}),
    EvaluationStatus.FINALIZED: frozenset(),
    EvaluationStatus.CANCELLED: frozenset(),
}

MEMBERSHIP_STATUSES: frozenset[EvaluationStatus] = frozenset(
    {EvaluationStatus.DRAFT, EvaluationStatus.ACTIVE, EvaluationStatus.IN_PROGRESS}
)


def can_transition(current: EvaluationStatus, target: EvaluationStatus) -> bool:
    """Return True if current -> target is a legal transition."""
    return target in ALLOWED_TRANSITIONS[current]


def require_status(
    evaluation: Evaluation,
    allowed: Collection[EvaluationStatus],
    operation: str,
) -> None:
    """Raise StateConflictError unless the evaluation is in an allowed status."""
    if evaluation.status not in allowed:
        expected = ", ".join(sorted(s.value for s in allowed))
        raise StateConflictError(
            f"Cannot {operation} evaluation in status {evaluation.status.value} "
            f"(expected {expected})",
            current_status=evaluation.status.value,
            operation=operation,
        )


def require_transition(evaluation: Evaluation, target: EvaluationStatus, operation: str) -> None:
    """Raise StateConflictError unless the evaluation may move to target."""
    if not can_transition(evaluation.status, target):
        raise StateConflictError(
            f"Cannot {operation} evaluation in status {evaluation.status.value}",
            current_status=evaluation.status.value,
            operation=operation,
        )


def apply_update(
    evaluation: Evaluation, changes: dict[str, object], *, now: datetime
) -> Evaluation:
    """Return the draft evaluation with changes applied."""
    require_status(evaluation, {EvaluationStatus.DRAFT}, "update")
    return evaluation.model_copy(update={**changes, "updated_at": now})


def apply_start(
    evaluation: Evaluation,
    *,
    actor_id: str,
    submission_count: int,
    now: datetime,
) -> Evaluation:
    """Return the evaluation moved from draft to active.

    Raises:
        StateConflictError: If the evaluation is not a draft.
        NoSubmissionsError: If the RFQ has no submissions.
    """
    require_transition(evaluation, EvaluationStatus.ACTIVE, "start")
    if submission_count < 1:
        raise NoSubmissionsError(evaluation.rfq_id)
    return evaluation.model_copy(
        update={
            "status": EvaluationStatus.ACTIVE,
            "started_by": actor_id,
            "started_at": now,
            "submission_count": submission_count,
            "updated_at": now,
        }
    )


def apply_cancel(
    evaluation: Evaluation,
    *,
    actor_id: str,
    reason: str | None,
    now: datetime,
) -> Evaluation:
    """Return the draft evaluation moved to cancelled."""
    require_transition(evaluation, EvaluationStatus.CANCELLED, "cancel")
    return evaluation.model_copy(
        update={
            "status": EvaluationStatus.CANCELLED,
            "cancelled_by": actor_id,
            "cancelled_at": now,
            "cancellation_reason": reason,
            "updated_at": now,
        }
    )


def add_evaluator(
    evaluation: Evaluation,
    *,
    user_id: str,
    role: str,
    now: datetime,
) -> Evaluation:
    """Return the evaluation with user_id assigned as an active evaluator.

    A previously removed evaluator is reactivated and their earlier scores
    count again.
    """
    require_status(evaluation, MEMBERSHIP_STATUSES, "add evaluator to")
    if evaluation.is_active_evaluator(user_id):
        raise ValidationError(f"User {user_id} is already an evaluator", field="user_id")

    assigned = Evaluator(user_id=user_id, role=role, assigned_at=now)
    evaluators = [e for e in evaluation.evaluators if e.user_id != user_id]
    evaluators.append(assigned)
    return evaluation.model_copy(update={"evaluators": evaluators, "updated_at": now})


def remove_evaluator(evaluation: Evaluation, *, user_id: str, now: datetime) -> Evaluation:
    """Return the evaluation with user_id marked removed.

    Raises:
        NotFoundError: If user_id is not an active evaluator.
        ValidationError: If user_id is the last active evaluator.
    """
    require_status(evaluation, MEMBERSHIP_STATUSES, "remove evaluator from")
    if not evaluation.is_active_evaluator(user_id):
        raise NotFoundError("evaluator", user_id)
    if len(evaluation.active_evaluators()) == 1:
        raise ValidationError("Cannot remove the last active evaluator", field="user_id")

    evaluators = [
        e.model_copy(update={"status": EvaluatorStatus.REMOVED, "removed_at": now})
        if e.user_id == user_id
        else e
        for e in evaluation.evaluators
    ]
    return evaluation.model_copy(update={"evaluators": evaluators, "updated_at": now})
