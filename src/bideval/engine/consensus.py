"""Consensus building.

Agreement is the share of active evaluators listed in ``agreed_by``. The
gate passes when agreement is at least the evaluation's threshold, or every
active evaluator when consensus is disabled for the evaluation.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime
from decimal import Decimal

from bideval.engine.errors import ThresholdNotMetError, ValidationError
from bideval.engine.lifecycle import require_transition
from bideval.engine.scoring import quantize, to_decimal
from bideval.models.evaluation import (
    ConsensusRecord,
    DisputeAnnotation,
    Evaluation,
    EvaluationStatus,
    FinalScore,
    ScoringMethod,
)

FULL_AGREEMENT = Decimal("100")


def required_percentage(evaluation: Evaluation) -> Decimal:
    """Agreement percentage needed to build consensus."""
    if not evaluation.allow_consensus:
        return FULL_AGREEMENT
    return to_decimal(evaluation.consensus_threshold)


def agreement_percentage(evaluation: Evaluation, agreed_by: Collection[str]) -> Decimal:
    """Percentage of active evaluators that agreed."""
    active = evaluation.active_evaluator_ids()
    if not active:
        return Decimal("0")
    agreed = active.intersection(agreed_by)
    return quantize(Decimal(len(agreed)) * 100 / Decimal(len(active)))


def meets_threshold(evaluation: Evaluation, agreed_by: Collection[str]) -> bool:
    """Exact agreement check; the rounded percentage is for reporting only."""
    active = evaluation.active_evaluator_ids()
    if not active:
        return False
    agreed = len(active.intersection(agreed_by))
    return Decimal(agreed) * FULL_AGREEMENT >= required_percentage(evaluation) * len(active)


def _dedupe(values: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _validate_final_scores(
    evaluation: Evaluation,
    final_scores: Sequence[FinalScore],
    scored_submission_ids: Collection[str],
    submission_ids: Collection[str],
) -> None:
    seen: set[str] = set()
    known = frozenset(submission_ids)
    if evaluation.scoring_method == ScoringMethod.RANKING:
        lower, upper = Decimal("1"), Decimal(evaluation.submission_count or len(known))
    else:
        lower, upper = Decimal("0"), to_decimal(evaluation.max_score)

    for final in final_scores:
        if final.submission_id in seen:
            raise ValidationError(
                f"Duplicate final score for submission {final.submission_id}",
                field="final_scores",
            )
        seen.add(final.submission_id)
        if final.submission_id not in known:
            raise ValidationError(
                f"Submission {final.submission_id} does not belong to this RFQ",
                field="final_scores",
            )
        if not lower <= to_decimal(final.score) <= upper:
            raise ValidationError(
                f"Final score for submission {final.submission_id} must be within "
                f"[{lower}, {upper}]",
                field="final_scores",
            )

    missing = sorted(set(scored_submission_ids) - seen)
    if missing:
        raise ValidationError(
            f"Final scores missing for submissions: {', '.join(missing)}",
            field="final_scores",
        )


def build_consensus_record(
    evaluation: Evaluation,
    *,
    consensus_id: str,
    final_scores: Sequence[FinalScore],
    agreed_by: Sequence[str],
    facilitated_by: str,
    scored_submission_ids: Collection[str],
    submission_ids: Collection[str],
    now: datetime,
    disputes: Sequence[DisputeAnnotation] = (),
    consensus_notes: str | None = None,
    resolution: str | None = None,
) -> ConsensusRecord:
    """Check the agreement gate and build the consensus record.

    Raises:
        StateConflictError: If the evaluation is not awaiting consensus.
        ValidationError: If agreed_by names a non-active evaluator or the
            final scores are incomplete or out of range.
        ThresholdNotMetError: If agreement is below the required percentage.
    """
    require_transition(evaluation, EvaluationStatus.COMPLETED, "build consensus for")

    agreed = _dedupe(agreed_by)
    if not agreed:
        raise ValidationError("agreed_by must list at least one evaluator", field="agreed_by")
    active = evaluation.active_evaluator_ids()
    outsiders = [user_id for user_id in agreed if user_id not in active]
    if outsiders:
        raise ValidationError(
            f"Not active evaluators: {', '.join(outsiders)}",
            field="agreed_by",
        )

    _validate_final_scores(evaluation, final_scores, scored_submission_ids, submission_ids)

    required = required_percentage(evaluation)
    actual = agreement_percentage(evaluation, agreed)
    if not meets_threshold(evaluation, agreed):
        raise ThresholdNotMetError(required=float(required), actual=float(actual))

    return ConsensusRecord(
        consensus_id=consensus_id,
        evaluation_id=evaluation.evaluation_id,
        final_scores=list(final_scores),
        agreed_by=agreed,
        agreement_percentage=float(actual),
        required_percentage=float(required),
        disputes=list(disputes),
        consensus_notes=consensus_notes,
        resolution=resolution,
        facilitated_by=facilitated_by,
        created_at=now,
    )
