"""Finalization: turn a completed consensus into an award recommendation."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from bideval.engine.errors import ValidationError
from bideval.engine.lifecycle import require_transition
from bideval.engine.scoring import rank_submissions
from bideval.models.evaluation import (
    ConsensusRecord,
    Evaluation,
    EvaluationStatus,
    RankingEntry,
    Recommendation,
    RecommendationType,
    ScoringMethod,
)
from bideval.models.rfq import Submission


def derive_rankings(
    evaluation: Evaluation,
    consensus: ConsensusRecord,
    submissions: Mapping[str, Submission],
) -> list[RankingEntry]:
    """Rank submissions by their consensus final scores.

    For ranking evaluations the final scores are mean ranks, so lower wins.
    """
    return rank_submissions(
        consensus.scores_by_submission(),
        submissions,
        lower_is_better=evaluation.scoring_method == ScoringMethod.RANKING,
    )


def _normalize_rankings(
    rankings: Sequence[RankingEntry],
    consensus: ConsensusRecord,
    submissions: Mapping[str, Submission],
) -> list[RankingEntry]:
    final_scores = consensus.scores_by_submission()
    seen_submissions: set[str] = set()
    seen_ranks: set[int] = set()
    normalized: list[RankingEntry] = []
    for entry in rankings:
        if entry.submission_id not in final_scores:
            raise ValidationError(
                f"Submission {entry.submission_id} is not part of the consensus",
                field="final_rankings",
            )
        if entry.submission_id in seen_submissions:
            raise ValidationError(
                f"Submission {entry.submission_id} is ranked more than once",
                field="final_rankings",
            )
        if entry.rank in seen_ranks:
            raise ValidationError(f"Duplicate rank {entry.rank}", field="final_rankings")
        seen_submissions.add(entry.submission_id)
        seen_ranks.add(entry.rank)

        submission = submissions.get(entry.submission_id)
        normalized.append(
            entry.model_copy(
                update={
                    "score": entry.score
                    if entry.score is not None
                    else final_scores[entry.submission_id],
                    "supplier_id": entry.supplier_id
                    or (submission.supplier_id if submission is not None else None),
                }
            )
        )
    return sorted(normalized, key=lambda e: e.rank)


def build_recommendation(
    evaluation: Evaluation,
    consensus: ConsensusRecord,
    *,
    recommendation_id: str,
    recommendation: RecommendationType,
    justification: str,
    finalized_by: str,
    submissions: Mapping[str, Submission],
    now: datetime,
    final_rankings: Sequence[RankingEntry] | None = None,
    recommended_supplier_id: str | None = None,
    conditions: Sequence[str] = (),
    next_steps: Sequence[str] = (),
) -> Recommendation:
    """Validate finalization input and build the recommendation.

    Raises:
        StateConflictError: If the evaluation is not completed.
        ValidationError: Missing justification, award without supplier,
            unknown supplier, or invalid rankings.
    """
    require_transition(evaluation, EvaluationStatus.FINALIZED, "finalize")

    if not justification.strip():
        raise ValidationError("Justification is required", field="justification")
    if recommendation == RecommendationType.AWARD and not recommended_supplier_id:
        raise ValidationError(
            "An award recommendation requires a recommended supplier",
            field="recommended_supplier_id",
        )
    if recommended_supplier_id:
        suppliers = {
            submissions[sid].supplier_id
            for sid in consensus.scores_by_submission()
            if sid in submissions
        }
        if recommended_supplier_id not in suppliers:
            raise ValidationError(
                f"Supplier {recommended_supplier_id} has no evaluated submission",
                field="recommended_supplier_id",
            )

    if final_rankings:
        rankings = _normalize_rankings(final_rankings, consensus, submissions)
    else:
        rankings = derive_rankings(evaluation, consensus, submissions)

    return Recommendation(
        recommendation_id=recommendation_id,
        evaluation_id=evaluation.evaluation_id,
        final_rankings=rankings,
        recommendation=recommendation,
        justification=justification,
        recommended_supplier_id=recommended_supplier_id,
        conditions=list(conditions),
        next_steps=list(next_steps),
        finalized_by=finalized_by,
        finalized_at=now,
    )
