"""Results, statistics and the evaluation report.

Results are only available once consensus has completed. Rankings come from
the consensus final scores; statistics describe the spread of the
individual evaluator scores behind each final score.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from bideval.engine.errors import ResultsNotAvailableError
from bideval.engine.finalization import derive_rankings
from bideval.engine.scoring import mean, mean_rank, quantize, to_decimal
from bideval.models.evaluation import (
    RESULT_STATUSES,
    ConsensusRecord,
    Dispute,
    Evaluation,
    EvaluationStatus,
    Recommendation,
    Score,
    ScoringMethod,
)
from bideval.models.rfq import Submission

REPORT_FORMAT_VERSION = "1.0"


class SubmissionStatistics(BaseModel):
    """Spread of evaluator scores for one submission."""

    model_config = ConfigDict(frozen=True)

    score_count: int
    mean: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    std_dev: float | None = None


class SubmissionResult(BaseModel):
    """One submission's place in the results."""

    model_config = ConfigDict(frozen=True)

    submission_id: str
    supplier_id: str | None = None
    supplier_name: str | None = None
    rank: int
    final_score: float
    passed: bool | None = None
    statistics: SubmissionStatistics


class EvaluationResults(BaseModel):
    """Results of a completed or finalized evaluation."""

    model_config = ConfigDict(frozen=True)

    evaluation_id: str
    status: EvaluationStatus
    scoring_method: ScoringMethod
    max_score: float
    passing_score: float | None = None
    agreement_percentage: float
    results: list[SubmissionResult]
    recommendation: Recommendation | None = None


def _score_value(evaluation: Evaluation, score: Score) -> Decimal | None:
    if evaluation.scoring_method == ScoringMethod.RANKING:
        values = score.values_by_criterion()
        return mean_rank(values) if values else None
    if score.overall_score is None:
        return None
    return to_decimal(score.overall_score)


def compute_statistics(values: Sequence[Decimal]) -> SubmissionStatistics:
    """Count, mean, min, max and population standard deviation."""
    if not values:
        return SubmissionStatistics(score_count=0)
    average = mean(values)
    variance = sum(((v - average) ** 2 for v in values), Decimal("0")) / Decimal(len(values))
    return SubmissionStatistics(
        score_count=len(values),
        mean=float(average),
        minimum=float(min(values)),
        maximum=float(max(values)),
        std_dev=float(quantize(variance.sqrt())),
    )


def build_results(
    evaluation: Evaluation,
    consensus: ConsensusRecord | None,
    scores: Iterable[Score],
    submissions: Mapping[str, Submission],
    recommendation: Recommendation | None = None,
) -> EvaluationResults:
    """Assemble rankings, statistics and passing flags.

    Raises:
        ResultsNotAvailableError: Before consensus has completed.
    """
    if evaluation.status not in RESULT_STATUSES or consensus is None:
        raise ResultsNotAvailableError(
            f"Results are not available for evaluation in status {evaluation.status.value}",
            current_status=evaluation.status.value,
            operation="get results",
        )

    active = evaluation.active_evaluator_ids()
    per_submission: dict[str, list[Decimal]] = {}
    for score in scores:
        if score.evaluator_id not in active:
            continue
        value = _score_value(evaluation, score)
        if value is not None:
            per_submission.setdefault(score.submission_id, []).append(value)

    passing = evaluation.passing_score
    check_passing = passing is not None and evaluation.scoring_method != ScoringMethod.RANKING
    results: list[SubmissionResult] = []
    for entry in derive_rankings(evaluation, consensus, submissions):
        submission = submissions.get(entry.submission_id)
        final_score = entry.score if entry.score is not None else 0.0
        results.append(
            SubmissionResult(
                submission_id=entry.submission_id,
                supplier_id=entry.supplier_id,
                supplier_name=submission.supplier_name if submission is not None else None,
                rank=entry.rank,
                final_score=final_score,
                passed=(final_score >= passing) if check_passing else None,
                statistics=compute_statistics(per_submission.get(entry.submission_id, [])),
            )
        )

    return EvaluationResults(
        evaluation_id=evaluation.evaluation_id,
        status=evaluation.status,
        scoring_method=evaluation.scoring_method,
        max_score=evaluation.max_score,
        passing_score=evaluation.passing_score,
        agreement_percentage=consensus.agreement_percentage,
        results=results,
        recommendation=recommendation,
    )


def visible_scores(
    evaluation: Evaluation,
    scores: Iterable[Score],
    *,
    viewer_id: str,
    can_read_all: bool,
) -> list[Score]:
    """Scores the viewer may see.

    Blind evaluations show a viewer without the read-all capability only
    their own scores.
    """
    if can_read_all or not evaluation.is_blind_evaluation:
        return list(scores)
    return [s for s in scores if s.evaluator_id == viewer_id]


def build_report(
    evaluation: Evaluation,
    results: EvaluationResults,
    consensus: ConsensusRecord,
    disputes: Sequence[Dispute],
    *,
    generated_at: datetime,
) -> dict[str, Any]:
    """Build the JSON evaluation report handed to the report service."""
    return {
        "format_version": REPORT_FORMAT_VERSION,
        "generated_at": generated_at.isoformat(),
        "evaluation": {
            "evaluation_id": evaluation.evaluation_id,
            "evaluation_number": evaluation.evaluation_number,
            "rfq_id": evaluation.rfq_id,
            "title": evaluation.title,
            "evaluation_type": evaluation.evaluation_type.value,
            "scoring_method": evaluation.scoring_method.value,
            "status": evaluation.status.value,
            "max_score": evaluation.max_score,
            "passing_score": evaluation.passing_score,
            "is_blind_evaluation": evaluation.is_blind_evaluation,
            "evaluators": [e.user_id for e in evaluation.active_evaluators()],
            "started_at": _iso(evaluation.started_at),
            "finalized_at": _iso(evaluation.finalized_at),
        },
        "criteria": [c.model_dump(mode="json") for c in evaluation.criteria],
        "consensus": consensus.model_dump(mode="json"),
        "recommendation": (
            results.recommendation.model_dump(mode="json")
            if results.recommendation is not None
            else None
        ),
        "results": [r.model_dump(mode="json") for r in results.results],
        "disputes": [d.model_dump(mode="json") for d in disputes],
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
