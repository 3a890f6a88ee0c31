"""Evaluation listing: filters, pagination and the summary block."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from bideval.engine.scoring import quantize, to_decimal
from bideval.engine.validation import ensure_aware
from bideval.models.evaluation import (
    RESULT_STATUSES,
    SCORING_STATUSES,
    Evaluation,
    EvaluationStatus,
    EvaluationType,
    Score,
    ScoringMethod,
)


class EvaluationFilters(BaseModel):
    """Optional filters for listing evaluations; unset fields match anything."""

    model_config = ConfigDict(frozen=True)

    rfq_id: str | None = None
    evaluation_type: EvaluationType | None = None
    status: EvaluationStatus | None = None
    scoring_method: ScoringMethod | None = None
    evaluator_id: str | None = None
    created_by: str | None = None
    is_blind_evaluation: bool | None = None
    search: str | None = None


class EvaluationSummary(BaseModel):
    """Aggregate view over the listed evaluations."""

    model_config = ConfigDict(frozen=True)

    total: int
    status_breakdown: dict[str, int] = Field(default_factory=dict)
    type_breakdown: dict[str, int] = Field(default_factory=dict)
    average_score: float | None = None
    completion_rate: float
    overdue_count: int


class Page(BaseModel):
    """Pagination metadata."""

    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


def matches(evaluation: Evaluation, filters: EvaluationFilters) -> bool:
    """Return True if the evaluation satisfies every set filter."""
    if filters.rfq_id is not None and evaluation.rfq_id != filters.rfq_id:
        return False
    if (
        filters.evaluation_type is not None
        and evaluation.evaluation_type != filters.evaluation_type
    ):
        return False
    if filters.status is not None and evaluation.status != filters.status:
        return False
    if filters.scoring_method is not None and evaluation.scoring_method != filters.scoring_method:
        return False
    if filters.evaluator_id is not None and not evaluation.is_member(filters.evaluator_id):
        return False
    if filters.created_by is not None and evaluation.created_by != filters.created_by:
        return False
    if (
        filters.is_blind_evaluation is not None
        and evaluation.is_blind_evaluation != filters.is_blind_evaluation
    ):
        return False
    if filters.search:
        needle = filters.search.casefold()
        haystack = f"{evaluation.title} {evaluation.evaluation_number}".casefold()
        if needle not in haystack:
            return False
    return True


def is_visible_to(evaluation: Evaluation, viewer_id: str, *, can_read_all: bool) -> bool:
    """Creators and assigned evaluators see an evaluation; read-all sees every one."""
    return can_read_all or evaluation.created_by == viewer_id or evaluation.is_member(viewer_id)


def paginate(
    evaluations: Sequence[Evaluation], *, page: int, limit: int
) -> tuple[list[Evaluation], Page]:
    """Slice a page (1-based) out of the evaluations."""
    total = len(evaluations)
    start = (page - 1) * limit
    pages = (total + limit - 1) // limit if limit else 0
    return list(evaluations[start : start + limit]), Page(
        page=page, limit=limit, total=total, pages=pages
    )


def summarize(
    evaluations: Sequence[Evaluation],
    scores: Iterable[Score],
    *,
    now: datetime,
) -> EvaluationSummary:
    """Summarize status and type mix, average score, completion and overdue work."""
    statuses = Counter(e.status.value for e in evaluations)
    types = Counter(e.evaluation_type.value for e in evaluations)

    overall = [to_decimal(s.overall_score) for s in scores if s.overall_score is not None]
    average = float(quantize(sum(overall, Decimal("0")) / len(overall))) if overall else None

    total = len(evaluations)
    done = sum(1 for e in evaluations if e.status in RESULT_STATUSES)
    completion_rate = float(quantize(Decimal(done) * 100 / Decimal(total))) if total else 0.0
    overdue = sum(
        1 for e in evaluations if e.status in SCORING_STATUSES and ensure_aware(e.deadline) < now
    )
    return EvaluationSummary(
        total=total,
        status_breakdown=dict(sorted(statuses.items())),
        type_breakdown=dict(sorted(types.items())),
        average_score=average,
        completion_rate=completion_rate,
        overdue_count=overdue,
    )
