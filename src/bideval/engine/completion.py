"""Completion tracking.

An evaluator is complete when they hold a current score for every
submission of the RFQ. The evaluation is complete when every active
evaluator is complete. Completion is always recomputed from the stored
scores, never cached, so membership changes take effect immediately.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from decimal import Decimal

from bideval.engine.scoring import quantize
from bideval.models.evaluation import Evaluation, Score


@dataclass(frozen=True)
class EvaluatorProgress:
    """Scoring progress of one active evaluator."""

    evaluator_id: str
    scored: int
    total: int

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.scored >= self.total

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return float(quantize(Decimal(self.scored) * 100 / Decimal(self.total)))


@dataclass(frozen=True)
class CompletionStatus:
    """Completion of every active evaluator."""

    evaluators: tuple[EvaluatorProgress, ...]
    total_submissions: int

    @property
    def all_complete(self) -> bool:
        return bool(self.evaluators) and all(p.complete for p in self.evaluators)

    @property
    def percentage(self) -> float:
        expected = self.total_submissions * len(self.evaluators)
        if expected == 0:
            return 0.0
        scored = sum(p.scored for p in self.evaluators)
        return float(quantize(Decimal(scored) * 100 / Decimal(expected)))

    def for_evaluator(self, evaluator_id: str) -> EvaluatorProgress | None:
        for progress in self.evaluators:
            if progress.evaluator_id == evaluator_id:
                return progress
        return None


def compute_completion(
    evaluation: Evaluation,
    submission_ids: Collection[str],
    scores: Iterable[Score],
) -> CompletionStatus:
    """Compute completion from the current scores.

    Scores by removed evaluators and scores for submissions outside
    submission_ids are ignored.
    """
    wanted = frozenset(submission_ids)
    scored: dict[str, set[str]] = {e.user_id: set() for e in evaluation.active_evaluators()}
    for score in scores:
        if score.evaluator_id in scored and score.submission_id in wanted:
            scored[score.evaluator_id].add(score.submission_id)

    progress = tuple(
        EvaluatorProgress(evaluator_id=user_id, scored=len(done), total=len(wanted))
        for user_id, done in scored.items()
    )
    return CompletionStatus(evaluators=progress, total_submissions=len(wanted))
