"""Pure scoring functions, one per scoring method.

Every function maps a scoring context and the per-criterion values of one
evaluator's score to a ScoreResult. Arithmetic is Decimal throughout and the
final value is quantized to four places with ROUND_HALF_UP, so identical
inputs always produce identical outputs.

The registry is closed: adding a method means adding a ScoringMethod member
and a function here.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from bideval.models.evaluation import (
    Criterion,
    CriterionGroup,
    Evaluation,
    RankingEntry,
    ScoringMethod,
)
from bideval.models.rfq import Submission

SCORE_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0")


@dataclass(frozen=True)
class ScoringContext:
    """Criteria and limits a scoring function needs."""

    criteria: tuple[Criterion, ...]
    max_score: Decimal
    groups: tuple[CriterionGroup, ...] = ()

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation) -> ScoringContext:
        return cls(
            criteria=tuple(evaluation.criteria),
            max_score=to_decimal(evaluation.max_score),
            groups=tuple(evaluation.criterion_groups),
        )


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of one scoring function.

    Attributes:
        overall_score: Aggregate score, or None when the method has no
            absolute score (ranking).
        incomplete: True when the aggregate could not be meaningfully
            computed, e.g. every weight is zero.
    """

    overall_score: Decimal | None
    incomplete: bool = False

    def as_float(self) -> float | None:
        return None if self.overall_score is None else float(self.overall_score)


ScoringFunction = Callable[[ScoringContext, Mapping[str, Decimal]], ScoreResult]


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a number to Decimal via its string form."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    """Round to the engine's score precision."""
    return value.quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, upper: Decimal) -> Decimal:
    """Clamp value into [0, upper]."""
    return max(ZERO, min(value, upper))


def _present(ctx: ScoringContext, values: Mapping[str, Decimal]) -> list[Criterion]:
    return [c for c in ctx.criteria if c.criterion_id in values]


def score_weighted(ctx: ScoringContext, values: Mapping[str, Decimal]) -> ScoreResult:
    """Weighted mean of criterion values, clamped to [0, max_score].

    Criteria without a value contribute to neither sum. Weights need not sum
    to 100; when they sum to zero the score is 0 and flagged incomplete.
    """
    present = _present(ctx, values)
    total_weight = sum((to_decimal(c.weight) for c in present), ZERO)
    if total_weight == ZERO:
        return ScoreResult(overall_score=quantize(ZERO), incomplete=True)

    weighted_sum = sum(
        (values[c.criterion_id] * to_decimal(c.weight) for c in present),
        ZERO,
    )
    return ScoreResult(overall_score=quantize(clamp(weighted_sum / total_weight, ctx.max_score)))


def score_points(ctx: ScoringContext, values: Mapping[str, Decimal]) -> ScoreResult:
    """Raw sum of points, capped at max_score."""
    total = sum((values[c.criterion_id] for c in _present(ctx, values)), ZERO)
    return ScoreResult(overall_score=quantize(clamp(total, ctx.max_score)))


def score_pass_fail(ctx: ScoringContext, values: Mapping[str, Decimal]) -> ScoreResult:
    """max_score if every required criterion passes, else 0.

    When no criterion is marked required, every criterion must pass.
    """
    gating = [c for c in ctx.criteria if c.required] or list(ctx.criteria)
    passed = all(values.get(c.criterion_id, ZERO) >= Decimal("1") for c in gating)
    return ScoreResult(overall_score=quantize(ctx.max_score if passed else ZERO))


def score_ranking(ctx: ScoringContext, values: Mapping[str, Decimal]) -> ScoreResult:
    """Ranking has no absolute score; order is derived across submissions."""
    return ScoreResult(overall_score=None)


def score_hybrid(ctx: ScoringContext, values: Mapping[str, Decimal]) -> ScoreResult:
    """Score each criterion group by its own method and average by group weight."""
    total_weight = ZERO
    weighted_sum = ZERO
    incomplete = False
    for group in ctx.groups:
        group_ctx = ScoringContext(
            criteria=tuple(c for c in ctx.criteria if c.group == group.group_id),
            max_score=ctx.max_score,
        )
        result = SCORING_FUNCTIONS[group.method](group_ctx, values)
        incomplete = incomplete or result.incomplete
        weight = to_decimal(group.weight)
        total_weight += weight
        weighted_sum += (result.overall_score or ZERO) * weight

    if total_weight == ZERO:
        return ScoreResult(overall_score=quantize(ZERO), incomplete=True)
    return ScoreResult(
        overall_score=quantize(clamp(weighted_sum / total_weight, ctx.max_score)),
        incomplete=incomplete,
    )


SCORING_FUNCTIONS: dict[ScoringMethod, ScoringFunction] = {
    ScoringMethod.WEIGHTED_SCORING: score_weighted,
    ScoringMethod.POINTS_SYSTEM: score_points,
    ScoringMethod.PASS_FAIL: score_pass_fail,
    ScoringMethod.RANKING: score_ranking,
    ScoringMethod.HYBRID: score_hybrid,
}


def calculate_overall_score(
    evaluation: Evaluation, values: Mapping[str, float | Decimal]
) -> ScoreResult:
    """Compute the overall score for one evaluator's criterion values."""
    func = SCORING_FUNCTIONS[evaluation.scoring_method]
    decimals = {cid: to_decimal(v) for cid, v in values.items()}
    return func(ScoringContext.from_evaluation(evaluation), decimals)


def mean_rank(values: Mapping[str, float | Decimal]) -> Decimal:
    """Mean of per-criterion ranks for one score (ranking method)."""
    if not values:
        raise ValueError("mean_rank requires at least one criterion value")
    total = sum((to_decimal(v) for v in values.values()), ZERO)
    return quantize(total / Decimal(len(values)))


def mean(values: Sequence[float | Decimal]) -> Decimal:
    """Arithmetic mean, quantized."""
    if not values:
        raise ValueError("mean requires at least one value")
    total = sum((to_decimal(v) for v in values), ZERO)
    return quantize(total / Decimal(len(values)))


def _tie_break_key(
    submission_id: str, submissions: Mapping[str, Submission]
) -> tuple[int, Decimal, int, str, str]:
    submission = submissions.get(submission_id)
    price = submission.price if submission is not None else None
    submitted_at = submission.submitted_at if submission is not None else None
    return (
        1 if price is None else 0,
        ZERO if price is None else to_decimal(price),
        1 if submitted_at is None else 0,
        "" if submitted_at is None else submitted_at.isoformat(),
        submission_id,
    )


def rank_submissions(
    scores: Mapping[str, float | Decimal],
    submissions: Mapping[str, Submission] | None = None,
    *,
    lower_is_better: bool = False,
) -> list[RankingEntry]:
    """Order submissions by score and assign ranks 1..n.

    Ties are broken by price ascending (unknown last), then submission time
    ascending (unknown last), then submission id. Every submission receives a
    distinct rank.

    Args:
        scores: Aggregate score per submission id.
        submissions: Submission records used for tie-breaking and supplier ids.
        lower_is_better: True for mean ranks, False for scores.
    """
    known = submissions or {}

    def sort_key(item: tuple[str, Decimal]) -> tuple[Decimal, tuple[int, Decimal, int, str, str]]:
        submission_id, value = item
        primary = value if lower_is_better else -value
        return primary, _tie_break_key(submission_id, known)

    ordered = sorted(((sid, to_decimal(v)) for sid, v in scores.items()), key=sort_key)
    entries: list[RankingEntry] = []
    for position, (submission_id, value) in enumerate(ordered, start=1):
        submission = known.get(submission_id)
        entries.append(
            RankingEntry(
                submission_id=submission_id,
                rank=position,
                score=float(value),
                supplier_id=submission.supplier_id if submission is not None else None,
            )
        )
    return entries
