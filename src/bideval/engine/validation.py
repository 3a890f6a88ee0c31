"""Business validation for evaluation definitions and scores.

Pydantic models guarantee shape; these checks enforce the rules that depend
on other fields, on the scoring method or on the clock. Each failure raises
the domain ValidationError naming the offending field or criterion.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal

from bideval.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from bideval.engine.errors import ValidationError
from bideval.engine.scoring import ScoreResult, calculate_overall_score, to_decimal
from bideval.models.evaluation import (
    GROUP_METHODS,
    CriterionScore,
    Evaluation,
    ScoringMethod,
)
from bideval.models.rfq import EVALUABLE_RFQ_STATUSES, Rfq


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def validate_rfq_for_evaluation(rfq: Rfq) -> None:
    """Require the RFQ to be closed for submissions."""
    if rfq.status not in EVALUABLE_RFQ_STATUSES:
        raise ValidationError(
            f"RFQ {rfq.rfq_id} is not ready for evaluation (status {rfq.status.value})",
            field="rfq_id",
        )


def validate_definition(
    evaluation: Evaluation,
    *,
    now: datetime,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
) -> None:
    """Validate a draft evaluation as created or updated.

    Raises:
        ValidationError: On the first rule violated.
    """
    title = evaluation.title.strip()
    if not config.title_min_length <= len(title) <= config.title_max_length:
        raise ValidationError(
            f"Title must be {config.title_min_length}-{config.title_max_length} characters",
            field="title",
        )
    if evaluation.description and len(evaluation.description) > config.description_max_length:
        raise ValidationError(
            f"Description exceeds {config.description_max_length} characters",
            field="description",
        )
    if not config.min_max_score <= evaluation.max_score <= config.max_max_score:
        raise ValidationError(
            f"max_score must be between {config.min_max_score:g} and {config.max_max_score:g}",
            field="max_score",
        )
    if evaluation.passing_score is not None and not (
        0 <= evaluation.passing_score <= evaluation.max_score
    ):
        raise ValidationError("passing_score must be within [0, max_score]", field="passing_score")
    if not (
        config.min_consensus_threshold
        <= evaluation.consensus_threshold
        <= config.max_consensus_threshold
    ):
        raise ValidationError(
            f"consensus_threshold must be between {config.min_consensus_threshold:g} "
            f"and {config.max_consensus_threshold:g}",
            field="consensus_threshold",
        )
    if ensure_aware(evaluation.deadline) <= now:
        raise ValidationError("Deadline must be in the future", field="deadline")

    _validate_criteria(evaluation)
    _validate_groups(evaluation)
    _validate_evaluators(evaluation)


def _validate_criteria(evaluation: Evaluation) -> None:
    if not evaluation.criteria:
        raise ValidationError("At least one criterion is required", field="criteria")

    seen: set[str] = set()
    for criterion in evaluation.criteria:
        if criterion.criterion_id in seen:
            raise ValidationError(
                f"Duplicate criterion {criterion.criterion_id}",
                field="criteria",
                criterion_id=criterion.criterion_id,
            )
        seen.add(criterion.criterion_id)
        if criterion.weight < 0:
            raise ValidationError(
                f"Criterion {criterion.criterion_id} has a negative weight",
                field="criteria",
                criterion_id=criterion.criterion_id,
            )
        if criterion.max_score is not None and not (
            0 < criterion.max_score <= evaluation.max_score
        ):
            raise ValidationError(
                f"Criterion {criterion.criterion_id} max_score must be within (0, max_score]",
                field="criteria",
                criterion_id=criterion.criterion_id,
            )


def _validate_groups(evaluation: Evaluation) -> None:
    if evaluation.scoring_method != ScoringMethod.HYBRID:
        if evaluation.criterion_groups:
            raise ValidationError(
                "criterion_groups are only allowed for hybrid scoring",
                field="criterion_groups",
            )
        return

    if not evaluation.criterion_groups:
        raise ValidationError(
            "Hybrid scoring requires at least one criterion group", field="criterion_groups"
        )
    group_ids: set[str] = set()
    for group in evaluation.criterion_groups:
        if group.group_id in group_ids:
            raise ValidationError(
                f"Duplicate criterion group {group.group_id}", field="criterion_groups"
            )
        group_ids.add(group.group_id)
        if group.method not in GROUP_METHODS:
            raise ValidationError(
                f"Group {group.group_id} uses unsupported method {group.method.value}",
                field="criterion_groups",
            )
        if group.weight < 0:
            raise ValidationError(
                f"Group {group.group_id} has a negative weight", field="criterion_groups"
            )
    for criterion in evaluation.criteria:
        if criterion.group not in group_ids:
            raise ValidationError(
                f"Criterion {criterion.criterion_id} must reference a declared group",
                field="criteria",
                criterion_id=criterion.criterion_id,
            )


def _validate_evaluators(evaluation: Evaluation) -> None:
    if not evaluation.active_evaluators():
        raise ValidationError("At least one evaluator is required", field="evaluators")
    user_ids = [e.user_id for e in evaluation.evaluators]
    if len(set(user_ids)) != len(user_ids):
        raise ValidationError("Evaluators must be unique", field="evaluators")


def validate_score(
    evaluation: Evaluation,
    criterion_scores: Sequence[CriterionScore],
    *,
    overall_score: float | None,
    justification: str | None,
    submission_count: int,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
) -> ScoreResult:
    """Validate one evaluator's score and compute its overall score.

    Returns:
        The calculated ScoreResult.

    Raises:
        ValidationError: Unknown, duplicate, out-of-range or missing
            criteria; a missing justification; or a supplied overall score
            that disagrees with the calculated one.
    """
    if not criterion_scores:
        raise ValidationError("At least one criterion score is required", field="criterion_scores")

    criteria = evaluation.criterion_by_id()
    method = evaluation.scoring_method
    values: dict[str, Decimal] = {}
    for cs in criterion_scores:
        criterion = criteria.get(cs.criterion_id)
        if criterion is None:
            raise ValidationError(
                f"Unknown criterion {cs.criterion_id}",
                field="criterion_scores",
                criterion_id=cs.criterion_id,
            )
        if cs.criterion_id in values:
            raise ValidationError(
                f"Duplicate score for criterion {cs.criterion_id}",
                field="criterion_scores",
                criterion_id=cs.criterion_id,
            )
        value = to_decimal(cs.score)
        _check_value(evaluation, cs.criterion_id, value, criterion.max_score, submission_count)
        values[cs.criterion_id] = value

    for criterion in evaluation.criteria:
        if criterion.required and criterion.criterion_id not in values:
            raise ValidationError(
                f"Missing score for required criterion {criterion.criterion_id}",
                field="criterion_scores",
                criterion_id=criterion.criterion_id,
            )

    if evaluation.require_justification and not (justification and justification.strip()):
        raise ValidationError("Justification is required", field="justification")

    result = calculate_overall_score(evaluation, values)
    if overall_score is not None:
        if method == ScoringMethod.RANKING:
            raise ValidationError(
                "overall_score is not accepted for ranking evaluations", field="overall_score"
            )
        tolerance = to_decimal(config.score_tolerance)
        calculated = result.overall_score
        if calculated is not None and abs(to_decimal(overall_score) - calculated) > tolerance:
            raise ValidationError(
                f"overall_score {overall_score:g} does not match calculated "
                f"{result.overall_score}",
                field="overall_score",
            )
    return result


def _check_value(
    evaluation: Evaluation,
    criterion_id: str,
    value: Decimal,
    criterion_max: float | None,
    submission_count: int,
) -> None:
    method = evaluation.scoring_method
    if method == ScoringMethod.PASS_FAIL or _group_method(evaluation, criterion_id) == (
        ScoringMethod.PASS_FAIL
    ):
        if value not in (Decimal("0"), Decimal("1")):
            raise ValidationError(
                f"Pass/fail criterion {criterion_id} must be 0 or 1",
                field="criterion_scores",
                criterion_id=criterion_id,
            )
        return
    if method == ScoringMethod.RANKING:
        if value != value.to_integral_value() or not 1 <= value <= submission_count:
            raise ValidationError(
                f"Rank for criterion {criterion_id} must be a whole number "
                f"between 1 and {submission_count}",
                field="criterion_scores",
                criterion_id=criterion_id,
            )
        return
    upper = to_decimal(criterion_max if criterion_max is not None else evaluation.max_score)
    if not Decimal("0") <= value <= upper:
        raise ValidationError(
            f"Score for criterion {criterion_id} must be within [0, {upper}]",
            field="criterion_scores",
            criterion_id=criterion_id,
        )


def _group_method(evaluation: Evaluation, criterion_id: str) -> ScoringMethod | None:
    if evaluation.scoring_method != ScoringMethod.HYBRID:
        return None
    criterion = evaluation.criterion_by_id()[criterion_id]
    for group in evaluation.criterion_groups:
        if group.group_id == criterion.group:
            return group.method
    return None
