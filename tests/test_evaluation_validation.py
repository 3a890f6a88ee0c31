"""Tests for evaluation definition and score validation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from bideval.engine.config import EngineConfig
from bideval.engine.errors import ValidationError
from bideval.engine.validation import (
    ensure_aware,
    validate_definition,
    validate_rfq_for_evaluation,
    validate_score,
)
from bideval.models.evaluation import (
    Criterion,
    CriterionGroup,
    CriterionScore,
    Evaluation,
    Evaluator,
    EvaluatorStatus,
    ScoringMethod,
)
from bideval.models.rfq import Rfq, RfqStatus

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _scores(**values: float) -> list[CriterionScore]:
    return [CriterionScore(criterion_id=k, score=v) for k, v in values.items()]


class TestEnsureAware:
    def test_naive_is_treated_as_utc(self) -> None:
        assert ensure_aware(datetime(2026, 1, 1)).tzinfo is UTC

    def test_aware_is_unchanged(self) -> None:
        value = datetime(2026, 1, 1, tzinfo=UTC)
        assert ensure_aware(value) is value


class TestRfqGate:
    @pytest.mark.parametrize("status", [RfqStatus.SUBMISSIONS_CLOSED, RfqStatus.EVALUATION])
    def test_closed_rfq_accepted(self, status: RfqStatus) -> None:
        validate_rfq_for_evaluation(Rfq(rfq_id="rfq-1", status=status))

    @pytest.mark.parametrize("status", [RfqStatus.DRAFT, RfqStatus.PUBLISHED, RfqStatus.AWARDED])
    def test_open_or_awarded_rfq_rejected(self, status: RfqStatus) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_rfq_for_evaluation(Rfq(rfq_id="rfq-1", status=status))
        assert exc_info.value.field == "rfq_id"


class TestValidateDefinition:
    """Rules checked on create and update."""

    def test_valid_definition_passes(self, make_evaluation: Callable[..., Evaluation]) -> None:
        validate_definition(make_evaluation(), now=NOW)

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"title": "Shrt"}, "title"),
            ({"title": "x" * 201}, "title"),
            ({"description": "d" * 1001}, "description"),
            ({"max_score": 0.5}, "max_score"),
            ({"max_score": 1001}, "max_score"),
            ({"passing_score": 11}, "passing_score"),
            ({"consensus_threshold": 49}, "consensus_threshold"),
            ({"consensus_threshold": 101}, "consensus_threshold"),
            ({"deadline": NOW}, "deadline"),
            ({"criteria": []}, "criteria"),
            ({"evaluators": []}, "evaluators"),
        ],
    )
    def test_field_rules(
        self,
        make_evaluation: Callable[..., Evaluation],
        overrides: dict[str, object],
        field: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_definition(make_evaluation(**overrides), now=NOW)
        assert exc_info.value.field == field

    def test_duplicate_criterion_rejected(self, make_evaluation: Callable[..., Evaluation]) -> None:
        criteria = [
            Criterion(criterion_id="price", name="Price"),
            Criterion(criterion_id="price", name="Price again"),
        ]
        with pytest.raises(ValidationError) as exc_info:
            validate_definition(make_evaluation(criteria=criteria), now=NOW)
        assert exc_info.value.criterion_id == "price"

    def test_criterion_max_above_evaluation_max_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        criteria = [Criterion(criterion_id="price", name="Price", max_score=20)]
        with pytest.raises(ValidationError):
            validate_definition(make_evaluation(criteria=criteria), now=NOW)

    def test_negative_weight_rejected(self, make_evaluation: Callable[..., Evaluation]) -> None:
        criteria = [Criterion(criterion_id="price", name="Price", weight=-1)]
        with pytest.raises(ValidationError):
            validate_definition(make_evaluation(criteria=criteria), now=NOW)

    def test_only_removed_evaluators_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluators = [Evaluator(user_id="eval-1", status=EvaluatorStatus.REMOVED)]
        with pytest.raises(ValidationError) as exc_info:
            validate_definition(make_evaluation(evaluators=evaluators), now=NOW)
        assert exc_info.value.field == "evaluators"

    def test_duplicate_evaluators_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluators = [Evaluator(user_id="eval-1"), Evaluator(user_id="eval-1")]
        with pytest.raises(ValidationError):
            validate_definition(make_evaluation(evaluators=evaluators), now=NOW)

    def test_groups_only_for_hybrid(self, make_evaluation: Callable[..., Evaluation]) -> None:
        groups = [CriterionGroup(group_id="g", method=ScoringMethod.POINTS_SYSTEM)]
        with pytest.raises(ValidationError) as exc_info:
            validate_definition(make_evaluation(criterion_groups=groups), now=NOW)
        assert exc_info.value.field == "criterion_groups"

    def test_hybrid_requires_groups(self, make_evaluation: Callable[..., Evaluation]) -> None:
        with pytest.raises(ValidationError):
            validate_definition(make_evaluation(scoring_method=ScoringMethod.HYBRID), now=NOW)

    def test_hybrid_rejects_ranking_group(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(
            scoring_method=ScoringMethod.HYBRID,
            criteria=[Criterion(criterion_id="a", name="A", group="g")],
            criterion_groups=[CriterionGroup(group_id="g", method=ScoringMethod.RANKING)],
        )
        with pytest.raises(ValidationError):
            validate_definition(evaluation, now=NOW)

    def test_hybrid_criterion_must_reference_group(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(
            scoring_method=ScoringMethod.HYBRID,
            criteria=[Criterion(criterion_id="a", name="A", group="missing")],
            criterion_groups=[CriterionGroup(group_id="g", method=ScoringMethod.POINTS_SYSTEM)],
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_definition(evaluation, now=NOW)
        assert exc_info.value.criterion_id == "a"

    def test_narrower_config_is_honoured(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        config = EngineConfig(max_max_score=5)
        with pytest.raises(ValidationError):
            validate_definition(make_evaluation(), now=NOW, config=config)


class TestValidateScore:
    """Score validation against criteria and scoring method."""

    def test_valid_weighted_score(self, make_evaluation: Callable[..., Evaluation]) -> None:
        result = validate_score(
            make_evaluation(),
            _scores(price=8, quality=6),
            overall_score=None,
            justification=None,
            submission_count=3,
        )
        assert result.as_float() == 7.2

    def test_empty_scores_rejected(self, make_evaluation: Callable[..., Evaluation]) -> None:
        with pytest.raises(ValidationError):
            validate_score(
                make_evaluation(), [], overall_score=None, justification=None, submission_count=3
            )

    def test_unknown_criterion_rejected(self, make_evaluation: Callable[..., Evaluation]) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                make_evaluation(),
                _scores(price=8, quality=6, delivery=5),
                overall_score=None,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.criterion_id == "delivery"

    def test_duplicate_criterion_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        scores = [*_scores(price=8, quality=6), CriterionScore(criterion_id="price", score=7)]
        with pytest.raises(ValidationError):
            validate_score(
                make_evaluation(),
                scores,
                overall_score=None,
                justification=None,
                submission_count=3,
            )

    def test_out_of_range_value_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                make_evaluation(),
                _scores(price=11, quality=6),
                overall_score=None,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.criterion_id == "price"

    def test_criterion_max_score_caps_value(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        criteria = [Criterion(criterion_id="price", name="Price", max_score=5)]
        with pytest.raises(ValidationError):
            validate_score(
                make_evaluation(criteria=criteria),
                _scores(price=6),
                overall_score=None,
                justification=None,
                submission_count=3,
            )

    def test_missing_required_criterion_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                make_evaluation(),
                _scores(price=8),
                overall_score=None,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.criterion_id == "quality"

    def test_justification_required_when_configured(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                make_evaluation(require_justification=True),
                _scores(price=8, quality=6),
                overall_score=None,
                justification="   ",
                submission_count=3,
            )
        assert exc_info.value.field == "justification"

    def test_supplied_overall_within_tolerance_accepted(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        result = validate_score(
            make_evaluation(),
            _scores(price=8, quality=6),
            overall_score=7.205,
            justification=None,
            submission_count=3,
        )
        assert result.as_float() == 7.2

    def test_supplied_overall_mismatch_rejected(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                make_evaluation(),
                _scores(price=8, quality=6),
                overall_score=9.0,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.field == "overall_score"

    def test_pass_fail_values_must_be_binary(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(scoring_method=ScoringMethod.PASS_FAIL)
        with pytest.raises(ValidationError):
            validate_score(
                evaluation,
                _scores(price=1, quality=0.5),
                overall_score=None,
                justification=None,
                submission_count=3,
            )

    def test_ranking_values_must_be_whole_ranks(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(scoring_method=ScoringMethod.RANKING)
        for bad in (0, 4, 1.5):
            with pytest.raises(ValidationError):
                validate_score(
                    evaluation,
                    _scores(price=bad, quality=1),
                    overall_score=None,
                    justification=None,
                    submission_count=3,
                )

    def test_ranking_rejects_supplied_overall(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(scoring_method=ScoringMethod.RANKING)
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                evaluation,
                _scores(price=1, quality=2),
                overall_score=1.5,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.field == "overall_score"

    def test_ranking_score_has_no_overall(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(scoring_method=ScoringMethod.RANKING)
        result = validate_score(
            evaluation,
            _scores(price=3, quality=2),
            overall_score=None,
            justification=None,
            submission_count=3,
        )
        assert result.overall_score is None

    def test_hybrid_pass_fail_group_values_must_be_binary(
        self, make_evaluation: Callable[..., Evaluation]
    ) -> None:
        evaluation = make_evaluation(
            scoring_method=ScoringMethod.HYBRID,
            criteria=[
                Criterion(criterion_id="price", name="Price", group="commercial"),
                Criterion(criterion_id="iso", name="ISO", group="compliance"),
            ],
            criterion_groups=[
                CriterionGroup(group_id="commercial", method=ScoringMethod.WEIGHTED_SCORING),
                CriterionGroup(group_id="compliance", method=ScoringMethod.PASS_FAIL),
            ],
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_score(
                evaluation,
                _scores(price=7, iso=5),
                overall_score=None,
                justification=None,
                submission_count=3,
            )
        assert exc_info.value.criterion_id == "iso"


def test_deadline_in_past_rejected_relative_to_now(
    make_evaluation: Callable[..., Evaluation],
) -> None:
    evaluation = make_evaluation(deadline=NOW + timedelta(hours=1))
    validate_definition(evaluation, now=NOW)
    with pytest.raises(ValidationError):
        validate_definition(evaluation, now=NOW + timedelta(hours=2))
