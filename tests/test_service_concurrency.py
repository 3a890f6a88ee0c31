"""Concurrency tests for EvaluationService.

Racing callers must never produce two consensus-ready transitions, two
consensus records or two recommendations for one evaluation.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import pytest

from bideval.engine.errors import StateConflictError
from bideval.models.evaluation import (
    CriterionScore,
    EvaluationStatus,
    FinalScore,
    OverallRating,
    RecommendationType,
)
from bideval.services.collaborators.rfq import InMemoryRfqDirectory
from bideval.services.evaluations import (
    Actor,
    AddEvaluatorInput,
    BuildConsensusInput,
    CreateEvaluationInput,
    EvaluationService,
    FinalizeInput,
    SubmitScoreInput,
)
from bideval.services.notifications.notifiers import InMemoryNotifier

SUBMISSION_IDS = ("sub-a", "sub-b", "sub-c")


def _score_input(submission_id: str) -> SubmitScoreInput:
    return SubmitScoreInput(
        submission_id=submission_id,
        criterion_scores=[
            CriterionScore(criterion_id="price", score=7),
            CriterionScore(criterion_id="quality", score=9),
        ],
        overall_rating=OverallRating.GOOD,
    )


def _run_concurrently(calls: list[Callable[[], Any]]) -> tuple[list[Any], list[Exception]]:
    """Release every call at once and collect results and errors."""
    barrier = threading.Barrier(len(calls))
    results: list[Any] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def worker(call: Callable[[], Any]) -> None:
        barrier.wait()
        try:
            value = call()
        except Exception as e:
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(value)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results, errors


def _awaiting_last_scores(
    service: EvaluationService,
    officer: Actor,
    evaluators: list[Actor],
    make_create_input: Callable[..., CreateEvaluationInput],
) -> str:
    created = service.create_evaluation(officer, make_create_input()).value
    evaluation_id = created.evaluation_id
    service.start_evaluation(officer, evaluation_id)
    for evaluator in evaluators:
        for submission_id in SUBMISSION_IDS[:-1]:
            service.submit_score(evaluator, evaluation_id, _score_input(submission_id))
    return evaluation_id


class TestConcurrentCompletion:
    def test_ready_for_consensus_fires_once(
        self,
        service: EvaluationService,
        officer: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
        notifier: InMemoryNotifier,
    ) -> None:
        """Evaluators finishing at the same moment trigger one transition."""
        for _ in range(5):
            notifier.clear()
            evaluation_id = _awaiting_last_scores(service, officer, evaluators, make_create_input)

            results, errors = _run_concurrently(
                [
                    lambda e=evaluator: service.submit_score(
                        e, evaluation_id, _score_input(SUBMISSION_IDS[-1])
                    )
                    for evaluator in evaluators
                ]
            )

            assert errors == []
            assert [r.value.ready_for_consensus for r in results].count(True) == 1
            assert len(notifier.of_type("ready_for_consensus")) == 1
            stored = service.store.get_evaluation(evaluation_id)
            assert stored is not None and stored.status == EvaluationStatus.CONSENSUS

    def test_membership_change_during_completion_check(
        self,
        service: EvaluationService,
        officer: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
        rfq_directory: InMemoryRfqDirectory,
        notifier: InMemoryNotifier,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """An evaluator added while the last score is checked keeps the evaluation open."""
        evaluation_id = _awaiting_last_scores(service, officer, evaluators, make_create_input)
        for evaluator in evaluators[:-1]:
            service.submit_score(evaluator, evaluation_id, _score_input(SUBMISSION_IDS[-1]))

        list_submissions = rfq_directory.list_submissions
        pending = [AddEvaluatorInput(user_id="eval-4")]

        def list_submissions_adding_evaluator(rfq_id: str) -> Any:
            if pending:
                service.add_evaluator(officer, evaluation_id, pending.pop())
            return list_submissions(rfq_id)

        monkeypatch.setattr(rfq_directory, "list_submissions", list_submissions_adding_evaluator)
        notifier.clear()

        result = service.submit_score(
            evaluators[-1], evaluation_id, _score_input(SUBMISSION_IDS[-1])
        )

        assert pending == []
        assert result.value.ready_for_consensus is False
        stored = service.store.get_evaluation(evaluation_id)
        assert stored is not None
        assert stored.status == EvaluationStatus.IN_PROGRESS
        assert "eval-4" in stored.active_evaluator_ids()
        assert notifier.of_type("ready_for_consensus") == []

    def test_concurrent_resubmissions_keep_one_score(
        self,
        service: EvaluationService,
        officer: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
    ) -> None:
        created = service.create_evaluation(officer, make_create_input()).value
        service.start_evaluation(officer, created.evaluation_id)

        results, errors = _run_concurrently(
            [
                lambda: service.submit_score(
                    evaluators[0], created.evaluation_id, _score_input("sub-a")
                )
                for _ in range(4)
            ]
        )

        assert errors == []
        scores = service.store.list_scores(created.evaluation_id)
        assert len(scores) == 1
        assert sorted(r.value.score.version for r in results) == [1, 2, 3, 4]
        assert len({r.value.score.score_id for r in results}) == 1


class TestSingleShotOperations:
    def _ready(
        self,
        service: EvaluationService,
        officer: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
    ) -> str:
        evaluation_id = _awaiting_last_scores(service, officer, evaluators, make_create_input)
        for evaluator in evaluators:
            service.submit_score(evaluator, evaluation_id, _score_input(SUBMISSION_IDS[-1]))
        return evaluation_id

    def test_one_consensus_wins(
        self,
        service: EvaluationService,
        officer: Actor,
        chair: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
    ) -> None:
        evaluation_id = self._ready(service, officer, evaluators, make_create_input)
        data = BuildConsensusInput(
            final_scores=[FinalScore(submission_id=s, score=7.8) for s in SUBMISSION_IDS],
            agreed_by=["eval-1", "eval-2", "eval-3"],
        )

        results, errors = _run_concurrently(
            [lambda: service.build_consensus(chair, evaluation_id, data) for _ in range(4)]
        )

        assert len(results) == 1
        assert len(errors) == 3
        assert all(isinstance(e, StateConflictError) for e in errors)
        consensus = service.store.get_consensus(evaluation_id)
        assert consensus is not None
        assert consensus.consensus_id == results[0].value.consensus_id

    def test_one_finalization_wins(
        self,
        service: EvaluationService,
        officer: Actor,
        chair: Actor,
        evaluators: list[Actor],
        make_create_input: Callable[..., CreateEvaluationInput],
    ) -> None:
        evaluation_id = self._ready(service, officer, evaluators, make_create_input)
        service.build_consensus(
            chair,
            evaluation_id,
            BuildConsensusInput(
                final_scores=[FinalScore(submission_id=s, score=7.8) for s in SUBMISSION_IDS],
                agreed_by=["eval-1", "eval-2", "eval-3"],
            ),
        )
        data = FinalizeInput(
            recommendation=RecommendationType.NEGOTIATE,
            justification="Identical scores; negotiate with the cheapest bidder",
        )

        results, errors = _run_concurrently(
            [lambda: service.finalize_evaluation(chair, evaluation_id, data) for _ in range(3)]
        )

        assert len(results) == 1
        assert all(isinstance(e, StateConflictError) for e in errors)
        recommendation = service.store.get_recommendation(evaluation_id)
        assert recommendation is not None
        assert recommendation.recommendation_id == results[0].value.recommendation_id
        # equal consensus scores fall back to the cheapest submission
        assert recommendation.final_rankings[0].submission_id == "sub-a"
