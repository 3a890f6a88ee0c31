"""Pytest configuration and fixtures for BidEval tests.

Provides an injectable clock, an RFQ directory seeded with one closed RFQ and
three submissions, in-memory collaborators, and a factory for fully wired
EvaluationService instances.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from bideval.audit.sink import InMemoryAuditSink
from bideval.models.evaluation import (
    Criterion,
    Evaluation,
    EvaluationType,
    Evaluator,
    ScoringMethod,
)
from bideval.models.rfq import Rfq, RfqStatus, Submission
from bideval.persistence.repositories.evaluations import InMemoryEvaluationStore
from bideval.services.collaborators.report import InMemoryReportService
from bideval.services.collaborators.rfq import InMemoryRfqDirectory
from bideval.services.evaluations.capabilities import Actor, Role
from bideval.services.evaluations.inputs import CreateEvaluationInput
from bideval.services.evaluations.service import EvaluationService
from bideval.services.notifications.dispatcher import NotificationDispatcher
from bideval.services.notifications.notifiers import InMemoryNotifier

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
RFQ_ID = "rfq-100"
SUBMISSION_IDS = ("sub-a", "sub-b", "sub-c")
EVALUATOR_IDS = ("eval-1", "eval-2", "eval-3")


class MutableClock:
    """Clock whose time tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(BASE_TIME)


@pytest.fixture
def rfq_directory() -> InMemoryRfqDirectory:
    """RFQ closed for submissions with three submissions of distinct price."""
    directory = InMemoryRfqDirectory()
    directory.add_rfq(
        Rfq(rfq_id=RFQ_ID, title="Office fit-out", status=RfqStatus.SUBMISSIONS_CLOSED)
    )
    for index, submission_id in enumerate(SUBMISSION_IDS):
        directory.add_submission(
            Submission(
                submission_id=submission_id,
                rfq_id=RFQ_ID,
                supplier_id=f"supplier-{submission_id[-1]}",
                supplier_name=f"Supplier {submission_id[-1].upper()}",
                price=1000.0 + 100 * index,
                submitted_at=BASE_TIME - timedelta(days=3 - index),
            )
        )
    return directory


@pytest.fixture
def store() -> Iterator[InMemoryEvaluationStore]:
    evaluation_store = InMemoryEvaluationStore()
    yield evaluation_store
    evaluation_store.close()


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def report_service() -> InMemoryReportService:
    return InMemoryReportService()


@pytest.fixture
def service(
    store: InMemoryEvaluationStore,
    rfq_directory: InMemoryRfqDirectory,
    notifier: InMemoryNotifier,
    audit_sink: InMemoryAuditSink,
    report_service: InMemoryReportService,
    clock: MutableClock,
) -> EvaluationService:
    """EvaluationService wired to in-memory collaborators."""
    return EvaluationService(
        store,
        rfq_directory,
        dispatcher=NotificationDispatcher(notifier),
        audit_sink=audit_sink,
        report_service=report_service,
        clock=clock,
    )


@pytest.fixture
def officer() -> Actor:
    return Actor(actor_id="officer-1", roles=frozenset({Role.PROCUREMENT_OFFICER.value}))


@pytest.fixture
def other_officer() -> Actor:
    return Actor(actor_id="officer-2", roles=frozenset({Role.PROCUREMENT_OFFICER.value}))


@pytest.fixture
def chair() -> Actor:
    return Actor(actor_id="chair-1", roles=frozenset({Role.EVALUATION_CHAIR.value}))


@pytest.fixture
def auditor() -> Actor:
    return Actor(actor_id="auditor-1", roles=frozenset({Role.AUDITOR.value}))


@pytest.fixture
def evaluators() -> list[Actor]:
    return [
        Actor(actor_id=user_id, roles=frozenset({Role.EVALUATOR.value}))
        for user_id in EVALUATOR_IDS
    ]


@pytest.fixture
def weighted_criteria() -> list[Criterion]:
    return [
        Criterion(criterion_id="price", name="Price", weight=60),
        Criterion(criterion_id="quality", name="Quality", weight=40),
    ]


@pytest.fixture
def make_create_input(
    weighted_criteria: list[Criterion],
) -> Callable[..., CreateEvaluationInput]:
    """Factory for a valid weighted evaluation definition; kwargs override fields."""

    def _make(**overrides: Any) -> CreateEvaluationInput:
        fields: dict[str, Any] = {
            "rfq_id": RFQ_ID,
            "title": "Technical evaluation",
            "description": "Scoring of fit-out proposals",
            "evaluation_type": EvaluationType.TECHNICAL,
            "scoring_method": ScoringMethod.WEIGHTED_SCORING,
            "max_score": 10,
            "passing_score": 6,
            "criteria": weighted_criteria,
            "evaluators": list(EVALUATOR_IDS),
            "deadline": BASE_TIME + timedelta(days=14),
            "require_justification": False,
        }
        fields.update(overrides)
        return CreateEvaluationInput(**fields)

    return _make


@pytest.fixture
def make_evaluation(weighted_criteria: list[Criterion]) -> Callable[..., Evaluation]:
    """Factory for engine-level Evaluation records; kwargs override fields."""

    def _make(**overrides: Any) -> Evaluation:
        fields: dict[str, Any] = {
            "evaluation_id": "evaluation-1",
            "evaluation_number": "EVAL-TECHNICAL-2026-0001",
            "rfq_id": RFQ_ID,
            "title": "Technical evaluation",
            "evaluation_type": EvaluationType.TECHNICAL,
            "scoring_method": ScoringMethod.WEIGHTED_SCORING,
            "max_score": 10,
            "criteria": weighted_criteria,
            "evaluators": [Evaluator(user_id=u, assigned_at=BASE_TIME) for u in EVALUATOR_IDS],
            "deadline": BASE_TIME + timedelta(days=14),
            "require_justification": False,
            "created_by": "officer-1",
            "created_at": BASE_TIME,
        }
        fields.update(overrides)
        return Evaluation(**fields)

    return _make
