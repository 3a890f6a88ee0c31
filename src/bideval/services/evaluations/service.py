"""EvaluationService - orchestration layer for the evaluation lifecycle.

Each operation follows the same shape:

1. Load the evaluation (NotFoundError if missing)
2. Ask the capability checker once (AuthorizationError if denied)
3. Run the pure engine function for the operation
4. Persist through the store with a compare-and-set on status/version
5. Emit an audit event and dispatch collected notifications

Audit and notification failures are logged and never fail the operation;
notification failures come back as warnings on the OperationResult.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from bideval.audit.events import AuditEventType, build_audit_event
from bideval.audit.sink import AuditSink, InMemoryAuditSink
from bideval.engine import lifecycle
from bideval.engine.completion import CompletionStatus, compute_completion
from bideval.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from bideval.engine.consensus import build_consensus_record
from bideval.engine.disputes import build_dispute
from bideval.engine.errors import (
    AuthorizationError,
    DeadlinePassedError,
    NotFoundError,
    ResultsNotAvailableError,
    StateConflictError,
    ValidationError,
)
from bideval.engine.finalization import build_recommendation
from bideval.engine.listing import EvaluationFilters, is_visible_to, matches, paginate, summarize
from bideval.engine.results import EvaluationResults, build_report, build_results, visible_scores
from bideval.engine.validation import (
    ensure_aware,
    validate_definition,
    validate_rfq_for_evaluation,
    validate_score,
)
from bideval.models.evaluation import (
    SCORING_STATUSES,
    ConsensusRecord,
    Dispute,
    Evaluation,
    EvaluationStatus,
    Evaluator,
    Recommendation,
    Score,
)
from bideval.models.rfq import Submission
from bideval.observability.tracing import operation_span, set_span_attributes
from bideval.persistence.repositories.evaluations import EvaluationStore
from bideval.services.collaborators.report import InMemoryReportService, ReportService
from bideval.services.collaborators.rfq import RfqDirectory
from bideval.services.evaluations.capabilities import (
    Actor,
    CapabilityChecker,
    RoleCapabilityChecker,
)
from bideval.services.evaluations.inputs import (
    AddEvaluatorInput,
    BuildConsensusInput,
    CancelEvaluationInput,
    CreateEvaluationInput,
    EvaluationDetail,
    EvaluationList,
    EvaluatorProgressView,
    FinalizeInput,
    OperationResult,
    ProgressReport,
    RaiseDisputeInput,
    ScoreOutcome,
    SubmitScoreInput,
    UpdateEvaluationInput,
)
from bideval.services.notifications.dispatcher import NotificationDispatcher
from bideval.services.notifications.events import (
    NotificationEvent,
    NotificationType,
    notification,
)
from bideval.services.notifications.notifiers import LoggingNotifier

logger = logging.getLogger(__name__)

TRACER_NAME = "bideval.evaluations"

_COMPLETION_ATTEMPTS = 5


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class EvaluationService:
    """Service layer for evaluation operations.

    Args:
        store: Evaluation store. The caller owns it and closes it.
        rfq_directory: Source of RFQ status and submissions.
        capabilities: Authorization checker; RoleCapabilityChecker by default.
        dispatcher: Notification outbox; logs notifications by default.
        audit_sink: Audit sink; in-memory by default.
        report_service: Receives the JSON report on finalization.
        clock: Returns the current time; injectable for deadline tests.
        config: Engine limits.
        id_factory: Generates record ids.
    """

    def __init__(
        self,
        store: EvaluationStore,
        rfq_directory: RfqDirectory,
        *,
        capabilities: CapabilityChecker | None = None,
        dispatcher: NotificationDispatcher | None = None,
        audit_sink: AuditSink | None = None,
        report_service: ReportService | None = None,
        clock: Callable[[], datetime] | None = None,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._rfqs = rfq_directory
        self._capabilities = capabilities or RoleCapabilityChecker()
        self._dispatcher = dispatcher or NotificationDispatcher(LoggingNotifier())
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._reports = report_service or InMemoryReportService()
        self._clock = clock or _utc_now
        self._config = config
        self._new_id = id_factory or _new_id
        self._inflight: set[tuple[str, str]] = set()
        self._inflight_lock = threading.Lock()

    @property
    def store(self) -> EvaluationStore:
        return self._store

    def _now(self) -> datetime:
        return ensure_aware(self._clock())

    def _load(self, evaluation_id: str) -> Evaluation:
        evaluation = self._store.get_evaluation(evaluation_id)
        if evaluation is None:
            raise NotFoundError("evaluation", evaluation_id)
        return evaluation

    def _authorize(self, allowed: bool, actor: Actor, capability: str) -> None:
        if not allowed:
            raise AuthorizationError(
                f"Actor {actor.actor_id} may not {capability.replace('_', ' ')} this evaluation",
                actor_id=actor.actor_id,
                capability=capability,
            )

    def _concurrent_change(self, evaluation_id: str, operation: str) -> StateConflictError:
        current = self._store.get_evaluation(evaluation_id)
        return StateConflictError(
            f"Evaluation {evaluation_id} changed concurrently; re-fetch and retry",
            current_status=current.status.value if current is not None else None,
            operation=operation,
        )

    @contextmanager
    def _single_shot(self, evaluation_id: str, operation: str) -> Iterator[None]:
        """Reject a second concurrent attempt of the same operation."""
        key = (evaluation_id, operation)
        with self._inflight_lock:
            if key in self._inflight:
                raise StateConflictError(
                    f"Another {operation} is already in progress for evaluation {evaluation_id}",
                    operation=operation,
                )
            self._inflight.add(key)
        try:
            yield
        finally:
            with self._inflight_lock:
                self._inflight.discard(key)

    def _emit_audit(
        self,
        event_type: AuditEventType,
        evaluation: Evaluation,
        actor: Actor,
        request_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        event = build_audit_event(
            event_type,
            evaluation_id=evaluation.evaluation_id,
            actor_id=actor.actor_id,
            occurred_at=self._now(),
            request_id=request_id,
            status=evaluation.status.value,
            details=details,
        )
        try:
            self._audit_sink.emit(event)
        except Exception as e:
            logger.warning("Failed to emit audit event %s: %s", event_type.value, e)

    def _finish(self, events: list[NotificationEvent]) -> list[str]:
        return self._dispatcher.dispatch(events)

    def _submissions(self, evaluation: Evaluation) -> dict[str, Submission]:
        return {s.submission_id: s for s in self._rfqs.list_submissions(evaluation.rfq_id)}

    def _completion(
        self, evaluation: Evaluation, submissions: dict[str, Submission] | None = None
    ) -> CompletionStatus:
        subs = submissions if submissions is not None else self._submissions(evaluation)
        return compute_completion(
            evaluation, subs.keys(), self._store.list_scores(evaluation.evaluation_id)
        )

    def _check_completion(
        self,
        evaluation: Evaluation,
        actor: Actor,
        request_id: str | None,
        events: list[NotificationEvent],
    ) -> tuple[Evaluation, bool]:
        """Move a fully scored evaluation to consensus.

        Returns the current evaluation and whether this call made the
        transition. The transition is conditional on the version the
        completion check read, so a membership change committed in between
        forces a re-check and exactly one caller wins when several complete
        the evaluation concurrently.
        """
        moved: Evaluation | None = None
        for _ in range(_COMPLETION_ATTEMPTS):
            if evaluation.status != EvaluationStatus.IN_PROGRESS:
                return evaluation, False
            if not self._completion(evaluation).all_complete:
                return evaluation, False

            now = self._now()
            moved = self._store.transition_status(
                evaluation.evaluation_id,
                from_statuses={EvaluationStatus.IN_PROGRESS},
                to_status=EvaluationStatus.CONSENSUS,
                changes={"consensus_ready_at": now, "updated_at": now},
                expected_version=evaluation.version,
            )
            if moved is not None:
                break
            evaluation = self._load(evaluation.evaluation_id)
        if moved is None:
            return evaluation, False

        logger.info("Evaluation %s ready for consensus", moved.evaluation_id)
        self._emit_audit(AuditEventType.CONSENSUS_READY, moved, actor, request_id)
        events.append(
            notification(
                NotificationType.READY_FOR_CONSENSUS,
                evaluation_id=moved.evaluation_id,
                recipients=[moved.created_by, *moved.active_evaluator_ids()],
                occurred_at=now,
                evaluation_number=moved.evaluation_number,
            )
        )
        return moved, True

    # ------------------------------------------------------------------ lifecycle

    def create_evaluation(
        self, actor: Actor, data: CreateEvaluationInput
    ) -> OperationResult[Evaluation]:
        """Create a draft evaluation for a closed RFQ."""
        with operation_span(TRACER_NAME, "evaluation.create", {"bideval.rfq_id": data.rfq_id}):
            self._authorize(self._capabilities.can_create(actor), actor, "create")

            rfq = self._rfqs.get_rfq(data.rfq_id)
            if rfq is None:
                raise NotFoundError("rfq", data.rfq_id)
            validate_rfq_for_evaluation(rfq)

            now = self._now()
            threshold = (
                data.consensus_threshold
                if data.consensus_threshold is not None
                else self._config.default_consensus_threshold
            )
            evaluation = Evaluation(
                evaluation_id=self._new_id(),
                evaluation_number="",
                rfq_id=data.rfq_id,
                title=data.title.strip(),
                description=data.description,
                evaluation_type=data.evaluation_type,
                scoring_method=data.scoring_method,
                max_score=data.max_score,
                passing_score=data.passing_score,
                criteria=data.criteria,
                criterion_groups=data.criterion_groups,
                evaluators=[Evaluator(user_id=u, assigned_at=now) for u in data.evaluators],
                is_blind_evaluation=data.is_blind_evaluation,
                allow_consensus=data.allow_consensus,
                consensus_threshold=threshold,
                deadline=ensure_aware(data.deadline),
                instructions=data.instructions,
                require_justification=data.require_justification,
                created_by=actor.actor_id,
                created_at=now,
            )
            validate_definition(evaluation, now=now, config=self._config)

            prefix = f"EVAL-{data.evaluation_type.value.upper()}-{now.year}"
            number = f"{prefix}-{self._store.next_sequence(prefix):04d}"
            evaluation = self._store.add_evaluation(
                evaluation.model_copy(update={"evaluation_number": number})
            )
            set_span_attributes(
                {"bideval.evaluation_id": evaluation.evaluation_id, "bideval.status": "draft"}
            )
            logger.info("Created evaluation %s (%s)", evaluation.evaluation_id, number)

            self._emit_audit(
                AuditEventType.CREATED,
                evaluation,
                actor,
                data.request_id,
                {
                    "rfq_id": evaluation.rfq_id,
                    "evaluation_number": number,
                    "scoring_method": evaluation.scoring_method.value,
                    "evaluator_count": len(evaluation.evaluators),
                },
            )
            events = [
                notification(
                    NotificationType.EVALUATOR_ASSIGNED,
                    evaluation_id=evaluation.evaluation_id,
                    recipients=evaluation.active_evaluator_ids(),
                    occurred_at=now,
                    evaluation_number=number,
                    deadline=evaluation.deadline.isoformat(),
                )
            ]
            return OperationResult(evaluation, self._finish(events))

    def update_evaluation(
        self, actor: Actor, evaluation_id: str, data: UpdateEvaluationInput
    ) -> OperationResult[Evaluation]:
        """Update a draft evaluation and re-validate it."""
        with operation_span(
            TRACER_NAME, "evaluation.update", {"bideval.evaluation_id": evaluation_id}
        ):
            current = self._load(evaluation_id)
            self._authorize(self._capabilities.can_update(actor, current), actor, "update")
            lifecycle.require_status(current, {EvaluationStatus.DRAFT}, "update")

            now = self._now()
            changes = data.model_dump(exclude_unset=True, exclude={"request_id"})
            # model_dump turns nested models into dicts; re-read them from the input
            for key in ("criteria", "criterion_groups"):
                if key in changes:
                    changes[key] = getattr(data, key) or []
            if "title" in changes and changes["title"] is not None:
                changes["title"] = changes["title"].strip()
            if changes.get("deadline") is not None:
                changes["deadline"] = ensure_aware(changes["deadline"])
            added: list[str] = []
            if "evaluators" in changes:
                existing = {e.user_id: e for e in current.evaluators}
                user_ids = changes["evaluators"] or []
                added = [u for u in user_ids if u not in existing]
                changes["evaluators"] = [
                    existing.get(u) or Evaluator(user_id=u, assigned_at=now) for u in user_ids
                ]
            changes = {k: v for k, v in changes.items() if v is not None or k == "passing_score"}

            updated = lifecycle.apply_update(current, changes, now=now)
            validate_definition(updated, now=now, config=self._config)
            stored = self._store.replace_evaluation(
                updated,
                expected_version=current.version,
                expected_statuses={EvaluationStatus.DRAFT},
            )
            if stored is None:
                raise self._concurrent_change(evaluation_id, "update")

            self._emit_audit(
                AuditEventType.UPDATED,
                stored,
                actor,
                data.request_id,
                {"fields": sorted(changes)},
            )
            events = [
                notification(
                    NotificationType.EVALUATION_UPDATED,
                    evaluation_id=stored.evaluation_id,
                    recipients=stored.active_evaluator_ids(),
                    occurred_at=now,
                    fields=sorted(changes),
                )
            ]
            if added:
                events.append(
                    notification(
                        NotificationType.EVALUATOR_ASSIGNED,
                        evaluation_id=stored.evaluation_id,
                        recipients=added,
                        occurred_at=now,
                        evaluation_number=stored.evaluation_number,
                    )
                )
            return OperationResult(stored, self._finish(events))

    def start_evaluation(
        self, actor: Actor, evaluation_id: str, *, request_id: str | None = None
    ) -> OperationResult[Evaluation]:
        """Start a draft evaluation; records the submission count."""
        with operation_span(
            TRACER_NAME, "evaluation.start", {"bideval.evaluation_id": evaluation_id}
        ):
            current = self._load(evaluation_id)
            self._authorize(self._capabilities.can_start(actor, current), actor, "start")
            lifecycle.require_transition(current, EvaluationStatus.ACTIVE, "start")

            now = self._now()
            submissions = self._rfqs.list_submissions(current.rfq_id)
            started = lifecycle.apply_start(
                current, actor_id=actor.actor_id, submission_count=len(submissions), now=now
            )
            stored = self._store.replace_evaluation(
                started,
                expected_version=current.version,
                expected_statuses={EvaluationStatus.DRAFT},
            )
            if stored is None:
                raise self._concurrent_change(evaluation_id, "start")
            logger.info(
                "Started evaluation %s with %d submission(s)", evaluation_id, len(submissions)
            )

            self._emit_audit(
                AuditEventType.STARTED,
                stored,
                actor,
                request_id,
                {"submission_count": len(submissions)},
            )
            events = [
                notification(
                    NotificationType.EVALUATION_STARTED,
                    evaluation_id=stored.evaluation_id,
                    recipients=stored.active_evaluator_ids(),
                    occurred_at=now,
                    submission_count=len(submissions),
                    deadline=stored.deadline.isoformat(),
                )
            ]
            return OperationResult(stored, self._finish(events))

    def cancel_evaluation(
        self, actor: Actor, evaluation_id: str, data: CancelEvaluationInput
    ) -> OperationResult[Evaluation]:
        """Cancel a draft evaluation."""
        with operation_span(
            TRACER_NAME, "evaluation.cancel", {"bideval.evaluation_id": evaluation_id}
        ):
            current = self._load(evaluation_id)
            self._authorize(self._capabilities.can_cancel(actor, current), actor, "cancel")
            if data.reason and len(data.reason) > self._config.cancellation_reason_max_length:
                raise ValidationError(
                    f"Reason exceeds {self._config.cancellation_reason_max_length} characters",
                    field="reason",
                )

            now = self._now()
            cancelled = lifecycle.apply_cancel(
                current, actor_id=actor.actor_id, reason=data.reason, now=now
            )
            stored = self._store.replace_evaluation(
                cancelled,
                expected_version=current.version,
                expected_statuses={EvaluationStatus.DRAFT},
            )
            if stored is None:
                raise self._concurrent_change(evaluation_id, "cancel")

            self._emit_audit(AuditEventType.CANCELLED, stored, actor, data.request_id)
            events = [
                notification(
                    NotificationType.CANCELLED,
                    evaluation_id=stored.evaluation_id,
                    recipients=stored.active_evaluator_ids(),
                    occurred_at=now,
                    reason=data.reason,
                )
            ]
            return OperationResult(stored, self._finish(events))

    def add_evaluator(
        self, actor: Actor, evaluation_id: str, data: AddEvaluatorInput
    ) -> OperationResult[Evaluation]:
        """Assign an evaluator while the evaluation is draft, active or in progress."""
        with operation_span(
            TRACER_NAME, "evaluation.add_evaluator", {"bideval.evaluation_id": evaluation_id}
        ):
            current = self._load(evaluation_id)
            self._authorize(
                self._capabilities.can_manage_evaluators(actor, current),
                actor,
                "manage_evaluators",
            )
            now = self._now()
            updated = lifecycle.add_evaluator(
                current, user_id=data.user_id, role=data.role, now=now
            )
            stored = self._store.replace_evaluation(
                updated,
                expected_version=current.version,
                expected_statuses=lifecycle.MEMBERSHIP_STATUSES,
            )
            if stored is None:
                raise self._concurrent_change(evaluation_id, "add evaluator")

            self._emit_audit(
                AuditEventType.EVALUATOR_ADDED,
                stored,
                actor,
                data.request_id,
                {"user_id": data.user_id},
            )
            events = [
                notification(
                    NotificationType.EVALUATOR_ASSIGNED,
                    evaluation_id=stored.evaluation_id,
                    recipients=[data.user_id],
                    occurred_at=now,
                    evaluation_number=stored.evaluation_number,
                    deadline=stored.deadline.isoformat(),
                )
            ]
            stored, _ = self._check_completion(stored, actor, data.request_id, events)
            return OperationResult(stored, self._finish(events))

    def remove_evaluator(
        self,
        actor: Actor,
        evaluation_id: str,
        user_id: str,
        *,
        request_id: str | None = None,
    ) -> OperationResult[Evaluation]:
        """Remove an evaluator; may complete the evaluation if they were the last holdout."""
        with operation_span(
            TRACER_NAME, "evaluation.remove_evaluator", {"bideval.evaluation_id": evaluation_id}
        ):
            current = self._load(evaluation_id)
            self._authorize(
                self._capabilities.can_manage_evaluators(actor, current),
                actor,
                "manage_evaluators",
            )
            updated = lifecycle.remove_evaluator(current, user_id=user_id, now=self._now())
            stored = self._store.replace_evaluation(
                updated,
                expected_version=current.version,
                expected_statuses=lifecycle.MEMBERSHIP_STATUSES,
            )
            if stored is None:
                raise self._concurrent_change(evaluation_id, "remove evaluator")

            self._emit_audit(
                AuditEventType.EVALUATOR_REMOVED,
                stored,
                actor,
                request_id,
                {"user_id": user_id},
            )
            events: list[NotificationEvent] = []
            stored, _ = self._check_completion(stored, actor, request_id, events)
            return OperationResult(stored, self._finish(events))

    # ------------------------------------------------------------------ scoring

    def submit_score(
        self, actor: Actor, evaluation_id: str, data: SubmitScoreInput
    ) -> OperationResult[ScoreOutcome]:
        """Record or replace the actor's score for one submission.

        Raises:
            StateConflictError: Evaluation not active/in progress.
            AuthorizationError: Actor is not an active evaluator.
            DeadlinePassedError: The deadline has passed.
            NotFoundError: Unknown submission.
            ValidationError: Score does not fit the criteria or method.
        """
        with operation_span(
            TRACER_NAME,
            "evaluation.submit_score",
            {"bideval.evaluation_id": evaluation_id, "bideval.submission_id": data.submission_id},
        ):
            evaluation = self._load(evaluation_id)
            lifecycle.require_status(evaluation, SCORING_STATUSES, "score")
            self._authorize(self._capabilities.can_score(actor, evaluation), actor, "score")
            if not evaluation.is_active_evaluator(actor.actor_id):
                raise AuthorizationError(
                    f"Actor {actor.actor_id} is not an active evaluator of {evaluation_id}",
                    actor_id=actor.actor_id,
                    capability="score",
                )

            now = self._now()
            deadline = ensure_aware(evaluation.deadline)
            if now > deadline:
                raise DeadlinePassedError(deadline, now)

            submission = self._rfqs.get_submission(data.submission_id)
            if submission is None:
                raise NotFoundError("submission", data.submission_id)
            if submission.rfq_id != evaluation.rfq_id:
                raise ValidationError(
                    f"Submission {data.submission_id} does not belong to RFQ {evaluation.rfq_id}",
                    field="submission_id",
                )

            result = validate_score(
                evaluation,
                data.criterion_scores,
                overall_score=data.overall_score,
                justification=data.justification,
                submission_count=evaluation.submission_count or 0,
                config=self._config,
            )

            replaced: list[Score] = []

            def build(previous: Score | None) -> Score:
                if previous is not None:
                    replaced.append(previous)
                return Score(
                    score_id=previous.score_id if previous is not None else self._new_id(),
                    evaluation_id=evaluation_id,
                    submission_id=data.submission_id,
                    evaluator_id=actor.actor_id,
                    criterion_scores=data.criterion_scores,
                    overall_score=result.as_float(),
                    overall_rating=data.overall_rating,
                    justification=data.justification,
                    strengths=data.strengths,
                    weaknesses=data.weaknesses,
                    recommendations=data.recommendations,
                    confidence_level=data.confidence_level,
                    incomplete=result.incomplete,
                    version=previous.version + 1 if previous is not None else 1,
                    submitted_at=now,
                )

            score = self._store.upsert_score(
                evaluation_id,
                data.submission_id,
                actor.actor_id,
                build,
                allowed_statuses=SCORING_STATUSES,
            )
            if score is None:
                raise self._concurrent_change(evaluation_id, "score")

            if evaluation.status == EvaluationStatus.ACTIVE:
                self._store.transition_status(
                    evaluation_id,
                    from_statuses={EvaluationStatus.ACTIVE},
                    to_status=EvaluationStatus.IN_PROGRESS,
                    changes={"updated_at": now},
                )
            evaluation = self._load(evaluation_id)

            self._emit_audit(
                AuditEventType.SCORE_SUBMITTED,
                evaluation,
                actor,
                data.request_id,
                {
                    "submission_id": data.submission_id,
                    "version": score.version,
                    "overall_score": score.overall_score,
                    "incomplete": score.incomplete,
                },
            )

            events: list[NotificationEvent] = []
            progress = self._completion(evaluation).for_evaluator(actor.actor_id)
            evaluator_complete = progress is not None and progress.complete
            if evaluator_complete and not replaced:
                events.append(
                    notification(
                        NotificationType.EVALUATOR_COMPLETED,
                        evaluation_id=evaluation_id,
                        recipients=[evaluation.created_by],
                        occurred_at=now,
                        evaluator_id=actor.actor_id,
                    )
                )
            evaluation, ready = self._check_completion(
                evaluation, actor, data.request_id, events
            )
            set_span_attributes(
                {"bideval.status": evaluation.status.value, "bideval.score_version": score.version}
            )
            outcome = ScoreOutcome(
                score=score,
                evaluation_status=evaluation.status,
                evaluator_complete=evaluator_complete,
                ready_for_consensus=ready,
            )
            return OperationResult(outcome, self._finish(events))

    def get_progress(self, actor: Actor, evaluation_id: str) -> ProgressReport:
        """Per-evaluator and overall completion."""
        with operation_span(
            TRACER_NAME, "evaluation.progress", {"bideval.evaluation_id": evaluation_id}
        ):
            evaluation = self._load(evaluation_id)
            self._authorize(self._capabilities.can_read(actor, evaluation), actor, "read")
            completion = self._completion(evaluation)
            return ProgressReport(
                evaluation_id=evaluation_id,
                status=evaluation.status,
                total_submissions=completion.total_submissions,
                percentage=completion.percentage,
                all_complete=completion.all_complete,
                evaluators=[
                    EvaluatorProgressView(
                        evaluator_id=p.evaluator_id,
                        scored=p.scored,
                        total=p.total,
                        percentage=p.percentage,
                        complete=p.complete,
                    )
                    for p in completion.evaluators
                ],
            )

    # ------------------------------------------------------------------ consensus & finalization

    def build_consensus(
        self, actor: Actor, evaluation_id: str, data: BuildConsensusInput
    ) -> OperationResult[ConsensusRecord]:
        """Record the agreed final scores and complete the evaluation.

        Raises:
            StateConflictError: Not awaiting consensus, or another attempt won.
            ValidationError: Invalid agreed_by or final scores.
            ThresholdNotMetError: Agreement below the threshold; status unchanged.
        """
        with operation_span(
            TRACER_NAME, "evaluation.build_consensus", {"bideval.evaluation_id": evaluation_id}
        ):
            evaluation = self._load(evaluation_id)
            self._authorize(
                self._capabilities.can_build_consensus(actor, evaluation),
                actor,
                "build_consensus",
            )
            with self._single_shot(evaluation_id, "build consensus"):
                evaluation = self._load(evaluation_id)
                active = evaluation.active_evaluator_ids()
                scored = {
                    s.submission_id
                    for s in self._store.list_scores(evaluation_id)
                    if s.evaluator_id in active
                }
                now = self._now()
                record = build_consensus_record(
                    evaluation,
                    consensus_id=self._new_id(),
                    final_scores=data.final_scores,
                    agreed_by=data.agreed_by,
                    facilitated_by=actor.actor_id,
                    scored_submission_ids=scored,
                    submission_ids=self._submissions(evaluation).keys(),
                    now=now,
                    disputes=data.disputes,
                    consensus_notes=data.consensus_notes,
                    resolution=data.resolution,
                )
                stored = self._store.complete_consensus(
                    record, changes={"completed_at": now, "updated_at": now}
                )
                if stored is None:
                    raise self._concurrent_change(evaluation_id, "build consensus")
            logger.info(
                "Consensus built for evaluation %s (%.2f%% agreement)",
                evaluation_id,
                record.agreement_percentage,
            )

            self._emit_audit(
                AuditEventType.CONSENSUS_BUILT,
                stored,
                actor,
                data.request_id,
                {
                    "agreement_percentage": record.agreement_percentage,
                    "required_percentage": record.required_percentage,
                    "agreed_by": record.agreed_by,
                },
            )
            events = [
                notification(
                    NotificationType.CONSENSUS_REACHED,
                    evaluation_id=evaluation_id,
                    recipients=[stored.created_by, *stored.active_evaluator_ids()],
                    occurred_at=now,
                    agreement_percentage=record.agreement_percentage,
                )
            ]
            return OperationResult(record, self._finish(events))

    def finalize_evaluation(
        self, actor: Actor, evaluation_id: str, data: FinalizeInput
    ) -> OperationResult[Recommendation]:
        """Produce the award recommendation and finalize the evaluation."""
        with operation_span(
            TRACER_NAME, "evaluation.finalize", {"bideval.evaluation_id": evaluation_id}
        ):
            evaluation = self._load(evaluation_id)
            self._authorize(self._capabilities.can_finalize(actor, evaluation), actor, "finalize")
            with self._single_shot(evaluation_id, "finalize"):
                evaluation = self._load(evaluation_id)
                lifecycle.require_transition(evaluation, EvaluationStatus.FINALIZED, "finalize")
                consensus = self._store.get_consensus(evaluation_id)
                if consensus is None:
                    raise StateConflictError(
                        f"Evaluation {evaluation_id} has no consensus record",
                        current_status=evaluation.status.value,
                        operation="finalize",
                    )
                now = self._now()
                recommendation = build_recommendation(
                    evaluation,
                    consensus,
                    recommendation_id=self._new_id(),
                    recommendation=data.recommendation,
                    justification=data.justification,
                    finalized_by=actor.actor_id,
                    submissions=self._submissions(evaluation),
                    now=now,
                    final_rankings=data.final_rankings,
                    recommended_supplier_id=data.recommended_supplier_id,
                    conditions=data.conditions,
                    next_steps=data.next_steps,
                )
                stored = self._store.finalize(
                    recommendation, changes={"finalized_at": now, "updated_at": now}
                )
                if stored is None:
                    raise self._concurrent_change(evaluation_id, "finalize")
            logger.info(
                "Finalized evaluation %s with recommendation %s",
                evaluation_id,
                recommendation.recommendation.value,
            )

            self._emit_audit(
                AuditEventType.FINALIZED,
                stored,
                actor,
                data.request_id,
                {
                    "recommendation": recommendation.recommendation.value,
                    "recommended_supplier_id": recommendation.recommended_supplier_id,
                },
            )
            events = [
                notification(
                    NotificationType.FINALIZED,
                    evaluation_id=evaluation_id,
                    recipients=[stored.created_by, *stored.active_evaluator_ids()],
                    occurred_at=now,
                    recommendation=recommendation.recommendation.value,
                )
            ]
            warnings = self._finish(events)
            warnings.extend(
                self._dispatcher.run_side_effect(
                    "Report generation", lambda: self._submit_report(evaluation_id)
                )
            )
            return OperationResult(recommendation, warnings)

    def _submit_report(self, evaluation_id: str) -> None:
        evaluation = self._load(evaluation_id)
        self._reports.submit_report(evaluation_id, self._report_for(evaluation))

    def _report_for(self, evaluation: Evaluation) -> dict[str, Any]:
        consensus = self._store.get_consensus(evaluation.evaluation_id)
        if consensus is None:
            raise ResultsNotAvailableError(
                f"Evaluation {evaluation.evaluation_id} has no consensus record",
                current_status=evaluation.status.value,
                operation="report on",
            )
        results = build_results(
            evaluation,
            consensus,
            self._store.list_scores(evaluation.evaluation_id),
            self._submissions(evaluation),
            self._store.get_recommendation(evaluation.evaluation_id),
        )
        return build_report(
            evaluation,
            results,
            consensus,
            self._store.list_disputes(evaluation.evaluation_id),
            generated_at=self._now(),
        )

    # ------------------------------------------------------------------ disputes

    def raise_dispute(
        self, actor: Actor, evaluation_id: str, data: RaiseDisputeInput
    ) -> OperationResult[Dispute]:
        """Record a dispute. Never changes status, scores or consensus."""
        with operation_span(
            TRACER_NAME, "evaluation.dispute", {"bideval.evaluation_id": evaluation_id}
        ):
            evaluation = self._load(evaluation_id)
            self._authorize(self._capabilities.can_dispute(actor, evaluation), actor, "dispute")
            now = self._now()
            dispute = self._store.add_dispute(
                build_dispute(
                    evaluation,
                    dispute_id=self._new_id(),
                    dispute_type=data.dispute_type,
                    description=data.description,
                    requested_action=data.requested_action,
                    raised_by=actor.actor_id,
                    now=now,
                    evidence=data.evidence,
                    config=self._config,
                )
            )
            logger.info(
                "Dispute %s raised on evaluation %s (%s)",
                dispute.dispute_id,
                evaluation_id,
                evaluation.status.value,
            )

            self._emit_audit(
                AuditEventType.DISPUTED,
                evaluation,
                actor,
                data.request_id,
                {
                    "dispute_id": dispute.dispute_id,
                    "dispute_type": dispute.dispute_type.value,
                    "requested_action": dispute.requested_action.value,
                },
            )
            events = [
                notification(
                    NotificationType.DISPUTED,
                    evaluation_id=evaluation_id,
                    recipients=[evaluation.created_by],
                    occurred_at=now,
                    dispute_id=dispute.dispute_id,
                    dispute_type=dispute.dispute_type.value,
                )
            ]
            return OperationResult(dispute, self._finish(events))

    def list_disputes(self, actor: Actor, evaluation_id: str) -> list[Dispute]:
        evaluation = self._load(evaluation_id)
        self._authorize(self._capabilities.can_read(actor, evaluation), actor, "read")
        return self._store.list_disputes(evaluation_id)

    # ------------------------------------------------------------------ reads

    def get_evaluation(self, actor: Actor, evaluation_id: str) -> EvaluationDetail:
        """Evaluation with the scores the caller may see.

        Blind evaluations show callers without read-all only their own scores.
        """
        evaluation = self._load(evaluation_id)
        self._authorize(self._capabilities.can_read(actor, evaluation), actor, "read")
        scores = visible_scores(
            evaluation,
            self._store.list_scores(evaluation_id),
            viewer_id=actor.actor_id,
            can_read_all=self._capabilities.can_read_all(actor),
        )
        return EvaluationDetail(
            evaluation=evaluation,
            scores=scores,
            consensus=self._store.get_consensus(evaluation_id),
            recommendation=self._store.get_recommendation(evaluation_id),
        )

    def list_evaluations(
        self,
        actor: Actor,
        filters: EvaluationFilters | None = None,
        *,
        page: int = 1,
        limit: int | None = None,
    ) -> EvaluationList:
        """Evaluations visible to the caller, newest first, with a summary."""
        limit = limit if limit is not None else self._config.default_page_limit
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= limit <= self._config.max_page_limit:
            raise ValidationError(
                f"limit must be between 1 and {self._config.max_page_limit}", field="limit"
            )

        can_read_all = self._capabilities.can_read_all(actor)
        criteria = filters or EvaluationFilters()
        matched = [
            e
            for e in self._store.list_evaluations()
            if is_visible_to(e, actor.actor_id, can_read_all=can_read_all) and matches(e, criteria)
        ]
        matched.sort(key=lambda e: (e.created_at, e.evaluation_id), reverse=True)

        scores: list[Score] = []
        for evaluation in matched:
            scores.extend(
                visible_scores(
                    evaluation,
                    self._store.list_scores(evaluation.evaluation_id),
                    viewer_id=actor.actor_id,
                    can_read_all=can_read_all,
                )
            )
        items, page_info = paginate(matched, page=page, limit=limit)
        return EvaluationList(
            items=items,
            page=page_info,
            summary=summarize(matched, scores, now=self._now()),
        )

    def get_results(self, actor: Actor, evaluation_id: str) -> EvaluationResults:
        """Rankings and statistics of a completed or finalized evaluation."""
        with operation_span(
            TRACER_NAME, "evaluation.results", {"bideval.evaluation_id": evaluation_id}
        ):
            evaluation = self._load(evaluation_id)
            self._authorize(self._capabilities.can_read(actor, evaluation), actor, "read")
            return build_results(
                evaluation,
                self._store.get_consensus(evaluation_id),
                self._store.list_scores(evaluation_id),
                self._submissions(evaluation),
                self._store.get_recommendation(evaluation_id),
            )

    def get_report(self, actor: Actor, evaluation_id: str) -> dict[str, Any]:
        """JSON report of a finalized evaluation."""
        evaluation = self._load(evaluation_id)
        self._authorize(self._capabilities.can_read(actor, evaluation), actor, "read")
        lifecycle.require_status(evaluation, {EvaluationStatus.FINALIZED}, "report on")
        return self._report_for(evaluation)
